from .classify import ClassifyStage
from .export import ExportStage
from .fetch import FetchStage
from .orchestrator import ChainPipeline, checkpoint_heights, export_chains, run_chains

__all__ = [
    "FetchStage",
    "ClassifyStage",
    "ExportStage",
    "ChainPipeline",
    "run_chains",
    "export_chains",
    "checkpoint_heights",
]
