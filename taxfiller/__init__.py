from importlib.metadata import version

__version__ = version("mev-taxfiller")

from . import pipeline, sources, utils

__all__ = ["__version__", "utils", "sources", "pipeline"]
