from __future__ import annotations

from pathlib import Path

import polars as pl

from taxfiller.core.base import PipelineContext, PipelineStage
from taxfiller.errors import WriteError
from taxfiller.models.events import REPORT_HEADER, TaxEvent
from taxfiller.models.pipeline import ExportResult
from taxfiller.utils.logging import get_logger

logger = get_logger(__name__)

REPORT_SCHEMA = {column: pl.Utf8 for column in REPORT_HEADER}


def events_to_frame(events: list[TaxEvent]) -> pl.DataFrame:
    return pl.DataFrame([e.to_report_row() for e in events], schema=REPORT_SCHEMA)


def write_report(events: list[TaxEvent], path: Path) -> None:
    """Write events in the given order; no re-sorting happens here."""
    df = events_to_frame(events)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        df.write_csv(path)
    except (OSError, pl.exceptions.PolarsError) as e:
        raise WriteError(f"Cannot write report {path}: {e}") from e


class ExportStage(PipelineStage[object, ExportResult]):
    def __init__(self, context: PipelineContext, output_dir: Path | None = None):
        super().__init__(context)
        self.output_dir = Path(output_dir) if output_dir is not None else context.config.output_dir

    @property
    def name(self) -> str:
        return "export"

    def report_path(self) -> Path:
        return self.output_dir / f"{self.context.chain_id}.csv"

    async def execute(self, _input: object = None) -> ExportResult:
        chain_id = self.context.chain_id
        events = await self.context.store.all_events(chain_id)
        path = self.report_path()
        write_report(events, path)
        logger.info(f"[{chain_id}] exported {len(events)} events to {path}")
        return ExportResult(chain_id=chain_id, path=path, event_count=len(events))
