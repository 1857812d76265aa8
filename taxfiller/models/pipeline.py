from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

from taxfiller.models.events import BundleRow


class FetchResult(BaseModel):
    chain_id: str
    start_height: int
    rows: tuple[BundleRow, ...] = Field(default_factory=tuple)

    @property
    def row_count(self) -> int:
        return len(self.rows)


class ClassifyResult(BaseModel):
    chain_id: str
    workers: int
    rows_seen: int = 0
    rows_skipped: int = 0
    events_written: int = 0
    failed_workers: list[int] = Field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failed_workers)


class ExportResult(BaseModel):
    chain_id: str
    path: Path
    event_count: int = 0


class ChainRunResult(BaseModel):
    chain_id: str
    run_timestamp: datetime
    fetch: FetchResult
    classify: ClassifyResult
    export: ExportResult
