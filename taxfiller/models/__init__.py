"""Data models for the taxfiller pipeline."""

from taxfiller.models.events import (
    REPORT_HEADER,
    BundleRow,
    TaxEvent,
    decode_event,
    encode_event,
    event_key,
)
from taxfiller.models.pipeline import ChainRunResult, ClassifyResult, ExportResult, FetchResult

__all__ = [
    # Records
    "BundleRow",
    "TaxEvent",
    "REPORT_HEADER",
    "encode_event",
    "decode_event",
    "event_key",
    # Pipeline models
    "FetchResult",
    "ClassifyResult",
    "ExportResult",
    "ChainRunResult",
]
