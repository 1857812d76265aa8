"""Bundle rows, tax events and the comma-delimited record codec used by the event store."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from taxfiller.errors import DeserializationError
from taxfiller.utils.time import as_utc, format_record_time, parse_record_time

RECORD_FIELD_COUNT = 11
REPORT_HEADER = [
    "tx_id",
    "date",
    "sender_address",
    "receiver_address",
    "moniker",
    "token",
    "amount",
    "fee_token",
    "fee_amount",
    "test",
]


class BundleRow(BaseModel):
    """One winning-bundle execution record from the bundle source."""

    height: int
    timestamp: datetime
    address_submitted: str
    moniker: str = ""
    validator_address: str = ""
    val_profit: int = 0
    val_fees: int = 0
    txs: tuple[str, ...] = Field(default_factory=tuple)

    model_config = {"frozen": True}

    @field_validator("txs", mode="before")
    @classmethod
    def split_txs(cls, v: object) -> tuple[str, ...]:
        if v is None:
            return ()
        if isinstance(v, str):
            return tuple(t.strip() for t in v.split(",") if t.strip())
        if isinstance(v, (list, tuple)):
            return tuple(str(t) for t in v if t)
        raise ValueError(f"Cannot read transaction list from {type(v).__name__}")

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return as_utc(v)

    @property
    def last_tx(self) -> str | None:
        return self.txs[-1] if self.txs else None


class TaxEvent(BaseModel):
    chain_id: str
    tx_hash: str
    timestamp: datetime
    sender: str
    receiver: str
    moniker: str
    token: str
    amount: int
    fee_amount: int
    height: int
    test: bool

    model_config = {"frozen": True}

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        # The record format carries microseconds in UTC, nothing finer
        return as_utc(v)

    @property
    def key(self) -> str:
        return event_key(self.chain_id, self.height, self.sender)

    def to_report_row(self) -> dict[str, str]:
        values = [
            self.tx_hash,
            format_record_time(self.timestamp),
            self.sender,
            self.receiver,
            self.moniker,
            self.token,
            str(self.amount),
            self.token,
            str(self.fee_amount),
            "true" if self.test else "false",
        ]
        return dict(zip(REPORT_HEADER, values))


def event_key(chain_id: str, height: int, sender: str) -> str:
    return f"{chain_id}|{height}|{sender}"


def encode_event(event: TaxEvent) -> str:
    return ",".join(
        [
            event.chain_id,
            event.tx_hash,
            format_record_time(event.timestamp),
            event.sender,
            event.receiver,
            event.moniker,
            event.token,
            str(event.amount),
            str(event.fee_amount),
            str(event.height),
            "true" if event.test else "false",
        ]
    )


def decode_event(record: str) -> TaxEvent:
    fields = record.split(",")
    if len(fields) < RECORD_FIELD_COUNT:
        raise DeserializationError(record, f"expected {RECORD_FIELD_COUNT} fields, got {len(fields)}")

    # Only the moniker may contain commas; everything around it is fixed width
    head, tail = fields[:5], fields[-5:]
    moniker = ",".join(fields[5:-5])
    chain_id, tx_hash, date_str, sender, receiver = head
    token, amount, fee_amount, height, test = tail

    if test not in ("true", "false"):
        raise DeserializationError(record, f"bad test flag {test!r}")
    try:
        return TaxEvent(
            chain_id=chain_id,
            tx_hash=tx_hash,
            timestamp=parse_record_time(date_str),
            sender=sender,
            receiver=receiver,
            moniker=moniker,
            token=token,
            amount=int(amount),
            fee_amount=int(fee_amount),
            height=int(height),
            test=test == "true",
        )
    except ValueError as e:
        raise DeserializationError(record, str(e)) from e
