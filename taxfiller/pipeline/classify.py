"""Worker pool that turns bundle rows into tax events.

Each of the ``W`` workers walks a strided slice of the fetched rows
(worker ``i`` takes ``i, i+W, i+2W, ...``). The rows are held in a tuple
shared by all workers and never mutated. Every row yields up to two
events:

* a validator payment (auction house -> validator) when one of the
  bundle's transactions is a transfer sent by the auction house, and
* an auction fee (bundle submitter -> auction house), always written,
  with zero amounts when no transfer into the auction house is found.

Both events carry the bundle's last transaction hash as their tx id.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from taxfiller.core.base import PipelineContext, PipelineStage
from taxfiller.errors import StoreUnavailable
from taxfiller.models.events import BundleRow, TaxEvent
from taxfiller.models.pipeline import ClassifyResult, FetchResult
from taxfiller.sources.ledger import DecodedTx
from taxfiller.utils.logging import get_logger

logger = get_logger(__name__)


def worker_indices(worker: int, workers: int, size: int) -> range:
    return range(worker, size, workers)


def validator_payment_event(
    row: BundleRow,
    chain_id: str,
    token: str,
    auction_house: str,
    validator: str,
    test: bool,
) -> TaxEvent:
    return TaxEvent(
        chain_id=chain_id,
        tx_hash=row.last_tx or "",
        timestamp=row.timestamp,
        sender=auction_house,
        receiver=validator,
        moniker=row.moniker,
        token=token,
        amount=row.val_profit,
        fee_amount=row.val_fees,
        height=row.height,
        test=test,
    )


def auction_fee_event(
    row: BundleRow,
    chain_id: str,
    token: str,
    auction_house: str,
    amount: int,
    fee: int,
    test: bool,
) -> TaxEvent:
    return TaxEvent(
        chain_id=chain_id,
        tx_hash=row.last_tx or "",
        timestamp=row.timestamp,
        sender=row.address_submitted,
        receiver=auction_house,
        moniker=row.moniker,
        token=token,
        amount=amount,
        fee_amount=fee,
        height=row.height,
        test=test,
    )


@dataclass
class WorkerStats:
    rows_seen: int = 0
    rows_skipped: int = 0
    events_written: int = 0
    failed: bool = False


class RowClassifier:
    """Classifies a single row. Resolved transactions are cached for the row only."""

    def __init__(self, context: PipelineContext, row: BundleRow):
        self.context = context
        self.row = row
        self._resolved: dict[str, DecodedTx | None] = {}

    async def _resolve(self, tx_hash: str) -> DecodedTx | None:
        if tx_hash not in self._resolved:
            self._resolved[tx_hash] = await self.context.ledger.resolve(tx_hash)
        return self._resolved[tx_hash]

    async def validator_payment(self) -> str | None:
        """Validator paid by the auction house. The last transaction is checked first."""
        auction_house = self.context.config.auction_house
        for tx_hash in reversed(self.row.txs):
            decoded = await self._resolve(tx_hash)
            if decoded is None:
                continue
            receiver = decoded.payment_from(auction_house)
            if receiver:
                return receiver
        return None

    async def auction_fee(self) -> tuple[int, int]:
        """(amount, fee) of the first transaction, in bundle order, paying the auction house."""
        auction_house = self.context.config.auction_house
        for tx_hash in self.row.txs:
            decoded = await self._resolve(tx_hash)
            if decoded is None:
                continue
            payment = decoded.payment_into(auction_house)
            if payment is not None:
                return payment
        return 0, 0

    async def events(self) -> list[TaxEvent]:
        config = self.context.config
        test = config.is_test_account(self.row.address_submitted)
        events: list[TaxEvent] = []

        validator = await self.validator_payment()
        if validator:
            events.append(
                validator_payment_event(self.row, config.chain_id, config.token, config.auction_house, validator, test)
            )

        amount, fee = await self.auction_fee()
        events.append(
            auction_fee_event(self.row, config.chain_id, config.token, config.auction_house, amount, fee, test)
        )
        return events


class ClassifyStage(PipelineStage[FetchResult, ClassifyResult]):
    def __init__(
        self,
        context: PipelineContext,
        workers: int | None = None,
        row_timeout: float | None = None,
    ):
        super().__init__(context)
        self.workers = max(1, workers or context.config.workers)
        self.row_timeout = row_timeout if row_timeout is not None else context.config.row_timeout

    @property
    def name(self) -> str:
        return "classify"

    async def classify_row(self, row: BundleRow, stats: WorkerStats) -> None:
        """Classify one row and store its events, counting each write as it lands."""
        for event in await RowClassifier(self.context, row).events():
            await self.context.store.put(event)
            stats.events_written += 1

    async def _worker(self, worker: int, rows: tuple[BundleRow, ...], stats: WorkerStats) -> None:
        chain_id = self.context.chain_id
        for index in worker_indices(worker, self.workers, len(rows)):
            row = rows[index]
            stats.rows_seen += 1

            if not row.txs:
                logger.warning(f"[{chain_id}] bundle at height {row.height} has no txs, skipping")
                stats.rows_skipped += 1
                continue

            try:
                await asyncio.wait_for(self.classify_row(row, stats), timeout=self.row_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"[{chain_id}] worker {worker}: bundle at height {row.height} timed out "
                    f"after {self.row_timeout}s, skipping"
                )
                stats.rows_skipped += 1
            except StoreUnavailable as e:
                logger.error(f"[{chain_id}] worker {worker}: error setting tax data in store, stopping: {e}")
                stats.failed = True
                return

    async def execute(self, input_data: FetchResult) -> ClassifyResult:
        rows = input_data.rows
        chain_id = self.context.chain_id
        logger.info(f"[{chain_id}] classifying {len(rows)} rows with {self.workers} workers")

        stats = [WorkerStats() for _ in range(self.workers)]
        await asyncio.gather(*(self._worker(i, rows, stats[i]) for i in range(self.workers)))

        result = ClassifyResult(
            chain_id=chain_id,
            workers=self.workers,
            rows_seen=sum(s.rows_seen for s in stats),
            rows_skipped=sum(s.rows_skipped for s in stats),
            events_written=sum(s.events_written for s in stats),
            failed_workers=[i for i, s in enumerate(stats) if s.failed],
        )
        if result.partial:
            logger.warning(
                f"[{chain_id}] workers {result.failed_workers} stopped early on store errors, "
                f"exported data may be partial"
            )
        logger.info(f"[{chain_id}] wrote {result.events_written} events ({result.rows_skipped} rows skipped)")
        return result
