from __future__ import annotations

from taxfiller.core.base import PipelineStage
from taxfiller.models.pipeline import FetchResult
from taxfiller.utils.logging import get_logger

logger = get_logger(__name__)


class FetchStage(PipelineStage[None, FetchResult]):
    """Read the chain's checkpoint height and pull every bundle row from there on."""

    @property
    def name(self) -> str:
        return "fetch"

    async def execute(self, _input: None = None) -> FetchResult:
        chain_id = self.context.chain_id
        height = await self.context.store.latest_height(chain_id)
        logger.info(f"[{chain_id}] starting from height {height}")

        rows = await self.context.bundles.fetch(height)

        # The checkpoint height itself is re-read; writes are idempotent per key
        stale = [r for r in rows if r.height < height]
        if stale:
            logger.warning(f"[{chain_id}] bundle source returned {len(stale)} rows below height {height}, dropping")
            rows = tuple(r for r in rows if r.height >= height)

        logger.info(f"[{chain_id}] received {len(rows)} rows from bundle source")
        return FetchResult(chain_id=chain_id, start_height=height, rows=rows)
