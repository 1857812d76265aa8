from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

from taxfiller.config import ChainPipelineConfig, Config
from taxfiller.core.base import PipelineContext
from taxfiller.errors import ConfigError
from taxfiller.models.pipeline import ChainRunResult, ExportResult
from taxfiller.pipeline.classify import ClassifyStage
from taxfiller.pipeline.export import ExportStage
from taxfiller.pipeline.fetch import FetchStage
from taxfiller.utils.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)

ContextFactory = Callable[[ChainPipelineConfig], PipelineContext]


class ChainPipeline:
    """checkpoint read -> bundle fetch -> classify (all workers joined) -> export"""

    def __init__(self, context: PipelineContext):
        self.context = context
        self.fetch = FetchStage(context)
        self.classify = ClassifyStage(context)
        self.export = ExportStage(context)

    async def run(self) -> ChainRunResult:
        fetched = await self.fetch.execute()
        classified = await self.classify.execute(fetched)
        exported = await self.export.execute(classified)
        return ChainRunResult(
            chain_id=self.context.chain_id,
            run_timestamp=self.context.run_timestamp,
            fetch=fetched,
            classify=classified,
            export=exported,
        )


def select_chains(config: Config, chain_ids: Iterable[str] | None = None) -> list[str]:
    selected = list(chain_ids) if chain_ids else list(config.chains)
    unknown = [c for c in selected if c not in config.chains]
    if unknown:
        raise ConfigError(f"Unknown chain(s): {', '.join(unknown)}")
    return selected


async def _with_context(
    config: ChainPipelineConfig,
    factory: ContextFactory,
    job: Callable[[PipelineContext], Awaitable[T]],
) -> T:
    context = factory(config)
    try:
        return await job(context)
    finally:
        await context.close()


async def _run_all(
    config: Config,
    chain_ids: list[str],
    factory: ContextFactory,
    job: Callable[[PipelineContext], Awaitable[T]],
) -> dict[str, T]:
    """Run `job` for every chain concurrently. The first failure cancels the rest and is re-raised."""
    tasks = {
        chain_id: asyncio.create_task(_with_context(config.for_chain(chain_id), factory, job), name=chain_id)
        for chain_id in chain_ids
    }
    try:
        results = await asyncio.gather(*tasks.values())
    except BaseException:
        for task in tasks.values():
            task.cancel()
        await asyncio.gather(*tasks.values(), return_exceptions=True)
        failed = [name for name, t in tasks.items() if t.done() and not t.cancelled() and t.exception()]
        logger.error(f"Chain pipeline(s) failed: {', '.join(failed) or 'unknown'}")
        raise
    return dict(zip(tasks, results))


async def _run_pipeline(context: PipelineContext) -> ChainRunResult:
    return await ChainPipeline(context).run()


async def _export_only(context: PipelineContext) -> ExportResult:
    return await ExportStage(context).execute()


async def _latest_height(context: PipelineContext) -> int:
    return await context.store.latest_height(context.chain_id)


async def run_chains(
    config: Config,
    chain_ids: Iterable[str] | None = None,
    factory: ContextFactory = PipelineContext.from_config,
) -> dict[str, ChainRunResult]:
    selected = select_chains(config, chain_ids)
    logger.info(f"Running {len(selected)} chain pipeline(s): {', '.join(selected)}")
    return await _run_all(config, selected, factory, _run_pipeline)


async def export_chains(
    config: Config,
    chain_ids: Iterable[str] | None = None,
    factory: ContextFactory = PipelineContext.from_config,
) -> dict[str, ExportResult]:
    return await _run_all(config, select_chains(config, chain_ids), factory, _export_only)


async def checkpoint_heights(
    config: Config,
    chain_ids: Iterable[str] | None = None,
    factory: ContextFactory = PipelineContext.from_config,
) -> dict[str, int]:
    return await _run_all(config, select_chains(config, chain_ids), factory, _latest_height)
