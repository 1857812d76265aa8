from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, TypeVar

from taxfiller.config import ChainPipelineConfig
from taxfiller.core.storage import EventStore, RedisEventStore
from taxfiller.sources.bundles import BundleSource, PeersDBSource
from taxfiller.sources.ledger import LedgerClient, TxDecoder
from taxfiller.utils.time import utc

I = TypeVar("I")
O = TypeVar("O")


@dataclass
class PipelineContext:
    """Everything one chain's pipeline run needs. Nothing here is shared across chains."""

    config: ChainPipelineConfig
    store: EventStore
    bundles: BundleSource
    ledger: LedgerClient
    run_timestamp: datetime = field(default_factory=utc)

    @property
    def chain_id(self) -> str:
        return self.config.chain_id

    @classmethod
    def from_config(
        cls,
        config: ChainPipelineConfig,
        decoder: TxDecoder | None = None,
        run_timestamp: datetime | None = None,
    ) -> PipelineContext:
        return cls(
            config=config,
            store=RedisEventStore.from_address(config.redis_address),
            bundles=PeersDBSource(
                host=config.db_host,
                password=config.db_password,
                cutoff=config.report_cutoff,
            ),
            ledger=LedgerClient(
                node_address=config.node_address,
                auction_house=config.auction_house,
                decoder=decoder,
                http_timeout=config.http_timeout,
                max_attempts=config.rpc_max_attempts,
            ),
            run_timestamp=run_timestamp or utc(),
        )

    async def close(self) -> None:
        await self.ledger.close()
        await self.store.close()


class PipelineStage(ABC, Generic[I, O]):
    def __init__(self, context: PipelineContext):
        self.context = context

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    def config(self) -> ChainPipelineConfig:
        return self.context.config

    @abstractmethod
    async def execute(self, input_data: I) -> O:
        pass
