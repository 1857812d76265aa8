"""Pytest configuration and in-memory doubles for the store, ledger and bundle source."""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable
from datetime import date, datetime, timezone
from pathlib import Path

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from taxfiller.config import ChainPipelineConfig
from taxfiller.core.base import PipelineContext
from taxfiller.core.storage import RedisEventStore
from taxfiller.models.events import BundleRow
from taxfiller.sources.bundles import BundleSource
from taxfiller.sources.ledger import DecodedTx

AUCTION_HOUSE = "juno10auctionhouse"


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests against real redis/postgres/node endpoints",
    )


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


def redis_glob(pattern: str) -> re.Pattern[str]:
    """Compile a redis MATCH pattern, honouring backslash escapes."""
    out: list[str] = []
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if c == "\\" and i + 1 < len(pattern):
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if c == "*":
            out.append(".*")
        elif c == "?":
            out.append(".")
        elif c == "[" and "]" in pattern[i + 1 :]:
            end = pattern.index("]", i + 1)
            out.append("[" + pattern[i + 1 : end] + "]")
            i = end + 1
            continue
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("".join(out), re.DOTALL)


class FakeRedis:
    """Just enough of redis.asyncio.Redis for RedisEventStore."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.fail_keys: Callable[[str], bool] = lambda _key: False
        self.write_error: Callable[[], Exception] = lambda: RedisConnectionError("Connection refused")
        self.down = False

    async def set(self, key: str, value: str) -> bool:
        if self.down:
            raise RedisConnectionError("Connection refused")
        if self.fail_keys(key):
            raise self.write_error()
        await asyncio.sleep(0)
        self.data[key] = value
        return True

    async def mget(self, keys: list[str]) -> list[str | None]:
        if self.down:
            raise RedisConnectionError("Connection refused")
        return [self.data.get(k) for k in keys]

    async def scan_iter(self, match: str | None = None, count: int | None = None):
        if self.down:
            raise RedisConnectionError("Connection refused")
        regex = redis_glob(match) if match is not None else None
        for key in list(self.data):
            if regex is None or regex.fullmatch(key):
                yield key

    async def aclose(self) -> None:
        pass


class StubLedger:
    def __init__(self, txs: dict[str, DecodedTx | None] | None = None, delays: dict[str, float] | None = None):
        self.txs = txs or {}
        self.delays = delays or {}
        self.calls: list[str] = []
        self.closed = False

    async def resolve(self, tx_hash: str) -> DecodedTx | None:
        self.calls.append(tx_hash)
        delay = self.delays.get(tx_hash)
        if delay:
            await asyncio.sleep(delay)
        return self.txs.get(tx_hash)

    async def close(self) -> None:
        self.closed = True


class StubBundleSource(BundleSource):
    def __init__(self, rows: list[BundleRow] | None = None, error: Exception | None = None):
        self.rows = rows or []
        self.error = error
        self.requested: list[int | None] = []

    async def fetch(self, from_height: int | None) -> tuple[BundleRow, ...]:
        self.requested.append(from_height)
        if self.error is not None:
            raise self.error
        start = from_height or 0
        return tuple(r for r in self.rows if r.height >= start)


def make_row(height: int, txs: list[str] | str, submitter: str = "juno1searcher", **kwargs) -> BundleRow:
    values = {
        "height": height,
        "timestamp": datetime(2022, 6, 1, 12, 0, 0, 250_000, tzinfo=timezone.utc),
        "address_submitted": submitter,
        "moniker": "Validator One",
        "validator_address": "junovaloper1one",
        "val_profit": 500,
        "val_fees": 10,
        "txs": txs,
    }
    values.update(kwargs)
    return BundleRow(**values)


@pytest.fixture
def chain_config(tmp_path: Path) -> Callable[..., ChainPipelineConfig]:
    def factory(**overrides) -> ChainPipelineConfig:
        values = dict(
            chain_id="testnet",
            auction_house=AUCTION_HOUSE,
            token="ujuno",
            test_accounts=frozenset(),
            workers=2,
            redis_address="localhost:6379",
            db_host="localhost",
            db_password="",
            node_address="http://node.test:26657",
            http_timeout=5.0,
            row_timeout=5.0,
            rpc_max_attempts=1,
            report_cutoff=date(2023, 1, 1),
            output_dir=tmp_path / "reports",
        )
        values.update(overrides)
        return ChainPipelineConfig(**values)

    return factory


@pytest.fixture
def make_context(chain_config) -> Callable[..., PipelineContext]:
    def factory(
        rows: list[BundleRow] | None = None,
        txs: dict[str, DecodedTx | None] | None = None,
        redis: FakeRedis | None = None,
        ledger: StubLedger | None = None,
        bundles: BundleSource | None = None,
        **overrides,
    ) -> PipelineContext:
        return PipelineContext(
            config=chain_config(**overrides),
            store=RedisEventStore(redis or FakeRedis()),
            bundles=bundles or StubBundleSource(rows),
            ledger=ledger or StubLedger(txs),  # type: ignore[arg-type]
        )

    return factory
