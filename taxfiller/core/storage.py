from __future__ import annotations

import re
from abc import ABC, abstractmethod

import redis.asyncio as redis
from redis.exceptions import RedisError

from taxfiller.errors import DeserializationError, StoreUnavailable
from taxfiller.models.events import TaxEvent, decode_event, encode_event
from taxfiller.utils.logging import get_logger

logger = get_logger(__name__)

_UNAVAILABLE = (RedisError, OSError)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


class EventStore(ABC):
    """Keyed tax-event persistence. One record per (chain, height, sender), last write wins."""

    @abstractmethod
    async def put(self, event: TaxEvent) -> None:
        pass

    @abstractmethod
    async def all_events(self, chain_id: str) -> list[TaxEvent]:
        pass

    async def latest_height(self, chain_id: str) -> int:
        events = await self.all_events(chain_id)
        if not events:
            logger.info(f"[{chain_id}] no stored events, starting from height 0")
            return 0
        return events[0].height

    async def close(self) -> None:
        pass

    async def __aenter__(self) -> EventStore:
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: object,
    ) -> None:
        await self.close()


def sort_by_height_desc(events: list[TaxEvent]) -> list[TaxEvent]:
    """Highest height first; events sharing a height are ordered by key."""
    return sorted(events, key=lambda e: (-e.height, e.key))


def chain_pattern(chain_id: str) -> str:
    """SCAN MATCH pattern for every key of `chain_id`, with glob characters in the id escaped."""
    return _GLOB_SPECIAL.sub(r"\\\1", chain_id) + "|*"


def decode_records(records: list[str | None]) -> list[TaxEvent]:
    events: list[TaxEvent] = []
    for record in records:
        # Keys can expire or be deleted between SCAN and MGET
        if record is None:
            continue
        try:
            events.append(decode_event(record))
        except DeserializationError as e:
            logger.warning(f"Skipping stored record: {e}")
    return events


class RedisEventStore(EventStore):
    def __init__(self, client: redis.Redis, scan_count: int = 1000, batch_size: int = 500):
        self._client = client
        self.scan_count = scan_count
        self.batch_size = batch_size

    @classmethod
    def from_address(cls, address: str, timeout: float | None = 30.0) -> RedisEventStore:
        host, _, port = address.rpartition(":")
        if not host:
            host, port = address, "6379"
        client = redis.Redis(
            host=host,
            port=int(port),
            db=0,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client)

    async def put(self, event: TaxEvent) -> None:
        try:
            await self._client.set(event.key, encode_event(event))
        except _UNAVAILABLE as e:
            raise StoreUnavailable(f"Cannot write {event.key}: {e}") from e

    async def _keys(self, chain_id: str) -> list[str]:
        keys: list[str] = []
        async for key in self._client.scan_iter(match=chain_pattern(chain_id), count=self.scan_count):
            keys.append(key)
        return keys

    async def all_events(self, chain_id: str) -> list[TaxEvent]:
        try:
            keys = await self._keys(chain_id)
            records: list[str | None] = []
            for i in range(0, len(keys), self.batch_size):
                records.extend(await self._client.mget(keys[i : i + self.batch_size]))
        except _UNAVAILABLE as e:
            raise StoreUnavailable(f"Cannot read events for {chain_id}: {e}") from e

        events = decode_records(records)
        logger.debug(f"[{chain_id}] read {len(events)} events from {len(keys)} keys")
        return sort_by_height_desc(events)

    async def close(self) -> None:
        await self._client.aclose()

    def __repr__(self) -> str:
        return f"RedisEventStore(client={self._client!r})"
