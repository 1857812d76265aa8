# taxfiller.core.base is imported directly: it depends on taxfiller.sources
from taxfiller.core.retry import rpc_retrying
from taxfiller.core.storage import EventStore, RedisEventStore

__all__ = [
    "EventStore",
    "RedisEventStore",
    "rpc_retrying",
]
