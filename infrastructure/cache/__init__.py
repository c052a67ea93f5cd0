"""Expiring key/value stores for checkout tokens and customer ids."""
from .memory_store import InMemoryExpiringStore
from .redis_cache import (
    RedisExpiringStore,
    init_redis_store,
    shutdown_redis_store,
)

__all__ = [
    "InMemoryExpiringStore",
    "RedisExpiringStore",
    "init_redis_store",
    "shutdown_redis_store",
]
