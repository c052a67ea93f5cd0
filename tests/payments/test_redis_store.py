import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from domain.payment.exceptions import StoreUnavailable
from infrastructure.cache.redis_cache import RedisExpiringStore


class DownClient:
    """Redis client whose every command fails as if the server went away."""

    async def get(self, key):
        raise RedisConnectionError("Connection refused")

    async def set(self, key, value, ex=None):
        raise RedisConnectionError("Connection refused")

    def lock(self, name, timeout=None, blocking_timeout=None):
        return DownLock()


class DownLock:
    async def acquire(self):
        raise RedisConnectionError("Connection refused")


class BusyLock:
    async def acquire(self):
        return False


class BusyClient(DownClient):
    def lock(self, name, timeout=None, blocking_timeout=None):
        return BusyLock()


@pytest.mark.asyncio
async def test_redis_failures_surface_as_store_unavailable():
    store = RedisExpiringStore(DownClient(), namespace="bna")

    with pytest.raises(StoreUnavailable):
        await store.get("bna_bridge_token_x")
    with pytest.raises(StoreUnavailable):
        await store.set("bna_bridge_token_x", {"token": "t"}, ttl=60)
    with pytest.raises(StoreUnavailable):
        async with store.lock("bna_bridge_token_x"):
            pass


@pytest.mark.asyncio
async def test_lock_wait_timeout_is_store_unavailable():
    store = RedisExpiringStore(BusyClient(), namespace="bna")

    with pytest.raises(StoreUnavailable) as exc_info:
        async with store.lock("bna_bridge_token_x"):
            pass

    assert "lock:bna:bna_bridge_token_x" in exc_info.value.message
