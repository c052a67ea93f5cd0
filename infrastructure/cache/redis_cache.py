"""Redis implementation of ExpiringStore."""
from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from core.config import RedisSettings
from core.logging_config import get_logger
from domain.payment.exceptions import StoreUnavailable

logger = get_logger(__name__)


def _json_dumps(value: Any) -> str:
    return json.dumps(value, default=str)


def _json_loads(value: Optional[str]) -> Any:
    if value is None:
        return None
    return json.loads(value)


@asynccontextmanager
async def _redis_call(operation: str) -> AsyncIterator[None]:
    """Report redis failures as ``StoreUnavailable``."""
    try:
        yield
    except RedisError as exc:
        logger.error("redis_store_error", operation=operation, error=str(exc))
        raise StoreUnavailable(f"Expiring store unavailable during {operation}") from exc


class RedisExpiringStore:
    """Namespaced JSON values with native redis expiry."""

    def __init__(
        self,
        client: aioredis.Redis,
        namespace: str = "",
        lock_timeout: int = 35,
        lock_blocking_timeout: int = 35,
    ) -> None:
        self._client = client
        self._namespace = namespace.strip(":")
        self._lock_timeout = lock_timeout
        self._lock_blocking_timeout = lock_blocking_timeout

    def _format_key(self, key: str) -> str:
        if not self._namespace:
            return key
        return f"{self._namespace}:{key}"

    def _strip_key(self, key: str) -> str:
        prefix = f"{self._namespace}:" if self._namespace else ""
        return key[len(prefix):] if prefix and key.startswith(prefix) else key

    async def get(self, key: str) -> Any:
        async with _redis_call("get"):
            return _json_loads(await self._client.get(self._format_key(key)))

    async def set(self, key: str, value: Any, ttl: int) -> None:
        async with _redis_call("set"):
            await self._client.set(self._format_key(key), _json_dumps(value), ex=max(int(ttl), 1))

    async def delete(self, key: str) -> bool:
        async with _redis_call("delete"):
            return bool(await self._client.delete(self._format_key(key)))

    async def keys(self, prefix: str = "") -> list[str]:
        """SCAN instead of KEYS so large namespaces never block the server."""
        collected: list[str] = []
        async with _redis_call("keys"):
            async for k in self._client.scan_iter(match=self._format_key(f"{prefix}*")):
                collected.append(self._strip_key(k))
        return collected

    async def clear(self, prefix: str = "") -> int:
        deleted = 0
        cursor = 0
        pattern = self._format_key(f"{prefix}*")
        async with _redis_call("clear"):
            while True:
                cursor, keys = await self._client.scan(cursor, match=pattern, count=100)
                if keys:
                    deleted += await self._client.delete(*keys)
                if cursor == 0:
                    break
        logger.info("redis_store_cleared", namespace=self._namespace, prefix=prefix, deleted=deleted)
        return deleted

    async def sweep_expired(self) -> int:
        # redis evicts expired keys itself
        return 0

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[Any]:
        lock_key = f"lock:{self._format_key(key)}"
        lock = self._client.lock(
            lock_key,
            timeout=self._lock_timeout,
            blocking_timeout=self._lock_blocking_timeout,
        )
        async with _redis_call("lock"):
            acquired = await lock.acquire()
        if not acquired:
            raise StoreUnavailable(f"Could not acquire lock: {lock_key}")
        try:
            yield lock
        finally:
            try:
                await lock.release()
            except RedisError as exc:
                # expired while held or connection lost; the lock times out on its own
                logger.warning("redis_lock_release_failed", lock_key=lock_key, error=str(exc))

    async def health_check(self) -> bool:
        return bool(await self._client.ping())


_redis_client: Optional[aioredis.Redis] = None
_store_instance: Optional[RedisExpiringStore] = None
_lock = asyncio.Lock()


async def init_redis_store(redis: RedisSettings) -> RedisExpiringStore:
    """Create the process-wide redis connection pool and store."""
    global _redis_client, _store_instance

    if _store_instance is not None:
        return _store_instance

    async with _lock:
        if _store_instance is not None:
            return _store_instance
        if not redis.url:
            raise RuntimeError("redis.url is not configured")

        client = aioredis.from_url(
            redis.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=redis.max_connections,
        )
        _redis_client = client
        _store_instance = RedisExpiringStore(client=client, namespace=redis.namespace)
        return _store_instance


async def shutdown_redis_store() -> None:
    global _redis_client, _store_instance

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        _store_instance = None
