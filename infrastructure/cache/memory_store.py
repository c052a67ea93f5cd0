"""In-memory implementation of ExpiringStore.

Single-process only. Default store when no redis URL is configured, and the
store used by the tests.
"""
from __future__ import annotations

import asyncio
import copy
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple


class InMemoryExpiringStore:
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        # holders plus waiters per key; a key leaves both maps when it drops to zero
        self._lock_users: Dict[str, int] = {}

    def _live(self, key: str) -> Optional[Tuple[Any, float]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            self._entries.pop(key, None)
            return None
        return entry

    async def get(self, key: str) -> Optional[Any]:
        entry = self._live(key)
        return copy.deepcopy(entry[0]) if entry else None

    async def set(self, key: str, value: Any, ttl: int) -> None:
        self._entries[key] = (copy.deepcopy(value), self._clock() + max(ttl, 0))

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> list[str]:
        return [k for k in list(self._entries) if k.startswith(prefix) and self._live(k)]

    async def clear(self, prefix: str = "") -> int:
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    async def sweep_expired(self) -> int:
        now = self._clock()
        expired = [k for k, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[asyncio.Lock]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield lock
        finally:
            users = self._lock_users[key] - 1
            if users:
                self._lock_users[key] = users
            else:
                del self._lock_users[key]
                del self._locks[key]

    @property
    def lock_count(self) -> int:
        return len(self._locks)
