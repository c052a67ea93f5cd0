"""
Expiring key-value store port.

Backs the checkout token cache and the resolved customer id records. Values
must be JSON-serializable.
"""
from __future__ import annotations

from typing import Any, AsyncContextManager, Optional, Protocol, runtime_checkable


@runtime_checkable
class ExpiringStore(Protocol):
    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl: int) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def keys(self, prefix: str = "") -> list[str]: ...

    async def clear(self, prefix: str = "") -> int: ...

    async def sweep_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        ...

    def lock(self, key: str) -> AsyncContextManager[Any]:
        """Exclusive section per key (single flight for token refresh)."""
        ...
