"""
Storefront side effects fired after an order status change commits.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class StorefrontHooks(Protocol):
    async def payment_complete(self, order_id: str, transaction_token: Optional[str]) -> None: ...

    async def reduce_stock(self, order_id: str) -> None: ...
