"""Storefront hook adapters."""
from __future__ import annotations

from typing import Optional

from core.logging_config import get_logger

logger = get_logger(__name__)


class LoggingStorefrontHooks:
    """Default hooks when the bridge is not wired to a storefront process.

    Emits the completion and stock-reduction signals as structured log
    events so an external consumer can pick them up.
    """

    async def payment_complete(self, order_id: str, transaction_token: Optional[str]) -> None:
        logger.info("storefront_payment_complete", order_id=order_id, transaction_token=transaction_token)

    async def reduce_stock(self, order_id: str) -> None:
        logger.info("storefront_reduce_stock", order_id=order_id)
