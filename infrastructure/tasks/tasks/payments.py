"""
Background payment jobs: status reconciliation for one transaction token.

Each run gets its own event loop via ``asyncio.run`` and its own container,
so no connection pool outlives the loop it was created on.
"""
from __future__ import annotations

import asyncio

from celery import shared_task

from core.config import settings
from core.logging_config import get_logger
from domain.payment.exceptions import CheckoutUnavailable
from infrastructure.container import open_payment_container
from ..utils.base_task import BaseTask

logger = get_logger(__name__)


async def reconcile_status(transaction_token: str) -> dict:
    async with open_payment_container(settings) as container:
        view = await container.checkout.poll_status(transaction_token)
        return view.model_dump(mode="json")


@shared_task(name="payments.poll_status", bind=True, base=BaseTask, max_retries=3, default_retry_delay=30)
def task_poll_status(self, transaction_token: str):
    """Pull the remote status for one token and apply it to its order."""
    try:
        return asyncio.run(reconcile_status(transaction_token))
    except CheckoutUnavailable as exc:
        logger.warning("payment_status_poll_failed", transaction_token=transaction_token, error=exc.message)
        raise self.retry(exc=exc)
