"""
Order status state machine (application entry point).

Each call opens one unit of work, locks the order row, runs the domain
checks and writes, commits, and only then fires storefront side effects.
A concurrent delivery for the same order waits on the lock and then sees
the committed state, so re-applying an outcome is a no-op.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional

from application.ports.storefront import StorefrontHooks
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Order, OrderNote, Transaction
from domain.payment.events import PaymentCompleted
from domain.payment.exceptions import OrderNotFound
from domain.payment.service import OrderStatusDomainService

logger = get_logger(__name__)


@dataclass
class StatusUpdate:
    order_id: str
    previous: str
    current: str
    applied: bool


@dataclass
class RefundUpdate:
    order_id: str
    status: str
    applied: bool
    full: bool = False


class OrderStatusService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        hooks: Optional[StorefrontHooks] = None,
    ):
        self._uow_factory = uow_factory
        self._hooks = hooks

    async def register_transaction(
        self, order_id: str, transaction_token: str, payload: Optional[dict] = None
    ) -> Transaction:
        async with self._uow_factory() as uow:
            domain = OrderStatusDomainService(uow.orders, uow.transactions)
            order = await domain.lock_order(order_id)
            return await domain.register_transaction(order, transaction_token, payload)

    async def update_status(
        self,
        order_id: str,
        remote_status: str,
        raw_payload: Optional[dict] = None,
        *,
        event_id: Optional[str] = None,
    ) -> StatusUpdate:
        """Apply a remote transaction status to an order."""
        return await self._update(order_id, None, remote_status, raw_payload, event_id)

    async def update_status_by_token(
        self,
        transaction_token: str,
        remote_status: str,
        raw_payload: Optional[dict] = None,
        *,
        event_id: Optional[str] = None,
    ) -> StatusUpdate:
        return await self._update(None, transaction_token, remote_status, raw_payload, event_id)

    async def _update(
        self,
        order_id: Optional[str],
        transaction_token: Optional[str],
        remote_status: str,
        raw_payload: Optional[dict],
        event_id: Optional[str],
    ) -> StatusUpdate:
        async with self._uow_factory() as uow:
            domain = OrderStatusDomainService(uow.orders, uow.transactions)
            if order_id is None:
                order_id = await domain.resolve_order_id(transaction_token or "")
            order = await domain.lock_order(order_id)
            previous = order.status.value
            applied = await domain.apply_remote_status(
                order, remote_status, raw_payload, event_id=event_id
            )
            events = domain.get_domain_events()

        logger.info(
            "order_status_updated" if applied else "order_status_unchanged",
            order_id=order_id,
            remote_status=remote_status,
            previous=previous,
            current=order.status.value,
        )
        await self._dispatch(events)
        return StatusUpdate(order_id=order_id, previous=previous, current=order.status.value, applied=applied)

    async def apply_refund(
        self,
        transaction_token: str,
        amount: Decimal,
        raw_payload: Optional[dict] = None,
        *,
        event_id: Optional[str] = None,
    ) -> RefundUpdate:
        async with self._uow_factory() as uow:
            domain = OrderStatusDomainService(uow.orders, uow.transactions)
            order = await domain.lock_order(await domain.resolve_order_id(transaction_token))
            full = await domain.apply_refund(order, amount, raw_payload, event_id=event_id)
            events = domain.get_domain_events()

        logger.info(
            "order_refund_recorded" if full is not None else "order_refund_replayed",
            order_id=order.order_id,
            amount=str(amount),
            full=full,
        )
        await self._dispatch(events)
        return RefundUpdate(
            order_id=order.order_id,
            status=order.status.value,
            applied=full is not None,
            full=bool(full),
        )

    async def record_chargeback(
        self,
        transaction_token: str,
        amount: Decimal,
        raw_payload: Optional[dict] = None,
        *,
        event_id: Optional[str] = None,
    ) -> StatusUpdate:
        async with self._uow_factory() as uow:
            domain = OrderStatusDomainService(uow.orders, uow.transactions)
            order = await domain.lock_order(await domain.resolve_order_id(transaction_token))
            applied = await domain.record_chargeback(order, amount, raw_payload, event_id=event_id)
            events = domain.get_domain_events()

        logger.warning("order_chargeback_recorded", order_id=order.order_id, amount=str(amount), applied=applied)
        await self._dispatch(events)
        status = order.status.value
        return StatusUpdate(order_id=order.order_id, previous=status, current=status, applied=applied)

    async def record_rejection(
        self,
        transaction_token: Optional[str],
        event_type: str,
        reason: str,
        payload: Optional[dict] = None,
    ) -> bool:
        """Attach an audit note for a rejected event; False when no order can be located."""
        if not transaction_token:
            return False
        try:
            async with self._uow_factory() as uow:
                domain = OrderStatusDomainService(uow.orders, uow.transactions)
                order = await domain.lock_order(await domain.resolve_order_id(transaction_token))
                await domain.add_rejection_note(order, event_type, reason, payload)
        except OrderNotFound:
            return False
        return True

    async def find_order(self, transaction_token: str) -> Optional[Order]:
        async with self._uow_factory(readonly=True) as uow:
            transaction = await uow.transactions.get_latest_by_token(transaction_token)
            if transaction is None:
                return None
            return await uow.orders.get(transaction.order_id)

    async def list_notes(self, order_id: str) -> List[OrderNote]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.orders.list_notes(order_id)

    async def _dispatch(self, events: list) -> None:
        if self._hooks is None:
            return
        for event in events:
            if not isinstance(event, PaymentCompleted):
                continue
            try:
                await self._hooks.payment_complete(event.order_id, event.transaction_token)
                await self._hooks.reduce_stock(event.order_id)
            except Exception as exc:
                # status is committed; redeliveries are no-ops, so this needs a human
                logger.error(
                    "storefront_hook_failed",
                    order_id=event.order_id,
                    error=str(exc),
                    exc_info=True,
                )
