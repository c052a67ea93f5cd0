"""
Order status domain service - applies remote payment outcomes to an order.

Works on an order the caller has already locked through the unit of work.
Every check runs before the first write so a rejected update leaves the
order untouched.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

from .entity import Order, OrderNote, OrderStatus, Transaction, map_remote_status
from .events import (
    ChargebackRecorded,
    OrderStatusChanged,
    PaymentCompleted,
    RefundRecorded,
)
from .exceptions import OrderNotFound
from .repository import OrderRepository, TransactionRepository

STATUS_NOTE_LABELS = {
    OrderStatus.PROCESSING: "completed successfully",
    OrderStatus.FAILED: "failed",
    OrderStatus.CANCELLED: "cancelled",
    OrderStatus.PENDING: "pending",
    OrderStatus.REFUNDED: "refunded",
}


def _fmt_amount(amount: Any, currency: Optional[str]) -> str:
    if amount in (None, ""):
        return "n/a"
    return f"{amount} {currency}".strip() if currency else str(amount)


def audit_note(order: Order, headline: str, payload: Optional[dict]) -> OrderNote:
    """Build the audit line: headline, reference number, amount and timestamp."""
    payload = payload or {}
    now = datetime.now(timezone.utc)
    reference = payload.get("reference_number") or "n/a"
    amount = _fmt_amount(payload.get("amount"), payload.get("currency") or order.currency)
    message = f"{headline}. Reference: {reference}. Amount: {amount}. Time: {now.isoformat()}"
    return OrderNote(order_id=order.order_id, message=message, created_at=now)


class OrderStatusDomainService:
    """
    Order status state machine rules.

    Responsibilities:
    1. remote status -> local status mapping (table driven, no default)
    2. idempotent transitions (same or already-satisfied state is a no-op)
    3. refund and chargeback bookkeeping
    4. one audit note per applied change, plus domain events
    """

    def __init__(self, orders: OrderRepository, transactions: TransactionRepository):
        self.orders = orders
        self.transactions = transactions
        self.events: List = []

    async def lock_order(self, order_id: str) -> Order:
        order = await self.orders.get_for_update(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def resolve_order_id(self, transaction_token: str) -> str:
        transaction = await self.transactions.get_latest_by_token(transaction_token)
        if transaction is None:
            raise OrderNotFound(transaction_token)
        return transaction.order_id

    async def register_transaction(
        self, order: Order, transaction_token: str, payload: Optional[dict] = None
    ) -> Transaction:
        """Attach a checkout token to an order; reuses the newest row for the same token."""
        latest = await self.transactions.get_latest_for_order(order.order_id)
        if latest is not None and latest.transaction_token == transaction_token:
            return latest
        transaction = Transaction(
            id=None,
            order_id=order.order_id,
            transaction_token=transaction_token,
            status="pending",
            raw_payload=dict(payload or {}),
        )
        order.transaction_token = transaction_token
        await self.orders.save(order)
        return await self.transactions.add(transaction)

    async def apply_remote_status(
        self,
        order: Order,
        remote_status: str,
        raw_payload: Optional[dict] = None,
        *,
        event_id: Optional[str] = None,
    ) -> bool:
        """Apply a remote status; returns True when the order changed."""
        target = map_remote_status(remote_status)
        transaction = await self.transactions.get_latest_for_order(order.order_id)
        if transaction is not None and transaction.has_applied(event_id):
            return False

        previous = order.status
        if not order.transition_to(target):
            return False

        payload = raw_payload or {}
        await self.orders.save(order)
        await self._record_transaction(transaction, remote_status, payload, event_id)

        headline = f"BNA payment {STATUS_NOTE_LABELS[target]}"
        if target == OrderStatus.FAILED:
            reason = payload.get("failure_reason") or payload.get("message") or "Payment failed"
            headline = f"{headline}: {reason}"
        await self.orders.add_note(audit_note(order, headline, payload))

        token = transaction.transaction_token if transaction else order.transaction_token
        reference = payload.get("reference_number")
        self.events.append(
            OrderStatusChanged(
                order_id=order.order_id,
                transaction_token=token,
                reference_number=reference,
                previous=previous.value,
                current=target.value,
            )
        )
        if target == OrderStatus.PROCESSING:
            self.events.append(
                PaymentCompleted(order_id=order.order_id, transaction_token=token, reference_number=reference)
            )
        return True

    async def apply_refund(
        self,
        order: Order,
        amount: Decimal,
        raw_payload: Optional[dict] = None,
        *,
        event_id: Optional[str] = None,
    ) -> Optional[bool]:
        """Returns True for a full refund, False for a partial one, None for a replay."""
        transaction = await self.transactions.get_latest_for_order(order.order_id)
        if transaction is not None and transaction.has_applied(event_id):
            return None
        if order.status == OrderStatus.REFUNDED and amount >= order.total:
            return None

        full = order.apply_refund(amount)
        payload = {**(raw_payload or {}), "amount": str(amount)}
        await self.orders.save(order)
        await self._record_transaction(
            transaction, "refunded" if full else "partially_refunded", raw_payload or {}, event_id
        )
        headline = "BNA refund processed" if full else "BNA partial refund processed"
        await self.orders.add_note(audit_note(order, headline, payload))
        self.events.append(
            RefundRecorded(
                order_id=order.order_id,
                transaction_token=order.transaction_token,
                reference_number=payload.get("reference_number"),
                amount=str(amount),
                full=full,
            )
        )
        return full

    async def record_chargeback(
        self,
        order: Order,
        amount: Decimal,
        raw_payload: Optional[dict] = None,
        *,
        event_id: Optional[str] = None,
    ) -> bool:
        transaction = await self.transactions.get_latest_for_order(order.order_id)
        if transaction is not None and transaction.has_applied(event_id):
            return False

        payload = {**(raw_payload or {}), "amount": str(amount)}
        reference = payload.get("reference_number")
        existing = order.chargeback
        if existing is not None and existing.amount == amount and existing.reference == reference:
            return False
        order.flag_chargeback(amount, reference)
        await self.orders.save(order)
        await self._record_transaction(
            transaction, transaction.status if transaction else "chargeback", raw_payload or {}, event_id
        )
        await self.orders.add_note(audit_note(order, "BNA chargeback received", payload))
        self.events.append(
            ChargebackRecorded(
                order_id=order.order_id,
                transaction_token=order.transaction_token,
                reference_number=reference,
                amount=str(amount),
            )
        )
        return True

    async def add_rejection_note(self, order: Order, event_type: str, reason: str, payload: Optional[dict]) -> None:
        await self.orders.add_note(audit_note(order, f"BNA webhook {event_type} rejected: {reason}", payload))

    async def _record_transaction(
        self,
        transaction: Optional[Transaction],
        status: str,
        payload: dict,
        event_id: Optional[str],
    ) -> None:
        if transaction is None:
            return
        transaction.record(
            status,
            payload,
            event_id=event_id,
            reference_number=payload.get("reference_number"),
        )
        await self.transactions.update(transaction)

    def get_domain_events(self) -> List:
        events = self.events.copy()
        self.events.clear()
        return events
