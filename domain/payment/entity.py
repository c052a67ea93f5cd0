"""
Order and transaction entities plus the order status state machine rules.

The order itself belongs to the storefront; the bridge only reads it and
moves its status, notes and payment metadata forward.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from shared.codes.payment_codes import REMOTE_STATUS_TO_LOCAL
from .exceptions import InvalidTransition, RefundExceedsTotal, UnknownStatus


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    # set by the storefront once fulfilled; the bridge never moves into it
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


# Allowed target states per current state. Same-state moves are no-ops and
# are handled before this table is consulted.
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.PROCESSING, OrderStatus.FAILED, OrderStatus.CANCELLED}
    ),
    OrderStatus.FAILED: frozenset(
        {OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.CANCELLED}
    ),
    OrderStatus.PROCESSING: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.COMPLETED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

# States that already satisfy a target: a completed order is at least
# processing, and a late pending never regresses a settled order.
SATISFIES: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PROCESSING: frozenset({OrderStatus.PROCESSING, OrderStatus.COMPLETED}),
    OrderStatus.PENDING: frozenset(
        {
            OrderStatus.PENDING,
            OrderStatus.PROCESSING,
            OrderStatus.COMPLETED,
            OrderStatus.CANCELLED,
            OrderStatus.REFUNDED,
        }
    ),
}

PAID_STATES = frozenset({OrderStatus.PROCESSING, OrderStatus.COMPLETED})


def map_remote_status(remote_status: Optional[str]) -> OrderStatus:
    """Map a remote transaction status onto a local order status.

    Matching is case-insensitive and ignores surrounding whitespace. An
    unmapped value raises ``UnknownStatus``; there is no default state.
    """
    key = (remote_status or "").strip().lower()
    local = REMOTE_STATUS_TO_LOCAL.get(key)
    if local is None:
        raise UnknownStatus(remote_status or "")
    return OrderStatus(local)


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Chargeback:
    amount: Decimal
    reference: Optional[str]
    date: datetime

    def to_dict(self) -> dict:
        return {
            "amount": str(self.amount),
            "reference": self.reference,
            "date": self.date.isoformat(),
        }


@dataclass
class Order:
    """Storefront order as seen by the bridge."""

    order_id: str
    status: OrderStatus
    total: Decimal
    currency: str = "CAD"
    refunded_total: Decimal = field(default_factory=lambda: Decimal("0"))
    chargeback: Optional[Chargeback] = None
    paid_at: Optional[datetime] = None
    transaction_token: Optional[str] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.status, OrderStatus):
            self.status = OrderStatus(self.status)
        self.total = Decimal(str(self.total))
        self.refunded_total = Decimal(str(self.refunded_total or 0))
        self.paid_at = _ensure_utc(self.paid_at)
        self.updated_at = _ensure_utc(self.updated_at)

    def is_in(self, target: OrderStatus) -> bool:
        """True when the order already sits in (or past) ``target``."""
        return self.status in SATISFIES.get(target, frozenset({target}))

    def transition_to(self, target: OrderStatus) -> bool:
        """Move to ``target``.

        Returns False when the order already satisfies the target (the move
        is an idempotent no-op) and raises ``InvalidTransition`` when the
        move is not allowed from the current state.
        """
        if self.is_in(target):
            return False
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransition(self.order_id, self.status.value, target.value)
        self.status = target
        self.updated_at = _utcnow()
        if target == OrderStatus.PROCESSING and self.paid_at is None:
            self.paid_at = self.updated_at
        return True

    def apply_refund(self, amount: Decimal) -> bool:
        """Record a refund; returns True when the order is now fully refunded."""
        if amount <= 0:
            raise RefundExceedsTotal(
                f"Refund amount must be positive: {amount}",
                details={"order_id": self.order_id, "amount": str(amount)},
                field="refund_amount",
            )
        if amount > self.total:
            raise RefundExceedsTotal(
                f"Refund amount {amount} exceeds order total {self.total}",
                details={"order_id": self.order_id, "amount": str(amount), "total": str(self.total)},
                field="refund_amount",
            )
        full = amount >= self.total or self.refunded_total + amount >= self.total
        if full and OrderStatus.REFUNDED not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransition(self.order_id, self.status.value, OrderStatus.REFUNDED.value)
        self.refunded_total += amount
        if full:
            self.status = OrderStatus.REFUNDED
        self.updated_at = _utcnow()
        return full

    def flag_chargeback(self, amount: Decimal, reference: Optional[str]) -> Chargeback:
        self.chargeback = Chargeback(amount=amount, reference=reference, date=_utcnow())
        self.updated_at = self.chargeback.date
        return self.chargeback


@dataclass
class Transaction:
    """One payment attempt against an order; the newest row is authoritative."""

    id: Optional[int]
    order_id: str
    transaction_token: str
    reference_number: Optional[str] = None
    status: str = "pending"
    raw_payload: dict[str, Any] = field(default_factory=dict)
    applied_event_ids: list[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.created_at = _ensure_utc(self.created_at) or _utcnow()
        self.updated_at = _ensure_utc(self.updated_at) or self.created_at
        if self.raw_payload is None:
            self.raw_payload = {}
        if self.applied_event_ids is None:
            self.applied_event_ids = []

    def has_applied(self, event_id: Optional[str]) -> bool:
        return bool(event_id) and event_id in self.applied_event_ids

    def record(
        self,
        status: str,
        payload: Optional[dict] = None,
        *,
        event_id: Optional[str] = None,
        reference_number: Optional[str] = None,
    ) -> None:
        """Merge a remote payload into the audit record."""
        self.status = status
        if payload:
            self.raw_payload = {**self.raw_payload, **payload}
        if reference_number:
            self.reference_number = reference_number
        if event_id and event_id not in self.applied_event_ids:
            self.applied_event_ids.append(event_id)
        self.updated_at = _utcnow()


@dataclass
class OrderNote:
    order_id: str
    message: str
    created_at: datetime = field(default_factory=_utcnow)
