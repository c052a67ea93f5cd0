"""
Order payment domain events.

Collected by the order status service and handed to the application layer
after the unit of work commits; the domain itself never publishes them.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


@dataclass
class OrderPaymentEvent:
    order_id: str
    transaction_token: Optional[str] = None
    reference_number: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class OrderStatusChanged(OrderPaymentEvent):
    previous: str = ""
    current: str = ""


@dataclass
class PaymentCompleted(OrderPaymentEvent):
    pass


@dataclass
class RefundRecorded(OrderPaymentEvent):
    amount: str = ""
    full: bool = False


@dataclass
class ChargebackRecorded(OrderPaymentEvent):
    amount: str = ""
