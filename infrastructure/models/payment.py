"""
Order / note / BNA transaction ORM models.

Table mappings only; the rules live in ``domain.payment.entity``.
"""
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderModel(Base):
    """Storefront order columns the bridge reads and updates."""

    __tablename__ = "bna_orders"

    order_id = Column(String(100), primary_key=True)
    status = Column(String(32), nullable=False, default="pending", index=True)
    total = Column(Numeric(precision=15, scale=2), nullable=False)
    currency = Column(String(3), nullable=False, default="CAD")
    refunded_total = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    transaction_token = Column(String(255), nullable=True, index=True)
    chargeback = Column(JSON, nullable=True, comment="{amount, date, reference}")
    paid_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)


class OrderNoteModel(Base):
    __tablename__ = "bna_order_notes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(100), ForeignKey("bna_orders.order_id"), nullable=False, index=True)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class TransactionModel(Base):
    __tablename__ = "bna_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(100), ForeignKey("bna_orders.order_id"), nullable=False, index=True)
    transaction_token = Column(String(255), nullable=False, index=True)
    reference_number = Column(String(100), nullable=True)
    transaction_status = Column(String(32), nullable=False, default="pending")
    transaction_description = Column(JSON, nullable=False, default=dict, comment="merged remote payloads")
    applied_event_ids = Column(JSON, nullable=False, default=list)
    created_time = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_time = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_bna_transactions_order_created", "order_id", "created_time"),
    )
