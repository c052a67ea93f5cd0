"""
Order and transaction repositories on SQLAlchemy.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.payment.entity import Chargeback, Order, OrderNote, OrderStatus, Transaction
from domain.payment.exceptions import OrderNotFound
from domain.payment.repository import OrderRepository, TransactionRepository
from infrastructure.models.payment import OrderModel, OrderNoteModel, TransactionModel


def _chargeback_from_json(data: Optional[dict]) -> Optional[Chargeback]:
    if not data:
        return None
    return Chargeback(
        amount=Decimal(str(data["amount"])),
        reference=data.get("reference"),
        date=datetime.fromisoformat(data["date"]),
    )


class SQLAlchemyOrderRepository(OrderRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        return Order(
            order_id=model.order_id,
            status=OrderStatus(model.status),
            total=Decimal(str(model.total)),
            currency=model.currency,
            refunded_total=Decimal(str(model.refunded_total or 0)),
            chargeback=_chargeback_from_json(model.chargeback),
            paid_at=model.paid_at,
            transaction_token=model.transaction_token,
            updated_at=model.updated_at,
        )

    async def get(self, order_id: str) -> Optional[Order]:
        model = await self.session.get(OrderModel, order_id)
        return self._to_entity(model) if model else None

    async def get_for_update(self, order_id: str) -> Optional[Order]:
        """SELECT ... FOR UPDATE; the row stays locked until commit/rollback.

        SQLite ignores the clause; its engines start every transaction with
        ``BEGIN IMMEDIATE`` instead (see ``infrastructure.database``).
        """
        stmt = (
            select(OrderModel)
            .where(OrderModel.order_id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def save(self, order: Order) -> Order:
        model = await self.session.get(OrderModel, order.order_id)
        if model is None:
            model = OrderModel(order_id=order.order_id)
            self.session.add(model)
        model.status = order.status.value
        model.total = order.total
        model.currency = order.currency
        model.refunded_total = order.refunded_total
        model.transaction_token = order.transaction_token
        model.chargeback = order.chargeback.to_dict() if order.chargeback else None
        model.paid_at = order.paid_at
        if order.updated_at is not None:
            model.updated_at = order.updated_at
        await self.session.flush()
        return order

    async def add_note(self, note: OrderNote) -> None:
        self.session.add(
            OrderNoteModel(order_id=note.order_id, message=note.message, created_at=note.created_at)
        )
        await self.session.flush()

    async def list_notes(self, order_id: str) -> List[OrderNote]:
        stmt = (
            select(OrderNoteModel)
            .where(OrderNoteModel.order_id == order_id)
            .order_by(OrderNoteModel.id)
        )
        result = await self.session.execute(stmt)
        return [
            OrderNote(order_id=m.order_id, message=m.message, created_at=m.created_at)
            for m in result.scalars().all()
        ]


class SQLAlchemyTransactionRepository(TransactionRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: TransactionModel) -> Transaction:
        return Transaction(
            id=model.id,
            order_id=model.order_id,
            transaction_token=model.transaction_token,
            reference_number=model.reference_number,
            status=model.transaction_status,
            raw_payload=dict(model.transaction_description or {}),
            applied_event_ids=list(model.applied_event_ids or []),
            created_at=model.created_time,
            updated_at=model.updated_time,
        )

    def _apply(self, model: TransactionModel, entity: Transaction) -> None:
        model.order_id = entity.order_id
        model.transaction_token = entity.transaction_token
        model.reference_number = entity.reference_number
        model.transaction_status = entity.status
        # fresh containers so the JSON columns register as changed
        model.transaction_description = dict(entity.raw_payload)
        model.applied_event_ids = list(entity.applied_event_ids)
        model.updated_time = entity.updated_at

    async def add(self, transaction: Transaction) -> Transaction:
        model = TransactionModel(created_time=transaction.created_at)
        self._apply(model, transaction)
        self.session.add(model)
        await self.session.flush()
        transaction.id = model.id
        return transaction

    async def update(self, transaction: Transaction) -> Transaction:
        model = await self.session.get(TransactionModel, transaction.id)
        if model is None:
            raise OrderNotFound(transaction.transaction_token)
        self._apply(model, transaction)
        await self.session.flush()
        return transaction

    async def get_latest_for_order(self, order_id: str) -> Optional[Transaction]:
        stmt = (
            select(TransactionModel)
            .where(TransactionModel.order_id == order_id)
            .order_by(TransactionModel.created_time.desc(), TransactionModel.id.desc())
            .limit(1)
        )
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_latest_by_token(self, transaction_token: str) -> Optional[Transaction]:
        stmt = (
            select(TransactionModel)
            .where(TransactionModel.transaction_token == transaction_token)
            .order_by(TransactionModel.created_time.desc(), TransactionModel.id.desc())
            .limit(1)
        )
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        return self._to_entity(model) if model else None
