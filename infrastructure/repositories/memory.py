"""
In-process order store.

Used when no database is configured and by the test-suite. Mirrors the
SQLAlchemy unit of work: writes are staged on copies and published on
commit, and ``get_for_update`` holds a per-order lock until the unit of
work exits.
"""
from __future__ import annotations

import asyncio
import copy
from typing import Dict, List, Optional

from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Order, OrderNote, Transaction
from domain.payment.exceptions import OrderNotFound
from domain.payment.repository import OrderRepository, TransactionRepository


class InMemoryDatabase:
    """Committed state shared by every unit of work."""

    def __init__(self) -> None:
        self.orders: Dict[str, Order] = {}
        self.notes: Dict[str, List[OrderNote]] = {}
        self.transactions: Dict[int, Transaction] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._next_id = 1

    def add_order(self, order: Order) -> Order:
        self.orders[order.order_id] = copy.deepcopy(order)
        return order

    async def acquire_order(self, order_id: str) -> None:
        lock = self._locks.setdefault(order_id, asyncio.Lock())
        self._lock_users[order_id] = self._lock_users.get(order_id, 0) + 1
        try:
            await lock.acquire()
        except asyncio.CancelledError:
            self._forget_lock(order_id)
            raise

    def release_order(self, order_id: str) -> None:
        self._locks[order_id].release()
        self._forget_lock(order_id)

    def _forget_lock(self, order_id: str) -> None:
        users = self._lock_users[order_id] - 1
        if users:
            self._lock_users[order_id] = users
        else:
            del self._lock_users[order_id]
            del self._locks[order_id]

    @property
    def lock_count(self) -> int:
        return len(self._locks)

    def next_id(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value

    def uow_factory(self):
        def factory(*, readonly: bool = False) -> "InMemoryUnitOfWork":
            return InMemoryUnitOfWork(self, readonly=readonly)

        return factory


class InMemoryOrderRepository(OrderRepository):

    def __init__(self, db: InMemoryDatabase, uow: "InMemoryUnitOfWork"):
        self._db = db
        self._uow = uow

    async def get(self, order_id: str) -> Optional[Order]:
        staged = self._uow.staged_orders.get(order_id)
        if staged is not None:
            return copy.deepcopy(staged)
        order = self._db.orders.get(order_id)
        return copy.deepcopy(order) if order else None

    async def get_for_update(self, order_id: str) -> Optional[Order]:
        await self._uow.acquire(order_id)
        return await self.get(order_id)

    async def save(self, order: Order) -> Order:
        self._uow.staged_orders[order.order_id] = copy.deepcopy(order)
        return order

    async def add_note(self, note: OrderNote) -> None:
        self._uow.staged_notes.append(copy.deepcopy(note))

    async def list_notes(self, order_id: str) -> List[OrderNote]:
        notes = list(self._db.notes.get(order_id, []))
        notes.extend(n for n in self._uow.staged_notes if n.order_id == order_id)
        return copy.deepcopy(notes)


class InMemoryTransactionRepository(TransactionRepository):

    def __init__(self, db: InMemoryDatabase, uow: "InMemoryUnitOfWork"):
        self._db = db
        self._uow = uow

    def _visible(self) -> List[Transaction]:
        merged = dict(self._db.transactions)
        merged.update(self._uow.staged_transactions)
        return list(merged.values())

    async def add(self, transaction: Transaction) -> Transaction:
        transaction.id = self._db.next_id()
        self._uow.staged_transactions[transaction.id] = copy.deepcopy(transaction)
        return transaction

    async def update(self, transaction: Transaction) -> Transaction:
        known = transaction.id in self._db.transactions or transaction.id in self._uow.staged_transactions
        if transaction.id is None or not known:
            raise OrderNotFound(transaction.transaction_token)
        self._uow.staged_transactions[transaction.id] = copy.deepcopy(transaction)
        return transaction

    def _latest(self, rows: List[Transaction]) -> Optional[Transaction]:
        if not rows:
            return None
        latest = max(rows, key=lambda t: (t.created_at, t.id or 0))
        return copy.deepcopy(latest)

    async def get_latest_for_order(self, order_id: str) -> Optional[Transaction]:
        return self._latest([t for t in self._visible() if t.order_id == order_id])

    async def get_latest_by_token(self, transaction_token: str) -> Optional[Transaction]:
        return self._latest([t for t in self._visible() if t.transaction_token == transaction_token])


class InMemoryUnitOfWork(AbstractUnitOfWork):

    def __init__(self, db: InMemoryDatabase, *, readonly: bool = False) -> None:
        super().__init__(readonly=readonly)
        self._db = db
        self._held: List[str] = []
        self.staged_orders: Dict[str, Order] = {}
        self.staged_notes: List[OrderNote] = []
        self.staged_transactions: Dict[int, Transaction] = {}

    async def __aenter__(self) -> "InMemoryUnitOfWork":
        self.orders = InMemoryOrderRepository(self._db, self)
        self.transactions = InMemoryTransactionRepository(self._db, self)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            for order_id in reversed(self._held):
                self._db.release_order(order_id)
            self._held.clear()

    async def acquire(self, order_id: str) -> None:
        if order_id in self._held:
            return
        await self._db.acquire_order(order_id)
        self._held.append(order_id)

    def _reset(self) -> None:
        self.staged_orders = {}
        self.staged_notes = []
        self.staged_transactions = {}

    async def commit(self) -> None:
        if not self._readonly:
            self._db.orders.update(self.staged_orders)
            for note in self.staged_notes:
                self._db.notes.setdefault(note.order_id, []).append(note)
            self._db.transactions.update(self.staged_transactions)
        self._reset()
        self._committed = True

    async def rollback(self) -> None:
        self._reset()
        self._committed = False
