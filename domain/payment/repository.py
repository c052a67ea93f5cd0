"""
Repository ports for orders and BNA transactions.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import Order, OrderNote, Transaction


class OrderRepository(ABC):
    """Narrow view of the storefront's order store."""

    @abstractmethod
    async def get(self, order_id: str) -> Optional[Order]:
        """Read an order without locking it."""

    @abstractmethod
    async def get_for_update(self, order_id: str) -> Optional[Order]:
        """Read an order and hold it exclusively until the unit of work ends."""

    @abstractmethod
    async def save(self, order: Order) -> Order:
        pass

    @abstractmethod
    async def add_note(self, note: OrderNote) -> None:
        pass

    @abstractmethod
    async def list_notes(self, order_id: str) -> List[OrderNote]:
        pass


class TransactionRepository(ABC):

    @abstractmethod
    async def add(self, transaction: Transaction) -> Transaction:
        pass

    @abstractmethod
    async def update(self, transaction: Transaction) -> Transaction:
        pass

    @abstractmethod
    async def get_latest_for_order(self, order_id: str) -> Optional[Transaction]:
        """Most recently created row, the authoritative one."""

    @abstractmethod
    async def get_latest_by_token(self, transaction_token: str) -> Optional[Transaction]:
        pass
