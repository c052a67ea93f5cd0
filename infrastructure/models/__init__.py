"""Infrastructure models package exports."""
from .base import Base, metadata
from .payment import OrderModel, OrderNoteModel, TransactionModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "OrderNoteModel",
    "TransactionModel",
]
