"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import (
    CustomerModel,
    OrderModel,
    OrderNoteModel,
    OrderRefundModel,
    PaymentInstrumentModel,
)

__all__ = [
    "Base",
    "metadata",
    "CustomerModel",
    "OrderModel",
    "OrderNoteModel",
    "OrderRefundModel",
    "PaymentInstrumentModel",
]
