"""
Local state port (application/ports): the narrow read/write contract to the
host order/customer store.

The reconciler never owns the store; infrastructure provides adapters
(in-memory, SQLAlchemy) and the composition root injects one.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

from domain.customer.entity import PaymentInstrument
from domain.order.entity import (
    AuthorizationStatus,
    Order,
    OrderStatus,
    SubscriptionStatus,
)


@runtime_checkable
class LocalStateAdapter(Protocol):
    """Async contract over the host store.

    Writes must be safe to repeat: saving an instrument with a token that is
    already stored for the customer updates it in place, and `record_refund`
    reports whether the refund id was new.
    """

    async def get_order(self, order_id: int) -> Optional[Order]: ...

    async def find_order(
        self,
        *,
        provider_order_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
    ) -> Optional[Order]: ...

    async def list_orders_for_customer(self, customer_id: int) -> list[Order]: ...

    async def update_order_status(self, order_id: int, status: OrderStatus) -> None: ...

    async def update_authorization_status(
        self,
        order_id: int,
        status: AuthorizationStatus,
        capture_id: Optional[str] = None,
    ) -> None: ...

    async def append_order_note(self, order_id: int, text: str) -> None: ...

    async def record_refund(self, order_id: int, refund_id: str, amount: Decimal) -> bool: ...

    async def update_subscription_status(self, order_id: int, status: SubscriptionStatus) -> None: ...

    async def get_customer_local_id(self, provider_customer_id: str) -> Optional[int]: ...

    async def save_payment_instrument(self, customer_id: int, instrument: PaymentInstrument) -> str: ...

    async def set_default_payment_instrument(self, customer_id: int, instrument_id: str) -> None: ...

    async def list_payment_instruments(self, customer_id: int) -> list[PaymentInstrument]: ...
