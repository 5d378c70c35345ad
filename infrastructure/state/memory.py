"""
In-memory local state adapter (development without a database, tests).

Methods contain no await points, so each call is atomic on the event loop.
Reads hand out copies; callers never mutate stored state by accident.
"""
from __future__ import annotations

import copy
import itertools
from dataclasses import replace
from decimal import Decimal
from typing import Optional

from domain.common.exceptions import DomainValidationException, OrderNotFoundException
from domain.customer.entity import PaymentInstrument
from domain.order.entity import AuthorizationStatus, Order, OrderStatus, SubscriptionStatus


class InMemoryLocalState:
    def __init__(self) -> None:
        self._orders: dict[int, Order] = {}
        self._customers: dict[str, int] = {}
        self._instruments: dict[tuple[int, str], PaymentInstrument] = {}
        self._refunds: dict[int, dict[str, Decimal]] = {}
        self._ids = itertools.count(1)

    # seeding helpers

    def add_order(self, order: Order) -> Order:
        self._orders[order.id] = copy.deepcopy(order)
        return order

    def link_customer(self, provider_customer_id: str, customer_id: int) -> None:
        self._customers[provider_customer_id] = customer_id

    def _order(self, order_id: int) -> Order:
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        return order

    # orders

    async def get_order(self, order_id: int) -> Optional[Order]:
        order = self._orders.get(order_id)
        return copy.deepcopy(order) if order is not None else None

    async def find_order(
        self,
        *,
        provider_order_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
    ) -> Optional[Order]:
        for order in self._orders.values():
            if provider_order_id and order.provider_order_id == provider_order_id:
                return copy.deepcopy(order)
            if subscription_id and order.subscription_id == subscription_id:
                return copy.deepcopy(order)
        return None

    async def list_orders_for_customer(self, customer_id: int) -> list[Order]:
        return [
            copy.deepcopy(o)
            for o in sorted(self._orders.values(), key=lambda o: o.id)
            if o.customer_id == customer_id
        ]

    async def update_order_status(self, order_id: int, status: OrderStatus) -> None:
        self._order(order_id).status = status

    async def update_authorization_status(
        self,
        order_id: int,
        status: AuthorizationStatus,
        capture_id: Optional[str] = None,
    ) -> None:
        order = self._order(order_id)
        if order.authorization is None:
            raise DomainValidationException("Order has no authorization", field="authorization")
        order.authorization = order.authorization.with_status(status, capture_id)

    async def append_order_note(self, order_id: int, text: str) -> None:
        self._order(order_id).notes.append(text)

    async def record_refund(self, order_id: int, refund_id: str, amount: Decimal) -> bool:
        order = self._order(order_id)
        refunds = self._refunds.setdefault(order_id, {})
        if refund_id in refunds:
            return False
        refunds[refund_id] = amount
        order.refund_ids = order.refund_ids + (refund_id,)
        return True

    async def update_subscription_status(self, order_id: int, status: SubscriptionStatus) -> None:
        self._order(order_id).subscription_status = status

    # customers

    async def get_customer_local_id(self, provider_customer_id: str) -> Optional[int]:
        return self._customers.get(provider_customer_id)

    async def save_payment_instrument(self, customer_id: int, instrument: PaymentInstrument) -> str:
        key = (customer_id, instrument.token)
        existing = self._instruments.get(key)
        if existing is not None:
            stored = replace(instrument, customer_id=customer_id, id=existing.id, is_default=existing.is_default)
        else:
            stored = replace(instrument, customer_id=customer_id, id=f"pi_{next(self._ids)}")
        self._instruments[key] = stored
        return stored.id

    async def set_default_payment_instrument(self, customer_id: int, instrument_id: str) -> None:
        owned = {k: v for k, v in self._instruments.items() if k[0] == customer_id}
        if not any(i.id == instrument_id for i in owned.values()):
            raise DomainValidationException("Unknown payment instrument", field="instrument_id")
        for key, instrument in owned.items():
            self._instruments[key] = replace(instrument, is_default=instrument.id == instrument_id)

    async def list_payment_instruments(self, customer_id: int) -> list[PaymentInstrument]:
        return [i for (cid, _), i in self._instruments.items() if cid == customer_id]
