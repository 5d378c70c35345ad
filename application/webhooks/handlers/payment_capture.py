"""
PAYMENT.CAPTURE.* handlers: completed captures and refunds/reversals.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from application.ports.local_state import LocalStateAdapter
from application.ports.provider_api import ProviderApi, ProviderApiError
from core.logging_config import get_logger
from domain.order.entity import AuthorizationStatus, Order, OrderStatus
from domain.webhook.envelope import EventEnvelope, EventType
from domain.webhook.result import HandlerResult

from .base import BaseWebhookHandler, as_local_id, dig

logger = get_logger(__name__)


def _amount(resource: Mapping[str, Any]) -> tuple[Optional[Decimal], str]:
    amount = resource.get("amount")
    if not isinstance(amount, Mapping):
        return None, ""
    try:
        value = Decimal(str(amount.get("value")))
    except InvalidOperation:
        return None, ""
    if not value.is_finite():
        return None, ""
    return value, str(amount.get("currency_code") or "")


class PaymentCaptureCompleted(BaseWebhookHandler):
    EVENT_TYPES = (EventType.PAYMENT_CAPTURE_COMPLETED,)

    def __init__(self, state: LocalStateAdapter, api: Optional[ProviderApi] = None):
        super().__init__(state)
        self._api = api

    async def process(self, envelope: EventEnvelope) -> HandlerResult:
        resource = envelope.resource
        capture_id = resource.get("id")
        provider_order_id = dig(resource, "supplementary_data", "related_ids", "order_id")

        order = await self.find_order(order_ref=resource.get("custom_id"), provider_order_id=provider_order_id)
        if order is None and provider_order_id:
            order = await self._order_from_provider(provider_order_id)
        if order is None:
            logger.warning("capture_completed_order_not_found", capture_id=capture_id,
                           provider_order_id=provider_order_id)
            return HandlerResult.noop_result("No local order for this capture")

        if order.is_paid:
            return HandlerResult.noop_result("Order already paid", order_id=order.id)

        if order.authorization is not None and order.authorization.status != AuthorizationStatus.CAPTURED:
            await self.state.update_authorization_status(order.id, AuthorizationStatus.CAPTURED, capture_id)
        await self.state.update_order_status(order.id, OrderStatus.PROCESSING)

        value, currency = _amount(resource)
        amount = f"{value} {currency or order.currency}" if value is not None else "unknown amount"
        await self.state.append_order_note(order.id, f"Payment captured. Capture ID: {capture_id}. Amount: {amount}.")
        logger.info("capture_completed_applied", order_id=order.id, capture_id=capture_id)
        return HandlerResult.ok("Order marked as paid", order_id=order.id, capture_id=capture_id)

    async def _order_from_provider(self, provider_order_id: str) -> Optional[Order]:
        if self._api is None:
            return None
        try:
            remote = await self._api.get_order(provider_order_id)
        except ProviderApiError as exc:
            if exc.status_code == 404:
                return None
            raise
        units = remote.get("purchase_units") or []
        if not units or not isinstance(units[0], Mapping):
            return None
        local_id = as_local_id(units[0].get("custom_id") or units[0].get("invoice_id"))
        if local_id is None:
            return None
        return await self.state.get_order(local_id)


class PaymentCaptureRefunded(BaseWebhookHandler):
    """Refunds and reversals; both hand back money for a capture."""

    EVENT_TYPES = (EventType.PAYMENT_CAPTURE_REFUNDED, EventType.PAYMENT_CAPTURE_REVERSED)

    async def process(self, envelope: EventEnvelope) -> HandlerResult:
        resource = envelope.resource
        refund_id = resource.get("id")
        if not isinstance(refund_id, str) or not refund_id:
            logger.warning("refund_missing_id")
            return HandlerResult.noop_result("Refund id missing")

        order = await self.find_order(order_ref=resource.get("custom_id") or resource.get("invoice_id"))
        if order is None:
            logger.warning("refund_order_not_found", refund_id=refund_id)
            return HandlerResult.noop_result("No local order for this refund")

        value, currency = _amount(resource)
        if value is None:
            logger.warning("refund_missing_amount", refund_id=refund_id, order_id=order.id)
            return HandlerResult.noop_result("Refund amount missing", order_id=order.id)

        if order.has_refund(refund_id):
            return HandlerResult.noop_result("Refund already recorded", order_id=order.id)

        # the refund id is recorded last so a redelivery after a failed write
        # finishes the status and the note
        reversed_ = envelope.is_a(EventType.PAYMENT_CAPTURE_REVERSED)
        if value >= order.total and order.status != OrderStatus.REFUNDED:
            await self.state.update_order_status(order.id, OrderStatus.REFUNDED)

        label = "Payment reversed" if reversed_ else "Refund"
        note = f"{label} {refund_id}: {value} {currency or order.currency}."
        if note not in order.notes:
            await self.state.append_order_note(order.id, note)

        if not await self.state.record_refund(order.id, refund_id, value):
            return HandlerResult.noop_result("Refund already recorded", order_id=order.id)
        logger.info("refund_recorded", order_id=order.id, refund_id=refund_id, reversed=reversed_)
        return HandlerResult.ok("Refund recorded", order_id=order.id, refund_id=refund_id)
