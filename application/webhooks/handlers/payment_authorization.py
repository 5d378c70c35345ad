"""
PAYMENT.AUTHORIZATION.VOIDED
"""
from __future__ import annotations

from core.logging_config import get_logger
from domain.order.entity import PAID_STATUSES, AuthorizationStatus, OrderStatus
from domain.webhook.envelope import EventEnvelope, EventType
from domain.webhook.result import HandlerResult

from .base import BaseWebhookHandler, dig

logger = get_logger(__name__)


class PaymentAuthorizationVoided(BaseWebhookHandler):
    EVENT_TYPES = (EventType.PAYMENT_AUTHORIZATION_VOIDED,)

    async def process(self, envelope: EventEnvelope) -> HandlerResult:
        resource = envelope.resource
        authorization_id = resource.get("id")
        order = await self.find_order(
            order_ref=resource.get("custom_id") or resource.get("invoice_id"),
            provider_order_id=dig(resource, "supplementary_data", "related_ids", "order_id"),
        )
        if order is None or order.authorization is None:
            logger.warning("authorization_voided_order_not_found", authorization_id=authorization_id)
            return HandlerResult.noop_result("No local authorization for this event")

        auth = order.authorization
        if auth.status == AuthorizationStatus.CAPTURED:
            return HandlerResult.noop_result("Authorization already captured", order_id=order.id)
        if auth.status == AuthorizationStatus.VOIDED:
            return HandlerResult.noop_result("Authorization already voided", order_id=order.id)

        await self.state.update_authorization_status(order.id, AuthorizationStatus.VOIDED)
        if order.status not in PAID_STATUSES and order.status != OrderStatus.CANCELLED:
            await self.state.update_order_status(order.id, OrderStatus.CANCELLED)
        await self.state.append_order_note(order.id, f"Authorization {auth.authorization_id} was voided.")
        logger.info("authorization_voided", order_id=order.id, authorization_id=auth.authorization_id)
        return HandlerResult.ok("Authorization voided", order_id=order.id)
