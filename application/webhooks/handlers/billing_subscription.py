"""
BILLING.SUBSCRIPTION.* status changes mirrored onto the subscription order.
"""
from __future__ import annotations

from core.logging_config import get_logger
from domain.order.entity import SubscriptionStatus
from domain.webhook.envelope import EventEnvelope, EventType
from domain.webhook.result import HandlerResult

from .base import BaseWebhookHandler

logger = get_logger(__name__)

_TARGET_STATUS = {
    EventType.BILLING_SUBSCRIPTION_ACTIVATED.value: SubscriptionStatus.ACTIVE,
    EventType.BILLING_SUBSCRIPTION_SUSPENDED.value: SubscriptionStatus.SUSPENDED,
    EventType.BILLING_SUBSCRIPTION_CANCELLED.value: SubscriptionStatus.CANCELLED,
}


class BillingSubscriptionStatusChanged(BaseWebhookHandler):
    EVENT_TYPES = tuple(_TARGET_STATUS)

    async def process(self, envelope: EventEnvelope) -> HandlerResult:
        subscription_id = envelope.resource.get("id")
        if not isinstance(subscription_id, str) or not subscription_id:
            logger.warning("subscription_missing_id")
            return HandlerResult.noop_result("Subscription id missing")

        order = await self.state.find_order(subscription_id=subscription_id)
        if order is None:
            logger.warning("subscription_order_not_found", subscription_id=subscription_id)
            return HandlerResult.noop_result("No local order for this subscription")

        target = _TARGET_STATUS[envelope.event_type]
        if order.subscription_status == target:
            return HandlerResult.noop_result("Subscription status unchanged", order_id=order.id)

        await self.state.update_subscription_status(order.id, target)
        await self.state.append_order_note(order.id, f"Subscription {subscription_id} is now {target.value}.")
        logger.info("subscription_status_changed", order_id=order.id, status=target.value)
        return HandlerResult.ok("Subscription status updated", order_id=order.id, status=target.value)
