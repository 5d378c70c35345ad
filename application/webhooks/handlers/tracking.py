"""
Shipment tracking updates recorded as order notes.
"""
from __future__ import annotations

from core.logging_config import get_logger
from domain.webhook.envelope import EventEnvelope, EventType
from domain.webhook.result import HandlerResult

from .base import BaseWebhookHandler

logger = get_logger(__name__)

TRACKING_STATUSES = frozenset({"SHIPPED", "ON_HOLD", "DELIVERED", "CANCELLED"})


class TrackingUpdated(BaseWebhookHandler):
    EVENT_TYPES = (EventType.TRACKING_UPDATED,)

    async def process(self, envelope: EventEnvelope) -> HandlerResult:
        resource = envelope.resource
        status = str(resource.get("status") or "").upper()
        if status not in TRACKING_STATUSES:
            logger.warning("tracking_unknown_status", status=status)
            return HandlerResult.noop_result("Unsupported tracking status", status=status)

        tracking_number = resource.get("tracking_number")
        if not tracking_number:
            return HandlerResult.noop_result("Tracking number missing")

        order = await self.find_order(order_ref=resource.get("invoice_id") or resource.get("custom_id"))
        if order is None:
            logger.warning("tracking_order_not_found", tracking_number=tracking_number)
            return HandlerResult.noop_result("No local order for this tracker")

        carrier = resource.get("carrier") or "OTHER"
        note = f"Tracking {tracking_number} ({carrier}): {status}."
        if note in order.notes:
            return HandlerResult.noop_result("Tracking update already recorded", order_id=order.id)

        await self.state.append_order_note(order.id, note)
        logger.info("tracking_recorded", order_id=order.id, status=status)
        return HandlerResult.ok("Tracking recorded", order_id=order.id, status=status)
