"""
CUSTOMER.DISPUTE.CREATED: hold the disputed orders.
"""
from __future__ import annotations

from typing import Mapping

from core.logging_config import get_logger
from domain.order.entity import OrderStatus
from domain.webhook.envelope import EventEnvelope, EventType
from domain.webhook.result import HandlerResult

from .base import BaseWebhookHandler, as_local_id

logger = get_logger(__name__)


class CustomerDisputeCreated(BaseWebhookHandler):
    EVENT_TYPES = (EventType.CUSTOMER_DISPUTE_CREATED,)

    async def process(self, envelope: EventEnvelope) -> HandlerResult:
        resource = envelope.resource
        dispute_id = resource.get("dispute_id") or resource.get("id")
        reason = resource.get("reason") or "UNSPECIFIED"
        transactions = resource.get("disputed_transactions") or []

        touched: list[int] = []
        for tx in transactions:
            if not isinstance(tx, Mapping):
                continue
            local_id = as_local_id(tx.get("custom") or tx.get("invoice_number"))
            order = await self.state.get_order(local_id) if local_id is not None else None
            if order is None:
                continue

            note = f"Dispute {dispute_id} opened: {reason}."
            if order.status == OrderStatus.ON_HOLD and note in order.notes:
                continue
            if order.status != OrderStatus.ON_HOLD:
                await self.state.update_order_status(order.id, OrderStatus.ON_HOLD)
            if note not in order.notes:
                await self.state.append_order_note(order.id, note)
            touched.append(order.id)

        if not touched:
            logger.warning("dispute_no_local_order", dispute_id=dispute_id)
            return HandlerResult.noop_result("No local order to hold", dispute_id=dispute_id)
        logger.info("dispute_orders_held", dispute_id=dispute_id, orders=touched)
        return HandlerResult.ok("Orders put on hold", dispute_id=dispute_id, orders=touched)
