"""
Base class for webhook handlers.

`handle` is the exception boundary: whatever `process` raises is logged and
turned into a failed HandlerResult so the event is redelivered.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable, Mapping, Optional

from application.ports.local_state import LocalStateAdapter
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from domain.order.entity import Order
from domain.webhook.envelope import EventEnvelope, EventType, normalize_event_type
from domain.webhook.result import HandlerResult

logger = get_logger(__name__)


class BaseWebhookHandler(ABC):
    #: event tags this handler reacts to
    EVENT_TYPES: Iterable[str | EventType] = ()

    def __init__(self, state: LocalStateAdapter, *, event_types: Optional[Iterable[str | EventType]] = None):
        self.state = state
        self.name = type(self).__name__
        self._event_types = frozenset(
            normalize_event_type(t) for t in (event_types if event_types is not None else self.EVENT_TYPES)
        )

    def event_types(self) -> frozenset[str]:
        return self._event_types

    def responsible_for(self, envelope: EventEnvelope) -> bool:
        return envelope.event_type in self._event_types

    async def handle(self, envelope: EventEnvelope) -> HandlerResult:
        try:
            return await self.process(envelope)
        except BusinessException as exc:
            logger.error("webhook_handler_error", handler=self.name, code=exc.code, error=exc.message)
            return HandlerResult.failed(exc.message, code=int(exc.code))
        except Exception as exc:
            logger.error("webhook_handler_error", handler=self.name, error=str(exc), exc_info=True)
            return HandlerResult.failed(f"Unexpected error: {type(exc).__name__}")

    @abstractmethod
    async def process(self, envelope: EventEnvelope) -> HandlerResult:
        ...

    async def find_order(
        self,
        *,
        order_ref: Any = None,
        provider_order_id: Optional[str] = None,
    ) -> Optional[Order]:
        """Locate a local order by provider order id, then by local id (`custom_id`/invoice)."""
        if provider_order_id:
            order = await self.state.find_order(provider_order_id=provider_order_id)
            if order is not None:
                return order
        local_id = as_local_id(order_ref)
        if local_id is not None:
            return await self.state.get_order(local_id)
        return None


def as_local_id(value: Any) -> Optional[int]:
    """Local order ids travel as decimal strings in custom_id / invoice_id."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value if value > 0 else None
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not (value.isascii() and value.isdigit()):
        return None
    local_id = int(value)
    return local_id if local_id > 0 else None


def dig(mapping: Mapping[str, Any], *path: str) -> Any:
    """Nested lookup that returns None on any missing or non-mapping step."""
    current: Any = mapping
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current
