"""
Handler registry: the single extension point through which feature modules
subscribe to webhook event types.
"""
from __future__ import annotations

from typing import Iterable

from core.logging_config import get_logger
from domain.webhook.envelope import EventEnvelope, EventType, normalize_event_type
from domain.webhook.handler import WebhookHandler

logger = get_logger(__name__)


class HandlerRegistry:
    def __init__(self) -> None:
        self._entries: list[tuple[frozenset[str], WebhookHandler]] = []
        self._exempt: set[str] = set()

    def register(self, event_types: Iterable[str | EventType], handler: WebhookHandler) -> None:
        types = frozenset(normalize_event_type(t) for t in event_types)
        if not types:
            raise ValueError("A handler must be registered for at least one event type")
        self._entries.append((types, handler))
        logger.debug("webhook_handler_registered", handler=handler.name, event_types=sorted(types))

    def handlers_for(self, envelope: EventEnvelope) -> list[WebhookHandler]:
        """Responsible handlers in registration order."""
        return [
            handler
            for types, handler in self._entries
            if envelope.event_type in types and handler.responsible_for(envelope)
        ]

    def exempt_from_verification(self, event_types: Iterable[str | EventType]) -> None:
        self._exempt.update(normalize_event_type(t) for t in event_types)

    def requires_verification(self, event_type: str | None) -> bool:
        if event_type is None:
            return True
        return normalize_event_type(event_type) not in self._exempt

    @property
    def registered_event_types(self) -> frozenset[str]:
        return frozenset().union(*(types for types, _ in self._entries))

    def __len__(self) -> int:
        return len(self._entries)
