"""
Handler contract shared by every webhook event family.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from domain.webhook.envelope import EventEnvelope
from domain.webhook.result import HandlerResult


@runtime_checkable
class WebhookHandler(Protocol):
    """A unit of reconciliation logic reacting to one or more event types.

    `handle` must not raise: every failure is reported as a failed
    HandlerResult so the dispatcher can aggregate without exceptions.
    """

    name: str

    def event_types(self) -> frozenset[str]: ...

    def responsible_for(self, envelope: EventEnvelope) -> bool: ...

    async def handle(self, envelope: EventEnvelope) -> HandlerResult: ...
