"""
Event guard port: serializes concurrent deliveries of one event id and
remembers which events were fully processed.
"""
from __future__ import annotations

from typing import AsyncContextManager, Protocol, runtime_checkable


@runtime_checkable
class EventGuard(Protocol):
    def hold(self, event_id: str) -> AsyncContextManager[None]:
        """Exclusive section for one event id (other deliveries wait)."""
        ...

    async def is_processed(self, event_id: str) -> bool: ...

    async def mark_processed(self, event_id: str) -> None: ...
