from .dispatcher import WebhookDispatcher
from .registry import HandlerRegistry

__all__ = ["HandlerRegistry", "WebhookDispatcher"]
