"""
Webhook handlers, one module per event family.
"""
from typing import Iterable, Optional

from application.ports.local_state import LocalStateAdapter
from application.ports.provider_api import ProviderApi
from application.services.authorized_payments import AuthorizedPaymentsProcessor

from ..registry import HandlerRegistry
from .base import BaseWebhookHandler
from .billing_subscription import BillingSubscriptionStatusChanged
from .dispute import CustomerDisputeCreated
from .payment_authorization import PaymentAuthorizationVoided
from .payment_capture import PaymentCaptureCompleted, PaymentCaptureRefunded
from .tracking import TrackingUpdated
from .vault_payment_token_created import VaultPaymentTokenCreated


def register_default_handlers(
    registry: HandlerRegistry,
    *,
    state: LocalStateAdapter,
    api: ProviderApi,
    processor: AuthorizedPaymentsProcessor,
    customer_prefix: str = "",
    tracking_event_types: Optional[Iterable[str]] = None,
) -> HandlerRegistry:
    handlers: list[BaseWebhookHandler] = [
        VaultPaymentTokenCreated(state, processor, customer_prefix=customer_prefix),
        PaymentCaptureCompleted(state, api),
        PaymentCaptureRefunded(state),
        PaymentAuthorizationVoided(state),
        BillingSubscriptionStatusChanged(state),
        CustomerDisputeCreated(state),
        TrackingUpdated(state, event_types=tracking_event_types),
    ]
    for handler in handlers:
        registry.register(handler.event_types(), handler)
    return registry


__all__ = [
    "BaseWebhookHandler",
    "BillingSubscriptionStatusChanged",
    "CustomerDisputeCreated",
    "PaymentAuthorizationVoided",
    "PaymentCaptureCompleted",
    "PaymentCaptureRefunded",
    "TrackingUpdated",
    "VaultPaymentTokenCreated",
    "register_default_handlers",
]
