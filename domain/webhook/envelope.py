"""
Webhook event envelope.

The envelope is the normalized, immutable view of one inbound notification.
It is built once per request and only ever read by handlers.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from domain.common.exceptions import MalformedEnvelopeException


class EventType(str, Enum):
    """Event tags the reconciler knows about.

    Unknown tags are still accepted by the envelope as plain strings; a tag
    becomes routable only when a handler registers for it.
    """

    PAYMENT_CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"
    PAYMENT_CAPTURE_REFUNDED = "PAYMENT.CAPTURE.REFUNDED"
    PAYMENT_CAPTURE_REVERSED = "PAYMENT.CAPTURE.REVERSED"
    PAYMENT_AUTHORIZATION_VOIDED = "PAYMENT.AUTHORIZATION.VOIDED"
    VAULT_PAYMENT_TOKEN_CREATED = "VAULT.PAYMENT-TOKEN.CREATED"
    BILLING_SUBSCRIPTION_ACTIVATED = "BILLING.SUBSCRIPTION.ACTIVATED"
    BILLING_SUBSCRIPTION_SUSPENDED = "BILLING.SUBSCRIPTION.SUSPENDED"
    BILLING_SUBSCRIPTION_CANCELLED = "BILLING.SUBSCRIPTION.CANCELLED"
    CUSTOMER_DISPUTE_CREATED = "CUSTOMER.DISPUTE.CREATED"
    TRACKING_UPDATED = "CHECKOUT.ORDER.TRACKING-UPDATED"


def normalize_event_type(value: str | EventType) -> str:
    if isinstance(value, EventType):
        return value.value
    return str(value).strip().upper()


def parse_body(raw_body: bytes) -> dict[str, Any]:
    """Decode the raw request body into a JSON object."""
    try:
        payload = json.loads(raw_body or b"")
    except (TypeError, ValueError) as exc:
        raise MalformedEnvelopeException("Webhook body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise MalformedEnvelopeException("Webhook body must be a JSON object")
    return payload


def peek_event_type(payload: Mapping[str, Any]) -> Optional[str]:
    """Read the event type without validating the rest of the payload."""
    value = payload.get("event_type")
    if not isinstance(value, str) or not value.strip():
        return None
    return normalize_event_type(value)


def freeze(value: Any) -> Any:
    """Read-only deep copy of decoded JSON: mappings become proxies, lists become tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


@dataclass(frozen=True)
class EventEnvelope:
    id: str
    event_type: str
    resource: Mapping[str, Any]
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    resource_type: Optional[str] = None
    summary: Optional[str] = None
    create_time: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "resource", freeze(self.resource))

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        *,
        received_at: Optional[datetime] = None,
    ) -> "EventEnvelope":
        event_id = payload.get("id")
        if not isinstance(event_id, str) or not event_id.strip():
            raise MalformedEnvelopeException("Webhook event id is missing", field="id")
        event_type = peek_event_type(payload)
        if event_type is None:
            raise MalformedEnvelopeException("Webhook event type is missing", field="event_type")
        resource = payload.get("resource")
        if resource is None:
            resource = {}
        if not isinstance(resource, Mapping):
            raise MalformedEnvelopeException("Webhook resource must be an object", field="resource")
        return cls(
            id=event_id.strip(),
            event_type=event_type,
            resource=resource,
            received_at=received_at or datetime.now(timezone.utc),
            resource_type=payload.get("resource_type"),
            summary=payload.get("summary"),
            create_time=payload.get("create_time"),
        )

    def is_a(self, *event_types: str | EventType) -> bool:
        return self.event_type in {normalize_event_type(t) for t in event_types}
