"""
Webhook/provider specific codes and the provider issue names the
reconciliation logic reacts to.
"""
from __future__ import annotations

from enum import IntEnum


class WebhookCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_TIMEOUT = 60003
    TOKEN_ERROR = 60005

    # Webhook intake errors (7xxxx)
    SIGNATURE_REJECTED = 70000
    MALFORMED_ENVELOPE = 70001
    HANDLER_FAILED = 70002


# Issue names returned by the provider in `details[].issue` of a 422 response.
# Defaults for the configurable sets in core.settings.CaptureSettings.
ALREADY_CAPTURED_ISSUES = frozenset({
    "AUTHORIZATION_ALREADY_CAPTURED",
    "ORDER_ALREADY_CAPTURED",
})

EXPIRED_AUTHORIZATION_ISSUES = frozenset({
    "AUTHORIZATION_EXPIRED",
})

VOIDED_AUTHORIZATION_ISSUES = frozenset({
    "AUTHORIZATION_VOIDED",
})

# Header names used by the provider for transmission signatures
TRANSMISSION_ID_HEADER = "paypal-transmission-id"
TRANSMISSION_TIME_HEADER = "paypal-transmission-time"
TRANSMISSION_SIG_HEADER = "paypal-transmission-sig"
CERT_URL_HEADER = "paypal-cert-url"
AUTH_ALGO_HEADER = "paypal-auth-algo"

REQUIRED_SIGNATURE_HEADERS = (
    TRANSMISSION_ID_HEADER,
    TRANSMISSION_TIME_HEADER,
    TRANSMISSION_SIG_HEADER,
    CERT_URL_HEADER,
    AUTH_ALGO_HEADER,
)
