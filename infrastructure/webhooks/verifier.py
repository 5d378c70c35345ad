"""
Webhook signature verification delegated to the provider's
verify-webhook-signature endpoint.
"""
from __future__ import annotations

import json
from typing import Mapping, Optional

from application.ports.provider_api import ProviderApi, ProviderApiError
from application.ports.signature import RejectionReason, VerificationResult
from core.logging_config import get_logger
from shared.codes.webhook_codes import (
    AUTH_ALGO_HEADER,
    CERT_URL_HEADER,
    REQUIRED_SIGNATURE_HEADERS,
    TRANSMISSION_ID_HEADER,
    TRANSMISSION_SIG_HEADER,
    TRANSMISSION_TIME_HEADER,
)

logger = get_logger(__name__)


class ProviderSignatureVerifier:
    def __init__(self, api: ProviderApi):
        self._api = api

    async def verify(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
        webhook_id: Optional[str],
    ) -> VerificationResult:
        normalized = {str(k).lower(): v for k, v in headers.items()}
        missing = [h for h in REQUIRED_SIGNATURE_HEADERS if not normalized.get(h)]
        if missing:
            return VerificationResult.rejected(RejectionReason.MISSING_HEADERS, ",".join(missing))

        if not webhook_id:
            return VerificationResult.rejected(RejectionReason.NOT_CONFIGURED, "webhook id is not configured")

        try:
            event = json.loads(raw_body or b"")
        except (TypeError, ValueError):
            return VerificationResult.rejected(RejectionReason.MALFORMED_BODY, "body is not JSON")

        verification = {
            "auth_algo": normalized[AUTH_ALGO_HEADER],
            "cert_url": normalized[CERT_URL_HEADER],
            "transmission_id": normalized[TRANSMISSION_ID_HEADER],
            "transmission_sig": normalized[TRANSMISSION_SIG_HEADER],
            "transmission_time": normalized[TRANSMISSION_TIME_HEADER],
            "webhook_id": webhook_id,
            "webhook_event": event,
        }

        try:
            answer = await self._api.verify_webhook_signature(verification)
        except ProviderApiError as exc:
            logger.warning(
                "webhook_verification_call_failed",
                status_code=exc.status_code,
                debug_id=exc.debug_id,
                error=exc.message,
            )
            return VerificationResult.rejected(RejectionReason.TRANSPORT_ERROR, exc.message)

        status = answer.get("verification_status")
        if status != "SUCCESS":
            return VerificationResult.rejected(
                RejectionReason.SIGNATURE_MISMATCH, f"verification_status={status}"
            )
        return VerificationResult.accepted()
