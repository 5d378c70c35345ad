"""
Typed facade over the provider endpoints used by the reconciler.
"""
from __future__ import annotations

from typing import Any, Optional
from urllib.parse import quote

from application.ports.provider_api import ProviderApiError
from core.logging_config import get_logger

from .client import AuthorizedClient

logger = get_logger(__name__)


class PayPalApi:
    def __init__(self, client: AuthorizedClient, environment: str):
        self._client = client
        self.environment = environment

    async def capture_authorization(
        self,
        authorization_id: str,
        *,
        invoice_id: Optional[str] = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"final_capture": True}
        if invoice_id:
            body["invoice_id"] = invoice_id
        response = await self._client.authorized_request(
            "POST",
            f"/v2/payments/authorizations/{quote(authorization_id, safe='')}/capture",
            body=body,
            headers={"Prefer": "return=representation"},
        )
        return response.json() or {}

    async def get_order(self, provider_order_id: str) -> dict[str, Any]:
        response = await self._client.authorized_request(
            "GET", f"/v2/checkout/orders/{quote(provider_order_id, safe='')}"
        )
        return response.json() or {}

    async def verify_webhook_signature(self, verification: dict[str, Any]) -> dict[str, Any]:
        response = await self._client.authorized_request(
            "POST", "/v1/notifications/verify-webhook-signature", body=verification
        )
        return response.json() or {}

    async def create_signup_link(self, referral_data: dict[str, Any]) -> str:
        response = await self._client.authorized_request(
            "POST", "/v2/customer/partner-referrals", body=referral_data
        )
        payload = response.json() or {}
        for link in payload.get("links") or []:
            if isinstance(link, dict) and link.get("rel") == "action_url" and link.get("href"):
                return str(link["href"])
        logger.warning("signup_link_missing", links=len(payload.get("links") or []))
        raise ProviderApiError("Partner referral response has no action_url link",
                               status_code=response.status_code, payload=payload)
