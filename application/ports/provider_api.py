"""
Provider REST port (application/ports) exposing a replaceable protocol and
the typed errors its implementations raise.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from domain.common.exceptions import BusinessException
from shared.codes.webhook_codes import WebhookCode


class ProviderApiError(BusinessException):
    """Non-2xx answer from the provider REST surface."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        payload: Optional[dict[str, Any]] = None,
        code: int = WebhookCode.PROVIDER_ERROR,
        error_type: str = "ProviderApiError",
    ):
        self.status_code = status_code
        self.payload = payload or {}
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details={
                "status_code": status_code,
                "name": self.payload.get("name"),
                "issues": self.issues,
                "debug_id": self.debug_id,
            },
        )

    @property
    def issues(self) -> list[str]:
        details = self.payload.get("details") or []
        if not isinstance(details, list):
            return []
        return [str(d["issue"]) for d in details if isinstance(d, dict) and d.get("issue")]

    @property
    def debug_id(self) -> Optional[str]:
        return self.payload.get("debug_id")

    def has_issue(self, issues: frozenset[str] | set[str]) -> bool:
        return any(issue in issues for issue in self.issues)


class ProviderTimeoutError(ProviderApiError):
    def __init__(self, message: str):
        super().__init__(message, code=WebhookCode.PROVIDER_TIMEOUT, error_type="ProviderTimeout")


class TokenAcquisitionError(ProviderApiError):
    """The OAuth token endpoint did not hand out a usable token."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, payload: Optional[dict] = None):
        super().__init__(
            message,
            status_code=status_code,
            payload=payload,
            code=WebhookCode.TOKEN_ERROR,
            error_type="TokenAcquisitionError",
        )


@runtime_checkable
class ProviderApi(Protocol):
    """Typed facade over the provider endpoints the reconciler calls."""

    environment: str

    async def capture_authorization(
        self,
        authorization_id: str,
        *,
        invoice_id: Optional[str] = None,
    ) -> dict[str, Any]: ...

    async def get_order(self, provider_order_id: str) -> dict[str, Any]: ...

    async def verify_webhook_signature(self, verification: dict[str, Any]) -> dict[str, Any]: ...

    async def create_signup_link(self, referral_data: dict[str, Any]) -> str: ...
