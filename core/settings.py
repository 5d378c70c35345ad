"""
Provider-related settings using pydantic-settings v2 with nested env keys.

Every key is read from `PAYPAL__*`, e.g. `PAYPAL__CLIENT_ID` or
`PAYPAL__WEBHOOK__WEBHOOK_ID`. Kept apart from core.config.Settings so the
provider can be configured without touching the application settings.
"""
from __future__ import annotations

from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator

from shared.codes.webhook_codes import (
    ALREADY_CAPTURED_ISSUES,
    EXPIRED_AUTHORIZATION_ISSUES,
    VOIDED_AUTHORIZATION_ISSUES,
)


class ProviderTimeouts(BaseModel):
    connect: float = 2.0
    read: float = 10.0
    write: float = 10.0
    total: float = 15.0


class WebhookSettings(BaseModel):
    webhook_id: Optional[str] = None
    # Event types accepted without a signature check (low-risk, informational)
    verification_exempt_event_types: list[str] = Field(default_factory=list)
    dedupe_ttl_seconds: int = 3 * 24 * 3600
    lock_timeout_seconds: int = 60
    tracking_event_type: str = "CHECKOUT.ORDER.TRACKING-UPDATED"

    @field_validator("verification_exempt_event_types", mode="before")
    @classmethod
    def _split_event_types(cls, v):
        if isinstance(v, str):
            return [item.strip().upper() for item in v.split(",") if item.strip()]
        return [str(item).strip().upper() for item in (v or [])]


class CaptureSettings(BaseModel):
    already_captured_issues: list[str] = Field(default_factory=lambda: sorted(ALREADY_CAPTURED_ISSUES))
    expired_issues: list[str] = Field(default_factory=lambda: sorted(EXPIRED_AUTHORIZATION_ISSUES))
    voided_issues: list[str] = Field(default_factory=lambda: sorted(VOIDED_AUTHORIZATION_ISSUES))


class OnboardingSettings(BaseModel):
    cache_ttl_seconds: int = 3 * 30 * 24 * 3600
    return_url: str = "https://example.com/admin/payments/onboarding"
    partner_logo_url: Optional[str] = None


class PayPalSettings(BaseSettings):
    environment: Literal["sandbox", "production"] = "sandbox"
    sandbox_host: str = "https://api-m.sandbox.paypal.com"
    production_host: str = "https://api-m.paypal.com"
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    # Provider customer ids are "<customer_prefix><local customer id>"
    customer_prefix: str = ""
    token_refresh_margin_seconds: int = 60

    timeouts: ProviderTimeouts = Field(default_factory=ProviderTimeouts)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    capture: CaptureSettings = Field(default_factory=CaptureSettings)
    onboarding: OnboardingSettings = Field(default_factory=OnboardingSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYPAL__",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    @property
    def host(self) -> str:
        return self.production_host if self.environment == "production" else self.sandbox_host


paypal_settings = PayPalSettings()
