"""Pytest bootstrap configuration and shared fakes.

Settings are read at import time, so keep the environment free of real
provider credentials and backing services before anything is imported.
"""
import asyncio
import json
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

import pytest

os.environ.pop("REDIS__URL", None)
os.environ.pop("DATABASE__URL", None)
os.environ.setdefault("PAYPAL__CLIENT_ID", "test-client")
os.environ.setdefault("PAYPAL__CLIENT_SECRET", "test-secret")

from application.ports.provider_api import ProviderApiError  # noqa: E402
from domain.order.entity import AuthorizationRecord, Order, OrderStatus  # noqa: E402
from infrastructure.state import InMemoryLocalState  # noqa: E402


class StubProviderApi:
    """Behaves like the provider for the calls the reconciler makes.

    A second capture of the same authorization answers with the provider's
    "already captured" issue, like the real API does.
    """

    environment = "sandbox"

    def __init__(self):
        self.capture_calls: list[str] = []
        self.captured: set[str] = set()
        self.capture_errors: dict[str, Exception] = {}
        self.orders: dict[str, dict] = {}
        self.verification_status = "SUCCESS"
        self.verify_error: Optional[Exception] = None
        self.verify_calls: list[dict] = []
        self.signup_link = "https://www.sandbox.paypal.com/bizsignup/partner/entry?token=abc"
        self.signup_error: Optional[Exception] = None
        self.signup_calls: list[dict] = []

    async def capture_authorization(self, authorization_id: str, *, invoice_id: Optional[str] = None) -> dict:
        self.capture_calls.append(authorization_id)
        await asyncio.sleep(0)
        if authorization_id in self.capture_errors:
            raise self.capture_errors[authorization_id]
        if authorization_id in self.captured:
            raise already_captured_error()
        self.captured.add(authorization_id)
        return {
            "id": f"CAP-{authorization_id}",
            "status": "COMPLETED",
            "amount": {"value": "10.00", "currency_code": "USD"},
        }

    async def get_order(self, provider_order_id: str) -> dict:
        if provider_order_id not in self.orders:
            raise ProviderApiError("not found", status_code=404, payload={"name": "RESOURCE_NOT_FOUND"})
        return self.orders[provider_order_id]

    async def verify_webhook_signature(self, verification: dict) -> dict:
        self.verify_calls.append(verification)
        if self.verify_error is not None:
            raise self.verify_error
        return {"verification_status": self.verification_status}

    async def create_signup_link(self, referral_data: dict) -> str:
        self.signup_calls.append(referral_data)
        await asyncio.sleep(0)
        if self.signup_error is not None:
            raise self.signup_error
        return self.signup_link

    @property
    def successful_captures(self) -> int:
        return len(self.captured)


class FlakyLocalState(InMemoryLocalState):
    """In-memory state whose named writes fail once, like a dropped store connection."""

    def __init__(self):
        super().__init__()
        self.failing: set[str] = set()

    def fail_once(self, *methods: str) -> None:
        self.failing.update(methods)

    def _trip(self, method: str) -> None:
        if method in self.failing:
            self.failing.discard(method)
            raise ConnectionError(f"{method} lost the connection")

    async def update_order_status(self, order_id, status):
        self._trip("update_order_status")
        await super().update_order_status(order_id, status)

    async def update_authorization_status(self, order_id, status, capture_id=None):
        self._trip("update_authorization_status")
        await super().update_authorization_status(order_id, status, capture_id)

    async def append_order_note(self, order_id, text):
        self._trip("append_order_note")
        await super().append_order_note(order_id, text)

    async def record_refund(self, order_id, refund_id, amount):
        self._trip("record_refund")
        return await super().record_refund(order_id, refund_id, amount)


def already_captured_error() -> ProviderApiError:
    return ProviderApiError(
        "Authorization has been previously captured",
        status_code=422,
        payload={
            "name": "UNPROCESSABLE_ENTITY",
            "debug_id": "dbg-1",
            "details": [{"issue": "AUTHORIZATION_ALREADY_CAPTURED"}],
        },
    )


def make_order(
    order_id: int,
    customer_id: Optional[int] = None,
    *,
    authorization_id: Optional[str] = None,
    status: OrderStatus = OrderStatus.ON_HOLD,
    total: str = "10.00",
    expires_in: Optional[timedelta] = timedelta(days=3),
    **kwargs: Any,
) -> Order:
    authorization = None
    if authorization_id:
        authorization = AuthorizationRecord(
            authorization_id=authorization_id,
            amount=Decimal(total),
            currency="USD",
            expires_at=datetime.now(timezone.utc) + expires_in if expires_in is not None else None,
        )
    return Order(
        id=order_id,
        customer_id=customer_id,
        status=status,
        total=Decimal(total),
        currency="USD",
        authorization=authorization,
        **kwargs,
    )


@pytest.fixture
def provider_api() -> StubProviderApi:
    return StubProviderApi()


@pytest.fixture
def state() -> InMemoryLocalState:
    return InMemoryLocalState()


@pytest.fixture
def flaky_state() -> FlakyLocalState:
    return FlakyLocalState()


@pytest.fixture
def order_factory():
    return make_order


@pytest.fixture
def already_captured():
    return already_captured_error


SIGNATURE_HEADERS = {
    "PAYPAL-TRANSMISSION-ID": "tx-1",
    "PAYPAL-TRANSMISSION-TIME": "2024-01-01T00:00:00Z",
    "PAYPAL-TRANSMISSION-SIG": "c2lnbmF0dXJl",
    "PAYPAL-CERT-URL": "https://api.sandbox.paypal.com/v1/notifications/certs/CERT-1",
    "PAYPAL-AUTH-ALGO": "SHA256withRSA",
}


def event_body(event_id: str, event_type: str, resource: Optional[dict] = None) -> bytes:
    return json.dumps({
        "id": event_id,
        "event_type": event_type,
        "resource_type": "test",
        "summary": f"{event_type} for tests",
        "resource": resource or {},
    }).encode()


@pytest.fixture
def signature_headers() -> dict:
    return dict(SIGNATURE_HEADERS)


@pytest.fixture
def make_event_body():
    return event_body
