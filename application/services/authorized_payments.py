"""
Authorized-payments processor: capture outstanding authorizations.

One remote capture per order per invocation, no internal retries. Per-order
failures never abort the batch; the batch fails if any order failed so the
triggering webhook gets redelivered. Already-captured authorizations
(locally by status, remotely by the provider issue) count as success.

The local authorization status is written after the order status and the
note, so a write failure halfway leaves the authorization CREATED and the
redelivered capture finishes the order through the provider's
"already captured" answer.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from application.ports.local_state import LocalStateAdapter
from application.ports.provider_api import ProviderApi, ProviderApiError
from core.logging_config import get_logger
from domain.order.entity import PAID_STATUSES, AuthorizationStatus, Order, OrderStatus
from shared.codes.webhook_codes import (
    ALREADY_CAPTURED_ISSUES,
    EXPIRED_AUTHORIZATION_ISSUES,
    VOIDED_AUTHORIZATION_ISSUES,
)

logger = get_logger(__name__)


class CaptureStatus(str, Enum):
    CAPTURED = "captured"
    ALREADY_CAPTURED = "already_captured"
    SKIPPED = "skipped"
    EXPIRED = "expired"
    VOIDED = "voided"
    FAILED = "failed"


@dataclass(frozen=True)
class CaptureOutcome:
    order_id: int
    status: CaptureStatus
    message: str = ""
    authorization_id: Optional[str] = None
    capture_id: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status != CaptureStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "status": self.status.value,
            "message": self.message,
            "authorization_id": self.authorization_id,
            "capture_id": self.capture_id,
        }


@dataclass(frozen=True)
class CaptureBatchResult:
    outcomes: tuple[CaptureOutcome, ...] = field(default_factory=tuple)

    @property
    def success(self) -> bool:
        return all(o.success for o in self.outcomes)

    @property
    def succeeded(self) -> list[CaptureOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> list[CaptureOutcome]:
        return [o for o in self.outcomes if not o.success]

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class AuthorizedPaymentsProcessor:
    def __init__(
        self,
        state: LocalStateAdapter,
        api: ProviderApi,
        *,
        already_captured_issues: Iterable[str] = ALREADY_CAPTURED_ISSUES,
        expired_issues: Iterable[str] = EXPIRED_AUTHORIZATION_ISSUES,
        voided_issues: Iterable[str] = VOIDED_AUTHORIZATION_ISSUES,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._state = state
        self._api = api
        self._already_captured = frozenset(already_captured_issues)
        self._expired = frozenset(expired_issues)
        self._voided = frozenset(voided_issues)
        self._clock = clock

    async def capture_for_customer(self, customer_id: int) -> CaptureBatchResult:
        orders = await self._state.list_orders_for_customer(customer_id)
        pending = [
            o for o in orders
            if o.authorization is not None and o.authorization.status == AuthorizationStatus.CREATED
        ]
        logger.info("capture_for_customer", customer_id=customer_id, orders=len(pending))

        outcomes = []
        for order in pending:
            outcomes.append(await self._process(order))
        result = CaptureBatchResult(tuple(outcomes))
        if not result.success:
            logger.warning(
                "capture_batch_partial_failure",
                customer_id=customer_id,
                failed=[o.order_id for o in result.failed],
                succeeded=[o.order_id for o in result.succeeded],
            )
        return result

    async def capture_for_order(self, order_id: int) -> CaptureBatchResult:
        order = await self._state.get_order(order_id)
        if order is None:
            logger.warning("capture_order_not_found", order_id=order_id)
            return CaptureBatchResult((CaptureOutcome(order_id, CaptureStatus.FAILED, "Order not found"),))
        return CaptureBatchResult((await self._process(order),))

    async def _process(self, order: Order) -> CaptureOutcome:
        try:
            return await self._capture(order)
        except Exception:
            # keep going with the rest of the batch
            logger.error("capture_unexpected_error", order_id=order.id, exc_info=True)
            return CaptureOutcome(order.id, CaptureStatus.FAILED, "Unexpected error during capture")

    async def _capture(self, order: Order) -> CaptureOutcome:
        auth = order.authorization
        if auth is None:
            return CaptureOutcome(order.id, CaptureStatus.SKIPPED, "Order has no authorization")
        if auth.status == AuthorizationStatus.CAPTURED:
            return CaptureOutcome(
                order.id, CaptureStatus.ALREADY_CAPTURED, "Authorization already captured",
                authorization_id=auth.authorization_id, capture_id=auth.capture_id,
            )
        if auth.status == AuthorizationStatus.VOIDED:
            return CaptureOutcome(order.id, CaptureStatus.SKIPPED, "Authorization was voided",
                                  authorization_id=auth.authorization_id)
        if auth.is_expired(self._clock()):
            if auth.status != AuthorizationStatus.EXPIRED:
                await self._state.update_authorization_status(order.id, AuthorizationStatus.EXPIRED)
            return CaptureOutcome(order.id, CaptureStatus.EXPIRED, "Authorization expired",
                                  authorization_id=auth.authorization_id)

        try:
            answer = await self._api.capture_authorization(auth.authorization_id, invoice_id=str(order.id))
        except ProviderApiError as exc:
            return await self._on_capture_error(order, exc)

        capture_id = answer.get("id")
        amount, currency = _captured_amount(answer, auth.amount, auth.currency)
        await self._mark_captured(
            order, capture_id,
            f"Payment captured. Capture ID: {capture_id}. Amount: {amount} {currency}.",
        )
        logger.info("capture_succeeded", order_id=order.id, capture_id=capture_id,
                    status=answer.get("status"))
        return CaptureOutcome(order.id, CaptureStatus.CAPTURED, "Captured",
                              authorization_id=auth.authorization_id, capture_id=capture_id)

    async def _on_capture_error(self, order: Order, exc: ProviderApiError) -> CaptureOutcome:
        auth = order.authorization
        if exc.has_issue(self._already_captured):
            await self._mark_captured(
                order, None, f"Authorization {auth.authorization_id} was already captured at the provider.",
            )
            logger.info("capture_already_done", order_id=order.id, debug_id=exc.debug_id)
            return CaptureOutcome(order.id, CaptureStatus.ALREADY_CAPTURED, "Already captured at the provider",
                                  authorization_id=auth.authorization_id)
        if exc.has_issue(self._expired):
            await self._state.update_authorization_status(order.id, AuthorizationStatus.EXPIRED)
            logger.info("capture_authorization_expired", order_id=order.id, debug_id=exc.debug_id)
            return CaptureOutcome(order.id, CaptureStatus.EXPIRED, "Authorization expired at the provider",
                                  authorization_id=auth.authorization_id)
        if exc.has_issue(self._voided):
            await self._state.update_authorization_status(order.id, AuthorizationStatus.VOIDED)
            logger.info("capture_authorization_voided", order_id=order.id, debug_id=exc.debug_id)
            return CaptureOutcome(order.id, CaptureStatus.VOIDED, "Authorization voided at the provider",
                                  authorization_id=auth.authorization_id)

        logger.warning(
            "capture_failed",
            order_id=order.id,
            status_code=exc.status_code,
            issues=exc.issues,
            debug_id=exc.debug_id,
            error=exc.message,
        )
        return CaptureOutcome(order.id, CaptureStatus.FAILED, exc.message,
                              authorization_id=auth.authorization_id)

    async def _mark_captured(self, order: Order, capture_id: Optional[str], note: str) -> None:
        # authorization status last: CAPTURED implies the order side is written
        if order.status not in PAID_STATUSES:
            await self._state.update_order_status(order.id, OrderStatus.PROCESSING)
        await self._state.append_order_note(order.id, note)
        await self._state.update_authorization_status(order.id, AuthorizationStatus.CAPTURED, capture_id)


def _captured_amount(answer: dict[str, Any], fallback: Decimal, currency: str) -> tuple[Decimal, str]:
    amount = answer.get("amount") or {}
    try:
        return Decimal(str(amount["value"])), str(amount.get("currency_code") or currency)
    except (KeyError, TypeError, InvalidOperation):
        return fallback, currency
