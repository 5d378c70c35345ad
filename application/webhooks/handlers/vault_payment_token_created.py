"""
VAULT.PAYMENT-TOKEN.CREATED

A reusable payment instrument became available for a customer. That is the
trigger to capture the customer's outstanding authorizations, and the token
itself is saved locally as the customer's default instrument.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional

from application.ports.local_state import LocalStateAdapter
from application.services.authorized_payments import AuthorizedPaymentsProcessor, CaptureBatchResult
from core.logging_config import get_logger
from domain.customer.entity import PaymentInstrument, parse_customer_id
from domain.webhook.envelope import EventEnvelope, EventType
from domain.webhook.result import HandlerResult

from .base import BaseWebhookHandler

logger = get_logger(__name__)


class VaultPaymentTokenCreated(BaseWebhookHandler):
    EVENT_TYPES = (EventType.VAULT_PAYMENT_TOKEN_CREATED,)

    def __init__(
        self,
        state: LocalStateAdapter,
        processor: AuthorizedPaymentsProcessor,
        *,
        customer_prefix: str = "",
    ):
        super().__init__(state)
        self._processor = processor
        self._prefix = customer_prefix

    async def process(self, envelope: EventEnvelope) -> HandlerResult:
        resource = envelope.resource
        provider_customer_id = resource.get("customer_id")
        if not isinstance(provider_customer_id, str) or not provider_customer_id:
            logger.warning("vault_token_missing_customer_id", event_id=envelope.id)
            return HandlerResult.noop_result("Customer ID not found")

        customer_id = await self._resolve_customer(provider_customer_id)
        if customer_id is None:
            logger.warning(
                "vault_token_unknown_customer",
                event_id=envelope.id,
                provider_customer_id=provider_customer_id,
            )
            return HandlerResult.noop_result("Customer ID does not map to a local customer")

        errors: list[str] = []

        batch: Optional[CaptureBatchResult] = None
        try:
            batch = await self._processor.capture_for_customer(customer_id)
            if not batch.success:
                errors.append(f"{len(batch.failed)} authorization capture(s) failed")
        except Exception:
            logger.error("vault_token_capture_error", customer_id=customer_id, exc_info=True)
            errors.append("Capturing authorized payments failed")

        instrument_id: Optional[str] = None
        try:
            instrument_id = await self._save_instrument(customer_id, resource)
        except Exception:
            logger.error("vault_token_save_error", customer_id=customer_id, exc_info=True)
            errors.append("Saving the payment instrument failed")

        details: dict[str, Any] = {
            "customer_id": customer_id,
            "instrument_id": instrument_id,
            "capture": batch.to_dict() if batch is not None else None,
        }
        if errors:
            return HandlerResult.failed("; ".join(errors), **details)
        return HandlerResult.ok("Payment token processed", **details)

    async def _resolve_customer(self, provider_customer_id: str) -> Optional[int]:
        customer_id = parse_customer_id(self._prefix, provider_customer_id)
        if customer_id is not None:
            return customer_id
        return await self.state.get_customer_local_id(provider_customer_id)

    async def _save_instrument(self, customer_id: int, resource: Mapping[str, Any]) -> Optional[str]:
        token = resource.get("id")
        if not isinstance(token, str) or not token:
            logger.info("vault_token_without_id", customer_id=customer_id)
            return None

        source = resource.get("source")
        source = source if isinstance(source, Mapping) else {}
        if isinstance(source.get("card"), Mapping):
            instrument = PaymentInstrument.card(customer_id, token, source["card"])
        elif isinstance(source.get("paypal"), Mapping):
            instrument = PaymentInstrument.wallet(customer_id, token)
        else:
            logger.info("vault_token_unsupported_source", customer_id=customer_id, source=sorted(source))
            return None

        instrument_id = await self.state.save_payment_instrument(customer_id, instrument)
        await self.state.set_default_payment_instrument(customer_id, instrument_id)
        logger.info("vault_token_saved", customer_id=customer_id, kind=instrument.kind.value,
                    instrument_id=instrument_id)
        return instrument_id
