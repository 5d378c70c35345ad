"""
Webhook dispatcher: verification, routing and aggregation of handler results.

The dispatcher never touches local state itself; handlers do. It turns one
raw delivery into one Acknowledgment, which the HTTP layer maps to a status
code (non-2xx makes the provider redeliver).
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Mapping, Optional

from structlog.contextvars import bound_contextvars

from application.ports.event_guard import EventGuard
from application.ports.signature import SignatureVerifier
from core.logging_config import get_logger
from domain.common.exceptions import MalformedEnvelopeException
from domain.webhook.envelope import EventEnvelope, parse_body, peek_event_type
from domain.webhook.handler import WebhookHandler
from domain.webhook.result import Acknowledgment, AckStatus, HandlerResult

from .registry import HandlerRegistry

logger = get_logger(__name__)

# One body for every rejection, whatever the reason
REJECTED_MESSAGE = "Webhook could not be verified"


class WebhookDispatcher:
    def __init__(
        self,
        registry: HandlerRegistry,
        verifier: SignatureVerifier,
        guard: EventGuard,
        *,
        webhook_id: Optional[str],
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._registry = registry
        self._verifier = verifier
        self._guard = guard
        self._webhook_id = webhook_id
        self._clock = clock

    async def dispatch(self, raw_body: bytes, headers: Mapping[str, str]) -> Acknowledgment:
        try:
            payload = parse_body(raw_body)
            envelope = EventEnvelope.from_payload(payload, received_at=self._clock())
        except MalformedEnvelopeException as exc:
            logger.warning("webhook_malformed", error=exc.message, field=exc.field)
            return Acknowledgment(success=False, status=AckStatus.MALFORMED, message=exc.message)

        with bound_contextvars(event_id=envelope.id, event_type=envelope.event_type):
            logger.info("webhook_received", summary=envelope.summary)

            if self._registry.requires_verification(peek_event_type(payload)):
                verification = await self._verifier.verify(raw_body, headers, self._webhook_id)
                if not verification.verified:
                    logger.warning(
                        "webhook_rejected",
                        reason=verification.reason.value if verification.reason else None,
                        cause=verification.cause,
                    )
                    return Acknowledgment(
                        success=False,
                        status=AckStatus.REJECTED,
                        message=REJECTED_MESSAGE,
                        event_id=envelope.id,
                        event_type=envelope.event_type,
                    )
            else:
                logger.info("webhook_verification_exempt")

            handlers = self._registry.handlers_for(envelope)
            if not handlers:
                logger.info("webhook_unhandled")
                return Acknowledgment(
                    success=True,
                    status=AckStatus.UNHANDLED,
                    message=f"Event type {envelope.event_type} is not handled",
                    event_id=envelope.id,
                    event_type=envelope.event_type,
                )

            try:
                async with self._guard.hold(envelope.id):
                    if await self._guard.is_processed(envelope.id):
                        logger.info("webhook_duplicate")
                        return Acknowledgment(
                            success=True,
                            status=AckStatus.DUPLICATE,
                            message="Event already processed",
                            event_id=envelope.id,
                            event_type=envelope.event_type,
                        )
                    results = await self._run_handlers(envelope, handlers)
                    success = all(r.success for r in results.values())
                    if success:
                        await self._guard.mark_processed(envelope.id)
            except TimeoutError:
                logger.warning("webhook_event_busy")
                return Acknowledgment(
                    success=False,
                    status=AckStatus.FAILED,
                    message="Event is already being processed",
                    event_id=envelope.id,
                    event_type=envelope.event_type,
                )

            if success:
                logger.info("webhook_processed", handlers=list(results))
            else:
                logger.warning(
                    "webhook_failed",
                    failed=[name for name, r in results.items() if not r.success],
                )
            return Acknowledgment(
                success=success,
                status=AckStatus.PROCESSED if success else AckStatus.FAILED,
                message="Webhook processed" if success else "Webhook processing failed",
                event_id=envelope.id,
                event_type=envelope.event_type,
                results=results,
            )

    async def _run_handlers(
        self,
        envelope: EventEnvelope,
        handlers: list[WebhookHandler],
    ) -> dict[str, HandlerResult]:
        results: dict[str, HandlerResult] = {}
        for handler in handlers:
            try:
                result = await handler.handle(envelope)
            except Exception as exc:
                # handlers report failures as results; this only catches contract breaches
                logger.error("webhook_handler_raised", handler=handler.name, exc_info=True)
                result = HandlerResult.failed(f"{handler.name} raised {type(exc).__name__}")
            key = handler.name
            suffix = 2
            while key in results:
                key = f"{handler.name}#{suffix}"
                suffix += 1
            results[key] = result
        return results
