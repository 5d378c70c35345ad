import asyncio
import json

import pytest

from application.ports.signature import RejectionReason, VerificationResult
from application.webhooks import HandlerRegistry, WebhookDispatcher
from application.webhooks.dispatcher import REJECTED_MESSAGE
from domain.webhook.result import AckStatus, HandlerResult
from infrastructure.external.cache import InMemoryCache
from infrastructure.webhooks import CacheEventGuard


class StubVerifier:
    def __init__(self, verified: bool = True):
        self.verified = verified
        self.calls = 0

    async def verify(self, raw_body, headers, webhook_id):
        self.calls += 1
        if self.verified:
            return VerificationResult.accepted()
        return VerificationResult.rejected(RejectionReason.SIGNATURE_MISMATCH, "bad signature")


class RecordingHandler:
    def __init__(self, name, event_types, *, responsible=True, result=None, raises=None, delay=0.0):
        self.name = name
        self._types = frozenset(event_types)
        self._responsible = responsible
        self._result = result or HandlerResult.ok("done")
        self._raises = raises
        self._delay = delay
        self.calls = []

    def event_types(self):
        return self._types

    def responsible_for(self, envelope):
        return self._responsible

    async def handle(self, envelope):
        self.calls.append(envelope.id)
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._raises is not None:
            raise self._raises
        return self._result


def build(handlers, *, verified=True, exempt=(), lock_timeout=5):
    registry = HandlerRegistry()
    for handler in handlers:
        registry.register(handler.event_types(), handler)
    registry.exempt_from_verification(exempt)
    verifier = StubVerifier(verified)
    guard = CacheEventGuard(InMemoryCache(), ttl_seconds=3600, lock_timeout_seconds=lock_timeout)
    return WebhookDispatcher(registry, verifier, guard, webhook_id="WH-1"), verifier


@pytest.mark.asyncio
async def test_only_responsible_handlers_run(make_event_body, signature_headers):
    first = RecordingHandler("First", ["PAYMENT.CAPTURE.COMPLETED"])
    other_type = RecordingHandler("OtherType", ["PAYMENT.CAPTURE.REFUNDED"])
    declines = RecordingHandler("Declines", ["PAYMENT.CAPTURE.COMPLETED"], responsible=False)
    second = RecordingHandler("Second", ["PAYMENT.CAPTURE.COMPLETED", "VAULT.PAYMENT-TOKEN.CREATED"])
    dispatcher, _ = build([first, other_type, declines, second])

    ack = await dispatcher.dispatch(make_event_body("WH-A", "PAYMENT.CAPTURE.COMPLETED"), signature_headers)

    assert ack.success is True
    assert ack.status == AckStatus.PROCESSED
    assert list(ack.results) == ["First", "Second"]
    assert first.calls == ["WH-A"] and second.calls == ["WH-A"]
    assert other_type.calls == [] and declines.calls == []


@pytest.mark.asyncio
async def test_rejected_delivery_runs_no_handler(make_event_body, signature_headers):
    handler = RecordingHandler("H", ["PAYMENT.CAPTURE.COMPLETED"])
    dispatcher, verifier = build([handler], verified=False)

    ack = await dispatcher.dispatch(make_event_body("WH-R", "PAYMENT.CAPTURE.COMPLETED"), signature_headers)

    assert ack.success is False
    assert ack.status == AckStatus.REJECTED
    assert ack.message == REJECTED_MESSAGE
    assert ack.results == {}
    assert verifier.calls == 1
    assert handler.calls == []


@pytest.mark.asyncio
async def test_unknown_event_type_is_acknowledged(make_event_body, signature_headers):
    handler = RecordingHandler("H", ["PAYMENT.CAPTURE.COMPLETED"])
    dispatcher, _ = build([handler])

    ack = await dispatcher.dispatch(make_event_body("WH-U", "SOMETHING.NEW"), signature_headers)

    assert ack.success is True
    assert ack.status == AckStatus.UNHANDLED
    assert handler.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        b"[1, 2]",
        json.dumps({"event_type": "PAYMENT.CAPTURE.COMPLETED"}).encode(),
        json.dumps({"id": "WH-1"}).encode(),
        json.dumps({"id": "WH-1", "event_type": "PAYMENT.CAPTURE.COMPLETED", "resource": []}).encode(),
    ],
)
async def test_malformed_delivery(body, signature_headers):
    handler = RecordingHandler("H", ["PAYMENT.CAPTURE.COMPLETED"])
    dispatcher, verifier = build([handler])

    ack = await dispatcher.dispatch(body, signature_headers)

    assert ack.success is False
    assert ack.status == AckStatus.MALFORMED
    assert verifier.calls == 0
    assert handler.calls == []


@pytest.mark.asyncio
async def test_exempt_event_type_skips_verification(make_event_body):
    handler = RecordingHandler("H", ["CHECKOUT.ORDER.TRACKING-UPDATED"])
    dispatcher, verifier = build([handler], verified=False, exempt=["checkout.order.tracking-updated"])

    ack = await dispatcher.dispatch(make_event_body("WH-T", "CHECKOUT.ORDER.TRACKING-UPDATED"), {})

    assert ack.status == AckStatus.PROCESSED
    assert verifier.calls == 0
    assert handler.calls == ["WH-T"]


@pytest.mark.asyncio
async def test_one_failed_handler_fails_the_delivery(make_event_body, signature_headers):
    ok = RecordingHandler("Ok", ["PAYMENT.CAPTURE.COMPLETED"])
    broken = RecordingHandler("Broken", ["PAYMENT.CAPTURE.COMPLETED"], result=HandlerResult.failed("boom"))
    dispatcher, _ = build([ok, broken])
    body = make_event_body("WH-F", "PAYMENT.CAPTURE.COMPLETED")

    ack = await dispatcher.dispatch(body, signature_headers)
    assert ack.success is False
    assert ack.status == AckStatus.FAILED
    assert ack.results["Ok"].success is True
    assert ack.results["Broken"].success is False

    # not marked processed: a redelivery runs the handlers again
    await dispatcher.dispatch(body, signature_headers)
    assert ok.calls == ["WH-F", "WH-F"]


@pytest.mark.asyncio
async def test_raising_handler_becomes_failed_result(make_event_body, signature_headers):
    raising = RecordingHandler("Raising", ["PAYMENT.CAPTURE.COMPLETED"], raises=RuntimeError("oops"))
    after = RecordingHandler("After", ["PAYMENT.CAPTURE.COMPLETED"])
    dispatcher, _ = build([raising, after])

    ack = await dispatcher.dispatch(make_event_body("WH-X", "PAYMENT.CAPTURE.COMPLETED"), signature_headers)

    assert ack.status == AckStatus.FAILED
    assert ack.results["Raising"].success is False
    assert after.calls == ["WH-X"]


@pytest.mark.asyncio
async def test_same_handler_name_is_kept_apart(make_event_body, signature_headers):
    one = RecordingHandler("Same", ["PAYMENT.CAPTURE.COMPLETED"])
    two = RecordingHandler("Same", ["PAYMENT.CAPTURE.COMPLETED"], result=HandlerResult.failed("no"))
    dispatcher, _ = build([one, two])

    ack = await dispatcher.dispatch(make_event_body("WH-N", "PAYMENT.CAPTURE.COMPLETED"), signature_headers)

    assert set(ack.results) == {"Same", "Same#2"}
    assert ack.success is False


@pytest.mark.asyncio
async def test_redelivery_after_success_is_duplicate(make_event_body, signature_headers):
    handler = RecordingHandler("H", ["PAYMENT.CAPTURE.COMPLETED"])
    dispatcher, _ = build([handler])
    body = make_event_body("WH-D", "PAYMENT.CAPTURE.COMPLETED")

    first = await dispatcher.dispatch(body, signature_headers)
    second = await dispatcher.dispatch(body, signature_headers)

    assert first.status == AckStatus.PROCESSED
    assert second.success is True
    assert second.status == AckStatus.DUPLICATE
    assert handler.calls == ["WH-D"]


@pytest.mark.asyncio
async def test_concurrent_deliveries_of_one_event_run_once(make_event_body, signature_headers):
    handler = RecordingHandler("Slow", ["PAYMENT.CAPTURE.COMPLETED"], delay=0.05)
    dispatcher, _ = build([handler])
    body = make_event_body("WH-C", "PAYMENT.CAPTURE.COMPLETED")

    acks = await asyncio.gather(
        dispatcher.dispatch(body, signature_headers),
        dispatcher.dispatch(body, signature_headers),
    )

    assert sorted(a.status.value for a in acks) == ["duplicate", "processed"]
    assert handler.calls == ["WH-C"]


@pytest.mark.asyncio
async def test_busy_event_fails_for_redelivery(make_event_body, signature_headers):
    handler = RecordingHandler("Slow", ["PAYMENT.CAPTURE.COMPLETED"], delay=1.5)
    dispatcher, _ = build([handler], lock_timeout=1)
    body = make_event_body("WH-B", "PAYMENT.CAPTURE.COMPLETED")

    acks = await asyncio.gather(
        dispatcher.dispatch(body, signature_headers),
        dispatcher.dispatch(body, signature_headers),
    )

    assert sorted(a.status.value for a in acks) == ["failed", "processed"]
    assert handler.calls == ["WH-B"]
