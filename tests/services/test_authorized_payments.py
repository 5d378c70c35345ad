from datetime import timedelta

import pytest

from application.ports.provider_api import ProviderApiError, ProviderTimeoutError
from application.services.authorized_payments import AuthorizedPaymentsProcessor, CaptureStatus
from domain.order.entity import AuthorizationStatus, OrderStatus


@pytest.mark.asyncio
async def test_partial_failure_fails_the_batch(state, provider_api, order_factory):
    state.add_order(order_factory(1, 42, authorization_id="AUTH-1"))
    state.add_order(order_factory(2, 42, authorization_id="AUTH-2"))
    provider_api.capture_errors["AUTH-2"] = ProviderApiError(
        "Internal Server Error", status_code=500, payload={"name": "INTERNAL_SERVER_ERROR"}
    )
    processor = AuthorizedPaymentsProcessor(state, provider_api)

    batch = await processor.capture_for_customer(42)

    assert batch.success is False
    assert [o.order_id for o in batch.succeeded] == [1]
    assert [o.order_id for o in batch.failed] == [2]
    assert provider_api.capture_calls == ["AUTH-1", "AUTH-2"]

    captured = await state.get_order(1)
    assert captured.authorization.status == AuthorizationStatus.CAPTURED
    assert captured.status == OrderStatus.PROCESSING
    untouched = await state.get_order(2)
    assert untouched.authorization.status == AuthorizationStatus.CREATED
    assert untouched.status == OrderStatus.ON_HOLD
    assert untouched.notes == []


@pytest.mark.asyncio
async def test_capture_for_order_is_idempotent(state, provider_api, order_factory):
    state.add_order(order_factory(3, 42, authorization_id="AUTH-3"))
    processor = AuthorizedPaymentsProcessor(state, provider_api)

    first = await processor.capture_for_order(3)
    second = await processor.capture_for_order(3)

    assert first.outcomes[0].status == CaptureStatus.CAPTURED
    assert first.outcomes[0].capture_id == "CAP-AUTH-3"
    assert second.success is True
    assert second.outcomes[0].status == CaptureStatus.ALREADY_CAPTURED
    assert provider_api.capture_calls == ["AUTH-3"]
    order = await state.get_order(3)
    assert order.notes == ["Payment captured. Capture ID: CAP-AUTH-3. Amount: 10.00 USD."]


@pytest.mark.asyncio
async def test_provider_already_captured_counts_as_success(state, provider_api, order_factory, already_captured):
    state.add_order(order_factory(4, 42, authorization_id="AUTH-4"))
    provider_api.capture_errors["AUTH-4"] = already_captured()
    processor = AuthorizedPaymentsProcessor(state, provider_api)

    batch = await processor.capture_for_customer(42)

    assert batch.success is True
    assert batch.outcomes[0].status == CaptureStatus.ALREADY_CAPTURED
    order = await state.get_order(4)
    assert order.authorization.status == AuthorizationStatus.CAPTURED
    assert order.status == OrderStatus.PROCESSING


@pytest.mark.asyncio
async def test_expired_authorization_is_not_sent(state, provider_api, order_factory):
    state.add_order(order_factory(5, 42, authorization_id="AUTH-5", expires_in=timedelta(seconds=-1)))
    processor = AuthorizedPaymentsProcessor(state, provider_api)

    batch = await processor.capture_for_customer(42)

    assert batch.success is True
    assert batch.outcomes[0].status == CaptureStatus.EXPIRED
    assert provider_api.capture_calls == []
    assert (await state.get_order(5)).authorization.status == AuthorizationStatus.EXPIRED


@pytest.mark.asyncio
async def test_provider_expired_issue_marks_authorization(state, provider_api, order_factory):
    state.add_order(order_factory(6, 42, authorization_id="AUTH-6"))
    provider_api.capture_errors["AUTH-6"] = ProviderApiError(
        "Unprocessable", status_code=422, payload={"details": [{"issue": "AUTHORIZATION_EXPIRED"}]}
    )
    processor = AuthorizedPaymentsProcessor(state, provider_api)

    batch = await processor.capture_for_customer(42)

    assert batch.success is True
    assert (await state.get_order(6)).authorization.status == AuthorizationStatus.EXPIRED


@pytest.mark.asyncio
async def test_timeout_is_a_failure(state, provider_api, order_factory):
    state.add_order(order_factory(7, 42, authorization_id="AUTH-7"))
    provider_api.capture_errors["AUTH-7"] = ProviderTimeoutError("read timeout")
    processor = AuthorizedPaymentsProcessor(state, provider_api)

    batch = await processor.capture_for_order(7)

    assert batch.success is False
    assert batch.outcomes[0].status == CaptureStatus.FAILED
    assert (await state.get_order(7)).authorization.status == AuthorizationStatus.CREATED


@pytest.mark.asyncio
async def test_only_open_authorizations_are_processed(state, provider_api, order_factory):
    voided = order_factory(8, 42, authorization_id="AUTH-8")
    voided.authorization = voided.authorization.with_status(AuthorizationStatus.VOIDED)
    state.add_order(voided)
    state.add_order(order_factory(9, 42))
    processor = AuthorizedPaymentsProcessor(state, provider_api)

    batch = await processor.capture_for_customer(42)

    assert batch.success is True
    assert batch.outcomes == ()
    assert provider_api.capture_calls == []


@pytest.mark.asyncio
async def test_unknown_order_fails(state, provider_api):
    processor = AuthorizedPaymentsProcessor(state, provider_api)

    batch = await processor.capture_for_order(404)

    assert batch.success is False
    assert batch.to_dict()["outcomes"][0]["message"] == "Order not found"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "failing_write", ["update_order_status", "append_order_note", "update_authorization_status"]
)
async def test_redelivery_finishes_a_half_written_capture(flaky_state, provider_api, order_factory, failing_write):
    flaky_state.add_order(order_factory(1, 42, authorization_id="AUTH-1"))
    flaky_state.fail_once(failing_write)
    processor = AuthorizedPaymentsProcessor(flaky_state, provider_api)

    first = await processor.capture_for_customer(42)
    second = await processor.capture_for_customer(42)

    assert first.success is False
    assert second.success is True
    assert [o.status for o in second.outcomes] == [CaptureStatus.ALREADY_CAPTURED]
    assert provider_api.successful_captures == 1
    order = await flaky_state.get_order(1)
    assert order.status == OrderStatus.PROCESSING
    assert order.authorization.status == AuthorizationStatus.CAPTURED
    assert order.notes[-1] == "Authorization AUTH-1 was already captured at the provider."


@pytest.mark.asyncio
async def test_failed_order_write_leaves_authorization_open(flaky_state, provider_api, order_factory):
    flaky_state.add_order(order_factory(2, 42, authorization_id="AUTH-2"))
    flaky_state.fail_once("update_order_status")
    processor = AuthorizedPaymentsProcessor(flaky_state, provider_api)

    await processor.capture_for_order(2)

    order = await flaky_state.get_order(2)
    assert order.authorization.status == AuthorizationStatus.CREATED
    assert order.status == OrderStatus.ON_HOLD
