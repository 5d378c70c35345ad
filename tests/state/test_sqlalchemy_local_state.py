from decimal import Decimal

import pytest

from application.services.authorized_payments import AuthorizedPaymentsProcessor
from application.webhooks.handlers import PaymentCaptureRefunded, VaultPaymentTokenCreated
from domain.common.exceptions import DomainValidationException, OrderNotFoundException
from domain.customer.entity import PaymentInstrument
from domain.order.entity import AuthorizationStatus, OrderStatus
from domain.webhook.envelope import EventEnvelope
from infrastructure.database import build_engine, build_session_factory, create_tables
from infrastructure.repositories.local_state_repository import SQLAlchemyLocalState

pytest.importorskip("aiosqlite")


async def open_state(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'state.db'}")
    await create_tables(engine)
    return engine, SQLAlchemyLocalState(build_session_factory(engine))


@pytest.mark.asyncio
async def test_order_roundtrip_and_updates(tmp_path, order_factory):
    engine, state = await open_state(tmp_path)
    try:
        await state.add_order(order_factory(1, 42, authorization_id="AUTH-1", provider_order_id="PO-1"))

        order = await state.find_order(provider_order_id="PO-1")
        assert order.id == 1
        assert order.total == Decimal("10.00")
        assert order.authorization.status == AuthorizationStatus.CREATED
        assert order.authorization.expires_at.tzinfo is not None

        await state.update_authorization_status(1, AuthorizationStatus.CAPTURED, "CAP-1")
        await state.update_order_status(1, OrderStatus.PROCESSING)
        await state.append_order_note(1, "first")
        await state.append_order_note(1, "second")

        order = await state.get_order(1)
        assert order.status == OrderStatus.PROCESSING
        assert order.authorization.capture_id == "CAP-1"
        assert order.notes == ["first", "second"]
        assert [o.id for o in await state.list_orders_for_customer(42)] == [1]
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_missing_rows_raise(tmp_path, order_factory):
    engine, state = await open_state(tmp_path)
    try:
        await state.add_order(order_factory(2, 42))

        with pytest.raises(OrderNotFoundException):
            await state.update_order_status(999, OrderStatus.CANCELLED)
        with pytest.raises(DomainValidationException):
            await state.update_authorization_status(2, AuthorizationStatus.VOIDED)
        assert await state.get_order(999) is None
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_refund_is_recorded_once(tmp_path, order_factory):
    engine, state = await open_state(tmp_path)
    try:
        await state.add_order(order_factory(3, 42, status=OrderStatus.PROCESSING))

        assert await state.record_refund(3, "REF-1", Decimal("1.00")) is True
        assert await state.record_refund(3, "REF-1", Decimal("1.00")) is False
        assert (await state.get_order(3)).refund_ids == ("REF-1",)
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_instrument_upsert_and_default(tmp_path):
    engine, state = await open_state(tmp_path)
    try:
        card = PaymentInstrument.card(42, "tok_1", {"last_digits": "4242", "expiry": "2027-08", "brand": "VISA"})
        first_id = await state.save_payment_instrument(42, card)
        again_id = await state.save_payment_instrument(42, card)
        wallet_id = await state.save_payment_instrument(42, PaymentInstrument.wallet(42, "tok_2"))

        assert first_id == again_id
        await state.set_default_payment_instrument(42, first_id)
        await state.set_default_payment_instrument(42, wallet_id)

        instruments = await state.list_payment_instruments(42)
        assert [i.token for i in instruments] == ["tok_1", "tok_2"]
        assert [i.is_default for i in instruments] == [False, True]

        with pytest.raises(DomainValidationException):
            await state.set_default_payment_instrument(7, wallet_id)
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_customer_link_lookup(tmp_path):
    engine, state = await open_state(tmp_path)
    try:
        await state.link_customer("legacy-customer", 5)

        assert await state.get_customer_local_id("legacy-customer") == 5
        assert await state.get_customer_local_id("nobody") is None
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_handlers_run_against_the_database(tmp_path, order_factory, provider_api):
    engine, state = await open_state(tmp_path)
    try:
        await state.add_order(order_factory(4, 42, authorization_id="AUTH-4", total="30.00"))
        vault = VaultPaymentTokenCreated(
            state, AuthorizedPaymentsProcessor(state, provider_api), customer_prefix="PROVIDER-"
        )
        refunds = PaymentCaptureRefunded(state)

        vaulted = await vault.handle(EventEnvelope.from_payload({
            "id": "WH-DB-1",
            "event_type": "VAULT.PAYMENT-TOKEN.CREATED",
            "resource": {
                "id": "tok_db",
                "customer_id": "PROVIDER-42",
                "source": {"card": {"last_digits": "1111", "expiry": "2030-01", "brand": "MASTERCARD"}},
            },
        }))
        refunded = await refunds.handle(EventEnvelope.from_payload({
            "id": "WH-DB-2",
            "event_type": "PAYMENT.CAPTURE.REFUNDED",
            "resource": {"id": "REF-DB", "custom_id": "4", "amount": {"value": "30.00", "currency_code": "USD"}},
        }))

        assert vaulted.success is True and refunded.success is True
        order = await state.get_order(4)
        assert order.authorization.status == AuthorizationStatus.CAPTURED
        assert order.status == OrderStatus.REFUNDED
        [instrument] = await state.list_payment_instruments(42)
        assert instrument.is_default is True
    finally:
        await engine.dispose()
