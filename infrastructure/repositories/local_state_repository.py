"""
本地状态适配器的 SQLAlchemy 实现

每个方法独立开启会话并提交；对账逻辑依赖写操作本身的幂等性，
不跨方法持有事务。
"""
from typing import Optional, List
from decimal import Decimal
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.logging_config import get_logger
from domain.common.exceptions import DomainValidationException, OrderNotFoundException
from domain.customer.entity import InstrumentKind, PaymentInstrument
from domain.order.entity import (
    AuthorizationRecord,
    AuthorizationStatus,
    Order,
    OrderStatus,
    SubscriptionStatus,
)
from infrastructure.models.order import (
    CustomerModel,
    OrderModel,
    OrderNoteModel,
    OrderRefundModel,
    PaymentInstrumentModel,
)


logger = get_logger(__name__)


class SQLAlchemyLocalState:
    """LocalStateAdapter 的 SQLAlchemy 实现"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    # ============= 转换 =============

    async def _to_entity(self, session: AsyncSession, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体（备注与退款一并加载）"""
        notes = (await session.execute(
            select(OrderNoteModel.text)
            .where(OrderNoteModel.order_id == model.id)
            .order_by(OrderNoteModel.id)
        )).scalars().all()
        refunds = (await session.execute(
            select(OrderRefundModel.refund_id)
            .where(OrderRefundModel.order_id == model.id)
            .order_by(OrderRefundModel.id)
        )).scalars().all()

        authorization = None
        if model.authorization_id:
            authorization = AuthorizationRecord(
                authorization_id=model.authorization_id,
                amount=Decimal(str(model.authorization_amount or model.total)),
                currency=model.authorization_currency or model.currency,
                status=AuthorizationStatus(model.authorization_status or AuthorizationStatus.CREATED.value),
                expires_at=model.authorization_expires_at,
                capture_id=model.capture_id,
            )

        return Order(
            id=model.id,
            customer_id=model.customer_id,
            status=OrderStatus(model.status),
            total=Decimal(str(model.total)),
            currency=model.currency,
            provider_order_id=model.provider_order_id,
            authorization=authorization,
            subscription_id=model.subscription_id,
            subscription_status=SubscriptionStatus(model.subscription_status) if model.subscription_status else None,
            refund_ids=tuple(refunds),
            notes=list(notes),
        )

    @staticmethod
    def _instrument_to_entity(model: PaymentInstrumentModel) -> PaymentInstrument:
        return PaymentInstrument(
            customer_id=model.customer_id,
            kind=InstrumentKind(model.kind),
            token=model.token,
            last4=model.last4,
            expiry_year=model.expiry_year,
            expiry_month=model.expiry_month,
            brand=model.brand,
            is_default=model.is_default,
            id=str(model.id),
        )

    async def _update_order(self, order_id: int, **values) -> None:
        async with self.session_factory() as session:
            result = await session.execute(
                update(OrderModel).where(OrderModel.id == order_id).values(**values)
            )
            if result.rowcount == 0:
                raise OrderNotFoundException(order_id)
            await session.commit()

    # ============= 订单 =============

    async def add_order(self, order: Order) -> Order:
        """写入一笔订单（初始化数据/测试）"""
        auth = order.authorization
        async with self.session_factory() as session:
            session.add(OrderModel(
                id=order.id,
                customer_id=order.customer_id,
                status=order.status.value,
                total=order.total,
                currency=order.currency,
                provider_order_id=order.provider_order_id,
                subscription_id=order.subscription_id,
                subscription_status=order.subscription_status.value if order.subscription_status else None,
                authorization_id=auth.authorization_id if auth else None,
                authorization_amount=auth.amount if auth else None,
                authorization_currency=auth.currency if auth else None,
                authorization_status=auth.status.value if auth else None,
                authorization_expires_at=auth.expires_at if auth else None,
                capture_id=auth.capture_id if auth else None,
            ))
            await session.commit()
        return order

    async def link_customer(self, provider_customer_id: str, customer_id: int) -> None:
        async with self.session_factory() as session:
            model = await session.get(CustomerModel, customer_id)
            if model is None:
                session.add(CustomerModel(id=customer_id, provider_customer_id=provider_customer_id))
            else:
                model.provider_customer_id = provider_customer_id
            await session.commit()

    async def get_order(self, order_id: int) -> Optional[Order]:
        async with self.session_factory() as session:
            model = await session.get(OrderModel, order_id)
            return await self._to_entity(session, model) if model else None

    async def find_order(
        self,
        *,
        provider_order_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
    ) -> Optional[Order]:
        if provider_order_id:
            condition = OrderModel.provider_order_id == provider_order_id
        elif subscription_id:
            condition = OrderModel.subscription_id == subscription_id
        else:
            return None
        async with self.session_factory() as session:
            model = (await session.execute(
                select(OrderModel).where(condition).order_by(OrderModel.id).limit(1)
            )).scalar_one_or_none()
            return await self._to_entity(session, model) if model else None

    async def list_orders_for_customer(self, customer_id: int) -> List[Order]:
        async with self.session_factory() as session:
            models = (await session.execute(
                select(OrderModel).where(OrderModel.customer_id == customer_id).order_by(OrderModel.id)
            )).scalars().all()
            return [await self._to_entity(session, m) for m in models]

    async def update_order_status(self, order_id: int, status: OrderStatus) -> None:
        await self._update_order(order_id, status=status.value)

    async def update_authorization_status(
        self,
        order_id: int,
        status: AuthorizationStatus,
        capture_id: Optional[str] = None,
    ) -> None:
        values = {"authorization_status": status.value}
        if capture_id:
            values["capture_id"] = capture_id
        async with self.session_factory() as session:
            result = await session.execute(
                update(OrderModel)
                .where(OrderModel.id == order_id, OrderModel.authorization_id.is_not(None))
                .values(**values)
            )
            if result.rowcount == 0:
                raise DomainValidationException("Order has no authorization", field="authorization")
            await session.commit()

    async def append_order_note(self, order_id: int, text: str) -> None:
        async with self.session_factory() as session:
            if await session.get(OrderModel, order_id) is None:
                raise OrderNotFoundException(order_id)
            session.add(OrderNoteModel(order_id=order_id, text=text))
            await session.commit()

    async def record_refund(self, order_id: int, refund_id: str, amount: Decimal) -> bool:
        async with self.session_factory() as session:
            existing = (await session.execute(
                select(OrderRefundModel.id).where(
                    OrderRefundModel.order_id == order_id,
                    OrderRefundModel.refund_id == refund_id,
                )
            )).scalar_one_or_none()
            if existing is not None:
                return False
            session.add(OrderRefundModel(order_id=order_id, refund_id=refund_id, amount=amount))
            try:
                await session.commit()
            except IntegrityError:
                # 并发投递已写入同一退款
                await session.rollback()
                logger.info("refund_already_recorded", order_id=order_id, refund_id=refund_id)
                return False
            return True

    async def update_subscription_status(self, order_id: int, status: SubscriptionStatus) -> None:
        await self._update_order(order_id, subscription_status=status.value)

    # ============= 客户与支付工具 =============

    async def get_customer_local_id(self, provider_customer_id: str) -> Optional[int]:
        async with self.session_factory() as session:
            return (await session.execute(
                select(CustomerModel.id).where(CustomerModel.provider_customer_id == provider_customer_id)
            )).scalar_one_or_none()

    async def save_payment_instrument(self, customer_id: int, instrument: PaymentInstrument) -> str:
        for _ in range(2):
            async with self.session_factory() as session:
                model = (await session.execute(
                    select(PaymentInstrumentModel).where(
                        PaymentInstrumentModel.customer_id == customer_id,
                        PaymentInstrumentModel.token == instrument.token,
                    )
                )).scalar_one_or_none()
                if model is None:
                    model = PaymentInstrumentModel(customer_id=customer_id, token=instrument.token)
                    session.add(model)
                model.kind = instrument.kind.value
                model.last4 = instrument.last4
                model.expiry_year = instrument.expiry_year
                model.expiry_month = instrument.expiry_month
                model.brand = instrument.brand
                if model.is_default is None:
                    model.is_default = False
                try:
                    await session.commit()
                except IntegrityError:
                    # 并发写入了同一 (customer_id, token)，重新读取后更新
                    await session.rollback()
                    continue
                return str(model.id)
        raise DomainValidationException("Could not save payment instrument", field="token")

    async def set_default_payment_instrument(self, customer_id: int, instrument_id: str) -> None:
        try:
            target_id = int(instrument_id)
        except (TypeError, ValueError):
            raise DomainValidationException("Unknown payment instrument", field="instrument_id")
        async with self.session_factory() as session:
            target = await session.get(PaymentInstrumentModel, target_id)
            if target is None or target.customer_id != customer_id:
                raise DomainValidationException("Unknown payment instrument", field="instrument_id")
            await session.execute(
                update(PaymentInstrumentModel)
                .where(PaymentInstrumentModel.customer_id == customer_id)
                .values(is_default=PaymentInstrumentModel.id == target_id)
            )
            await session.commit()

    async def list_payment_instruments(self, customer_id: int) -> List[PaymentInstrument]:
        async with self.session_factory() as session:
            models = (await session.execute(
                select(PaymentInstrumentModel)
                .where(PaymentInstrumentModel.customer_id == customer_id)
                .order_by(PaymentInstrumentModel.id)
            )).scalars().all()
            return [self._instrument_to_entity(m) for m in models]
