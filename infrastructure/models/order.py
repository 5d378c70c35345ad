"""
订单/客户数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text,
    UniqueConstraint,
)
from datetime import datetime, timezone

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderModel(Base):
    """
    订单数据库模型

    授权信息直接存放在订单行上（一笔订单最多一笔授权）
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, nullable=True, index=True, comment="本地客户ID")
    status = Column(String(20), nullable=False, default="pending", index=True, comment="订单状态")
    total = Column(Numeric(precision=15, scale=2), nullable=False, comment="订单金额")
    currency = Column(String(3), nullable=False, comment="货币代码 ISO-4217")

    provider_order_id = Column(String(64), nullable=True, index=True, comment="渠道订单ID")
    subscription_id = Column(String(64), nullable=True, index=True, comment="渠道订阅ID")
    subscription_status = Column(String(20), nullable=True, comment="订阅状态")

    # 授权
    authorization_id = Column(String(64), nullable=True, index=True, comment="渠道授权ID")
    authorization_amount = Column(Numeric(precision=15, scale=2), nullable=True)
    authorization_currency = Column(String(3), nullable=True)
    authorization_status = Column(String(20), nullable=True, comment="CREATED/CAPTURED/VOIDED/EXPIRED")
    authorization_expires_at = Column(DateTime(timezone=True), nullable=True)
    capture_id = Column(String(64), nullable=True, comment="扣款ID")

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)


class OrderNoteModel(Base):
    """订单备注（对账过程的可读记录）"""
    __tablename__ = "order_notes"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class OrderRefundModel(Base):
    """已记录的退款；(order_id, refund_id) 唯一保证重复通知不重复记账"""
    __tablename__ = "order_refunds"
    __table_args__ = (UniqueConstraint("order_id", "refund_id", name="uq_order_refund"),)

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    refund_id = Column(String(64), nullable=False)
    amount = Column(Numeric(precision=15, scale=2), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class CustomerModel(Base):
    """渠道客户ID 与本地客户ID 的映射"""
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True)
    provider_customer_id = Column(String(64), nullable=True, unique=True, index=True)


class PaymentInstrumentModel(Base):
    """保存的支付工具；(customer_id, token) 唯一"""
    __tablename__ = "payment_instruments"
    __table_args__ = (UniqueConstraint("customer_id", "token", name="uq_instrument_customer_token"),)

    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, nullable=False, index=True)
    kind = Column(String(10), nullable=False, comment="card/wallet")
    token = Column(String(128), nullable=False)
    last4 = Column(String(4), nullable=False, default="")
    expiry_year = Column(String(4), nullable=False, default="")
    expiry_month = Column(String(2), nullable=False, default="")
    brand = Column(String(32), nullable=False, default="")
    is_default = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
