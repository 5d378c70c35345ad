"""
订单领域实体 - 订单与授权记录

本地订单状态由宿主店铺存储维护，这里只描述对账逻辑需要读取和更新的部分。
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException


class OrderStatus(str, Enum):
    """订单状态枚举（与宿主店铺的状态保持一致）"""
    PENDING = "pending"           # 待支付
    ON_HOLD = "on-hold"           # 已授权待扣款 / 争议冻结
    PROCESSING = "processing"     # 已付款
    COMPLETED = "completed"       # 已完成
    CANCELLED = "cancelled"       # 已取消
    REFUNDED = "refunded"         # 已退款
    FAILED = "failed"             # 失败


PAID_STATUSES = frozenset({OrderStatus.PROCESSING, OrderStatus.COMPLETED})


class AuthorizationStatus(str, Enum):
    """授权状态枚举"""
    CREATED = "CREATED"
    CAPTURED = "CAPTURED"
    VOIDED = "VOIDED"
    EXPIRED = "EXPIRED"


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    CANCELLED = "CANCELLED"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class AuthorizationRecord:
    """
    授权记录 - 渠道侧冻结但尚未扣款的资金

    业务规则：
    1. 金额必须大于0
    2. 一笔授权最多扣款一次
    3. 过期的授权不能再扣款
    """

    authorization_id: str
    amount: Decimal
    currency: str
    status: AuthorizationStatus = AuthorizationStatus.CREATED
    expires_at: Optional[datetime] = None
    capture_id: Optional[str] = None

    def __post_init__(self):
        if not self.authorization_id:
            raise DomainValidationException("授权ID不能为空", field="authorization_id")
        if self.amount <= 0:
            raise DomainValidationException(
                f"授权金额必须大于0: {self.amount}",
                field="amount"
            )
        object.__setattr__(self, "expires_at", _ensure_utc(self.expires_at))

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.status == AuthorizationStatus.EXPIRED:
            return True
        if self.expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expires_at

    def is_capturable(self, now: Optional[datetime] = None) -> bool:
        """只有 CREATED 且未过期的授权可以扣款"""
        return self.status == AuthorizationStatus.CREATED and not self.is_expired(now)

    def with_status(
        self,
        status: AuthorizationStatus,
        capture_id: Optional[str] = None,
    ) -> "AuthorizationRecord":
        return replace(self, status=status, capture_id=capture_id or self.capture_id)


@dataclass
class Order:
    """
    本地订单视图

    对账逻辑只通过 LocalStateAdapter 读写订单，不直接持有存储。
    """

    id: int
    customer_id: Optional[int]
    status: OrderStatus
    total: Decimal
    currency: str
    provider_order_id: Optional[str] = None
    authorization: Optional[AuthorizationRecord] = None
    subscription_id: Optional[str] = None
    subscription_status: Optional[SubscriptionStatus] = None
    refund_ids: tuple[str, ...] = ()
    notes: list[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(
                f"无效的货币代码: {self.currency}",
                field="currency"
            )
        self.currency = self.currency.upper()

    @property
    def is_paid(self) -> bool:
        return self.status in PAID_STATUSES

    def has_capturable_authorization(self, now: Optional[datetime] = None) -> bool:
        return self.authorization is not None and self.authorization.is_capturable(now)

    def has_refund(self, refund_id: str) -> bool:
        return refund_id in self.refund_ids
