"""
客户支付工具（保存的卡 / 钱包令牌）及客户ID编码规则
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Mapping, Optional


class InstrumentKind(str, Enum):
    CARD = "card"
    WALLET = "wallet"


@dataclass(frozen=True)
class PaymentInstrument:
    """
    保存在本地的可复用支付工具

    唯一性：(customer_id, token)。重复保存同一令牌只更新，不新增。
    """

    customer_id: int
    kind: InstrumentKind
    token: str
    last4: str = ""
    expiry_year: str = ""
    expiry_month: str = ""
    brand: str = ""
    is_default: bool = False
    id: Optional[str] = None

    @property
    def identity(self) -> tuple[int, str]:
        return (self.customer_id, self.token)

    def with_id(self, instrument_id: str) -> "PaymentInstrument":
        return replace(self, id=instrument_id)

    @classmethod
    def card(cls, customer_id: int, token: str, card: Mapping[str, Any]) -> "PaymentInstrument":
        # expiry is sent as "YYYY-MM"
        parts = str(card.get("expiry") or "").split("-")
        return cls(
            customer_id=customer_id,
            kind=InstrumentKind.CARD,
            token=token,
            last4=str(card.get("last_digits") or ""),
            expiry_year=parts[0] if parts else "",
            expiry_month=parts[1] if len(parts) > 1 else "",
            brand=str(card.get("brand") or ""),
        )

    @classmethod
    def wallet(cls, customer_id: int, token: str) -> "PaymentInstrument":
        return cls(customer_id=customer_id, kind=InstrumentKind.WALLET, token=token)


def parse_customer_id(prefix: str, value: Any) -> Optional[int]:
    """
    解析渠道侧客户ID（`<prefix><本地数字ID>`）

    非字符串、前缀不匹配或剩余部分不是正整数时返回 None，
    由调用方决定如何处理（不做隐式类型转换）。
    """
    if not isinstance(value, str) or not value:
        return None
    if prefix:
        if not value.startswith(prefix):
            return None
        value = value[len(prefix):]
    if not (value.isascii() and value.isdigit()):
        return None
    local_id = int(value)
    return local_id if local_id > 0 else None
