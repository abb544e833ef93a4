# daswos/schemas/coins.py
from __future__ import annotations

"""
Pydantic-схемы API монет DasWos.
- Pydantic v2, camelCase на проводе (userId, lastUpdated, ...), snake_case в коде.
- Decimal сериализуется в строку: никаких float для балансов.
- Доменную валидацию сумм (знак, 2 знака после запятой) делает сервисный слой,
  здесь только приведение типов.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


# ====== Кошелёк ===============================================================


class WalletOut(CamelModel):
    """{ userId, balance, lastUpdated }: запись кошелька."""

    user_id: int
    balance: Decimal
    last_updated: datetime

    @field_serializer("balance")
    def _ser_balance(self, v: Decimal) -> str:
        return str(v)


class BalanceOut(CamelModel):
    balance: Decimal

    @field_serializer("balance")
    def _ser_balance(self, v: Decimal) -> str:
        return str(v)


class BalanceUpdateIn(CamelModel):
    balance: Decimal
    reason: Optional[str] = Field(default=None, max_length=1000)


class AmountIn(CamelModel):
    amount: Decimal
    reason: Optional[str] = Field(default=None, max_length=1000)


# ====== Транзакции ============================================================


class TransactionOut(CamelModel):
    transaction_id: int
    from_user_id: int
    to_user_id: int
    amount: Decimal
    transaction_type: str
    timestamp: datetime
    reference_id: Optional[str] = None
    description: Optional[str] = None

    @field_serializer("amount")
    def _ser_amount(self, v: Decimal) -> str:
        return str(v)


class TransactionPageOut(CamelModel):
    transactions: list[TransactionOut] = Field(default_factory=list)
    total: int = 0
    limit: int = 10
    offset: int = 0


class TransferIn(CamelModel):
    to_user_id: int
    amount: Decimal
    description: Optional[str] = Field(default=None, max_length=1000)


class TransferOut(CamelModel):
    success: bool = True
    transaction: TransactionOut
    balance: Decimal

    @field_serializer("balance")
    def _ser_balance(self, v: Decimal) -> str:
        return str(v)


class GiveIn(CamelModel):
    user_id: int
    amount: Decimal
    reason: Optional[str] = Field(default=None, max_length=1000)


class GiveOut(CamelModel):
    success: bool = True
    transaction: TransactionOut
    wallet: WalletOut


# ====== Эмиссия и покупка =====================================================


class SupplyOut(CamelModel):
    total: Decimal
    minted: Decimal
    available: Decimal

    @field_serializer("total", "minted", "available")
    def _ser_dec(self, v: Decimal) -> str:
        return str(v)


class PurchaseIn(CamelModel):
    """coinAmount: сколько монет; amount: ожидаемая цена в валюте (сверяется с серверной)."""

    coin_amount: Decimal
    amount: Optional[Decimal] = None


class CheckoutOut(CamelModel):
    session_id: str
    url: str


class WebhookAck(CamelModel):
    received: bool = True


# ====== Рекомендации ==========================================================


class RecommendationIn(CamelModel):
    query: str = Field(..., min_length=1, max_length=500)


class RecommendationOut(CamelModel):
    product_id: str
    confidence: float
    reasoning: str
    alternatives: list["RecommendationOut"] = Field(default_factory=list)


RecommendationOut.model_rebuild()
