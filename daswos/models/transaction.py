# daswos/models/transaction.py
from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from daswos.models.base import Base, utcnow_tz
from daswos.models.types import CoinAmount, UTCDateTime


class TransactionType(str, enum.Enum):
    PURCHASE = "purchase"
    GIVEAWAY = "giveaway"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"


class CoinTransaction(Base):
    """
    Журнал движений монет (append-only).

    from_user_id / to_user_id: идентификаторы кошельков, без FK-графа объектов.
    reference_id: внешний идентификатор (платёж провайдера); уникален, если задан.
    """

    __tablename__ = "daswos_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="amount_positive"),
        CheckConstraint(
            "transaction_type IN ('purchase', 'giveaway', 'transfer', 'adjustment')",
            name="transaction_type_valid",
        ),
        Index("ix__daswos_transactions__from_user_id", "from_user_id"),
        Index("ix__daswos_transactions__to_user_id", "to_user_id"),
        Index("ix__daswos_transactions__timestamp", "timestamp"),
    )

    transaction_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    to_user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(CoinAmount, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow_tz)
    reference_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "transactionId": self.transaction_id,
            "fromUserId": self.from_user_id,
            "toUserId": self.to_user_id,
            "amount": str(self.amount),
            "transactionType": self.transaction_type,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "referenceId": self.reference_id,
            "description": self.description,
        }


__all__ = ["CoinTransaction", "TransactionType"]
