# daswos/models/wallet.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Integer, text
from sqlalchemy.orm import Mapped, mapped_column

from daswos.models.base import Base, utcnow_tz
from daswos.models.types import CoinAmount, UTCDateTime

# Владелец системного кошелька (платформа / AI-агент)
SYSTEM_WALLET_USER_ID = 0


class Wallet(Base):
    """
    Кошелёк пользователя: ровно одна строка на user_id (PK гарантирует уникальность).

    Связь с пользователем: просто идентификатор, без relationship().
    """

    __tablename__ = "daswos_wallets"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="balance_non_negative"),
        CheckConstraint("user_id >= 0", name="user_id_non_negative"),
    )

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    balance: Mapped[Decimal] = mapped_column(
        CoinAmount, nullable=False, default=Decimal("0"), server_default=text("0")
    )
    last_updated: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow_tz)

    @property
    def is_system(self) -> bool:
        return self.user_id == SYSTEM_WALLET_USER_ID

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "balance": str(self.balance),
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
        }


__all__ = ["Wallet", "SYSTEM_WALLET_USER_ID"]
