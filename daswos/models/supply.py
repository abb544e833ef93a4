# daswos/models/supply.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Integer, text
from sqlalchemy.orm import Mapped, mapped_column

from daswos.models.base import Base, utcnow_tz
from daswos.models.types import CoinAmount, UTCDateTime


class CoinSupply(Base):
    """Эмиссия монет: общий объём и сколько уже продано (minted)."""

    __tablename__ = "daswos_coins_total_supply"
    __table_args__ = (
        CheckConstraint("minted_amount >= 0", name="minted_non_negative"),
        CheckConstraint("minted_amount <= total_amount", name="minted_within_total"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    total_amount: Mapped[Decimal] = mapped_column(CoinAmount, nullable=False)
    minted_amount: Mapped[Decimal] = mapped_column(
        CoinAmount, nullable=False, default=Decimal("0"), server_default=text("0")
    )
    creation_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow_tz)

    @property
    def available(self) -> Decimal:
        return self.total_amount - self.minted_amount


__all__ = ["CoinSupply"]
