# daswos/models/types.py
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.types import DateTime, Numeric, TypeDecorator

# Все суммы в монетах: NUMERIC(20, 2)
COIN_PRECISION = 20
COIN_SCALE = 2


# ======================================================================
# UTCDateTime: хранение и возврат времени в UTC
# ======================================================================


class UTCDateTime(TypeDecorator):
    """
    Приводит datetime к UTC при записи и возвращает aware-дату в UTC при чтении.

    - Если пришла naive-дата → считаем, что это UTC.
    - Если aware-дата → конвертируем к UTC.
    - В хранилище кладём naive UTC (совместимо с SQLite).
    - При чтении возвращаем aware UTC.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


# ======================================================================
# CoinAmount: точная десятичная сумма (никаких float)
# ======================================================================


class CoinAmount(TypeDecorator):
    """
    NUMERIC(20, 2), всегда возвращает Decimal с двумя знаками.

    SQLite хранит NUMERIC как REAL/INTEGER, поэтому при чтении квантуем обратно.
    """

    impl = Numeric(COIN_PRECISION, COIN_SCALE, asdecimal=True)
    cache_ok = True

    _QUANT = Decimal(1).scaleb(-COIN_SCALE)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return Decimal(value).quantize(self._QUANT)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value).quantize(self._QUANT)


__all__ = ["UTCDateTime", "CoinAmount", "COIN_PRECISION", "COIN_SCALE"]
