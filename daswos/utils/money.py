# daswos/utils/money.py
"""
Parsing and normalisation of coin amounts and wallet owner ids.

Everything that reaches the ledger goes through these helpers: amounts are
exact Decimals with at most two fractional digits, never floats.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from daswos.core.exceptions import InvalidArgumentError
from daswos.models.types import COIN_PRECISION, COIN_SCALE

QUANT = Decimal(1).scaleb(-COIN_SCALE)  # 0.01
MAX_AMOUNT = Decimal(10) ** (COIN_PRECISION - COIN_SCALE) - QUANT
MAX_USER_ID = 2**31 - 1  # INTEGER column


def to_decimal(value: Any, *, field: str = "amount") -> Decimal:
    """Decimal из int/str/Decimal (float: через str). bool и мусор → InvalidArgumentError."""
    if value is None or isinstance(value, bool):
        raise InvalidArgumentError(f"{field} must be a number", extra={"field": field})
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, (int, float)):
        d = Decimal(str(value))
    elif isinstance(value, str):
        try:
            d = Decimal(value.strip())
        except InvalidOperation:
            raise InvalidArgumentError(f"{field} must be a number", extra={"field": field, "value": value}) from None
    else:
        raise InvalidArgumentError(f"{field} must be a number", extra={"field": field})
    if not d.is_finite():
        raise InvalidArgumentError(f"{field} must be finite", extra={"field": field})
    return d


def parse_balance(value: Any, *, field: str = "balance") -> Decimal:
    """Non-negative coin quantity, at most two decimal places, quantized to 0.01."""
    d = to_decimal(value, field=field)
    if d < 0:
        raise InvalidArgumentError(f"{field} must not be negative", extra={"field": field, "value": str(d)})
    if d.normalize().as_tuple().exponent < -COIN_SCALE:
        raise InvalidArgumentError(
            f"{field} supports at most {COIN_SCALE} decimal places", extra={"field": field, "value": str(d)}
        )
    if d > MAX_AMOUNT:
        raise InvalidArgumentError(f"{field} is too large", extra={"field": field, "value": str(d)})
    return d.quantize(QUANT)


def parse_amount(value: Any, *, field: str = "amount") -> Decimal:
    """Strictly positive coin quantity (credits, debits, transfers)."""
    d = parse_balance(value, field=field)
    if d == 0:
        raise InvalidArgumentError(f"{field} must be positive", extra={"field": field})
    return d


def parse_user_id(value: Any, *, field: str = "user_id") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgumentError(f"{field} must be an integer", extra={"field": field})
    if value < 0 or value > MAX_USER_ID:
        raise InvalidArgumentError(f"{field} is out of range", extra={"field": field, "value": value})
    return value


__all__ = ["QUANT", "MAX_AMOUNT", "MAX_USER_ID", "to_decimal", "parse_balance", "parse_amount", "parse_user_id"]
