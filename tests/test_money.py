from decimal import Decimal

import pytest

from daswos.core.exceptions import InvalidArgumentError
from daswos.utils.money import parse_amount, parse_balance, parse_user_id


@pytest.mark.parametrize(
    "value,expected",
    [(0, "0.00"), ("12.5", "12.50"), (Decimal("3"), "3.00"), (0.1, "0.10"), (" 7.25 ", "7.25")],
)
def test_parse_balance(value, expected):
    assert parse_balance(value) == Decimal(expected)
    assert str(parse_balance(value)) == expected


@pytest.mark.parametrize("value", ["1e30", "-0.5", "0.123", "", [], {}])
def test_parse_balance_rejects(value):
    with pytest.raises(InvalidArgumentError):
        parse_balance(value)


def test_parse_amount_requires_positive():
    assert parse_amount("0.01") == Decimal("0.01")
    with pytest.raises(InvalidArgumentError) as ei:
        parse_amount(0)
    assert ei.value.extra["field"] == "amount"


def test_parse_user_id():
    assert parse_user_id(0) == 0
    with pytest.raises(InvalidArgumentError) as ei:
        parse_user_id(False, field="to_user_id")
    assert ei.value.extra["field"] == "to_user_id"
