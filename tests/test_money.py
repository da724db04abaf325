from decimal import Decimal

import pytest

from billminder.money import format_amount, group_indian, to_decimal


@pytest.mark.parametrize(
    "value,expected",
    [
        (Decimal("0"), "0"),
        (Decimal("999"), "999"),
        (Decimal("1000"), "1,000"),
        (Decimal("25000"), "25,000"),
        (Decimal("100000"), "1,00,000"),
        (Decimal("1234567"), "12,34,567"),
        (Decimal("10000000"), "1,00,00,000"),
    ],
)
def test_group_indian(value, expected):
    assert group_indian(value) == expected


def test_group_indian_rounds_half_up():
    assert group_indian(Decimal("1499.50")) == "1,500"
    assert group_indian(Decimal("1499.49")) == "1,499"
    assert group_indian(Decimal("0.5")) == "1"


def test_format_amount():
    assert format_amount(Decimal("15000")) == "₹15,000"


def test_to_decimal_parses_strings():
    assert to_decimal("25,000") == Decimal("25000.00")
    assert to_decimal(" 12.345 ") == Decimal("12.35")
    assert to_decimal(100) == Decimal("100.00")


def test_to_decimal_rejects_junk():
    with pytest.raises(ValueError):
        to_decimal("abc")
    with pytest.raises(ValueError):
        to_decimal("NaN")
    with pytest.raises(ValueError):
        to_decimal("Infinity")
