"""
Test suite for currency module

Tests Money arithmetic, precision per currency and user amount parsing.
"""

import pytest
from decimal import Decimal

from horizon_banking.currency import MAX_AMOUNT, Money, Currency, parse_amount, parse_positive_amount
from horizon_banking.errors import InvalidAmount


class TestMoney:
    """Test Money class operations"""

    def test_money_rounds_to_currency_precision(self):
        assert Money(Decimal('100.555'), Currency.USD).amount == Decimal('100.56')
        assert Money(Decimal('0.123456789'), Currency.BTC).amount == Decimal('0.12345679')

    def test_money_from_non_decimal(self):
        money = Money(10, Currency.USD)
        assert money.amount == Decimal('10.00')

    def test_money_arithmetic(self):
        a = Money(Decimal('100.50'), Currency.USD)
        b = Money(Decimal('50.25'), Currency.USD)

        assert (a + b).amount == Decimal('150.75')
        assert (a - b).amount == Decimal('50.25')
        assert (-a).amount == Decimal('-100.50')
        assert b < a
        assert a > b

    def test_mixed_currency_rejected(self):
        with pytest.raises(ValueError):
            Money(Decimal('1'), Currency.USD) + Money(Decimal('1'), Currency.BTC)

    def test_sign_checks(self):
        assert Money(Decimal('0.01'), Currency.USD).is_positive()
        assert Money(Decimal('-0.01'), Currency.USD).is_negative()
        assert not Money(Decimal('0'), Currency.USD).is_positive()

    def test_to_string(self):
        assert Money(Decimal('1234'), Currency.USD).to_string() == "$1,234.00"
        assert Money(Decimal('0.00000001'), Currency.BTC).to_string() == "0.00000001 BTC"


class TestCurrency:

    def test_from_code_is_case_insensitive(self):
        assert Currency.from_code("btc") is Currency.BTC
        assert Currency.from_code(" USD ") is Currency.USD

    def test_unknown_code(self):
        with pytest.raises(InvalidAmount):
            Currency.from_code("EUR")


class TestParseAmount:
    """Amounts arrive from request bodies as numbers or strings"""

    @pytest.mark.parametrize("value,expected", [
        (50, Decimal('50')),
        (12.5, Decimal('12.5')),
        ("1,250.00", Decimal('1250.00')),
        ("$ 40", Decimal('40')),
        (Decimal('3.14'), Decimal('3.14')),
    ])
    def test_valid_amounts(self, value, expected):
        assert parse_amount(value) == expected

    @pytest.mark.parametrize("value", [None, True, "", "abc", "NaN", "Infinity", float("inf"), [], {}])
    def test_invalid_amounts(self, value):
        with pytest.raises(InvalidAmount):
            parse_amount(value)

    def test_negative_allowed_by_parse_amount(self):
        assert parse_amount("-5") == Decimal('-5')

    @pytest.mark.parametrize("value", [0, "0", -1, "-0.01"])
    def test_positive_amount_rejects_non_positive(self, value):
        with pytest.raises(InvalidAmount):
            parse_positive_amount(value)

    @pytest.mark.parametrize("value", [1e30, "1000000000000000000000000000", "-1e13", "1e999999"])
    def test_oversized_amounts_rejected(self, value):
        with pytest.raises(InvalidAmount):
            parse_amount(value)

    def test_maximum_amount_accepted(self):
        assert parse_positive_amount(MAX_AMOUNT) == MAX_AMOUNT
        assert Money(MAX_AMOUNT, Currency.BTC).amount == MAX_AMOUNT

    def test_money_beyond_decimal_context_is_invalid_amount(self):
        with pytest.raises(InvalidAmount):
            Money(Decimal("1" + "0" * 30), Currency.USD)
