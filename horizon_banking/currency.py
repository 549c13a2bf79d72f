"""
Currency Module

Fiat (USD) and crypto (BTC) amounts with proper Decimal precision.
NEVER uses float for stored monetary values.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from enum import Enum
import re

from .errors import InvalidAmount

# Set global decimal context for financial precision
getcontext().prec = 28


class Currency(Enum):
    """Supported currencies with precision info"""
    USD = ("USD", 2)  # fiat balance
    BTC = ("BTC", 8)  # crypto balance

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        try:
            return cls[str(code).strip().upper()]
        except KeyError:
            raise InvalidAmount(f"Unsupported currency: {code}")


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))

        try:
            rounded = self.amount.quantize(
                Decimal('0.1') ** self.currency.precision,
                rounding=ROUND_HALF_UP
            )
        except InvalidOperation:
            # More digits than the decimal context can hold
            raise InvalidAmount("Amount is too large")
        object.__setattr__(self, 'amount', rounded)

    def _check(self, other: 'Money', verb: str) -> None:
        if self.currency != other.currency:
            raise ValueError(f"Cannot {verb} {self.currency.code} and {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __lt__(self, other: 'Money') -> bool:
        self._check(other, "compare")
        return self.amount < other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check(other, "compare")
        return self.amount > other.amount

    def is_positive(self) -> bool:
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        return self.amount < Decimal('0')

    def to_string(self) -> str:
        """Format for display"""
        if self.currency is Currency.BTC:
            return f"{self.amount:.8f} BTC"
        return f"${self.amount:,.2f}"


_AMOUNT_NOISE = re.compile(r'[,\s$]')

# Largest magnitude a single amount may carry (one trillion units)
MAX_AMOUNT = Decimal('1000000000000')


def parse_amount(value) -> Decimal:
    """
    Parse a user supplied amount into a finite Decimal.

    Accepts ints, floats, Decimals and numeric strings ("1,250.00", "$ 40").

    Raises:
        InvalidAmount: if the value is missing, boolean, non-numeric, not finite
            or larger in magnitude than MAX_AMOUNT
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmount()

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = _AMOUNT_NOISE.sub('', value)
        if not cleaned:
            raise InvalidAmount()
        try:
            result = Decimal(cleaned)
        except InvalidOperation:
            raise InvalidAmount()
    else:
        raise InvalidAmount()

    if not result.is_finite():
        raise InvalidAmount()
    if abs(result) > MAX_AMOUNT:
        raise InvalidAmount(f"Amount exceeds the maximum of {MAX_AMOUNT:,}")
    return result


def parse_positive_amount(value) -> Decimal:
    """Parse an amount that must be strictly greater than zero"""
    result = parse_amount(value)
    if result <= 0:
        raise InvalidAmount("Amount must be greater than zero")
    return result
