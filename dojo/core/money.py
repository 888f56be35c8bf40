"""
Money helpers. All monetary values are held as integer cents (smallest currency unit);
conversions to and from dollars and rate multiplication round once, half-up, to the cent.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Union

from dojo.core.config import settings

Number = Union[int, float, str, Decimal]

ONE_CENT_PLACES = Decimal("0.01")


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class Money:
    """Immutable amount of money in cents."""

    __slots__ = ("_cents", "_currency")

    def __init__(self, cents: int, currency: str | None = None) -> None:
        if isinstance(cents, bool) or not isinstance(cents, int):
            raise TypeError(f"Money requires integer cents, got {type(cents).__name__}")
        object.__setattr__(self, "_cents", cents)
        object.__setattr__(self, "_currency", (currency or settings.currency).upper())

    def __setattr__(self, name, value):
        raise AttributeError("Money is immutable")

    @property
    def cents(self) -> int:
        return self._cents

    @property
    def currency(self) -> str:
        return self._currency

    def _check_currency(self, other: "Money") -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot combine Money with {type(other).__name__}")
        if other.currency != self.currency:
            raise ValueError(f"Currency mismatch: {self.currency} vs {other.currency}")

    def __add__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self._cents + other.cents, self._currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self._cents - other.cents, self._currency)

    def __neg__(self) -> "Money":
        return Money(-self._cents, self._currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self._cents == other.cents and self._currency == other.currency

    def __lt__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self._cents < other.cents

    def __le__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self._cents <= other.cents

    def __gt__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self._cents > other.cents

    def __ge__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self._cents >= other.cents

    def __hash__(self) -> int:
        return hash((self._cents, self._currency))

    def __bool__(self) -> bool:
        return self._cents != 0

    def __repr__(self) -> str:
        return f"Money({format_money(self)} {self._currency})"


def from_cents(cents: int, currency: str | None = None) -> Money:
    """Create Money from cents (database values)."""
    if isinstance(cents, Decimal):
        cents = _round_cents(cents)
    return Money(int(cents), currency)


def to_cents(money: Money) -> int:
    """Convert Money to cents (for database storage)."""
    return money.cents


def from_dollars(dollars: Number, currency: str | None = None) -> Money:
    """Create Money from a dollar amount; rounds half-up to the cent."""
    return Money(_round_cents(_to_decimal(dollars) * 100), currency)


def to_dollars(money: Money) -> Decimal:
    """Dollar value with exactly two decimal places."""
    return (Decimal(money.cents) / 100).quantize(ONE_CENT_PLACES)


def add_money(a: Money, b: Money) -> Money:
    return a + b


def subtract_money(a: Money, b: Money) -> Money:
    return a - b


def multiply_money(money: Money, factor: Number) -> Money:
    """Multiply by a rate or quantity, rounding once to the nearest cent."""
    return Money(_round_cents(Decimal(money.cents) * _to_decimal(factor)), money.currency)


def percentage_of(money: Money, percentage: Number) -> Money:
    """`percentage` is on a 0-100 scale."""
    return Money(_round_cents(Decimal(money.cents) * _to_decimal(percentage) / 100), money.currency)


def min_money(a: Money, b: Money) -> Money:
    return a if a <= b else b


def sum_money(amounts: Iterable[Money], currency: str | None = None) -> Money:
    total = zero_money(currency)
    for amount in amounts:
        total = total + amount
    return total


def zero_money(currency: str | None = None) -> Money:
    return Money(0, currency)


def format_money(money: Money, show_currency: bool = False) -> str:
    dollars = to_dollars(money)
    formatted = f"{dollars:,.2f}"
    if show_currency:
        return f"{formatted} {money.currency}"
    return formatted


ZERO_MONEY = zero_money()
