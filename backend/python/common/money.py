"""
Exact currency arithmetic for the billing engine.

All monetary values flow through Money, a thin immutable wrapper around
Decimal. Floats are rejected at construction so binary rounding never
enters a balance.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from functools import total_ordering
from typing import Union

CENTS = Decimal('0.01')

MoneyLike = Union['Money', Decimal, int, str]


def _to_decimal(value) -> Decimal:
    if isinstance(value, Money):
        return value.amount
    if isinstance(value, bool):
        raise TypeError("Money does not accept booleans")
    if isinstance(value, float):
        raise TypeError("Money does not accept floats, pass a str or Decimal")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"Invalid money amount: {value!r}")
    raise TypeError(f"Cannot convert {type(value).__name__} to Money")


@total_ordering
class Money:
    """
    Immutable decimal currency amount.

    Example:
        >>> Money('50.00') + Money('100')
        Money('150.00')
    """

    __slots__ = ('amount',)

    def __init__(self, value: MoneyLike = 0):
        amount = _to_decimal(value)
        if not amount.is_finite():
            raise ValueError(f"Money must be finite, got {value!r}")
        object.__setattr__(self, 'amount', amount)

    def __setattr__(self, name, value):
        raise AttributeError("Money is immutable")

    @classmethod
    def zero(cls) -> 'Money':
        return cls(0)

    @classmethod
    def sum(cls, values) -> 'Money':
        """Sum an iterable of Money-like values, starting at zero."""
        total = Decimal(0)
        for value in values:
            total += _to_decimal(value)
        return cls(total)

    # Arithmetic

    def __add__(self, other: MoneyLike) -> 'Money':
        return Money(self.amount + _to_decimal(other))

    __radd__ = __add__

    def __sub__(self, other: MoneyLike) -> 'Money':
        return Money(self.amount - _to_decimal(other))

    def __rsub__(self, other: MoneyLike) -> 'Money':
        return Money(_to_decimal(other) - self.amount)

    def __mul__(self, factor: Union[Decimal, int, str]) -> 'Money':
        if isinstance(factor, Money):
            raise TypeError("Cannot multiply Money by Money")
        return Money(self.amount * _to_decimal(factor))

    __rmul__ = __mul__

    def __neg__(self) -> 'Money':
        return Money(-self.amount)

    def __abs__(self) -> 'Money':
        return Money(abs(self.amount))

    # Comparison (exact decimal comparison, scale-insensitive)

    def __eq__(self, other) -> bool:
        try:
            return self.amount == _to_decimal(other)
        except (TypeError, ValueError):
            return NotImplemented

    def __lt__(self, other: MoneyLike) -> bool:
        return self.amount < _to_decimal(other)

    def __hash__(self) -> int:
        return hash(self.amount.normalize())

    def __bool__(self) -> bool:
        return not self.is_zero()

    def is_zero(self) -> bool:
        return self.amount == 0

    def is_positive(self) -> bool:
        return self.amount > 0

    def is_negative(self) -> bool:
        return self.amount < 0

    def min(self, other: MoneyLike) -> 'Money':
        other_amount = _to_decimal(other)
        return self if self.amount <= other_amount else Money(other_amount)

    def quantize(self, exp: Decimal = CENTS, rounding: str = ROUND_HALF_UP) -> 'Money':
        """Round to a fixed number of places (cents by default)."""
        return Money(self.amount.quantize(exp, rounding=rounding))

    def to_string(self) -> str:
        """Fixed-point string with two decimal places, for client transport."""
        return format(self.amount.quantize(CENTS, rounding=ROUND_HALF_UP), 'f')

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        return f"Money('{self.to_string()}')"
