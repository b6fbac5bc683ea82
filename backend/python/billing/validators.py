"""
Input validation for billing operations.

Parsers here accept what an HTTP handler or CLI hands over (strings,
Decimals, ints, dates) and raise ValidationError naming the field.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from common.date_utils import parse_date_string
from common.models import DepositStatus, TransactionType
from common.money import Money

from .exceptions import ValidationError


def parse_money(value: Any, field: str = 'amount', positive: bool = True,
                allow_zero: bool = False) -> Money:
    """
    Convert input to Money.

    Args:
        value: Money, Decimal, int or numeric string
        field: Field name reported in the error
        positive: Reject negative amounts
        allow_zero: Accept zero when ``positive`` is set

    Returns:
        Money rounded to cents
    """
    if value is None or value == '':
        raise ValidationError(f"{field} is required", field=field)
    if isinstance(value, float):
        # JSON numbers arrive as floats; go through their shortest repr
        value = Decimal(repr(value))
    try:
        money = value if isinstance(value, Money) else Money(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{field} is not a valid amount: {e}", field=field)

    if money != money.quantize():
        raise ValidationError(f"{field} has more than two decimal places", field=field)

    if positive:
        if money.is_negative() or (money.is_zero() and not allow_zero):
            raise ValidationError(f"{field} must be positive", field=field)
    return money.quantize()


def parse_id(value: Any, field: str) -> int:
    """Positive integer identifier."""
    if value is None or value == '':
        raise ValidationError(f"{field} is required", field=field)
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", field=field)
    if parsed <= 0:
        raise ValidationError(f"{field} must be positive", field=field)
    return parsed


def parse_date(value: Any, field: str, required: bool = True) -> Optional[date]:
    """Date from a date, datetime or YYYY-MM-DD string."""
    if value is None or value == '':
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return parse_date_string(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be a date in YYYY-MM-DD format", field=field)


def parse_deposit_status(value: Any) -> DepositStatus:
    if isinstance(value, DepositStatus):
        return value
    try:
        return DepositStatus(str(value).upper())
    except ValueError:
        valid = ', '.join(s.value for s in DepositStatus)
        raise ValidationError(f"Unknown deposit status {value!r}. Valid: {valid}", field='status')


def parse_transaction_type(value: Any) -> TransactionType:
    if isinstance(value, TransactionType):
        return value
    try:
        return TransactionType(str(value).upper())
    except ValueError:
        raise ValidationError(
            f"Unknown transaction type {value!r}. Valid: INCOME, EXPENSE", field='type'
        )
