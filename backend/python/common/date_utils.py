"""
Date utilities for billing periods.

Billing periods follow calendar months. These helpers cover the month
arithmetic the bill generator and reminder job need.
"""

import calendar
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta


def get_first_day_of_month(year: int, month: int) -> date:
    """
    Get the first day of a given month.

    Args:
        year: Target year
        month: Target month (1-12)

    Returns:
        date: First day of the specified month
    """
    return date(year, month, 1)


def get_last_day_of_month(year: int, month: int) -> date:
    """
    Get the last day of a given month.

    Args:
        year: Target year
        month: Target month (1-12)

    Returns:
        date: Last day of the specified month
    """
    return date(year, month, calendar.monthrange(year, month)[1])


def end_of_month(d: date) -> date:
    return get_last_day_of_month(d.year, d.month)


def days_in_month(d: date) -> int:
    return calendar.monthrange(d.year, d.month)[1]


def add_months(d: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's length."""
    return d + relativedelta(months=months)


def add_days(d: date, days: int) -> date:
    return d + timedelta(days=days)


def months_between(start: date, d: date) -> int:
    """
    Whole calendar months elapsed from ``start`` to ``d``.

    Example:
        >>> months_between(date(2024, 1, 15), date(2024, 3, 14))
        1
    """
    delta = relativedelta(d, start)
    return delta.years * 12 + delta.months


def inclusive_days(start: date, end: date) -> int:
    """Number of days from start to end, counting both ends."""
    return (end - start).days + 1


def month_label(d: date) -> str:
    """Human-readable month label, e.g. 'March 2024'."""
    return f"{calendar.month_name[d.month]} {d.year}"


def format_long(d: date) -> str:
    """Long date format used in bill item descriptions, e.g. '1 March 2024'."""
    return f"{d.day} {calendar.month_name[d.month]} {d.year}"


def parse_date_string(date_str: str) -> date:
    """
    Parse a date string in YYYY-MM-DD format.

    Args:
        date_str: Date string in YYYY-MM-DD format (e.g., "2025-01-15")

    Returns:
        date object

    Raises:
        ValueError: If the string is not a valid date
    """
    parts = date_str.strip()[:10].split('-')
    if len(parts) != 3:
        raise ValueError(f"Invalid date string: {date_str!r}")
    return date(int(parts[0]), int(parts[1]), int(parts[2]))
