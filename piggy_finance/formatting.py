"""Formatting utilities for currency and date display."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Optional, Union

from . import config
from .errors import ValidationError

CURRENCY_SYMBOLS = {
    'INR': '₹',
    'USD': '$',
    'EUR': '€',
}


def _check_currency(currency: str) -> str:
    code = (currency or '').upper()
    if code not in config.SUPPORTED_CURRENCIES:
        raise ValidationError(f"Invalid currency code '{currency}'")
    return code


def currency_symbol(currency: str = config.DEFAULT_CURRENCY) -> str:
    return CURRENCY_SYMBOLS[_check_currency(currency)]


def _indian_grouping(whole: str) -> str:
    # Last three digits, then groups of two: 12,34,567
    if len(whole) <= 3:
        return whole
    head, tail = whole[:-3], whole[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])


def format_currency(amount: Union[float, int], currency: str = config.DEFAULT_CURRENCY,
                    include_sign: bool = True) -> str:
    """Format a currency amount with two decimals.

    INR amounts use Indian digit grouping, the others Western grouping.

    Example:
        >>> format_currency(1234567.5)
        '₹12,34,567.50'
        >>> format_currency(-1234.5, 'USD')
        '-$1,234.50'
    """
    code = _check_currency(currency)
    negative = amount < 0
    whole, cents = f"{abs(amount):.2f}".split(".")
    if code == 'INR':
        grouped = _indian_grouping(whole)
    else:
        grouped = f"{int(whole):,}"
    formatted = f"{grouped}.{cents}"
    if include_sign:
        formatted = f"{CURRENCY_SYMBOLS[code]}{formatted}"
    return f"-{formatted}" if negative else formatted


def escape_currency_for_markdown(amount: float, currency: str = config.DEFAULT_CURRENCY) -> str:
    """Format an amount and escape ``$`` so markdown does not read it as LaTeX."""
    return format_currency(amount, currency).replace("$", "\\$")


def _ordinal(day: int) -> str:
    if 11 <= day % 100 <= 13:
        suffix = 'th'
    else:
        suffix = {1: 'st', 2: 'nd', 3: 'rd'}.get(day % 10, 'th')
    return f"{day}{suffix}"


def format_transaction_date(value: Union[date, datetime, str], today: Optional[date] = None) -> str:
    """Human label for a transaction date.

    Example:
        >>> format_transaction_date(date(2023, 10, 10), today=date(2024, 1, 5))
        '10th Oct 2023'
    """
    if isinstance(value, str):
        value = date.fromisoformat(value[:10])
    elif isinstance(value, datetime):
        value = value.date()
    today = today or date.today()
    if value == today:
        return 'Today'
    if value == today - timedelta(days=1):
        return 'Yesterday'
    label = f"{_ordinal(value.day)} {value.strftime('%b')}"
    if value.year == today.year:
        return label
    return f"{label} {value.year}"
