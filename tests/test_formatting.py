from __future__ import annotations

from datetime import date, datetime

import pytest

from piggy_finance.errors import ValidationError
from piggy_finance.formatting import (
    currency_symbol,
    escape_currency_for_markdown,
    format_currency,
    format_transaction_date,
)


@pytest.mark.parametrize('amount, currency, expected', [
    (1234567.5, 'INR', '₹12,34,567.50'),
    (999, 'INR', '₹999.00'),
    (100000, 'INR', '₹1,00,000.00'),
    (-1234.5, 'USD', '-$1,234.50'),
    (1234567.891, 'EUR', '€1,234,567.89'),
    (0, 'usd', '$0.00'),
])
def test_format_currency(amount, currency, expected) -> None:
    assert format_currency(amount, currency) == expected


def test_format_currency_without_symbol() -> None:
    assert format_currency(-1500, 'INR', include_sign=False) == '-1,500.00'


def test_unknown_currency() -> None:
    with pytest.raises(ValidationError):
        format_currency(1, 'GBP')
    with pytest.raises(ValidationError):
        currency_symbol('XYZ')


def test_markdown_escape() -> None:
    assert escape_currency_for_markdown(5, 'USD') == '\\$5.00'
    assert escape_currency_for_markdown(5, 'INR') == '₹5.00'


def test_transaction_date_labels() -> None:
    today = date(2024, 10, 12)
    assert format_transaction_date(today, today=today) == 'Today'
    assert format_transaction_date(date(2024, 10, 11), today=today) == 'Yesterday'
    assert format_transaction_date(date(2024, 10, 10), today=today) == '10th Oct'
    assert format_transaction_date(date(2024, 10, 1), today=today) == '1st Oct'
    assert format_transaction_date(date(2024, 9, 22), today=today) == '22nd Sep'
    assert format_transaction_date(date(2024, 9, 13), today=today) == '13th Sep'
    assert format_transaction_date(date(2023, 10, 10), today=today) == '10th Oct 2023'
    assert format_transaction_date('2024-10-03T08:00:00', today=today) == '3rd Oct'
    assert format_transaction_date(datetime(2024, 10, 12, 23, 59), today=today) == 'Today'
