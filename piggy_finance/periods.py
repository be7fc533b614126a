"""Period boundary helpers for budget proration.

All functions are pure and accept either a ``date`` or a ``datetime`` as
the reference instant; time of day is ignored.  Weeks run Monday to
Sunday.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta
from typing import Union

from .errors import ValidationError
from .models import PERIOD_TYPES

DateLike = Union[date, datetime]


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def day_start(now: DateLike) -> date:
    return _as_date(now)


def month_start(now: DateLike) -> date:
    """First day of ``now``'s month."""
    d = _as_date(now)
    return d.replace(day=1)


def month_end(now: DateLike) -> date:
    """Last calendar day of ``now``'s month."""
    d = _as_date(now)
    return d.replace(day=calendar.monthrange(d.year, d.month)[1])


def week_start(now: DateLike) -> date:
    """Most recent Monday on or before ``now`` (Sunday goes back six days)."""
    d = _as_date(now)
    return d - timedelta(days=d.weekday())


def weeks_remaining_in_month(now: DateLike) -> int:
    """Monday-anchored weeks from the current week through the week holding the month's last day."""
    current = week_start(now)
    last = week_start(month_end(now))
    return max(1, (last - current).days // 7 + 1)


def days_remaining_in_month(now: DateLike) -> int:
    """Days left in the month, counting today."""
    d = _as_date(now)
    return month_end(d).day - d.day + 1


def months_between(start: DateLike, end: DateLike) -> int:
    """Calendar months touched from ``start`` to ``end``, both ends included.

    Nov 3 -> Dec 31 is 2 months; the result is never below 1.
    """
    s, e = _as_date(start), _as_date(end)
    months = (e.year - s.year) * 12 + (e.month - s.month) + 1
    return max(1, months)


def period_start(period_type: str, now: DateLike) -> date:
    if period_type == 'day':
        return day_start(now)
    if period_type == 'week':
        return week_start(now)
    if period_type == 'month':
        return month_start(now)
    raise ValidationError(f"Unknown period type '{period_type}'. Expected one of {PERIOD_TYPES}")


def period_end(period_type: str, start: DateLike) -> date:
    """Exclusive end of the period beginning at ``start``."""
    s = _as_date(start)
    if period_type == 'day':
        return s + timedelta(days=1)
    if period_type == 'week':
        return s + timedelta(days=7)
    if period_type == 'month':
        return month_end(s) + timedelta(days=1)
    raise ValidationError(f"Unknown period type '{period_type}'. Expected one of {PERIOD_TYPES}")
