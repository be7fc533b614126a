"""Savings-goal pacing for piggy banks with a target and due date."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional, Union

from .models import Transaction
from .periods import month_start, months_between, period_end

DateLike = Union[date, datetime]


@dataclass
class GoalHint:
    suggested_amount: float
    remaining_months: int
    remaining_amount: float


def goal_progress(balance: float, goal: Optional[float]) -> float:
    """Fraction of the goal reached, clamped to [0, 1]."""
    if not goal or goal <= 0:
        return 0.0
    return max(0.0, min(balance / goal, 1.0))


def suggested_contribution(
    balance: float,
    goal: Optional[float],
    goal_due_date: Optional[DateLike],
    now: Optional[DateLike] = None,
) -> Optional[GoalHint]:
    """Monthly amount that reaches ``goal`` by ``goal_due_date``.

    The months count includes both the current and the due month.
    Returns ``None`` for banks without a goal or due date.
    """
    if goal is None or goal_due_date is None:
        return None
    now = now or datetime.now()
    remaining_amount = round(max(goal - balance, 0.0), 2)
    remaining_months = months_between(now, goal_due_date)
    suggested = remaining_amount / remaining_months if remaining_amount > 0 else 0.0
    return GoalHint(
        suggested_amount=round(suggested, 2),
        remaining_months=remaining_months,
        remaining_amount=remaining_amount,
    )


def has_transfer_from_this_month(
    transactions: Iterable[Transaction],
    source_bank_id: Optional[int],
    now: Optional[DateLike] = None,
) -> bool:
    """Whether a transfer from ``source_bank_id`` landed in this month."""
    if source_bank_id is None:
        return False
    start = month_start(now or datetime.now())
    end = period_end('month', start)
    return any(
        t.type == 'income' and t.counterparty_bank_id == source_bank_id and start <= t.date < end
        for t in transactions
    )
