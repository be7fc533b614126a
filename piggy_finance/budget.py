"""Budget allocation from the default piggy bank.

The default bank's effective balance is spread over what is left of the
month: per remaining day for the daily budget, per remaining Monday
week for the weekly one, and as a lump for the monthly one.

Two figures are reported per period.  ``available`` is what can still
be spent from the live balance.  ``initial_budget`` is what the period
started with: the immutable snapshot stored when the first expense of
the period hit the default bank, or, before any snapshot exists, the
balance as it stood at the period start prorated the same way.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Union

from . import db
from .balances import effective_balance, signed_amount
from .errors import NoDefaultBankError, ValidationError
from .models import PERIOD_TYPES, BudgetData, BudgetRecord, BudgetsResponse, PiggyBank, Transaction
from .periods import (
    days_remaining_in_month,
    period_end,
    period_start,
    weeks_remaining_in_month,
)

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime]


def default_piggy_bank(user_id: str, conn: Optional[sqlite3.Connection] = None) -> PiggyBank:
    bank = db.find_piggy_bank({'user_id': user_id, 'is_default': True}, conn=conn)
    if bank is None:
        raise NoDefaultBankError(f"No default piggy bank found for user {user_id}")
    return bank


def bank_effective_balance(bank: PiggyBank, conn: Optional[sqlite3.Connection] = None) -> float:
    return effective_balance(bank, db.find_transactions({'piggy_bank_id': bank.id}, conn=conn))


def period_divisor(period_type: str, now: DateLike) -> int:
    if period_type == 'day':
        return days_remaining_in_month(now)
    if period_type == 'week':
        return weeks_remaining_in_month(now)
    return 1


def spent_in(transactions: Iterable[Transaction]) -> float:
    """User spending: expenses not flagged as system bookkeeping."""
    return round(sum(t.amount for t in transactions
                     if t.type == 'expense' and not t.exclude_from_daily_spent), 2)


def net_user_effect(transactions: Iterable[Transaction]) -> float:
    return round(sum(signed_amount(t.type, t.amount) for t in transactions
                     if not t.exclude_from_daily_spent), 2)


def _period_transactions(bank: PiggyBank, period_type: str, start: date,
                         conn: Optional[sqlite3.Connection]) -> List[Transaction]:
    return db.find_transactions(
        {'user_id': bank.user_id, 'piggy_bank_id': bank.id},
        conn=conn,
        date_from=start,
        date_to=period_end(period_type, start),
    )


def _prorated_start_budget(balance: float, period_txns: List[Transaction],
                           period_type: str, now: DateLike) -> float:
    return round((balance - net_user_effect(period_txns)) / period_divisor(period_type, now), 2)


def calculate_budgets(user_id: str, now: Optional[DateLike] = None,
                      conn: Optional[sqlite3.Connection] = None) -> BudgetsResponse:
    """Daily, weekly and monthly budgets for ``user_id`` at ``now``.

    Raises:
        NoDefaultBankError: if the user has no default piggy bank
    """
    now = now or datetime.now()
    bank = default_piggy_bank(user_id, conn=conn)
    balance = bank_effective_balance(bank, conn=conn)

    starts = {p: period_start(p, now) for p in PERIOD_TYPES}
    records: Dict[str, BudgetRecord] = {}
    for record in db.find_budget_records({'user_id': user_id}, conn=conn):
        if starts.get(record.period_type) == record.period_start_date:
            records[record.period_type] = record

    results: Dict[str, BudgetData] = {}
    for p in PERIOD_TYPES:
        txns = _period_transactions(bank, p, starts[p], conn)
        record = records.get(p)
        initial = record.initial_budget if record else _prorated_start_budget(balance, txns, p, now)
        results[p] = BudgetData(
            period_type=p,
            available=round(balance / period_divisor(p, now), 2),
            period_start_date=starts[p],
            spent=spent_in(txns),
            initial_budget=initial,
        )

    return BudgetsResponse(daily=results['day'], weekly=results['week'], monthly=results['month'])


def create_budget_record(user_id: str, period_type: str, period_start_date: DateLike,
                         initial_budget: float,
                         conn: Optional[sqlite3.Connection] = None) -> BudgetRecord:
    """Store a period snapshot unless one already exists; never updates.

    Returns the stored record, which is the pre-existing one when the
    key was already taken.
    """
    if period_type not in PERIOD_TYPES:
        raise ValidationError(f"Unknown period type '{period_type}'. Expected one of {PERIOD_TYPES}")
    record, created = db.find_or_create_budget_record(
        (user_id, period_type, period_start_date), float(initial_budget), conn=conn
    )
    if created:
        logger.info("Budget snapshot %s %s for user %s: %.2f",
                    period_type, record.period_start_date, user_id, record.initial_budget)
    return record


def snapshot_budgets(user_id: str, now: Optional[DateLike] = None,
                     conn: Optional[sqlite3.Connection] = None) -> List[BudgetRecord]:
    """Freeze the current period allowances for any period lacking a snapshot.

    Called by the ledger just before an expense is posted to the default
    bank, so the stored figure is the pre-expense allowance.
    """
    now = now or datetime.now()
    bank = default_piggy_bank(user_id, conn=conn)
    balance = bank_effective_balance(bank, conn=conn)
    records: List[BudgetRecord] = []
    for p in PERIOD_TYPES:
        start = period_start(p, now)
        txns = _period_transactions(bank, p, start, conn)
        records.append(create_budget_record(
            user_id, p, start, _prorated_start_budget(balance, txns, p, now), conn=conn
        ))
    return records
