"""Balance reconciliation between a bank's stored balance and its ledger.

A bank's ``current_balance`` is a cache that the engine keeps in step
with the ledger by writing a matching transaction for every change.
When the two disagree the stored value has been overridden out of band
and is reported as-is.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Sequence

import numpy as np
import pandas as pd

from .models import BankBalance, PiggyBank, Transaction


def signed_amount(t_type: str, amount: float) -> float:
    return amount if t_type == 'income' else -amount


def calculated_balance(transactions: Iterable[Transaction]) -> float:
    """Sum of signed amounts, rounded to cents."""
    return round(sum(signed_amount(t.type, t.amount) for t in transactions), 2)


def reconcile(stored: float, calculated: float) -> float:
    """Stored balance wins whenever it diverges from the ledger sum."""
    stored = round(stored, 2)
    return stored if stored != calculated else calculated


def effective_balance(bank: PiggyBank, transactions: Iterable[Transaction]) -> float:
    return reconcile(bank.current_balance, calculated_balance(transactions))


def is_manually_adjusted(bank: PiggyBank, transactions: Iterable[Transaction]) -> bool:
    return round(bank.current_balance, 2) != calculated_balance(transactions)


def hierarchy_balance(
    bank: PiggyBank,
    transactions: Sequence[Transaction],
    children: Sequence[PiggyBank] = (),
    child_transactions: Mapping[int, Sequence[Transaction]] | None = None,
) -> BankBalance:
    """Own, children and total balance for ``bank``.

    ``child_transactions`` maps child id to that child's ledger; a child
    missing from it is reconciled against an empty ledger.
    """
    child_transactions = child_transactions or {}
    calc = calculated_balance(transactions)
    children_total = sum(
        effective_balance(child, child_transactions.get(child.id, ())) for child in children
    )
    return BankBalance(
        bank_id=bank.id,
        calculated_balance=calc,
        own_balance=reconcile(bank.current_balance, calc),
        children_total=round(children_total, 2),
    )


def ledger_balances(frame: pd.DataFrame) -> pd.Series:
    """Calculated balance per ``piggy_bank_id`` from a transactions frame.

    Expects ``Type`` and ``Amount`` columns as returned by
    :func:`piggy_finance.db.fetch_transactions_frame`.  Rows without a
    bank are ignored.
    """
    if frame is None or frame.empty:
        return pd.Series(dtype=float, name='calculated_balance')
    working = frame.dropna(subset=['piggy_bank_id']).copy()
    if working.empty:
        return pd.Series(dtype=float, name='calculated_balance')
    working['Amount'] = pd.to_numeric(working['Amount'], errors='coerce').fillna(0.0)
    working['__signed__'] = np.where(working['Type'] == 'income', working['Amount'], -working['Amount'])
    totals = working.groupby(working['piggy_bank_id'].astype(int))['__signed__'].sum().round(2)
    totals.name = 'calculated_balance'
    return totals


def reconciliation_frame(banks: pd.DataFrame, transactions: pd.DataFrame) -> pd.DataFrame:
    """Join stored and ledger balances per bank and flag overrides.

    ``banks`` is the frame from :func:`piggy_finance.db.fetch_piggy_banks_frame`.
    """
    if banks is None or banks.empty:
        return pd.DataFrame(columns=['id', 'Name', 'current_balance', 'calculated_balance',
                                     'balance', 'overridden'])
    result = banks.copy()
    ledger = ledger_balances(transactions)
    result['calculated_balance'] = result['id'].map(ledger).fillna(0.0)
    result['current_balance'] = result['current_balance'].astype(float).round(2)
    result['overridden'] = result['current_balance'] != result['calculated_balance']
    result['balance'] = np.where(result['overridden'], result['current_balance'], result['calculated_balance'])
    return result
