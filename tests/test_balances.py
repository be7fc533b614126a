from __future__ import annotations

from datetime import date

import pandas as pd

from piggy_finance.balances import (
    calculated_balance,
    effective_balance,
    hierarchy_balance,
    is_manually_adjusted,
    ledger_balances,
    reconciliation_frame,
)
from piggy_finance.models import PiggyBank, Transaction


def _bank(bank_id: int, balance: float, parent_id=None) -> PiggyBank:
    return PiggyBank(id=bank_id, user_id='u1', name=f"Bank {bank_id}",
                     current_balance=balance, parent_id=parent_id)


def _txn(bank_id: int, amount: float, t_type: str) -> Transaction:
    return Transaction(id=0, user_id='u1', amount=amount, type=t_type,
                       date=date(2024, 9, 1), piggy_bank_id=bank_id)


def test_effective_balance_matches_ledger_without_override() -> None:
    txns = [_txn(1, 500, 'income'), _txn(1, 120.5, 'expense'), _txn(1, 20.25, 'income')]
    bank = _bank(1, 399.75)
    assert calculated_balance(txns) == 399.75
    assert effective_balance(bank, txns) == 399.75
    assert not is_manually_adjusted(bank, txns)


def test_stored_balance_wins_when_it_diverges() -> None:
    txns = [_txn(1, 500, 'income'), _txn(1, 100, 'expense')]
    bank = _bank(1, 1000)
    assert calculated_balance(txns) == 400
    assert effective_balance(bank, txns) == 1000
    assert is_manually_adjusted(bank, txns)


def test_empty_bank_reports_zero() -> None:
    bank = _bank(1, 0.0)
    assert effective_balance(bank, []) == 0
    assert not is_manually_adjusted(bank, [])


def test_float_noise_is_not_an_override() -> None:
    txns = [_txn(1, 0.1, 'income'), _txn(1, 0.2, 'income')]
    assert effective_balance(_bank(1, 0.3), txns) == 0.3
    assert not is_manually_adjusted(_bank(1, 0.3), txns)


def test_parent_total_includes_children() -> None:
    parent = _bank(1, 100)
    first, second = _bank(2, 50, parent_id=1), _bank(3, 75, parent_id=1)
    ledgers = {
        2: [_txn(2, 50, 'income')],
        3: [_txn(3, 100, 'income'), _txn(3, 25, 'expense')],
    }
    totals = hierarchy_balance(parent, [_txn(1, 100, 'income')], [first, second], ledgers)
    assert totals.own_balance == 100
    assert totals.children_total == 125
    assert totals.total_balance == 225


def test_ledger_balances_by_bank() -> None:
    frame = pd.DataFrame({
        'piggy_bank_id': [1, 1, 2, None],
        'Type': ['income', 'expense', 'income', 'expense'],
        'Amount': [150.0, 50.0, 20.0, 5.0],
    })
    totals = ledger_balances(frame)
    assert totals.to_dict() == {1: 100.0, 2: 20.0}


def test_reconciliation_frame_flags_overrides() -> None:
    banks = pd.DataFrame({
        'id': [1, 2, 3],
        'Name': ['A', 'B', 'C'],
        'current_balance': [100.0, 50.0, 0.0],
    })
    frame = pd.DataFrame({
        'piggy_bank_id': [1, 1, 2],
        'Type': ['income', 'expense', 'income'],
        'Amount': [150.0, 50.0, 20.0],
    })
    report = reconciliation_frame(banks, frame).set_index('Name')
    assert list(report['overridden']) == [False, True, False]
    assert report.loc['B', 'balance'] == 50.0
    assert report.loc['B', 'calculated_balance'] == 20.0
    assert report.loc['C', 'balance'] == 0.0


def test_ledger_balances_empty_frame() -> None:
    assert ledger_balances(pd.DataFrame()).empty
