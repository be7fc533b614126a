from __future__ import annotations

import sqlite3
from datetime import date

import pytest

from piggy_finance import db, piggy_banks
from piggy_finance.budget import bank_effective_balance
from piggy_finance.errors import (
    AtomicityFailure,
    DeletionBlockedError,
    HierarchyError,
    InsufficientBalanceError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from piggy_finance.models import CategoryKind

TODAY = date(2024, 9, 21)
USER = 'u1'


def _create(name: str, balance: float = 0.0, **extra):
    return piggy_banks.create_piggy_bank(USER, name, current_balance=balance, today=TODAY, **extra)


def _ledger(bank_id: int):
    return db.find_transactions({'piggy_bank_id': bank_id})


def _balance(bank_id: int) -> float:
    return bank_effective_balance(db.find_piggy_bank({'id': bank_id}))


def test_initial_balance_creates_one_system_deposit() -> None:
    bank = _create('Savings', 500)
    ledger = _ledger(bank.id)
    assert len(ledger) == 1
    deposit = ledger[0]
    assert deposit.type == 'income'
    assert deposit.amount == 500
    assert deposit.exclude_from_daily_spent
    assert deposit.note == "Initial balance deposit"
    category = db.find_categories({'id': deposit.category_id})[0]
    assert category.kind is CategoryKind.SYSTEM


def test_zero_opening_balance_creates_no_transaction() -> None:
    bank = _create('Empty')
    assert _ledger(bank.id) == []
    assert _balance(bank.id) == 0


@pytest.mark.parametrize('kwargs', [
    {'name': ''},
    {'name': 'x' * 51},
    {'name': 'ok', 'current_balance': -1},
    {'name': 'ok', 'goal': 0},
    {'name': 'ok', 'goal': 0.001},
    {'name': 'ok', 'goal_due_date': TODAY},
])
def test_create_validation(kwargs) -> None:
    with pytest.raises(ValidationError):
        piggy_banks.create_piggy_bank(USER, today=TODAY, **kwargs)
    assert db.find_many_piggy_banks({'user_id': USER}) == []


def test_default_flag_is_exclusive() -> None:
    first = _create('First', is_default=True)
    second = _create('Second', is_default=True)
    defaults = [b for b in db.find_many_piggy_banks({'user_id': USER}) if b.is_default]
    assert [b.id for b in defaults] == [second.id]

    piggy_banks.update_piggy_bank(USER, first.id, is_default=True, today=TODAY)
    defaults = [b for b in db.find_many_piggy_banks({'user_id': USER}) if b.is_default]
    assert [b.id for b in defaults] == [first.id]


def test_default_flag_does_not_touch_other_users() -> None:
    piggy_banks.create_piggy_bank('someone-else', 'Theirs', is_default=True, today=TODAY)
    _create('Mine', is_default=True)
    theirs = db.find_piggy_bank({'user_id': 'someone-else'})
    assert theirs.is_default


def test_balance_update_records_adjustment() -> None:
    bank = _create('Wallet', 500)
    piggy_banks.update_piggy_bank(USER, bank.id, current_balance=450, today=TODAY)
    piggy_banks.update_piggy_bank(USER, bank.id, current_balance=600, today=TODAY)

    adjustments = _ledger(bank.id)[1:]
    assert [(t.type, t.amount) for t in adjustments] == [('expense', 50), ('income', 150)]
    assert all(t.exclude_from_daily_spent for t in adjustments)
    assert adjustments[0].note.startswith("Balance adjustment")
    assert _balance(bank.id) == 600
    assert db.find_piggy_bank({"id": bank.id}).current_balance == 600


def test_unchanged_balance_records_nothing() -> None:
    bank = _create('Wallet', 500)
    piggy_banks.update_piggy_bank(USER, bank.id, current_balance=500, name='Purse', today=TODAY)
    assert len(_ledger(bank.id)) == 1
    assert db.find_piggy_bank({'id': bank.id}).name == 'Purse'


def test_update_unknown_bank() -> None:
    other = piggy_banks.create_piggy_bank('someone-else', 'Theirs', today=TODAY)
    with pytest.raises(NotFoundError):
        piggy_banks.update_piggy_bank(USER, other.id, name='Mine now', today=TODAY)


def test_update_rejects_unknown_fields() -> None:
    bank = _create('Wallet', 100)
    with pytest.raises(ValidationError):
        piggy_banks.update_piggy_bank(USER, bank.id, user_id='someone-else', today=TODAY)
    with pytest.raises(ValidationError):
        piggy_banks.update_piggy_bank(USER, bank.id, version=7, today=TODAY)
    assert db.find_piggy_bank({'id': bank.id}).user_id == USER


def test_malformed_ids_are_validation_errors() -> None:
    bank = _create('Wallet', 100)
    with pytest.raises(ValidationError):
        piggy_banks.get_piggy_bank(USER, 'abc')
    with pytest.raises(ValidationError):
        piggy_banks.update_piggy_bank(USER, bank.id, parent_id='abc', today=TODAY)
    with pytest.raises(ValidationError):
        piggy_banks.transfer(USER, bank.id, 'not-a-bank', 10, today=TODAY)


def test_transfer_conserves_total_balance() -> None:
    source = _create('Checking', 500)
    target = _create('Holiday', 200)
    before = _balance(source.id) + _balance(target.id)

    piggy_banks.transfer(USER, source.id, target.id, 150, today=TODAY)

    assert _balance(source.id) == 350
    assert _balance(target.id) == 350
    assert _balance(source.id) + _balance(target.id) == before

    out_leg = _ledger(source.id)[-1]
    in_leg = _ledger(target.id)[-1]
    assert (out_leg.type, out_leg.amount, out_leg.counterparty_bank_id) == ('expense', 150, target.id)
    assert (in_leg.type, in_leg.amount, in_leg.counterparty_bank_id) == ('income', 150, source.id)
    assert out_leg.exclude_from_daily_spent and in_leg.exclude_from_daily_spent
    assert out_leg.note == "Transfer: 150.00 to Holiday"
    assert in_leg.note == "Transfer: 150.00 from Checking"


def test_transfer_rejected_without_mutation() -> None:
    source = _create('Checking', 100)
    target = _create('Holiday', 0)
    count_before = db.count_transactions({'user_id': USER})

    with pytest.raises(InsufficientBalanceError):
        piggy_banks.transfer(USER, source.id, target.id, 100.01, today=TODAY)
    with pytest.raises(PreconditionError):
        piggy_banks.transfer(USER, source.id, source.id, 10, today=TODAY)
    with pytest.raises(ValidationError):
        piggy_banks.transfer(USER, source.id, target.id, 0, today=TODAY)
    with pytest.raises(ValidationError):
        piggy_banks.transfer(USER, source.id, target.id, 0.001, today=TODAY)
    with pytest.raises(ValidationError):
        piggy_banks.withdraw(USER, source.id, 0.004, today=TODAY)

    assert db.count_transactions({'user_id': USER}) == count_before
    assert _balance(source.id) == 100
    assert _balance(target.id) == 0


def test_transfer_to_foreign_bank_is_not_found() -> None:
    source = _create('Checking', 100)
    foreign = piggy_banks.create_piggy_bank('someone-else', 'Theirs', today=TODAY)
    with pytest.raises(NotFoundError):
        piggy_banks.transfer(USER, source.id, foreign.id, 10, today=TODAY)


def test_transfer_uses_effective_balance_with_override() -> None:
    source = _create('Checking', 100)
    target = _create('Holiday')
    # Out-of-band override: stored balance raised without a ledger entry
    db.update_piggy_bank(source.id, {'current_balance': 300})
    piggy_banks.transfer(USER, source.id, target.id, 250, today=TODAY)
    assert db.find_piggy_bank({'id': source.id}).current_balance == 50


def test_failed_write_rolls_back_transfer(monkeypatch) -> None:
    source = _create('Checking', 500)
    target = _create('Holiday', 0)
    count_before = db.count_transactions({'user_id': USER})

    def broken(*args, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    with monkeypatch.context() as m:
        m.setattr(db, 'create_transaction', broken)
        with pytest.raises(AtomicityFailure):
            piggy_banks.transfer(USER, source.id, target.id, 100, today=TODAY)

    assert db.find_piggy_bank({'id': source.id}).current_balance == 500
    assert db.find_piggy_bank({'id': target.id}).current_balance == 0
    assert db.count_transactions({'user_id': USER}) == count_before


def test_withdrawal() -> None:
    bank = _create('Wallet', 80)
    piggy_banks.withdraw(USER, bank.id, 30, today=TODAY)
    assert _balance(bank.id) == 50
    last = _ledger(bank.id)[-1]
    assert (last.type, last.amount, last.note) == ('expense', 30, "Withdrawal")
    with pytest.raises(InsufficientBalanceError):
        piggy_banks.withdraw(USER, bank.id, 51, today=TODAY)


def test_move_money_dispatches() -> None:
    source = _create('Checking', 100)
    target = _create('Holiday')
    result = piggy_banks.move_money(USER, source.id, 40, to_piggy_bank_id=target.id, today=TODAY)
    assert result['message'] == "Successfully transferred 40.00 to Holiday"
    result = piggy_banks.move_money(USER, source.id, 10, is_withdrawal=True, today=TODAY)
    assert result['message'] == "Successfully withdrew 10.00 from Checking"
    with pytest.raises(ValidationError):
        piggy_banks.move_money(USER, source.id, 10, today=TODAY)


def test_hierarchy_rules() -> None:
    parent = _create('Parent')
    child = _create('Child', parent_id=parent.id)
    other = _create('Other')

    with pytest.raises(HierarchyError):
        _create('Grandchild', parent_id=child.id)
    with pytest.raises(HierarchyError):
        piggy_banks.update_piggy_bank(USER, parent.id, parent_id=other.id, today=TODAY)
    with pytest.raises(HierarchyError):
        piggy_banks.update_piggy_bank(USER, other.id, parent_id=other.id, today=TODAY)
    with pytest.raises(HierarchyError):
        piggy_banks.update_piggy_bank(USER, other.id, parent_id=child.id, today=TODAY)

    moved = piggy_banks.update_piggy_bank(USER, other.id, parent_id=parent.id, today=TODAY)
    assert moved.parent_id == parent.id
    detached = piggy_banks.update_piggy_bank(USER, child.id, parent_id=None, today=TODAY)
    assert detached.parent_id is None


def test_parent_must_belong_to_user() -> None:
    foreign = piggy_banks.create_piggy_bank('someone-else', 'Theirs', today=TODAY)
    with pytest.raises(NotFoundError):
        _create('Mine', parent_id=foreign.id)


def test_delete_guards() -> None:
    funded = _create('Funded', 10)
    parent = _create('Parent')
    _create('Child', parent_id=parent.id)
    empty = _create('Empty')

    with pytest.raises(DeletionBlockedError):
        piggy_banks.delete_piggy_bank(USER, funded.id)
    with pytest.raises(PreconditionError):
        piggy_banks.delete_piggy_bank(USER, parent.id)

    piggy_banks.delete_piggy_bank(USER, empty.id)
    with pytest.raises(NotFoundError):
        piggy_banks.get_piggy_bank(USER, empty.id)


def test_list_aggregates_children() -> None:
    parent = _create('Parent', 100)
    _create('Kid A', 50, parent_id=parent.id)
    _create('Kid B', 75, parent_id=parent.id)

    summaries = {s.bank.name: s for s in piggy_banks.list_piggy_banks(USER, now=TODAY)}
    top = summaries['Parent']
    assert top.is_parent and not top.is_child
    assert top.own_balance == 100
    assert top.children_total == 125
    assert top.total_balance == 225
    assert {c['name'] for c in top.children} == {'Kid A', 'Kid B'}
    assert summaries['Kid A'].is_child
    assert summaries['Kid A'].parent_name == 'Parent'
    assert summaries['Kid A'].total_balance is None


def test_list_flags_monthly_top_ups() -> None:
    main = _create('Main', 1000, is_default=True)
    goal = _create('Bike', goal=500, goal_due_date=date(2025, 3, 1))
    parent = _create('House', 0)
    kid = _create('Roof', parent_id=parent.id)

    piggy_banks.transfer(USER, main.id, goal.id, 100, today=TODAY)
    summaries = {s.bank.name: s for s in piggy_banks.list_piggy_banks(USER, now=TODAY)}
    assert summaries['Bike'].has_transfer_from_default_this_month
    assert not summaries['Roof'].has_transfer_from_parent_this_month

    later = {s.bank.name: s for s in piggy_banks.list_piggy_banks(USER, now=date(2024, 10, 2))}
    assert not later['Bike'].has_transfer_from_default_this_month
    assert kid.parent_id == parent.id
