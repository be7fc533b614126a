"""Piggy bank lifecycle, transfers and balance adjustments.

Every operation that moves money pairs the balance write with a system
transaction on the affected bank, so the ledger keeps explaining the
stored balance.  Those pairs run inside a single :func:`db.atomic` unit:
validation reads happen after the write lock is taken and any refusal
rolls the unit back before anything is written.
"""

from __future__ import annotations

import logging
import math
import sqlite3
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from . import db
from .balances import calculated_balance, effective_balance, hierarchy_balance
from .categories import system_category
from .errors import (
    DeletionBlockedError,
    HierarchyError,
    InsufficientBalanceError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from .goals import has_transfer_from_this_month
from .models import PiggyBank, PiggyBankSummary, Transaction

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime]

NAME_MAX_LENGTH = 50
UPDATABLE_FIELDS = {'name', 'current_balance', 'goal', 'goal_due_date', 'is_default', 'parent_id'}


def _today(today: Optional[DateLike]) -> date:
    if today is None:
        return date.today()
    return today.date() if isinstance(today, datetime) else today


def _clean_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Name is required")
    name = name.strip()
    if len(name) > NAME_MAX_LENGTH:
        raise ValidationError(f"Name must be less than {NAME_MAX_LENGTH} characters")
    return name


def _clean_amount(value: Any, label: str, allow_zero: bool) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number") from None
    if not math.isfinite(amount):
        raise ValidationError(f"{label} must be a finite number")
    amount = round(amount, 2)
    if amount < 0:
        raise ValidationError(f"{label} cannot be negative")
    if amount == 0 and not allow_zero:
        raise ValidationError(f"{label} must be positive")
    return amount


def _clean_due_date(value: Any, today: date) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        value = value.date()
    elif not isinstance(value, date):
        try:
            value = date.fromisoformat(str(value)[:10])
        except ValueError:
            raise ValidationError(f"Invalid due date: {value!r}") from None
    if value <= today:
        raise ValidationError("Due date must be in the future")
    return value


def _clean_fields(data: Dict[str, Any], today: date) -> Dict[str, Any]:
    unknown = set(data) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown piggy bank fields: {sorted(unknown)}")
    cleaned: Dict[str, Any] = {}
    for key, value in data.items():
        if key == 'name':
            cleaned[key] = _clean_name(value)
        elif key == 'current_balance':
            cleaned[key] = _clean_amount(value, "Balance", allow_zero=True)
        elif key == 'goal':
            cleaned[key] = None if value is None else _clean_amount(value, "Goal", allow_zero=False)
        elif key == 'goal_due_date':
            cleaned[key] = _clean_due_date(value, today)
        elif key == 'is_default':
            cleaned[key] = bool(value)
        elif key == 'parent_id':
            cleaned[key] = None if value in (None, "") else _clean_id(value, "Parent piggy bank")
    return cleaned


def _clean_id(value: Any, label: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} ID must be an integer") from None


def _owned_bank(user_id: str, bank_id: Any, conn: Optional[sqlite3.Connection] = None,
                label: str = "Piggy bank") -> PiggyBank:
    if bank_id in (None, ""):
        raise ValidationError(f"{label} ID is required")
    bank = db.find_piggy_bank({'id': _clean_id(bank_id, label), 'user_id': user_id}, conn=conn)
    if bank is None:
        raise NotFoundError(f"{label} not found")
    return bank


def _check_parent(user_id: str, bank_id: Optional[int], parent_id: int,
                  conn: sqlite3.Connection) -> PiggyBank:
    """Validate a parent assignment against the two-level hierarchy."""
    if bank_id is not None and parent_id == bank_id:
        raise HierarchyError("A piggy bank cannot be its own parent")
    parent = _owned_bank(user_id, parent_id, conn, label="Parent piggy bank")
    if parent.parent_id is not None:
        raise HierarchyError("Selected parent is itself a child piggy bank")
    if bank_id is not None and db.find_many_piggy_banks({'parent_id': bank_id}, conn=conn):
        raise HierarchyError("A piggy bank with children cannot be assigned a parent")
    return parent


def _record_system_transaction(
    bank: PiggyBank,
    t_type: str,
    amount: float,
    note: str,
    on: date,
    conn: sqlite3.Connection,
    counterparty: Optional[PiggyBank] = None,
) -> Transaction:
    return db.create_transaction({
        'user_id': bank.user_id,
        'amount': round(amount, 2),
        'type': t_type,
        'date': on,
        'category_id': system_category(bank.user_id, conn=conn).id,
        'piggy_bank_id': bank.id,
        'note': note,
        'exclude_from_daily_spent': True,
        'counterparty_bank_id': counterparty.id if counterparty else None,
    }, conn=conn)


def _bank_effective_balance(bank: PiggyBank, conn: sqlite3.Connection) -> float:
    return effective_balance(bank, db.find_transactions({'piggy_bank_id': bank.id}, conn=conn))


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

def get_piggy_bank(user_id: str, bank_id: int) -> PiggyBank:
    return _owned_bank(user_id, bank_id)


def create_piggy_bank(
    user_id: str,
    name: str,
    current_balance: float = 0.0,
    goal: Optional[float] = None,
    goal_due_date: Optional[DateLike] = None,
    is_default: bool = False,
    parent_id: Optional[int] = None,
    today: Optional[DateLike] = None,
) -> PiggyBank:
    """Create a bank, seeding its ledger with the opening balance.

    A positive ``current_balance`` is recorded as one income system
    transaction so the new bank's ledger already explains its balance.
    """
    on = _today(today)
    fields = _clean_fields({
        'name': name,
        'current_balance': current_balance,
        'goal': goal,
        'goal_due_date': goal_due_date,
        'is_default': is_default,
        'parent_id': parent_id,
    }, on)

    with db.atomic() as conn:
        if fields['parent_id'] is not None:
            _check_parent(user_id, None, fields['parent_id'], conn)
        if fields['is_default']:
            db.clear_default_piggy_banks(user_id, conn=conn)
        bank = db.create_piggy_bank({'user_id': user_id, **fields}, conn=conn)
        if bank.current_balance > 0:
            _record_system_transaction(bank, 'income', bank.current_balance,
                                       "Initial balance deposit", on, conn)

    logger.info("Created piggy bank %s (%s) for user %s with balance %.2f",
                bank.id, bank.name, user_id, bank.current_balance)
    return bank


def update_piggy_bank(user_id: str, bank_id: int, /, today: Optional[DateLike] = None,
                      **changes: Any) -> PiggyBank:
    """Patch a bank.

    A change to ``current_balance`` is recorded as a balance-adjustment
    system transaction for the difference.  ``parent_id=None`` detaches
    a child from its parent.
    """
    on = _today(today)
    fields = _clean_fields(changes, on)

    with db.atomic() as conn:
        bank = _owned_bank(user_id, bank_id, conn)
        if fields.get('parent_id') is not None:
            _check_parent(user_id, bank.id, fields['parent_id'], conn)
        if fields.get('is_default'):
            db.clear_default_piggy_banks(user_id, except_id=bank.id, conn=conn)

        old_balance = bank.current_balance
        updated = db.update_piggy_bank(bank.id, fields, conn=conn, expected_version=bank.version) \
            if fields else bank
        if 'current_balance' in fields:
            delta = round(fields['current_balance'] - old_balance, 2)
            if delta != 0:
                _record_system_transaction(
                    updated,
                    'income' if delta > 0 else 'expense',
                    abs(delta),
                    f"Balance adjustment: {old_balance:.2f} -> {fields['current_balance']:.2f} ({delta:+.2f})",
                    on,
                    conn,
                )
                logger.info("Adjusted piggy bank %s balance by %+.2f", bank.id, delta)

    return updated


def delete_piggy_bank(user_id: str, bank_id: int) -> None:
    """Delete a bank that has neither children nor transactions."""
    with db.atomic() as conn:
        bank = _owned_bank(user_id, bank_id, conn)
        if db.find_many_piggy_banks({'parent_id': bank.id}, conn=conn):
            logger.warning("Refused to delete piggy bank %s: it has child banks", bank.id)
            raise DeletionBlockedError("Cannot delete piggy bank with child piggy banks")
        if db.count_transactions({'piggy_bank_id': bank.id}, conn=conn):
            logger.warning("Refused to delete piggy bank %s: it has transactions", bank.id)
            raise DeletionBlockedError("Cannot delete piggy bank with existing transactions")
        db.delete_piggy_bank(bank.id, conn=conn)
    logger.info("Deleted piggy bank %s for user %s", bank_id, user_id)


# ---------------------------------------------------------------------------
# Money movement
# ---------------------------------------------------------------------------

def transfer(user_id: str, from_id: int, to_id: int, amount: float,
             today: Optional[DateLike] = None) -> Tuple[PiggyBank, PiggyBank]:
    """Move ``amount`` between two of the user's banks.

    Returns the updated (source, destination) pair.
    """
    on = _today(today)
    amount = _clean_amount(amount, "Amount", allow_zero=False)

    with db.atomic() as conn:
        source = _owned_bank(user_id, from_id, conn, label="Source piggy bank")
        destination = _owned_bank(user_id, to_id, conn, label="Destination piggy bank")
        if source.id == destination.id:
            raise PreconditionError("Cannot transfer to the same piggy bank")
        available = _bank_effective_balance(source, conn)
        if available < amount:
            logger.warning("Refused transfer of %.2f from piggy bank %s holding %.2f",
                           amount, source.id, available)
            raise InsufficientBalanceError("Insufficient balance in source piggy bank")

        source = db.adjust_piggy_bank_balance(source, -amount, conn=conn)
        destination = db.adjust_piggy_bank_balance(destination, amount, conn=conn)
        _record_system_transaction(source, 'expense', amount,
                                   f"Transfer: {amount:.2f} to {destination.name}", on, conn,
                                   counterparty=destination)
        _record_system_transaction(destination, 'income', amount,
                                   f"Transfer: {amount:.2f} from {source.name}", on, conn,
                                   counterparty=source)

    logger.info("Transferred %.2f from piggy bank %s to %s", amount, source.id, destination.id)
    return source, destination


def withdraw(user_id: str, from_id: int, amount: float,
             today: Optional[DateLike] = None) -> PiggyBank:
    on = _today(today)
    amount = _clean_amount(amount, "Amount", allow_zero=False)

    with db.atomic() as conn:
        source = _owned_bank(user_id, from_id, conn, label="Source piggy bank")
        available = _bank_effective_balance(source, conn)
        if available < amount:
            logger.warning("Refused withdrawal of %.2f from piggy bank %s holding %.2f",
                           amount, source.id, available)
            raise InsufficientBalanceError("Insufficient balance in source piggy bank")
        source = db.adjust_piggy_bank_balance(source, -amount, conn=conn)
        _record_system_transaction(source, 'expense', amount, "Withdrawal", on, conn)

    logger.info("Withdrew %.2f from piggy bank %s", amount, source.id)
    return source


def move_money(
    user_id: str,
    from_piggy_bank_id: int,
    amount: float,
    to_piggy_bank_id: Optional[int] = None,
    is_withdrawal: bool = False,
    today: Optional[DateLike] = None,
) -> Dict[str, Any]:
    """Transfer when a destination is given, otherwise withdraw when asked to."""
    if to_piggy_bank_id not in (None, "") and not is_withdrawal:
        source, destination = transfer(user_id, from_piggy_bank_id, to_piggy_bank_id, amount, today=today)
        return {
            'success': True,
            'message': f"Successfully transferred {float(amount):.2f} to {destination.name}",
        }
    if is_withdrawal:
        source = withdraw(user_id, from_piggy_bank_id, amount, today=today)
        return {
            'success': True,
            'message': f"Successfully withdrew {float(amount):.2f} from {source.name}",
        }
    raise ValidationError("Either select a destination bank for transfer or mark as withdrawal")


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

def list_piggy_banks(user_id: str, now: Optional[DateLike] = None) -> List[PiggyBankSummary]:
    """All of the user's banks with reconciled and aggregated balances.

    Ordered default bank first, then by name.
    """
    now = now or datetime.now()
    banks = db.find_many_piggy_banks({'user_id': user_id})
    ledgers: Dict[int, List[Transaction]] = defaultdict(list)
    for txn in db.find_transactions({'user_id': user_id}):
        if txn.piggy_bank_id is not None:
            ledgers[txn.piggy_bank_id].append(txn)

    by_id = {bank.id: bank for bank in banks}
    children: Dict[int, List[PiggyBank]] = defaultdict(list)
    for bank in banks:
        if bank.parent_id is not None:
            children[bank.parent_id].append(bank)
    default = next((bank for bank in banks if bank.is_default), None)

    summaries: List[PiggyBankSummary] = []
    for bank in banks:
        ledger = ledgers.get(bank.id, [])
        calc = calculated_balance(ledger)
        summary = PiggyBankSummary(
            bank=bank,
            calculated_balance=calc,
            balance=effective_balance(bank, ledger),
        )
        if bank.parent_id is not None:
            parent = by_id.get(bank.parent_id)
            summary.parent_name = parent.name if parent else None
            summary.has_transfer_from_parent_this_month = has_transfer_from_this_month(
                ledger, bank.parent_id, now)
        elif default is not None and default.id != bank.id:
            summary.has_transfer_from_default_this_month = has_transfer_from_this_month(
                ledger, default.id, now)

        kids = children.get(bank.id, [])
        if kids:
            totals = hierarchy_balance(bank, ledger, kids, ledgers)
            summary.children = [
                {
                    'id': kid.id,
                    'name': kid.name,
                    'calculated_balance': calculated_balance(ledgers.get(kid.id, [])),
                    'balance': effective_balance(kid, ledgers.get(kid.id, [])),
                }
                for kid in kids
            ]
            summary.own_balance = totals.own_balance
            summary.children_total = totals.children_total
            summary.total_balance = totals.total_balance
        summaries.append(summary)
    return summaries
