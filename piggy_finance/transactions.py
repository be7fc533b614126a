"""General ledger: user-entered transactions and their balance effects.

Posting, editing or deleting a transaction attached to a piggy bank
moves that bank's stored balance by the transaction's signed amount in
the same atomic unit.
"""

from __future__ import annotations

import logging
import math
import sqlite3
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from . import db
from .balances import signed_amount
from .budget import snapshot_budgets
from .categories import get_category
from .errors import NotFoundError, ValidationError
from .models import TRANSACTION_TYPES, PiggyBank, Transaction

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime]

MIN_AMOUNT = 1.0
UPDATABLE_FIELDS = {'amount', 'type', 'date', 'category_id', 'piggy_bank_id', 'note', 'exclude_from_daily_spent'}


def _clean_amount(value: Any) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Amount must be a number and at least 1") from None
    if not math.isfinite(amount) or amount < MIN_AMOUNT:
        raise ValidationError("Amount must be a number and at least 1")
    return round(amount, 2)


def _clean_type(value: Any) -> str:
    if value not in TRANSACTION_TYPES:
        raise ValidationError(f"Type must be one of {TRANSACTION_TYPES}")
    return value


def _clean_note(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Note is required")
    return value.strip()


def _clean_date(value: Any) -> date:
    if value is None:
        return date.today()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r}") from None


def _clean_id(value: Any, label: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} ID must be an integer") from None


def _owned_bank(user_id: str, bank_id: Optional[int], conn: sqlite3.Connection) -> Optional[PiggyBank]:
    if bank_id is None:
        return None
    bank = db.find_piggy_bank({'id': _clean_id(bank_id, "Piggy bank"), 'user_id': user_id}, conn=conn)
    if bank is None:
        raise NotFoundError("Piggy bank not found")
    return bank


def _check_category(user_id: str, category_id: Optional[int], conn: sqlite3.Connection) -> None:
    if category_id is not None and get_category(user_id, _clean_id(category_id, "Category"), conn=conn) is None:
        raise NotFoundError("Category not found")


def _owned_transaction(user_id: str, transaction_id: int, conn: sqlite3.Connection) -> Transaction:
    found = db.find_transactions({'id': _clean_id(transaction_id, "Transaction"), 'user_id': user_id}, conn=conn)
    if not found:
        raise NotFoundError("Transaction not found")
    return found[0]


def add_transaction(
    user_id: str,
    amount: float,
    type: str,
    date: Optional[DateLike] = None,
    category_id: Optional[int] = None,
    piggy_bank_id: Optional[int] = None,
    note: str = "",
    exclude_from_daily_spent: bool = False,
    now: Optional[DateLike] = None,
) -> Transaction:
    """Record a user transaction and apply it to its piggy bank.

    The first spending expense of a period on the default bank freezes
    that period's budget snapshot from the balance before the expense.
    """
    fields: Dict[str, Any] = {
        'user_id': user_id,
        'amount': _clean_amount(amount),
        'type': _clean_type(type),
        'date': _clean_date(date),
        'category_id': category_id,
        'piggy_bank_id': piggy_bank_id,
        'note': _clean_note(note),
        'exclude_from_daily_spent': bool(exclude_from_daily_spent),
    }

    with db.atomic() as conn:
        bank = _owned_bank(user_id, piggy_bank_id, conn)
        _check_category(user_id, category_id, conn)
        if bank is not None and bank.is_default and fields['type'] == 'expense' \
                and not fields['exclude_from_daily_spent']:
            snapshot_budgets(user_id, now=now, conn=conn)
        txn = db.create_transaction(fields, conn=conn)
        if bank is not None:
            db.adjust_piggy_bank_balance(bank, txn.signed_amount, conn=conn)

    logger.info("Recorded %s of %.2f for user %s on piggy bank %s",
                txn.type, txn.amount, user_id, txn.piggy_bank_id)
    return txn


def update_transaction(user_id: str, transaction_id: int, /, **changes: Any) -> Transaction:
    """Edit a transaction, moving its balance effect from the old bank to the new one."""
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown transaction fields: {sorted(unknown)}")
    fields: Dict[str, Any] = {}
    for key, value in changes.items():
        if key == 'amount':
            fields[key] = _clean_amount(value)
        elif key == 'type':
            fields[key] = _clean_type(value)
        elif key == 'note':
            fields[key] = _clean_note(value)
        elif key == 'date':
            fields[key] = _clean_date(value)
        elif key == 'exclude_from_daily_spent':
            fields[key] = bool(value)
        else:
            label = "Piggy bank" if key == 'piggy_bank_id' else "Category"
            fields[key] = None if value in (None, "") else _clean_id(value, label)

    with db.atomic() as conn:
        old = _owned_transaction(user_id, transaction_id, conn)
        _check_category(user_id, fields.get('category_id'), conn)
        new_bank_id = fields.get('piggy_bank_id', old.piggy_bank_id)
        new_bank = _owned_bank(user_id, new_bank_id, conn)

        old_bank = _owned_bank(user_id, old.piggy_bank_id, conn)
        if old_bank is not None:
            old_bank = db.adjust_piggy_bank_balance(old_bank, -old.signed_amount, conn=conn)
            if new_bank is not None and new_bank.id == old_bank.id:
                new_bank = old_bank

        updated = db.update_transaction(old.id, fields, conn=conn)
        if new_bank is not None:
            db.adjust_piggy_bank_balance(new_bank, signed_amount(updated.type, updated.amount), conn=conn)

    logger.info("Updated transaction %s for user %s", transaction_id, user_id)
    return updated


def delete_transaction(user_id: str, transaction_id: int) -> None:
    with db.atomic() as conn:
        txn = _owned_transaction(user_id, transaction_id, conn)
        bank = _owned_bank(user_id, txn.piggy_bank_id, conn)
        if bank is not None:
            db.adjust_piggy_bank_balance(bank, -txn.signed_amount, conn=conn)
        db.delete_transaction(txn.id, conn=conn)
    logger.info("Deleted transaction %s for user %s", transaction_id, user_id)


def list_transactions(
    user_id: str,
    piggy_bank_id: Optional[int] = None,
    start_date: Optional[DateLike] = None,
    end_date: Optional[DateLike] = None,
) -> List[Transaction]:
    """Transactions oldest first; ``end_date`` is exclusive."""
    filters: Dict[str, Any] = {'user_id': user_id}
    if piggy_bank_id is not None:
        filters['piggy_bank_id'] = piggy_bank_id
    return db.find_transactions(filters, date_from=start_date, date_to=end_date)


def transactions_frame(user_id: str, start_date: Optional[DateLike] = None,
                       end_date: Optional[DateLike] = None) -> pd.DataFrame:
    return db.fetch_transactions_frame(user_id, start_date=start_date, end_date=end_date)
