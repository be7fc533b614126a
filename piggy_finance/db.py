"""SQLite ledger store for piggy banks, transactions and budget snapshots.

Every public function takes an optional ``conn``.  Without one the call
opens its own autocommit connection; with one it runs inside the
caller's unit, which is how the engine groups balance writes and their
audit transactions under :func:`atomic`.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from . import config
from .errors import AtomicityFailure
from .models import BudgetRecord, Category, PiggyBank, Transaction

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS piggy_banks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    current_balance REAL NOT NULL DEFAULT 0,
    goal REAL,
    goal_due_date TEXT,
    is_default INTEGER NOT NULL DEFAULT 0,
    parent_id INTEGER,
    created_at TEXT
);

CREATE INDEX IF NOT EXISTS ix_bank_user ON piggy_banks (user_id);
CREATE INDEX IF NOT EXISTS ix_bank_parent ON piggy_banks (parent_id);
CREATE UNIQUE INDEX IF NOT EXISTS ux_bank_default
ON piggy_banks (user_id) WHERE is_default = 1;

CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    kind TEXT NOT NULL DEFAULT 'user'
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_category_system
ON categories (user_id) WHERE kind = 'system';

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    amount REAL NOT NULL,
    type TEXT NOT NULL,
    date TEXT NOT NULL,
    category_id INTEGER,
    piggy_bank_id INTEGER,
    note TEXT,
    exclude_from_daily_spent INTEGER NOT NULL DEFAULT 0,
    created_at TEXT
);

CREATE INDEX IF NOT EXISTS ix_txn_user_date ON transactions (user_id, date);
CREATE INDEX IF NOT EXISTS ix_txn_bank ON transactions (piggy_bank_id);

CREATE TABLE IF NOT EXISTS budgets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    period_type TEXT NOT NULL,
    period_start_date TEXT NOT NULL,
    initial_budget REAL NOT NULL,
    created_at TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_budget_period
ON budgets (user_id, period_type, period_start_date);
"""

# Columns added after the first schema release: (table, column, type)
_LATER_COLUMNS = [
    ('piggy_banks', 'version', 'INTEGER NOT NULL DEFAULT 0'),
    ('transactions', 'counterparty_bank_id', 'INTEGER'),
]

_BANK_FILTERS = {'id', 'user_id', 'name', 'is_default', 'parent_id'}
_BANK_FIELDS = {'user_id', 'name', 'current_balance', 'goal', 'goal_due_date', 'is_default', 'parent_id'}
_TXN_FILTERS = {
    'id', 'user_id', 'type', 'category_id', 'piggy_bank_id',
    'exclude_from_daily_spent', 'counterparty_bank_id',
}
_TXN_FIELDS = {
    'user_id', 'amount', 'type', 'date', 'category_id', 'piggy_bank_id',
    'note', 'exclude_from_daily_spent', 'counterparty_bank_id',
}
_BUDGET_FILTERS = {'user_id', 'period_type', 'period_start_date'}
_CATEGORY_FILTERS = {'id', 'user_id', 'name', 'kind'}


def _ensure_dirs() -> None:
    config.ensure_data_directories()
    config.DB_PATH.parent.mkdir(parents=True, exist_ok=True)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def connect() -> Iterator[sqlite3.Connection]:
    _ensure_dirs()
    # Autocommit; multi-statement units open their own BEGIN in atomic()
    conn = sqlite3.connect(config.get_db_path(), timeout=10.0, isolation_level=None)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def _session(conn: Optional[sqlite3.Connection]) -> Iterator[sqlite3.Connection]:
    if conn is not None:
        yield conn
        return
    with connect() as own:
        yield own


@contextmanager
def atomic(conn: Optional[sqlite3.Connection] = None) -> Iterator[sqlite3.Connection]:
    """Run the enclosed store calls as one all-or-nothing unit.

    A unit already open on ``conn`` is joined rather than nested.  Store
    errors roll the unit back and surface as :class:`AtomicityFailure`;
    any other exception rolls back and propagates unchanged.
    """
    if conn is not None and conn.in_transaction:
        yield conn
        return

    with _session(conn) as unit:
        try:
            unit.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            logger.error("Could not open atomic unit: %s", e)
            raise AtomicityFailure(f"Could not start transaction: {e}") from e
        try:
            yield unit
        except sqlite3.Error as e:
            unit.rollback()
            logger.error("Atomic unit rolled back: %s", e)
            raise AtomicityFailure(f"Store operation failed: {e}") from e
        except BaseException:
            unit.rollback()
            raise
        try:
            unit.commit()
        except sqlite3.Error as e:
            unit.rollback()
            logger.error("Atomic unit failed to commit: %s", e)
            raise AtomicityFailure(f"Commit failed: {e}") from e


def run_atomic(steps: Sequence[Callable[[sqlite3.Connection], Any]],
               conn: Optional[sqlite3.Connection] = None) -> List[Any]:
    """Execute ``steps`` in order inside one unit and return their results."""
    with atomic(conn) as unit:
        return [step(unit) for step in steps]


def init_db() -> None:
    with connect() as conn:
        conn.executescript(SCHEMA_SQL)
        # Run migrations to add new columns if they don't exist
        _migrate_database(conn)


def _migrate_database(conn: sqlite3.Connection) -> None:
    """Add new columns to an existing database if they don't exist."""
    for table, column_name, column_type in _LATER_COLUMNS:
        existing_columns = [row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()]
        if column_name in existing_columns:
            continue
        try:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column_name} {column_type}")
            logger.info("Added column %s to %s table", column_name, table)
        except sqlite3.OperationalError as e:
            if "duplicate column name" not in str(e):
                raise


def _to_iso_date(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    # pandas Timestamp or datetime
    if hasattr(value, 'to_pydatetime'):
        value = value.to_pydatetime()
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    ts = pd.to_datetime(value, errors='coerce')
    if pd.isna(ts):
        raise ValueError(f"Unparseable date: {value!r}")
    return ts.date().isoformat()


def _sanitize_db_value(key: str, value: Any) -> Any:
    if key in ('date', 'goal_due_date', 'period_start_date'):
        return _to_iso_date(value)
    if isinstance(value, bool):
        return int(value)
    return value


def _where(filters: Optional[Mapping[str, Any]], allowed: set) -> Tuple[str, List[Any]]:
    clauses: List[str] = []
    params: List[Any] = []
    for key, value in (filters or {}).items():
        if key not in allowed:
            raise KeyError(f"Unsupported filter: {key}")
        if value is None:
            clauses.append(f"{key} IS NULL")
        else:
            clauses.append(f"{key} = ?")
            params.append(_sanitize_db_value(key, value))
    sql = " WHERE " + " AND ".join(clauses) if clauses else ""
    return sql, params


def _columns(data: Mapping[str, Any], allowed: set) -> Tuple[List[str], List[Any]]:
    keys = [key for key in data if key in allowed]
    unknown = set(data) - allowed
    if unknown:
        raise KeyError(f"Unsupported fields: {sorted(unknown)}")
    return keys, [_sanitize_db_value(key, data[key]) for key in keys]


# ---------------------------------------------------------------------------
# Piggy banks
# ---------------------------------------------------------------------------

def find_piggy_bank(filters: Mapping[str, Any], conn: Optional[sqlite3.Connection] = None) -> Optional[PiggyBank]:
    where, params = _where(filters, _BANK_FILTERS)
    with _session(conn) as c:
        row = c.execute(f"SELECT * FROM piggy_banks{where} LIMIT 1", params).fetchone()
    return PiggyBank.from_row(row) if row else None


def find_many_piggy_banks(filters: Mapping[str, Any],
                          conn: Optional[sqlite3.Connection] = None) -> List[PiggyBank]:
    where, params = _where(filters, _BANK_FILTERS)
    sql = f"SELECT * FROM piggy_banks{where} ORDER BY is_default DESC, name ASC, id ASC"
    with _session(conn) as c:
        rows = c.execute(sql, params).fetchall()
    return [PiggyBank.from_row(r) for r in rows]


def create_piggy_bank(data: Mapping[str, Any], conn: Optional[sqlite3.Connection] = None) -> PiggyBank:
    keys, values = _columns(data, _BANK_FIELDS)
    keys.append('created_at')
    values.append(_now_iso())
    sql = f"INSERT INTO piggy_banks ({', '.join(keys)}) VALUES ({', '.join('?' for _ in keys)})"
    with _session(conn) as c:
        cur = c.execute(sql, values)
        row = c.execute("SELECT * FROM piggy_banks WHERE id = ?", (cur.lastrowid,)).fetchone()
    return PiggyBank.from_row(row)


def update_piggy_bank(bank_id: int, data: Mapping[str, Any],
                      conn: Optional[sqlite3.Connection] = None,
                      expected_version: Optional[int] = None) -> Optional[PiggyBank]:
    """Update a bank row and bump its version.

    With ``expected_version`` the write only lands if nobody else changed
    the row since it was read; a lost race raises :class:`AtomicityFailure`.
    """
    keys, values = _columns(data, _BANK_FIELDS)
    assignments = [f"{key} = ?" for key in keys] + ["version = version + 1"]
    sql = f"UPDATE piggy_banks SET {', '.join(assignments)} WHERE id = ?"
    params = values + [bank_id]
    if expected_version is not None:
        sql += " AND version = ?"
        params.append(expected_version)
    with _session(conn) as c:
        cur = c.execute(sql, params)
        if cur.rowcount == 0:
            if expected_version is not None:
                raise AtomicityFailure(f"Piggy bank {bank_id} was modified concurrently")
            return None
        row = c.execute("SELECT * FROM piggy_banks WHERE id = ?", (bank_id,)).fetchone()
    return PiggyBank.from_row(row)


def adjust_piggy_bank_balance(bank: PiggyBank, delta: float, conn: Optional[sqlite3.Connection] = None) -> PiggyBank:
    """Add ``delta`` to a bank's stored balance, guarded by its version."""
    sql = (
        "UPDATE piggy_banks SET current_balance = ROUND(current_balance + ?, 2), version = version + 1 "
        "WHERE id = ? AND version = ?"
    )
    with _session(conn) as c:
        cur = c.execute(sql, (delta, bank.id, bank.version))
        if cur.rowcount == 0:
            raise AtomicityFailure(f"Piggy bank {bank.id} was modified concurrently")
        row = c.execute("SELECT * FROM piggy_banks WHERE id = ?", (bank.id,)).fetchone()
    return PiggyBank.from_row(row)


def clear_default_piggy_banks(user_id: str, except_id: Optional[int] = None,
                              conn: Optional[sqlite3.Connection] = None) -> int:
    sql = "UPDATE piggy_banks SET is_default = 0, version = version + 1 WHERE user_id = ? AND is_default = 1"
    params: List[Any] = [user_id]
    if except_id is not None:
        sql += " AND id != ?"
        params.append(except_id)
    with _session(conn) as c:
        return c.execute(sql, params).rowcount


def delete_piggy_bank(bank_id: int, conn: Optional[sqlite3.Connection] = None) -> bool:
    with _session(conn) as c:
        return c.execute("DELETE FROM piggy_banks WHERE id = ?", (bank_id,)).rowcount > 0


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

def find_transactions(filters: Optional[Mapping[str, Any]] = None,
                      conn: Optional[sqlite3.Connection] = None,
                      date_from: Any = None,
                      date_to: Any = None) -> List[Transaction]:
    """Fetch transactions matching ``filters``.

    ``date_from`` is inclusive and ``date_to`` exclusive, so a period
    start and the next period start can be passed directly.
    """
    where, params = _where(filters, _TXN_FILTERS)
    ranges: List[str] = []
    if date_from is not None:
        ranges.append("date >= ?")
        params.append(_to_iso_date(date_from))
    if date_to is not None:
        ranges.append("date < ?")
        params.append(_to_iso_date(date_to))
    if ranges:
        where = (where + " AND " if where else " WHERE ") + " AND ".join(ranges)
    with _session(conn) as c:
        rows = c.execute(f"SELECT * FROM transactions{where} ORDER BY date ASC, id ASC", params).fetchall()
    return [Transaction.from_row(r) for r in rows]


def count_transactions(filters: Mapping[str, Any], conn: Optional[sqlite3.Connection] = None) -> int:
    where, params = _where(filters, _TXN_FILTERS)
    with _session(conn) as c:
        return int(c.execute(f"SELECT COUNT(*) FROM transactions{where}", params).fetchone()[0])


def create_transaction(data: Mapping[str, Any], conn: Optional[sqlite3.Connection] = None) -> Transaction:
    keys, values = _columns(data, _TXN_FIELDS)
    keys.append('created_at')
    values.append(_now_iso())
    sql = f"INSERT INTO transactions ({', '.join(keys)}) VALUES ({', '.join('?' for _ in keys)})"
    with _session(conn) as c:
        cur = c.execute(sql, values)
        row = c.execute("SELECT * FROM transactions WHERE id = ?", (cur.lastrowid,)).fetchone()
    return Transaction.from_row(row)


def update_transaction(transaction_id: int, data: Mapping[str, Any],
                       conn: Optional[sqlite3.Connection] = None) -> Optional[Transaction]:
    keys, values = _columns(data, _TXN_FIELDS)
    with _session(conn) as c:
        if keys:
            sql = f"UPDATE transactions SET {', '.join(f'{k} = ?' for k in keys)} WHERE id = ?"
            c.execute(sql, values + [transaction_id])
        row = c.execute("SELECT * FROM transactions WHERE id = ?", (transaction_id,)).fetchone()
    return Transaction.from_row(row) if row else None


def delete_transaction(transaction_id: int, conn: Optional[sqlite3.Connection] = None) -> bool:
    with _session(conn) as c:
        return c.execute("DELETE FROM transactions WHERE id = ?", (transaction_id,)).rowcount > 0


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

def find_categories(filters: Mapping[str, Any], conn: Optional[sqlite3.Connection] = None) -> List[Category]:
    where, params = _where(filters, _CATEGORY_FILTERS)
    with _session(conn) as c:
        rows = c.execute(f"SELECT * FROM categories{where} ORDER BY name ASC, id ASC", params).fetchall()
    return [Category.from_row(r) for r in rows]


def create_category(user_id: str, name: str, kind: str = 'user',
                    conn: Optional[sqlite3.Connection] = None) -> Category:
    with _session(conn) as c:
        cur = c.execute("INSERT INTO categories (user_id, name, kind) VALUES (?, ?, ?)", (user_id, name, kind))
        row = c.execute("SELECT * FROM categories WHERE id = ?", (cur.lastrowid,)).fetchone()
    return Category.from_row(row)


# ---------------------------------------------------------------------------
# Budget snapshots
# ---------------------------------------------------------------------------

def find_budget_records(filters: Mapping[str, Any], conn: Optional[sqlite3.Connection] = None) -> List[BudgetRecord]:
    where, params = _where(filters, _BUDGET_FILTERS)
    with _session(conn) as c:
        rows = c.execute(f"SELECT * FROM budgets{where} ORDER BY period_start_date ASC", params).fetchall()
    return [BudgetRecord.from_row(r) for r in rows]


def find_or_create_budget_record(key: Tuple[str, str, Any], initial_budget: float,
                                 conn: Optional[sqlite3.Connection] = None) -> Tuple[BudgetRecord, bool]:
    """Create-only upsert keyed on (user_id, period_type, period_start_date).

    Returns the stored record and whether this call created it.  An
    existing record is never modified.
    """
    user_id, period_type, period_start = key
    start_iso = _to_iso_date(period_start)
    with _session(conn) as c:
        cur = c.execute(
            "INSERT OR IGNORE INTO budgets (user_id, period_type, period_start_date, initial_budget, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (user_id, period_type, start_iso, initial_budget, _now_iso()),
        )
        created = cur.rowcount > 0
        row = c.execute(
            "SELECT * FROM budgets WHERE user_id = ? AND period_type = ? AND period_start_date = ?",
            (user_id, period_type, start_iso),
        ).fetchone()
    return BudgetRecord.from_row(row), created


# ---------------------------------------------------------------------------
# DataFrame reads for the dashboard and reports
# ---------------------------------------------------------------------------

def fetch_transactions_frame(
    user_id: str,
    start_date: Any = None,
    end_date: Any = None,
    piggy_bank_ids: Optional[Sequence[int]] = None,
) -> pd.DataFrame:
    where: List[str] = ["t.user_id = ?"]
    params: List[Any] = [user_id]

    if start_date:
        where.append("t.date >= ?")
        params.append(_to_iso_date(start_date))
    if end_date:
        where.append("t.date <= ?")
        params.append(_to_iso_date(end_date))
    if piggy_bank_ids:
        where.append("t.piggy_bank_id IN ({})".format(
            ",".join(["?" for _ in piggy_bank_ids])
        ))
        params.extend(list(piggy_bank_ids))

    sql = (
        "SELECT t.id, t.date AS 'Date', t.type AS 'Type', t.amount AS 'Amount', "
        "c.name AS 'Category', c.kind AS 'category_kind', t.note AS 'Note', "
        "b.name AS 'Piggy Bank', t.piggy_bank_id, t.exclude_from_daily_spent, t.counterparty_bank_id "
        "FROM transactions t "
        "LEFT JOIN categories c ON c.id = t.category_id "
        "LEFT JOIN piggy_banks b ON b.id = t.piggy_bank_id "
        "WHERE " + " AND ".join(where) + " ORDER BY t.date DESC, t.id DESC"
    )

    with connect() as conn:
        df = pd.read_sql_query(sql, conn, params=params)
    if not df.empty:
        df['Date'] = pd.to_datetime(df['Date'])
        df['exclude_from_daily_spent'] = df['exclude_from_daily_spent'].astype(bool)
    return df


def fetch_piggy_banks_frame(user_id: str) -> pd.DataFrame:
    sql = (
        "SELECT id, name AS 'Name', current_balance, goal AS 'Goal', goal_due_date AS 'Goal Due', "
        "is_default, parent_id FROM piggy_banks WHERE user_id = ? ORDER BY is_default DESC, name ASC"
    )
    with connect() as conn:
        df = pd.read_sql_query(sql, conn, params=[user_id])
    if not df.empty:
        df['is_default'] = df['is_default'].astype(bool)
    return df


def list_users() -> List[str]:
    """Distinct owners that have at least one piggy bank."""
    with connect() as conn:
        rows = conn.execute("SELECT DISTINCT user_id FROM piggy_banks ORDER BY user_id").fetchall()
    return [r[0] for r in rows if r[0]]

