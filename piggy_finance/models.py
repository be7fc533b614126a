"""Plain data records shared by the store and the engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional

TransactionType = Literal["income", "expense"]
PeriodType = Literal["day", "week", "month"]

TRANSACTION_TYPES = ("income", "expense")
PERIOD_TYPES = ("day", "week", "month")


class CategoryKind(str, Enum):
    USER = "user"
    SYSTEM = "system"


def _as_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass
class PiggyBank:
    id: int
    user_id: str
    name: str
    current_balance: float = 0.0
    goal: Optional[float] = None
    goal_due_date: Optional[date] = None
    is_default: bool = False
    parent_id: Optional[int] = None
    version: int = 0
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PiggyBank":
        return cls(
            id=int(row["id"]),
            user_id=row["user_id"],
            name=row["name"],
            current_balance=float(row["current_balance"] or 0.0),
            goal=float(row["goal"]) if row["goal"] is not None else None,
            goal_due_date=_as_date(row["goal_due_date"]),
            is_default=bool(row["is_default"]),
            parent_id=int(row["parent_id"]) if row["parent_id"] is not None else None,
            version=int(row["version"] or 0),
            created_at=row["created_at"],
        )


@dataclass
class Transaction:
    id: int
    user_id: str
    amount: float
    type: TransactionType
    date: date
    category_id: Optional[int] = None
    piggy_bank_id: Optional[int] = None
    note: str = ""
    exclude_from_daily_spent: bool = False
    counterparty_bank_id: Optional[int] = None
    created_at: Optional[str] = None

    @property
    def signed_amount(self) -> float:
        return self.amount if self.type == "income" else -self.amount

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Transaction":
        return cls(
            id=int(row["id"]),
            user_id=row["user_id"],
            amount=float(row["amount"]),
            type=row["type"],
            date=_as_date(row["date"]),
            category_id=int(row["category_id"]) if row["category_id"] is not None else None,
            piggy_bank_id=int(row["piggy_bank_id"]) if row["piggy_bank_id"] is not None else None,
            note=row["note"] or "",
            exclude_from_daily_spent=bool(row["exclude_from_daily_spent"]),
            counterparty_bank_id=(
                int(row["counterparty_bank_id"]) if row["counterparty_bank_id"] is not None else None
            ),
            created_at=row["created_at"],
        )


@dataclass
class Category:
    id: int
    user_id: str
    name: str
    kind: CategoryKind = CategoryKind.USER

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Category":
        return cls(
            id=int(row["id"]),
            user_id=row["user_id"],
            name=row["name"],
            kind=CategoryKind(row["kind"]),
        )


@dataclass
class BudgetRecord:
    user_id: str
    period_type: PeriodType
    period_start_date: date
    initial_budget: float
    id: Optional[int] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "BudgetRecord":
        return cls(
            id=int(row["id"]),
            user_id=row["user_id"],
            period_type=row["period_type"],
            period_start_date=_as_date(row["period_start_date"]),
            initial_budget=float(row["initial_budget"]),
            created_at=row["created_at"],
        )


@dataclass
class BankBalance:
    """Reconciled figures for one bank, including its children when it is a parent."""

    bank_id: int
    calculated_balance: float
    own_balance: float
    children_total: float = 0.0

    @property
    def total_balance(self) -> float:
        return self.own_balance + self.children_total


@dataclass
class BudgetData:
    period_type: PeriodType
    available: float
    period_start_date: date
    spent: float = 0.0
    initial_budget: Optional[float] = None

    @property
    def remaining(self) -> Optional[float]:
        if self.initial_budget is None:
            return None
        return self.initial_budget - self.spent


@dataclass
class BudgetsResponse:
    daily: BudgetData
    weekly: BudgetData
    monthly: BudgetData

    def as_dict(self) -> Dict[str, Dict[str, Any]]:
        result: Dict[str, Dict[str, Any]] = {}
        for key in ("daily", "weekly", "monthly"):
            data: BudgetData = getattr(self, key)
            result[key] = {
                'periodType': data.period_type,
                'available': data.available,
                'periodStartDate': data.period_start_date.isoformat(),
                'spent': data.spent,
                'initialBudget': data.initial_budget,
                'remaining': data.remaining,
            }
        return result


@dataclass
class PiggyBankSummary:
    """A bank as listed to callers, with derived balances attached."""

    bank: PiggyBank
    calculated_balance: float
    balance: float
    parent_name: Optional[str] = None
    children: List[Dict[str, Any]] = field(default_factory=list)
    own_balance: Optional[float] = None
    children_total: Optional[float] = None
    total_balance: Optional[float] = None
    has_transfer_from_default_this_month: bool = False
    has_transfer_from_parent_this_month: bool = False

    @property
    def is_parent(self) -> bool:
        return bool(self.children)

    @property
    def is_child(self) -> bool:
        return self.bank.parent_id is not None
