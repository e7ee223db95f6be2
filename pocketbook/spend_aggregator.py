from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Protocol

from sqlalchemy.engine import Engine

from pocketbook import store
from pocketbook.errors import NotFound
from pocketbook.logging_config import get_logger
from pocketbook.period_resolver import resolve_window, utc_now

logger = get_logger(__name__)

ZERO = Decimal("0")


class SpendItem(Protocol):
    category: str
    amount: Decimal
    date: datetime


class BudgetLike(Protocol):
    category: str
    period: str


def normalize_category(value: str) -> str:
    return " ".join(value.split())


def category_key(value: Optional[str]) -> str:
    return normalize_category(value or "").casefold()


def sum_spent(
    expenses: Iterable[SpendItem],
    category: str,
    start: datetime,
    end: datetime,
) -> Decimal:
    if start > end:
        raise ValueError("start must be on or before end.")
    wanted = category_key(category)
    total = ZERO
    for expense in expenses:
        if category_key(expense.category) != wanted:
            continue
        if not start <= expense.date <= end:
            continue
        total += _coerce_amount(expense.amount)
    return total


def compute_budget_spent(
    budget: BudgetLike,
    expenses: Iterable[SpendItem],
    now: datetime,
) -> Decimal:
    start, end = resolve_window(budget.period, now)
    return sum_spent(expenses, budget.category, start, end)


def recompute_spent(
    engine: Engine,
    owner_id: str,
    now: Optional[datetime] = None,
) -> List[store.BudgetRecord]:
    """Refresh the cached ``spent`` of every budget the owner has.

    Each budget is written in its own transaction, so a failure part way
    through leaves the earlier budgets refreshed. Running it again is safe.
    Budgets deleted while this runs are left out of the result.
    """
    now = now or utc_now()
    budgets = store.list_budgets(engine, owner_id)
    expenses = store.list_expenses(engine, owner_id)

    updated: List[store.BudgetRecord] = []
    for budget in budgets:
        spent = compute_budget_spent(budget, expenses, now)
        try:
            updated.append(store.set_budget_spent(engine, owner_id, budget.id, spent, now))
        except NotFound:
            # Deleted since the list was read.
            logger.warning("budget_vanished", owner_id=owner_id, budget_id=budget.id)

    logger.info("budgets_recomputed", owner_id=owner_id, count=len(updated))
    return updated


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
