from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

from pocketbook.period_resolver import month_bounds, shift_month, trailing_months
from pocketbook.spend_aggregator import category_key

ZERO = Decimal("0")
HUNDRED = Decimal("100")
DEFAULT_TREND_MONTHS = 6
RECENT_TRANSACTION_LIMIT = 10
TREND_PERIODS = {"6months": 6, "1year": 12}


class ExpenseLike(Protocol):
    id: int
    category: str
    amount: Decimal
    date: datetime
    description: str


class BudgetLike(Protocol):
    amount: Decimal
    spent: Decimal


class GoalLike(Protocol):
    target_amount: Decimal
    current_amount: Decimal


@dataclass(frozen=True)
class SummaryTotals:
    monthly_expenses: Decimal
    total_budget: Decimal
    total_spent: Decimal
    budget_usage_percentage: Decimal
    total_savings_target: Decimal
    total_savings_current: Decimal
    savings_progress_percentage: Decimal


@dataclass(frozen=True)
class SummaryCounts:
    expense_count: int
    budget_count: int
    savings_goal_count: int
    total_transactions: int


@dataclass(frozen=True)
class MonthlyTrend:
    month: str
    year: int
    key: str
    total: Decimal
    categories: Dict[str, Decimal] = field(default_factory=dict)
    transaction_count: int = 0


@dataclass(frozen=True)
class RecentTransaction:
    id: int
    description: str
    amount: Decimal
    date: datetime
    category: str


@dataclass(frozen=True)
class DashboardSummary:
    totals: SummaryTotals
    counts: SummaryCounts
    expense_by_category: Dict[str, Decimal]
    monthly_trends: List[MonthlyTrend]
    recent_transactions: List[RecentTransaction]


def percentage(part: Decimal, whole: Decimal) -> Decimal:
    if whole == ZERO:
        return ZERO
    return part / whole * HUNDRED


def trend_months_for_period(period: Optional[str]) -> int:
    normalized = (period or "").strip().lower()
    return TREND_PERIODS.get(normalized, DEFAULT_TREND_MONTHS)


def expenses_between(
    expenses: Iterable[ExpenseLike], start: datetime, end: datetime
) -> List[ExpenseLike]:
    """Expenses dated in the half-open range ``[start, end)``."""
    return [expense for expense in expenses if start <= expense.date < end]


def totals_by_category(expenses: Iterable[ExpenseLike]) -> Dict[str, Decimal]:
    labels: Dict[str, str] = {}
    totals: Dict[str, Decimal] = {}
    for expense in expenses:
        key = category_key(expense.category)
        label = labels.setdefault(key, expense.category)
        totals[label] = totals.get(label, ZERO) + expense.amount
    return totals


def build_trends(
    expenses: Sequence[ExpenseLike],
    now: datetime,
    months: int = DEFAULT_TREND_MONTHS,
) -> List[MonthlyTrend]:
    trends: List[MonthlyTrend] = []
    for start in trailing_months(now, months):
        month_expenses = expenses_between(expenses, start, shift_month(start, 1))
        trends.append(
            MonthlyTrend(
                month=start.strftime("%b"),
                year=start.year,
                key=start.strftime("%Y-%m"),
                total=sum((expense.amount for expense in month_expenses), ZERO),
                categories=totals_by_category(month_expenses),
                transaction_count=len(month_expenses),
            )
        )
    return trends


def recent_transactions(
    expenses: Iterable[ExpenseLike], limit: int = RECENT_TRANSACTION_LIMIT
) -> List[RecentTransaction]:
    ordered = sorted(expenses, key=lambda expense: (expense.date, expense.id), reverse=True)
    return [
        RecentTransaction(
            id=expense.id,
            description=expense.description,
            amount=expense.amount,
            date=expense.date,
            category=expense.category,
        )
        for expense in ordered[:limit]
    ]


def summarize(
    expenses: Sequence[ExpenseLike],
    budgets: Sequence[BudgetLike],
    goals: Sequence[GoalLike],
    now: datetime,
    trend_months: int = DEFAULT_TREND_MONTHS,
) -> DashboardSummary:
    """Join an owner's expenses, budgets and goals into dashboard figures.

    Budget totals use the cached ``spent`` values as they are; they are not
    recomputed here. Percentages are not clamped, so overspending or
    overshooting a goal reads above 100.
    """
    month_start, next_month_start = month_bounds(now)
    current_month = expenses_between(expenses, month_start, next_month_start)

    total_budget = sum((budget.amount for budget in budgets), ZERO)
    total_spent = sum((budget.spent or ZERO for budget in budgets), ZERO)
    total_target = sum((goal.target_amount for goal in goals), ZERO)
    total_current = sum((goal.current_amount for goal in goals), ZERO)

    totals = SummaryTotals(
        monthly_expenses=sum((expense.amount for expense in current_month), ZERO),
        total_budget=total_budget,
        total_spent=total_spent,
        budget_usage_percentage=percentage(total_spent, total_budget),
        total_savings_target=total_target,
        total_savings_current=total_current,
        savings_progress_percentage=percentage(total_current, total_target),
    )
    counts = SummaryCounts(
        expense_count=len(current_month),
        budget_count=len(budgets),
        savings_goal_count=len(goals),
        total_transactions=len(expenses),
    )
    return DashboardSummary(
        totals=totals,
        counts=counts,
        expense_by_category=totals_by_category(current_month),
        monthly_trends=build_trends(expenses, now, trend_months),
        recent_transactions=recent_transactions(expenses),
    )
