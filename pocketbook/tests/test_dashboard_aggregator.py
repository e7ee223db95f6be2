import unittest
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from pocketbook.dashboard_aggregator import (
    build_trends,
    percentage,
    recent_transactions,
    summarize,
    trend_months_for_period,
)


@dataclass(frozen=True)
class Expense:
    id: int
    category: str
    amount: Decimal
    date: datetime
    description: str = ""


@dataclass(frozen=True)
class Budget:
    amount: Decimal
    spent: Decimal


@dataclass(frozen=True)
class Goal:
    target_amount: Decimal
    current_amount: Decimal


NOW = datetime(2024, 3, 20, 15)


class SummarizeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.expenses = [
            Expense(1, "Food", Decimal("20"), datetime(2024, 3, 2), "Groceries"),
            Expense(2, "Food", Decimal("30"), datetime(2024, 3, 18), "Dinner"),
            Expense(3, "Rent", Decimal("900"), datetime(2024, 3, 1), "March rent"),
            Expense(4, "Rent", Decimal("900"), datetime(2024, 2, 1), "February rent"),
            Expense(5, "Travel", Decimal("150"), datetime(2023, 12, 24), "Train"),
            Expense(6, "Food", Decimal("5"), datetime(2024, 3, 31, 23, 59), "Late snack"),
        ]

    def test_current_month_totals_and_breakdown(self) -> None:
        summary = summarize(self.expenses, [], [], NOW)

        self.assertEqual(summary.totals.monthly_expenses, Decimal("955"))
        self.assertEqual(summary.counts.expense_count, 4)
        self.assertEqual(summary.counts.total_transactions, 6)
        self.assertEqual(
            summary.expense_by_category,
            {"Food": Decimal("55"), "Rent": Decimal("900")},
        )

    def test_budget_and_savings_percentages(self) -> None:
        budgets = [
            Budget(amount=Decimal("100"), spent=Decimal("50")),
            Budget(amount=Decimal("100"), spent=Decimal("100")),
        ]
        goals = [
            Goal(target_amount=Decimal("1000"), current_amount=Decimal("250")),
            Goal(target_amount=Decimal("1000"), current_amount=Decimal("0")),
        ]

        summary = summarize([], budgets, goals, NOW)

        self.assertEqual(summary.totals.total_budget, Decimal("200"))
        self.assertEqual(summary.totals.total_spent, Decimal("150"))
        self.assertEqual(summary.totals.budget_usage_percentage, Decimal("75"))
        self.assertEqual(summary.totals.total_savings_target, Decimal("2000"))
        self.assertEqual(summary.totals.total_savings_current, Decimal("250"))
        self.assertEqual(summary.totals.savings_progress_percentage, Decimal("12.5"))
        self.assertEqual(summary.counts.budget_count, 2)
        self.assertEqual(summary.counts.savings_goal_count, 2)

    def test_zero_totals_yield_zero_percentages(self) -> None:
        summary = summarize(self.expenses, [], [], NOW)

        self.assertEqual(summary.totals.budget_usage_percentage, Decimal("0"))
        self.assertEqual(summary.totals.savings_progress_percentage, Decimal("0"))

    def test_overspend_is_not_clamped(self) -> None:
        budgets = [Budget(amount=Decimal("100"), spent=Decimal("150"))]
        goals = [Goal(target_amount=Decimal("100"), current_amount=Decimal("150"))]

        summary = summarize([], budgets, goals, NOW)

        self.assertEqual(summary.totals.budget_usage_percentage, Decimal("150"))
        self.assertEqual(summary.totals.savings_progress_percentage, Decimal("150"))

    def test_recent_transactions_are_newest_first_and_capped(self) -> None:
        expenses = [
            Expense(index, "Misc", Decimal("1"), datetime(2024, 1, index)) for index in range(1, 16)
        ]

        summary = summarize(expenses, [], [], NOW)

        self.assertEqual(len(summary.recent_transactions), 10)
        self.assertEqual(
            [item.id for item in summary.recent_transactions],
            list(range(15, 5, -1)),
        )

    def test_default_trend_series_has_six_months(self) -> None:
        summary = summarize(self.expenses, [], [], NOW)

        self.assertEqual(len(summary.monthly_trends), 6)
        self.assertEqual(summary.monthly_trends[0].key, "2023-10")
        self.assertEqual(summary.monthly_trends[-1].key, "2024-03")


class TrendTests(unittest.TestCase):
    def test_trend_series_length_and_order(self) -> None:
        expenses = [
            Expense(1, "Food", Decimal("10"), datetime(2024, 3, 1)),
            Expense(2, "Food", Decimal("15"), datetime(2024, 3, 5)),
            Expense(3, "Rent", Decimal("700"), datetime(2024, 3, 1)),
            Expense(4, "Food", Decimal("12"), datetime(2023, 4, 30)),
            Expense(5, "Food", Decimal("99"), datetime(2023, 3, 31)),
        ]

        trends = build_trends(expenses, NOW, 12)

        self.assertEqual(len(trends), 12)
        self.assertEqual(trends[0].key, "2023-04")
        self.assertEqual(trends[0].month, "Apr")
        self.assertEqual(trends[0].year, 2023)
        self.assertEqual(trends[0].total, Decimal("12"))
        self.assertEqual(trends[-1].key, "2024-03")
        self.assertEqual(trends[-1].total, Decimal("725"))
        self.assertEqual(trends[-1].transaction_count, 3)
        self.assertEqual(
            trends[-1].categories,
            {"Food": Decimal("25"), "Rent": Decimal("700")},
        )

    def test_empty_months_are_present_with_zero_totals(self) -> None:
        trends = build_trends([], NOW, 3)

        self.assertEqual([trend.key for trend in trends], ["2024-01", "2024-02", "2024-03"])
        self.assertTrue(all(trend.total == Decimal("0") for trend in trends))
        self.assertTrue(all(trend.transaction_count == 0 for trend in trends))

    def test_trend_months_for_period(self) -> None:
        self.assertEqual(trend_months_for_period("6months"), 6)
        self.assertEqual(trend_months_for_period("1year"), 12)
        self.assertEqual(trend_months_for_period("decade"), 6)
        self.assertEqual(trend_months_for_period(None), 6)


class HelperTests(unittest.TestCase):
    def test_percentage_guards_zero_denominator(self) -> None:
        self.assertEqual(percentage(Decimal("5"), Decimal("0")), Decimal("0"))
        self.assertEqual(percentage(Decimal("1"), Decimal("4")), Decimal("25"))

    def test_recent_transactions_break_date_ties_by_id(self) -> None:
        same_day = datetime(2024, 3, 3)
        expenses = [
            Expense(1, "Food", Decimal("1"), same_day),
            Expense(2, "Food", Decimal("2"), same_day),
        ]

        recent = recent_transactions(expenses)

        self.assertEqual([item.id for item in recent], [2, 1])


if __name__ == "__main__":
    unittest.main()
