import tempfile
import unittest
from datetime import datetime
from decimal import Decimal
from unittest import mock

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError

from pocketbook import store
from pocketbook.errors import NotFound, StoreError


class StoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.engine = create_engine(f"sqlite:///{self.tmpdir.name}/store.db")
        store.init_db(self.engine)

    def tearDown(self) -> None:
        self.engine.dispose()
        self.tmpdir.cleanup()

    def test_expenses_are_listed_newest_first_per_owner(self) -> None:
        older = store.create_expense(
            self.engine,
            "alice",
            category="Food",
            amount=Decimal("12.40"),
            date=datetime(2024, 1, 5),
            description="Lunch",
        )
        newer = store.create_expense(
            self.engine,
            "alice",
            category="Fuel",
            amount=Decimal("60"),
            date=datetime(2024, 2, 1),
            description="Petrol",
        )
        store.create_expense(
            self.engine,
            "bob",
            category="Food",
            amount=Decimal("8"),
            date=datetime(2024, 3, 1),
            description="Coffee",
        )

        listed = store.list_expenses(self.engine, "alice")

        self.assertEqual([record.id for record in listed], [newer.id, older.id])
        self.assertEqual(listed[1].amount, Decimal("12.40"))
        self.assertIsNotNone(listed[0].created_at)

    def test_update_expense_overwrites_only_given_fields(self) -> None:
        expense = store.create_expense(
            self.engine,
            "alice",
            category="Food",
            amount=Decimal("10"),
            date=datetime(2024, 1, 5),
            description="Lunch",
        )

        updated = store.update_expense(
            self.engine, "alice", expense.id, {"amount": Decimal("11")}
        )

        self.assertEqual(updated.amount, Decimal("11"))
        self.assertEqual(updated.category, "Food")
        self.assertEqual(updated.description, "Lunch")

    def test_empty_update_returns_existing_record(self) -> None:
        budget = store.create_budget(
            self.engine, "alice", category="Food", amount=Decimal("100"), period="Monthly"
        )

        self.assertEqual(store.update_budget(self.engine, "alice", budget.id, {}).id, budget.id)

    def test_records_are_scoped_to_owner(self) -> None:
        budget = store.create_budget(
            self.engine, "alice", category="Food", amount=Decimal("100"), period="Weekly"
        )

        with self.assertRaises(NotFound):
            store.get_budget(self.engine, "bob", budget.id)
        with self.assertRaises(NotFound):
            store.update_budget(self.engine, "bob", budget.id, {"amount": Decimal("1")})
        with self.assertRaises(NotFound):
            store.delete_budget(self.engine, "bob", budget.id)
        self.assertEqual(store.get_budget(self.engine, "alice", budget.id).period, "Weekly")

    def test_budget_defaults(self) -> None:
        budget = store.create_budget(
            self.engine, "alice", category="Food", amount=Decimal("100"), period="Monthly"
        )

        self.assertEqual(budget.spent, Decimal("0"))
        self.assertIsNone(budget.spent_recomputed_at)

    def test_delete_savings_goal(self) -> None:
        goal = store.create_savings_goal(
            self.engine,
            "alice",
            name="Holiday",
            target_amount=Decimal("1500"),
            deadline=datetime(2025, 6, 1),
        )

        store.delete_savings_goal(self.engine, "alice", goal.id)

        self.assertEqual(store.list_savings_goals(self.engine, "alice"), [])
        with self.assertRaises(NotFound):
            store.delete_savings_goal(self.engine, "alice", goal.id)

    def test_database_failures_surface_as_store_error(self) -> None:
        failing = mock.MagicMock()
        failing.begin.side_effect = OperationalError("SELECT 1", {}, Exception("disk I/O error"))

        with self.assertRaises(StoreError):
            store.list_budgets(failing, "alice")


class QuantizeMoneyTests(unittest.TestCase):
    def test_rounds_half_up_to_cents(self) -> None:
        self.assertEqual(store.quantize_money(Decimal("0.005")), Decimal("0.01"))
        self.assertEqual(store.quantize_money(Decimal("0.004")), Decimal("0.00"))
        self.assertEqual(store.quantize_money(Decimal("9999999999.99")), store.MAX_MONEY)

    def test_rejects_values_the_columns_cannot_hold(self) -> None:
        for value in (Decimal("1e30"), Decimal("-1e11"), Decimal("NaN"), Decimal("Infinity")):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    store.quantize_money(value)


if __name__ == "__main__":
    unittest.main()
