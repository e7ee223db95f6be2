"""
Record store for expenses, budgets and savings goals.

Each collection is an independent table keyed by an autoincrement id and
tagged with the owning user's id. There are no foreign keys between them: a
budget relates to expenses only through its category text. Every function
takes the owner id explicitly and scopes reads and writes to it, so a record
owned by someone else behaves exactly like a missing one.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterator, Optional, TypeVar

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine, RowMapping
from sqlalchemy.exc import SQLAlchemyError

from pocketbook.errors import NotFound, StoreError
from pocketbook.logging_config import get_logger

logger = get_logger(__name__)

metadata = MetaData()

expenses = Table(
    "expenses",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", String(255), nullable=False, index=True),
    Column("category", String(255), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("date", DateTime, nullable=False),
    Column("description", String(500), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now(), onupdate=func.now()),
)

budgets = Table(
    "budgets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", String(255), nullable=False, index=True),
    Column("category", String(255), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("spent", Numeric(12, 2), nullable=False, server_default="0"),
    Column("period", String(20), nullable=False, server_default="Monthly"),
    Column("spent_recomputed_at", DateTime),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now(), onupdate=func.now()),
)

savings_goals = Table(
    "savings_goals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", String(255), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("target_amount", Numeric(12, 2), nullable=False),
    Column("current_amount", Numeric(12, 2), nullable=False, server_default="0"),
    Column("deadline", DateTime, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now(), onupdate=func.now()),
)


@dataclass(frozen=True)
class ExpenseRecord:
    id: int
    owner_id: str
    category: str
    amount: Decimal
    date: datetime
    description: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class BudgetRecord:
    id: int
    owner_id: str
    category: str
    amount: Decimal
    spent: Decimal
    period: str
    spent_recomputed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class SavingsGoalRecord:
    id: int
    owner_id: str
    name: str
    target_amount: Decimal
    current_amount: Decimal
    deadline: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


Record = TypeVar("Record")


def _expense_from_row(row: RowMapping) -> ExpenseRecord:
    return ExpenseRecord(
        id=row["id"],
        owner_id=row["owner_id"],
        category=row["category"],
        amount=coerce_decimal(row["amount"]),
        date=row["date"],
        description=row["description"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _budget_from_row(row: RowMapping) -> BudgetRecord:
    return BudgetRecord(
        id=row["id"],
        owner_id=row["owner_id"],
        category=row["category"],
        amount=coerce_decimal(row["amount"]),
        spent=coerce_decimal(row["spent"] or 0),
        period=row["period"],
        spent_recomputed_at=row["spent_recomputed_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _goal_from_row(row: RowMapping) -> SavingsGoalRecord:
    return SavingsGoalRecord(
        id=row["id"],
        owner_id=row["owner_id"],
        name=row["name"],
        target_amount=coerce_decimal(row["target_amount"]),
        current_amount=coerce_decimal(row["current_amount"] or 0),
        deadline=row["deadline"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def coerce_decimal(value: Decimal | float | int | str) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


# Matches the Numeric(12, 2) money columns.
CENT = Decimal("0.01")
MAX_MONEY = Decimal("9999999999.99")


def quantize_money(value: Decimal) -> Decimal:
    """Round to cents, rejecting values the money columns cannot hold."""
    if not value.is_finite() or abs(value) > MAX_MONEY:
        raise ValueError("Amount is out of range.")
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def init_db(engine: Engine) -> None:
    with transaction(engine) as conn:
        metadata.create_all(conn)


@contextmanager
def transaction(engine: Engine) -> Iterator[Connection]:
    try:
        with engine.begin() as conn:
            yield conn
    except SQLAlchemyError as exc:
        logger.exception("store_failure", error=str(exc))
        raise StoreError("Record store operation failed.") from exc


def _list(
    engine: Engine,
    table: Table,
    owner_id: str,
    factory: Callable[[RowMapping], Record],
    order_by: tuple = (),
) -> list[Record]:
    stmt = select(table).where(table.c.owner_id == owner_id)
    if order_by:
        stmt = stmt.order_by(*order_by)
    else:
        stmt = stmt.order_by(table.c.id.asc())
    with transaction(engine) as conn:
        rows = conn.execute(stmt).mappings().all()
    return [factory(row) for row in rows]


def _get(
    engine: Engine,
    table: Table,
    owner_id: str,
    record_id: int,
    factory: Callable[[RowMapping], Record],
    label: str,
) -> Record:
    stmt = select(table).where(table.c.id == record_id, table.c.owner_id == owner_id)
    with transaction(engine) as conn:
        row = conn.execute(stmt).mappings().first()
    if not row:
        raise NotFound(f"{label} not found")
    return factory(row)


def _insert(
    engine: Engine,
    table: Table,
    values: dict,
    factory: Callable[[RowMapping], Record],
    label: str,
) -> Record:
    stmt = insert(table).values(**values).returning(*table.c)
    with transaction(engine) as conn:
        row = conn.execute(stmt).mappings().first()
    if not row:
        raise StoreError(f"Failed to create {label.lower()}.")
    record = factory(row)
    logger.info("record_created", table=table.name, record_id=record.id, owner_id=values["owner_id"])
    return record


def _update(
    engine: Engine,
    table: Table,
    owner_id: str,
    record_id: int,
    values: dict,
    factory: Callable[[RowMapping], Record],
    label: str,
) -> Record:
    if not values:
        return _get(engine, table, owner_id, record_id, factory, label)
    stmt = (
        update(table)
        .where(table.c.id == record_id, table.c.owner_id == owner_id)
        .values(**values)
        .returning(*table.c)
    )
    with transaction(engine) as conn:
        row = conn.execute(stmt).mappings().first()
    if not row:
        raise NotFound(f"{label} not found")
    logger.info("record_updated", table=table.name, record_id=record_id, fields=sorted(values))
    return factory(row)


def _delete(engine: Engine, table: Table, owner_id: str, record_id: int, label: str) -> None:
    stmt = delete(table).where(table.c.id == record_id, table.c.owner_id == owner_id)
    with transaction(engine) as conn:
        result = conn.execute(stmt)
        if result.rowcount == 0:
            raise NotFound(f"{label} not found")
    logger.info("record_deleted", table=table.name, record_id=record_id)


def list_expenses(engine: Engine, owner_id: str) -> list[ExpenseRecord]:
    return _list(
        engine,
        expenses,
        owner_id,
        _expense_from_row,
        order_by=(expenses.c.date.desc(), expenses.c.id.desc()),
    )


def get_expense(engine: Engine, owner_id: str, expense_id: int) -> ExpenseRecord:
    return _get(engine, expenses, owner_id, expense_id, _expense_from_row, "Expense")


def create_expense(
    engine: Engine,
    owner_id: str,
    *,
    category: str,
    amount: Decimal,
    date: datetime,
    description: str,
) -> ExpenseRecord:
    values = {
        "owner_id": owner_id,
        "category": category,
        "amount": amount,
        "date": date,
        "description": description,
    }
    return _insert(engine, expenses, values, _expense_from_row, "Expense")


def update_expense(engine: Engine, owner_id: str, expense_id: int, changes: dict) -> ExpenseRecord:
    return _update(engine, expenses, owner_id, expense_id, changes, _expense_from_row, "Expense")


def delete_expense(engine: Engine, owner_id: str, expense_id: int) -> None:
    _delete(engine, expenses, owner_id, expense_id, "Expense")


def list_budgets(engine: Engine, owner_id: str) -> list[BudgetRecord]:
    return _list(engine, budgets, owner_id, _budget_from_row)


def get_budget(engine: Engine, owner_id: str, budget_id: int) -> BudgetRecord:
    return _get(engine, budgets, owner_id, budget_id, _budget_from_row, "Budget")


def create_budget(
    engine: Engine,
    owner_id: str,
    *,
    category: str,
    amount: Decimal,
    period: str,
    spent: Decimal = Decimal("0"),
) -> BudgetRecord:
    values = {
        "owner_id": owner_id,
        "category": category,
        "amount": amount,
        "period": period,
        "spent": spent,
    }
    return _insert(engine, budgets, values, _budget_from_row, "Budget")


def update_budget(engine: Engine, owner_id: str, budget_id: int, changes: dict) -> BudgetRecord:
    return _update(engine, budgets, owner_id, budget_id, changes, _budget_from_row, "Budget")


def set_budget_spent(
    engine: Engine,
    owner_id: str,
    budget_id: int,
    spent: Decimal,
    recomputed_at: datetime,
) -> BudgetRecord:
    changes = {"spent": spent, "spent_recomputed_at": recomputed_at}
    return _update(engine, budgets, owner_id, budget_id, changes, _budget_from_row, "Budget")


def delete_budget(engine: Engine, owner_id: str, budget_id: int) -> None:
    _delete(engine, budgets, owner_id, budget_id, "Budget")


def list_savings_goals(engine: Engine, owner_id: str) -> list[SavingsGoalRecord]:
    return _list(engine, savings_goals, owner_id, _goal_from_row)


def get_savings_goal(engine: Engine, owner_id: str, goal_id: int) -> SavingsGoalRecord:
    return _get(engine, savings_goals, owner_id, goal_id, _goal_from_row, "Savings goal")


def create_savings_goal(
    engine: Engine,
    owner_id: str,
    *,
    name: str,
    target_amount: Decimal,
    deadline: datetime,
    current_amount: Decimal = Decimal("0"),
) -> SavingsGoalRecord:
    values = {
        "owner_id": owner_id,
        "name": name,
        "target_amount": target_amount,
        "current_amount": current_amount,
        "deadline": deadline,
    }
    return _insert(engine, savings_goals, values, _goal_from_row, "Savings goal")


def update_savings_goal(
    engine: Engine, owner_id: str, goal_id: int, changes: dict
) -> SavingsGoalRecord:
    return _update(
        engine, savings_goals, owner_id, goal_id, changes, _goal_from_row, "Savings goal"
    )


def increment_savings_goal(
    engine: Engine, owner_id: str, goal_id: int, amount: Decimal
) -> SavingsGoalRecord:
    """Add ``amount`` to a goal's current amount in a single UPDATE statement."""
    changes = {"current_amount": savings_goals.c.current_amount + amount}
    return _update(
        engine, savings_goals, owner_id, goal_id, changes, _goal_from_row, "Savings goal"
    )


def delete_savings_goal(engine: Engine, owner_id: str, goal_id: int) -> None:
    _delete(engine, savings_goals, owner_id, goal_id, "Savings goal")
