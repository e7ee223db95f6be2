from __future__ import annotations

from decimal import Decimal, InvalidOperation

from sqlalchemy.engine import Engine

from pocketbook import store
from pocketbook.errors import InvalidAmount
from pocketbook.logging_config import get_logger

logger = get_logger(__name__)

INVALID_AMOUNT_MESSAGE = "Valid contribution amount is required"


def validate_contribution(amount: object) -> Decimal:
    if amount is None or isinstance(amount, bool):
        raise InvalidAmount(INVALID_AMOUNT_MESSAGE)
    if isinstance(amount, str):
        amount = amount.strip()
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount(INVALID_AMOUNT_MESSAGE) from exc
    try:
        value = store.quantize_money(value)
    except ValueError as exc:
        raise InvalidAmount(INVALID_AMOUNT_MESSAGE) from exc
    if value <= 0:
        raise InvalidAmount(INVALID_AMOUNT_MESSAGE)
    return value


def contribute(
    engine: Engine,
    owner_id: str,
    goal_id: int,
    amount: object,
) -> store.SavingsGoalRecord:
    """Add a positive contribution to a savings goal.

    The increment is applied by the database, so concurrent contributions do
    not overwrite each other. The target is not a cap: a goal may end up
    above 100% progress.
    """
    value = validate_contribution(amount)
    goal = store.increment_savings_goal(engine, owner_id, goal_id, value)
    logger.info(
        "contribution_applied",
        owner_id=owner_id,
        goal_id=goal_id,
        amount=str(value),
        current_amount=str(goal.current_amount),
    )
    return goal
