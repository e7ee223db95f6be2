from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

from pocketbook.logging_config import get_logger

logger = get_logger(__name__)

WEEKLY = "Weekly"
MONTHLY = "Monthly"
QUARTERLY = "Quarterly"
YEARLY = "Yearly"
PERIODS = (WEEKLY, MONTHLY, QUARTERLY, YEARLY)
DEFAULT_PERIOD = MONTHLY

_PERIOD_LOOKUP = {value.lower(): value for value in PERIODS}


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_period(value: str | None) -> str | None:
    if not value:
        return None
    return _PERIOD_LOOKUP.get(value.strip().lower())


def resolve_window(period: str | None, reference: date | datetime) -> tuple[datetime, datetime]:
    """Map a budget period onto the ``[start, reference]`` window it covers.

    The window always ends at ``reference``. Unrecognised or missing periods
    fall back to the monthly window without raising.
    """
    end = as_datetime(reference)
    day = end.date()
    normalized = normalize_period(period)
    if normalized is None:
        logger.warning("period_fallback", period=period, fallback=DEFAULT_PERIOD)
        normalized = DEFAULT_PERIOD

    if normalized == WEEKLY:
        # Weeks start on Sunday.
        start_day = day - timedelta(days=(day.weekday() + 1) % 7)
    elif normalized == QUARTERLY:
        start_day = date(day.year, (day.month - 1) // 3 * 3 + 1, 1)
    elif normalized == YEARLY:
        start_day = date(day.year, 1, 1)
    else:
        start_day = day.replace(day=1)
    return datetime.combine(start_day, time.min), end


def as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def month_start(value: date | datetime) -> datetime:
    return datetime.combine(as_datetime(value).date().replace(day=1), time.min)


def shift_month(value: date | datetime, months: int) -> datetime:
    start = month_start(value)
    month_index = (start.year * 12 + start.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    return datetime(year, month, 1)


def month_bounds(reference: date | datetime) -> tuple[datetime, datetime]:
    """Return the calendar month containing ``reference`` as ``[start, next_start)``."""
    start = month_start(reference)
    return start, shift_month(start, 1)


def trailing_months(reference: date | datetime, count: int) -> list[datetime]:
    if count < 1:
        raise ValueError("count must be at least 1.")
    current = month_start(reference)
    return [shift_month(current, offset) for offset in range(-(count - 1), 1)]
