import asyncio
import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, AsyncIterator

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException

from pocketbook import store
from pocketbook.contributions import contribute
from pocketbook.dashboard_aggregator import (
    DEFAULT_TREND_MONTHS,
    DashboardSummary,
    MonthlyTrend,
    build_trends,
    summarize,
    trend_months_for_period,
)
from pocketbook.errors import PocketbookError, ValidationError
from pocketbook.logging_config import configure_logging, get_logger
from pocketbook.period_resolver import DEFAULT_PERIOD, normalize_period, utc_now
from pocketbook.spend_aggregator import normalize_category, recompute_spent

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    store.init_db(engine)
    yield


app = FastAPI(title="Pocketbook", lifespan=lifespan)

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./pocketbook.db")
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(database_url, connect_args=connect_args)

DEFAULT_OWNER_ID = os.getenv("DEFAULT_OWNER_ID", "").strip() or None


def get_trend_months_setting() -> int:
    raw = os.getenv("DASHBOARD_TREND_MONTHS", str(DEFAULT_TREND_MONTHS))
    try:
        months = int(raw)
    except ValueError:
        return DEFAULT_TREND_MONTHS
    return months if months > 0 else DEFAULT_TREND_MONTHS


DASHBOARD_TREND_MONTHS = get_trend_months_setting()


def get_engine() -> Engine:
    return engine


Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def normalize_timestamp(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def require_non_negative(value: Decimal, message: str) -> Decimal:
    try:
        value = store.quantize_money(value)
    except ValueError as exc:
        raise ValidationError(message) from exc
    if value < 0:
        raise ValidationError(message)
    return value


def require_positive(value: Decimal, message: str) -> Decimal:
    # Sub-cent amounts round to zero and are rejected too.
    value = require_non_negative(value, message)
    if value == 0:
        raise ValidationError(message)
    return value


def require_text(value: str, message: str) -> str:
    cleaned = value.strip()
    if not cleaned:
        raise ValidationError(message)
    return cleaned


def require_category(value: str) -> str:
    category = normalize_category(value)
    if not category:
        raise ValidationError("Category required.")
    return category


def require_period(value: str) -> str:
    period = normalize_period(value)
    if period is None:
        raise ValidationError("Period must be one of Weekly, Monthly, Quarterly or Yearly.")
    return period


class ExpensePayload(ApiModel):
    category: str
    amount: Decimal
    description: str
    date: datetime | None = None
    owner_id: str | None = None

    @classmethod
    def validate_payload(cls, payload: "ExpensePayload") -> "ExpensePayload":
        payload.category = require_category(payload.category)
        payload.description = require_text(payload.description, "Description required.")
        payload.amount = require_positive(payload.amount, "Amount must be greater than zero.")
        payload.date = normalize_timestamp(payload.date) if payload.date else utc_now()
        return payload


class ExpenseUpdatePayload(ApiModel):
    category: str | None = None
    amount: Decimal | None = None
    description: str | None = None
    date: datetime | None = None

    def changes(self) -> dict:
        values: dict = {}
        if self.category is not None:
            values["category"] = require_category(self.category)
        if self.amount is not None:
            values["amount"] = require_positive(self.amount, "Amount must be greater than zero.")
        if self.description is not None:
            values["description"] = require_text(self.description, "Description required.")
        if self.date is not None:
            values["date"] = normalize_timestamp(self.date)
        return values


class ExpenseResponse(ApiModel):
    id: int
    owner_id: str
    category: str
    amount: Money
    date: datetime
    description: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class BudgetPayload(ApiModel):
    category: str
    amount: Decimal
    period: str = DEFAULT_PERIOD
    spent: Decimal | None = None
    owner_id: str | None = None

    @classmethod
    def validate_payload(cls, payload: "BudgetPayload") -> "BudgetPayload":
        payload.category = require_category(payload.category)
        payload.amount = require_positive(payload.amount, "Budget amount must be greater than zero.")
        payload.period = require_period(payload.period)
        if payload.spent is None:
            payload.spent = Decimal("0")
        else:
            payload.spent = require_non_negative(payload.spent, "Spent must not be negative.")
        return payload


class BudgetUpdatePayload(ApiModel):
    category: str | None = None
    amount: Decimal | None = None
    period: str | None = None
    spent: Decimal | None = None

    def changes(self) -> dict:
        values: dict = {}
        if self.category is not None:
            values["category"] = require_category(self.category)
        if self.amount is not None:
            values["amount"] = require_positive(
                self.amount, "Budget amount must be greater than zero."
            )
        if self.period is not None:
            values["period"] = require_period(self.period)
        if self.spent is not None:
            values["spent"] = require_non_negative(self.spent, "Spent must not be negative.")
        return values


class BudgetResponse(ApiModel):
    id: int
    owner_id: str
    category: str
    amount: Money
    spent: Money
    period: str
    spent_recomputed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SavingsGoalPayload(ApiModel):
    name: str
    target_amount: Decimal
    deadline: datetime
    current_amount: Decimal | None = None
    owner_id: str | None = None

    @classmethod
    def validate_payload(cls, payload: "SavingsGoalPayload") -> "SavingsGoalPayload":
        payload.name = require_text(payload.name, "Goal name required.")
        payload.target_amount = require_positive(
            payload.target_amount, "Target amount must be greater than zero."
        )
        payload.deadline = normalize_timestamp(payload.deadline)
        if payload.current_amount is None:
            payload.current_amount = Decimal("0")
        else:
            payload.current_amount = require_non_negative(
                payload.current_amount, "Current amount must not be negative."
            )
        return payload


class SavingsGoalUpdatePayload(ApiModel):
    name: str | None = None
    target_amount: Decimal | None = None
    deadline: datetime | None = None

    def changes(self) -> dict:
        values: dict = {}
        if self.name is not None:
            values["name"] = require_text(self.name, "Goal name required.")
        if self.target_amount is not None:
            values["target_amount"] = require_positive(
                self.target_amount, "Target amount must be greater than zero."
            )
        if self.deadline is not None:
            values["deadline"] = normalize_timestamp(self.deadline)
        return values


class SavingsGoalResponse(ApiModel):
    id: int
    owner_id: str
    name: str
    target_amount: Money
    current_amount: Money
    deadline: datetime
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ContributionPayload(ApiModel):
    amount: Any = None


class MessageResponse(ApiModel):
    message: str


class SummaryTotalsResponse(ApiModel):
    monthly_expenses: Money
    total_budget: Money
    total_spent: Money
    budget_usage_percentage: Money
    total_savings_target: Money
    total_savings_current: Money
    savings_progress_percentage: Money


class SummaryCountsResponse(ApiModel):
    expense_count: int
    budget_count: int
    savings_goal_count: int
    total_transactions: int


class MonthlyTrendResponse(ApiModel):
    month: str
    year: int
    key: str
    total: Money
    categories: dict[str, Money]
    transaction_count: int


class SummaryBreakdownResponse(ApiModel):
    expense_by_category: dict[str, Money]
    monthly_trends: list[MonthlyTrendResponse]


class RecentTransactionResponse(ApiModel):
    id: int
    description: str
    amount: Money
    date: datetime
    category: str


class DashboardSummaryResponse(ApiModel):
    totals: SummaryTotalsResponse
    counts: SummaryCountsResponse
    breakdown: SummaryBreakdownResponse
    recent_transactions: list[RecentTransactionResponse]


def resolve_owner_id(*candidates: str | None) -> str:
    for candidate in (*candidates, DEFAULT_OWNER_ID):
        if candidate and candidate.strip():
            return candidate.strip()
    raise HTTPException(status_code=401, detail="Missing user identity.")


def get_owner_id(
    owner_id: str | None = Query(None, alias="ownerId"),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> str:
    return resolve_owner_id(owner_id, x_user_id)


def get_optional_owner_id(
    owner_id: str | None = Query(None, alias="ownerId"),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> str | None:
    for candidate in (owner_id, x_user_id):
        if candidate and candidate.strip():
            return candidate.strip()
    return None


def trend_response(trend: MonthlyTrend) -> MonthlyTrendResponse:
    return MonthlyTrendResponse(**asdict(trend))


def summary_response(summary: DashboardSummary) -> DashboardSummaryResponse:
    return DashboardSummaryResponse(
        totals=SummaryTotalsResponse(**asdict(summary.totals)),
        counts=SummaryCountsResponse(**asdict(summary.counts)),
        breakdown=SummaryBreakdownResponse(
            expense_by_category=summary.expense_by_category,
            monthly_trends=[trend_response(trend) for trend in summary.monthly_trends],
        ),
        recent_transactions=[
            RecentTransactionResponse(**asdict(item)) for item in summary.recent_transactions
        ],
    )


@app.exception_handler(PocketbookError)
async def handle_pocketbook_error(request: Request, exc: PocketbookError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request."
    return JSONResponse(status_code=400, content={"message": message})


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.get("/")
def root() -> dict:
    return {"message": "Pocketbook API is running"}


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


router = APIRouter(prefix="/api")


@router.get("/expenses", response_model=list[ExpenseResponse])
def list_expenses(
    owner_id: str = Depends(get_owner_id),
    engine: Engine = Depends(get_engine),
) -> list[ExpenseResponse]:
    return [ExpenseResponse(**asdict(record)) for record in store.list_expenses(engine, owner_id)]


@router.post("/expenses", response_model=ExpenseResponse, status_code=201)
def create_expense(
    payload: ExpensePayload,
    query_owner_id: str | None = Depends(get_optional_owner_id),
    engine: Engine = Depends(get_engine),
) -> ExpenseResponse:
    owner_id = resolve_owner_id(payload.owner_id, query_owner_id)
    payload = ExpensePayload.validate_payload(payload)
    record = store.create_expense(
        engine,
        owner_id,
        category=payload.category,
        amount=payload.amount,
        date=payload.date,
        description=payload.description,
    )
    return ExpenseResponse(**asdict(record))


@router.get("/expenses/{expense_id}", response_model=ExpenseResponse)
def get_expense(
    expense_id: int,
    owner_id: str = Depends(get_owner_id),
    engine: Engine = Depends(get_engine),
) -> ExpenseResponse:
    return ExpenseResponse(**asdict(store.get_expense(engine, owner_id, expense_id)))


@router.put("/expenses/{expense_id}", response_model=ExpenseResponse)
def update_expense(
    expense_id: int,
    payload: ExpenseUpdatePayload,
    owner_id: str = Depends(get_owner_id),
    engine: Engine = Depends(get_engine),
) -> ExpenseResponse:
    record = store.update_expense(engine, owner_id, expense_id, payload.changes())
    return ExpenseResponse(**asdict(record))


@router.delete("/expenses/{expense_id}", response_model=MessageResponse)
def delete_expense(
    expense_id: int,
    owner_id: str = Depends(get_owner_id),
    engine: Engine = Depends(get_engine),
) -> MessageResponse:
    store.delete_expense(engine, owner_id, expense_id)
    return MessageResponse(message="Expense deleted")


@router.get("/budgets", response_model=list[BudgetResponse])
def list_budgets(
    owner_id: str = Depends(get_owner_id),
    engine: Engine = Depends(get_engine),
) -> list[BudgetResponse]:
    return [BudgetResponse(**asdict(record)) for record in store.list_budgets(engine, owner_id)]


@router.post("/budgets", response_model=BudgetResponse, status_code=201)
def create_budget(
    payload: BudgetPayload,
    query_owner_id: str | None = Depends(get_optional_owner_id),
    engine: Engine = Depends(get_engine),
) -> BudgetResponse:
    owner_id = resolve_owner_id(payload.owner_id, query_owner_id)
    payload = BudgetPayload.validate_payload(payload)
    record = store.create_budget(
        engine,
        owner_id,
        category=payload.category,
        amount=payload.amount,
        period=payload.period,
        spent=payload.spent,
    )
    return BudgetResponse(**asdict(record))


@router.get("/budgets/calculate", response_model=list[BudgetResponse])
def calculate_budgets(
    owner_id: str = Depends(get_owner_id),
    engine: Engine = Depends(get_engine),
) -> list[BudgetResponse]:
    return [BudgetResponse(**asdict(record)) for record in recompute_spent(engine, owner_id)]


@router.get("/budgets/{budget_id}", response_model=BudgetResponse)
def get_budget(
    budget_id: int,
    owner_id: str = Depends(get_owner_id),
    engine: Engine = Depends(get_engine),
) -> BudgetResponse:
    return BudgetResponse(**asdict(store.get_budget(engine, owner_id, budget_id)))


@router.put("/budgets/{budget_id}", response_model=BudgetResponse)
def update_budget(
    budget_id: int,
    payload: BudgetUpdatePayload,
    owner_id: str = Depends(get_owner_id),
    engine: Engine = Depends(get_engine),
) -> BudgetResponse:
    record = store.update_budget(engine, owner_id, budget_id, payload.changes())
    return BudgetResponse(**asdict(record))


@router.delete("/budgets/{budget_id}", response_model=MessageResponse)
def delete_budget(
    budget_id: int,
    owner_id: str = Depends(get_owner_id),
    engine: Engine = Depends(get_engine),
) -> MessageResponse:
    store.delete_budget(engine, owner_id, budget_id)
    return MessageResponse(message="Budget deleted")


@router.get("/savings", response_model=list[SavingsGoalResponse])
def list_savings_goals(
    owner_id: str = Depends(get_owner_id),
    engine: Engine = Depends(get_engine),
) -> list[SavingsGoalResponse]:
    return [
        SavingsGoalResponse(**asdict(record))
        for record in store.list_savings_goals(engine, owner_id)
    ]


@router.post("/savings", response_model=SavingsGoalResponse, status_code=201)
def create_savings_goal(
    payload: SavingsGoalPayload,
    query_owner_id: str | None = Depends(get_optional_owner_id),
    engine: Engine = Depends(get_engine),
) -> SavingsGoalResponse:
    owner_id = resolve_owner_id(payload.owner_id, query_owner_id)
    payload = SavingsGoalPayload.validate_payload(payload)
    record = store.create_savings_goal(
        engine,
        owner_id,
        name=payload.name,
        target_amount=payload.target_amount,
        deadline=payload.deadline,
        current_amount=payload.current_amount,
    )
    return SavingsGoalResponse(**asdict(record))


@router.get("/savings/{goal_id}", response_model=SavingsGoalResponse)
def get_savings_goal(
    goal_id: int,
    owner_id: str = Depends(get_owner_id),
    engine: Engine = Depends(get_engine),
) -> SavingsGoalResponse:
    return SavingsGoalResponse(**asdict(store.get_savings_goal(engine, owner_id, goal_id)))


@router.put("/savings/{goal_id}", response_model=SavingsGoalResponse)
def update_savings_goal(
    goal_id: int,
    payload: SavingsGoalUpdatePayload,
    owner_id: str = Depends(get_owner_id),
    engine: Engine = Depends(get_engine),
) -> SavingsGoalResponse:
    record = store.update_savings_goal(engine, owner_id, goal_id, payload.changes())
    return SavingsGoalResponse(**asdict(record))


@router.post("/savings/{goal_id}/contribute", response_model=SavingsGoalResponse)
def contribute_to_savings_goal(
    goal_id: int,
    payload: ContributionPayload,
    owner_id: str = Depends(get_owner_id),
    engine: Engine = Depends(get_engine),
) -> SavingsGoalResponse:
    return SavingsGoalResponse(**asdict(contribute(engine, owner_id, goal_id, payload.amount)))


@router.delete("/savings/{goal_id}", response_model=MessageResponse)
def delete_savings_goal(
    goal_id: int,
    owner_id: str = Depends(get_owner_id),
    engine: Engine = Depends(get_engine),
) -> MessageResponse:
    store.delete_savings_goal(engine, owner_id, goal_id)
    return MessageResponse(message="Savings goal deleted")


@router.get("/dashboard/summary", response_model=DashboardSummaryResponse)
async def dashboard_summary(
    owner_id: str = Depends(get_owner_id),
    engine: Engine = Depends(get_engine),
) -> DashboardSummaryResponse:
    expenses, budgets, goals = await asyncio.gather(
        asyncio.to_thread(store.list_expenses, engine, owner_id),
        asyncio.to_thread(store.list_budgets, engine, owner_id),
        asyncio.to_thread(store.list_savings_goals, engine, owner_id),
    )
    summary = summarize(expenses, budgets, goals, utc_now(), DASHBOARD_TREND_MONTHS)
    return summary_response(summary)


@router.get("/dashboard/trends", response_model=list[MonthlyTrendResponse])
async def dashboard_trends(
    period: str = Query("6months"),
    owner_id: str = Depends(get_owner_id),
    engine: Engine = Depends(get_engine),
) -> list[MonthlyTrendResponse]:
    expenses = await asyncio.to_thread(store.list_expenses, engine, owner_id)
    trends = build_trends(expenses, utc_now(), trend_months_for_period(period))
    return [trend_response(trend) for trend in trends]


app.include_router(router)
