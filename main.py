import logging
import tomllib
from datetime import date
from importlib import metadata
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

from auth import bearer_token_from_header
from config import get_settings
from csv_utils import export_rows
from database import SessionLocal, init_db
from models import (
    Budget,
    BudgetPeriod,
    Category,
    CategoryType,
    Expense,
    FinancialGoal,
    Income,
    User,
)
from money import from_cents
from periods import parse_date_param, resolve_optional_range, resolve_report_range
from schemas import (
    BudgetIn,
    BudgetUpdate,
    CategoryIn,
    CategoryUpdate,
    ExpenseIn,
    ExpenseUpdate,
    GoalFundIn,
    GoalIn,
    GoalUpdate,
    IncomeIn,
    IncomeUpdate,
    LoginIn,
    RegisterIn,
)
from services import (
    AnalyticsService,
    AuthService,
    BudgetProgress,
    BudgetService,
    CategoryService,
    ExpenseService,
    GoalService,
    IncomeService,
    NotFoundError,
    Page,
    ReportService,
    TransactionFilters,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Tracker")


def _load_app_version() -> str:
    try:
        return metadata.version("finance-tracker")
    except metadata.PackageNotFoundError:
        pass
    pyproject = Path(__file__).resolve().parent / "pyproject.toml"
    try:
        with pyproject.open("rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return "unknown"
    return str(data.get("project", {}).get("version", "unknown"))


APP_VERSION = _load_app_version()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    init_db()
    logger.info(f"startup: version={APP_VERSION}")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400, content={"detail": "Invalid request", "errors": errors}
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logging.exception(f"server_error: path={request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Server error"})


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    token = bearer_token_from_header(request.headers.get("authorization"))
    user = AuthService(db).resolve_token(token)
    if not user:
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def int_param(request: Request, name: str, default: Optional[int] = None):
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name}") from exc


def filters_from_request(request: Request, category_param: str) -> TransactionFilters:
    try:
        start, end = resolve_optional_range(
            request.query_params.get("startDate"), request.query_params.get("endDate")
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    recurring_param = request.query_params.get("recurring")
    recurring = None
    if recurring_param == "true":
        recurring = True
    elif recurring_param == "false":
        recurring = False
    return TransactionFilters(
        start=start,
        end=end,
        category_id=int_param(request, category_param),
        recurring=recurring,
    )


def serialize_user(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
        "phone": user.phone,
        "currency": user.currency,
        "timezone": user.timezone,
    }


def category_ref(category: Optional[Category]) -> Optional[dict[str, object]]:
    if category is None:
        return None
    return {
        "id": category.id,
        "name": category.name,
        "icon": category.icon,
        "color": category.color,
    }


def serialize_category(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "icon": category.icon,
        "color": category.color,
        "type": category.type.value,
        "budget": (
            from_cents(category.budget_cents)
            if category.budget_cents is not None
            else None
        ),
        "created_at": category.created_at.isoformat(),
        "updated_at": category.updated_at.isoformat(),
    }


def serialize_expense(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "description": expense.description,
        "amount": from_cents(expense.amount_cents),
        "category_id": expense.category_id,
        "category": category_ref(expense.category),
        "date": expense.date.isoformat(),
        "receipt": expense.receipt,
        "notes": expense.notes,
        "created_at": expense.created_at.isoformat(),
        "updated_at": expense.updated_at.isoformat(),
    }


def serialize_income(income: Income) -> dict[str, object]:
    return {
        "id": income.id,
        "description": income.description,
        "amount": from_cents(income.amount_cents),
        "source_id": income.source_id,
        "source": category_ref(income.source),
        "date": income.date.isoformat(),
        "recurring": income.recurring,
        "notes": income.notes,
        "created_at": income.created_at.isoformat(),
        "updated_at": income.updated_at.isoformat(),
    }


def serialize_budget(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "category_id": budget.category_id,
        "category": category_ref(budget.category),
        "amount": from_cents(budget.amount_cents),
        "period": budget.period.value,
        "start_date": budget.start_date.isoformat(),
        "end_date": budget.end_date.isoformat() if budget.end_date else None,
    }


def serialize_budget_progress(item: BudgetProgress) -> dict[str, object]:
    return {
        "budget": serialize_budget(item.budget),
        "window": {
            "start": item.window.start.isoformat(),
            "end": item.window.end.isoformat(),
        },
        "spent": from_cents(item.spent_cents),
        "remaining": from_cents(item.remaining_cents),
        "percentage": item.percentage,
        "over_budget": item.over_budget,
    }


def serialize_goal(goal: FinancialGoal) -> dict[str, object]:
    return {
        "id": goal.id,
        "name": goal.name,
        "target": from_cents(goal.target_cents),
        "current": from_cents(goal.current_cents),
        "progress": GoalService.progress(goal),
        "icon": goal.icon,
        "description": goal.description,
        "target_date": goal.target_date.isoformat(),
        "category": goal.category,
    }


def serialize_pagination(page: Page) -> dict[str, int]:
    return {
        "total": page.total,
        "page": page.page,
        "limit": page.limit,
        "pages": page.pages,
    }


@app.get("/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


# Auth


@app.post("/auth/register")
def register(data: RegisterIn, db: Session = Depends(get_db)):
    try:
        user, token = AuthService(db).register(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"token": token, "user": serialize_user(user)}


@app.post("/auth/login")
def login(data: LoginIn, db: Session = Depends(get_db)):
    try:
        user, token = AuthService(db).login(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"token": token, "user": serialize_user(user)}


@app.get("/auth/me")
def me(user: User = Depends(get_current_user)):
    return {"user": serialize_user(user)}


# Categories


@app.get("/categories")
def list_categories(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    type_param = request.query_params.get("type")
    category_type = None
    if type_param in {t.value for t in CategoryType}:
        category_type = CategoryType(type_param)
    categories = CategoryService(db, user.id).list_all(category_type)
    return {"categories": [serialize_category(c) for c in categories]}


@app.post("/categories")
def create_category(
    data: CategoryIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        category = CategoryService(db, user.id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"category": serialize_category(category)}


@app.get("/categories/{category_id}")
def get_category(
    category_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        category = CategoryService(db, user.id).get(category_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"category": serialize_category(category)}


@app.put("/categories/{category_id}")
def update_category(
    category_id: int,
    data: CategoryUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        category = CategoryService(db, user.id).update(category_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"category": serialize_category(category)}


@app.delete("/categories/{category_id}")
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        CategoryService(db, user.id).delete(category_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Category deleted successfully"}


# Expenses


@app.get("/expenses")
def list_expenses(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    filters = filters_from_request(request, "category")
    page = ExpenseService(db, user.id).list(
        filters,
        page=int_param(request, "page", 1),
        limit=int_param(request, "limit", 50),
    )
    return {
        "expenses": [serialize_expense(e) for e in page.items],
        "pagination": serialize_pagination(page),
    }


@app.post("/expenses")
def create_expense(
    data: ExpenseIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        expense = ExpenseService(db, user.id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"expense": serialize_expense(expense)}


@app.get("/expenses/{expense_id}")
def get_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        expense = ExpenseService(db, user.id).get(expense_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"expense": serialize_expense(expense)}


@app.put("/expenses/{expense_id}")
def update_expense(
    expense_id: int,
    data: ExpenseUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        expense = ExpenseService(db, user.id).update(expense_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"expense": serialize_expense(expense)}


@app.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        ExpenseService(db, user.id).delete(expense_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Expense deleted successfully"}


# Income


@app.get("/income")
def list_income(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    filters = filters_from_request(request, "source")
    page = IncomeService(db, user.id).list(
        filters,
        page=int_param(request, "page", 1),
        limit=int_param(request, "limit", 50),
    )
    return {
        "income": [serialize_income(i) for i in page.items],
        "pagination": serialize_pagination(page),
    }


@app.post("/income")
def create_income(
    data: IncomeIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        income = IncomeService(db, user.id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"income": serialize_income(income)}


@app.get("/income/{income_id}")
def get_income(
    income_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        income = IncomeService(db, user.id).get(income_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"income": serialize_income(income)}


@app.put("/income/{income_id}")
def update_income(
    income_id: int,
    data: IncomeUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        income = IncomeService(db, user.id).update(income_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"income": serialize_income(income)}


@app.delete("/income/{income_id}")
def delete_income(
    income_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        IncomeService(db, user.id).delete(income_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Income deleted successfully"}


# Budgets


@app.get("/budgets")
def list_budgets(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    period_param = request.query_params.get("period")
    period = None
    if period_param in {p.value for p in BudgetPeriod}:
        period = BudgetPeriod(period_param)
    budgets = BudgetService(db, user.id).list_all(period)
    return {"budgets": [serialize_budget(b) for b in budgets]}


@app.post("/budgets")
def create_budget(
    data: BudgetIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        budget = BudgetService(db, user.id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"budget": serialize_budget(budget)}


@app.get("/budgets/progress")
def budget_progress(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        today = parse_date_param(request.query_params.get("date"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    progress = BudgetService(db, user.id).progress(today)
    return {"budgets": [serialize_budget_progress(p) for p in progress]}


@app.get("/budgets/{budget_id}")
def get_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        budget = BudgetService(db, user.id).get(budget_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"budget": serialize_budget(budget)}


@app.put("/budgets/{budget_id}")
def update_budget(
    budget_id: int,
    data: BudgetUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        budget = BudgetService(db, user.id).update(budget_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"budget": serialize_budget(budget)}


@app.delete("/budgets/{budget_id}")
def delete_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        BudgetService(db, user.id).delete(budget_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Budget deleted successfully"}


# Goals


@app.get("/goals")
def list_goals(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    goals = GoalService(db, user.id).list_all(request.query_params.get("category"))
    return {"goals": [serialize_goal(g) for g in goals]}


@app.post("/goals")
def create_goal(
    data: GoalIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        goal = GoalService(db, user.id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"goal": serialize_goal(goal)}


@app.get("/goals/{goal_id}")
def get_goal(
    goal_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        goal = GoalService(db, user.id).get(goal_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"goal": serialize_goal(goal)}


@app.put("/goals/{goal_id}")
def update_goal(
    goal_id: int,
    data: GoalUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        goal = GoalService(db, user.id).update(goal_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"goal": serialize_goal(goal)}


@app.delete("/goals/{goal_id}")
def delete_goal(
    goal_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        GoalService(db, user.id).delete(goal_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Goal deleted successfully"}


@app.post("/goals/{goal_id}/fund")
def fund_goal(
    goal_id: int,
    data: GoalFundIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        goal, progress = GoalService(db, user.id).fund(goal_id, data.amount)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"goal": serialize_goal(goal), "progress": progress}


# Analytics & reports


@app.get("/analytics/overview")
def analytics_overview(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return AnalyticsService(db, user.id).overview(request.query_params.get("period"))


@app.get("/analytics/dashboard")
def analytics_dashboard(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return AnalyticsService(db, user.id).dashboard()


@app.get("/reports")
def reports(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        period = resolve_report_range(
            request.query_params.get("startDate"), request.query_params.get("endDate")
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ReportService(db, user.id).gather_data(period)


@app.get("/reports/export")
def export_report(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    export_format = (request.query_params.get("format") or "csv").lower()
    if export_format not in {"csv", "json", "pdf"}:
        raise HTTPException(status_code=400, detail="Unsupported export format")
    try:
        start, end = resolve_optional_range(
            request.query_params.get("startDate"), request.query_params.get("endDate")
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    service = ReportService(db, user.id)
    if export_format != "csv":
        # PDF is rendered client-side from the same payload.
        return service.export_data(start, end)

    csv_text = export_rows(service.export_rows(start, end))
    filename = f"financial-report-{date.today().isoformat()}.csv"
    logger.info(f"report_exported: user_id={user.id} format=csv")
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
