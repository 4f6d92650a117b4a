from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Generic, Optional, TypeVar

from sqlalchemy import delete, extract, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.sql import Select

from auth import (
    generate_access_token,
    hash_password,
    read_access_token,
    verify_password,
)
from config import get_settings
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
from money import from_cents, growth_rate, percentage, to_cents
from periods import (
    Period,
    current_budget_window,
    month_end,
    month_starts,
    resolve_analytics_period,
)
from schemas import (
    BudgetIn,
    BudgetUpdate,
    CategoryIn,
    CategoryUpdate,
    ExpenseIn,
    ExpenseUpdate,
    GoalIn,
    GoalUpdate,
    IncomeIn,
    IncomeUpdate,
    LoginIn,
    RegisterIn,
)

logger = logging.getLogger(__name__)

MONTH_ABBR = [
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
]
MONTH_NAMES = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]
UNCATEGORIZED = "Other"
DEFAULT_COLOR = "#8884d8"
MAX_PAGE_SIZE = 100
TOP_CATEGORY_COUNT = 5
RECENT_TRANSACTION_COUNT = 10

T = TypeVar("T")


class NotFoundError(ValueError):
    pass


@dataclass
class Page(Generic[T]):
    items: list[T]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass
class TransactionFilters:
    start: Optional[date] = None
    end: Optional[date] = None
    category_id: Optional[int] = None
    recurring: Optional[bool] = None


@dataclass
class BudgetProgress:
    budget: Budget
    window: Period
    spent_cents: int

    @property
    def remaining_cents(self) -> int:
        return self.budget.amount_cents - self.spent_cents

    @property
    def percentage(self) -> float:
        return percentage(self.spent_cents, self.budget.amount_cents)

    @property
    def over_budget(self) -> bool:
        return self.spent_cents > self.budget.amount_cents


def clamp_pagination(page: int, limit: int) -> tuple[int, int]:
    return max(page, 1), min(max(limit, 1), MAX_PAGE_SIZE)


def _paginate(
    session: Session, stmt: Select, count_stmt: Select, page: int, limit: int
) -> Page:
    page, limit = clamp_pagination(page, limit)
    total = int(session.execute(count_stmt).scalar_one() or 0)
    items = session.scalars(stmt.offset((page - 1) * limit).limit(limit)).all()
    return Page(items=list(items), total=total, page=page, limit=limit)


def _commit_or_reject(session: Session, message: str) -> None:
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ValueError(message) from exc


class AuthService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.email == email))

    def register(self, data: RegisterIn) -> tuple[User, str]:
        if self._by_email(data.email):
            raise ValueError("User already exists")
        settings = get_settings()
        user = User(
            email=data.email,
            password_hash=hash_password(data.password),
            first_name=data.first_name.strip(),
            last_name=data.last_name.strip(),
            currency=settings.default_currency,
            timezone=settings.default_timezone,
        )
        self.session.add(user)
        _commit_or_reject(self.session, "User already exists")
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user, generate_access_token(user.id)

    def login(self, data: LoginIn) -> tuple[User, str]:
        user = self._by_email(data.email)
        if not user or not verify_password(data.password, user.password_hash):
            raise ValueError("Invalid credentials")
        logger.info(f"user_login: user_id={user.id}")
        return user, generate_access_token(user.id)

    def resolve_token(self, token: Optional[str]) -> Optional[User]:
        if not token:
            return None
        user_id = read_access_token(token)
        if user_id is None:
            return None
        return self.session.get(User, user_id)


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self, type: Optional[CategoryType] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name)
        )
        if type:
            stmt = stmt.where(Category.type == type)
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")
        return category

    def get_typed(self, category_id: int, type: CategoryType) -> Optional[Category]:
        """Owned category of the given type, or ``None``."""
        return self.session.scalar(
            select(Category).where(
                Category.id == category_id,
                Category.user_id == self.user_id,
                Category.type == type,
            )
        )

    def _name_taken(
        self, name: str, type: CategoryType, exclude_id: Optional[int] = None
    ) -> bool:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id,
            Category.type == type,
            func.lower(Category.name) == name.strip().lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def create(self, data: CategoryIn) -> Category:
        if self._name_taken(data.name, data.type):
            raise ValueError("Category already exists")
        budget_cents = None
        if data.type == CategoryType.expense and data.budget is not None:
            budget_cents = to_cents(data.budget)
        category = Category(
            user_id=self.user_id,
            name=data.name.strip(),
            icon=data.icon,
            color=data.color,
            type=data.type,
            budget_cents=budget_cents,
        )
        self.session.add(category)
        _commit_or_reject(self.session, "Category already exists")
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        category = self.get(category_id)
        fields = data.model_dump(exclude_unset=True)
        name = fields.get("name")
        if name is not None:
            if self._name_taken(name, category.type, exclude_id=category.id):
                raise ValueError("Category already exists")
            category.name = name.strip()
        if fields.get("icon") is not None:
            category.icon = fields["icon"]
        if fields.get("color") is not None:
            category.color = fields["color"]
        if "budget" in fields and category.type == CategoryType.expense:
            budget = fields["budget"]
            category.budget_cents = to_cents(budget) if budget is not None else None
        _commit_or_reject(self.session, "Category already exists")
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        """Delete a category, its budgets, and detach transactions that used it.

        Detached expenses and income keep their amounts and are reported
        under "Other". All statements commit together or not at all.
        """
        category = self.get(category_id)
        try:
            self.session.execute(
                delete(Budget).where(
                    Budget.user_id == self.user_id, Budget.category_id == category.id
                )
            )
            self.session.execute(
                update(Expense)
                .where(
                    Expense.user_id == self.user_id,
                    Expense.category_id == category.id,
                )
                .values(category_id=None)
            )
            self.session.execute(
                update(Income)
                .where(Income.user_id == self.user_id, Income.source_id == category.id)
                .values(source_id=None)
            )
            self.session.delete(category)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(
            f"category_deleted: user_id={self.user_id} category_id={category_id}"
        )


class ExpenseService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.categories = CategoryService(session, user_id)

    def _category(self, category_id: int) -> Category:
        category = self.categories.get_typed(category_id, CategoryType.expense)
        if not category:
            raise ValueError("Invalid category")
        return category

    def _filtered(self, stmt: Select, filters: TransactionFilters) -> Select:
        stmt = stmt.where(Expense.user_id == self.user_id)
        if filters.start:
            stmt = stmt.where(Expense.date >= filters.start)
        if filters.end:
            stmt = stmt.where(Expense.date <= filters.end)
        if filters.category_id:
            stmt = stmt.where(Expense.category_id == filters.category_id)
        return stmt

    def list(
        self, filters: TransactionFilters, page: int = 1, limit: int = 50
    ) -> Page[Expense]:
        stmt = self._filtered(
            select(Expense).options(joinedload(Expense.category)), filters
        ).order_by(Expense.date.desc(), Expense.id.desc())
        count_stmt = self._filtered(select(func.count(Expense.id)), filters)
        return _paginate(self.session, stmt, count_stmt, page, limit)

    def get(self, expense_id: int) -> Expense:
        expense = self.session.scalar(
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.id == expense_id, Expense.user_id == self.user_id)
        )
        if not expense:
            raise NotFoundError("Expense not found")
        return expense

    def create(self, data: ExpenseIn) -> Expense:
        category = self._category(data.category_id)
        expense = Expense(
            user_id=self.user_id,
            description=data.description.strip(),
            amount_cents=to_cents(data.amount),
            category_id=category.id,
            date=data.date,
            receipt=data.receipt,
            notes=data.notes.strip() if data.notes else None,
        )
        self.session.add(expense)
        self.session.commit()
        return self.get(expense.id)

    def update(self, expense_id: int, data: ExpenseUpdate) -> Expense:
        fields = data.model_dump(exclude_unset=True)
        if fields.get("category_id") is not None:
            self._category(fields["category_id"])
        expense = self.get(expense_id)
        if fields.get("description") is not None:
            expense.description = fields["description"].strip()
        if fields.get("amount") is not None:
            expense.amount_cents = to_cents(fields["amount"])
        if fields.get("category_id") is not None:
            expense.category_id = fields["category_id"]
        if fields.get("date") is not None:
            expense.date = fields["date"]
        if "receipt" in fields:
            expense.receipt = fields["receipt"]
        if "notes" in fields:
            expense.notes = fields["notes"].strip() if fields["notes"] else None
        self.session.commit()
        self.session.expire(expense, ["category"])
        return self.get(expense_id)

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        self.session.commit()


class IncomeService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.categories = CategoryService(session, user_id)

    def _source(self, source_id: int) -> Category:
        source = self.categories.get_typed(source_id, CategoryType.income)
        if not source:
            raise ValueError("Invalid source category")
        return source

    def _filtered(self, stmt: Select, filters: TransactionFilters) -> Select:
        stmt = stmt.where(Income.user_id == self.user_id)
        if filters.start:
            stmt = stmt.where(Income.date >= filters.start)
        if filters.end:
            stmt = stmt.where(Income.date <= filters.end)
        if filters.category_id:
            stmt = stmt.where(Income.source_id == filters.category_id)
        if filters.recurring is not None:
            stmt = stmt.where(Income.recurring.is_(filters.recurring))
        return stmt

    def list(
        self, filters: TransactionFilters, page: int = 1, limit: int = 50
    ) -> Page[Income]:
        stmt = self._filtered(
            select(Income).options(joinedload(Income.source)), filters
        ).order_by(Income.date.desc(), Income.id.desc())
        count_stmt = self._filtered(select(func.count(Income.id)), filters)
        return _paginate(self.session, stmt, count_stmt, page, limit)

    def get(self, income_id: int) -> Income:
        income = self.session.scalar(
            select(Income)
            .options(joinedload(Income.source))
            .where(Income.id == income_id, Income.user_id == self.user_id)
        )
        if not income:
            raise NotFoundError("Income not found")
        return income

    def create(self, data: IncomeIn) -> Income:
        source = self._source(data.source_id)
        income = Income(
            user_id=self.user_id,
            description=data.description.strip(),
            amount_cents=to_cents(data.amount),
            source_id=source.id,
            date=data.date,
            recurring=data.recurring,
            notes=data.notes.strip() if data.notes else None,
        )
        self.session.add(income)
        self.session.commit()
        return self.get(income.id)

    def update(self, income_id: int, data: IncomeUpdate) -> Income:
        fields = data.model_dump(exclude_unset=True)
        if fields.get("source_id") is not None:
            self._source(fields["source_id"])
        income = self.get(income_id)
        if fields.get("description") is not None:
            income.description = fields["description"].strip()
        if fields.get("amount") is not None:
            income.amount_cents = to_cents(fields["amount"])
        if fields.get("source_id") is not None:
            income.source_id = fields["source_id"]
        if fields.get("date") is not None:
            income.date = fields["date"]
        if fields.get("recurring") is not None:
            income.recurring = fields["recurring"]
        if "notes" in fields:
            income.notes = fields["notes"].strip() if fields["notes"] else None
        self.session.commit()
        self.session.expire(income, ["source"])
        return self.get(income_id)

    def delete(self, income_id: int) -> None:
        income = self.get(income_id)
        self.session.delete(income)
        self.session.commit()


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.categories = CategoryService(session, user_id)

    def list_all(self, period: Optional[BudgetPeriod] = None) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.id)
        )
        if period:
            stmt = stmt.where(Budget.period == period)
        return self.session.scalars(stmt).all()

    def get(self, budget_id: int) -> Budget:
        budget = self.session.scalar(
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.id == budget_id, Budget.user_id == self.user_id)
        )
        if not budget:
            raise NotFoundError("Budget not found")
        return budget

    def create(self, data: BudgetIn, today: Optional[date] = None) -> Budget:
        category = self.categories.get_typed(data.category_id, CategoryType.expense)
        if not category:
            raise ValueError("Invalid category")
        existing = self.session.scalar(
            select(Budget.id).where(
                Budget.user_id == self.user_id,
                Budget.category_id == category.id,
                Budget.period == data.period,
            )
        )
        if existing is not None:
            raise ValueError("Budget already exists for this category and period")
        start_date = data.start_date or today or date.today()
        if data.end_date and data.end_date < start_date:
            raise ValueError("End date must be after start date")
        budget = Budget(
            user_id=self.user_id,
            category_id=category.id,
            amount_cents=to_cents(data.amount),
            period=data.period,
            start_date=start_date,
            end_date=data.end_date,
        )
        self.session.add(budget)
        _commit_or_reject(
            self.session, "Budget already exists for this category and period"
        )
        return self.get(budget.id)

    def update(self, budget_id: int, data: BudgetUpdate) -> Budget:
        budget = self.get(budget_id)
        fields = data.model_dump(exclude_unset=True)
        if fields.get("amount") is not None:
            budget.amount_cents = to_cents(fields["amount"])
        if fields.get("start_date") is not None:
            budget.start_date = fields["start_date"]
        if "end_date" in fields:
            budget.end_date = fields["end_date"]
        if budget.end_date and budget.end_date < budget.start_date:
            self.session.rollback()
            raise ValueError("End date must be after start date")
        self.session.commit()
        return self.get(budget_id)

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def spent_between(self, category_id: int, start: date, end: date) -> int:
        if start > end:
            return 0
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(Expense.amount_cents), 0)).where(
                    Expense.user_id == self.user_id,
                    Expense.category_id == category_id,
                    Expense.date.between(start, end),
                )
            ).scalar_one()
            or 0
        )

    def progress(self, today: Optional[date] = None) -> list[BudgetProgress]:
        """Spending per budget within the budget's current period window."""
        today = today or date.today()
        out: list[BudgetProgress] = []
        for budget in self.list_all():
            window = current_budget_window(budget.period.value, today)
            start = max(window.start, budget.start_date)
            end = min(window.end, budget.end_date) if budget.end_date else window.end
            spent = self.spent_between(budget.category_id, start, end)
            out.append(
                BudgetProgress(
                    budget=budget,
                    window=Period(window.slug, start, end),
                    spent_cents=spent,
                )
            )
        return out


class GoalService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self, category: Optional[str] = None) -> list[FinancialGoal]:
        stmt = (
            select(FinancialGoal)
            .where(FinancialGoal.user_id == self.user_id)
            .order_by(FinancialGoal.target_date, FinancialGoal.id)
        )
        if category:
            stmt = stmt.where(FinancialGoal.category == category)
        return self.session.scalars(stmt).all()

    def get(self, goal_id: int) -> FinancialGoal:
        goal = self.session.get(FinancialGoal, goal_id)
        if not goal or goal.user_id != self.user_id:
            raise NotFoundError("Goal not found")
        return goal

    @staticmethod
    def _target_cents(target) -> int:
        cents = to_cents(target)
        if cents <= 0:
            raise ValueError("Invalid target")
        return cents

    def create(self, data: GoalIn) -> FinancialGoal:
        goal = FinancialGoal(
            user_id=self.user_id,
            name=data.name.strip(),
            target_cents=self._target_cents(data.target),
            current_cents=0,
            icon=data.icon,
            description=data.description,
            target_date=data.target_date,
            category=data.category.strip(),
        )
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def update(self, goal_id: int, data: GoalUpdate) -> FinancialGoal:
        goal = self.get(goal_id)
        fields = data.model_dump(exclude_unset=True)
        target_cents = None
        if fields.get("target") is not None:
            target_cents = self._target_cents(fields["target"])
        if fields.get("name") is not None:
            goal.name = fields["name"].strip()
        if target_cents is not None:
            goal.target_cents = target_cents
            goal.current_cents = min(goal.current_cents, goal.target_cents)
        if fields.get("icon") is not None:
            goal.icon = fields["icon"]
        if "description" in fields:
            goal.description = fields["description"]
        if fields.get("target_date") is not None:
            goal.target_date = fields["target_date"]
        if fields.get("category") is not None:
            goal.category = fields["category"].strip()
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def delete(self, goal_id: int) -> None:
        goal = self.get(goal_id)
        self.session.delete(goal)
        self.session.commit()

    @staticmethod
    def progress(goal: FinancialGoal) -> int:
        if not goal.target_cents:
            return 0
        return int(percentage(goal.current_cents, goal.target_cents, places=0))

    def fund(self, goal_id: int, amount) -> tuple[FinancialGoal, int]:
        """Add ``amount`` to the goal, never past its target."""
        # Sub-cent amounts round to zero and are rejected with the rest.
        cents = to_cents(amount) if amount is not None else 0
        if cents <= 0:
            raise ValueError("Invalid amount")
        goal = self.get(goal_id)
        goal.current_cents = min(goal.current_cents + cents, goal.target_cents)
        self.session.commit()
        self.session.refresh(goal)
        return goal, self.progress(goal)


class AnalyticsService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _monthly_totals(self, model, period: Period) -> dict[tuple[int, int], int]:
        year = extract("year", model.date).label("year")
        month = extract("month", model.date).label("month")
        stmt = (
            select(
                year,
                month,
                func.coalesce(func.sum(model.amount_cents), 0).label("total"),
            )
            .where(
                model.user_id == self.user_id,
                model.date.between(period.start, period.end),
            )
            .group_by(year, month)
        )
        totals: dict[tuple[int, int], int] = {}
        for row in self.session.execute(stmt):
            totals[(int(row.year), int(row.month))] = int(row.total or 0)
        return totals

    def _total(self, model, period: Period) -> int:
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(model.amount_cents), 0)).where(
                    model.user_id == self.user_id,
                    model.date.between(period.start, period.end),
                )
            ).scalar_one()
            or 0
        )

    def expense_distribution(self, period: Period) -> list[dict[str, object]]:
        stmt = (
            select(
                Category.id.label("category_id"),
                Category.name.label("name"),
                Category.color.label("color"),
                func.coalesce(func.sum(Expense.amount_cents), 0).label("total"),
            )
            .select_from(Expense)
            .outerjoin(Category, Category.id == Expense.category_id)
            .where(
                Expense.user_id == self.user_id,
                Expense.date.between(period.start, period.end),
            )
            .group_by(Category.id, Category.name, Category.color)
        )
        rows = self.session.execute(stmt).all()
        total = sum(int(row.total or 0) for row in rows)
        breakdown = []
        for row in rows:
            amount = int(row.total or 0)
            breakdown.append(
                {
                    "category_id": row.category_id,
                    "category": row.name or UNCATEGORIZED,
                    "color": row.color or DEFAULT_COLOR,
                    "amount_cents": amount,
                    "amount": from_cents(amount),
                    "percentage": percentage(amount, total),
                }
            )
        breakdown.sort(key=lambda r: int(r["amount_cents"]), reverse=True)
        return breakdown

    def overview(
        self, period_slug: Optional[str], *, today: Optional[date] = None
    ) -> dict[str, object]:
        period, months_count = resolve_analytics_period(period_slug, today=today)
        expense_totals = self._monthly_totals(Expense, period)
        income_totals = self._monthly_totals(Income, period)

        months = month_starts(period)[-months_count:]
        monthly_trends = []
        savings_rate = []
        for month in months:
            key = (month.year, month.month)
            income = income_totals.get(key, 0)
            expenses = expense_totals.get(key, 0)
            savings = income - expenses
            label = MONTH_ABBR[month.month - 1]
            monthly_trends.append(
                {
                    "month": label,
                    "year": month.year,
                    "income": from_cents(income),
                    "expenses": from_cents(expenses),
                    "savings": from_cents(savings),
                }
            )
            savings_rate.append(
                {
                    "month": label,
                    "year": month.year,
                    "rate": percentage(savings, income),
                }
            )

        total_income = self._total(Income, period)
        total_expenses = self._total(Expense, period)
        distribution = [
            {k: v for k, v in item.items() if k != "amount_cents"}
            for item in self.expense_distribution(period)
        ]
        return {
            "period": period.slug,
            "start_date": period.start.isoformat(),
            "end_date": period.end.isoformat(),
            "monthly_trends": monthly_trends,
            "savings_rate": savings_rate,
            "expense_distribution": distribution,
            "total_income": from_cents(total_income),
            "total_expenses": from_cents(total_expenses),
            "net_savings": from_cents(total_income - total_expenses),
        }

    def dashboard(self, *, today: Optional[date] = None) -> dict[str, object]:
        today = today or date.today()
        start = today.replace(day=1)
        month = Period("this_month", start, month_end(start))
        total_income = self._total(Income, month)
        total_expenses = self._total(Expense, month)
        largest = int(
            self.session.execute(
                select(func.coalesce(func.max(Expense.amount_cents), 0)).where(
                    Expense.user_id == self.user_id,
                    Expense.date.between(month.start, month.end),
                )
            ).scalar_one()
            or 0
        )
        return {
            "month": MONTH_NAMES[start.month - 1],
            "year": start.year,
            "total_income": from_cents(total_income),
            "total_expenses": from_cents(total_expenses),
            "remaining": from_cents(total_income - total_expenses),
            "largest_expense": from_cents(largest),
            "recent_transactions": self.recent_transactions(),
        }

    def recent_transactions(
        self, limit: int = RECENT_TRANSACTION_COUNT
    ) -> list[dict[str, object]]:
        expenses = self.session.scalars(
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
            .limit(limit)
        ).all()
        income = self.session.scalars(
            select(Income)
            .options(joinedload(Income.source))
            .where(Income.user_id == self.user_id)
            .order_by(Income.date.desc(), Income.id.desc())
            .limit(limit)
        ).all()
        rows = [transaction_row(e, "expense") for e in expenses] + [
            transaction_row(i, "income") for i in income
        ]
        rows.sort(key=lambda r: (r["date"], r["created_at"]), reverse=True)
        for row in rows:
            row.pop("created_at")
        return rows[:limit]


def transaction_row(txn, type: str) -> dict[str, object]:
    """Flatten an expense or income row for reports and exports."""
    category = txn.category if type == "expense" else txn.source
    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "type": type,
        "description": txn.description,
        "category": category.name if category else UNCATEGORIZED,
        "amount_cents": txn.amount_cents,
        "amount": from_cents(txn.amount_cents),
        "created_at": txn.created_at,
    }


class ReportService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _expenses(self, start: Optional[date], end: Optional[date]) -> list[Expense]:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
        )
        if start:
            stmt = stmt.where(Expense.date >= start)
        if end:
            stmt = stmt.where(Expense.date <= end)
        return self.session.scalars(stmt).all()

    def _income(self, start: Optional[date], end: Optional[date]) -> list[Income]:
        stmt = (
            select(Income)
            .options(joinedload(Income.source))
            .where(Income.user_id == self.user_id)
            .order_by(Income.date.desc(), Income.id.desc())
        )
        if start:
            stmt = stmt.where(Income.date >= start)
        if end:
            stmt = stmt.where(Income.date <= end)
        return self.session.scalars(stmt).all()

    def _sum(self, model, period: Period) -> int:
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(model.amount_cents), 0)).where(
                    model.user_id == self.user_id,
                    model.date.between(period.start, period.end),
                )
            ).scalar_one()
            or 0
        )

    def gather_data(self, period: Period) -> dict[str, object]:
        expenses = self._expenses(period.start, period.end)
        income = self._income(period.start, period.end)

        total_expenses = sum(e.amount_cents for e in expenses)
        total_income = sum(i.amount_cents for i in income)
        net_savings = total_income - total_expenses

        monthly: dict[tuple[int, int], dict[str, int]] = defaultdict(
            lambda: {"income": 0, "expenses": 0}
        )
        for inc in income:
            monthly[(inc.date.year, inc.date.month)]["income"] += inc.amount_cents
        for exp in expenses:
            monthly[(exp.date.year, exp.date.month)]["expenses"] += exp.amount_cents
        monthly_breakdown = [
            {
                "month": f"{MONTH_NAMES[month - 1]} {year}",
                "year": year,
                "month_number": month,
                "income": from_cents(values["income"]),
                "expenses": from_cents(values["expenses"]),
                "savings": from_cents(values["income"] - values["expenses"]),
            }
            for (year, month), values in sorted(monthly.items())
        ]

        category_totals: dict[str, int] = defaultdict(int)
        for exp in expenses:
            name = exp.category.name if exp.category else UNCATEGORIZED
            category_totals[name] += exp.amount_cents
        top_categories = sorted(
            category_totals.items(), key=lambda item: item[1], reverse=True
        )[:TOP_CATEGORY_COUNT]

        previous = period.previous()
        previous_expenses = self._sum(Expense, previous)
        previous_income = self._sum(Income, previous)

        expense_rows = [transaction_row(e, "expense") for e in expenses]
        income_rows = [transaction_row(i, "income") for i in income]
        for row in expense_rows + income_rows:
            row.pop("created_at")
            row.pop("amount_cents")

        logger.info(
            f"report_generated: user_id={self.user_id} "
            f"period={period.start}to{period.end} "
            f"transactions={len(expenses) + len(income)}"
        )
        return {
            "summary": {
                "total_income": from_cents(total_income),
                "total_expenses": from_cents(total_expenses),
                "net_savings": from_cents(net_savings),
                "savings_rate": percentage(net_savings, total_income),
                "income_growth": growth_rate(total_income, previous_income),
                "expense_growth": growth_rate(total_expenses, previous_expenses),
            },
            "monthly_breakdown": monthly_breakdown,
            "top_expense_categories": [
                {
                    "category": name,
                    "amount": from_cents(amount),
                    "percentage": percentage(amount, total_expenses),
                }
                for name, amount in top_categories
            ],
            "total_transactions": len(expenses) + len(income),
            "date_range": {
                "start": period.start.isoformat(),
                "end": period.end.isoformat(),
            },
            "previous_range": {
                "start": previous.start.isoformat(),
                "end": previous.end.isoformat(),
            },
            "transactions": {"expenses": expense_rows, "income": income_rows},
        }

    def export_rows(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[dict[str, object]]:
        """Expense rows then income rows, each newest first."""
        rows = [transaction_row(e, "expense") for e in self._expenses(start, end)]
        rows += [transaction_row(i, "income") for i in self._income(start, end)]
        for row in rows:
            row.pop("created_at")
        return rows

    def export_data(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> dict[str, object]:
        rows = self.export_rows(start, end)
        expense_rows = [r for r in rows if r["type"] == "expense"]
        income_rows = [r for r in rows if r["type"] == "income"]
        total_expenses = sum(int(r["amount_cents"]) for r in expense_rows)
        total_income = sum(int(r["amount_cents"]) for r in income_rows)
        for row in rows:
            row.pop("amount_cents")
            row.pop("id")
        return {
            "expenses": expense_rows,
            "income": income_rows,
            "summary": {
                "total_expenses": from_cents(total_expenses),
                "total_income": from_cents(total_income),
                "total_transactions": len(rows),
                "date_range": {
                    "start": start.isoformat() if start else None,
                    "end": end.isoformat() if end else None,
                },
            },
        }
