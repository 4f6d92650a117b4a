from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import CategoryType, User
from periods import resolve_analytics_period
from schemas import CategoryIn, ExpenseIn, IncomeIn
from services import AnalyticsService, CategoryService, ExpenseService, IncomeService

TODAY = date(2026, 10, 19)


def _user(session: Session) -> User:
    user = User(
        email="owner@example.com",
        password_hash="x",
        first_name="Test",
        last_name="User",
    )
    session.add(user)
    session.commit()
    return user


def _seed_month(session: Session, user_id: int) -> None:
    categories = CategoryService(session, user_id)
    food = categories.create(
        CategoryIn(name="Food", type=CategoryType.expense, color="#ff8042")
    )
    transport = categories.create(
        CategoryIn(name="Transport", type=CategoryType.expense)
    )
    salary = categories.create(CategoryIn(name="Salary", type=CategoryType.income))
    expenses = ExpenseService(session, user_id)
    expenses.create(
        ExpenseIn(
            description="Groceries",
            amount="1000",
            category_id=food.id,
            date=date(2026, 10, 3),
        )
    )
    expenses.create(
        ExpenseIn(
            description="Train pass",
            amount="500",
            category_id=transport.id,
            date=date(2026, 10, 4),
        )
    )
    IncomeService(session, user_id).create(
        IncomeIn(
            description="Paycheck",
            amount="3000",
            source_id=salary.id,
            date=date(2026, 10, 1),
        )
    )


def test_overview_for_three_months() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        _seed_month(session, user.id)

        overview = AnalyticsService(session, user.id).overview("3-months", today=TODAY)

        assert overview["start_date"] == "2026-08-01"
        assert overview["end_date"] == "2026-10-19"
        trends = overview["monthly_trends"]
        assert [t["month"] for t in trends] == ["Aug", "Sep", "Oct"]
        assert trends[0] == {
            "month": "Aug",
            "year": 2026,
            "income": 0.0,
            "expenses": 0.0,
            "savings": 0.0,
        }
        assert trends[-1]["income"] == 3000.0
        assert trends[-1]["expenses"] == 1500.0
        assert trends[-1]["savings"] == 1500.0
        assert [r["rate"] for r in overview["savings_rate"]] == [0.0, 0.0, 50.0]

        distribution = overview["expense_distribution"]
        summary = [(d["category"], d["amount"], d["percentage"]) for d in distribution]
        assert summary == [
            ("Food", 1000.0, 66.7),
            ("Transport", 500.0, 33.3),
        ]
        assert distribution[0]["color"] == "#ff8042"
        assert overview["total_income"] == 3000.0
        assert overview["total_expenses"] == 1500.0
        assert overview["net_savings"] == 1500.0


def test_overview_without_data_has_no_nan() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        overview = AnalyticsService(session, user.id).overview(None, today=TODAY)

        assert overview["period"] == "6-months"
        assert len(overview["monthly_trends"]) == 6
        assert all(r["rate"] == 0.0 for r in overview["savings_rate"])
        assert overview["expense_distribution"] == []


def test_unknown_period_falls_back_to_six_months() -> None:
    period, months = resolve_analytics_period("2-weeks", today=TODAY)
    assert (period.slug, months) == ("6-months", 6)
    assert period.start == date(2026, 5, 1)


def test_one_year_window_crosses_year_boundary() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        overview = AnalyticsService(session, user.id).overview("1-year", today=TODAY)

        trends = overview["monthly_trends"]
        assert len(trends) == 12
        assert (trends[0]["month"], trends[0]["year"]) == ("Nov", 2025)
        assert (trends[-1]["month"], trends[-1]["year"]) == ("Oct", 2026)


def test_negative_savings_rate_when_spending_exceeds_income() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        categories = CategoryService(session, user.id)
        food = categories.create(CategoryIn(name="Food", type=CategoryType.expense))
        salary = categories.create(CategoryIn(name="Salary", type=CategoryType.income))
        ExpenseService(session, user.id).create(
            ExpenseIn(
                description="Feast",
                amount="300",
                category_id=food.id,
                date=date(2026, 10, 2),
            )
        )
        IncomeService(session, user.id).create(
            IncomeIn(
                description="Gig",
                amount="200",
                source_id=salary.id,
                date=date(2026, 10, 2),
            )
        )

        overview = AnalyticsService(session, user.id).overview("3-months", today=TODAY)
        assert overview["savings_rate"][-1]["rate"] == -50.0


def test_dashboard_summarizes_current_month() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        _seed_month(session, user.id)

        dashboard = AnalyticsService(session, user.id).dashboard(today=TODAY)

        assert (dashboard["month"], dashboard["year"]) == ("October", 2026)
        assert dashboard["total_income"] == 3000.0
        assert dashboard["total_expenses"] == 1500.0
        assert dashboard["remaining"] == 1500.0
        assert dashboard["largest_expense"] == 1000.0
        recent = dashboard["recent_transactions"]
        assert [r["description"] for r in recent] == [
            "Train pass",
            "Groceries",
            "Paycheck",
        ]
        assert recent[-1]["type"] == "income"
        assert recent[-1]["category"] == "Salary"
