from datetime import date

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import Budget, CategoryType, User
from periods import Period
from schemas import BudgetIn, CategoryIn, CategoryUpdate, ExpenseIn, IncomeIn
from services import (
    BudgetService,
    CategoryService,
    ExpenseService,
    IncomeService,
    NotFoundError,
    ReportService,
)


def _user(session: Session, email: str = "owner@example.com") -> User:
    user = User(email=email, password_hash="x", first_name="Test", last_name="User")
    session.add(user)
    session.commit()
    return user


def test_list_filters_by_type_and_sorts_by_name() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        categories = CategoryService(session, user.id)
        categories.create(CategoryIn(name="Transport", type=CategoryType.expense))
        categories.create(CategoryIn(name="Food", type=CategoryType.expense))
        categories.create(CategoryIn(name="Salary", type=CategoryType.income))

        expense_names = [c.name for c in categories.list_all(CategoryType.expense)]
        assert expense_names == ["Food", "Transport"]
        assert len(categories.list_all()) == 3


def test_defaults_and_budget_only_kept_for_expense_categories() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        categories = CategoryService(session, user.id)
        food = categories.create(
            CategoryIn(name="Food", type=CategoryType.expense, budget="250.50")
        )
        salary = categories.create(
            CategoryIn(name="Salary", type=CategoryType.income, budget="100")
        )

        assert food.icon == "📦"
        assert food.color == "#8884d8"
        assert food.budget_cents == 25_050
        assert salary.budget_cents is None


def test_duplicate_name_is_rejected_case_insensitive() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        categories = CategoryService(session, user.id)
        categories.create(CategoryIn(name="Food", type=CategoryType.expense))

        with pytest.raises(ValueError, match="Category already exists"):
            categories.create(CategoryIn(name="food ", type=CategoryType.expense))

        # Same name with the other type is a different category.
        categories.create(CategoryIn(name="Food", type=CategoryType.income))


def test_rename_onto_existing_name_is_rejected() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        categories = CategoryService(session, user.id)
        categories.create(CategoryIn(name="Food", type=CategoryType.expense))
        travel = categories.create(CategoryIn(name="Travel", type=CategoryType.expense))

        with pytest.raises(ValueError, match="Category already exists"):
            categories.update(travel.id, CategoryUpdate(name="FOOD"))

        updated = categories.update(
            travel.id, CategoryUpdate(name="Trips", color="#ff0000")
        )
        assert updated.name == "Trips"
        assert updated.color == "#ff0000"
        assert updated.icon == "📦"


def test_other_users_category_is_not_found() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        owner = _user(session)
        intruder = _user(session, email="intruder@example.com")
        food = CategoryService(session, owner.id).create(
            CategoryIn(name="Food", type=CategoryType.expense)
        )

        foreign = CategoryService(session, intruder.id)
        with pytest.raises(NotFoundError):
            foreign.get(food.id)
        with pytest.raises(NotFoundError):
            foreign.delete(food.id)
        assert CategoryService(session, owner.id).get(food.id).name == "Food"


def test_delete_removes_budgets_and_detaches_transactions() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        categories = CategoryService(session, user.id)
        food = categories.create(CategoryIn(name="Food", type=CategoryType.expense))
        salary = categories.create(CategoryIn(name="Salary", type=CategoryType.income))
        BudgetService(session, user.id).create(
            BudgetIn(category_id=food.id, amount="300", start_date=date(2026, 10, 1))
        )
        expense = ExpenseService(session, user.id).create(
            ExpenseIn(
                description="Groceries",
                amount="42.10",
                category_id=food.id,
                date=date(2026, 10, 3),
            )
        )
        income = IncomeService(session, user.id).create(
            IncomeIn(
                description="Paycheck",
                amount="1000",
                source_id=salary.id,
                date=date(2026, 10, 1),
            )
        )

        categories.delete(food.id)
        categories.delete(salary.id)

        assert session.scalars(select(Budget)).all() == []
        assert ExpenseService(session, user.id).get(expense.id).category_id is None
        assert IncomeService(session, user.id).get(income.id).source_id is None

        report = ReportService(session, user.id).gather_data(
            Period("custom", date(2026, 10, 1), date(2026, 10, 31))
        )
        assert report["top_expense_categories"] == [
            {"category": "Other", "amount": 42.1, "percentage": 100.0}
        ]
        assert report["transactions"]["income"][0]["category"] == "Other"


def test_blank_category_name_is_rejected() -> None:
    with pytest.raises(ValidationError):
        CategoryIn(name="   ", type=CategoryType.expense)
    with pytest.raises(ValidationError):
        CategoryUpdate(name=" ")
    assert CategoryIn(name=" Food ", type=CategoryType.expense).name == "Food"
