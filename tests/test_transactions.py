from datetime import date

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import CategoryType, User
from schemas import CategoryIn, ExpenseIn, ExpenseUpdate, IncomeIn, IncomeUpdate
from services import (
    CategoryService,
    ExpenseService,
    IncomeService,
    NotFoundError,
    TransactionFilters,
)


def _user(session: Session, email: str = "owner@example.com") -> User:
    user = User(email=email, password_hash="x", first_name="Test", last_name="User")
    session.add(user)
    session.commit()
    return user


def _expense(description: str, amount: str, category_id: int, day: date) -> ExpenseIn:
    return ExpenseIn(
        description=description, amount=amount, category_id=category_id, date=day
    )


def test_expense_amount_is_stored_in_cents() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        food = CategoryService(session, user.id).create(
            CategoryIn(name="Food", type=CategoryType.expense)
        )
        expense = ExpenseService(session, user.id).create(
            _expense("Lunch", "12.345", food.id, date(2026, 10, 2))
        )

        assert expense.amount_cents == 1235
        assert expense.category.name == "Food"


def test_expense_rejects_income_or_foreign_category() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        owner = _user(session)
        other = _user(session, email="other@example.com")
        salary = CategoryService(session, owner.id).create(
            CategoryIn(name="Salary", type=CategoryType.income)
        )
        foreign = CategoryService(session, other.id).create(
            CategoryIn(name="Food", type=CategoryType.expense)
        )
        expenses = ExpenseService(session, owner.id)

        with pytest.raises(ValueError, match="Invalid category"):
            expenses.create(_expense("Pay", "10", salary.id, date(2026, 10, 1)))
        with pytest.raises(ValueError, match="Invalid category"):
            expenses.create(_expense("Lunch", "10", foreign.id, date(2026, 10, 1)))


def test_income_rejects_expense_category_as_source() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        food = CategoryService(session, user.id).create(
            CategoryIn(name="Food", type=CategoryType.expense)
        )

        with pytest.raises(ValueError, match="Invalid source category"):
            IncomeService(session, user.id).create(
                IncomeIn(
                    description="Paycheck",
                    amount="100",
                    source_id=food.id,
                    date=date(2026, 10, 1),
                )
            )


def test_expense_list_paginates_newest_first() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        food = CategoryService(session, user.id).create(
            CategoryIn(name="Food", type=CategoryType.expense)
        )
        expenses = ExpenseService(session, user.id)
        for day in range(1, 8):
            expenses.create(_expense(f"Day {day}", "5", food.id, date(2026, 10, day)))

        first = expenses.list(TransactionFilters(), page=1, limit=3)
        assert [e.date.day for e in first.items] == [7, 6, 5]
        assert (first.total, first.page, first.limit, first.pages) == (7, 1, 3, 3)

        last = expenses.list(TransactionFilters(), page=3, limit=3)
        assert [e.date.day for e in last.items] == [1]

        clamped = expenses.list(TransactionFilters(), page=0, limit=1000)
        assert (clamped.page, clamped.limit, len(clamped.items)) == (1, 100, 7)


def test_expense_list_filters_by_inclusive_dates_and_category() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        categories = CategoryService(session, user.id)
        food = categories.create(CategoryIn(name="Food", type=CategoryType.expense))
        fuel = categories.create(CategoryIn(name="Fuel", type=CategoryType.expense))
        expenses = ExpenseService(session, user.id)
        expenses.create(_expense("Before", "1", food.id, date(2026, 9, 30)))
        expenses.create(_expense("Start", "1", food.id, date(2026, 10, 1)))
        expenses.create(_expense("End", "1", fuel.id, date(2026, 10, 31)))
        expenses.create(_expense("After", "1", food.id, date(2026, 11, 1)))

        in_october = expenses.list(
            TransactionFilters(start=date(2026, 10, 1), end=date(2026, 10, 31))
        )
        assert [e.description for e in in_october.items] == ["End", "Start"]

        from_october = expenses.list(TransactionFilters(start=date(2026, 10, 1)))
        assert from_october.total == 3

        food_only = expenses.list(TransactionFilters(category_id=food.id))
        assert {e.description for e in food_only.items} == {"Before", "Start", "After"}


def test_income_list_filters_recurring() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        salary = CategoryService(session, user.id).create(
            CategoryIn(name="Salary", type=CategoryType.income)
        )
        income = IncomeService(session, user.id)
        income.create(
            IncomeIn(
                description="Paycheck",
                amount="3000",
                source_id=salary.id,
                date=date(2026, 10, 1),
                recurring=True,
            )
        )
        income.create(
            IncomeIn(
                description="Bonus",
                amount="500",
                source_id=salary.id,
                date=date(2026, 10, 15),
            )
        )

        recurring = income.list(TransactionFilters(recurring=True))
        assert [i.description for i in recurring.items] == ["Paycheck"]
        one_off = income.list(TransactionFilters(recurring=False))
        assert [i.description for i in one_off.items] == ["Bonus"]
        assert income.list(TransactionFilters()).total == 2


def test_partial_update_keeps_unset_fields() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        categories = CategoryService(session, user.id)
        food = categories.create(CategoryIn(name="Food", type=CategoryType.expense))
        fuel = categories.create(CategoryIn(name="Fuel", type=CategoryType.expense))
        salary = categories.create(CategoryIn(name="Salary", type=CategoryType.income))
        expenses = ExpenseService(session, user.id)
        expense = expenses.create(
            ExpenseIn(
                description="Lunch",
                amount="10",
                category_id=food.id,
                date=date(2026, 10, 2),
                notes="with team",
            )
        )

        updated = expenses.update(
            expense.id, ExpenseUpdate(amount="15.50", category_id=fuel.id)
        )
        assert updated.amount_cents == 1550
        assert updated.category.name == "Fuel"
        assert updated.description == "Lunch"
        assert updated.notes == "with team"

        with pytest.raises(ValueError, match="Invalid category"):
            expenses.update(expense.id, ExpenseUpdate(category_id=salary.id))

        paycheck = IncomeService(session, user.id).create(
            IncomeIn(
                description="Paycheck",
                amount="100",
                source_id=salary.id,
                date=date(2026, 10, 1),
            )
        )
        changed = IncomeService(session, user.id).update(
            paycheck.id, IncomeUpdate(recurring=True)
        )
        assert changed.recurring is True
        assert changed.amount_cents == 10_000


def test_other_users_transactions_are_not_found() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        owner = _user(session)
        intruder = _user(session, email="intruder@example.com")
        categories = CategoryService(session, owner.id)
        food = categories.create(CategoryIn(name="Food", type=CategoryType.expense))
        salary = categories.create(CategoryIn(name="Salary", type=CategoryType.income))
        expense = ExpenseService(session, owner.id).create(
            _expense("Lunch", "10", food.id, date(2026, 10, 2))
        )
        income = IncomeService(session, owner.id).create(
            IncomeIn(
                description="Paycheck",
                amount="100",
                source_id=salary.id,
                date=date(2026, 10, 1),
            )
        )

        with pytest.raises(NotFoundError):
            ExpenseService(session, intruder.id).delete(expense.id)
        with pytest.raises(NotFoundError):
            IncomeService(session, intruder.id).delete(income.id)
        visible = ExpenseService(session, intruder.id).list(TransactionFilters())
        assert visible.total == 0

        ExpenseService(session, owner.id).delete(expense.id)
        with pytest.raises(NotFoundError):
            ExpenseService(session, owner.id).get(expense.id)


def test_amount_beyond_storable_range_is_rejected() -> None:
    with pytest.raises(ValidationError):
        _expense("Yacht", "1e20", 1, date(2026, 10, 1))
    with pytest.raises(ValidationError):
        IncomeIn(description="Lottery", amount="1e20", source_id=1, date=date.today())
    with pytest.raises(ValidationError):
        ExpenseUpdate(amount="1e20")

    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        food = CategoryService(session, user.id).create(
            CategoryIn(name="Food", type=CategoryType.expense)
        )
        largest = ExpenseService(session, user.id).create(
            _expense("Yacht", "10000000000", food.id, date(2026, 10, 1))
        )
        assert largest.amount_cents == 1_000_000_000_000


def test_blank_description_is_rejected() -> None:
    with pytest.raises(ValidationError):
        _expense("   ", "5", 1, date(2026, 10, 1))
    with pytest.raises(ValidationError):
        ExpenseUpdate(description="\t ")

    expense = _expense("  Lunch  ", "5", 1, date(2026, 10, 1))
    assert expense.description == "Lunch"
