"""initial schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("phone", sa.String(length=40)),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("icon", sa.String(length=16), nullable=False),
        sa.Column("color", sa.String(length=9), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="categorytype"), nullable=False
        ),
        sa.Column("budget_cents", sa.Integer()),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "type", "name", name="uq_category_user_type_name"
        ),
        sa.CheckConstraint(
            "budget_cents IS NULL OR budget_cents >= 0",
            name="ck_category_budget_positive",
        ),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("receipt", sa.String(length=500)),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_expenses_amount_positive"),
    )
    op.create_index("ix_expenses_user_date", "expenses", ["user_id", "date"])
    op.create_index("ix_expenses_user_category", "expenses", ["user_id", "category_id"])

    op.create_table(
        "income",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("source_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("recurring", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_income_amount_positive"),
    )
    op.create_index("ix_income_user_date", "income", ["user_id", "date"])
    op.create_index("ix_income_user_source", "income", ["user_id", "source_id"])
    op.create_index("ix_income_user_recurring", "income", ["user_id", "recurring"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "period",
            sa.Enum("weekly", "monthly", "yearly", name="budgetperiod"),
            nullable=False,
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "category_id", "period", name="uq_budget_user_category_period"
        ),
        sa.CheckConstraint("amount_cents >= 0", name="ck_budget_amount_positive"),
    )

    op.create_table(
        "financial_goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("target_cents", sa.Integer(), nullable=False),
        sa.Column("current_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("icon", sa.String(length=16), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("target_date", sa.Date(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("target_cents > 0", name="ck_goal_target_positive"),
        sa.CheckConstraint("current_cents >= 0", name="ck_goal_current_positive"),
    )
    op.create_index(
        "ix_goals_user_target_date", "financial_goals", ["user_id", "target_date"]
    )


def downgrade() -> None:
    op.drop_index("ix_goals_user_target_date", table_name="financial_goals")
    op.drop_table("financial_goals")
    op.drop_table("budgets")
    op.drop_index("ix_income_user_recurring", table_name="income")
    op.drop_index("ix_income_user_source", table_name="income")
    op.drop_index("ix_income_user_date", table_name="income")
    op.drop_table("income")
    op.drop_index("ix_expenses_user_category", table_name="expenses")
    op.drop_index("ix_expenses_user_date", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("categories")
    op.drop_table("users")
