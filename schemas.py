import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import BudgetPeriod, CategoryType

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
# Keeps cents well inside a signed 64-bit INTEGER column.
MAX_AMOUNT = Decimal("10000000000")


class FormModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


class RegisterIn(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class LoginIn(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class CategoryIn(FormModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType
    icon: str = Field("📦", min_length=1, max_length=16)
    color: str = Field("#8884d8", min_length=1, max_length=9)
    budget: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)


class CategoryUpdate(FormModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    icon: Optional[str] = Field(default=None, min_length=1, max_length=16)
    color: Optional[str] = Field(default=None, min_length=1, max_length=9)
    budget: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)


class ExpenseIn(FormModel):
    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0, le=MAX_AMOUNT)
    category_id: int
    date: dt.date
    receipt: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = None


class ExpenseUpdate(FormModel):
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)
    category_id: Optional[int] = None
    date: Optional[dt.date] = None
    receipt: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = None


class IncomeIn(FormModel):
    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0, le=MAX_AMOUNT)
    source_id: int
    date: dt.date
    recurring: bool = False
    notes: Optional[str] = None


class IncomeUpdate(FormModel):
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)
    source_id: Optional[int] = None
    date: Optional[dt.date] = None
    recurring: Optional[bool] = None
    notes: Optional[str] = None


class BudgetIn(FormModel):
    category_id: int
    amount: Decimal = Field(..., ge=0, le=MAX_AMOUNT)
    period: BudgetPeriod = BudgetPeriod.monthly
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None


class BudgetUpdate(FormModel):
    amount: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None


class GoalIn(FormModel):
    name: str = Field(..., min_length=1, max_length=120)
    target: Decimal = Field(..., gt=0, le=MAX_AMOUNT)
    icon: str = Field("🎯", min_length=1, max_length=16)
    description: Optional[str] = None
    target_date: dt.date
    category: str = Field(..., min_length=1, max_length=100)


class GoalUpdate(FormModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    target: Optional[Decimal] = Field(default=None, gt=0, le=MAX_AMOUNT)
    icon: Optional[str] = Field(default=None, min_length=1, max_length=16)
    description: Optional[str] = None
    target_date: Optional[dt.date] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)


class GoalFundIn(FormModel):
    # Lower bound is checked by the service against the amount in cents.
    amount: Decimal = Field(..., le=MAX_AMOUNT)
