from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class CredentialsPayload(BaseModel):
    email: str | None = None
    password: str | None = None


class TokenResponse(BaseModel):
    token: str


class DeletedResponse(BaseModel):
    success: bool = True
    id: int


class UserCreatePayload(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    password: str | None = None
    profile_id: int | None = None
    base_budget: Decimal | None = None
    base_saving: Decimal | None = None


class UserUpdatePayload(BaseModel):
    """Body of PUT and PATCH on a user; unknown fields reach the service, which rejects them."""

    model_config = ConfigDict(extra="allow")

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    password: str | None = None
    profile_id: int | None = None
    base_budget: Decimal | None = None
    base_saving: Decimal | None = None
    is_active: bool | None = None


class UserResponse(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: str
    profile_id: int
    base_budget: float | None = None
    base_saving: float | None = None
    is_active: bool
    created_at: datetime | None = None


class NamePayload(BaseModel):
    name: str | None = None


class NamedResponse(BaseModel):
    id: int
    name: str


class TransactionPayload(BaseModel):
    user_id: int | None = None
    type_id: int | None = None
    category_id: int | None = None
    amount: Decimal | None = None
    description: str | None = None
    created_at: datetime | None = None


class TransactionResponse(BaseModel):
    id: int
    user_id: int
    user_email: str | None = None
    type_id: int
    type_name: str | None = None
    category_id: int | None = None
    category_name: str | None = None
    amount: float
    description: str | None = None
    created_at: datetime | None = None


class BalanceResponse(BaseModel):
    user_id: int
    balance: float


class CategoryTotalResponse(BaseModel):
    category: str
    total: float


class MonthlyTotalResponse(BaseModel):
    year: int
    month: int
    total: float


class PeriodBalanceResponse(BaseModel):
    period: str
    income: float
    expenses: float
    balance: float


class ForecastResponse(BaseModel):
    spent: float
    days_elapsed: int
    days_in_month: int
    projection: float


class DashboardResponse(BaseModel):
    year: int
    month: int
    balance: float
    base_saving: float
    month_income: float
    month_expenses: float
    month_saving: float
    movements: int
    projection: float
    days_elapsed: int
    days_in_month: int


class BudgetPayload(BaseModel):
    user_id: int | None = None
    category_id: int | None = None
    budget_type: str | None = None
    year: int | None = None
    month: int | None = None
    amount: Decimal | None = None
    notes: str | None = None


class BudgetResponse(BaseModel):
    id: int
    user_id: int
    category_id: int
    category_name: str | None = None
    budget_type: str
    year: int
    month: int | None = None
    amount: float
    notes: str | None = None
    created_at: datetime | None = None


class RemainingBudgetResponse(BaseModel):
    budget_id: int
    category_id: int
    category_name: str
    budget_type: str
    year: int
    month: int | None = None
    budget: float
    spent: float
    remaining: float


class BudgetAlertResponse(RemainingBudgetResponse):
    percentage_spent: float


class SavingPayload(BaseModel):
    user_id: int | None = None
    type_id: int | None = None
    name: str | None = None
    amount: Decimal | None = None
    target_amount: Decimal | None = None
    target_date: date | None = None


class SavingResponse(BaseModel):
    id: int
    user_id: int
    type_id: int
    type_name: str | None = None
    name: str
    amount: float
    target_amount: float | None = None
    target_date: date | None = None
    created_at: datetime | None = None


class SavingProgressResponse(BaseModel):
    id: int
    name: str
    type_name: str | None = None
    amount: float
    target_amount: float | None = None
    target_date: date | None = None
    progress_percent: float | None = None
    days_left: int | None = None
