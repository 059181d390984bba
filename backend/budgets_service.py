from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping

from sqlalchemy import and_, delete, extract, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from backend import errors
from backend.access_control import ForcedFilter, check_owner_change
from backend.auth import Identity
from backend.db import (
    EXPENSE_TYPE_ID,
    budgets,
    categories,
    get_engine,
    row_exists,
    transactions,
    users,
)
from backend.result import CONFLICT, NOT_FOUND, Result, Success, fail, internal_error
from backend.validation import (
    check_required_fields,
    is_positive_number,
    is_valid_id,
    to_id,
    validate_month,
    validate_threshold,
    validate_user_id,
    validate_year,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENTS = Decimal("0.01")

REQUIRED_FIELDS = ("user_id", "category_id", "budget_type", "year", "amount")
UPDATE_FIELDS = ("user_id", "category_id", "budget_type", "year", "month", "amount", "notes")

_base_query = select(budgets, categories.c.name.label("category_name")).select_from(
    budgets.join(categories, budgets.c.category_id == categories.c.id)
)


def _money(value: Any) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def _fetch(conn, budget_id: int) -> dict | None:
    row = conn.execute(_base_query.where(budgets.c.id == budget_id)).mappings().first()
    return dict(row) if row else None


def _check_fields(conn, values: Mapping[str, Any]) -> Result[bool]:
    if "amount" in values and not is_positive_number(values["amount"]):
        return fail(errors.AMOUNT_POSITIVE)
    for checked in (validate_year(values.get("year")), validate_month(values.get("month"))):
        if not checked.success:
            return checked
    if values.get("user_id") and not (
        is_valid_id(values["user_id"]) and row_exists(conn, users, values["user_id"])
    ):
        return fail(errors.not_found("User"))
    if values.get("category_id") and not (
        is_valid_id(values["category_id"]) and row_exists(conn, categories, values["category_id"])
    ):
        return fail(errors.not_found("Category"))
    return Success(True)


def _duplicate_exists(conn, values: Mapping[str, Any], exclude_id: int | None = None) -> bool:
    month = values.get("month")
    stmt = select(budgets.c.id).where(
        budgets.c.user_id == values["user_id"],
        budgets.c.category_id == values["category_id"],
        budgets.c.year == values["year"],
        budgets.c.budget_type == values["budget_type"],
        budgets.c.month.is_(None) if month is None else budgets.c.month == month,
    )
    if exclude_id is not None:
        stmt = stmt.where(budgets.c.id != exclude_id)
    return conn.execute(stmt).first() is not None


def list_budgets(
    forced: ForcedFilter, year: Any = None, month: Any = None, category_id: Any = None
) -> Result[list[dict]]:
    checked_year = validate_year(year)
    if not checked_year.success:
        return checked_year
    checked_month = validate_month(month)
    if not checked_month.success:
        return checked_month

    stmt = _base_query.where(budgets.c.user_id == forced.user_id)
    if checked_year.data:
        stmt = stmt.where(budgets.c.year == checked_year.data)
    if checked_month.data:
        stmt = stmt.where(budgets.c.month == checked_month.data)
    if is_valid_id(category_id):
        stmt = stmt.where(budgets.c.category_id == to_id(category_id))
    try:
        with get_engine().begin() as conn:
            rows = conn.execute(
                stmt.order_by(budgets.c.year.desc(), budgets.c.month.desc(), budgets.c.category_id)
            ).mappings().all()
    except SQLAlchemyError:
        logger.exception("Failed to list budgets for user %s", forced.user_id)
        return internal_error()
    return Success([dict(row) for row in rows])


def get_budget(budget_id: int) -> Result[dict]:
    try:
        with get_engine().begin() as conn:
            budget = _fetch(conn, budget_id)
    except SQLAlchemyError:
        logger.exception("Failed to load budget %s", budget_id)
        return internal_error()
    if not budget:
        return fail(errors.not_found("Budget"), NOT_FOUND)
    return Success(budget)


def create_budget(data: Mapping[str, Any]) -> Result[dict]:
    missing = check_required_fields(data, REQUIRED_FIELDS)
    if missing:
        return fail(errors.missing_field(missing))
    values = {key: data.get(key) for key in UPDATE_FIELDS}
    try:
        with get_engine().begin() as conn:
            checked = _check_fields(conn, values)
            if not checked.success:
                return checked
            if _duplicate_exists(conn, values):
                return fail(errors.already_exists("Budget"), CONFLICT)
            budget_id = conn.execute(
                insert(budgets).values(**values).returning(budgets.c.id)
            ).scalar_one()
            budget = _fetch(conn, budget_id)
    except IntegrityError:
        return fail(errors.already_exists("Budget"), CONFLICT)
    except SQLAlchemyError:
        logger.exception("Failed to create budget")
        return internal_error()
    return Success(budget)


def update_budget(budget_id: int, fields: Mapping[str, Any], caller: Identity) -> Result[dict]:
    owner_change = check_owner_change(caller, fields)
    if not owner_change.success:
        return owner_change
    values = {key: value for key, value in fields.items() if key in UPDATE_FIELDS}
    if not values:
        return fail(errors.INVALID_UPDATE)
    for key in REQUIRED_FIELDS:
        if key in values and not values[key]:
            return fail(errors.missing_field(key))
    try:
        with get_engine().begin() as conn:
            checked = _check_fields(conn, values)
            if not checked.success:
                return checked
            stored = conn.execute(
                select(budgets).where(budgets.c.id == budget_id)
            ).mappings().first()
            if stored is None:
                return fail(errors.not_found("Budget"), NOT_FOUND)
            if _duplicate_exists(conn, {**stored, **values}, exclude_id=budget_id):
                return fail(errors.already_exists("Budget"), CONFLICT)
            conn.execute(update(budgets).where(budgets.c.id == budget_id).values(**values))
            budget = _fetch(conn, budget_id)
    except IntegrityError:
        return fail(errors.already_exists("Budget"), CONFLICT)
    except SQLAlchemyError:
        logger.exception("Failed to update budget %s", budget_id)
        return internal_error()
    return Success(budget)


def delete_budget(budget_id: int) -> Result[bool]:
    try:
        with get_engine().begin() as conn:
            deleted = conn.execute(delete(budgets).where(budgets.c.id == budget_id)).rowcount
    except SQLAlchemyError:
        logger.exception("Failed to delete budget %s", budget_id)
        return internal_error()
    if not deleted:
        return fail(errors.not_found("Budget"), NOT_FOUND)
    return Success(True)


def _spending_rows(conn, user_id: int) -> list[dict]:
    """Each budget of ``user_id`` with the expenses recorded against it.

    A budget without a month covers its whole year.
    """
    spent_in_period = and_(
        transactions.c.user_id == budgets.c.user_id,
        transactions.c.category_id == budgets.c.category_id,
        transactions.c.type_id == EXPENSE_TYPE_ID,
        extract("year", transactions.c.created_at) == budgets.c.year,
        or_(
            budgets.c.month.is_(None),
            extract("month", transactions.c.created_at) == budgets.c.month,
        ),
    )
    stmt = (
        select(
            budgets.c.id.label("budget_id"),
            budgets.c.category_id,
            categories.c.name.label("category_name"),
            budgets.c.budget_type,
            budgets.c.year,
            budgets.c.month,
            budgets.c.amount.label("budget"),
            func.coalesce(func.sum(transactions.c.amount), 0).label("spent"),
        )
        .select_from(
            budgets.join(categories, budgets.c.category_id == categories.c.id).outerjoin(
                transactions, spent_in_period
            )
        )
        .where(budgets.c.user_id == user_id)
        .group_by(
            budgets.c.id,
            budgets.c.category_id,
            categories.c.name,
            budgets.c.budget_type,
            budgets.c.year,
            budgets.c.month,
            budgets.c.amount,
        )
        .order_by(budgets.c.year.desc(), budgets.c.month.desc(), budgets.c.category_id)
    )
    report = []
    for row in conn.execute(stmt).mappings():
        entry = dict(row)
        entry["budget"] = _money(row["budget"])
        entry["spent"] = _money(row["spent"])
        entry["remaining"] = entry["budget"] - entry["spent"]
        report.append(entry)
    return report


def get_remaining_budget(user_id: int) -> Result[list[dict]]:
    checked_user = validate_user_id(user_id)
    if not checked_user.success:
        return checked_user
    try:
        with get_engine().begin() as conn:
            report = _spending_rows(conn, user_id)
    except SQLAlchemyError:
        logger.exception("Failed to compute remaining budget for user %s", user_id)
        return internal_error()
    return Success(report)


def get_budget_alerts(user_id: int, threshold: Any = None) -> Result[list[dict]]:
    """Budgets whose spending has reached ``threshold`` percent (default 80)."""
    checked_user = validate_user_id(user_id)
    if not checked_user.success:
        return checked_user
    checked = validate_threshold(threshold)
    if not checked.success:
        return checked
    try:
        with get_engine().begin() as conn:
            report = _spending_rows(conn, user_id)
    except SQLAlchemyError:
        logger.exception("Failed to compute budget alerts for user %s", user_id)
        return internal_error()

    alerts = []
    for entry in report:
        if entry["budget"] <= ZERO:
            continue
        percentage = (entry["spent"] * 100 / entry["budget"]).quantize(
            CENTS, rounding=ROUND_HALF_UP
        )
        if percentage >= checked.data:
            alerts.append({**entry, "percentage_spent": percentage})
    alerts.sort(key=lambda entry: entry["percentage_spent"], reverse=True)
    return Success(alerts)
