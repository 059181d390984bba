from __future__ import annotations

import calendar
import logging
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping

from sqlalchemy import and_, case, delete, extract, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from backend import errors
from backend.access_control import ForcedFilter, check_owner_change
from backend.auth import Identity
from backend.categories_service import DEFAULT_CATEGORY_NAME, get_or_create_category
from backend.db import (
    EXPENSE_TYPE_ID,
    INCOME_TYPE_ID,
    categories,
    get_engine,
    row_exists,
    transaction_types,
    transactions,
    users,
)
from backend.result import NOT_FOUND, Result, Success, fail, internal_error
from backend.validation import (
    check_required_fields,
    is_valid_id,
    parse_date,
    to_id,
    validate_month,
    validate_transaction_data,
    validate_year,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENTS = Decimal("0.01")

REQUIRED_FIELDS = ("user_id", "type_id", "amount")
UPDATE_FIELDS = ("user_id", "type_id", "category_id", "amount", "description")
PERIODS = {"week", "month"}
DEFAULT_TOP_LIMIT = 3

_base_query = select(
    transactions,
    users.c.email.label("user_email"),
    transaction_types.c.name.label("type_name"),
    categories.c.name.label("category_name"),
).select_from(
    transactions.join(users, transactions.c.user_id == users.c.id)
    .join(transaction_types, transactions.c.type_id == transaction_types.c.id)
    .outerjoin(categories, transactions.c.category_id == categories.c.id)
)


def _signed_amount():
    return case(
        (transactions.c.type_id == INCOME_TYPE_ID, transactions.c.amount),
        else_=-transactions.c.amount,
    )


def _money(value: Any) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def _fetch(conn, transaction_id: int) -> dict | None:
    row = conn.execute(
        _base_query.where(transactions.c.id == transaction_id)
    ).mappings().first()
    return dict(row) if row else None


def _validate(conn, data: Mapping[str, Any]) -> Result[bool]:
    return validate_transaction_data(
        data,
        user_exists=lambda value: row_exists(conn, users, value),
        type_exists=lambda value: row_exists(conn, transaction_types, value),
        category_exists=lambda value: row_exists(conn, categories, value),
    )


def list_transactions(
    forced: ForcedFilter,
    type_id: Any = None,
    date_from: Any = None,
    date_to: Any = None,
) -> Result[list[dict]]:
    stmt = _base_query.where(transactions.c.user_id == forced.user_id)
    if is_valid_id(type_id):
        stmt = stmt.where(transactions.c.type_id == to_id(type_id))
    if date_from is not None:
        start = parse_date(date_from)
        if start is None:
            return fail(errors.INVALID_DATE)
        stmt = stmt.where(transactions.c.created_at >= datetime.combine(start, datetime.min.time()))
    if date_to is not None:
        end = parse_date(date_to)
        if end is None:
            return fail(errors.INVALID_DATE)
        stmt = stmt.where(transactions.c.created_at <= datetime.combine(end, datetime.max.time()))
    try:
        with get_engine().begin() as conn:
            rows = conn.execute(
                stmt.order_by(transactions.c.created_at.desc(), transactions.c.id.desc())
            ).mappings().all()
    except SQLAlchemyError:
        logger.exception("Failed to list transactions for user %s", forced.user_id)
        return internal_error()
    return Success([dict(row) for row in rows])


def get_transaction(transaction_id: int) -> Result[dict]:
    try:
        with get_engine().begin() as conn:
            transaction = _fetch(conn, transaction_id)
    except SQLAlchemyError:
        logger.exception("Failed to load transaction %s", transaction_id)
        return internal_error()
    if not transaction:
        return fail(errors.not_found("Transaction"), NOT_FOUND)
    return Success(transaction)


def create_transaction(data: Mapping[str, Any]) -> Result[dict]:
    missing = check_required_fields(data, REQUIRED_FIELDS)
    if missing:
        return fail(errors.missing_field(missing))

    values = {key: data.get(key) for key in UPDATE_FIELDS}
    if data.get("created_at"):
        values["created_at"] = data["created_at"]
    if not values["category_id"]:
        default_category = get_or_create_category(DEFAULT_CATEGORY_NAME)
        if not default_category.success:
            return default_category
        values["category_id"] = default_category.data

    try:
        with get_engine().begin() as conn:
            checked = _validate(conn, values)
            if not checked.success:
                return checked
            transaction_id = conn.execute(
                insert(transactions).values(**values).returning(transactions.c.id)
            ).scalar_one()
            transaction = _fetch(conn, transaction_id)
    except SQLAlchemyError:
        logger.exception("Failed to create transaction")
        return internal_error()
    return Success(transaction)


def update_transaction(
    transaction_id: int, fields: Mapping[str, Any], caller: Identity
) -> Result[dict]:
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
            checked = _validate(conn, values)
            if not checked.success:
                return checked
            updated = conn.execute(
                update(transactions)
                .where(transactions.c.id == transaction_id)
                .values(**values)
            ).rowcount
            if not updated:
                return fail(errors.not_found("Transaction"), NOT_FOUND)
            transaction = _fetch(conn, transaction_id)
    except SQLAlchemyError:
        logger.exception("Failed to update transaction %s", transaction_id)
        return internal_error()
    return Success(transaction)


def delete_transaction(transaction_id: int) -> Result[bool]:
    try:
        with get_engine().begin() as conn:
            deleted = conn.execute(
                delete(transactions).where(transactions.c.id == transaction_id)
            ).rowcount
    except SQLAlchemyError:
        logger.exception("Failed to delete transaction %s", transaction_id)
        return internal_error()
    if not deleted:
        return fail(errors.not_found("Transaction"), NOT_FOUND)
    return Success(True)


# Reports


def _in_month(year: int, month: int):
    return and_(
        extract("year", transactions.c.created_at) == year,
        extract("month", transactions.c.created_at) == month,
    )


def _month_totals(conn, user_id: int, year: int, month: int) -> dict:
    row = conn.execute(
        select(
            func.coalesce(
                func.sum(
                    case((transactions.c.type_id == INCOME_TYPE_ID, transactions.c.amount), else_=0)
                ),
                0,
            ).label("income"),
            func.coalesce(
                func.sum(
                    case(
                        (transactions.c.type_id == EXPENSE_TYPE_ID, transactions.c.amount),
                        else_=0,
                    )
                ),
                0,
            ).label("expenses"),
            func.count(transactions.c.id).label("movements"),
        ).where(transactions.c.user_id == user_id, _in_month(year, month))
    ).mappings().one()
    return {
        "income": _money(row["income"]),
        "expenses": _money(row["expenses"]),
        "movements": int(row["movements"] or 0),
    }


def _balance(conn, user_id: int) -> Decimal:
    return _money(
        conn.execute(
            select(func.sum(_signed_amount())).where(transactions.c.user_id == user_id)
        ).scalar_one_or_none()
    )


def get_balance(user_id: int) -> Result[dict]:
    try:
        with get_engine().begin() as conn:
            balance = _balance(conn, user_id)
    except SQLAlchemyError:
        logger.exception("Failed to compute balance for user %s", user_id)
        return internal_error()
    return Success({"user_id": user_id, "balance": balance})


def get_expenses_by_category(user_id: int) -> Result[list[dict]]:
    total = func.sum(transactions.c.amount).label("total")
    stmt = (
        select(categories.c.name.label("category"), total)
        .select_from(transactions.join(categories, transactions.c.category_id == categories.c.id))
        .where(transactions.c.user_id == user_id, transactions.c.type_id == EXPENSE_TYPE_ID)
        .group_by(categories.c.name)
        .order_by(total.desc())
    )
    try:
        with get_engine().begin() as conn:
            rows = conn.execute(stmt).mappings().all()
    except SQLAlchemyError:
        logger.exception("Failed to group expenses for user %s", user_id)
        return internal_error()
    return Success([{"category": row["category"], "total": _money(row["total"])} for row in rows])


def get_monthly_expenses(user_id: int) -> Result[list[dict]]:
    year = extract("year", transactions.c.created_at).label("year")
    month = extract("month", transactions.c.created_at).label("month")
    stmt = (
        select(year, month, func.sum(transactions.c.amount).label("total"))
        .where(transactions.c.user_id == user_id, transactions.c.type_id == EXPENSE_TYPE_ID)
        .group_by(year, month)
        .order_by(year, month)
    )
    try:
        with get_engine().begin() as conn:
            rows = conn.execute(stmt).mappings().all()
    except SQLAlchemyError:
        logger.exception("Failed to compute monthly expenses for user %s", user_id)
        return internal_error()
    return Success(
        [
            {"year": int(row["year"]), "month": int(row["month"]), "total": _money(row["total"])}
            for row in rows
        ]
    )


def _period_label(value: datetime, period: str) -> str:
    if period == "week":
        iso_year, iso_week, _ = value.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    return f"{value.year}-{value.month:02d}"


def get_periodic_balance(user_id: int, period: str = "week") -> Result[list[dict]]:
    if period not in PERIODS:
        return fail(errors.INVALID_PERIOD)
    stmt = select(
        transactions.c.created_at, transactions.c.type_id, transactions.c.amount
    ).where(transactions.c.user_id == user_id)
    try:
        with get_engine().begin() as conn:
            rows = conn.execute(stmt).mappings().all()
    except SQLAlchemyError:
        logger.exception("Failed to compute periodic balance for user %s", user_id)
        return internal_error()

    buckets: dict[str, dict] = {}
    for row in rows:
        label = _period_label(row["created_at"], period)
        bucket = buckets.setdefault(
            label, {"period": label, "income": ZERO, "expenses": ZERO, "balance": ZERO}
        )
        amount = _money(row["amount"])
        if row["type_id"] == INCOME_TYPE_ID:
            bucket["income"] += amount
            bucket["balance"] += amount
        else:
            bucket["expenses"] += amount
            bucket["balance"] -= amount
    return Success([buckets[label] for label in sorted(buckets)])


def get_top_categories(
    user_id: int,
    year: Any = None,
    month: Any = None,
    limit: Any = None,
    today: date | None = None,
) -> Result[list[dict]]:
    checked_year = validate_year(year)
    if not checked_year.success:
        return checked_year
    checked_month = validate_month(month)
    if not checked_month.success:
        return checked_month
    if limit is None or limit == "":
        top = DEFAULT_TOP_LIMIT
    elif is_valid_id(limit) and 1 <= to_id(limit) <= 20:
        top = to_id(limit)
    else:
        return fail(errors.INVALID_LIMIT)

    today = today or date.today()
    total = func.sum(transactions.c.amount).label("total")
    stmt = (
        select(categories.c.name.label("category"), total)
        .select_from(transactions.join(categories, transactions.c.category_id == categories.c.id))
        .where(
            transactions.c.user_id == user_id,
            transactions.c.type_id == EXPENSE_TYPE_ID,
            _in_month(checked_year.data or today.year, checked_month.data or today.month),
        )
        .group_by(categories.c.name)
        .order_by(total.desc())
        .limit(top)
    )
    try:
        with get_engine().begin() as conn:
            rows = conn.execute(stmt).mappings().all()
    except SQLAlchemyError:
        logger.exception("Failed to rank categories for user %s", user_id)
        return internal_error()
    return Success([{"category": row["category"], "total": _money(row["total"])} for row in rows])


def _forecast(spent: Decimal, today: date) -> dict:
    days_in_month = calendar.monthrange(today.year, today.month)[1]
    projection = (spent / today.day * days_in_month).quantize(CENTS, rounding=ROUND_HALF_UP)
    return {
        "spent": spent,
        "days_elapsed": today.day,
        "days_in_month": days_in_month,
        "projection": projection,
    }


def get_monthly_forecast(user_id: int, today: date | None = None) -> Result[dict]:
    today = today or date.today()
    try:
        with get_engine().begin() as conn:
            totals = _month_totals(conn, user_id, today.year, today.month)
    except SQLAlchemyError:
        logger.exception("Failed to forecast spending for user %s", user_id)
        return internal_error()
    return Success(_forecast(totals["expenses"], today))


def get_dashboard_summary(
    user_id: int, year: Any = None, month: Any = None, today: date | None = None
) -> Result[dict]:
    """Balance, month totals and spending projection in one payload.

    The balance includes the user's ``base_saving``. The projection always
    refers to the current calendar month.
    """
    checked_year = validate_year(year)
    if not checked_year.success:
        return checked_year
    checked_month = validate_month(month)
    if not checked_month.success:
        return checked_month
    today = today or date.today()
    year_value = checked_year.data or today.year
    month_value = checked_month.data or today.month

    try:
        with get_engine().begin() as conn:
            balance = _balance(conn, user_id)
            base_saving = _money(
                conn.execute(
                    select(users.c.base_saving).where(users.c.id == user_id)
                ).scalar_one_or_none()
            )
            totals = _month_totals(conn, user_id, year_value, month_value)
            current = _month_totals(conn, user_id, today.year, today.month)
    except SQLAlchemyError:
        logger.exception("Failed to build dashboard for user %s", user_id)
        return internal_error()

    forecast = _forecast(current["expenses"], today)
    return Success(
        {
            "year": year_value,
            "month": month_value,
            "balance": balance + base_saving,
            "base_saving": base_saving,
            "month_income": totals["income"],
            "month_expenses": totals["expenses"],
            "month_saving": totals["income"] - totals["expenses"],
            "movements": totals["movements"],
            "projection": forecast["projection"],
            "days_elapsed": forecast["days_elapsed"],
            "days_in_month": forecast["days_in_month"],
        }
    )
