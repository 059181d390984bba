from __future__ import annotations

import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from backend import errors
from backend.access_control import ForcedFilter, check_owner_change
from backend.auth import Identity
from backend.db import get_engine, row_exists, saving_types, savings, users
from backend.result import NOT_FOUND, Result, Success, fail, internal_error
from backend.validation import (
    check_required_fields,
    is_valid_id,
    parse_date,
    validate_saving_data,
    validate_user_id,
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

FIELDS = ("user_id", "type_id", "name", "amount", "target_amount", "target_date")
PATCH_FIELDS = ("type_id", "name", "amount", "target_amount", "target_date")
FULL_UPDATE_FIELDS = ("type_id", "name", "amount")

_base_query = select(savings, saving_types.c.name.label("type_name")).select_from(
    savings.join(saving_types, savings.c.type_id == saving_types.c.id)
)


def _fetch(conn, saving_id: int) -> dict | None:
    row = conn.execute(_base_query.where(savings.c.id == saving_id)).mappings().first()
    return dict(row) if row else None


def _to_columns(data: Mapping[str, Any], allowed) -> dict:
    values = {key: data[key] for key in allowed if key in data}
    if values.get("target_date"):
        values["target_date"] = parse_date(values["target_date"])
    return values


def _check_references(conn, values: Mapping[str, Any]) -> Result[bool]:
    if values.get("user_id") and not (
        is_valid_id(values["user_id"]) and row_exists(conn, users, values["user_id"])
    ):
        return fail(errors.not_found("User"))
    if values.get("type_id") and not (
        is_valid_id(values["type_id"]) and row_exists(conn, saving_types, values["type_id"])
    ):
        return fail(errors.not_found("Saving Type"))
    return Success(True)


def list_savings(forced: ForcedFilter) -> Result[list[dict]]:
    stmt = _base_query.where(savings.c.user_id == forced.user_id).order_by(
        savings.c.created_at.desc(), savings.c.id.desc()
    )
    try:
        with get_engine().begin() as conn:
            rows = conn.execute(stmt).mappings().all()
    except SQLAlchemyError:
        logger.exception("Failed to list savings for user %s", forced.user_id)
        return internal_error()
    return Success([dict(row) for row in rows])


def get_saving(saving_id: int) -> Result[dict]:
    try:
        with get_engine().begin() as conn:
            saving = _fetch(conn, saving_id)
    except SQLAlchemyError:
        logger.exception("Failed to load saving %s", saving_id)
        return internal_error()
    if not saving:
        return fail(errors.not_found("Saving"), NOT_FOUND)
    return Success(saving)


def create_saving(data: Mapping[str, Any]) -> Result[dict]:
    checked = validate_saving_data(data)
    if not checked.success:
        return checked
    values = _to_columns(data, FIELDS)
    try:
        with get_engine().begin() as conn:
            references = _check_references(conn, values)
            if not references.success:
                return references
            saving_id = conn.execute(
                insert(savings).values(**values).returning(savings.c.id)
            ).scalar_one()
            saving = _fetch(conn, saving_id)
    except SQLAlchemyError:
        logger.exception("Failed to create saving")
        return internal_error()
    return Success(saving)


def _apply_update(saving_id: int, values: Mapping[str, Any]) -> Result[dict]:
    try:
        with get_engine().begin() as conn:
            references = _check_references(conn, values)
            if not references.success:
                return references
            updated = conn.execute(
                update(savings).where(savings.c.id == saving_id).values(**values)
            ).rowcount
            if not updated:
                return fail(errors.not_found("Saving"), NOT_FOUND)
            saving = _fetch(conn, saving_id)
    except SQLAlchemyError:
        logger.exception("Failed to update saving %s", saving_id)
        return internal_error()
    return Success(saving)


def update_saving(saving_id: int, data: Mapping[str, Any], caller: Identity) -> Result[dict]:
    """Replace a saving. Target amount and date are cleared when omitted."""
    owner_change = check_owner_change(caller, data)
    if not owner_change.success:
        return owner_change
    missing = check_required_fields(data, FULL_UPDATE_FIELDS)
    if missing:
        return fail(errors.missing_field(missing))
    checked = validate_saving_data(data, is_update=True)
    if not checked.success:
        return checked
    values = _to_columns(data, FIELDS)
    values.setdefault("target_amount", None)
    values.setdefault("target_date", None)
    return _apply_update(saving_id, values)


def patch_saving(saving_id: int, fields: Mapping[str, Any], caller: Identity) -> Result[dict]:
    owner_change = check_owner_change(caller, fields)
    if not owner_change.success:
        return owner_change
    values = _to_columns(fields, PATCH_FIELDS)
    if not values:
        return fail(errors.INVALID_UPDATE)
    for key in FULL_UPDATE_FIELDS:
        if key in values and not values[key]:
            return fail(errors.missing_field(key))
    checked = validate_saving_data(fields, is_update=True)
    if not checked.success:
        return checked
    return _apply_update(saving_id, values)


def delete_saving(saving_id: int) -> Result[bool]:
    try:
        with get_engine().begin() as conn:
            deleted = conn.execute(delete(savings).where(savings.c.id == saving_id)).rowcount
    except SQLAlchemyError:
        logger.exception("Failed to delete saving %s", saving_id)
        return internal_error()
    if not deleted:
        return fail(errors.not_found("Saving"), NOT_FOUND)
    return Success(True)


def _progress(row: Mapping[str, Any], today: date) -> dict:
    amount = Decimal(str(row["amount"]))
    target = row["target_amount"]
    progress = None
    if target is not None and Decimal(str(target)) > 0:
        progress = (amount * 100 / Decimal(str(target))).quantize(CENTS, rounding=ROUND_HALF_UP)
    days_left = None
    if row["target_date"] is not None:
        days_left = (row["target_date"] - today).days
    return {
        "id": row["id"],
        "name": row["name"],
        "type_name": row["type_name"],
        "amount": amount,
        "target_amount": target,
        "target_date": row["target_date"],
        "progress_percent": progress,
        "days_left": days_left,
    }


def get_savings_progress(user_id: int, today: date | None = None) -> Result[list[dict]]:
    """Progress towards each saving's target for ``user_id``.

    ``progress_percent`` is ``None`` when a saving has no target amount, and
    ``days_left`` is ``None`` when it has no target date. Overdue targets
    report a negative ``days_left``.
    """
    checked_user = validate_user_id(user_id)
    if not checked_user.success:
        return checked_user
    today = today or date.today()
    stmt = _base_query.where(savings.c.user_id == user_id).order_by(savings.c.id)
    try:
        with get_engine().begin() as conn:
            rows = conn.execute(stmt).mappings().all()
    except SQLAlchemyError:
        logger.exception("Failed to compute savings progress for user %s", user_id)
        return internal_error()
    return Success([_progress(row, today) for row in rows])
