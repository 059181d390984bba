from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from backend import errors
from backend.access_control import is_administrator
from backend.auth import Identity, hash_password
from backend.db import (
    MEMBER_PROFILE_ID,
    budgets,
    get_engine,
    profiles,
    row_exists,
    savings,
    transactions,
    users,
)
from backend.result import (
    AUTHORIZATION,
    CONFLICT,
    NOT_FOUND,
    Result,
    Success,
    fail,
    internal_error,
)
from backend.validation import check_required_fields, is_strong_password, is_valid_email

logger = logging.getLogger(__name__)

CREATE_REQUIRED_FIELDS = ("first_name", "last_name", "email", "password")
EDIT_REQUIRED_FIELDS = ("first_name", "last_name", "email")
PATCH_FIELDS = {
    "first_name",
    "last_name",
    "email",
    "password",
    "profile_id",
    "base_budget",
    "base_saving",
    "is_active",
}
NON_NULLABLE_FIELDS = ("first_name", "last_name", "email", "password", "profile_id", "is_active")

PUBLIC_COLUMNS = [column for column in users.c if column.name != "password_hash"]


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _fetch_user(conn, user_id: int) -> dict | None:
    row = conn.execute(select(*PUBLIC_COLUMNS).where(users.c.id == user_id)).mappings().first()
    return dict(row) if row else None


def _common_validations(conn, user_id: int | None, data: Mapping[str, Any]) -> Result[bool]:
    if data.get("email"):
        if not is_valid_email(data["email"]):
            return fail(errors.INVALID_EMAIL)
        owner = conn.execute(
            select(users.c.id).where(users.c.email == normalize_email(data["email"]))
        ).scalar_one_or_none()
        if owner is not None and owner != user_id:
            return fail(errors.EMAIL_EXISTS, CONFLICT)
    if data.get("profile_id") and not row_exists(conn, profiles, data["profile_id"]):
        return fail(errors.not_found("Profile"))
    if "password" in data and not is_strong_password(data["password"]):
        return fail(errors.INVALID_PASSWORD)
    return Success(True)


def _to_columns(data: Mapping[str, Any]) -> dict:
    values = {key: value for key, value in data.items() if key in PATCH_FIELDS}
    if "email" in values:
        values["email"] = normalize_email(values["email"])
    if "password" in values:
        values["password_hash"] = hash_password(values.pop("password"))
    return values


def list_users() -> Result[list[dict]]:
    try:
        with get_engine().begin() as conn:
            rows = conn.execute(select(*PUBLIC_COLUMNS).order_by(users.c.id)).mappings().all()
    except SQLAlchemyError:
        logger.exception("Failed to list users")
        return internal_error()
    return Success([dict(row) for row in rows])


def get_user(user_id: int) -> Result[dict]:
    try:
        with get_engine().begin() as conn:
            user = _fetch_user(conn, user_id)
    except SQLAlchemyError:
        logger.exception("Failed to load user %s", user_id)
        return internal_error()
    if not user:
        return fail(errors.not_found("User"), NOT_FOUND)
    return Success(user)


def create_user(data: Mapping[str, Any], caller: Identity | None = None) -> Result[dict]:
    """Register a user. Only administrators may pick the new user's profile."""
    missing = check_required_fields(data, CREATE_REQUIRED_FIELDS)
    if missing:
        return fail(errors.missing_field(missing))
    if not is_strong_password(data["password"]):
        return fail(errors.INVALID_PASSWORD)
    if not is_valid_email(data["email"]):
        return fail(errors.INVALID_EMAIL)

    values = _to_columns(data)
    if is_administrator(caller) and data.get("profile_id"):
        values["profile_id"] = data["profile_id"]
    else:
        values["profile_id"] = MEMBER_PROFILE_ID

    try:
        with get_engine().begin() as conn:
            checked = _common_validations(conn, None, values)
            if not checked.success:
                return checked
            user_id = conn.execute(
                insert(users).values(**values).returning(users.c.id)
            ).scalar_one()
            user = _fetch_user(conn, user_id)
    except IntegrityError:
        return fail(errors.EMAIL_EXISTS, CONFLICT)
    except SQLAlchemyError:
        logger.exception("Failed to create user")
        return internal_error()
    logger.info("Created user %s with profile %s", user_id, values["profile_id"])
    return Success(user)


def _apply_update(user_id: int, data: Mapping[str, Any]) -> Result[dict]:
    try:
        with get_engine().begin() as conn:
            checked = _common_validations(conn, user_id, data)
            if not checked.success:
                return checked
            updated = conn.execute(
                update(users).where(users.c.id == user_id).values(**_to_columns(data))
            ).rowcount
            if not updated:
                return fail(errors.not_found("User"), NOT_FOUND)
            user = _fetch_user(conn, user_id)
    except IntegrityError:
        return fail(errors.EMAIL_EXISTS, CONFLICT)
    except SQLAlchemyError:
        logger.exception("Failed to update user %s", user_id)
        return internal_error()
    return Success(user)


def edit_user(user_id: int, data: Mapping[str, Any], caller: Identity) -> Result[dict]:
    unknown = sorted(set(data) - PATCH_FIELDS)
    if unknown:
        return fail(errors.invalid_fields(unknown))
    missing = check_required_fields(data, EDIT_REQUIRED_FIELDS)
    if missing:
        return fail(errors.missing_field(missing))
    if "profile_id" in data and not is_administrator(caller):
        return fail(errors.PROFILE_CHANGE_FORBIDDEN, AUTHORIZATION)
    if "password" not in data:
        return fail(errors.missing_field("password"))
    return _apply_update(user_id, data)


def patch_user(user_id: int, fields: Mapping[str, Any], caller: Identity) -> Result[dict]:
    unknown = sorted(set(fields) - PATCH_FIELDS)
    if unknown:
        return fail(errors.invalid_fields(unknown))
    if not fields:
        return fail(errors.INVALID_UPDATE)
    if "profile_id" in fields and not is_administrator(caller):
        return fail(errors.PROFILE_CHANGE_FORBIDDEN, AUTHORIZATION)
    for name in NON_NULLABLE_FIELDS:
        if name in fields and fields[name] in (None, ""):
            return fail(errors.missing_field(name))
    return _apply_update(user_id, fields)


def delete_user(user_id: int) -> Result[bool]:
    """Delete a user together with the rows they own, in one transaction."""
    try:
        with get_engine().begin() as conn:
            if not row_exists(conn, users, user_id):
                return fail(errors.not_found("User"), NOT_FOUND)
            for table in (transactions, budgets, savings):
                conn.execute(delete(table).where(table.c.user_id == user_id))
            conn.execute(delete(users).where(users.c.id == user_id))
    except SQLAlchemyError:
        logger.exception("Failed to delete user %s", user_id)
        return internal_error()
    logger.info("Deleted user %s", user_id)
    return Success(True)
