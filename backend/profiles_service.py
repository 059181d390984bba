from __future__ import annotations

import logging

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from backend import errors
from backend.db import get_engine, profiles
from backend.result import CONFLICT, NOT_FOUND, Result, Success, fail, internal_error
from backend.validation import is_non_empty_string

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 2


def _validate_name(name) -> Result[str]:
    if not is_non_empty_string(name) or len(name.strip()) < MIN_NAME_LENGTH:
        return fail(errors.min_length("Profile name", MIN_NAME_LENGTH))
    return Success(name.strip())


def list_profiles() -> Result[list[dict]]:
    try:
        with get_engine().begin() as conn:
            rows = conn.execute(select(profiles).order_by(profiles.c.id)).mappings().all()
    except SQLAlchemyError:
        logger.exception("Failed to list profiles")
        return internal_error()
    return Success([dict(row) for row in rows])


def get_profile(profile_id: int) -> Result[dict]:
    try:
        with get_engine().begin() as conn:
            row = conn.execute(
                select(profiles).where(profiles.c.id == profile_id)
            ).mappings().first()
    except SQLAlchemyError:
        logger.exception("Failed to load profile %s", profile_id)
        return internal_error()
    if not row:
        return fail(errors.not_found("Profile"), NOT_FOUND)
    return Success(dict(row))


def create_profile(name) -> Result[dict]:
    validated = _validate_name(name)
    if not validated.success:
        return validated
    try:
        with get_engine().begin() as conn:
            row = conn.execute(
                insert(profiles)
                .values(name=validated.data)
                .returning(profiles.c.id, profiles.c.name)
            ).mappings().first()
    except IntegrityError:
        return fail(errors.already_exists("Profile"), CONFLICT)
    except SQLAlchemyError:
        logger.exception("Failed to create profile")
        return internal_error()
    return Success(dict(row))


def rename_profile(profile_id: int, name) -> Result[dict]:
    validated = _validate_name(name)
    if not validated.success:
        return validated
    try:
        with get_engine().begin() as conn:
            row = conn.execute(
                update(profiles)
                .where(profiles.c.id == profile_id)
                .values(name=validated.data)
                .returning(profiles.c.id, profiles.c.name)
            ).mappings().first()
    except IntegrityError:
        return fail(errors.already_exists("Profile"), CONFLICT)
    except SQLAlchemyError:
        logger.exception("Failed to rename profile %s", profile_id)
        return internal_error()
    if not row:
        return fail(errors.not_found("Profile"), NOT_FOUND)
    return Success(dict(row))


def delete_profile(profile_id: int) -> Result[bool]:
    try:
        with get_engine().begin() as conn:
            deleted = conn.execute(
                delete(profiles).where(profiles.c.id == profile_id)
            ).rowcount
    except IntegrityError:
        return fail("Profile is assigned to users", CONFLICT)
    except SQLAlchemyError:
        logger.exception("Failed to delete profile %s", profile_id)
        return internal_error()
    if not deleted:
        return fail(errors.not_found("Profile"), NOT_FOUND)
    return Success(True)
