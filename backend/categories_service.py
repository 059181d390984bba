from __future__ import annotations

import logging

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from backend import errors
from backend.db import categories, get_engine
from backend.result import CONFLICT, NOT_FOUND, Result, Success, fail, internal_error
from backend.validation import is_non_empty_string

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY_NAME = "Others"


def list_categories() -> Result[list[dict]]:
    try:
        with get_engine().begin() as conn:
            rows = conn.execute(
                select(categories).order_by(categories.c.name.asc(), categories.c.id.asc())
            ).mappings().all()
    except SQLAlchemyError:
        logger.exception("Failed to list categories")
        return internal_error()
    return Success([dict(row) for row in rows])


def get_category(category_id: int) -> Result[dict]:
    try:
        with get_engine().begin() as conn:
            row = conn.execute(
                select(categories).where(categories.c.id == category_id)
            ).mappings().first()
    except SQLAlchemyError:
        logger.exception("Failed to load category %s", category_id)
        return internal_error()
    if not row:
        return fail(errors.not_found("Category"), NOT_FOUND)
    return Success(dict(row))


def create_category(name) -> Result[dict]:
    if not is_non_empty_string(name):
        return fail(errors.missing_field("name"))
    try:
        with get_engine().begin() as conn:
            row = conn.execute(
                insert(categories)
                .values(name=name.strip())
                .returning(categories.c.id, categories.c.name)
            ).mappings().first()
    except IntegrityError:
        return fail(errors.already_exists("Category"), CONFLICT)
    except SQLAlchemyError:
        logger.exception("Failed to create category")
        return internal_error()
    return Success(dict(row))


def update_category(category_id: int, name) -> Result[dict]:
    if not is_non_empty_string(name):
        return fail(errors.missing_field("name"))
    try:
        with get_engine().begin() as conn:
            row = conn.execute(
                update(categories)
                .where(categories.c.id == category_id)
                .values(name=name.strip())
                .returning(categories.c.id, categories.c.name)
            ).mappings().first()
    except IntegrityError:
        return fail(errors.already_exists("Category"), CONFLICT)
    except SQLAlchemyError:
        logger.exception("Failed to update category %s", category_id)
        return internal_error()
    if not row:
        return fail(errors.not_found("Category"), NOT_FOUND)
    return Success(dict(row))


def delete_category(category_id: int) -> Result[bool]:
    try:
        with get_engine().begin() as conn:
            deleted = conn.execute(
                delete(categories).where(categories.c.id == category_id)
            ).rowcount
    except IntegrityError:
        return fail("Category is in use", CONFLICT)
    except SQLAlchemyError:
        logger.exception("Failed to delete category %s", category_id)
        return internal_error()
    if not deleted:
        return fail(errors.not_found("Category"), NOT_FOUND)
    return Success(True)


def get_or_create_category(name: str = DEFAULT_CATEGORY_NAME) -> Result[int]:
    """Return the id of the category called ``name``, inserting it on first use.

    Concurrent callers converge on one row through the unique constraint on
    ``categories.name``: whoever loses the insert race reads the winner's row.
    """
    lookup = select(categories.c.id).where(categories.c.name == name)
    engine = get_engine()
    try:
        with engine.begin() as conn:
            existing = conn.execute(lookup).scalar_one_or_none()
            if existing is not None:
                return Success(existing)
            return Success(
                conn.execute(
                    insert(categories).values(name=name).returning(categories.c.id)
                ).scalar_one()
            )
    except IntegrityError:
        logger.info("Category %r created concurrently, reading it back", name)
    except SQLAlchemyError:
        logger.exception("Failed to resolve category %r", name)
        return internal_error()

    try:
        with engine.begin() as conn:
            existing = conn.execute(lookup).scalar_one_or_none()
    except SQLAlchemyError:
        logger.exception("Failed to resolve category %r", name)
        return internal_error()
    if existing is None:
        return internal_error()
    return Success(existing)
