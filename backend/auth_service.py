from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from backend import errors
from backend.auth import Identity, TokenConfigurationError, issue_token, verify_password
from backend.db import get_engine, users
from backend.result import AUTHENTICATION, Result, Success, fail, internal_error
from backend.users_service import normalize_email

logger = logging.getLogger(__name__)


def login(email: str | None, password: str | None) -> Result[str]:
    if not email or not password:
        return fail(errors.MISSING_CREDENTIALS)
    try:
        with get_engine().begin() as conn:
            row = conn.execute(
                select(users).where(users.c.email == normalize_email(email))
            ).mappings().first()
    except SQLAlchemyError:
        logger.exception("Failed to load user for login")
        return internal_error()

    if not row or not row["is_active"] or not verify_password(password, row["password_hash"]):
        return fail(errors.INVALID_CREDENTIALS, AUTHENTICATION)

    identity = Identity(id=row["id"], email=row["email"], profile_id=row["profile_id"])
    try:
        token = issue_token(identity)
    except TokenConfigurationError:
        logger.exception("Cannot issue tokens")
        return internal_error()
    return Success(token)
