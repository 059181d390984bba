from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Collection

import bcrypt
import jwt

from backend import errors
from backend.config import Settings, get_settings
from backend.result import AUTHENTICATION, AUTHORIZATION, Result, Success, fail

ALGORITHM = "HS256"
BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class Identity:
    """Caller identity decoded from a bearer token, rebuilt on every request."""

    id: int
    email: str
    profile_id: int


class TokenConfigurationError(RuntimeError):
    """Raised when no signing secret is configured."""


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def _require_secret(settings: Settings) -> str:
    if not settings.jwt_secret:
        raise TokenConfigurationError("JWT_SECRET environment variable must be set")
    return settings.jwt_secret


def issue_token(identity: Identity, settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    secret = _require_secret(settings)
    now = datetime.now(timezone.utc)
    payload = {
        "id": identity.id,
        "email": identity.email,
        "profile_id": identity.profile_id,
        "iat": now,
        "exp": now + timedelta(seconds=settings.token_ttl_seconds),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_token(token: str, settings: Settings | None = None) -> Identity:
    """Verify signature and expiry; raises ``jwt.InvalidTokenError`` subclasses."""
    settings = settings or get_settings()
    try:
        secret = _require_secret(settings)
    except TokenConfigurationError as exc:
        raise jwt.InvalidTokenError(str(exc)) from exc
    claims = jwt.decode(
        token,
        secret,
        algorithms=[ALGORITHM],
        options={"require": ["exp", "id", "profile_id"]},
    )
    try:
        return Identity(
            id=int(claims["id"]),
            email=str(claims.get("email", "")),
            profile_id=int(claims["profile_id"]),
        )
    except (TypeError, ValueError) as exc:
        raise jwt.InvalidTokenError("Malformed identity claims") from exc


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    parts = authorization.split(" ")
    return parts[1] if len(parts) > 1 else ""


def resolve_identity(
    authorization: str | None, settings: Settings | None = None
) -> Result[Identity]:
    token = extract_bearer_token(authorization)
    if token is None:
        return fail(errors.MISSING_AUTH_HEADER, AUTHENTICATION)
    try:
        return Success(decode_token(token, settings))
    except jwt.ExpiredSignatureError:
        return fail(errors.TOKEN_EXPIRED, AUTHENTICATION)
    except jwt.InvalidTokenError:
        return fail(errors.INVALID_TOKEN, AUTHENTICATION)


def resolve_optional_identity(
    authorization: str | None, settings: Settings | None = None
) -> Identity | None:
    result = resolve_identity(authorization, settings)
    return result.data if result.success else None


def require_profiles(
    identity: Identity | None, allowed_profiles: Collection[int]
) -> Result[Identity]:
    if identity is None or identity.profile_id not in allowed_profiles:
        return fail(errors.FORBIDDEN, AUTHORIZATION)
    return Success(identity)
