"""FastAPI glue between the request and the Result-returning services.

Dependencies run in declaration order, so every owned-resource route
authenticates, validates the path id, fetches the row and only then compares
ownership. Any ``Failure`` on the way is raised as an ``HTTPException``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

from fastapi import Depends, Header, HTTPException, Request

from backend.access_control import (
    ForcedFilter,
    check_resource_access,
    check_self_or_admin,
    force_self_filter,
)
from backend.auth import Identity, require_profiles, resolve_identity, resolve_optional_identity
from backend.db import ADMIN_PROFILE_ID
from backend.result import Result
from backend.validation import validate_id


@dataclass(frozen=True)
class OwnedRow:
    identity: Identity
    id: int
    row: Mapping[str, Any]


def unwrap(result: Result) -> Any:
    if not result.success:
        raise HTTPException(status_code=result.code, detail=result.message)
    return result.data


def authenticate(authorization: str | None = Header(None, alias="Authorization")) -> Identity:
    return unwrap(resolve_identity(authorization))


def authenticate_optional(
    authorization: str | None = Header(None, alias="Authorization"),
) -> Identity | None:
    return resolve_optional_identity(authorization)


def admin_only(identity: Identity = Depends(authenticate)) -> Identity:
    return unwrap(require_profiles(identity, {ADMIN_PROFILE_ID}))


def forced_filter(request: Request, identity: Identity = Depends(authenticate)) -> ForcedFilter:
    return force_self_filter(identity, request.query_params)


def path_id(request: Request, param: str, entity: str) -> int:
    return unwrap(validate_id(request.path_params.get(param), f"{entity} ID"))


def owned_resource(
    fetch: Callable[[int], Result], entity: str, param: str
) -> Callable[..., OwnedRow]:
    """Dependency yielding the row at ``{param}`` if the caller may act on it."""

    def dependency(request: Request, identity: Identity = Depends(authenticate)) -> OwnedRow:
        record_id = path_id(request, param, entity)
        row = unwrap(check_resource_access(identity, fetch(record_id)))
        return OwnedRow(identity=identity, id=record_id, row=row)

    return dependency


def self_or_admin(
    fetch: Callable[[int], Result], param: str = "user_id"
) -> Callable[..., OwnedRow]:
    """Dependency for user routes: the caller themselves or an administrator."""

    def dependency(request: Request, identity: Identity = Depends(authenticate)) -> OwnedRow:
        record_id = path_id(request, param, "user")
        row = unwrap(fetch(record_id))
        unwrap(check_self_or_admin(identity, record_id))
        return OwnedRow(identity=identity, id=record_id, row=row)

    return dependency
