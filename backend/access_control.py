"""Ownership rules shared by every owned resource.

Transactions, budgets and savings each carry a ``user_id``. Standard members
may only touch their own rows, administrators may touch any row. Lookups
report a missing row (404) before ownership is compared (403), so a caller
probing an id they do not own cannot tell it apart from an absent one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from backend import errors
from backend.auth import Identity
from backend.db import ADMIN_PROFILE_ID
from backend.result import AUTHORIZATION, Result, Success, fail
from backend.validation import is_valid_id, to_id


@dataclass(frozen=True)
class ForcedFilter:
    user_id: int


def is_administrator(identity: Identity | None) -> bool:
    return identity is not None and identity.profile_id == ADMIN_PROFILE_ID


def owns(identity: Identity, resource: Mapping[str, Any]) -> bool:
    owner = resource.get("user_id")
    return owner is not None and int(owner) == identity.id


def check_resource_access(
    identity: Identity, lookup: Result[Mapping[str, Any]]
) -> Result[Mapping[str, Any]]:
    if not lookup.success:
        return lookup
    if is_administrator(identity) or owns(identity, lookup.data):
        return lookup
    return fail(errors.FORBIDDEN, AUTHORIZATION)


def check_self_or_admin(identity: Identity, target_id: int) -> Result[int]:
    if is_administrator(identity) or identity.id == target_id:
        return Success(target_id)
    return fail(errors.FORBIDDEN, AUTHORIZATION)


def force_self_filter(identity: Identity, query: Mapping[str, Any]) -> ForcedFilter:
    if not is_administrator(identity):
        return ForcedFilter(user_id=identity.id)
    requested = query.get("user_id")
    if is_valid_id(requested):
        return ForcedFilter(user_id=to_id(requested))
    return ForcedFilter(user_id=identity.id)


def resolve_owner(identity: Identity, requested: Any) -> int:
    """Owner id for a new row: members always own what they create."""
    if is_administrator(identity) and is_valid_id(requested):
        return to_id(requested)
    return identity.id


def check_owner_change(identity: Identity, fields: Mapping[str, Any]) -> Result[bool]:
    if "user_id" not in fields or is_administrator(identity):
        return Success(True)
    if fields["user_id"] != identity.id:
        return fail(errors.OWNER_CHANGE_FORBIDDEN, AUTHORIZATION)
    return Success(True)
