from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from backend import errors

T = TypeVar("T")

VALIDATION = 400
AUTHENTICATION = 401
AUTHORIZATION = 403
NOT_FOUND = 404
CONFLICT = 409
INTERNAL = 500

INTERNAL_MESSAGE = errors.INTERNAL


@dataclass(frozen=True)
class Success(Generic[T]):
    data: T

    @property
    def success(self) -> bool:
        return True

    @property
    def error(self) -> None:
        return None


@dataclass(frozen=True)
class Failure:
    """Expected failure carrying a client-safe message and an HTTP status."""

    message: str
    code: int = VALIDATION

    @property
    def success(self) -> bool:
        return False

    @property
    def data(self) -> None:
        return None

    @property
    def error(self) -> dict:
        return {"message": self.message, "code": self.code}


Result = Union[Success[T], Failure]


def fail(message: str, code: int = VALIDATION) -> Failure:
    return Failure(message=message, code=code)


def internal_error() -> Failure:
    return Failure(message=INTERNAL_MESSAGE, code=INTERNAL)
