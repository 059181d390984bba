from __future__ import annotations

from typing import Iterable

AMOUNT_POSITIVE = "Amount must be a positive number"
TARGET_AMOUNT_POSITIVE = "Target amount must be a positive number"
TARGET_AMOUNT_GREATER = "Target amount must be greater than amount"
INVALID_EMAIL = "Invalid email address"
EMAIL_EXISTS = "Email already exists"
INVALID_PASSWORD = (
    "Password must be at least 8 characters, contain uppercase, lowercase and a number"
)
INVALID_DATE = "Invalid date"
INVALID_THRESHOLD = "Threshold must be between 0 and 100"
INVALID_UPDATE = "No valid fields to update"
INVALID_PERIOD = 'Invalid period (must be "week" or "month")'
INVALID_YEAR = "Invalid year"
INVALID_MONTH = "Invalid month"
INVALID_LIMIT = "Invalid limit"
FORBIDDEN = "Forbidden"
INTERNAL = "Internal server error"

MISSING_CREDENTIALS = "Email and password are required"
INVALID_CREDENTIALS = "Invalid credentials"
MISSING_AUTH_HEADER = "Missing or invalid Authorization header"
TOKEN_EXPIRED = "Token expired"
INVALID_TOKEN = "Invalid token"

OWNER_CHANGE_FORBIDDEN = "Only an administrator can change the owner (user_id)"
PROFILE_CHANGE_FORBIDDEN = "Only an administrator can change a user's profile (profile_id)"


def invalid_id(entity: str = "ID") -> str:
    return f"Invalid {entity}"


def missing_field(field: str) -> str:
    return f"Missing required field: {field}"


def already_exists(entity: str) -> str:
    return f"{entity} already exists"


def not_found(entity: str) -> str:
    return f"{entity} not found"


def invalid_fields(fields: Iterable[str]) -> str:
    return f"Invalid fields: {', '.join(fields)}"


def min_length(field: str, minimum: int) -> str:
    return f"{field} must be at least {minimum} characters long"


def amount_range(maximum: int, precision: int) -> str:
    return f"Amount must be positive, up to ${maximum} with {precision} decimals"
