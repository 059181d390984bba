from __future__ import annotations

import math
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Mapping, Optional

from backend import errors
from backend.result import Result, Success, fail

MAX_AMOUNT = 1_000_000
MAX_ID = 2**31 - 1
DECIMAL_PRECISION = 2
DEFAULT_ALERT_THRESHOLD = Decimal("80")

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

SAVING_REQUIRED_FIELDS = ("user_id", "type_id", "name", "amount")


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        return None


def is_valid_id(value: Any) -> bool:
    number = _to_decimal(value)
    if number is None or not number.is_finite() or not 0 < number <= MAX_ID:
        return False
    return number == number.to_integral_value()


def to_id(value: Any) -> int:
    """Return the positive integer behind an id already checked by ``is_valid_id``."""
    return int(_to_decimal(value))


def is_valid_email(value: Any) -> bool:
    return isinstance(value, str) and EMAIL_PATTERN.fullmatch(value) is not None


def is_strong_password(value: Any) -> bool:
    return (
        isinstance(value, str)
        and len(value) >= 8
        and re.search(r"[A-Z]", value) is not None
        and re.search(r"[a-z]", value) is not None
        and re.search(r"\d", value) is not None
    )


def is_positive_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return False
    return math.isfinite(value) and value >= 0


def is_amount_in_range(amount: Any, maximum: int | Decimal, decimals: int = 2) -> bool:
    if not is_positive_number(amount) or amount > maximum:
        return False
    exponent = Decimal(str(amount)).normalize().as_tuple().exponent
    return exponent >= -decimals


def parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def is_valid_date(value: Any) -> bool:
    return parse_date(value) is not None


def is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and len(value.strip()) > 0


def is_valid_enum_value(value: Any, allowed: Iterable[Any]) -> bool:
    return value in set(allowed)


def check_required_fields(data: Mapping[str, Any], fields: Iterable[str]) -> Optional[str]:
    for field in fields:
        if not data.get(field):
            return field
    return None


def validate_id(value: Any, entity: str = "ID") -> Result[int]:
    if not is_valid_id(value):
        return fail(errors.invalid_id(entity))
    return Success(to_id(value))


def validate_user_id(value: Any) -> Result[int]:
    return validate_id(value, "user ID")


def validate_threshold(value: Any) -> Result[Decimal]:
    if value is None or value == "":
        return Success(DEFAULT_ALERT_THRESHOLD)
    threshold = _to_decimal(value)
    if threshold is None or not threshold.is_finite() or not 0 <= threshold <= 100:
        return fail(errors.INVALID_THRESHOLD)
    return Success(threshold)


def validate_saving_data(data: Mapping[str, Any], is_update: bool = False) -> Result[bool]:
    if not is_update:
        missing = check_required_fields(data, SAVING_REQUIRED_FIELDS)
        if missing:
            return fail(errors.missing_field(missing))

    amount = data.get("amount")
    target_amount = data.get("target_amount")
    if "amount" in data and not is_positive_number(amount):
        return fail(errors.AMOUNT_POSITIVE)
    if target_amount is not None and not is_positive_number(target_amount):
        return fail(errors.TARGET_AMOUNT_POSITIVE)
    if data.get("target_date") and not is_valid_date(data["target_date"]):
        return fail(errors.INVALID_DATE)
    if target_amount is not None and amount is not None and target_amount <= amount:
        return fail(errors.TARGET_AMOUNT_GREATER)
    return Success(True)


def validate_transaction_data(
    data: Mapping[str, Any],
    *,
    user_exists: Callable[[int], bool],
    type_exists: Callable[[int], bool],
    category_exists: Callable[[int], bool],
) -> Result[bool]:
    """Check amount precision, then each referenced row, stopping at the first failure."""
    if data.get("amount") and not is_amount_in_range(
        data["amount"], MAX_AMOUNT, DECIMAL_PRECISION
    ):
        return fail(errors.amount_range(MAX_AMOUNT, DECIMAL_PRECISION))
    if data.get("user_id") and not user_exists(data["user_id"]):
        return fail(errors.not_found("User"))
    if data.get("type_id") and not type_exists(data["type_id"]):
        return fail(errors.not_found("Transaction Type"))
    if data.get("category_id") and not category_exists(data["category_id"]):
        return fail(errors.not_found("Category"))
    return Success(True)


def validate_year(value: Any) -> Result[Optional[int]]:
    if value is None or value == "":
        return Success(None)
    if not is_valid_id(value) or not 2000 <= to_id(value) <= 2100:
        return fail(errors.INVALID_YEAR)
    return Success(to_id(value))


def validate_month(value: Any) -> Result[Optional[int]]:
    if value is None or value == "":
        return Success(None)
    if not is_valid_id(value) or not 1 <= to_id(value) <= 12:
        return fail(errors.INVALID_MONTH)
    return Success(to_id(value))
