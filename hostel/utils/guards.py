"""
Precondition checks evaluated before any mutation.

Each guard raises ValidationException on failure and returns the (possibly
normalized) value otherwise, so services can write `x = require_...(x, ...)`.
"""
from decimal import Decimal
from enum import Enum
from typing import TypeVar

from hostel.utils.exceptions import ValidationException

E = TypeVar("E", bound=Enum)


def require_range(value: int | None, low: int, high: int, field: str) -> int:
    if value is None:
        raise ValidationException(f"{field} is required", field=field)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationException(f"{field} must be an integer", field=field)
    if not low <= value <= high:
        raise ValidationException(f"{field} must be between {low} and {high}", field=field)
    return value


def require_non_negative(value, field: str) -> Decimal:
    if value is None:
        raise ValidationException(f"{field} is required", field=field)
    amount = Decimal(str(value))
    if amount < 0:
        raise ValidationException(f"{field} cannot be negative", field=field)
    return amount


def require_positive(value, field: str) -> Decimal:
    amount = require_non_negative(value, field)
    if amount == 0:
        raise ValidationException(f"{field} must be greater than 0", field=field)
    return amount


def require_text(value: str | None, field: str, max_length: int | None = None) -> str:
    if value is None or not str(value).strip():
        raise ValidationException(f"{field} cannot be empty", field=field)
    value = str(value).strip()
    if max_length is not None and len(value) > max_length:
        raise ValidationException(f"{field} cannot exceed {max_length} characters", field=field)
    return value


def optional_text(value: str | None, field: str, max_length: int) -> str | None:
    if value is None:
        return None
    value = value.strip()
    if len(value) > max_length:
        raise ValidationException(f"{field} cannot exceed {max_length} characters", field=field)
    return value or None


def require_enum(value, enum_cls: type[E], field: str) -> E:
    """Accept an enum member or its value; anything else is a validation error."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationException(f"{field} must be one of: {allowed}", field=field)
