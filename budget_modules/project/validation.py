"""Input coercion shared by the project budget service and state machines."""

from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, TypeVar

from budget_kernel.exceptions import ValidationError

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")

E = TypeVar("E", bound=Enum)


def as_decimal(value: Any, field: str) -> Decimal:
    """Coerce to Decimal, refusing floats and non-finite values."""
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(
            f"{field} must be a Decimal, int or numeric string, not {type(value).__name__}",
            field=field,
        )
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError(f"{field} is not a number: {value!r}", field=field) from exc
    if not result.is_finite():
        raise ValidationError(f"{field} must be finite", field=field)
    return result


def non_negative(value: Any, field: str) -> Decimal:
    amount = as_decimal(value, field)
    if amount < _ZERO:
        raise ValidationError(f"{field} must not be negative", field=field)
    return amount


def percentage(value: Any, field: str) -> Decimal:
    pct = as_decimal(value, field)
    if not _ZERO <= pct <= _HUNDRED:
        raise ValidationError(f"{field} must be between 0 and 100", field=field)
    return pct


def require_text(value: str | None, field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", field=field)
    return str(value).strip()


def date_range(start: date | None, end: date | None, field: str) -> None:
    if start is not None and end is not None and end < start:
        raise ValidationError(f"{field} ends before it starts", field=field)


def allowed_changes(changes: dict[str, Any], allowed: frozenset[str], entity: str) -> None:
    if not changes:
        raise ValidationError(f"No {entity} fields to update")
    blocked = sorted(set(changes) - allowed)
    if blocked:
        raise ValidationError(
            f"{entity} field(s) cannot be updated here: {', '.join(blocked)}",
            field=blocked[0],
        )


def as_int(value: Any, field: str) -> int:
    """Whole numbers only; bools and fractional values are refused."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, int):
        return value
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} is not an integer: {value!r}", field=field) from exc
    if not number.is_finite() or number != number.to_integral_value():
        raise ValidationError(f"{field} is not an integer: {value!r}", field=field)
    return int(number)


def as_enum(enum_type: type[E], value: Any, field: str) -> E:
    try:
        return enum_type(value)
    except ValueError as exc:
        choices = ", ".join(member.value for member in enum_type)
        raise ValidationError(
            f"{field} must be one of {choices}, not {value!r}", field=field
        ) from exc
