from __future__ import annotations

from typing import Any, Iterable

from .errors import ValidationError

# Maximum money amount: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for API input.

    Accepts ints and plain digit strings. Rejects bools, floats, decimal
    points and scientific notation so that "2.5" never silently becomes 2.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer") from None
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def positive_int(value: Any, field: str) -> int:
    n = coerce_int(value, field)
    if n <= 0:
        raise ValidationError(f"{field} must be greater than 0")
    return n


def non_negative_int(value: Any, field: str) -> int:
    n = coerce_int(value, field)
    if n < 0:
        raise ValidationError(f"{field} must not be negative")
    return n


def cents(value: Any, field: str, *, allow_negative: bool = False) -> int:
    n = coerce_int(value, field)
    if not allow_negative and n < 0:
        raise ValidationError(f"{field} must not be negative")
    if abs(n) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum of {MAX_AMOUNT_CENTS} cents")
    return n


def required_str(value: Any, field: str, *, max_length: int = 255) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return value


def optional_str(value: Any, field: str, *, max_length: int = 255) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return value or None


def require_unique(values: Iterable[str], field: str) -> None:
    seen: set[str] = set()
    for v in values:
        if v in seen:
            raise ValidationError(f"Duplicate {field}: {v}", {field: v})
        seen.add(v)


def require_list(value: Any, field: str, *, allow_empty: bool = False) -> list:
    if value is None:
        value = []
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{field} must be a list")
    if not value and not allow_empty:
        raise ValidationError(f"{field} must not be empty")
    return list(value)
