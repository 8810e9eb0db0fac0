from __future__ import annotations

from typing import Any

from .errors import ValidationError


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for JSON payload values.

    Rejects floats, booleans, decimal strings and scientific notation.
    """
    if value is None:
        raise ValidationError(f"{field} is required")
    # bool is a subclass of int
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    raise ValidationError(f"{field} must be an integer")


def require_positive_int(value: Any, field: str) -> int:
    number = coerce_int(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return number


def require_non_negative_int(value: Any, field: str, *, maximum: int | None = None) -> int:
    number = coerce_int(value, field)
    if number < 0:
        raise ValidationError(f"{field} cannot be negative")
    if maximum is not None and number > maximum:
        raise ValidationError(f"{field} cannot exceed {maximum}")
    return number


def require_cents(value: Any, field: str) -> int:
    return require_non_negative_int(value, field, maximum=MAX_PRICE_CENTS)


def optional_cents(value: Any, field: str) -> int | None:
    if value is None:
        return None
    return require_cents(value, field)


def optional_str(value: Any, field: str, *, max_length: int) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if not value:
        return None
    if len(value) > max_length:
        raise ValidationError(f"{field} cannot exceed {max_length} characters")
    return value


def require_str(value: Any, field: str, *, max_length: int) -> str:
    result = optional_str(value, field, max_length=max_length)
    if result is None:
        raise ValidationError(f"{field} is required")
    return result


def require_list(value: Any, field: str) -> list:
    if not isinstance(value, list) or not value:
        raise ValidationError(f"{field} must be a non-empty array")
    return value


def pagination_args(args, *, default_limit: int = 50, max_limit: int = 200) -> tuple[int, int]:
    """Parse ?page=&limit= query args, clamping to sane bounds."""
    try:
        page = int(args.get("page", 1))
    except (TypeError, ValueError):
        raise ValidationError("page must be an integer")
    try:
        limit = int(args.get("limit", default_limit))
    except (TypeError, ValueError):
        raise ValidationError("limit must be an integer")

    if page < 1:
        page = 1
    if limit < 1:
        limit = 1
    if limit > max_limit:
        limit = max_limit
    return page, limit


def pagination_meta(page: int, limit: int, total: int) -> dict:
    pages = (total + limit - 1) // limit if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": pages,
        "has_next": page < pages,
        "has_prev": page > 1,
    }
