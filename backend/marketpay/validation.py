from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from marketpay.money import to_decimal
from marketpay.time_utils import parse_iso_datetime


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., month already paid)."""


class NotFoundError(LookupError):
    """404-level missing resource."""


_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


def require_json_object(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def parse_amount(value: Any, field: str = "amount") -> Decimal:
    try:
        return to_decimal(value)
    except ValueError:
        raise ValidationError(f"{field} must be a number with at most two decimal places")


def parse_positive_int(value: Any, field: str) -> int:
    """
    Strict integer parsing for ids and counts.

    Rejects bools, floats and decimal strings ("1.5", "1e3").
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
    else:
        raise ValidationError(f"{field} must be an integer")
    if parsed <= 0:
        raise ValidationError(f"{field} must be positive")
    return parsed


def parse_month(value: Any, field: str = "start_month") -> date:
    """'YYYY-MM' -> first day of that month."""
    match = _MONTH_RE.match(str(value or "").strip())
    if not match:
        raise ValidationError(f"{field} must be in YYYY-MM format")
    year, month = int(match.group(1)), int(match.group(2))
    if month < 1 or month > 12:
        raise ValidationError(f"{field} must be in YYYY-MM format")
    return date(year, month, 1)


def parse_date(value: Any, field: str) -> date:
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO-8601 date")


def parse_datetime(value: Any, field: str) -> datetime | None:
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
