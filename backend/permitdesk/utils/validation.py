"""Reusable validation helpers for request payloads.

All helpers raise ValidationError so callers get a consistent 400 with code
VALIDATION_ERROR instead of scattered ad-hoc checks.
"""
from __future__ import annotations
from datetime import datetime, date, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Mapping, Optional

from permitdesk.errors import ValidationError

TWO_PLACES = Decimal('0.01')


def validate_status(new_status: str, allowed: Iterable[str], field_name: str = 'status') -> str:
    """Validate that new_status is inside allowed.

    Returns the status (to enable inline usage) or raises ValidationError.
    """
    if new_status not in allowed:
        raise ValidationError(f"{field_name} invalid")
    return new_status


def require_fields(data: Mapping[str, Any], *fields: str):
    missing = [f for f in fields if data.get(f) in (None, '') or (isinstance(data.get(f), str) and not data.get(f).strip())]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", extra={'fields': missing})


def parse_decimal(raw: Any, field_name: str = 'value') -> Decimal:
    """Parse a number or numeric string into a Decimal rounded to 2 places.

    Floats are routed through str() so 444.5 becomes Decimal('444.50'), not the
    binary approximation.
    """
    if raw is None or raw == '' or isinstance(raw, bool):
        raise ValidationError(f"{field_name} required")
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be numeric")
    if not value.is_finite():
        raise ValidationError(f"{field_name} must be numeric")
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def parse_datetime(raw: Any, field_name: str = 'date', required: bool = True) -> Optional[datetime]:
    """Parse ISO-8601 date or datetime; naive values are taken as UTC."""
    if raw in (None, ''):
        if required:
            raise ValidationError(f"{field_name} required")
        return None
    if isinstance(raw, datetime):
        dt = raw
    elif isinstance(raw, date):
        dt = datetime(raw.year, raw.month, raw.day)
    else:
        try:
            dt = datetime.fromisoformat(str(raw).strip().replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError(f"{field_name} must be ISO-8601")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_bool(raw: Any, field_name: str = 'flag') -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str) and raw.lower() in ('true', '1', 'yes'):
        return True
    if isinstance(raw, str) and raw.lower() in ('false', '0', 'no'):
        return False
    raise ValidationError(f"{field_name} must be boolean")

__all__ = ['validate_status', 'require_fields', 'parse_decimal', 'parse_datetime', 'parse_bool', 'TWO_PLACES']
