"""
Request value parsing for admin payloads.

Each parser raises ValidationError naming the offending field.
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from .exceptions import ValidationError


def parse_datetime(value, field: str) -> Optional[datetime]:
    """ISO 8601 string to naive UTC datetime. Empty values give None."""
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError(f'{field} must be an ISO 8601 datetime', field)

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_decimal(value, field: str, allow_none: bool = True) -> Optional[Decimal]:
    """Non-negative decimal."""
    if value in (None, ''):
        if allow_none:
            return None
        raise ValidationError(f'{field} is required', field)
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field} must be a number', field)
    if not parsed.is_finite() or parsed < 0:
        raise ValidationError(f'{field} cannot be negative', field)
    return parsed


def parse_int(value, field: str, allow_none: bool = True, allow_negative: bool = False) -> Optional[int]:
    if value in (None, ''):
        if allow_none:
            return None
        raise ValidationError(f'{field} is required', field)
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be an integer', field)
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be an integer', field)
    if parsed < 0 and not allow_negative:
        raise ValidationError(f'{field} cannot be negative', field)
    return parsed
