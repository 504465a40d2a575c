"""
Parsers for spreadsheet-style and API string values.

Every parser accepts None or an empty string and returns a safe default
instead of raising. Datetimes are naive UTC, matching how they are stored.
"""

import math
import re
from datetime import datetime, timezone
from typing import Any, Optional

from woo_ledger.config.constants import DEFAULT_ORDER_STATUS, ORDER_NUMBER_PREFIX

_LEADING_FLOAT = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_LEADING_INT = re.compile(r"^\s*[+-]?\d+")
_DATE_ONLY = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_DATE_TIME_12H = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})\s+(\d{1,2}):(\d{2})\s*(AM|PM)$", re.IGNORECASE
)
_ORDER_WORD = re.compile(r"^order\s+(?!#)(.+)$", re.IGNORECASE)


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _finite(value: Any) -> float:
    """float(value), or 0.0 when it overflows or is inf/NaN."""
    try:
        number = float(value)
    except OverflowError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def _leading_float(text: str) -> float:
    match = _LEADING_FLOAT.match(text)
    if not match:
        return 0.0
    return _finite(match.group(0))


def parse_money(value: Any) -> float:
    """Parse "$1,234.56" style strings. Returns 0.0 on failure."""
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return _finite(value)
    cleaned = str(value).replace("$", "").replace(",", "").strip()
    if not cleaned:
        return 0.0
    return _leading_float(cleaned)


def parse_percent(value: Any) -> float:
    """Parse "15%" to 15.0 (a percentage, not a fraction)."""
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return _finite(value)
    cleaned = str(value).replace("%", "").strip()
    if not cleaned:
        return 0.0
    return _leading_float(cleaned)


def parse_boolean(value: Any) -> bool:
    """Only a case-insensitive "yes" is True."""
    if value is None:
        return False
    return str(value).strip().lower() == "yes"


def parse_date(value: Any) -> Optional[datetime]:
    """
    Parse a date string.

    Accepts YYYY-MM-DD, YYYY-MM-DD h:mm AM/PM, and ISO 8601 as a fallback.
    Returns None when empty or unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    text = str(value).strip()
    if not text:
        return None

    match = _DATE_ONLY.match(text)
    if match:
        year, month, day = (int(part) for part in match.groups())
        try:
            return datetime(year, month, day)
        except ValueError:
            return None

    match = _DATE_TIME_12H.match(text)
    if match:
        year, month, day, hour, minute = (int(part) for part in match.groups()[:5])
        meridiem = match.group(6).upper()
        if meridiem == "PM" and hour != 12:
            hour += 12
        elif meridiem == "AM" and hour == 12:
            hour = 0
        try:
            return datetime(year, month, day, hour, minute)
        except ValueError:
            return None

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_int(value: Any) -> int:
    """Parse the leading integer ("123.45" -> 123). Returns 0 on failure."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    match = _LEADING_INT.match(str(value))
    if not match:
        return 0
    return int(match.group(0))


def normalize_order_status(value: Any) -> str:
    """Lowercase and trim; empty becomes "pending"."""
    if value is None:
        return DEFAULT_ORDER_STATUS
    status = str(value).strip().lower()
    return status or DEFAULT_ORDER_STATUS


def normalize_order_number(value: Any) -> Optional[str]:
    """
    Canonicalize an order identifier to "Order #<n>".

    "Order #1791" is kept, "Order 1791" and "1791" become "Order #1791".
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    if text.lower().startswith("order #"):
        return ORDER_NUMBER_PREFIX + text[len("order #"):].strip()

    match = _ORDER_WORD.match(text)
    if match:
        return f"{ORDER_NUMBER_PREFIX}{match.group(1).strip()}"

    if text.startswith("#"):
        text = text[1:].strip()

    return f"{ORDER_NUMBER_PREFIX}{text}"
