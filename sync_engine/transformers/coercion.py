"""
Total value coercions for loosely-typed upstream payloads.

Every function returns ``(value, problem)``: ``problem`` is None when the
input converted cleanly (or was legitimately empty) and a short reason string
when a non-empty input had to be discarded. None of them raise.
"""

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional, Tuple
import math
import re

CENTS = Decimal("0.01")
BASIS = Decimal("0.0001")
UNITS = Decimal("1")

# Exclusive magnitude bounds of the destination columns: Numeric(12, 2), Numeric(8, 4), Integer
MONEY_LIMIT = Decimal("1e10")
RATE_LIMIT = Decimal("1e4")
INT_LIMIT = Decimal(2 ** 31)

_NUMERIC_JUNK = re.compile(r"[^0-9.\-]")

_TRUE_WORDS = {"true", "yes", "y", "1", "t"}
_FALSE_WORDS = {"false", "no", "n", "0", "f"}

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %I:%M %p",
)

Coerced = Tuple[Any, Optional[str]]


def is_blank(value: Any) -> bool:
    """None, empty string or whitespace-only string"""
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def clean_text(value: Any) -> Coerced:
    if is_blank(value):
        return None, None
    if isinstance(value, (dict, list)):
        return None, "structured value in text field"
    return str(value).strip(), None


def parse_decimal(value: Any, quantum: Decimal = CENTS, limit: Optional[Decimal] = None) -> Coerced:
    """
    Fixed-point parse. Currency symbols, thousands separators and other
    decoration are stripped; anything left that is not a number is discarded.
    Values whose magnitude reaches ``limit`` are discarded as out of range.
    """
    if is_blank(value):
        return None, None
    if isinstance(value, bool):
        return None, "boolean in numeric field"
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return None, "non-finite number"

    if isinstance(value, (int, float, Decimal)):
        text = str(value)
    else:
        raw = str(value).strip()
        negative = raw.startswith("(") and raw.endswith(")")
        text = _NUMERIC_JUNK.sub("", raw)
        if negative and text and not text.startswith("-"):
            text = "-" + text

    if text in ("", "-", ".", "-."):
        return None, "non-numeric value"
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None, "non-numeric value"
    if not number.is_finite():
        return None, "non-finite number"
    try:
        number = number.quantize(quantum, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None, "out of range"
    if limit is not None and abs(number) >= limit:
        return None, "out of range"
    return number, None


def parse_money(value: Any) -> Coerced:
    return parse_decimal(value, CENTS, MONEY_LIMIT)


def parse_rate(value: Any) -> Coerced:
    return parse_decimal(value, BASIS, RATE_LIMIT)


def parse_int(value: Any) -> Coerced:
    number, problem = parse_decimal(value, UNITS, INT_LIMIT)
    if number is None:
        return None, problem
    return int(number), None


def parse_bool(value: Any) -> Coerced:
    if is_blank(value):
        return None, None
    if isinstance(value, bool):
        return value, None
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value), None
    text = str(value).strip().lower()
    if text in _TRUE_WORDS:
        return True, None
    if text in _FALSE_WORDS:
        return False, None
    return None, "unrecognised boolean"


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def parse_datetime(value: Any) -> Coerced:
    """
    Parse into a UTC-aware datetime. Naive inputs are taken to be UTC.
    Epoch numbers are accepted in seconds or milliseconds.
    """
    if is_blank(value):
        return None, None
    if isinstance(value, datetime):
        return _as_utc(value), None
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc), None
    if isinstance(value, bool):
        return None, "boolean in date field"
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc), None
        except (OverflowError, OSError, ValueError):
            return None, "unparseable date"

    text = str(value).strip()
    try:
        return _as_utc(datetime.fromisoformat(text.replace("Z", "+00:00"))), None
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return _as_utc(datetime.strptime(text, fmt)), None
        except ValueError:
            continue
    return None, "unparseable date"
