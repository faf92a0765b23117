"""Tolerant field extraction for third-party payloads whose schema drifts.

Each logical value (digest, wallet, amount, ...) is described by an ordered
list of candidate dotted paths; the first present, non-empty match wins.
Integer path segments index into lists, so ``coinsOut.0.amount`` works.
"""

import re
import time
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Sequence

_MISSING = object()
_DIGITS = re.compile(r"^\d+$")


def get_nested_value(source: Any, path: str) -> Any:
    """Follow a dotted path through dicts and lists, returning None when absent."""
    value = source
    for key in path.split("."):
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get(key, _MISSING)
        elif isinstance(value, (list, tuple)) and key.isdigit():
            index = int(key)
            value = value[index] if index < len(value) else _MISSING
        else:
            return None
        if value is _MISSING:
            return None
    return value


def pick_string(source: Any, paths: Sequence[str]) -> str | None:
    """Return the first candidate path holding a non-empty string or a number."""
    for path in paths:
        value = get_nested_value(source, path)
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, str):
            trimmed = value.strip()
            if trimmed:
                return trimmed
            continue
        if isinstance(value, (int, float, Decimal)):
            return str(value)
    return None


def pick_number(source: Any, paths: Sequence[str]) -> int | float | None:
    """Return the first candidate path that parses as a number."""
    for path in paths:
        value = get_nested_value(source, path)
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return value
        if isinstance(value, str):
            text = value.strip()
            if _DIGITS.match(text):
                return int(text)
            try:
                return float(text)
            except ValueError:
                continue
    return None


def parse_int(value: Any) -> int | None:
    """Parse an integer amount without going through float."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if number != number.to_integral_value():
        return None
    return int(number)


def now_ms() -> int:
    return int(time.time() * 1000)


def parse_timestamp(value: Any, default_ms: int | None = None) -> int:
    """
    Coerce a timestamp into epoch milliseconds.

    Accepts numbers, digit strings and ISO-8601 strings. Values below 1e12
    are taken as seconds.
    """
    fallback = default_ms if default_ms is not None else now_ms()
    if value is None or isinstance(value, bool):
        return fallback

    numeric: float | None = None
    if isinstance(value, (int, float)):
        numeric = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return fallback
        if _DIGITS.match(text):
            numeric = int(text)
        else:
            try:
                numeric = datetime.fromisoformat(text.replace("Z", "+00:00")).timestamp() * 1000
            except ValueError:
                return fallback

    if numeric is None:
        return fallback
    if numeric < 1e12:
        numeric *= 1000
    return int(numeric)


def format_amount(raw_amount: int, decimals: int) -> str:
    """Render a raw integer amount as an exact decimal string."""
    if decimals <= 0:
        return str(raw_amount)
    sign = "-" if raw_amount < 0 else ""
    whole, remainder = divmod(abs(raw_amount), 10**decimals)
    if remainder == 0:
        return f"{sign}{whole}"
    fraction = str(remainder).rjust(decimals, "0").rstrip("0")
    return f"{sign}{whole}.{fraction}"


def normalize_address(address: str) -> str:
    """Lowercase and strip a 0x prefix, for containment checks on coin types."""
    text = address.strip().lower()
    return text[2:] if text.startswith("0x") else text
