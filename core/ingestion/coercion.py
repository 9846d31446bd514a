"""
Value coercion for loosely-typed feed values.

Every normaliser goes through these helpers so locale handling
(thousands separators, comma decimals) lives in exactly one place.
None of them raise.
"""

from __future__ import annotations

import math
import re
from typing import Any, Final, Optional

from core.catalog.schema import Category, DealType, RecordStatus


# Placeholders some vendors emit instead of a real location
GENERIC_LOCATION_VALUES: Final[frozenset[str]] = frozenset({"array", "[object object]"})

LIST_SEPARATORS: Final = re.compile(r"[,;|]")
_WHITESPACE: Final = re.compile(r"\s+")

TRUE_FLAGS: Final[frozenset[str]] = frozenset({"1", "true", "yes"})


def as_text(value: Any) -> str:
    """
    Render a scalar as text.

    Strings pass through, numbers render as decimal text (integral floats
    without the trailing `.0`), booleans as `true` / `false`, anything else
    becomes empty text.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return ""


def as_number(value: Any) -> Optional[float]:
    """
    Parse a locale-tolerant number.

    All whitespace is removed and commas become decimal points, so
    "1 234,56" parses as 1234.56 and "10 000 000" as 10000000.0.

    Returns:
        The parsed float, or None when the value is blank or not finite
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    if not isinstance(value, str):
        return None

    cleaned = _WHITESPACE.sub("", value).replace(",", ".")
    if not cleaned or "_" in cleaned:
        return None
    try:
        number = float(cleaned)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def as_whole(value: Any) -> Optional[float]:
    """as_number, with integral results returned as int."""
    number = as_number(value)
    if number is not None and number.is_integer():
        return int(number)
    return number


def as_text_list(value: Any) -> list[str]:
    """
    Coerce a value into an ordered list of non-blank strings.

    Lists coerce element-wise; scalars are split on comma, semicolon or pipe.
    """
    if isinstance(value, list):
        items = (as_text(item).strip() for item in value)
        return [item for item in items if item]
    text = as_text(value)
    if not text:
        return []
    return [part.strip() for part in LIST_SEPARATORS.split(text) if part.strip()]


def as_flag(value: Any) -> bool:
    """Interpret `1` / `true` / `yes` as True."""
    return as_text(value).strip().lower() in TRUE_FLAGS


def normalise_location_value(value: Any) -> str:
    """Location text with generic placeholders blanked out."""
    text = as_text(value).strip()
    if text.lower() in GENERIC_LOCATION_VALUES:
        return ""
    return text


def normalise_status(value: Any) -> RecordStatus:
    """Declared record status; anything unknown means active."""
    text = as_text(value).strip().lower()
    if text == RecordStatus.HIDDEN.value:
        return RecordStatus.HIDDEN
    if text == RecordStatus.ARCHIVED.value:
        return RecordStatus.ARCHIVED
    return RecordStatus.ACTIVE


def normalise_category(value: Any) -> Category:
    """Declared category; anything unknown means newbuild."""
    text = as_text(value).strip().lower()
    if text == Category.SECONDARY.value:
        return Category.SECONDARY
    if text == Category.RENT.value:
        return Category.RENT
    return Category.NEWBUILD


def normalise_deal_type(value: Any) -> DealType:
    """Declared deal type; anything but `rent` is a sale."""
    text = as_text(value).strip().lower()
    return DealType.RENT if text == DealType.RENT.value else DealType.SALE
