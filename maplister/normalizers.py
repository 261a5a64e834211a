"""Utility helpers for normalising scalar values reported by the catalog API."""

from __future__ import annotations

import re
from typing import Any

SIZE_UNITS = ("B", "KB", "MB", "GB")

_INT_PATTERN = re.compile(r"-?\d[\d,]*")
_FLOAT_PATTERN = re.compile(r"-?\d[\d,]*(?:\.\d+)?|-?\.\d+")


def format_file_size(num_bytes: float | int | None) -> str | None:
    """Format a raw byte count using binary prefixes.

    The value is divided by 1024 until it drops below 1024 or the largest unit
    is reached. Bytes are printed as whole numbers, every other unit with one
    decimal place: ``1536`` -> ``"1.5 KB"``.
    """

    if num_bytes is None:
        return None

    value = float(num_bytes)
    if value < 0:
        return None

    unit_index = 0
    while value >= 1024 and unit_index < len(SIZE_UNITS) - 1:
        value /= 1024
        unit_index += 1

    if unit_index == 0:
        return f"{int(value)} B"
    return f"{value:.1f} {SIZE_UNITS[unit_index]}"


def coerce_int(value: Any) -> int | None:
    """Convert ints, floats and numeric strings (``"1,024"``) to ``int``."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)

    text = str(value).strip()
    if not text:
        return None
    match = _INT_PATTERN.search(text)
    if not match:
        return None
    return int(match.group(0).replace(",", ""))


def coerce_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    if not text:
        return None
    match = _FLOAT_PATTERN.search(text)
    if not match:
        return None
    try:
        return float(match.group(0).replace(",", ""))
    except ValueError:
        return None


def clean_text(value: Any) -> str | None:
    """Collapse whitespace; empty strings become ``None``."""

    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


def coerce_date(value: Any) -> str | None:
    """Keep a date exactly as reported.

    Numeric timestamps become their full decimal text (``1500000000`` ->
    ``"1500000000"``); any other value, such as an ISO string, is kept as
    cleaned text and never cut down to a leading number.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    return clean_text(value)


__all__ = ["clean_text", "coerce_date", "coerce_float", "coerce_int", "format_file_size"]
