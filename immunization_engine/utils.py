"""Parsing helpers shared by the loaders and the lifecycle controller.

All timestamps handled by the engine are timezone-aware UTC datetimes. Input
values arrive from JSON payloads, spreadsheets and operator forms, so parsing
is lenient about type and strict about meaning: anything that does not denote
a real instant becomes None.
"""

from __future__ import annotations

import math
import numbers
from datetime import date, datetime, timezone
from typing import Any, Optional

import pandas as pd


def string_or_empty(value: Any) -> str:
    """Safely convert value to string, returning empty string for None/NaN."""
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value).strip()


def optional_id(value: Any) -> Optional[str]:
    """Return a trimmed identifier, or None for missing/blank values."""
    text = string_or_empty(value)
    return text or None


def ensure_utc(moment: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string, date or datetime into an aware UTC datetime.

    Parameters
    ----------
    value : Any
        ``str`` (ISO-8601, with or without offset), ``datetime``, ``date`` or
        ``pd.Timestamp``. Numbers and booleans are rejected rather than read as
        epoch offsets.

    Returns
    -------
    Optional[datetime]
        Parsed UTC datetime, or None when value is empty or not a timestamp.
    """
    if value is None or isinstance(value, numbers.Number):
        return None
    if isinstance(value, datetime):
        if pd.isna(value):
            return None
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None

    parsed = pd.to_datetime(value.strip(), utc=True, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime()


def isoformat_or_none(moment: Optional[datetime]) -> Optional[str]:
    """Serialize a UTC datetime as ISO-8601 with a ``Z`` suffix."""
    if moment is None:
        return None
    return ensure_utc(moment).isoformat().replace("+00:00", "Z")


def parse_dose(value: Any) -> Optional[int]:
    """Parse a dose number.

    Accepts positive ints, integral floats and numeric strings; fractional
    values are floored. Returns None for missing, non-numeric or non-positive
    input.

    Examples
    --------
    >>> parse_dose("2")
    2
    >>> parse_dose(2.7)
    2
    >>> parse_dose(0) is None
    True
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        try:
            value = float(value)
        except ValueError:
            return None
    if not isinstance(value, numbers.Real):
        return None
    if not math.isfinite(value):
        return None
    dose = int(math.floor(value))
    return dose if dose >= 1 else None
