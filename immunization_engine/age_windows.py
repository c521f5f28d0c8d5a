"""Age arithmetic and display labels for calendar windows.

Ages are counted in whole units since birth, using fixed day lengths per unit
(see ``AgeUnit.days``). Target dates are calendar-aware instead: a window at
two months targets the same day-of-month two months after birth.
"""

from __future__ import annotations

import math
from datetime import date, datetime, timezone
from typing import Optional

import pandas as pd
from babel.units import format_unit

from .data_models import CalendarWindow
from .enums import AgeUnit, Language
from .utils import ensure_utc


def _as_utc_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


def age_in_days(birth_date: date | datetime, now: date | datetime) -> int:
    """Whole days elapsed between birth and ``now`` (negative before birth)."""
    delta = _as_utc_datetime(now) - _as_utc_datetime(birth_date)
    return math.floor(delta.total_seconds() / 86400)


def age_in_unit(birth_date: date | datetime, unit: AgeUnit, now: date | datetime) -> int:
    """Child's age expressed in whole ``unit`` at ``now``.

    Examples
    --------
    >>> age_in_unit(date(2025, 1, 1), AgeUnit.WEEKS, date(2025, 2, 12))
    6
    """
    return math.floor(age_in_days(birth_date, now) / unit.days)


def target_date(birth_date: date | datetime, window: CalendarWindow) -> datetime:
    """Date on which a window's dose is expected.

    Uses ``specific_age`` when set, otherwise ``max_age``; a window with
    neither targets the birth date itself.
    """
    base = pd.Timestamp(_as_utc_datetime(birth_date))
    value = window.specific_age if window.specific_age is not None else window.max_age
    if value is None:
        return base.to_pydatetime()

    if window.age_unit is AgeUnit.WEEKS:
        shifted = base + pd.Timedelta(days=7 * value)
    elif window.age_unit is AgeUnit.MONTHS:
        shifted = base + pd.DateOffset(months=value)
    else:
        shifted = base + pd.DateOffset(years=value)
    return shifted.to_pydatetime()


def age_weight(window: CalendarWindow) -> float:
    """Approximate age of a window in days, for chronological ordering."""
    base = window.specific_age
    if base is None:
        base = window.max_age if window.max_age is not None else window.min_age
    return (base or 0) * window.age_unit.days


def _format_age(value: int, unit: AgeUnit, language: Language) -> str:
    return format_unit(value, unit.cldr_unit, length="long", locale=language.locale)


def age_label(window: CalendarWindow, language: Language | str | None = None) -> str:
    """Locale-aware label for a window's age, e.g. "6 weeks" or "9-11 months".

    Returns an empty string when the window declares no age at all.
    """
    lang = language if isinstance(language, Language) else Language.from_string(language)
    unit = window.age_unit

    if window.specific_age is not None:
        return _format_age(window.specific_age, unit, lang)
    if window.min_age is not None and window.max_age is not None:
        return f"{window.min_age}-{_format_age(window.max_age, unit, lang)}"
    if window.min_age is not None:
        return f"{_format_age(window.min_age, unit, lang)}+"
    if window.max_age is not None:
        return f"0-{_format_age(window.max_age, unit, lang)}"
    return ""


def window_label(window: CalendarWindow, language: Language | str | None = None) -> str:
    """Display label for a window: its description when set, else its age label.

    Falls back to a shortened id when the window has neither.
    """
    if window.description and window.description.strip():
        return window.description.strip()
    label = age_label(window, language)
    if label:
        return label
    return f"Calendar {window.id[:8]}"


def within_window(
    birth_date: date | datetime,
    window: CalendarWindow,
    now: date | datetime,
) -> Optional[bool]:
    """Position of the child's age relative to a window's range.

    Returns True when the age lies in ``[min_age or 0, max_age]`` (max
    unbounded when None), False when it lies past ``max_age`` and None when
    the child is still younger than ``min_age``.
    """
    age = age_in_unit(birth_date, window.age_unit, now)
    minimum = window.min_age or 0
    if window.max_age is not None and age > window.max_age:
        return False
    if age < minimum:
        return None
    return True
