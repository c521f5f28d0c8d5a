"""Enumerations for the immunization record engine."""

from enum import Enum


class Bucket(Enum):
    """Classification a vaccination record currently holds.

    DUE and SCHEDULED records carry a target date (``scheduledFor``), LATE and
    OVERDUE records carry the date the dose fell due (``dueDate``) and COMPLETED
    records carry the administration date (``administeredAt``).
    """

    DUE = "due"
    LATE = "late"
    OVERDUE = "overdue"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"

    @classmethod
    def from_string(cls, value: "str | Bucket | None") -> "Bucket":
        """Convert string to Bucket.

        Parameters
        ----------
        value : str | Bucket | None
            Bucket name ('due', 'late', 'overdue', 'scheduled', 'completed'),
            case-insensitive. Bucket instances are returned unchanged.

        Returns
        -------
        Bucket
            Corresponding Bucket enum.

        Raises
        ------
        ValueError
            If value is None or not a valid bucket name.
        """
        if isinstance(value, cls):
            return value
        if value is None:
            raise ValueError(
                f"Bucket is required. Valid options: {', '.join(b.value for b in cls)}"
            )

        value_lower = str(value).strip().lower()
        for bucket in cls:
            if bucket.value == value_lower:
                return bucket

        raise ValueError(
            f"Unknown bucket: {value}. "
            f"Valid options: {', '.join(b.value for b in cls)}"
        )

    @property
    def is_open(self) -> bool:
        """True for every bucket except COMPLETED."""
        return self is not Bucket.COMPLETED

    @property
    def date_field(self) -> str:
        """Name of the payload field holding this bucket's date."""
        if self in (Bucket.DUE, Bucket.SCHEDULED):
            return "scheduledFor"
        if self in (Bucket.LATE, Bucket.OVERDUE):
            return "dueDate"
        return "administeredAt"

    @classmethod
    def open_buckets(cls) -> tuple["Bucket", ...]:
        return tuple(b for b in cls if b.is_open)


class AgeUnit(Enum):
    """Unit in which a calendar window expresses ages.

    The day lengths match the ones used by the scheduling backend when it
    converts a birth date into an age: a month is 30.4375 days and a year
    365.25 days.
    """

    WEEKS = "WEEKS"
    MONTHS = "MONTHS"
    YEARS = "YEARS"

    @classmethod
    def from_string(cls, value: "str | AgeUnit | None") -> "AgeUnit":
        """Convert string to AgeUnit, defaulting to WEEKS when value is None.

        Raises
        ------
        ValueError
            If value is not a valid unit name.
        """
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.WEEKS

        value_upper = str(value).strip().upper()
        for unit in cls:
            if unit.value == value_upper:
                return unit

        raise ValueError(
            f"Unknown age unit: {value}. "
            f"Valid options: {', '.join(u.value for u in cls)}"
        )

    @property
    def days(self) -> float:
        return _AGE_UNIT_DAYS[self]

    @property
    def cldr_unit(self) -> str:
        """CLDR measurement unit used by Babel to render labels."""
        return f"duration-{self.value.lower()[:-1]}"


_AGE_UNIT_DAYS = {
    AgeUnit.WEEKS: 7.0,
    AgeUnit.MONTHS: 30.4375,
    AgeUnit.YEARS: 365.25,
}


class Language(Enum):
    """Supported display languages for window labels and dates.

    Attributes
    ----------
    ENGLISH : str
        English language code ('en').
    FRENCH : str
        French language code ('fr').
    """

    ENGLISH = "en"
    FRENCH = "fr"

    @classmethod
    def from_string(cls, value: str | None) -> "Language":
        """Convert string to Language enum.

        Parameters
        ----------
        value : str | None
            Language code ('en', 'fr'), or None for default (ENGLISH).
            Case-insensitive (normalizes to lowercase).

        Returns
        -------
        Language
            Corresponding Language enum value.

        Raises
        ------
        ValueError
            If value is not a valid language code. Error message lists
            all available options.

        Examples
        --------
        >>> Language.from_string('FR')
        <Language.FRENCH: 'fr'>

        >>> Language.from_string(None)
        <Language.ENGLISH: 'en'>
        """
        if value is None:
            return cls.ENGLISH

        value_lower = value.lower()
        for lang in cls:
            if lang.value == value_lower:
                return lang

        raise ValueError(
            f"Unsupported language: {value}. "
            f"Valid options: {', '.join(lang.value for lang in cls)}"
        )

    @classmethod
    def all_codes(cls) -> set[str]:
        """Get set of all supported language codes."""
        return {lang.value for lang in cls}

    @property
    def locale(self) -> str:
        """Babel locale identifier for this language."""
        return {"en": "en_US", "fr": "fr_FR"}[self.value]


class Gender(Enum):
    """Child gender as recorded by the registry; vaccines may be restricted to one."""

    MALE = "M"
    FEMALE = "F"

    @classmethod
    def from_string(cls, value: "str | Gender | None") -> "Gender | None":
        """Convert 'M'/'F' (case-insensitive) to Gender; None and '' stay None.

        Raises
        ------
        ValueError
            If value is neither empty nor a valid gender code.
        """
        if isinstance(value, cls):
            return value
        if value is None or not str(value).strip():
            return None

        value_upper = str(value).strip().upper()
        for gender in cls:
            if gender.value == value_upper:
                return gender

        raise ValueError(
            f"Unknown gender: {value}. Valid options: {', '.join(g.value for g in cls)}"
        )


class ChildStatus(Enum):
    """Overall immunization status derived from a child's buckets."""

    UP_TO_DATE = "up_to_date"
    NOT_UP_TO_DATE = "not_up_to_date"


class EngineErrorKind(Enum):
    """Kind of structured error returned by lifecycle operations."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"


class WindowLinkMode(Enum):
    """How strictly a record's calendar window constrains an edit.

    AUTHORITATIVE applies the creation rules on edit as well. ADVISORY keeps
    the window link but only checks the dose against ``1..dosesRequired``.
    """

    ADVISORY = "advisory"
    AUTHORITATIVE = "authoritative"

    @classmethod
    def from_string(cls, value: str | None) -> "WindowLinkMode":
        """Convert string to WindowLinkMode, defaulting to ADVISORY for None.

        Raises
        ------
        ValueError
            If value is not a valid mode name.
        """
        if value is None:
            return cls.ADVISORY

        value_lower = value.lower()
        for mode in cls:
            if mode.value == value_lower:
                return mode

        raise ValueError(
            f"Unknown window link mode: {value}. "
            f"Valid options: {', '.join(m.value for m in cls)}"
        )
