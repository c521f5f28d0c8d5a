"""Core data models for the immunization record engine.

Reference data (vaccines and calendar windows) and vaccination records are
immutable dataclasses. Every engine operation takes snapshots built from these
types and returns new snapshots; nothing is mutated in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Dict, FrozenSet, List, Optional, Tuple

from .enums import AgeUnit, Bucket, ChildStatus, Gender

if TYPE_CHECKING:
    from .errors import RecordError
    from .record_store import RecordStore


@dataclass(frozen=True)
class Vaccine:
    """Vaccine reference entry.

    Fields
    ------
    id : str
        Catalog identifier.
    name : str
        Display name.
    doses_required : int
        Number of doses in the full series (positive). Dose numbers are
        1-based, so valid doses are ``1..doses_required``.
    gender : Optional[Gender]
        Restricts the vaccine to one gender; None means suitable for all.
    """

    id: str
    name: str
    doses_required: int
    gender: Optional[Gender] = None

    def __post_init__(self) -> None:
        if self.doses_required < 1:
            raise ValueError(
                f"Vaccine {self.id} must require at least one dose, "
                f"got {self.doses_required}"
            )

    @property
    def dose_range(self) -> Tuple[int, ...]:
        return tuple(range(1, self.doses_required + 1))

    def is_suitable_for(self, gender: Optional[Gender]) -> bool:
        """True when the vaccine is unrestricted or matches the child's gender."""
        if self.gender is None or gender is None:
            return True
        return self.gender is gender


@dataclass(frozen=True)
class DoseAssignment:
    """Dose numbers of one vaccine that a calendar window declares."""

    vaccine_id: str
    dose_numbers: FrozenSet[int]


@dataclass(frozen=True)
class CalendarWindow:
    """Age-based eligibility template.

    Exactly one of ``specific_age`` or the ``(min_age, max_age)`` range is
    meaningful. An empty ``vaccines`` tuple means the window is unconstrained:
    any vaccine and dose may be recorded against it.

    Fields
    ------
    id : str
        Catalog identifier.
    age_unit : AgeUnit
        Unit for specific_age, min_age and max_age.
    specific_age : Optional[int]
        Single target age.
    min_age : Optional[int]
        Lower bound of the age range (inclusive).
    max_age : Optional[int]
        Upper bound of the age range (inclusive).
    description : Optional[str]
        Free-text label; preferred over the computed age label for display.
    vaccines : Tuple[DoseAssignment, ...]
        Vaccine and dose numbers eligible in this window.
    """

    id: str
    age_unit: AgeUnit = AgeUnit.WEEKS
    specific_age: Optional[int] = None
    min_age: Optional[int] = None
    max_age: Optional[int] = None
    description: Optional[str] = None
    vaccines: Tuple[DoseAssignment, ...] = ()

    @property
    def is_constrained(self) -> bool:
        return bool(self.vaccines)

    @property
    def vaccine_ids(self) -> Tuple[str, ...]:
        return tuple(assignment.vaccine_id for assignment in self.vaccines)

    def lists_vaccine(self, vaccine_id: str) -> bool:
        """True when the window declares at least one dose of ``vaccine_id``."""
        return any(
            a.vaccine_id == vaccine_id and a.dose_numbers for a in self.vaccines
        )

    def declared_doses(self, vaccine_id: str) -> FrozenSet[int]:
        """Dose numbers declared for ``vaccine_id`` (empty when not listed)."""
        doses: set[int] = set()
        for assignment in self.vaccines:
            if assignment.vaccine_id == vaccine_id:
                doses.update(assignment.dose_numbers)
        return frozenset(doses)

    def accepts(self, vaccine_id: str, dose: int) -> bool:
        """True when the window is unconstrained or declares ``(vaccine_id, dose)``."""
        if not self.is_constrained:
            return True
        return dose in self.declared_doses(vaccine_id)


@dataclass(frozen=True)
class VaccinationRecord:
    """One vaccination record for a child.

    The meaning of ``date`` depends on the bucket: target date for DUE and
    SCHEDULED, due date for LATE and OVERDUE, administration date for
    COMPLETED (see ``Bucket.date_field``).
    """

    id: str
    bucket: Bucket
    vaccine_id: str
    vaccine_name: str
    dose: int
    calendar_window_id: Optional[str] = None
    date: Optional[datetime] = None
    administered_by_ref: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.bucket.is_open

    @property
    def slot(self) -> Tuple[str, int]:
        """The ``(vaccine_id, dose)`` pair this record claims."""
        return (self.vaccine_id, self.dose)


@dataclass(frozen=True)
class Child:
    """The only child attributes the engine consumes."""

    id: str
    birth_date: date
    gender: Optional[Gender] = None


@dataclass(frozen=True)
class BucketClassification:
    """Read-only verdict on whether an open record has passed its date.

    Parameters
    ----------
    record_id : str
        Classified record.
    bucket : Bucket
        Bucket the record currently holds (never changed by the engine).
    is_overdue_candidate : bool
        True for DUE/SCHEDULED records whose date is in the past; promotion to
        LATE is left to the external scheduler.
    """

    record_id: str
    bucket: Bucket
    is_overdue_candidate: bool


@dataclass(frozen=True)
class VaccineOption:
    """A vaccine usable with a given window, with the doses it may take there."""

    vaccine_id: str
    valid_doses: Tuple[int, ...]


@dataclass(frozen=True)
class DoseOffer:
    """Next schedulable dose of a vaccine and the windows it may be booked in."""

    vaccine_id: str
    vaccine_name: str
    dose: int
    windows: Tuple[CalendarWindow, ...] = ()


@dataclass(frozen=True)
class MutationResult:
    """Outcome of a lifecycle operation.

    Parameters
    ----------
    store : RecordStore
        Snapshot after the operation. Identical to the input snapshot when the
        operation failed.
    record : Optional[VaccinationRecord]
        Created, edited, completed or removed record (None on failure).
    error : Optional[RecordError]
        Structured error when the operation was rejected.
    """

    store: "RecordStore"
    record: Optional[VaccinationRecord] = None
    error: Optional["RecordError"] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class PlanResult:
    """Calendar-derived DUE/LATE proposals for one child.

    Parameters
    ----------
    due : List[VaccinationRecord]
        Doses whose window contains the child's current age.
    late : List[VaccinationRecord]
        Doses whose window has passed and whose target date is before now.
    status : ChildStatus
        NOT_UP_TO_DATE when any LATE proposal or OVERDUE record exists.
    """

    due: List[VaccinationRecord]
    late: List[VaccinationRecord]
    status: ChildStatus


@dataclass(frozen=True)
class ImportResult:
    """Result of importing a tabular records export.

    Parameters
    ----------
    store : RecordStore
        Records that passed validation.
    warnings : List[str]
        Non-fatal problems (unknown vaccine, bad date, duplicate dose claim).
    column_mapping : Dict[str, str]
        Original column name to canonical column name.
    """

    store: "RecordStore"
    warnings: List[str]
    column_mapping: Dict[str, str] = field(default_factory=dict)
