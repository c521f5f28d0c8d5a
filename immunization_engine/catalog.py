"""Read-only registry of vaccines and calendar windows.

The catalog is built from the collaborator's ``GET vaccines`` and
``GET calendarWindows`` payloads and passed explicitly to every component;
nothing in the engine reaches for module-level reference data.

**Input Contract:**
- Vaccines: ``[{id, name, dosesRequired, gender?}]``
- Windows: ``[{id, description?, ageUnit, specificAge, minAge, maxAge, vaccines}]``
  where ``vaccines`` is ``[{id|vaccineId, doseNumbers: [int]}]``. The backend's
  ``doseAssignments: [{vaccineId|vaccine: {id}, doseNumber}]`` shape is
  accepted as well.

**Normalization:**
- ``dosesRequired`` missing or invalid defaults to 1 (logged)
- Dose numbers are floored; non-positive and non-numeric values are dropped
- Assignments without a dose number get sequential numbers per vaccine
- Declared doses above the vaccine's ``dosesRequired`` are dropped (logged)
- Entries without an id are skipped (logged)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .data_models import CalendarWindow, DoseAssignment, Vaccine
from .enums import AgeUnit, Gender
from .utils import optional_id, parse_dose, string_or_empty

LOG = logging.getLogger(__name__)


class CalendarCatalog:
    """Immutable lookup of vaccines and calendar windows by id.

    Parameters
    ----------
    vaccines : Iterable[Vaccine]
        Vaccine reference entries; ids must be unique.
    windows : Iterable[CalendarWindow]
        Calendar windows; ids must be unique.

    Raises
    ------
    ValueError
        If a vaccine or window id appears twice.
    """

    def __init__(
        self,
        vaccines: Iterable[Vaccine] = (),
        windows: Iterable[CalendarWindow] = (),
    ) -> None:
        self._vaccines: Dict[str, Vaccine] = {}
        for vaccine in vaccines:
            if vaccine.id in self._vaccines:
                raise ValueError(f"Duplicate vaccine id in catalog: {vaccine.id}")
            self._vaccines[vaccine.id] = vaccine

        self._windows: Dict[str, CalendarWindow] = {}
        for window in windows:
            if window.id in self._windows:
                raise ValueError(f"Duplicate calendar window id in catalog: {window.id}")
            self._windows[window.id] = window

    def __repr__(self) -> str:
        return (
            f"CalendarCatalog(vaccines={len(self._vaccines)}, "
            f"windows={len(self._windows)})"
        )

    @property
    def vaccines(self) -> Tuple[Vaccine, ...]:
        """Vaccines in catalog order."""
        return tuple(self._vaccines.values())

    @property
    def windows(self) -> Tuple[CalendarWindow, ...]:
        """Calendar windows in catalog order."""
        return tuple(self._windows.values())

    def vaccine(self, vaccine_id: Optional[str]) -> Optional[Vaccine]:
        """Vaccine by id, or None when absent."""
        if vaccine_id is None:
            return None
        return self._vaccines.get(vaccine_id)

    def window(self, window_id: Optional[str]) -> Optional[CalendarWindow]:
        """Calendar window by id, or None when absent."""
        if window_id is None:
            return None
        return self._windows.get(window_id)

    def dose_range(self, vaccine_id: Optional[str]) -> Tuple[int, ...]:
        """``1..dosesRequired`` for a known vaccine, empty otherwise."""
        vaccine = self.vaccine(vaccine_id)
        return vaccine.dose_range if vaccine else ()


def _parse_vaccine(item: Mapping[str, Any]) -> Optional[Vaccine]:
    vaccine_id = optional_id(item.get("id"))
    if vaccine_id is None:
        LOG.warning("Skipping vaccine without id: %s", item)
        return None

    doses_required = parse_dose(item.get("dosesRequired"))
    if doses_required is None:
        LOG.warning(
            "Vaccine %s has invalid dosesRequired %r; defaulting to 1",
            vaccine_id,
            item.get("dosesRequired"),
        )
        doses_required = 1

    try:
        gender = Gender.from_string(item.get("gender"))
    except ValueError:
        LOG.warning(
            "Vaccine %s has unknown gender %r; treating as unrestricted",
            vaccine_id,
            item.get("gender"),
        )
        gender = None

    return Vaccine(
        id=vaccine_id,
        name=string_or_empty(item.get("name")) or vaccine_id,
        doses_required=doses_required,
        gender=gender,
    )


def _assignment_vaccine_id(assignment: Mapping[str, Any]) -> Optional[str]:
    nested = assignment.get("vaccine")
    if isinstance(nested, Mapping):
        nested_id = optional_id(nested.get("id"))
        if nested_id:
            return nested_id
    return optional_id(assignment.get("vaccineId")) or optional_id(assignment.get("id"))


def _collect_assignments(
    window_id: str, item: Mapping[str, Any]
) -> Dict[str, set[int]]:
    """Gather declared dose numbers per vaccine from either payload shape."""
    declared: Dict[str, set[int]] = {}
    fallback_counters: Dict[str, int] = {}

    for entry in item.get("vaccines") or []:
        if not isinstance(entry, Mapping):
            continue
        vaccine_id = _assignment_vaccine_id(entry)
        if vaccine_id is None:
            LOG.warning("Window %s lists a vaccine without id; skipped", window_id)
            continue
        doses = declared.setdefault(vaccine_id, set())
        for raw in entry.get("doseNumbers") or []:
            dose = parse_dose(raw)
            if dose is None:
                LOG.warning(
                    "Window %s declares invalid dose %r for vaccine %s; dropped",
                    window_id,
                    raw,
                    vaccine_id,
                )
                continue
            doses.add(dose)

    for entry in item.get("doseAssignments") or []:
        if not isinstance(entry, Mapping):
            continue
        vaccine_id = _assignment_vaccine_id(entry)
        if vaccine_id is None:
            LOG.warning("Window %s has a dose assignment without vaccine; skipped", window_id)
            continue
        raw = entry.get("doseNumber", entry.get("dose"))
        dose = parse_dose(raw)
        if dose is None:
            dose = fallback_counters.get(vaccine_id, 0) + 1
            fallback_counters[vaccine_id] = dose
        declared.setdefault(vaccine_id, set()).add(dose)

    return declared


def _parse_window(
    item: Mapping[str, Any], vaccines: Mapping[str, Vaccine]
) -> Optional[CalendarWindow]:
    window_id = optional_id(item.get("id"))
    if window_id is None:
        LOG.warning("Skipping calendar window without id: %s", item)
        return None

    try:
        age_unit = AgeUnit.from_string(item.get("ageUnit"))
    except ValueError:
        LOG.warning(
            "Window %s has unknown age unit %r; defaulting to WEEKS",
            window_id,
            item.get("ageUnit"),
        )
        age_unit = AgeUnit.WEEKS

    assignments: List[DoseAssignment] = []
    for vaccine_id, doses in _collect_assignments(window_id, item).items():
        vaccine = vaccines.get(vaccine_id)
        if vaccine is not None:
            beyond = sorted(d for d in doses if d > vaccine.doses_required)
            if beyond:
                LOG.warning(
                    "Window %s declares doses %s for %s which requires only %d; dropped",
                    window_id,
                    beyond,
                    vaccine_id,
                    vaccine.doses_required,
                )
                doses = {d for d in doses if d <= vaccine.doses_required}
        assignments.append(
            DoseAssignment(vaccine_id=vaccine_id, dose_numbers=frozenset(doses))
        )

    description = string_or_empty(item.get("description")) or None
    return CalendarWindow(
        id=window_id,
        age_unit=age_unit,
        specific_age=_optional_age(item.get("specificAge")),
        min_age=_optional_age(item.get("minAge")),
        max_age=_optional_age(item.get("maxAge")),
        description=description,
        vaccines=tuple(assignments),
    )


def _optional_age(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def load_catalog(
    vaccines_payload: Sequence[Mapping[str, Any]],
    windows_payload: Sequence[Mapping[str, Any]],
) -> CalendarCatalog:
    """Build a catalog from the collaborator's vaccine and window payloads.

    Parameters
    ----------
    vaccines_payload : Sequence[Mapping[str, Any]]
        Decoded ``GET vaccines`` response.
    windows_payload : Sequence[Mapping[str, Any]]
        Decoded ``GET calendarWindows`` response.

    Returns
    -------
    CalendarCatalog
        Catalog of the entries that could be parsed. Malformed entries are
        logged and skipped; duplicate ids keep the first occurrence.

    Raises
    ------
    ValueError
        If either payload is not a list.
    """
    if not isinstance(vaccines_payload, list) or not isinstance(windows_payload, list):
        raise ValueError("Vaccine and calendar window payloads must be JSON arrays")

    vaccines: Dict[str, Vaccine] = {}
    for item in vaccines_payload:
        if not isinstance(item, Mapping):
            continue
        vaccine = _parse_vaccine(item)
        if vaccine is None:
            continue
        if vaccine.id in vaccines:
            LOG.warning("Duplicate vaccine id %s in payload; keeping first", vaccine.id)
            continue
        vaccines[vaccine.id] = vaccine

    windows: Dict[str, CalendarWindow] = {}
    for item in windows_payload:
        if not isinstance(item, Mapping):
            continue
        window = _parse_window(item, vaccines)
        if window is None:
            continue
        if window.id in windows:
            LOG.warning("Duplicate window id %s in payload; keeping first", window.id)
            continue
        windows[window.id] = window

    LOG.info("Loaded catalog with %d vaccines and %d windows", len(vaccines), len(windows))
    return CalendarCatalog(vaccines.values(), windows.values())


def load_catalog_file(path: Path) -> CalendarCatalog:
    """Load a catalog from a JSON file ``{"vaccines": [...], "calendarWindows": [...]}``.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the file is not valid JSON or lacks the expected arrays.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Catalog file not found: {path}")

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Catalog file is not valid JSON: {path}: {exc}") from exc

    if not isinstance(payload, dict):
        raise ValueError(f"Catalog file must contain a JSON object: {path}")

    return load_catalog(
        payload.get("vaccines", []),
        payload.get("calendarWindows", payload.get("calendars", [])),
    )
