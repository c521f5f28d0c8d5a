"""Calendar planning of DUE and LATE entries for one child.

Reproduces the backend's bucket rebuild as a read-only computation: given the
catalog, the child's records and a reference time, it proposes the DUE and LATE
entries the calendar implies and the child's resulting up-to-date status.
Nothing is written to the store; applying a plan is the external scheduler's
job.

**Planning rules:**
- Each vaccine's doses are taken from the windows that declare them; when two
  windows declare the same dose, the later one in catalog order wins
- Doses already COMPLETED, SCHEDULED or OVERDUE are not proposed
- Age within ``[min_age or 0, max_age]`` proposes DUE dated at the window's
  target date
- Age past ``max_age`` with a target date before ``now`` proposes LATE
- Status is NOT_UP_TO_DATE when any LATE is proposed or any OVERDUE record exists
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List

from .age_windows import target_date, within_window
from .catalog import CalendarCatalog
from .data_models import CalendarWindow, Child, PlanResult, VaccinationRecord
from .enums import Bucket, ChildStatus
from .record_store import RecordStore
from .utils import ensure_utc

LOG = logging.getLogger(__name__)

_SETTLED_BUCKETS = (Bucket.COMPLETED, Bucket.SCHEDULED, Bucket.OVERDUE)


def dose_windows(catalog: CalendarCatalog) -> Dict[str, Dict[int, CalendarWindow]]:
    """Map each vaccine to ``{dose: window}`` from the windows' declared doses."""
    doses: Dict[str, Dict[int, CalendarWindow]] = {}
    for window in catalog.windows:
        for assignment in window.vaccines:
            if catalog.vaccine(assignment.vaccine_id) is None:
                continue
            per_vaccine = doses.setdefault(assignment.vaccine_id, {})
            for dose in assignment.dose_numbers:
                per_vaccine[dose] = window
    return doses


def _proposal(
    bucket: Bucket,
    vaccine_id: str,
    vaccine_name: str,
    dose: int,
    window: CalendarWindow,
    when: datetime,
) -> VaccinationRecord:
    return VaccinationRecord(
        id=f"{bucket.value}:{vaccine_id}:{dose}",
        bucket=bucket,
        vaccine_id=vaccine_id,
        vaccine_name=vaccine_name,
        dose=dose,
        calendar_window_id=window.id,
        date=when,
    )


def plan_entries(
    child: Child,
    catalog: CalendarCatalog,
    store: RecordStore,
    now: datetime,
    respect_gender: bool = True,
) -> PlanResult:
    """Propose DUE/LATE entries for ``child`` at ``now``.

    Parameters
    ----------
    child : Child
        Birth date and (optional) gender of the child.
    catalog : CalendarCatalog
        Vaccines and calendar windows.
    store : RecordStore
        The child's current records.
    now : datetime
        Reference time; naive values are read as UTC.
    respect_gender : bool
        Skip vaccines restricted to the other gender.

    Returns
    -------
    PlanResult
        Proposed DUE and LATE records (ids ``"<bucket>:<vaccine>:<dose>"``)
        ordered by vaccine name then dose, and the child's status.
    """
    moment = ensure_utc(now)
    settled = {
        (record.vaccine_id, record.dose)
        for record in store
        if record.bucket in _SETTLED_BUCKETS
    }

    due: List[VaccinationRecord] = []
    late: List[VaccinationRecord] = []
    for vaccine_id, windows_by_dose in dose_windows(catalog).items():
        vaccine = catalog.vaccine(vaccine_id)
        if respect_gender and not vaccine.is_suitable_for(child.gender):
            continue

        for dose in sorted(windows_by_dose):
            if (vaccine_id, dose) in settled:
                continue
            window = windows_by_dose[dose]
            position = within_window(child.birth_date, window, moment)
            target = target_date(child.birth_date, window)
            if position is True:
                due.append(_proposal(Bucket.DUE, vaccine.id, vaccine.name, dose, window, target))
            elif position is False and target < moment:
                late.append(
                    _proposal(Bucket.LATE, vaccine.id, vaccine.name, dose, window, target)
                )

    has_overdue = any(record.bucket is Bucket.OVERDUE for record in store)
    status = ChildStatus.NOT_UP_TO_DATE if late or has_overdue else ChildStatus.UP_TO_DATE

    due.sort(key=lambda r: (r.vaccine_name, r.dose))
    late.sort(key=lambda r: (r.vaccine_name, r.dose))
    LOG.info(
        "Planned child %s: %d due, %d late, status %s",
        child.id,
        len(due),
        len(late),
        status.value,
    )
    return PlanResult(due=due, late=late, status=status)
