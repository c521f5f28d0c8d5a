"""Dose eligibility over a catalog and a child's record snapshot.

Every function here is a total, side-effect-free read. Unknown vaccine or
window ids produce empty results rather than exceptions: "no eligible option"
is a valid state that callers turn into operator feedback such as "no vaccine
available to schedule".
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from .age_windows import window_label
from .catalog import CalendarCatalog
from .data_models import (
    BucketClassification,
    CalendarWindow,
    Child,
    DoseOffer,
    VaccinationRecord,
    VaccineOption,
)
from .enums import Bucket, Language
from .record_store import RecordStore
from .utils import ensure_utc

LOG = logging.getLogger(__name__)

WindowLabel = Callable[[CalendarWindow], str]


class EligibilityResolver:
    """Answers which vaccine, window and dose combinations are legal right now.

    Parameters
    ----------
    catalog : CalendarCatalog
        Reference data snapshot.
    store : RecordStore
        The child's current records.
    child : Optional[Child]
        Used for gender filtering of offers; optional.
    language : Language | str | None
        Language of the default window labels used for ordering.
    overdue_grace_days : int
        Days past a DUE/SCHEDULED record's date before it is reported as an
        overdue candidate.
    respect_gender : bool
        Whether gender-restricted vaccines are withheld from offers.
    """

    def __init__(
        self,
        catalog: CalendarCatalog,
        store: RecordStore,
        *,
        child: Optional[Child] = None,
        language: Language | str | None = None,
        overdue_grace_days: int = 0,
        respect_gender: bool = True,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.child = child
        self.language = (
            language if isinstance(language, Language) else Language.from_string(language)
        )
        self.overdue_grace_days = overdue_grace_days
        self.respect_gender = respect_gender

    @classmethod
    def from_config(
        cls,
        catalog: CalendarCatalog,
        store: RecordStore,
        config: Dict[str, Any],
        *,
        child: Optional[Child] = None,
    ) -> "EligibilityResolver":
        """Build a resolver using the ``language`` and ``eligibility`` config sections."""
        eligibility = config.get("eligibility", {}) or {}
        return cls(
            catalog,
            store,
            child=child,
            language=config.get("language"),
            overdue_grace_days=eligibility.get("overdue_grace_days", 0),
            respect_gender=eligibility.get("respect_gender", True),
        )

    def with_store(self, store: RecordStore) -> "EligibilityResolver":
        """Same settings over a newer record snapshot."""
        return EligibilityResolver(
            self.catalog,
            store,
            child=self.child,
            language=self.language,
            overdue_grace_days=self.overdue_grace_days,
            respect_gender=self.respect_gender,
        )

    def default_label(self, window: CalendarWindow) -> str:
        """Localized description or age label of a window, used for ordering."""
        return window_label(window, self.language)

    def next_allowed_dose(self, vaccine_id: str) -> Optional[int]:
        """One past the highest completed dose, or None once the series is done.

        Unknown vaccines yield None.
        """
        vaccine = self.catalog.vaccine(vaccine_id)
        if vaccine is None:
            return None
        completed = self.store.completed_doses(vaccine_id)
        candidate = max(completed, default=0) + 1
        if candidate > vaccine.doses_required:
            return None
        return candidate

    def windows_for_vaccine(
        self,
        vaccine_id: str,
        dose: int,
        label: Optional[WindowLabel] = None,
    ) -> List[CalendarWindow]:
        """Windows in which ``(vaccine_id, dose)`` may be recorded.

        A window qualifies when it is unconstrained or declares the dose for the
        vaccine. Results are ordered by ``label`` (the localized description or
        age label by default); the order carries no meaning beyond display.
        """
        vaccine = self.catalog.vaccine(vaccine_id)
        if vaccine is None or dose not in vaccine.dose_range:
            return []
        key = label or self.default_label
        matches = [w for w in self.catalog.windows if w.accepts(vaccine_id, dose)]
        return sorted(matches, key=key)

    def compatible_windows(
        self,
        vaccine_id: Optional[str],
        label: Optional[WindowLabel] = None,
    ) -> List[CalendarWindow]:
        """Windows that are unconstrained or list ``vaccine_id`` at all.

        With no vaccine selected every window is compatible.
        """
        key = label or self.default_label
        if vaccine_id is None:
            return sorted(self.catalog.windows, key=key)
        if self.catalog.vaccine(vaccine_id) is None:
            return []
        return sorted(
            (
                w
                for w in self.catalog.windows
                if not w.is_constrained or w.lists_vaccine(vaccine_id)
            ),
            key=key,
        )

    def vaccines_for_window(
        self, window_id: str, *, for_creation: bool = True
    ) -> List[VaccineOption]:
        """Vaccines usable with a window and the doses each may take there.

        For an unconstrained window every catalog vaccine qualifies with its
        full dose range. When ``for_creation`` is set the doses are narrowed to
        the vaccine's next allowed dose and vaccines left with nothing are
        omitted; edits keep the full declared set so existing history is not
        invalidated.
        """
        window = self.catalog.window(window_id)
        if window is None:
            return []

        if window.is_constrained:
            candidates: List[Tuple[str, Tuple[int, ...]]] = []
            for vaccine_id in dict.fromkeys(window.vaccine_ids):
                vaccine = self.catalog.vaccine(vaccine_id)
                if vaccine is None or not window.lists_vaccine(vaccine_id):
                    continue
                candidates.append((vaccine_id, tuple(sorted(window.declared_doses(vaccine_id)))))
        else:
            candidates = [(v.id, v.dose_range) for v in self.catalog.vaccines]

        options: List[VaccineOption] = []
        for vaccine_id, doses in candidates:
            if for_creation:
                next_dose = self.next_allowed_dose(vaccine_id)
                doses = tuple(d for d in doses if d == next_dose)
                if not doses:
                    continue
            options.append(VaccineOption(vaccine_id=vaccine_id, valid_doses=doses))
        return options

    def doses_for_selection(
        self, vaccine_id: Optional[str], window_id: Optional[str] = None
    ) -> Tuple[int, ...]:
        """Doses the operator may pick for a vaccine, optionally within a window.

        Returns exactly the window's declared doses when the window declares any
        for the vaccine, otherwise ``1..dosesRequired``. Never returns a dose
        outside ``1..dosesRequired``; unknown vaccines yield an empty tuple.
        """
        vaccine = self.catalog.vaccine(vaccine_id)
        if vaccine is None:
            return ()
        window = self.catalog.window(window_id)
        if window is not None:
            declared = sorted(
                d for d in window.declared_doses(vaccine.id) if d <= vaccine.doses_required
            )
            if declared:
                return tuple(declared)
        return vaccine.dose_range

    def classify_bucket(
        self, record: VaccinationRecord, now: datetime
    ) -> BucketClassification:
        """Report whether an open DUE/SCHEDULED record has passed its date.

        LATE, OVERDUE and COMPLETED records are terminal inputs here and are
        never candidates. The record's bucket is not changed; promotion to LATE
        belongs to the external scheduler.
        """
        candidate = False
        if record.bucket in (Bucket.DUE, Bucket.SCHEDULED) and record.date is not None:
            deadline = ensure_utc(record.date) + timedelta(days=self.overdue_grace_days)
            candidate = deadline < ensure_utc(now)
        return BucketClassification(
            record_id=record.id,
            bucket=record.bucket,
            is_overdue_candidate=candidate,
        )

    def overdue_candidates(self, now: datetime) -> List[VaccinationRecord]:
        """DUE/SCHEDULED records whose date has passed, oldest first."""
        candidates = []
        for bucket in (Bucket.DUE, Bucket.SCHEDULED):
            for record in self.store.bucket(bucket):
                if self.classify_bucket(record, now).is_overdue_candidate:
                    candidates.append(record)
        return sorted(candidates, key=lambda r: ensure_utc(r.date))  # type: ignore[arg-type]

    def schedulable_offers(self, label: Optional[WindowLabel] = None) -> List[DoseOffer]:
        """Next schedulable dose per vaccine, with the windows it may use.

        Vaccines whose series is complete are omitted, as are vaccines
        restricted to the other gender when the child's gender is known. An
        empty list means no vaccine is available to schedule.
        """
        gender = self.child.gender if self.child is not None else None
        offers: List[DoseOffer] = []
        for vaccine in self.catalog.vaccines:
            if self.respect_gender and not vaccine.is_suitable_for(gender):
                continue
            dose = self.next_allowed_dose(vaccine.id)
            if dose is None:
                continue
            offers.append(
                DoseOffer(
                    vaccine_id=vaccine.id,
                    vaccine_name=vaccine.name,
                    dose=dose,
                    windows=tuple(self.windows_for_vaccine(vaccine.id, dose, label)),
                )
            )
        if not offers:
            LOG.info("No vaccine available to schedule")
        return sorted(offers, key=lambda offer: offer.vaccine_name)
