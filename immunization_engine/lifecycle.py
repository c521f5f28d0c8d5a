"""Create, edit, complete and remove vaccination records.

**Validation Contract:**

Every operation validates fully against the snapshot it is given before
building the new snapshot, so a rejected operation never leaves a partial
write behind. Checks, in order:

- Bucket, vaccine and dose are present and well-formed
- Vaccine and window exist in the catalog (NotFoundError otherwise)
- Dose is selectable for the vaccine/window pair
- At creation (and on edit in authoritative mode) a constrained window must
  declare the dose for the vaccine
- Date parses to a real timestamp
- No other record claims the same ``(vaccineId, dose)`` (ConflictError)
- Open entries may not target a dose below the highest completed dose;
  COMPLETED history can be backfilled in any order

**State machine per dose slot:**

``∅ → DUE | LATE | OVERDUE | SCHEDULED → COMPLETED``. ``remove`` returns an
open slot to ``∅``. COMPLETED is terminal: edits may correct its fields but
never move it back to an open bucket.

**Error Handling:**
- Internals raise ``RecordError`` subclasses; each public method converts them
  into ``MutationResult(error=...)`` carrying the unchanged input store
- Committed mutations are logged at INFO, rejections at WARNING
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Any, Callable, Dict, Optional

from .catalog import CalendarCatalog
from .data_models import CalendarWindow, MutationResult, VaccinationRecord, Vaccine
from .eligibility import EligibilityResolver
from .enums import Bucket, WindowLinkMode
from .errors import ConflictError, NotFoundError, RecordError, ValidationError
from .record_store import RecordStore
from .utils import optional_id, parse_dose, parse_timestamp

LOG = logging.getLogger(__name__)


class _Unchanged:
    def __repr__(self) -> str:
        return "UNCHANGED"


UNCHANGED: Any = _Unchanged()


def _default_id() -> str:
    return str(uuid.uuid4())


class RecordLifecycleController:
    """Validate-then-commit mutations of a child's record snapshot.

    Parameters
    ----------
    catalog : CalendarCatalog
        Reference data the mutations are validated against.
    window_link_on_edit : WindowLinkMode
        ADVISORY (default) lets an edit keep a dose outside the linked
        window's declared set; AUTHORITATIVE applies the creation rule.
    require_window_on_create : bool
        Require a calendar window when creating open (non-COMPLETED) records.
    allow_completed_removal : bool
        Allow ``remove`` on COMPLETED records. Off by default since COMPLETED
        is terminal.
    id_factory : Callable[[], str]
        Produces ids for created records.
    """

    def __init__(
        self,
        catalog: CalendarCatalog,
        *,
        window_link_on_edit: WindowLinkMode = WindowLinkMode.ADVISORY,
        require_window_on_create: bool = False,
        allow_completed_removal: bool = False,
        id_factory: Callable[[], str] = _default_id,
    ) -> None:
        self.catalog = catalog
        self.window_link_on_edit = window_link_on_edit
        self.require_window_on_create = require_window_on_create
        self.allow_completed_removal = allow_completed_removal
        self.id_factory = id_factory

    @classmethod
    def from_config(
        cls,
        catalog: CalendarCatalog,
        config: Dict[str, Any],
        *,
        id_factory: Callable[[], str] = _default_id,
    ) -> "RecordLifecycleController":
        """Build a controller from the ``lifecycle`` config section."""
        lifecycle = config.get("lifecycle", {}) or {}
        return cls(
            catalog,
            window_link_on_edit=WindowLinkMode.from_string(
                lifecycle.get("window_link_on_edit")
            ),
            require_window_on_create=lifecycle.get("require_window_on_create", False),
            allow_completed_removal=lifecycle.get("allow_completed_removal", False),
            id_factory=id_factory,
        )

    def with_catalog(self, catalog: CalendarCatalog) -> "RecordLifecycleController":
        """Same settings validated against a refreshed catalog."""
        return RecordLifecycleController(
            catalog,
            window_link_on_edit=self.window_link_on_edit,
            require_window_on_create=self.require_window_on_create,
            allow_completed_removal=self.allow_completed_removal,
            id_factory=self.id_factory,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def create(
        self,
        store: RecordStore,
        bucket: Bucket | str,
        vaccine_id: Optional[str],
        window_id: Optional[str],
        dose: Any,
        date: Any,
        administered_by_ref: Optional[str] = None,
    ) -> MutationResult:
        """Insert a new record under ``bucket``.

        Returns
        -------
        MutationResult
            The new snapshot and created record, or the unchanged snapshot and
            a ValidationError / NotFoundError / ConflictError.
        """
        try:
            target = self._parse_bucket(bucket)
            vaccine = self._require_vaccine(vaccine_id)
            window = self._optional_window(window_id)
            if window is None and self.require_window_on_create and target.is_open:
                raise ValidationError(
                    "calendarWindowId", "A calendar window is required for this entry."
                )
            dose_value = self._require_dose(dose)
            resolver = EligibilityResolver(self.catalog, store)
            self._check_dose_selectable(resolver, vaccine, window, dose_value)
            self._check_window_covers(window, vaccine, dose_value)
            moment = self._require_date(date, target)
            self._check_unclaimed(store, vaccine, dose_value, exclude_id=None)
            if target.is_open:
                self._check_sequence(resolver, vaccine, dose_value)

            record = VaccinationRecord(
                id=self.id_factory(),
                bucket=target,
                vaccine_id=vaccine.id,
                vaccine_name=vaccine.name,
                dose=dose_value,
                calendar_window_id=window.id if window else None,
                date=moment,
                administered_by_ref=optional_id(administered_by_ref),
            )
            new_store = store.insert(record)
        except RecordError as exc:
            return self._rejected("create", store, exc)

        LOG.info(
            "Created %s record %s: %s dose %d",
            record.bucket.value,
            record.id,
            record.vaccine_id,
            record.dose,
        )
        return MutationResult(store=new_store, record=record)

    def edit(
        self,
        store: RecordStore,
        record_id: str,
        *,
        bucket: Any = UNCHANGED,
        vaccine_id: Any = UNCHANGED,
        window_id: Any = UNCHANGED,
        dose: Any = UNCHANGED,
        date: Any = UNCHANGED,
        administered_by_ref: Any = UNCHANGED,
    ) -> MutationResult:
        """Change the requested fields of an existing record.

        Fields left as ``UNCHANGED`` keep their current value. The record being
        edited is excluded from its own duplicate-dose check. Moving between
        open buckets is allowed; moving into COMPLETED must go through
        ``complete`` and COMPLETED records cannot be reopened. Moving an open
        record to another vaccine or dose is subject to the same completed-dose
        ordering as ``create``.
        """
        try:
            current = store.get(record_id)
            if current is None:
                raise NotFoundError("recordId", f"Record {record_id} no longer exists.")

            target = current.bucket if bucket is UNCHANGED else self._parse_bucket(bucket)
            if current.bucket is Bucket.COMPLETED and target is not Bucket.COMPLETED:
                raise ValidationError(
                    "bucket", "Completed records cannot be moved back to an open bucket."
                )
            if current.bucket.is_open and target is Bucket.COMPLETED:
                raise ValidationError(
                    "bucket", "Use complete() to record an administered dose."
                )

            vaccine = self._require_vaccine(
                current.vaccine_id if vaccine_id is UNCHANGED else vaccine_id
            )
            window = self._optional_window(
                current.calendar_window_id if window_id is UNCHANGED else window_id
            )
            dose_value = self._require_dose(current.dose if dose is UNCHANGED else dose)

            resolver = EligibilityResolver(self.catalog, store)
            if self.window_link_on_edit is WindowLinkMode.AUTHORITATIVE:
                self._check_dose_selectable(resolver, vaccine, window, dose_value)
                self._check_window_covers(window, vaccine, dose_value)
            else:
                self._check_dose_in_series(vaccine, dose_value)

            moment = (
                current.date
                if date is UNCHANGED and bucket is UNCHANGED
                else self._require_date(current.date if date is UNCHANGED else date, target)
            )
            self._check_unclaimed(store, vaccine, dose_value, exclude_id=current.id)
            moved_slot = (vaccine.id, dose_value) != (current.vaccine_id, current.dose)
            if target.is_open and moved_slot:
                self._check_sequence(resolver, vaccine, dose_value)

            updated = replace(
                current,
                bucket=target,
                vaccine_id=vaccine.id,
                vaccine_name=vaccine.name,
                dose=dose_value,
                calendar_window_id=window.id if window else None,
                date=moment,
                administered_by_ref=(
                    current.administered_by_ref
                    if administered_by_ref is UNCHANGED
                    else optional_id(administered_by_ref)
                ),
            )
            new_store = store.update(updated)
        except RecordError as exc:
            return self._rejected("edit", store, exc)

        LOG.info("Edited record %s (%s)", updated.id, updated.bucket.value)
        return MutationResult(store=new_store, record=updated)

    def complete(
        self,
        store: RecordStore,
        record_id: str,
        completion_date: Any,
        administered_by_ref: Optional[str] = None,
    ) -> MutationResult:
        """Move an open record to COMPLETED in one step.

        The completed record keeps the id, vaccine, dose and window of the
        originating record, with ``date`` set to the administration date.
        Completing a dose that already has a COMPLETED record is a
        ConflictError and leaves the store unchanged.
        """
        try:
            current = store.get(record_id)
            if current is None:
                raise NotFoundError("recordId", f"Record {record_id} no longer exists.")
            if current.bucket is Bucket.COMPLETED:
                raise ConflictError(
                    "recordId",
                    f"Dose {current.dose} of {current.vaccine_name} is already completed.",
                )
            for other in store.claims(current.vaccine_id, current.dose, exclude_id=current.id):
                if other.bucket is Bucket.COMPLETED:
                    raise ConflictError(
                        "dose",
                        f"Dose {current.dose} of {current.vaccine_name} is already completed.",
                    )

            moment = self._require_date(completion_date, Bucket.COMPLETED)
            completed = replace(
                current,
                bucket=Bucket.COMPLETED,
                date=moment,
                administered_by_ref=(
                    optional_id(administered_by_ref) or current.administered_by_ref
                ),
            )
            new_store = store.replace(current.id, completed)
        except RecordError as exc:
            return self._rejected("complete", store, exc)

        LOG.info(
            "Completed %s dose %d (record %s, was %s)",
            completed.vaccine_id,
            completed.dose,
            completed.id,
            current.bucket.value,
        )
        return MutationResult(store=new_store, record=completed)

    def remove(self, store: RecordStore, record_id: str) -> MutationResult:
        """Delete a record from whichever bucket holds it; other records are untouched."""
        try:
            current = store.get(record_id)
            if current is None:
                raise NotFoundError("recordId", f"Record {record_id} no longer exists.")
            if current.bucket is Bucket.COMPLETED and not self.allow_completed_removal:
                raise ConflictError(
                    "recordId", "Completed records are final and cannot be removed."
                )
            new_store = store.remove(record_id)
        except RecordError as exc:
            return self._rejected("remove", store, exc)

        LOG.info("Removed %s record %s", current.bucket.value, current.id)
        return MutationResult(store=new_store, record=current)

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _rejected(operation: str, store: RecordStore, exc: RecordError) -> MutationResult:
        LOG.warning(
            "Rejected %s (%s) on %s: %s", operation, exc.kind.value, exc.field, exc.reason
        )
        return MutationResult(store=store, error=exc)

    @staticmethod
    def _parse_bucket(bucket: Any) -> Bucket:
        try:
            return Bucket.from_string(bucket)
        except ValueError as exc:
            raise ValidationError("bucket", str(exc)) from exc

    def _require_vaccine(self, vaccine_id: Any) -> Vaccine:
        vaccine_key = optional_id(vaccine_id)
        if vaccine_key is None:
            raise ValidationError("vaccineId", "Please select a vaccine.")
        vaccine = self.catalog.vaccine(vaccine_key)
        if vaccine is None:
            raise NotFoundError("vaccineId", f"Vaccine {vaccine_key} is no longer available.")
        return vaccine

    def _optional_window(self, window_id: Any) -> Optional[CalendarWindow]:
        window_key = optional_id(window_id)
        if window_key is None:
            return None
        window = self.catalog.window(window_key)
        if window is None:
            raise NotFoundError(
                "calendarWindowId", f"Calendar window {window_key} is no longer available."
            )
        return window

    @staticmethod
    def _require_dose(dose: Any) -> int:
        if dose is None or dose == "":
            raise ValidationError("dose", "A dose is required.")
        value = parse_dose(dose)
        if value is None:
            raise ValidationError("dose", "The dose must be a positive integer.")
        return value

    @staticmethod
    def _require_date(value: Any, bucket: Bucket) -> Any:
        moment = parse_timestamp(value)
        if moment is None:
            if value is None or value == "":
                raise ValidationError("date", f"{bucket.date_field} is required.")
            raise ValidationError("date", f"{bucket.date_field} is not a valid date.")
        return moment

    @staticmethod
    def _check_dose_in_series(vaccine: Vaccine, dose: int) -> None:
        if dose > vaccine.doses_required:
            raise ValidationError(
                "dose",
                f"{vaccine.name} requires {vaccine.doses_required} dose(s); "
                f"dose {dose} is out of range.",
            )

    def _check_dose_selectable(
        self,
        resolver: EligibilityResolver,
        vaccine: Vaccine,
        window: Optional[CalendarWindow],
        dose: int,
    ) -> None:
        available = resolver.doses_for_selection(vaccine.id, window.id if window else None)
        if dose in available:
            return
        if window is not None and window.declared_doses(vaccine.id):
            raise ValidationError(
                "dose",
                f"Dose {dose} is not available in the selected window. "
                f"Available doses: {', '.join(str(d) for d in available)}.",
            )
        self._check_dose_in_series(vaccine, dose)

    @staticmethod
    def _check_window_covers(
        window: Optional[CalendarWindow], vaccine: Vaccine, dose: int
    ) -> None:
        if window is not None and not window.accepts(vaccine.id, dose):
            raise ValidationError(
                "calendarWindowId",
                f"The selected window does not cover dose {dose} of {vaccine.name}.",
            )

    @staticmethod
    def _check_unclaimed(
        store: RecordStore, vaccine: Vaccine, dose: int, exclude_id: Optional[str]
    ) -> None:
        for other in store.claims(vaccine.id, dose, exclude_id=exclude_id):
            if other.bucket is Bucket.COMPLETED:
                raise ConflictError(
                    "dose", f"Dose {dose} of {vaccine.name} is already completed."
                )
            raise ConflictError(
                "dose",
                f"Dose {dose} of {vaccine.name} is already recorded as "
                f"{other.bucket.value} ({other.id}).",
            )

    @staticmethod
    def _check_sequence(resolver: EligibilityResolver, vaccine: Vaccine, dose: int) -> None:
        completed = resolver.store.completed_doses(vaccine.id)
        if completed and dose < max(completed):
            raise ValidationError(
                "dose",
                f"Dose {dose} of {vaccine.name} precedes the last completed dose "
                f"({max(completed)}).",
            )
