"""Unit tests for lifecycle module - create, edit, complete and remove.

Tests cover:
- Validation order and the typed error returned for each failure
- Duplicate-dose conflicts across buckets
- Window link authoritative at creation, advisory on edit by default
- Completion idempotence and terminal COMPLETED records
- Configuration-driven controller settings

Real-world significance:
- A rejected operation must leave the snapshot untouched
- A dose slot may be claimed by at most one record
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import pytest

from immunization_engine.catalog import CalendarCatalog
from immunization_engine.enums import Bucket, EngineErrorKind, WindowLinkMode
from immunization_engine.errors import ConflictError, NotFoundError, ValidationError
from immunization_engine.lifecycle import RecordLifecycleController
from immunization_engine.record_store import RecordStore
from tests.fixtures import sample_input

make = sample_input.create_test_record
WHEN = "2025-01-10T09:00:00Z"


@pytest.mark.unit
class TestCreate:
    """Unit tests for RecordLifecycleController.create."""

    def test_create_then_duplicate_conflicts(
        self, controller: RecordLifecycleController, empty_store: RecordStore
    ) -> None:
        """Verify a second DUE for BCG dose 1 is a conflict.

        Real-world significance:
        - BCG is a single-dose vaccine; two open entries would double-book it
        """
        first = controller.create(empty_store, Bucket.DUE, "BCG", None, 1, WHEN)
        assert first.ok
        assert first.record.id == "rec-1"
        assert first.record.bucket is Bucket.DUE
        assert first.record.vaccine_name == "BCG"
        assert first.record.date == datetime(2025, 1, 10, 9, tzinfo=timezone.utc)
        assert first.store.bucket(Bucket.DUE) == (first.record,)

        second = controller.create(first.store, Bucket.DUE, "BCG", None, 1, WHEN)
        assert not second.ok
        assert isinstance(second.error, ConflictError)
        assert second.error.kind is EngineErrorKind.CONFLICT
        assert second.store == first.store

    def test_completed_dose_cannot_be_recreated(
        self, controller: RecordLifecycleController, penta_dose1_completed: RecordStore
    ) -> None:
        rejected = controller.create(penta_dose1_completed, "due", "Penta", None, 1, WHEN)
        assert isinstance(rejected.error, ConflictError)
        assert "already completed" in rejected.error.reason
        assert rejected.store is penta_dose1_completed

        accepted = controller.create(penta_dose1_completed, "due", "Penta", None, 2, WHEN)
        assert accepted.ok
        assert accepted.record.dose == 2

    def test_conflict_with_any_open_bucket(
        self, controller: RecordLifecycleController
    ) -> None:
        store = RecordStore([make("late-1", "late", "Polio", 2, "W")])
        result = controller.create(store, "scheduled", "Polio", "W", 2, WHEN)
        assert isinstance(result.error, ConflictError)
        assert result.error.field == "dose"
        assert "late" in result.error.reason

    def test_dose_must_be_declared_by_window(
        self, controller: RecordLifecycleController, empty_store: RecordStore
    ) -> None:
        """Verify window W only accepts Polio dose 2.

        Real-world significance:
        - Recording dose 1 at the 10-week visit would contradict the calendar
        """
        result = controller.create(empty_store, "due", "Polio", "W", 1, WHEN)
        assert isinstance(result.error, ValidationError)
        assert result.error.field == "dose"
        assert "Available doses: 2" in result.error.reason

    def test_window_not_listing_vaccine_rejected(
        self, controller: RecordLifecycleController, empty_store: RecordStore
    ) -> None:
        result = controller.create(empty_store, "due", "Polio", "6w", 1, WHEN)
        assert isinstance(result.error, ValidationError)
        assert result.error.field == "calendarWindowId"

    def test_unconstrained_window_accepts_any_dose(
        self, controller: RecordLifecycleController, empty_store: RecordStore
    ) -> None:
        result = controller.create(empty_store, "scheduled", "Polio", "catchup", 1, WHEN)
        assert result.ok
        assert result.record.calendar_window_id == "catchup"

    def test_dose_out_of_range(
        self, controller: RecordLifecycleController, empty_store: RecordStore
    ) -> None:
        result = controller.create(empty_store, "due", "BCG", None, 2, WHEN)
        assert isinstance(result.error, ValidationError)
        assert result.error.field == "dose"
        assert "requires 1 dose" in result.error.reason

    @pytest.mark.parametrize("dose", [None, "", 0, "first"])
    def test_invalid_dose(
        self, controller: RecordLifecycleController, empty_store: RecordStore, dose
    ) -> None:
        result = controller.create(empty_store, "due", "BCG", None, dose, WHEN)
        assert isinstance(result.error, ValidationError)
        assert result.error.field == "dose"

    def test_dose_string_is_parsed(
        self, controller: RecordLifecycleController, empty_store: RecordStore
    ) -> None:
        result = controller.create(empty_store, "due", "Polio", None, "2", WHEN)
        assert result.ok
        assert result.record.dose == 2

    @pytest.mark.parametrize("when", [None, "", "next tuesday"])
    def test_invalid_date(
        self, controller: RecordLifecycleController, empty_store: RecordStore, when
    ) -> None:
        result = controller.create(empty_store, "due", "BCG", None, 1, when)
        assert isinstance(result.error, ValidationError)
        assert result.error.field == "date"
        assert "scheduledFor" in result.error.reason

    def test_missing_vaccine_is_validation_error(
        self, controller: RecordLifecycleController, empty_store: RecordStore
    ) -> None:
        result = controller.create(empty_store, "due", None, None, 1, WHEN)
        assert isinstance(result.error, ValidationError)
        assert result.error.field == "vaccineId"

    def test_unknown_vaccine_and_window_not_found(
        self, controller: RecordLifecycleController, empty_store: RecordStore
    ) -> None:
        """Verify stale ids are reported as no longer available.

        Real-world significance:
        - The catalog may have changed since the form was rendered
        """
        vaccine = controller.create(empty_store, "due", "Rotavirus", None, 1, WHEN)
        assert isinstance(vaccine.error, NotFoundError)
        assert vaccine.error.field == "vaccineId"

        window = controller.create(empty_store, "due", "BCG", "gone", 1, WHEN)
        assert isinstance(window.error, NotFoundError)
        assert window.error.field == "calendarWindowId"

    def test_invalid_bucket(
        self, controller: RecordLifecycleController, empty_store: RecordStore
    ) -> None:
        result = controller.create(empty_store, "pending", "BCG", None, 1, WHEN)
        assert isinstance(result.error, ValidationError)
        assert result.error.field == "bucket"

    def test_dose_before_last_completed_rejected(
        self, controller: RecordLifecycleController
    ) -> None:
        store = RecordStore([make("c2", "completed", "Polio", 2, "W")])
        result = controller.create(store, "due", "Polio", None, 1, WHEN)
        assert isinstance(result.error, ValidationError)
        assert "precedes" in result.error.reason

    def test_earlier_completed_dose_can_be_backfilled(
        self, controller: RecordLifecycleController
    ) -> None:
        store = RecordStore([make("c2", "completed", "Polio", 2, "W")])
        result = controller.create(store, "completed", "Polio", "birth", 1, "2024-11-02")
        assert result.ok
        assert result.store.completed_doses("Polio") == frozenset({1, 2})

    def test_completed_history_can_be_backfilled(
        self, controller: RecordLifecycleController, empty_store: RecordStore
    ) -> None:
        result = controller.create(
            empty_store, "completed", "BCG", "birth", 1, "2024-11-02", "agent-7"
        )
        assert result.ok
        assert result.record.bucket is Bucket.COMPLETED
        assert result.record.administered_by_ref == "agent-7"

    def test_window_required_when_configured(
        self, catalog: CalendarCatalog, empty_store: RecordStore
    ) -> None:
        controller = RecordLifecycleController(catalog, require_window_on_create=True)
        result = controller.create(empty_store, "due", "BCG", None, 1, WHEN)
        assert isinstance(result.error, ValidationError)
        assert result.error.field == "calendarWindowId"

        completed = controller.create(empty_store, "completed", "BCG", None, 1, WHEN)
        assert completed.ok

    def test_default_ids_are_unique(
        self, catalog: CalendarCatalog, empty_store: RecordStore
    ) -> None:
        controller = RecordLifecycleController(catalog)
        first = controller.create(empty_store, "due", "BCG", None, 1, WHEN)
        second = controller.create(first.store, "due", "Polio", None, 1, WHEN)
        assert first.record.id != second.record.id

    def test_rejection_is_logged(
        self,
        controller: RecordLifecycleController,
        empty_store: RecordStore,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="immunization_engine.lifecycle"):
            controller.create(empty_store, "due", "Rotavirus", None, 1, WHEN)
        assert "Rejected create (not_found)" in caplog.text


@pytest.mark.unit
class TestEdit:
    """Unit tests for RecordLifecycleController.edit."""

    def test_edit_date_keeps_identity(self, controller: RecordLifecycleController) -> None:
        store = RecordStore([make("d", "due", "Polio", 2, "W")])
        result = controller.edit(store, "d", date="2025-01-17T09:00:00Z")
        assert result.ok
        assert result.record.id == "d"
        assert result.record.date == datetime(2025, 1, 17, 9, tzinfo=timezone.utc)
        assert result.record.calendar_window_id == "W"
        assert len(result.store) == 1

    def test_edit_excludes_itself_from_duplicate_check(
        self, controller: RecordLifecycleController
    ) -> None:
        """Verify re-saving a record with its own dose is allowed.

        Real-world significance:
        - Editing the date of Polio dose 2 must not conflict with itself
        """
        store = RecordStore([make("d", "due", "Polio", 2, "W")])
        assert controller.edit(store, "d", dose=2).ok

    def test_edit_into_claimed_dose_conflicts(
        self, controller: RecordLifecycleController
    ) -> None:
        store = RecordStore(
            [make("a", "due", "Polio", 1), make("b", "scheduled", "Polio", 2)]
        )
        result = controller.edit(store, "a", dose=2)
        assert isinstance(result.error, ConflictError)
        assert result.store is store

    def test_move_between_open_buckets(self, controller: RecordLifecycleController) -> None:
        store = RecordStore([make("d", "due", "Polio", 2, "W")])
        result = controller.edit(store, "d", bucket="scheduled")
        assert result.record.bucket is Bucket.SCHEDULED
        assert result.store.bucket(Bucket.DUE) == ()

    def test_completed_cannot_be_reopened(self, controller: RecordLifecycleController) -> None:
        """Verify COMPLETED is terminal.

        Real-world significance:
        - An administered dose cannot become "due" again
        """
        store = RecordStore([make("c", "completed", "BCG", 1)])
        result = controller.edit(store, "c", bucket="due")
        assert isinstance(result.error, ValidationError)
        assert result.error.field == "bucket"

    def test_completion_must_use_complete(self, controller: RecordLifecycleController) -> None:
        store = RecordStore([make("d", "due", "BCG", 1)])
        result = controller.edit(store, "d", bucket="completed")
        assert isinstance(result.error, ValidationError)
        assert "complete()" in result.error.reason

    def test_completed_fields_can_be_corrected(
        self, controller: RecordLifecycleController
    ) -> None:
        store = RecordStore([make("c", "completed", "BCG", 1)])
        result = controller.edit(store, "c", date="2024-11-03", administered_by_ref="agent-9")
        assert result.ok
        assert result.record.bucket is Bucket.COMPLETED
        assert result.record.administered_by_ref == "agent-9"

    def test_window_link_is_advisory_by_default(
        self, controller: RecordLifecycleController
    ) -> None:
        """Verify an edit may keep a dose outside the window's declared set.

        Real-world significance:
        - Correcting a historical dose must not force re-linking the window
        """
        store = RecordStore([make("d", "due", "Polio", 2, "W")])
        result = controller.edit(store, "d", dose=3)
        assert result.ok
        assert result.record.calendar_window_id == "W"

        out_of_series = controller.edit(store, "d", dose=4)
        assert isinstance(out_of_series.error, ValidationError)

    def test_authoritative_window_link_on_edit(self, catalog: CalendarCatalog) -> None:
        controller = RecordLifecycleController(
            catalog, window_link_on_edit=WindowLinkMode.AUTHORITATIVE
        )
        store = RecordStore([make("d", "due", "Polio", 2, "W")])
        result = controller.edit(store, "d", dose=3)
        assert isinstance(result.error, ValidationError)
        assert result.error.field == "dose"

    def test_clearing_window(self, controller: RecordLifecycleController) -> None:
        store = RecordStore([make("d", "due", "Polio", 2, "W")])
        result = controller.edit(store, "d", window_id=None)
        assert result.record.calendar_window_id is None

    def test_change_vaccine(self, controller: RecordLifecycleController) -> None:
        store = RecordStore([make("d", "due", "Polio", 1)])
        result = controller.edit(store, "d", vaccine_id="Penta")
        assert result.record.vaccine_id == "Penta"
        assert result.record.vaccine_name == "Pentavalent"

    def test_move_below_completed_dose_rejected(
        self, controller: RecordLifecycleController
    ) -> None:
        """Verify an open record cannot be moved behind the completed history.

        Real-world significance:
        - With Penta dose 3 administered, re-labelling a BCG entry as Penta
          dose 2 would reopen a dose the child already passed
        """
        store = RecordStore([make("c3", "completed", "Penta", 3), make("d", "due", "BCG", 1)])
        result = controller.edit(store, "d", vaccine_id="Penta", dose=2)
        assert isinstance(result.error, ValidationError)
        assert result.error.field == "dose"
        assert "precedes" in result.error.reason
        assert result.store is store

    def test_date_edit_on_out_of_order_record_allowed(
        self, controller: RecordLifecycleController
    ) -> None:
        store = RecordStore([make("c3", "completed", "Penta", 3), make("d", "due", "Penta", 1)])
        result = controller.edit(store, "d", date="2025-01-17T09:00:00Z")
        assert result.ok

    def test_invalid_date_on_edit(self, controller: RecordLifecycleController) -> None:
        store = RecordStore([make("d", "due", "Polio", 1)])
        result = controller.edit(store, "d", date="soon")
        assert isinstance(result.error, ValidationError)
        assert result.error.field == "date"

    def test_unknown_record(self, controller: RecordLifecycleController) -> None:
        result = controller.edit(RecordStore(), "missing", dose=1)
        assert isinstance(result.error, NotFoundError)
        assert result.error.field == "recordId"


@pytest.mark.unit
class TestComplete:
    """Unit tests for RecordLifecycleController.complete."""

    def test_complete_moves_record(self, controller: RecordLifecycleController) -> None:
        store = RecordStore([make("s", "scheduled", "Penta", 2, "14w")])
        result = controller.complete(store, "s", "2025-02-07T10:00:00Z", "agent-3")
        assert result.ok
        record = result.record
        assert record.id == "s"
        assert record.bucket is Bucket.COMPLETED
        assert record.dose == 2
        assert record.calendar_window_id == "14w"
        assert record.date == datetime(2025, 2, 7, 10, tzinfo=timezone.utc)
        assert record.administered_by_ref == "agent-3"
        assert result.store.bucket(Bucket.SCHEDULED) == ()
        assert len(result.store) == 1

    def test_complete_twice_conflicts(self, controller: RecordLifecycleController) -> None:
        """Verify completion is idempotent.

        Real-world significance:
        - A double-submitted completion must not create a second dose
        """
        store = RecordStore([make("s", "scheduled", "Penta", 2, "14w")])
        first = controller.complete(store, "s", "2025-02-07")
        second = controller.complete(first.store, "s", "2025-02-08")
        assert isinstance(second.error, ConflictError)
        assert second.store == first.store

    def test_existing_completed_claim_conflicts(
        self, controller: RecordLifecycleController
    ) -> None:
        store = RecordStore(
            [make("c", "completed", "Penta", 2), make("d", "due", "Penta", 2)]
        )
        result = controller.complete(store, "d", "2025-02-07")
        assert isinstance(result.error, ConflictError)
        assert result.store is store

    def test_invalid_completion_date(self, controller: RecordLifecycleController) -> None:
        store = RecordStore([make("d", "due", "BCG", 1)])
        result = controller.complete(store, "d", "yesterday")
        assert isinstance(result.error, ValidationError)
        assert "administeredAt" in result.error.reason

    def test_unknown_record(self, controller: RecordLifecycleController) -> None:
        assert isinstance(controller.complete(RecordStore(), "x", WHEN).error, NotFoundError)

    def test_completion_keeps_previous_administrator(
        self, controller: RecordLifecycleController
    ) -> None:
        store = RecordStore([make("d", "overdue", "BCG", 1, administered_by_ref="agent-1")])
        result = controller.complete(store, "d", WHEN)
        assert result.record.administered_by_ref == "agent-1"


@pytest.mark.unit
class TestRemove:
    """Unit tests for RecordLifecycleController.remove."""

    def test_remove_open_record(self, controller: RecordLifecycleController) -> None:
        store = RecordStore([make("a", "due", "BCG", 1), make("b", "late", "Polio", 1)])
        result = controller.remove(store, "a")
        assert result.ok
        assert result.record.id == "a"
        assert [r.id for r in result.store] == ["b"]

    def test_remove_unknown(self, controller: RecordLifecycleController) -> None:
        assert isinstance(controller.remove(RecordStore(), "x").error, NotFoundError)

    def test_completed_is_final(self, controller: RecordLifecycleController) -> None:
        store = RecordStore([make("c", "completed", "BCG", 1)])
        result = controller.remove(store, "c")
        assert isinstance(result.error, ConflictError)
        assert result.store is store

    def test_completed_removal_when_allowed(self, catalog: CalendarCatalog) -> None:
        controller = RecordLifecycleController(catalog, allow_completed_removal=True)
        store = RecordStore([make("c", "completed", "BCG", 1)])
        assert len(controller.remove(store, "c").store) == 0


@pytest.mark.unit
class TestControllerConfig:
    """Unit tests for from_config and with_catalog."""

    def test_from_config(self, catalog: CalendarCatalog, default_config) -> None:
        default_config["lifecycle"] = {
            "window_link_on_edit": "authoritative",
            "require_window_on_create": True,
            "allow_completed_removal": True,
        }
        controller = RecordLifecycleController.from_config(catalog, default_config)
        assert controller.window_link_on_edit is WindowLinkMode.AUTHORITATIVE
        assert controller.require_window_on_create is True
        assert controller.allow_completed_removal is True

    def test_from_config_defaults(self, catalog: CalendarCatalog) -> None:
        controller = RecordLifecycleController.from_config(catalog, {})
        assert controller.window_link_on_edit is WindowLinkMode.ADVISORY
        assert controller.require_window_on_create is False

    def test_with_catalog_revalidates_against_new_snapshot(
        self, controller: RecordLifecycleController
    ) -> None:
        """Verify a refreshed catalog is used for validation.

        Real-world significance:
        - A vaccine withdrawn from the catalog can no longer be recorded
        """
        reduced = CalendarCatalog([controller.catalog.vaccine("BCG")], [])
        refreshed = controller.with_catalog(reduced)
        result = refreshed.create(RecordStore(), "due", "Polio", None, 1, WHEN)
        assert isinstance(result.error, NotFoundError)
        assert refreshed.id_factory is controller.id_factory


@pytest.mark.unit
class TestErrors:
    """Unit tests for structured error payloads."""

    def test_to_dict(self) -> None:
        error = ConflictError("dose", "Dose 1 of BCG is already completed.")
        assert error.to_dict() == {
            "kind": "conflict",
            "field": "dose",
            "reason": "Dose 1 of BCG is already completed.",
        }

    def test_equality(self) -> None:
        assert ValidationError("dose", "x") == ValidationError("dose", "x")
        assert ValidationError("dose", "x") != ConflictError("dose", "x")
