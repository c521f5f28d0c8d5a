"""Cascading vaccine / window / dose selection for manual record entry.

The selection is an explicit value object. Each operator action is an event,
and ``CascadingSelector.apply`` returns a new selector whose state has been
narrowed so that the ``(vaccine, window, dose)`` triple is always internally
consistent:

1. Window changed: a constrained window that does not list the current
   vaccine clears vaccine and dose; otherwise the vaccine is kept.
2. Vaccine changed: the dose resets to the first selectable dose, and a
   constrained window that does not list the new vaccine is cleared.
3. Dose changed: accepted when it is one of the selectable doses.

After every event a dose that is not selectable is reset to the first
selectable dose, never left dangling.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List, Optional, Tuple, Union

from .data_models import CalendarWindow, VaccinationRecord, Vaccine
from .eligibility import EligibilityResolver


@dataclass(frozen=True)
class SelectionState:
    """Transient ``{vaccine_id, window_id, dose}`` triple of an open form."""

    vaccine_id: Optional[str] = None
    window_id: Optional[str] = None
    dose: Optional[int] = None


@dataclass(frozen=True)
class WindowChanged:
    window_id: Optional[str]


@dataclass(frozen=True)
class VaccineChanged:
    vaccine_id: Optional[str]


@dataclass(frozen=True)
class DoseChanged:
    dose: Optional[int]


SelectionEvent = Union[WindowChanged, VaccineChanged, DoseChanged]


def _normalize_dose(
    resolver: EligibilityResolver, state: SelectionState
) -> SelectionState:
    if state.vaccine_id is None:
        return replace(state, dose=None)
    options = resolver.doses_for_selection(state.vaccine_id, state.window_id)
    if not options:
        return replace(state, dose=None)
    if state.dose not in options:
        return replace(state, dose=options[0])
    return state


def transition(
    resolver: EligibilityResolver,
    state: SelectionState,
    event: SelectionEvent,
) -> SelectionState:
    """Pure state transition for one selection event."""
    catalog = resolver.catalog

    if isinstance(event, WindowChanged):
        window = catalog.window(event.window_id)
        window_id = window.id if window is not None else None
        next_state = replace(state, window_id=window_id)
        if (
            window is not None
            and window.is_constrained
            and state.vaccine_id is not None
            and not window.lists_vaccine(state.vaccine_id)
        ):
            next_state = replace(next_state, vaccine_id=None, dose=None)

    elif isinstance(event, VaccineChanged):
        vaccine = catalog.vaccine(event.vaccine_id)
        vaccine_id = vaccine.id if vaccine is not None else None
        window = catalog.window(state.window_id)
        window_id = state.window_id
        if (
            window is not None
            and window.is_constrained
            and vaccine_id is not None
            and not window.lists_vaccine(vaccine_id)
        ):
            window_id = None
        doses = resolver.doses_for_selection(vaccine_id, window_id)
        next_state = SelectionState(
            vaccine_id=vaccine_id,
            window_id=window_id,
            dose=doses[0] if doses else None,
        )

    elif isinstance(event, DoseChanged):
        next_state = replace(state, dose=event.dose)

    else:
        raise TypeError(f"Unknown selection event: {event!r}")

    return _normalize_dose(resolver, next_state)


@dataclass(frozen=True)
class CascadingSelector:
    """Selection helper bound to an eligibility snapshot.

    Parameters
    ----------
    resolver : EligibilityResolver
        Snapshot the option lists are computed from.
    state : SelectionState
        Current selection. Not normalized on construction, so an edit form
        can open on a record's historical values unchanged.
    creating : bool
        True for a new record: vaccine options for a window are narrowed to
        each vaccine's next allowed dose.
    """

    resolver: EligibilityResolver
    state: SelectionState = SelectionState()
    creating: bool = True

    @classmethod
    def for_record(
        cls, resolver: EligibilityResolver, record: VaccinationRecord
    ) -> "CascadingSelector":
        """Selector opened on an existing record for editing."""
        return cls(
            resolver=resolver,
            state=SelectionState(
                vaccine_id=record.vaccine_id,
                window_id=record.calendar_window_id,
                dose=record.dose,
            ),
            creating=False,
        )

    def apply(self, event: SelectionEvent) -> "CascadingSelector":
        return replace(self, state=transition(self.resolver, self.state, event))

    def select_window(self, window_id: Optional[str]) -> "CascadingSelector":
        return self.apply(WindowChanged(window_id))

    def select_vaccine(self, vaccine_id: Optional[str]) -> "CascadingSelector":
        return self.apply(VaccineChanged(vaccine_id))

    def select_dose(self, dose: Optional[int]) -> "CascadingSelector":
        return self.apply(DoseChanged(dose))

    @property
    def free_dose_entry(self) -> bool:
        """True when no selected window declares doses for the selected vaccine."""
        window = self.resolver.catalog.window(self.state.window_id)
        if window is None or self.state.vaccine_id is None:
            return True
        return not window.declared_doses(self.state.vaccine_id)

    @property
    def is_complete(self) -> bool:
        """True when a vaccine and a selectable dose are both chosen and the
        selected window, if any, covers that dose."""
        if self.state.vaccine_id is None or self.state.dose is None:
            return False
        if self.state.dose not in self.dose_options():
            return False
        window = self.resolver.catalog.window(self.state.window_id)
        return window is None or window.accepts(self.state.vaccine_id, self.state.dose)

    def window_options(self) -> List[CalendarWindow]:
        """Windows compatible with the selected vaccine (all when none selected)."""
        return self.resolver.compatible_windows(self.state.vaccine_id)

    def vaccine_options(self) -> List[Vaccine]:
        """Vaccines usable with the selected window (whole catalog when none)."""
        catalog = self.resolver.catalog
        if self.state.window_id is None:
            return list(catalog.vaccines)
        options = self.resolver.vaccines_for_window(
            self.state.window_id, for_creation=self.creating
        )
        vaccines = [catalog.vaccine(option.vaccine_id) for option in options]
        return [v for v in vaccines if v is not None]

    def dose_options(self) -> Tuple[int, ...]:
        return self.resolver.doses_for_selection(self.state.vaccine_id, self.state.window_id)
