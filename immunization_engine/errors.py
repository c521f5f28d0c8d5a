"""Structured errors for record lifecycle operations.

Nothing in the engine is fatal. Lifecycle operations raise these internally
while validating and convert them into a ``MutationResult`` at their public
boundary, so callers always receive either a new snapshot or a typed error
with the offending field.
"""

from __future__ import annotations

from typing import Dict

from .enums import EngineErrorKind


class RecordError(Exception):
    """Base class for recoverable, field-level lifecycle errors.

    Parameters
    ----------
    field : str
        Name of the offending input field (wire name, e.g. ``vaccineId``).
    reason : str
        Human-readable explanation suitable for operator feedback.
    """

    kind: EngineErrorKind = EngineErrorKind.VALIDATION

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind.value, "field": self.field, "reason": self.reason}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RecordError):
            return NotImplemented
        return (self.kind, self.field, self.reason) == (
            other.kind,
            other.field,
            other.reason,
        )

    def __hash__(self) -> int:
        return hash((self.kind, self.field, self.reason))


class ValidationError(RecordError):
    """Dose out of range, unparsable date, missing required field."""

    kind = EngineErrorKind.VALIDATION


class NotFoundError(RecordError):
    """Referenced vaccine, window or record is absent from the snapshot.

    Callers should offer to re-fetch the catalog or the child's records.
    """

    kind = EngineErrorKind.NOT_FOUND


class ConflictError(RecordError):
    """Dose already claimed by another record, or already completed."""

    kind = EngineErrorKind.CONFLICT
