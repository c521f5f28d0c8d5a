"""Authoritative set of vaccination records for one child.

Records from all five buckets live in one collection keyed by record id, so
the dose-uniqueness rules can be checked in one place. The store is an
immutable snapshot: ``insert``, ``update``, ``remove`` and ``replace`` return a
new store and leave the original untouched.

**Input Contract (``load_records``):**
- ``GET child/{id}/vaccinations`` payload with ``due``, ``scheduled``,
  ``late``, ``overdue`` and ``completed`` arrays (optionally nested under
  ``vaccinations``)
- Each entry: ``id, vaccineId, vaccineName, dose, calendarId`` plus the
  bucket's date field (``scheduledFor``, ``dueDate`` or ``administeredAt``)
- Missing dose defaults to 1; entries without id or vaccine are skipped
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from .data_models import VaccinationRecord
from .enums import Bucket
from .utils import isoformat_or_none, optional_id, parse_dose, parse_timestamp, string_or_empty

LOG = logging.getLogger(__name__)


def _sort_key(record: VaccinationRecord) -> tuple:
    # Undated records sort last; ties break on vaccine name then dose.
    return (
        record.date is None,
        record.date.timestamp() if record.date else 0.0,
        record.vaccine_name,
        record.dose,
    )


class RecordStore:
    """Immutable snapshot of one child's vaccination records.

    Parameters
    ----------
    records : Iterable[VaccinationRecord]
        Records from any bucket; ids must be unique.

    Raises
    ------
    ValueError
        If two records share an id.
    """

    def __init__(self, records: Iterable[VaccinationRecord] = ()) -> None:
        self._records: Dict[str, VaccinationRecord] = {}
        for record in records:
            if record.id in self._records:
                raise ValueError(f"Duplicate record id in store: {record.id}")
            self._records[record.id] = record

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[VaccinationRecord]:
        return iter(self._records.values())

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RecordStore):
            return NotImplemented
        return self._records == other._records

    def __hash__(self) -> int:
        return hash(frozenset(self._records.items()))

    def __repr__(self) -> str:
        counts = ", ".join(f"{b.value}={len(self.bucket(b))}" for b in Bucket)
        return f"RecordStore({counts})"

    @property
    def records(self) -> Tuple[VaccinationRecord, ...]:
        return tuple(self._records.values())

    def get(self, record_id: Optional[str]) -> Optional[VaccinationRecord]:
        if record_id is None:
            return None
        return self._records.get(record_id)

    def bucket(self, bucket: Bucket | str) -> Tuple[VaccinationRecord, ...]:
        """Records in one bucket, ordered by date, vaccine name, then dose."""
        wanted = Bucket.from_string(bucket)
        return tuple(
            sorted((r for r in self._records.values() if r.bucket is wanted), key=_sort_key)
        )

    def for_vaccine(self, vaccine_id: str) -> Tuple[VaccinationRecord, ...]:
        return tuple(r for r in self._records.values() if r.vaccine_id == vaccine_id)

    def completed_doses(self, vaccine_id: str) -> frozenset[int]:
        return frozenset(
            r.dose
            for r in self._records.values()
            if r.vaccine_id == vaccine_id and r.bucket is Bucket.COMPLETED
        )

    def claims(
        self, vaccine_id: str, dose: int, exclude_id: Optional[str] = None
    ) -> Tuple[VaccinationRecord, ...]:
        """Records (any bucket) claiming ``(vaccine_id, dose)``, except ``exclude_id``."""
        return tuple(
            r
            for r in self._records.values()
            if r.vaccine_id == vaccine_id and r.dose == dose and r.id != exclude_id
        )

    def insert(self, record: VaccinationRecord) -> "RecordStore":
        """Return a new store with ``record`` added.

        Raises
        ------
        ValueError
            If a record with the same id already exists.
        """
        if record.id in self._records:
            raise ValueError(f"Record already exists: {record.id}")
        return RecordStore([*self._records.values(), record])

    def update(self, record: VaccinationRecord) -> "RecordStore":
        """Return a new store with the record of the same id replaced.

        Raises
        ------
        KeyError
            If no record with that id exists.
        """
        if record.id not in self._records:
            raise KeyError(record.id)
        return RecordStore(
            record if existing.id == record.id else existing
            for existing in self._records.values()
        )

    def remove(self, record_id: str) -> "RecordStore":
        """Return a new store without ``record_id``.

        Raises
        ------
        KeyError
            If no record with that id exists.
        """
        if record_id not in self._records:
            raise KeyError(record_id)
        return RecordStore(r for r in self._records.values() if r.id != record_id)

    def replace(self, record_id: str, record: VaccinationRecord) -> "RecordStore":
        """Remove ``record_id`` and add ``record`` as one step.

        Raises
        ------
        KeyError
            If ``record_id`` does not exist.
        ValueError
            If ``record`` reuses the id of a different existing record.
        """
        if record_id not in self._records:
            raise KeyError(record_id)
        if record.id != record_id and record.id in self._records:
            raise ValueError(f"Record already exists: {record.id}")
        remaining = [r for r in self._records.values() if r.id != record_id]
        return RecordStore([*remaining, record])

    def to_payload(self) -> Dict[str, List[Dict[str, Any]]]:
        """Serialize to the five-bucket payload shape consumed by collaborators."""
        payload: Dict[str, List[Dict[str, Any]]] = {b.value: [] for b in Bucket}
        for bucket in Bucket:
            for record in self.bucket(bucket):
                entry: Dict[str, Any] = {
                    "id": record.id,
                    "vaccineId": record.vaccine_id,
                    "vaccineName": record.vaccine_name,
                    "dose": record.dose,
                    "calendarId": record.calendar_window_id,
                    bucket.date_field: isoformat_or_none(record.date),
                }
                if bucket is Bucket.COMPLETED:
                    entry["administeredById"] = record.administered_by_ref
                payload[bucket.value].append(entry)
        return payload


def _parse_entry(bucket: Bucket, entry: Mapping[str, Any]) -> Optional[VaccinationRecord]:
    record_id = optional_id(entry.get("id"))
    vaccine = entry.get("vaccine") if isinstance(entry.get("vaccine"), Mapping) else {}
    vaccine_id = optional_id(entry.get("vaccineId")) or optional_id(vaccine.get("id"))
    if record_id is None or vaccine_id is None:
        LOG.warning("Skipping %s entry without id or vaccine: %s", bucket.value, entry)
        return None

    raw_dose = entry.get("dose")
    dose = parse_dose(raw_dose)
    if dose is None:
        if raw_dose not in (None, ""):
            LOG.warning(
                "Record %s has invalid dose %r; defaulting to 1", record_id, raw_dose
            )
        dose = 1

    raw_date = entry.get(bucket.date_field, entry.get("date"))
    moment = parse_timestamp(raw_date)
    if moment is None and raw_date not in (None, ""):
        LOG.warning("Record %s has unparsable date %r; stored as None", record_id, raw_date)

    window_id = optional_id(entry.get("calendarId")) or optional_id(
        entry.get("vaccineCalendarId")
    )
    administered_by = optional_id(entry.get("administeredById")) or optional_id(
        entry.get("administeredByRef")
    )

    return VaccinationRecord(
        id=record_id,
        bucket=bucket,
        vaccine_id=vaccine_id,
        vaccine_name=string_or_empty(entry.get("vaccineName"))
        or string_or_empty(vaccine.get("name"))
        or vaccine_id,
        dose=dose,
        calendar_window_id=window_id,
        date=moment,
        administered_by_ref=administered_by,
    )


def load_records(payload: Mapping[str, Any]) -> RecordStore:
    """Build a store from the five-bucket vaccinations payload.

    Parameters
    ----------
    payload : Mapping[str, Any]
        Decoded ``GET child/{id}/vaccinations`` response. The bucket arrays
        may sit at the top level or under a ``vaccinations`` key.

    Returns
    -------
    RecordStore
        Snapshot of the parsed records. Records whose id was already seen are
        logged and skipped.

    Raises
    ------
    ValueError
        If payload is not a mapping or a bucket value is not a list.
    """
    if not isinstance(payload, Mapping):
        raise ValueError("Vaccinations payload must be a JSON object")
    buckets = payload.get("vaccinations", payload)
    if not isinstance(buckets, Mapping):
        raise ValueError("Vaccinations payload must map bucket names to arrays")

    records: Dict[str, VaccinationRecord] = {}
    for bucket in Bucket:
        entries = buckets.get(bucket.value, [])
        if entries is None:
            continue
        if not isinstance(entries, list):
            raise ValueError(f"Bucket '{bucket.value}' must be an array")
        for entry in entries:
            if not isinstance(entry, Mapping):
                continue
            record = _parse_entry(bucket, entry)
            if record is None:
                continue
            if record.id in records:
                LOG.warning("Duplicate record id %s in payload; keeping first", record.id)
                continue
            records[record.id] = record

    LOG.info("Loaded %d vaccination records", len(records))
    return RecordStore(records.values())
