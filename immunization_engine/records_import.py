"""Import a child's vaccination records from a CSV or Excel export.

**Input Contract:**
- Reads a tabular export (.xlsx, .xls, .csv); CSV encodings and delimiters are
  sniffed
- Column headers are matched fuzzily to ``RECORD ID``, ``BUCKET`` (or
  ``STATUS``), ``VACCINE``, ``DOSE``, ``DATE``, ``CALENDAR ID`` and
  ``ADMINISTERED BY``; ``BUCKET`` and ``VACCINE`` are required
- Vaccine cells may hold a catalog id or a (possibly misspelled) vaccine name

**Output Contract:**
- ``ImportResult`` with a ``RecordStore`` of the usable rows, the list of
  warnings for rows that were skipped or adjusted, and the column mapping used

**Error Handling:**
- File I/O errors (missing file, unsupported format) raise immediately
- Missing required columns raise ``ValueError``
- Row-level problems (unknown bucket or vaccine, invalid dose, duplicate dose
  claim) are logged as warnings and the row is skipped; processing continues
"""

from __future__ import annotations

import logging
import re
from hashlib import sha1
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd
from rapidfuzz import fuzz, process

from .catalog import CalendarCatalog
from .data_models import ImportResult, VaccinationRecord, Vaccine
from .enums import Bucket
from .record_store import RecordStore
from .utils import optional_id, parse_dose, parse_timestamp, string_or_empty

LOG = logging.getLogger(__name__)

THRESHOLD = 80

REQUIRED_COLUMNS = ["BUCKET", "VACCINE"]

# Header spellings matched against, paired with the column they map to.
COLUMN_ALIASES: List[Tuple[str, str]] = [
    ("RECORD ID", "RECORD ID"),
    ("BUCKET", "BUCKET"),
    ("STATUS", "BUCKET"),
    ("VACCINE", "VACCINE"),
    ("DOSE", "DOSE"),
    ("DATE", "DATE"),
    ("CALENDAR ID", "CALENDAR ID"),
    ("ADMINISTERED BY", "ADMINISTERED BY"),
]


def detect_file_type(file_path: Path) -> str:
    """Return the lowercase file extension.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Input file not found: {file_path}")
    return file_path.suffix.lower()


def read_table(file_path: Path) -> pd.DataFrame:
    """Read a CSV or Excel export into a DataFrame of strings.

    Parameters
    ----------
    file_path : Path
        Path to the export (CSV, XLSX, or XLS).

    Returns
    -------
    pd.DataFrame
        Raw rows; blank cells are NaN.

    Raises
    ------
    ValueError
        If the file type is unsupported or the CSV cannot be decoded with
        common encodings.
    """
    file_path = Path(file_path)
    ext = detect_file_type(file_path)

    try:
        if ext in [".xlsx", ".xls"]:
            df = pd.read_excel(file_path, engine="openpyxl", dtype=object)
        elif ext == ".csv":
            for enc in ["utf-8-sig", "latin-1", "cp1252"]:
                try:
                    df = pd.read_csv(
                        file_path, sep=None, encoding=enc, engine="python", dtype=str
                    )
                    break
                except (UnicodeDecodeError, pd.errors.ParserError):
                    continue
            else:
                raise ValueError(
                    "Could not decode CSV with common encodings or delimiters"
                )
        else:
            raise ValueError(f"Unsupported file type: {ext}")

        LOG.info("Loaded %s rows from %s", len(df), file_path)
        return df

    except Exception as exc:  # pragma: no cover - logging branch
        LOG.error("Failed to read %s: %s", file_path, exc)
        raise


def normalize(col: str) -> str:
    """Normalize formatting prior to matching."""
    col_normalized = str(col).lower().strip().replace("_", " ").replace("-", " ")
    return re.sub(r"\s+", " ", col_normalized)


def map_columns(
    df: pd.DataFrame, threshold: int = THRESHOLD
) -> Tuple[pd.DataFrame, Dict[str, str]]:
    """Rename export columns to canonical names using fuzzy matching.

    Each header is matched against ``COLUMN_ALIASES`` with
    ``fuzz.partial_ratio``; headers scoring below ``threshold`` are left
    untouched. When two headers map to the same canonical column the first one
    wins and the later one is ignored.

    Returns
    -------
    tuple[pd.DataFrame, dict]
        The renamed frame (unmatched columns dropped) and the mapping from
        original header to canonical column.
    """
    choices = [normalize(alias) for alias, _ in COLUMN_ALIASES]
    col_map: Dict[str, str] = {}

    for input_col in df.columns:
        _, score, index = process.extractOne(
            query=normalize(input_col),
            choices=choices,
            scorer=fuzz.partial_ratio,
        )
        target = COLUMN_ALIASES[index][1]
        if score < threshold:
            continue
        if target in col_map.values():
            LOG.warning(
                "Column '%s' also matches %s; keeping the earlier column", input_col, target
            )
            continue
        LOG.debug("Matching '%s' to '%s' with score %s", input_col, target, score)
        col_map[input_col] = target

    renamed = df[list(col_map)].rename(columns=col_map)
    return renamed, col_map


def ensure_required_columns(df: pd.DataFrame) -> None:
    """Raise ValueError when a required canonical column is missing."""
    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise ValueError(
            f"Missing required columns: {missing} \n Found columns: {list(df.columns)} "
        )


def resolve_vaccine(
    value: str, catalog: CalendarCatalog, threshold: int = THRESHOLD
) -> Optional[Vaccine]:
    """Find the catalog vaccine a cell refers to.

    Tries the vaccine id, then the exact name (case-insensitive), then the
    closest name scoring at least ``threshold`` with ``fuzz.WRatio``.
    """
    text = string_or_empty(value)
    if not text:
        return None

    by_id = catalog.vaccine(text)
    if by_id is not None:
        return by_id

    vaccines: Sequence[Vaccine] = catalog.vaccines
    for vaccine in vaccines:
        if vaccine.name.lower() == text.lower():
            return vaccine

    if not vaccines:
        return None
    match = process.extractOne(
        text,
        [vaccine.name for vaccine in vaccines],
        scorer=fuzz.WRatio,
        score_cutoff=threshold,
    )
    if match is None:
        return None
    _, score, index = match
    LOG.debug("Resolved vaccine '%s' to %s with score %s", text, vaccines[index].id, score)
    return vaccines[index]


def synthesize_identifier(existing: str, source: str, prefix: str) -> str:
    """Generate a deterministic identifier if one is not provided."""
    existing = (existing or "").strip()
    if existing:
        return existing

    base = (source or "").strip().lower() or "unknown"
    digest = sha1(base.encode("utf-8")).hexdigest()[:10]
    return f"{prefix}_{digest}"


def _cell(row: pd.Series, column: str) -> object:
    return row[column] if column in row.index else None


def import_records(
    file_path: Path,
    catalog: CalendarCatalog,
    threshold: int = THRESHOLD,
) -> ImportResult:
    """Import a records export into a ``RecordStore``.

    Parameters
    ----------
    file_path : Path
        CSV or Excel export of one child's records.
    catalog : CalendarCatalog
        Catalog the vaccine names and window ids are resolved against.
    threshold : int
        Fuzzy match score for headers and vaccine names.

    Returns
    -------
    ImportResult
        Usable records, warnings for every skipped or adjusted row, and the
        column mapping.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the file cannot be read or lacks the BUCKET or VACCINE column.
    """
    df = read_table(Path(file_path))
    df, col_map = map_columns(df, threshold)
    ensure_required_columns(df)

    warnings: List[str] = []
    records: List[VaccinationRecord] = []
    store = RecordStore()

    def warn(message: str) -> None:
        LOG.warning(message)
        warnings.append(message)

    for position, (_, row) in enumerate(df.iterrows(), start=2):
        try:
            bucket = Bucket.from_string(string_or_empty(_cell(row, "BUCKET")) or None)
        except ValueError:
            warn(f"Row {position}: unknown bucket {_cell(row, 'BUCKET')!r}; skipped")
            continue

        vaccine = resolve_vaccine(_cell(row, "VACCINE"), catalog, threshold)
        if vaccine is None:
            warn(f"Row {position}: unknown vaccine {_cell(row, 'VACCINE')!r}; skipped")
            continue

        raw_dose = string_or_empty(_cell(row, "DOSE"))
        dose = parse_dose(raw_dose) if raw_dose else 1
        if dose is None or dose > vaccine.doses_required:
            warn(f"Row {position}: invalid dose {raw_dose!r} for {vaccine.name}; skipped")
            continue

        raw_date = _cell(row, "DATE")
        moment = parse_timestamp(raw_date)
        if moment is None and string_or_empty(raw_date):
            warn(f"Row {position}: unparsable date {raw_date!r}; stored without date")

        window_id = optional_id(_cell(row, "CALENDAR ID"))
        if window_id is not None and catalog.window(window_id) is None:
            warn(f"Row {position}: unknown calendar window {window_id}; link dropped")
            window_id = None

        record_id = synthesize_identifier(
            string_or_empty(_cell(row, "RECORD ID")),
            f"{bucket.value}|{vaccine.id}|{dose}",
            "rec",
        )
        claimed = store.claims(vaccine.id, dose)
        if claimed:
            warn(
                f"Row {position}: dose {dose} of {vaccine.name} already recorded as "
                f"{claimed[0].bucket.value}; skipped"
            )
            continue
        if record_id in store:
            warn(f"Row {position}: duplicate record id {record_id}; skipped")
            continue

        record = VaccinationRecord(
            id=record_id,
            bucket=bucket,
            vaccine_id=vaccine.id,
            vaccine_name=vaccine.name,
            dose=dose,
            calendar_window_id=window_id,
            date=moment,
            administered_by_ref=optional_id(_cell(row, "ADMINISTERED BY")),
        )
        store = store.insert(record)
        records.append(record)

    LOG.info("Imported %d of %d rows (%d warnings)", len(records), len(df), len(warnings))
    return ImportResult(store=store, warnings=warnings, column_mapping=col_map)
