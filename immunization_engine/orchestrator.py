"""Immunization record engine command-line report.

Loads a catalog and one child's records, then prints the eligibility view the
engine derives from them: bucket contents, next allowed doses, schedulable
offers, overdue candidates and the calendar plan. A JSON copy of the report is
written under ``<output>/artifacts``.

**Error Handling Philosophy:**

- **Infrastructure Errors** (missing files, invalid config, malformed
  payloads) fail fast with exit code 1
- **Data quality issues** (skipped catalog entries, unusable import rows) are
  logged and listed as warnings; the report is still produced

**Exit Codes:**
- 0: Report completed successfully
- 1: Report failed (infrastructure or input error)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .age_windows import window_label
from .catalog import CalendarCatalog, load_catalog_file
from .config_loader import DEFAULT_CONFIG_PATH, load_config
from .data_models import Child, PlanResult
from .eligibility import EligibilityResolver
from .enums import Bucket, Gender
from .planner import plan_entries
from .record_store import RecordStore, load_records
from .records_import import THRESHOLD, import_records
from .utils import isoformat_or_none, parse_timestamp

SCRIPT_DIR = Path(__file__).resolve().parent
ROOT_DIR = SCRIPT_DIR.parent
DEFAULT_OUTPUT_DIR = ROOT_DIR / "output"

LOG = logging.getLogger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Report dose eligibility for one child's vaccination records",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s catalog.json vaccinations.json --birth-date 2024-03-01
  %(prog)s catalog.json records.xlsx --birth-date 2024-03-01 --gender F
        """,
    )

    parser.add_argument("catalog_file", type=Path, help="Catalog JSON (vaccines + calendarWindows)")
    parser.add_argument(
        "records_file",
        type=Path,
        help="Child's records: five-bucket JSON payload, CSV or Excel export",
    )
    parser.add_argument(
        "--birth-date",
        required=True,
        dest="birth_date",
        help="Child's date of birth (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--gender",
        choices=[g.value for g in Gender],
        default=None,
        help="Child's gender, used to filter gender-restricted vaccines",
    )
    parser.add_argument("--child-id", default="child", dest="child_id", help="Child identifier")
    parser.add_argument(
        "--now",
        default=None,
        help="Reference time (ISO-8601); defaults to the current UTC time",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        dest="config_path",
        help=f"Parameters file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=DEFAULT_OUTPUT_DIR,
        dest="output_dir",
        help=f"Output directory (default: {DEFAULT_OUTPUT_DIR})",
    )

    return parser.parse_args(argv)


def validate_args(args: argparse.Namespace) -> None:
    """Validate command-line arguments and resolve dates in place."""
    if not args.catalog_file.exists():
        raise FileNotFoundError(f"Catalog file not found: {args.catalog_file}")
    if not args.records_file.exists():
        raise FileNotFoundError(f"Records file not found: {args.records_file}")

    birth = parse_timestamp(args.birth_date)
    if birth is None:
        raise ValueError(f"Invalid --birth-date: {args.birth_date!r} (expected YYYY-MM-DD)")
    args.birth_date = birth.date()

    if args.now is None:
        args.now = datetime.now(timezone.utc)
    else:
        now = parse_timestamp(args.now)
        if now is None:
            raise ValueError(f"Invalid --now: {args.now!r} (expected ISO-8601)")
        args.now = now


def configure_logging(output_dir: Path, run_id: str, level: str = "INFO") -> Path:
    """Configure file logging for a report run.

    Parameters
    ----------
    output_dir : Path
        Root output directory where logs subdirectory will be created.
    run_id : str
        Unique run identifier used in log filename.
    level : str
        Logging level name from the ``logging.level`` config key.

    Returns
    -------
    Path
        Path to the created log file.
    """
    log_dir = output_dir / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"engine_{run_id}.log"

    handler = logging.FileHandler(log_path, encoding="utf-8")
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
        existing.close()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.addHandler(handler)

    return log_path


def load_store(
    records_file: Path, catalog: CalendarCatalog, threshold: int = THRESHOLD
) -> tuple[RecordStore, List[str]]:
    """Load a child's records from a JSON payload or a tabular export.

    Raises
    ------
    ValueError
        If the file is not valid JSON or has an unsupported extension.
    """
    if records_file.suffix.lower() == ".json":
        try:
            payload = json.loads(records_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Records file is not valid JSON: {records_file}: {exc}") from exc
        return load_records(payload), []

    result = import_records(records_file, catalog, threshold)
    return result.store, result.warnings


def build_report(
    child: Child,
    catalog: CalendarCatalog,
    store: RecordStore,
    resolver: EligibilityResolver,
    plan: PlanResult,
    now: datetime,
) -> Dict[str, Any]:
    """Assemble the JSON-serializable eligibility report."""
    labels = {window.id: resolver.default_label(window) for window in catalog.windows}
    return {
        "child": {
            "id": child.id,
            "birth_date": child.birth_date.isoformat(),
            "gender": child.gender.value if child.gender else None,
        },
        "generated_for": isoformat_or_none(now),
        "status": plan.status.value,
        "records": store.to_payload(),
        "next_allowed_doses": {
            vaccine.id: resolver.next_allowed_dose(vaccine.id) for vaccine in catalog.vaccines
        },
        "offers": [
            {
                "vaccineId": offer.vaccine_id,
                "vaccineName": offer.vaccine_name,
                "dose": offer.dose,
                "windows": [
                    {"id": window.id, "label": labels[window.id]} for window in offer.windows
                ],
            }
            for offer in resolver.schedulable_offers()
        ],
        "overdue_candidates": [record.id for record in resolver.overdue_candidates(now)],
        "plan": {
            bucket.value: [
                {
                    "vaccineId": record.vaccine_id,
                    "dose": record.dose,
                    "calendarId": record.calendar_window_id,
                    bucket.date_field: isoformat_or_none(record.date),
                }
                for record in records
            ]
            for bucket, records in ((Bucket.DUE, plan.due), (Bucket.LATE, plan.late))
        },
    }


def write_report(output_dir: Path, run_id: str, report: Dict[str, Any]) -> Path:
    """Write the report JSON under ``<output>/artifacts``."""
    artifact_dir = output_dir / "artifacts"
    artifact_dir.mkdir(parents=True, exist_ok=True)
    path = artifact_dir / f"eligibility_report_{run_id}.json"
    path.write_text(json.dumps(report, indent=2, ensure_ascii=False), encoding="utf-8")
    return path


def print_header(child: Child, records_file: Path) -> None:
    """Print the report header."""
    print()
    print("🚀 Starting eligibility report")
    print(f"🧒 Child: {child.id} (born {child.birth_date.isoformat()})")
    print(f"🗂️  Records: {records_file}")
    print()


def print_section(title: str) -> None:
    """Print a section header."""
    print()
    print(f"{'=' * 60}")
    print(title)
    print(f"{'=' * 60}")


def print_report(
    store: RecordStore,
    resolver: EligibilityResolver,
    report: Dict[str, Any],
    plan: PlanResult,
) -> None:
    """Print the human-readable report sections."""
    print_section("Records by bucket")
    for bucket in Bucket:
        records = store.bucket(bucket)
        print(f"📋 {bucket.value:<10} {len(records)}")
        for record in records:
            print(f"    - {record.vaccine_name} dose {record.dose} ({isoformat_or_none(record.date)})")

    print_section("Next allowed doses")
    for vaccine in resolver.catalog.vaccines:
        dose = resolver.next_allowed_dose(vaccine.id)
        print(f"💉 {vaccine.name:<25} {dose if dose is not None else 'series complete'}")

    print_section("Schedulable offers")
    if not report["offers"]:
        print("No vaccine available to schedule.")
    for offer in report["offers"]:
        windows = ", ".join(w["label"] for w in offer["windows"]) or "no window"
        print(f"🗓️  {offer['vaccineName']} dose {offer['dose']}: {windows}")

    print_section("Overdue candidates")
    if not report["overdue_candidates"]:
        print("None.")
    for record_id in report["overdue_candidates"]:
        record = store.get(record_id)
        print(f"⚠️  {record.vaccine_name} dose {record.dose} ({record.bucket.value})")

    print_section("Calendar plan")
    for record in plan.due:
        label = window_label(resolver.catalog.window(record.calendar_window_id), resolver.language)
        print(f"🟢 DUE   {record.vaccine_name} dose {record.dose} ({label})")
    for record in plan.late:
        label = window_label(resolver.catalog.window(record.calendar_window_id), resolver.language)
        print(f"🔴 LATE  {record.vaccine_name} dose {record.dose} ({label})")
    print(f"Status: {plan.status.value}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the eligibility report."""
    try:
        args = parse_args(argv)
        validate_args(args)
    except (ValueError, FileNotFoundError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    output_dir = args.output_dir.resolve()
    run_id = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")

    try:
        config = load_config(args.config_path)
    except (FileNotFoundError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    log_path = configure_logging(
        output_dir, run_id, (config.get("logging") or {}).get("level", "INFO")
    )
    child = Child(
        id=args.child_id,
        birth_date=args.birth_date,
        gender=Gender.from_string(args.gender),
    )
    print_header(child, args.records_file)

    start = time.time()
    try:
        catalog = load_catalog_file(args.catalog_file)
        threshold = (config.get("records_import") or {}).get("match_threshold", THRESHOLD)
        store, warnings = load_store(args.records_file, catalog, threshold)
        print(f"📚 Catalog: {len(catalog.vaccines)} vaccines, {len(catalog.windows)} windows")
        print(f"👥 Records loaded: {len(store)}")
        if warnings:
            print("Warnings detected while importing records:")
            for warning in warnings:
                print(f" - {warning}")

        resolver = EligibilityResolver.from_config(catalog, store, config, child=child)
        plan = plan_entries(
            child,
            catalog,
            store,
            args.now,
            respect_gender=(config.get("eligibility") or {}).get("respect_gender", True),
        )
        report = build_report(child, catalog, store, resolver, plan, args.now)
        print_report(store, resolver, report, plan)
        report_path = write_report(output_dir, run_id, report)

        print()
        print(f"{'=' * 60}")
        print(f"🎉 Report completed in {time.time() - start:.1f}s")
        print(f"{'=' * 60}")
        print(f"📄 Report: {report_path}")
        print(f"Log written to {log_path}")
        return 0

    except Exception as exc:
        LOG.error("Report failed: %s", exc)
        print(f"\n❌ Report failed: {exc}", file=sys.stderr)
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
