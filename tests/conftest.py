"""Shared pytest fixtures for unit, integration, and e2e tests.

This module provides:
- Temporary directory fixtures for file I/O testing
- Catalog, record store and resolver snapshots built from sample payloads
- Configuration fixtures for parameter testing
"""

from __future__ import annotations

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Generator

import pytest
import yaml

from immunization_engine.catalog import CalendarCatalog
from immunization_engine.eligibility import EligibilityResolver
from immunization_engine.lifecycle import RecordLifecycleController
from immunization_engine.record_store import RecordStore
from tests.fixtures import sample_input


@pytest.fixture
def tmp_test_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that's cleaned up after each test.

    Real-world significance:
    - Isolates file I/O tests from each other
    - Prevents test artifacts from polluting the file system

    Yields
    ------
    Path
        Absolute path to temporary directory (automatically deleted after test)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def catalog() -> CalendarCatalog:
    """Provide the standard test catalog (BCG, Polio, Penta, HPV).

    Real-world significance:
    - Every eligibility answer depends on the catalog snapshot
    - Built through load_catalog so payload normalization is exercised too
    """
    return sample_input.create_test_catalog()


@pytest.fixture
def empty_store() -> RecordStore:
    """Provide a child with no records at all."""
    return RecordStore()


@pytest.fixture
def penta_dose1_completed() -> RecordStore:
    """Provide a child whose only record is a COMPLETED dose 1 of Penta.

    Real-world significance:
    - Standard scenario for the next-allowed-dose rule
    """
    return RecordStore(
        [sample_input.create_test_record("c-penta-1", "completed", "Penta", 1, "6w")]
    )


@pytest.fixture
def resolver(catalog: CalendarCatalog, empty_store: RecordStore) -> EligibilityResolver:
    """Provide a resolver over the standard catalog and an empty store."""
    return EligibilityResolver(catalog, empty_store)


@pytest.fixture
def controller(catalog: CalendarCatalog) -> RecordLifecycleController:
    """Provide a lifecycle controller with deterministic record ids.

    Real-world significance:
    - Sequential ids make assertions on created records stable
    """
    counter = iter(range(1, 10_000))
    return RecordLifecycleController(catalog, id_factory=lambda: f"rec-{next(counter)}")


@pytest.fixture
def now() -> datetime:
    """Reference time used across eligibility and planning tests."""
    return datetime(2025, 1, 20, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def default_config() -> Dict[str, Any]:
    """Provide a complete engine configuration for testing.

    Real-world significance:
    - Matches the schema of config/parameters.yaml
    - Tests override individual keys to exercise feature flags

    Returns
    -------
    Dict[str, Any]
        Configuration dict with all standard sections
    """
    return {
        "language": "en",
        "lifecycle": {
            "window_link_on_edit": "advisory",
            "require_window_on_create": False,
            "allow_completed_removal": False,
        },
        "eligibility": {
            "overdue_grace_days": 0,
            "respect_gender": True,
        },
        "records_import": {
            "match_threshold": 80,
        },
        "logging": {
            "level": "INFO",
        },
    }


@pytest.fixture
def config_file(tmp_test_dir: Path, default_config: Dict[str, Any]) -> Path:
    """Create a temporary config file with default configuration.

    Real-world significance:
    - Tests that need to load config from disk can use this fixture

    Returns
    -------
    Path
        Path to created YAML config file
    """
    config_path = tmp_test_dir / "parameters.yaml"
    with open(config_path, "w") as f:
        yaml.dump(default_config, f)
    return config_path


@pytest.fixture
def run_id() -> str:
    """Provide a consistent run ID for testing artifact generation."""
    return "test_run_20250101_120000"
