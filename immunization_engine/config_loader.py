"""Configuration loading utilities for the immunization record engine.

Provides a centralized way to load and validate the parameters.yaml
configuration file for the CLI and the components built from it.
"""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

SCRIPT_DIR = Path(__file__).resolve().parent
DEFAULT_CONFIG_PATH = SCRIPT_DIR.parent / "config" / "parameters.yaml"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load and parse the parameters.yaml configuration file.

    Automatically validates the configuration after loading. Raises
    clear exceptions if validation fails, enabling fail-fast behavior
    for infrastructure errors.

    Parameters
    ----------
    config_path : Path, optional
        Path to the configuration file. If not provided, uses the default
        location (config/parameters.yaml in the project root).

    Returns
    -------
    Dict[str, Any]
        Parsed and validated YAML configuration as a nested dictionary.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    yaml.YAMLError
        If the configuration file is invalid YAML.
    ValueError
        If the configuration fails validation (see validate_config).
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    validate_config(config)
    return config


def _require_bool(section: Dict[str, Any], section_name: str, key: str) -> None:
    value = section.get(key, False)
    if not isinstance(value, bool):
        raise ValueError(
            f"{section_name}.{key} must be a boolean, got {type(value).__name__}"
        )


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = config.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"{name} must be a mapping, got {type(section).__name__}")
    return section


def validate_config(config: Dict[str, Any]) -> None:
    """Validate the entire configuration for consistency and required values.

    Parameters
    ----------
    config : Dict[str, Any]
        Configuration dictionary (result of load_config).

    Raises
    ------
    ValueError
        If a configured value is missing, has the wrong type or is out of range.

    Notes
    -----
    **Validation checks:**

    - **Language:** ``language`` must be a supported code (en, fr)
    - **Lifecycle:** ``window_link_on_edit`` must be advisory/authoritative;
      ``require_window_on_create`` and ``allow_completed_removal`` must be booleans
    - **Eligibility:** ``overdue_grace_days`` must be a non-negative integer;
      ``respect_gender`` must be a boolean
    - **Records import:** ``match_threshold`` must be an integer in 0-100
    - **Logging:** ``level`` must be a standard logging level name

    All keys are optional; absent keys take their documented defaults.
    """
    from .enums import Language, WindowLinkMode

    language = config.get("language")
    if language is not None:
        if not isinstance(language, str):
            raise ValueError(f"language must be a string, got {type(language).__name__}")
        try:
            Language.from_string(language)
        except ValueError as exc:
            raise ValueError(f"Invalid language: {exc}") from exc

    # Validate Lifecycle config
    lifecycle = _section(config, "lifecycle")
    link_mode = lifecycle.get("window_link_on_edit")
    if link_mode is not None and not isinstance(link_mode, str):
        raise ValueError(
            f"lifecycle.window_link_on_edit must be a string, got {type(link_mode).__name__}"
        )
    try:
        WindowLinkMode.from_string(link_mode)
    except ValueError as exc:
        raise ValueError(f"Invalid lifecycle.window_link_on_edit: {exc}") from exc
    _require_bool(lifecycle, "lifecycle", "require_window_on_create")
    _require_bool(lifecycle, "lifecycle", "allow_completed_removal")

    # Validate Eligibility config
    eligibility = _section(config, "eligibility")
    grace_days = eligibility.get("overdue_grace_days", 0)
    if isinstance(grace_days, bool) or not isinstance(grace_days, int):
        raise ValueError(
            f"eligibility.overdue_grace_days must be an integer, "
            f"got {type(grace_days).__name__}"
        )
    if grace_days < 0:
        raise ValueError(
            f"eligibility.overdue_grace_days must be non-negative, got {grace_days}"
        )
    respect_gender = eligibility.get("respect_gender", True)
    if not isinstance(respect_gender, bool):
        raise ValueError(
            f"eligibility.respect_gender must be a boolean, "
            f"got {type(respect_gender).__name__}"
        )

    # Validate Records import config
    records_import = _section(config, "records_import")
    threshold = records_import.get("match_threshold", 80)
    if isinstance(threshold, bool) or not isinstance(threshold, int):
        raise ValueError(
            f"records_import.match_threshold must be an integer, "
            f"got {type(threshold).__name__}"
        )
    if not 0 <= threshold <= 100:
        raise ValueError(
            f"records_import.match_threshold must be between 0 and 100, got {threshold}"
        )

    # Validate Logging config
    logging_config = _section(config, "logging")
    level = logging_config.get("level", "INFO")
    if not isinstance(level, str) or level.upper() not in VALID_LOG_LEVELS:
        raise ValueError(
            f"logging.level must be one of {', '.join(VALID_LOG_LEVELS)}, got {level!r}"
        )
