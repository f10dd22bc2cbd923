"""Configuration loader.

Configuration comes from config/config.yaml (or MAILFOREST_CONFIG_PATH),
validated against mailforest.config_schema.AppConfig. When the default file
does not exist the built-in defaults are used, so the CLI works out of the
box against a local notmuch database. An explicitly configured path that
does not exist is an error.

Usage:
    from mailforest.config import get_config

    config = get_config()
    forest = ThreadSet(page_size=config.threading.page_size)
"""

import os
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from mailforest.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from mailforest.core.errors import ConfigLoadError, ConfigValidationError
from mailforest.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("config/config.yaml")
CONFIG_PATH_ENV = "MAILFOREST_CONFIG_PATH"

_config_lock = threading.Lock()
_current_config: AppConfig | None = None


def _get_config_path() -> tuple[Path, bool]:
    """Return the config path and whether it was explicitly requested."""
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path), True
    return DEFAULT_CONFIG_PATH, False


def _format_validation_errors(error: ValidationError) -> str:
    """Turn pydantic errors into one actionable line per field.

    Args:
        error: Pydantic ValidationError

    Returns:
        Formatted error lines, e.g. "  - Field 'threading.page_size' must be ..."
    """
    messages = []
    for err in error.errors():
        field_path = ".".join(str(loc) for loc in err["loc"])
        err_type = err["type"]

        if err_type == "missing":
            messages.append(f"  - Missing required field '{field_path}'")
        elif err_type == "extra_forbidden":
            messages.append(f"  - Unknown field '{field_path}'")
        elif err_type in ("int_type", "int_parsing"):
            messages.append(f"  - Field '{field_path}' must be an integer")
        elif err_type in ("bool_type", "bool_parsing"):
            messages.append(f"  - Field '{field_path}' must be true or false")
        elif err_type == "string_type":
            messages.append(f"  - Field '{field_path}' must be a string")
        else:
            messages.append(f"  - Field '{field_path}': {err['msg']}")

    return "\n".join(messages)


def _load_yaml(path: Path) -> dict[str, Any]:
    """Read a YAML mapping from disk.

    Raises:
        ConfigLoadError: If the file is missing, unreadable or not a mapping
    """
    if not path.exists():
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            f"Create it by copying config/config.yaml.example to {path}"
        )

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e
    except OSError as e:
        raise ConfigLoadError(f"Cannot read configuration file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(
            f"Configuration file must be a YAML mapping, got {type(data).__name__}"
        )
    return data


def _validate_config(data: dict[str, Any], path: Path) -> AppConfig:
    try:
        config = AppConfig(**data)
    except ValidationError as e:
        raise ConfigValidationError(
            f"Configuration validation failed for {path}:\n{_format_validation_errors(e)}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"Config schema version {config.schema_version} is newer than "
            f"supported version {CURRENT_SCHEMA_VERSION}. "
            "Upgrade mailforest or downgrade the config."
        )
    return config


def load_config(path: Path | None = None) -> AppConfig:
    """Load and validate configuration from a YAML file.

    Always reads from disk. For cached access use get_config().

    Args:
        path: Config file. Defaults to MAILFOREST_CONFIG_PATH, then
              config/config.yaml.

    Returns:
        Validated AppConfig instance

    Raises:
        ConfigLoadError: If the file cannot be loaded
        ConfigValidationError: If validation fails
    """
    config_path = path or _get_config_path()[0]
    logger.debug("Loading configuration", path=str(config_path))

    config = _validate_config(_load_yaml(config_path), config_path)

    logger.info(
        "Configuration loaded",
        path=str(config_path),
        schema_version=config.schema_version,
        backend=config.backend.kind,
    )
    return config


def get_config() -> AppConfig:
    """Get the current configuration singleton.

    Loads on first call. Falls back to defaults if the default config file
    is absent; a missing MAILFOREST_CONFIG_PATH file still raises.

    Raises:
        ConfigLoadError: If the file cannot be loaded
        ConfigValidationError: If validation fails
    """
    global _current_config

    with _config_lock:
        if _current_config is None:
            path, explicit = _get_config_path()
            if not explicit and not path.exists():
                logger.debug("No configuration file, using defaults", path=str(path))
                _current_config = AppConfig()
                return _current_config

            _current_config = load_config(path)

        return _current_config


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Validate a config file without loading it into the singleton.

    Returns:
        Tuple of (is_valid, message)
    """
    config_path = path or _get_config_path()[0]

    try:
        config = load_config(config_path)
    except ConfigLoadError as e:
        return (False, f"Load error: {e}")
    except ConfigValidationError as e:
        return (False, f"Validation error: {e}")

    backend = config.backend
    source = backend.fixture_path if backend.kind == "fixture" else backend.notmuch_command
    return (
        True,
        f"Configuration valid (schema version {config.schema_version})\n"
        f"  - backend: {backend.kind} ({source})\n"
        f"  - page size: {config.threading.page_size}\n"
        f"  - group by subject: {config.threading.group_by_subject}\n"
        f"  - initial display: {config.display.initial_display_state}",
    )


def reset_config() -> None:
    """Reset the config singleton. Primarily for testing."""
    global _current_config
    with _config_lock:
        _current_config = None
