"""Configuration loading from TOML files and environment variables."""

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from roomcron.config.models import ConfigError, RoomcronConfig
from roomcron.config.paths import get_config_path

# Checked in order; the first one set wins
DENY_EXTERNAL_CONTROL_ENV_VARS = (
    "ROOMCRON_DENY_EXTERNAL_CONTROL",
    "HUBOT_SCHEDULE_DENY_EXTERNAL_CONTROL",
)


def _get_default_config_paths() -> list[Path]:
    """Get ordered list of default config file locations."""
    return [
        Path("config.toml"),  # Current directory
        get_config_path(),  # ~/.roomcron/config.toml (or ROOMCRON_HOME)
        Path("/etc/roomcron/config.toml"),  # System-wide
    ]


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Apply environment overrides on top of file values."""
    for env_var in DENY_EXTERNAL_CONTROL_ENV_VARS:
        value = os.environ.get(env_var)
        if value is not None:
            schedule = config.setdefault("schedule", {})
            schedule["deny_external_control"] = _env_flag(value)
            break

    if level := os.environ.get("ROOMCRON_LOG_LEVEL"):
        config["log_level"] = level.upper()

    return config


def load_config(path: Path | None = None) -> RoomcronConfig:
    """Load configuration from TOML file.

    Args:
        path: Explicit path to config file. If None, searches default
            locations and falls back to defaults when none exists.

    Returns:
        Validated RoomcronConfig instance.

    Raises:
        FileNotFoundError: If an explicit path does not exist.
        ConfigError: If the config file is invalid.
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path).expanduser()
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        for default_path in _get_default_config_paths():
            expanded = default_path.expanduser()
            if expanded.exists():
                config_path = expanded
                break

    raw_config: dict[str, Any] = {}
    if config_path is not None:
        try:
            with config_path.open("rb") as f:
                raw_config = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

    raw_config = _apply_env_overrides(raw_config)

    try:
        return RoomcronConfig.model_validate(raw_config)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
