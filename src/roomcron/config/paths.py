"""Centralized path management for roomcron.

All state (config, brain) is stored under a single base directory.
The base directory can be overridden with the ROOMCRON_HOME environment variable.

Default locations:
- Linux/macOS: ~/.roomcron
"""

import os
from functools import lru_cache
from pathlib import Path

ENV_VAR = "ROOMCRON_HOME"


@lru_cache(maxsize=1)
def get_roomcron_home() -> Path:
    """Get the base directory for all roomcron data.

    Resolution order:
    1. ROOMCRON_HOME environment variable (if set)
    2. Platform default (~/.roomcron)
    """
    if env_home := os.environ.get(ENV_VAR):
        return Path(env_home).expanduser().resolve()
    return Path.home() / ".roomcron"


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_roomcron_home() / "config.toml"


def get_brain_path() -> Path:
    """Get the brain directory (one JSON document per namespace)."""
    return get_roomcron_home() / "brain"
