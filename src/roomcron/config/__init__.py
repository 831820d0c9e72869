"""Configuration module."""

from roomcron.config.loader import load_config
from roomcron.config.models import (
    ConfigError,
    RoomcronConfig,
    ScheduleConfig,
    StorageConfig,
)
from roomcron.config.paths import get_brain_path, get_config_path, get_roomcron_home

__all__ = [
    "ConfigError",
    "RoomcronConfig",
    "ScheduleConfig",
    "StorageConfig",
    "get_brain_path",
    "get_config_path",
    "get_roomcron_home",
    "load_config",
]
