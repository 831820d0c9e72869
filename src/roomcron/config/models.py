"""Configuration models using Pydantic."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from roomcron.config.paths import get_brain_path


class ScheduleConfig(BaseModel):
    """Scheduling behaviour."""

    # Only list/update/cancel jobs of the room a command is issued from
    deny_external_control: bool = False
    # Ids are drawn from [0, max_jobs)
    max_jobs: int = Field(default=10000, gt=0)
    # Used for permalinks of delivered messages
    matrix_server_name: str | None = "thesis.co"


class StorageConfig(BaseModel):
    """Where the brain lives."""

    brain_dir: Path = Field(default_factory=get_brain_path)


class ConfigError(Exception):
    """Configuration error."""

    pass


class RoomcronConfig(BaseModel):
    """Root configuration model."""

    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None
