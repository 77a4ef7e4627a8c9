"""Run configuration.

Values come from defaults, then ``SCHTASK_*`` environment variables, then
command-line flags (see :mod:`schtask_inventory.main`).
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from schtask_inventory.correlate import HISTORY_PER_TASK
from schtask_inventory.eventlog import WATCHED_EVENT_IDS
from schtask_inventory.records import DEFAULT_ACTION

__all__ = ["Settings", "ValidationError", "ENV_PREFIX"]

ENV_PREFIX = "SCHTASK_"

ACTIVE_RESPONSE_DIR = Path(r"C:\Program Files (x86)\ossec-agent\active-response")


class Settings(BaseModel):
    """Settings for one snapshot run."""

    model_config = ConfigDict(frozen=True)

    log_path: Path = Field(default=ACTIVE_RESPONSE_DIR / "List-ScheduledTasks.log")
    output_path: Path = Field(default=ACTIVE_RESPONSE_DIR / "active-responses.log")
    max_tasks: int = Field(default=0, ge=0, description="0 means no limit")
    action: str = Field(default=DEFAULT_ACTION, min_length=1)
    lookback_days: int = Field(default=7, ge=1)
    history_per_task: int = Field(default=HISTORY_PER_TASK, ge=1)
    event_ids: tuple[int, ...] = Field(default=WATCHED_EVENT_IDS, min_length=1)
    log_max_bytes: int = Field(default=100 * 1024, ge=1)
    log_backup_count: int = Field(default=5, ge=0)
    scratch_dir: Path | None = None

    @field_validator("event_ids", mode="before")
    @classmethod
    def _parse_event_ids(cls, value: object) -> object:
        """Accept a comma-separated string as well as a sequence."""
        if isinstance(value, str):
            return tuple(int(part) for part in value.split(",") if part.strip())
        return value

    @classmethod
    def from_env(
        cls, env: Mapping[str, str] | None = None, **overrides: object
    ) -> Settings:
        """Build settings from ``SCHTASK_<FIELD>`` variables plus explicit overrides.

        Overrides set to None are ignored so unset CLI flags fall through.
        """
        source = os.environ if env is None else env
        values: dict[str, object] = {}
        for name in cls.model_fields:
            raw = source.get(ENV_PREFIX + name.upper())
            if raw is not None and raw.strip() != "":
                values[name] = raw.strip()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
