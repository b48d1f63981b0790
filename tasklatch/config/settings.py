from __future__ import annotations

import logging
from pathlib import Path
from typing import Self

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env once at module import so every BaseSettings subclass sees the env vars
load_dotenv()

DEFAULT_WAIT_TIMEOUT_SECONDS = 120.0
DEFAULT_STALE_AFTER_SECONDS = 900.0
DEFAULT_POLL_INTERVAL_SECONDS = 1.0


class CoordSettings(BaseSettings):
    """Coordinator settings. Env vars prefixed with TASKLATCH_."""

    model_config = SettingsConfigDict(env_prefix="TASKLATCH_")

    root: Path = Path(".tasklatch")
    wait_timeout_seconds: float = Field(DEFAULT_WAIT_TIMEOUT_SECONDS, gt=0)
    stale_after_seconds: float = Field(DEFAULT_STALE_AFTER_SECONDS, gt=0)
    poll_interval_seconds: float = Field(DEFAULT_POLL_INTERVAL_SECONDS, gt=0)
    ticket_bin: str = ""  # empty = built-in engine
    snapshot_name: str = "board.md"
    log_level: str = "WARNING"
    log_json: bool = False

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        normalized = v.strip().upper()
        if not isinstance(logging.getLevelName(normalized), int):
            raise ValueError(f"TASKLATCH_LOG_LEVEL must be a logging level name (got '{v}')")
        return normalized

    @field_validator("snapshot_name")
    @classmethod
    def _validate_snapshot_name(cls, v: str) -> str:
        if not v.strip() or Path(v).name != v:
            raise ValueError(f"TASKLATCH_SNAPSHOT_NAME must be a bare file name (got '{v}')")
        return v

    @model_validator(mode="after")
    def _validate(self) -> Self:
        if self.poll_interval_seconds > self.wait_timeout_seconds:
            raise ValueError(
                f"poll_interval_seconds ({self.poll_interval_seconds}) must not exceed "
                f"wait_timeout_seconds ({self.wait_timeout_seconds})"
            )
        return self

    @property
    def snapshot_path(self) -> Path:
        return self.root / self.snapshot_name
