"""
Application configuration.

This module defines EngineConfig, the settings that control how the BI
compliance engine stores data and enforces its rules:

- Where the database lives
- Which timezone defines the facility's calendar day (one BI test per
  operator per facility-local day)
- How often a failed quarantine activation is retried before the operator
  must retry manually
- An optional timeout on quarantine computation

Configuration is read from ~/.bi_compliance/config.json when present. Any
key left out keeps its default, so an empty or missing file is valid.
"""

import json
import logging
from datetime import timezone, tzinfo
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from pydantic import BaseModel, Field, field_validator

from .core.exceptions import ValidationError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "config.json"


def resolve_timezone(name: str) -> tzinfo:
    """
    Resolve a timezone name to a tzinfo.

    "UTC" is resolved without the IANA database so the default works on
    systems that ship without tz data.

    Args:
        name: "UTC" or an IANA zone name (e.g., "America/Chicago")

    Returns:
        tzinfo for the facility clock

    Raises:
        ValidationError: If the zone is unknown
    """
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Unknown facility timezone: {name}") from e


class EngineConfig(BaseModel):
    """Settings for the BI compliance engine."""

    # Facility this installation records BI tests for
    facility_id: str = Field(default="default", min_length=1)

    # None means the default location in the user's home directory
    database_path: Optional[Path] = None

    # Defines the calendar day for the duplicate-submission rule
    facility_timezone: str = "UTC"

    # Attempts made to deliver a quarantine activation before failing
    activation_retry_attempts: int = Field(default=3, ge=1)
    activation_retry_delay_seconds: float = Field(default=0.5, ge=0)

    # None disables the timeout
    compute_timeout_seconds: Optional[float] = Field(default=None, gt=0)

    # Interval at which the GUI banner polls for the current activation
    banner_poll_interval_ms: int = Field(default=5000, ge=250)

    @field_validator("facility_timezone")
    @classmethod
    def validate_facility_timezone(cls, v: str) -> str:
        try:
            resolve_timezone(v)
        except ValidationError as e:
            raise ValueError(str(e)) from e
        return v

    @property
    def tz(self) -> tzinfo:
        return resolve_timezone(self.facility_timezone)


def load_config(path: Optional[Path] = None) -> EngineConfig:
    """
    Load configuration from a JSON file.

    Args:
        path: Config file path. Defaults to ~/.bi_compliance/config.json

    Returns:
        EngineConfig (defaults if the file does not exist)

    Raises:
        ValidationError: If the file is not valid JSON or has invalid values
    """
    if path is None:
        from .database.schema import get_app_dir
        path = get_app_dir() / CONFIG_FILE_NAME

    if not path.exists():
        logger.info("No config file at %s, using defaults", path)
        return EngineConfig()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ValidationError(f"Failed to read config file {path}: {e}") from e

    try:
        return EngineConfig(**data)
    except ValueError as e:
        raise ValidationError(f"Invalid configuration in {path}: {e}") from e
