"""
Learning settings consumed by every scheduling component.

Settings are an explicit, immutable value. They are constructed once (from
storage or defaults) and threaded through as a parameter; no core function
reads a module-level settings object.
"""

import re
from collections.abc import Mapping
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from retrieval_srs.domain.constants import (
    DAILY_RESET_TIME_PATTERN,
    DEFAULT_BOX_INTERVALS,
    DEFAULT_DAILY_RESET_TIME,
    DEFAULT_EXTRA_SECONDS,
    DEFAULT_LANGUAGE,
)
from retrieval_srs.domain.errors import InvalidSettingsError

_RESET_TIME_RE = re.compile(DAILY_RESET_TIME_PATTERN)


class Settings(BaseModel):
    """
    User-facing learning configuration.

    Attributes:
        daily_reset_time: "HH:MM" (24h) start of the learning day.
        timezone: Optional IANA zone used for day boundaries. None means the
            zone (or naivety) of the timestamps passed in.
        box_intervals: Days per Leitner box; index 0 is box 1. Its length is
            the maximum box level.
        extra_seconds: Padding added to every response window.
        onboarding_completed: Whether the first-run flow has been done.
        current_language: ISO 639-1 code of the language being practiced.
    """

    model_config = ConfigDict(frozen=True)

    daily_reset_time: str = DEFAULT_DAILY_RESET_TIME
    timezone: str | None = None
    box_intervals: list[int] = Field(default_factory=lambda: list(DEFAULT_BOX_INTERVALS))
    extra_seconds: float = Field(default=DEFAULT_EXTRA_SECONDS, ge=0)
    onboarding_completed: bool = False
    current_language: str = DEFAULT_LANGUAGE

    @field_validator("daily_reset_time")
    @classmethod
    def check_reset_time(cls, v: str) -> str:
        if not _RESET_TIME_RE.match(v):
            raise ValueError(f"Invalid daily_reset_time format: {v}. Expected HH:MM format.")
        return v

    @field_validator("box_intervals")
    @classmethod
    def check_box_intervals(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("box_intervals must contain at least one interval")
        if any(days <= 0 for days in v):
            raise ValueError(f"box_intervals must be positive day counts, got {v}")
        return v

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str | None) -> str | None:
        if v is None:
            return None
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @property
    def max_box(self) -> int:
        return len(self.box_intervals)

    @property
    def reset_hour_minute(self) -> tuple[int, int]:
        hours, minutes = self.daily_reset_time.split(":")
        return int(hours), int(minutes)


DEFAULT_SETTINGS = Settings()


def create_settings(**overrides: Any) -> Settings:
    """Defaults merged with overrides, validated."""
    return validate_settings(overrides)


def validate_settings(settings: Mapping[str, Any] | Settings) -> Settings:
    """
    Validate a (possibly partial) settings mapping.

    Missing or empty values fall back to defaults. Raises InvalidSettingsError
    with a descriptive message when a provided value is malformed, so bad
    configuration never reaches the scheduler.
    """
    if isinstance(settings, Settings):
        data: dict[str, Any] = settings.model_dump()
    else:
        data = dict(settings)

    # Empty strings / empty lists mean "use the default", mirroring stored
    # payloads written by older clients.
    cleaned = {
        k: v
        for k, v in data.items()
        if k in Settings.model_fields and v is not None and v != "" and v != []
    }
    if "timezone" in data and data["timezone"] is None:
        cleaned["timezone"] = None

    try:
        return Settings(**cleaned)
    except ValidationError as e:
        messages = "; ".join(err["msg"] for err in e.errors())
        raise InvalidSettingsError(messages) from e
