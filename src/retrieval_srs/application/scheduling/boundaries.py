"""
Daily-reset boundary arithmetic.

The learning day starts at settings.daily_reset_time rather than midnight.
All helpers take the timestamp explicitly and return timestamps of the same
kind. Naive values are taken as local wall-clock time and stay naive; aware
values are converted into settings.timezone when one is configured.
"""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from retrieval_srs.domain.settings import Settings

ONE_DAY = timedelta(days=1)


def localize(ts: datetime, settings: Settings) -> datetime:
    """Express an aware ts in the configured timezone, if any."""
    if settings.timezone is None or ts.tzinfo is None:
        return ts
    return ts.astimezone(ZoneInfo(settings.timezone))


def reset_boundary_on(ts: datetime, settings: Settings) -> datetime:
    """The reset boundary on the calendar day of ts."""
    hours, minutes = settings.reset_hour_minute
    return localize(ts, settings).replace(hour=hours, minute=minutes, second=0, microsecond=0)


def next_reset_after(ts: datetime, settings: Settings) -> datetime:
    """
    First reset boundary strictly after ts.

    This is today's boundary if it has not occurred yet, else tomorrow's.
    """
    boundary = reset_boundary_on(ts, settings)
    if boundary <= ts:
        boundary += ONE_DAY
    return boundary


def day_start(ts: datetime, settings: Settings) -> datetime:
    """Most recent reset boundary at or before ts (start of ts's learning day)."""
    boundary = reset_boundary_on(ts, settings)
    if boundary > ts:
        boundary -= ONE_DAY
    return boundary
