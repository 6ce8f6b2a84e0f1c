# Domain Package
from .models import (
    Rating,
    ReviewEvent,
    SchedulingState,
    Sentence,
    SentenceStats,
    Session,
    SessionMode,
    SessionState,
)
from .settings import DEFAULT_SETTINGS, Settings

__all__ = [
    "Rating",
    "ReviewEvent",
    "SchedulingState",
    "Sentence",
    "SentenceStats",
    "Session",
    "SessionMode",
    "SessionState",
    "Settings",
    "DEFAULT_SETTINGS",
]
