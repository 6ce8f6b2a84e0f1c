"""
Domain models for sentences, sessions and review history.

These are pure data structures with no I/O. Every model is immutable; updates
produce new values via dataclasses.replace, and callers persist the copies.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ulid import ULID

from retrieval_srs.domain.settings import Settings


class Rating(str, Enum):
    """Recall rating captured after the answer audio plays."""

    MISS = "Miss"  # failed recall: demote to box 1, lock until next session
    REPEAT = "Repeat"  # practice again this session only
    NEXT = "Next"  # acceptable recall, no promotion
    EASY = "Easy"  # strong recall, promote one box


class SessionMode(str, Enum):
    DUE_ONLY = "DueOnly"
    DUE_THEN_EXTRA = "DueThenExtra"


def generate_id() -> str:
    """Sortable unique identifier for new entities."""
    return str(ULID())


@dataclass(frozen=True)
class SchedulingState:
    """
    Per-sentence Leitner scheduling data.

    Attributes:
        box_level: Leitner box, 1-indexed.
        due_at: When the sentence next becomes due.
        last_rating: Most recent non-Repeat rating, if any.
        last_reviewed_at: When that rating was given.
        relearn_lock_until_next_session: Set on Miss; forces the sentence into
            the first session after the next daily reset regardless of due_at.
        lapse_count: Cumulative Miss count.
        success_streak: Consecutive non-Miss ratings.
    """

    box_level: int
    due_at: datetime
    last_rating: Rating | None = None
    last_reviewed_at: datetime | None = None
    relearn_lock_until_next_session: bool = False
    lapse_count: int = 0
    success_streak: int = 0


@dataclass(frozen=True)
class SentenceStats:
    total_reviews: int = 0
    total_misses: int = 0


@dataclass(frozen=True)
class Sentence:
    """A reviewable unit: an English prompt paired with target-language audio."""

    id: str
    language_code: str
    english_translation_text: str
    target_audio_uri: str
    created_at: datetime
    scheduling_state: SchedulingState
    target_text: str | None = None
    target_audio_duration_seconds: float | None = None
    tags: list[str] | None = None
    is_eligible: bool = False
    stats: SentenceStats = field(default_factory=SentenceStats)


def create_sentence(
    language_code: str,
    english_translation_text: str,
    target_audio_uri: str,
    now: datetime,
    target_text: str | None = None,
    tags: list[str] | None = None,
    target_audio_duration_seconds: float | None = None,
    sentence_id: str | None = None,
) -> Sentence:
    """
    Create a new sentence in box 1, due immediately.

    New sentences start ineligible (in the inbox) until the user promotes them
    to the library.
    """
    return Sentence(
        id=sentence_id or generate_id(),
        language_code=language_code,
        english_translation_text=english_translation_text,
        target_text=target_text,
        target_audio_uri=target_audio_uri,
        target_audio_duration_seconds=target_audio_duration_seconds,
        tags=tags,
        created_at=now,
        is_eligible=False,
        scheduling_state=SchedulingState(box_level=1, due_at=now),
        stats=SentenceStats(),
    )


@dataclass(frozen=True)
class ReviewEvent:
    """Immutable audit record of one rating action."""

    id: str
    sentence_id: str
    session_id: str
    timestamp: datetime
    rating: Rating
    computed_next_due_at: datetime
    computed_interval_days: int
    box_level_after: int


def create_review_event(
    sentence_id: str,
    session_id: str,
    rating: Rating,
    timestamp: datetime,
    next_due_at: datetime,
    interval_days: int,
    box_level_after: int,
) -> ReviewEvent:
    return ReviewEvent(
        id=generate_id(),
        sentence_id=sentence_id,
        session_id=session_id,
        timestamp=timestamp,
        rating=rating,
        computed_next_due_at=next_due_at,
        computed_interval_days=interval_days,
        box_level_after=box_level_after,
    )


@dataclass(frozen=True)
class SessionState:
    """
    In-flight progress of a session.

    frozen_sentence_ids holds the sentences the user chose to Repeat in this
    session. It never outlives the session.
    """

    current_item_id: str | None = None
    queue_position: int = 0
    elapsed_time_seconds: float = 0
    is_complete: bool = False
    frozen_sentence_ids: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class Session:
    id: str
    started_at: datetime
    mode: SessionMode
    target_minutes: int
    settings_snapshot: Settings
    ended_at: datetime | None = None
    state: SessionState = field(default_factory=SessionState)


def create_session(
    target_minutes: int,
    settings: Settings,
    now: datetime,
    mode: SessionMode = SessionMode.DUE_THEN_EXTRA,
) -> Session:
    """Start a session, snapshotting settings so later edits don't affect it."""
    return Session(
        id=generate_id(),
        started_at=now,
        ended_at=None,
        mode=mode,
        target_minutes=target_minutes,
        settings_snapshot=settings,
        state=SessionState(),
    )


def is_incomplete_session(session: Session) -> bool:
    return not session.state.is_complete and session.ended_at is None


@dataclass(frozen=True)
class TranscriptionSegment:
    """One timed sentence from a transcribed recording (seconds)."""

    start: float
    end: float
    original_text: str
    english_text: str


@dataclass(frozen=True)
class TranscriptionResult:
    segments: list[TranscriptionSegment]
    detected_language: str
    language_match: bool
    duration: float


@dataclass(frozen=True)
class AudioFile:
    sentence_id: str
    filename: str
    data: bytes


@dataclass
class ExportBundle:
    """Everything the storage layer holds, for backup and restore."""

    sentences: list[Sentence]
    review_events: list[ReviewEvent]
    sessions: list[Session]
    settings: Settings
    audio_files: list[AudioFile] = field(default_factory=list)
