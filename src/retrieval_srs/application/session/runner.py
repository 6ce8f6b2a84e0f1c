"""
Session runner: the per-item phase machine and the rating handler.

Each queued sentence moves through prompt -> response -> answer -> rating.
Transitions are pure functions of (item, now); the session driver decides
when to call them (periodic tick or explicit collaborator event).

Rating rules live in handle_rating. It never mutates its inputs and returns
the updated sentence, an immutable review event, and the queue/freeze
bookkeeping the caller must apply.
"""

import dataclasses
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from retrieval_srs.application.scheduling.leitner import calculate_next_due
from retrieval_srs.application.scheduling.relearn_clamp import (
    clear_relearn_lock,
    should_appear_in_session,
)
from retrieval_srs.domain.constants import DEFAULT_AUDIO_DURATION_SECONDS
from retrieval_srs.domain.errors import SchedulingInvariantError
from retrieval_srs.domain.models import (
    Rating,
    ReviewEvent,
    Sentence,
    SentenceStats,
    Session,
    create_review_event,
)
from retrieval_srs.domain.settings import Settings

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    PROMPT = "prompt"
    RESPONSE = "response"
    ANSWER = "answer"
    RATING = "rating"


@dataclass(frozen=True)
class SessionItemState:
    sentence: Sentence
    response_window_seconds: float
    target_audio_duration_seconds: float
    phase: Phase
    start_time: datetime

    def elapsed(self, now: datetime) -> float:
        return (now - self.start_time).total_seconds()


@dataclass(frozen=True)
class ProcessItemResult:
    next_state: SessionItemState
    should_play_answer: bool = False
    should_capture_rating: bool = False


@dataclass(frozen=True)
class RatingOutcome:
    updated_sentence: Sentence
    review_event: ReviewEvent
    should_freeze: bool
    should_reinsert: bool


# ---------- Phase machine ----------


def calculate_response_window(target_audio_duration_seconds: float, settings: Settings) -> float:
    """Time the learner gets to answer: audio length plus the configured padding."""
    return target_audio_duration_seconds + settings.extra_seconds


def start_item(
    sentence: Sentence,
    settings: Settings,
    now: datetime,
    audio_duration_seconds: float | None = None,
) -> SessionItemState:
    """Enter the prompt phase for a sentence."""
    duration = audio_duration_seconds or sentence.target_audio_duration_seconds
    if not duration or duration <= 0:
        duration = DEFAULT_AUDIO_DURATION_SECONDS

    return SessionItemState(
        sentence=sentence,
        response_window_seconds=calculate_response_window(duration, settings),
        target_audio_duration_seconds=duration,
        phase=Phase.PROMPT,
        start_time=now,
    )


def _enter(item: SessionItemState, phase: Phase, now: datetime) -> SessionItemState:
    return dataclasses.replace(item, phase=phase, start_time=now)


def _stay(item: SessionItemState, **flags: bool) -> ProcessItemResult:
    return ProcessItemResult(next_state=item, **flags)


def process_item(
    item: SessionItemState,
    now: datetime,
    allow_answer_timeout: bool = False,
) -> ProcessItemResult:
    """
    Tick-driven transition check.

    Args:
        item: Current item state.
        now: Tick time.
        allow_answer_timeout: Let elapsed time end the answer phase. Only set
            when the answer player cannot report the end of playback; otherwise
            answer -> rating is driven by on_answer_finished alone.
    """
    elapsed = item.elapsed(now)

    if item.phase is Phase.PROMPT:
        # Fallback path; normally the prompt speaker's completion drives this.
        return ProcessItemResult(next_state=_enter(item, Phase.RESPONSE, now))

    if item.phase is Phase.RESPONSE:
        if elapsed >= item.response_window_seconds:
            return ProcessItemResult(
                next_state=_enter(item, Phase.ANSWER, now),
                should_play_answer=True,
            )
        return _stay(item)

    if item.phase is Phase.ANSWER:
        if allow_answer_timeout and elapsed >= item.target_audio_duration_seconds:
            return ProcessItemResult(
                next_state=_enter(item, Phase.RATING, now),
                should_capture_rating=True,
            )
        return _stay(item)

    # Rating has no timeout; it waits for the learner.
    return _stay(item, should_capture_rating=True)


def on_prompt_finished(item: SessionItemState, now: datetime) -> ProcessItemResult:
    """The prompt speaker finished: open the response window."""
    if item.phase is not Phase.PROMPT:
        return _stay(item)
    return ProcessItemResult(next_state=_enter(item, Phase.RESPONSE, now))


def on_answer_finished(item: SessionItemState, now: datetime) -> ProcessItemResult:
    """The answer audio finished: start capturing the rating."""
    if item.phase is not Phase.ANSWER:
        return _stay(item)
    return ProcessItemResult(
        next_state=_enter(item, Phase.RATING, now),
        should_capture_rating=True,
    )


# ---------- Rating ----------


def _prior_lock_consumed(sentence: Sentence, session: Session, settings: Settings) -> bool:
    """A lock from an earlier session is released once this session qualifies."""
    state = sentence.scheduling_state
    if not state.relearn_lock_until_next_session or state.last_reviewed_at is None:
        return False
    return should_appear_in_session(sentence, session.started_at, settings)


def handle_rating(
    sentence: Sentence,
    rating: Rating,
    session: Session,
    settings: Settings,
    now: datetime,
    is_frozen: bool = False,
) -> RatingOutcome:
    """
    Apply a rating to a sentence.

    Repeat leaves scheduling untouched, freezes the sentence for the rest of
    the session and requeues it. Miss/Next/Easy go through the Leitner
    scheduler; an Easy on a frozen sentence schedules like Next.

    Args:
        sentence: Sentence as presented.
        rating: Captured rating.
        session: The running session (its frozen set is consulted).
        settings: The session's settings snapshot.
        now: Rating time.
        is_frozen: Caller-known freeze flag, OR-ed with the session's set.

    Raises:
        SchedulingInvariantError: If the sentence has no scheduling state.
    """
    if getattr(sentence, "scheduling_state", None) is None:
        raise SchedulingInvariantError(f"Sentence {sentence.id} is missing scheduling_state")

    state = sentence.scheduling_state

    if rating is Rating.REPEAT:
        event = create_review_event(
            sentence_id=sentence.id,
            session_id=session.id,
            rating=rating,
            timestamp=now,
            next_due_at=state.due_at,
            interval_days=0,
            box_level_after=state.box_level,
        )
        return RatingOutcome(
            updated_sentence=sentence,
            review_event=event,
            should_freeze=True,
            should_reinsert=True,
        )

    currently_frozen = is_frozen or sentence.id in session.state.frozen_sentence_ids
    effective_frozen = rating is Rating.EASY and currently_frozen

    result = calculate_next_due(
        rating,
        state.box_level,
        state.due_at,
        settings,
        now,
        is_frozen=effective_frozen,
    )

    base = sentence
    if _prior_lock_consumed(sentence, session, settings):
        base = clear_relearn_lock(sentence)

    is_miss = rating is Rating.MISS
    updated = dataclasses.replace(
        base,
        scheduling_state=dataclasses.replace(
            base.scheduling_state,
            box_level=result.box_level,
            due_at=result.due_at,
            last_rating=rating,
            last_reviewed_at=now,
            relearn_lock_until_next_session=result.relearn_lock,
            lapse_count=state.lapse_count + 1 if is_miss else state.lapse_count,
            success_streak=0 if is_miss else state.success_streak + 1,
        ),
        stats=SentenceStats(
            total_reviews=sentence.stats.total_reviews + 1,
            total_misses=sentence.stats.total_misses + (1 if is_miss else 0),
        ),
    )

    interval_days = math.ceil((result.due_at - now) / timedelta(days=1))
    event = create_review_event(
        sentence_id=sentence.id,
        session_id=session.id,
        rating=rating,
        timestamp=now,
        next_due_at=result.due_at,
        interval_days=interval_days,
        box_level_after=result.box_level,
    )

    if effective_frozen:
        logger.info(f"Easy on frozen sentence {sentence.id} scheduled as Next")

    return RatingOutcome(
        updated_sentence=updated,
        review_event=event,
        should_freeze=False,
        should_reinsert=is_miss,
    )


# ---------- Session bookkeeping ----------


def update_session_state(session: Session, **state: Any) -> Session:
    """Merge partial state into the session. No derived values are recomputed."""
    if "frozen_sentence_ids" in state:
        state["frozen_sentence_ids"] = frozenset(state["frozen_sentence_ids"])
    return dataclasses.replace(session, state=dataclasses.replace(session.state, **state))


def apply_freeze(
    session: Session,
    sentence_id: str,
    outcome: RatingOutcome,
    rating: Rating,
) -> tuple[Session, bool]:
    """
    Update the session's frozen set after a rating.

    Repeat adds the sentence (idempotently); Miss removes it.

    Returns:
        The session and whether the sentence was newly frozen, which is when
        the "Frozen" cue should play.
    """
    frozen = session.state.frozen_sentence_ids

    if outcome.should_freeze:
        if sentence_id in frozen:
            return session, False
        return update_session_state(session, frozen_sentence_ids=frozen | {sentence_id}), True

    if rating is Rating.MISS and sentence_id in frozen:
        return update_session_state(session, frozen_sentence_ids=frozen - {sentence_id}), False

    return session, False


def is_due_queue_complete(due_queue_length: int, current_position: int) -> bool:
    return current_position >= due_queue_length


def end_session(
    session: Session,
    now: datetime,
    elapsed_time_seconds: float | None = None,
) -> Session:
    """Close the session. Freeze state never survives a session boundary."""
    elapsed = (
        session.state.elapsed_time_seconds
        if elapsed_time_seconds is None
        else elapsed_time_seconds
    )
    return dataclasses.replace(
        session,
        ended_at=now,
        state=dataclasses.replace(
            session.state,
            is_complete=True,
            elapsed_time_seconds=elapsed,
            frozen_sentence_ids=frozenset(),
        ),
    )
