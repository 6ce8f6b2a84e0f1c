"""
Leitner-box scheduler.

Maps (rating, current box, now) to the next box, due date and relearn lock.
This is a pure computation module with no I/O.

Box rules:
- Miss: back to box 1, due at the next daily reset, relearn lock set.
- Next: same box, due after the current box's interval.
- Easy: promote one box (capped at the last box), due after the new box's
  interval. A frozen Easy (the item was Repeated this session) is a Next.
- Repeat never reaches the scheduler; the session runner handles it.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from retrieval_srs.domain.constants import STABILIZED_LOOKBACK_EVENTS, STABILIZED_MIN_BOX
from retrieval_srs.domain.errors import SchedulingInvariantError
from retrieval_srs.domain.models import Rating, ReviewEvent, Sentence
from retrieval_srs.domain.settings import Settings

from .boundaries import next_reset_after


@dataclass(frozen=True)
class SchedulingResult:
    box_level: int
    due_at: datetime
    relearn_lock: bool


def _clamp_box(box: int, max_box: int) -> int:
    return max(1, min(box, max_box))


def _interval_days(settings: Settings, box: int) -> int:
    index = _clamp_box(box, settings.max_box) - 1
    return settings.box_intervals[index]


def calculate_next_due(
    rating: Rating,
    current_box: int,
    current_due: datetime,
    settings: Settings,
    now: datetime,
    is_frozen: bool = False,
) -> SchedulingResult:
    """
    Compute the scheduling outcome of a rating.

    Args:
        rating: Miss, Next or Easy. Repeat is rejected.
        current_box: Box level before the rating.
        current_due: Due date before the rating (kept for callers that log it).
        settings: Settings in effect for the session.
        now: Rating time.
        is_frozen: Whether the item was Repeated earlier in this session.

    Raises:
        SchedulingInvariantError: If called with Repeat.
    """
    max_box = settings.max_box
    box = _clamp_box(current_box, max_box)

    if rating is Rating.MISS:
        return SchedulingResult(
            box_level=1,
            due_at=get_next_session_due_at(now, settings),
            relearn_lock=True,
        )

    if rating is Rating.NEXT or (rating is Rating.EASY and is_frozen):
        return SchedulingResult(
            box_level=box,
            due_at=now + timedelta(days=_interval_days(settings, box)),
            relearn_lock=False,
        )

    if rating is Rating.EASY:
        new_box = _clamp_box(box + 1, max_box)
        return SchedulingResult(
            box_level=new_box,
            due_at=now + timedelta(days=_interval_days(settings, new_box)),
            relearn_lock=False,
        )

    raise SchedulingInvariantError(
        f"{rating.value} rating must not be scheduled; the session runner handles it"
    )


def get_next_session_due_at(now: datetime, settings: Settings) -> datetime:
    """Next occurrence of the daily reset strictly after now."""
    return next_reset_after(now, settings)


def is_stabilized(sentence: Sentence, review_events: Sequence[ReviewEvent]) -> bool:
    """
    A sentence is stabilized at box >= 4 with no Miss among its two most
    recent reviews (all-time, not session-scoped).

    Args:
        sentence: The sentence to check.
        review_events: That sentence's review history, in any order.
    """
    if sentence.scheduling_state.box_level < STABILIZED_MIN_BOX:
        return False

    recent = sorted(review_events, key=lambda e: e.timestamp, reverse=True)
    recent = recent[:STABILIZED_LOOKBACK_EVENTS]
    return not any(e.rating is Rating.MISS for e in recent)
