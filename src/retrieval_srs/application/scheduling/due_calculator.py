"""
Due predicates for library badges and counters.

get_due_now is deliberately coarser than the session queue: any relearn-locked
sentence counts as due here, while build_due_queue applies the Option A
session-boundary gate. Both predicates are kept distinct.
"""

from collections.abc import Iterable
from datetime import datetime

from retrieval_srs.domain.models import Sentence
from retrieval_srs.domain.settings import Settings

from .boundaries import next_reset_after


def get_due_now(sentences: Iterable[Sentence], now: datetime) -> list[Sentence]:
    """Eligible sentences past their due date or relearn-locked."""
    return [
        s
        for s in sentences
        if s.is_eligible
        and (
            s.scheduling_state.due_at <= now
            or s.scheduling_state.relearn_lock_until_next_session
        )
    ]


def get_due_today(
    sentences: Iterable[Sentence],
    settings: Settings,
    now: datetime,
) -> list[Sentence]:
    """Eligible sentences becoming due later in the current learning day."""
    next_reset = next_reset_after(now, settings)
    return [
        s
        for s in sentences
        if s.is_eligible and now < s.scheduling_state.due_at < next_reset
    ]
