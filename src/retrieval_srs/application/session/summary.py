"""
End-of-session summary.

This is a pure computation module with no I/O.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from retrieval_srs.domain.models import Rating, ReviewEvent, Session


@dataclass(frozen=True)
class SessionSummary:
    """
    What a finished (or abandoned) session amounted to.
    """

    session_id: str
    items_reviewed: int
    miss_count: int
    repeat_count: int
    next_count: int
    easy_count: int
    elapsed_seconds: float
    avg_seconds_per_item: float
    projected_seconds_per_10: float  # avg_seconds_per_item * 10
    is_partial: bool  # stopped before completion


def summarize_session(session: Session, review_events: Iterable[ReviewEvent]) -> SessionSummary:
    """
    Summarize one session from its review events.

    Events belonging to other sessions are ignored, so callers may pass the
    full history.
    """
    events = [e for e in review_events if e.session_id == session.id]
    counts = {rating: 0 for rating in Rating}
    for event in events:
        counts[event.rating] += 1

    elapsed = session.state.elapsed_time_seconds
    items = len(events)
    avg = elapsed / items if items > 0 else 0.0

    return SessionSummary(
        session_id=session.id,
        items_reviewed=items,
        miss_count=counts[Rating.MISS],
        repeat_count=counts[Rating.REPEAT],
        next_count=counts[Rating.NEXT],
        easy_count=counts[Rating.EASY],
        elapsed_seconds=elapsed,
        avg_seconds_per_item=avg,
        projected_seconds_per_10=avg * 10,
        is_partial=not session.state.is_complete or session.ended_at is None,
    )


def format_duration(seconds: float) -> str:
    """m:ss rendering used by the CLI."""
    total = int(round(seconds))
    return f"{total // 60}:{total % 60:02d}"
