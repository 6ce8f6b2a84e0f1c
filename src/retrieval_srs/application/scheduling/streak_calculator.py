"""
Practice streak: consecutive learning days with at least one completed session.
"""

from collections.abc import Iterable
from datetime import date, datetime

from retrieval_srs.domain.models import ReviewEvent, Session
from retrieval_srs.domain.settings import Settings

from .boundaries import ONE_DAY, day_start


def calculate_streak(
    sessions: Iterable[Session],
    review_events: Iterable[ReviewEvent],
    settings: Settings,
    now: datetime,
) -> int:
    """
    Count consecutive complete learning days ending today.

    A day is complete when it holds a session that has ended, is marked
    complete and has at least one review event. Days start at the daily reset.
    Counting walks back from today's learning day and stops at the first gap,
    so a streak is 0 until today's practice is done.
    """
    reviewed_session_ids = {e.session_id for e in review_events}

    complete_days: set[date] = set()
    for session in sessions:
        if session.ended_at is None or not session.state.is_complete:
            continue
        if session.id not in reviewed_session_ids:
            continue
        complete_days.add(day_start(session.started_at, settings).date())

    if not complete_days:
        return 0

    streak = 0
    expected = day_start(now, settings)
    while expected.date() in complete_days:
        streak += 1
        expected -= ONE_DAY

    return streak
