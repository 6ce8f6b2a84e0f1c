from datetime import datetime, timedelta

from retrieval_srs.application.scheduling.streak_calculator import calculate_streak
from retrieval_srs.application.session.runner import end_session
from retrieval_srs.domain.models import Rating, create_session


def _completed(settings, started_at, make_event, reviewed=True):
    session = create_session(10, settings, started_at)
    session = end_session(session, started_at + timedelta(minutes=10), 600)
    events = [make_event("s1", Rating.NEXT, started_at, session_id=session.id)] if reviewed else []
    return session, events


def _history(settings, make_event, starts, reviewed=True):
    sessions, events = [], []
    for start in starts:
        session, evs = _completed(settings, start, make_event, reviewed)
        sessions.append(session)
        events.extend(evs)
    return sessions, events


def test_consecutive_days_count(settings, make_event, now):
    sessions, events = _history(
        settings,
        make_event,
        [datetime(2024, 3, 10, 9, 0), datetime(2024, 3, 9, 20, 0), datetime(2024, 3, 8, 12, 0)],
    )

    assert calculate_streak(sessions, events, settings, now) == 3


def test_gap_stops_the_count(settings, make_event, now):
    sessions, events = _history(
        settings,
        make_event,
        [datetime(2024, 3, 10, 9, 0), datetime(2024, 3, 8, 12, 0)],
    )

    assert calculate_streak(sessions, events, settings, now) == 1


def test_days_start_at_reset_time(settings, make_event, now):
    # 03:00 on the 9th belongs to the learning day of the 8th
    sessions, events = _history(
        settings,
        make_event,
        [datetime(2024, 3, 10, 9, 0), datetime(2024, 3, 9, 3, 0)],
    )

    assert calculate_streak(sessions, events, settings, now) == 1


def test_before_reset_still_counts_previous_evening(settings, make_event):
    sessions, events = _history(settings, make_event, [datetime(2024, 3, 10, 22, 0)])

    assert calculate_streak(sessions, events, settings, datetime(2024, 3, 11, 2, 0)) == 1
    assert calculate_streak(sessions, events, settings, datetime(2024, 3, 11, 5, 0)) == 0


def test_no_practice_today_is_zero(settings, make_event, now):
    sessions, events = _history(settings, make_event, [datetime(2024, 3, 9, 9, 0)])

    assert calculate_streak(sessions, events, settings, now) == 0


def test_sessions_without_reviews_do_not_count(settings, make_event, now):
    sessions, events = _history(settings, make_event, [now - timedelta(hours=1)], reviewed=False)

    assert calculate_streak(sessions, events, settings, now) == 0


def test_incomplete_sessions_do_not_count(settings, make_event, now):
    session = create_session(10, settings, now - timedelta(hours=1))
    event = make_event("s1", Rating.NEXT, now, session_id=session.id)

    assert calculate_streak([session], [event], settings, now) == 0
