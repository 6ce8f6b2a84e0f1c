from datetime import datetime, timedelta

import pytest

from retrieval_srs.application.scheduling.leitner import (
    calculate_next_due,
    get_next_session_due_at,
    is_stabilized,
)
from retrieval_srs.domain.errors import SchedulingInvariantError
from retrieval_srs.domain.models import Rating
from retrieval_srs.domain.settings import create_settings


def test_miss_resets_to_box_one_and_locks(settings, now):
    result = calculate_next_due(Rating.MISS, 3, now, settings, now)

    assert result.box_level == 1
    assert result.due_at == datetime(2024, 3, 11, 4, 0)
    assert result.relearn_lock is True


def test_next_keeps_box(settings, now):
    result = calculate_next_due(Rating.NEXT, 2, now, settings, now)

    assert result.box_level == 2
    assert result.due_at == now + timedelta(days=2)
    assert result.relearn_lock is False


def test_easy_promotes_one_box(settings, now):
    result = calculate_next_due(Rating.EASY, 2, now, settings, now)

    assert result.box_level == 3
    assert result.due_at == now + timedelta(days=4)
    assert result.relearn_lock is False


def test_easy_caps_at_last_box(settings, now):
    result = calculate_next_due(Rating.EASY, 6, now, settings, now)

    assert result.box_level == 6
    assert result.due_at == now + timedelta(days=30)


def test_frozen_easy_schedules_like_next(settings, now):
    result = calculate_next_due(Rating.EASY, 2, now, settings, now, is_frozen=True)

    assert result.box_level == 2
    assert result.due_at == now + timedelta(days=2)


def test_custom_intervals_define_max_box(now):
    settings = create_settings(box_intervals=[1, 3])

    result = calculate_next_due(Rating.EASY, 2, now, settings, now)

    assert result.box_level == 2
    assert result.due_at == now + timedelta(days=3)


def test_out_of_range_box_is_clamped(settings, now):
    result = calculate_next_due(Rating.NEXT, 9, now, settings, now)

    assert result.box_level == 6
    assert result.due_at == now + timedelta(days=30)


def test_repeat_is_rejected(settings, now):
    with pytest.raises(SchedulingInvariantError):
        calculate_next_due(Rating.REPEAT, 2, now, settings, now)


def test_next_session_due_before_reset_is_same_day(settings):
    assert get_next_session_due_at(datetime(2024, 3, 10, 3, 0), settings) == datetime(
        2024, 3, 10, 4, 0
    )


def test_next_session_due_exactly_at_reset_is_next_day(settings):
    assert get_next_session_due_at(datetime(2024, 3, 10, 4, 0), settings) == datetime(
        2024, 3, 11, 4, 0
    )


def test_next_session_due_uses_custom_reset(now):
    settings = create_settings(daily_reset_time="23:30")

    assert get_next_session_due_at(now, settings) == datetime(2024, 3, 10, 23, 30)


def test_stabilized_requires_box_four(make_sentence):
    assert is_stabilized(make_sentence(box_level=4), []) is True
    assert is_stabilized(make_sentence(box_level=3), []) is False


def test_recent_miss_blocks_stabilized(make_sentence, make_event, now):
    sentence = make_sentence(box_level=5)
    events = [
        make_event("s1", Rating.MISS, now - timedelta(days=3)),
        make_event("s1", Rating.NEXT, now - timedelta(days=1)),
    ]

    assert is_stabilized(sentence, events) is False


def test_old_miss_does_not_block_stabilized(make_sentence, make_event, now):
    sentence = make_sentence(box_level=5)
    events = [
        make_event("s1", Rating.NEXT, now - timedelta(days=1)),
        make_event("s1", Rating.MISS, now - timedelta(days=20)),
        make_event("s1", Rating.EASY, now - timedelta(days=4)),
    ]

    assert is_stabilized(sentence, events) is True
