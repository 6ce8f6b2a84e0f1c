from retrieval_srs.domain.models import (
    Rating,
    SessionMode,
    create_review_event,
    create_sentence,
    create_session,
    generate_id,
    is_incomplete_session,
)


def test_create_sentence_starts_in_box_one_inbox(now):
    sentence = create_sentence("hu", "Good morning", "uri", now)

    assert sentence.is_eligible is False
    assert sentence.scheduling_state.box_level == 1
    assert sentence.scheduling_state.due_at == now
    assert sentence.scheduling_state.relearn_lock_until_next_session is False
    assert sentence.stats.total_reviews == 0
    assert sentence.id


def test_create_sentence_keeps_given_id(now):
    assert create_sentence("hu", "Hi", "uri", now, sentence_id="fixed").id == "fixed"


def test_ids_are_unique():
    assert len({generate_id() for _ in range(50)}) == 50


def test_create_session_snapshots_settings(settings, now):
    session = create_session(12, settings, now, mode=SessionMode.DUE_ONLY)

    assert session.settings_snapshot is settings
    assert session.state.frozen_sentence_ids == frozenset()
    assert session.state.queue_position == 0
    assert is_incomplete_session(session)


def test_review_event_is_recorded_as_given(now):
    event = create_review_event("s1", "sess", Rating.EASY, now, now, 4, 3)

    assert event.rating is Rating.EASY
    assert event.computed_interval_days == 4
    assert event.box_level_after == 3


def test_rating_values():
    assert [r.value for r in Rating] == ["Miss", "Repeat", "Next", "Easy"]
