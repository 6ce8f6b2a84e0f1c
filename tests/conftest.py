from datetime import datetime

import pytest

from retrieval_srs.domain.models import (
    SchedulingState,
    Sentence,
    SessionMode,
    create_review_event,
    create_session,
)
from retrieval_srs.domain.settings import Settings
from retrieval_srs.infrastructure.storage.sqlite_storage import SqliteStorage


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def now():
    """Mid-morning, well after the default 04:00 reset."""
    return datetime(2024, 3, 10, 10, 0, 0)


@pytest.fixture
def make_sentence(now):
    """Factory for eligible sentences in a given scheduling state."""

    def _make(
        sentence_id="s1",
        box_level=1,
        due_at=None,
        relearn_lock=False,
        last_reviewed_at=None,
        last_rating=None,
        eligible=True,
        language_code="hu",
        english="I would like a coffee.",
        duration=2.0,
        **state,
    ):
        return Sentence(
            id=sentence_id,
            language_code=language_code,
            english_translation_text=english,
            target_text=None,
            target_audio_uri=f"sqlite-audio://{sentence_id}",
            target_audio_duration_seconds=duration,
            created_at=now,
            is_eligible=eligible,
            scheduling_state=SchedulingState(
                box_level=box_level,
                due_at=due_at or now,
                last_rating=last_rating,
                last_reviewed_at=last_reviewed_at,
                relearn_lock_until_next_session=relearn_lock,
                **state,
            ),
        )

    return _make


@pytest.fixture
def session(settings, now):
    return create_session(10, settings, now, mode=SessionMode.DUE_THEN_EXTRA)


@pytest.fixture
def make_event():
    def _make(sentence_id, rating, timestamp, session_id="sess-1", box_level_after=1):
        return create_review_event(
            sentence_id=sentence_id,
            session_id=session_id,
            rating=rating,
            timestamp=timestamp,
            next_due_at=timestamp,
            interval_days=1,
            box_level_after=box_level_after,
        )

    return _make


@pytest.fixture
def storage():
    store = SqliteStorage(":memory:")
    yield store
    store.close()


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Points HOME at a temp dir so no real config file is picked up."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home

