import dataclasses
from datetime import datetime, timedelta

import pytest

from retrieval_srs.application.importer import ImportSentenceData
from retrieval_srs.application.study_service import StudyService
from retrieval_srs.domain.errors import (
    InvalidSettingsError,
    NotFoundError,
    RatingNotAcceptedError,
)
from retrieval_srs.domain.models import Rating, SessionMode


@pytest.fixture
def service(storage, now):
    return StudyService(storage, clock=lambda: now)


async def _library(service, *names, eligible=True):
    return [
        await service.add_sentence(
            english_translation_text=name,
            audio=b"\x00" * 100,
            filename=f"{name}.mp3",
            eligible=eligible,
        )
        for name in names
    ]


@pytest.mark.asyncio
async def test_add_sentence_lands_in_inbox(service, storage, now):
    (sentence,) = await _library(service, "Hello", eligible=False)

    assert sentence.is_eligible is False
    assert sentence.language_code == "hu"
    assert sentence.scheduling_state.box_level == 1
    assert sentence.scheduling_state.due_at == now
    assert sentence.target_audio_duration_seconds == 3.0
    assert sentence.target_audio_uri == f"sqlite-audio://{sentence.id}"
    assert await storage.get_audio(sentence.id) == b"\x00" * 100


@pytest.mark.asyncio
async def test_set_eligibility(service):
    (sentence,) = await _library(service, "Hello", eligible=False)

    promoted = await service.set_eligibility(sentence.id, True)

    assert promoted.is_eligible is True
    assert (await service.get_sentence(sentence.id)).is_eligible is True


@pytest.mark.asyncio
async def test_get_missing_sentence(service):
    with pytest.raises(NotFoundError):
        await service.get_sentence("nope")


@pytest.mark.asyncio
async def test_invalid_settings_are_not_saved(service):
    with pytest.raises(InvalidSettingsError) as exc:
        await service.save_settings({"daily_reset_time": "25:00"})

    assert "Invalid daily_reset_time format" in str(exc.value)
    assert (await service.get_settings()).daily_reset_time == "04:00"


@pytest.mark.asyncio
async def test_save_settings_merges(service):
    await service.save_settings({"extra_seconds": 5})
    settings = await service.save_settings({"daily_reset_time": "06:30"})

    assert settings.extra_seconds == 5
    assert settings.daily_reset_time == "06:30"


@pytest.mark.asyncio
async def test_start_then_resume(service):
    session, resumed = await service.start_or_resume_session(15, SessionMode.DUE_ONLY)
    again, resumed_again = await service.start_or_resume_session(10)

    assert resumed is False
    assert resumed_again is True
    assert again.id == session.id
    assert again.target_minutes == 15
    assert again.mode is SessionMode.DUE_ONLY


@pytest.mark.asyncio
async def test_settings_snapshot_is_isolated(service):
    session, _ = await service.start_or_resume_session(10)
    await service.save_settings({"extra_seconds": 9})

    stored = await service.get_session(session.id)

    assert stored.settings_snapshot.extra_seconds == 2.0


@pytest.mark.asyncio
async def test_build_queues(service, storage, now):
    due, later = await _library(service, "due", "later")
    await storage.update_sentence(
        dataclasses.replace(
            later,
            scheduling_state=dataclasses.replace(
                later.scheduling_state, due_at=now + timedelta(days=2)
            ),
        )
    )
    await _library(service, "inbox", eligible=False)
    session, _ = await service.start_or_resume_session(10)

    due_queue, extra_queue = await service.build_queues(session)

    assert [q.sentence.id for q in due_queue] == [due.id]
    assert {q.sentence.id for q in extra_queue} == {due.id, later.id}


@pytest.mark.asyncio
async def test_repeat_persists_freeze(service, storage):
    (sentence,) = await _library(service, "Hello")
    session, _ = await service.start_or_resume_session(10)

    result = await service.apply_rating(session, sentence, Rating.REPEAT)

    assert result.newly_frozen is True
    stored = await storage.get_session(session.id)
    assert stored.state.frozen_sentence_ids == frozenset({sentence.id})
    events = await storage.get_review_events(sentence.id)
    assert [e.rating for e in events] == [Rating.REPEAT]


@pytest.mark.asyncio
async def test_rate_presented_persists_sentence(service, storage, now):
    (sentence,) = await _library(service, "Hello")
    session, _ = await service.start_or_resume_session(10)
    await service.present_item(session.id, sentence.id, 0)

    result = await service.rate_presented(session.id, sentence.id, Rating.EASY)

    stored = await storage.get_sentence(sentence.id)
    assert stored.scheduling_state.box_level == 2
    assert stored.scheduling_state.due_at == now + timedelta(days=2)
    assert result.outcome.review_event.computed_interval_days == 2


@pytest.mark.asyncio
async def test_rate_presented_accepts_one_rating(service, storage):
    (sentence,) = await _library(service, "Hello")
    session, _ = await service.start_or_resume_session(10)
    await service.present_item(session.id, sentence.id, 0)

    await service.rate_presented(session.id, sentence.id, Rating.EASY)
    with pytest.raises(RatingNotAcceptedError):
        await service.rate_presented(session.id, sentence.id, Rating.EASY)

    assert (await storage.get_sentence(sentence.id)).scheduling_state.box_level == 2
    assert len(await storage.get_review_events(sentence.id)) == 1
    assert (await storage.get_session(session.id)).state.current_item_id is None


@pytest.mark.asyncio
async def test_rate_without_presentation_is_rejected(service):
    (sentence,) = await _library(service, "Hello")
    session, _ = await service.start_or_resume_session(10)

    with pytest.raises(RatingNotAcceptedError, match="not awaiting a rating"):
        await service.rate_presented(session.id, sentence.id, Rating.NEXT)


@pytest.mark.asyncio
async def test_end_session_and_summary(service):
    (sentence,) = await _library(service, "Hello")
    session, _ = await service.start_or_resume_session(10)
    result = await service.apply_rating(session, sentence, Rating.NEXT)

    ended = await service.end_session(result.session, 90)
    summary = await service.session_summary(session.id)

    assert ended.state.is_complete is True
    assert summary.items_reviewed == 1
    assert summary.next_count == 1
    assert summary.elapsed_seconds == 90
    assert summary.is_partial is False


@pytest.mark.asyncio
async def test_save_progress(service, storage):
    session, _ = await service.start_or_resume_session(10)

    await service.save_progress(session, "abc", 3, 42.5)

    stored = await storage.get_session(session.id)
    assert stored.state.current_item_id == "abc"
    assert stored.state.queue_position == 3
    assert stored.state.elapsed_time_seconds == 42.5


@pytest.mark.asyncio
async def test_resolve_audio_duration_estimates_and_persists(service, storage):
    (sentence,) = await _library(service, "Hello")
    unknown = dataclasses.replace(sentence, target_audio_duration_seconds=None)
    await storage.update_sentence(unknown)

    updated, duration = await service.resolve_audio_duration(unknown)

    assert duration == 3.0
    assert (await storage.get_sentence(sentence.id)).target_audio_duration_seconds == 3.0
    assert updated.target_audio_duration_seconds == 3.0


@pytest.mark.asyncio
async def test_import_skips_rows_without_audio(service):
    items = [
        ImportSentenceData("With audio", id="a1"),
        ImportSentenceData("Without audio", id="a2"),
        ImportSentenceData("No id"),
    ]

    created = await service.import_sentences(items, {"a1": ("a1.mp3", b"\x00" * 10)}, eligible=True)

    assert [s.id for s in created] == ["a1"]
    assert created[0].is_eligible is True


@pytest.mark.asyncio
async def test_delete_sentence_cascades(service, storage):
    (sentence,) = await _library(service, "Hello")
    session, _ = await service.start_or_resume_session(10)
    await service.apply_rating(session, sentence, Rating.NEXT)

    await service.delete_sentence(sentence.id)

    assert await storage.get_sentence(sentence.id) is None
    assert await storage.get_audio(sentence.id) is None
    assert await storage.get_review_events(sentence.id) == []


@pytest.mark.asyncio
async def test_library_overview(service, storage, now):
    a, b = await _library(service, "a", "b")
    await _library(service, "inbox", eligible=False)
    session, _ = await service.start_or_resume_session(10)
    result = await service.apply_rating(session, a, Rating.NEXT)
    await service.end_session(result.session, 60)

    overview = await service.library_overview()

    assert overview.total == 3
    assert overview.eligible == 2
    assert overview.inbox == 1
    assert overview.due_now == 1  # b; a moved to tomorrow
    assert overview.stabilized == 0
    assert overview.streak == 1


@pytest.mark.asyncio
async def test_configured_timezone_with_naive_clock(service, storage, now):
    await service.save_settings({"timezone": "Europe/Budapest"})
    (sentence,) = await _library(service, "Hello")
    session, _ = await service.start_or_resume_session(10)

    result = await service.apply_rating(session, sentence, Rating.MISS)
    overview = await service.library_overview()

    due_at = result.outcome.updated_sentence.scheduling_state.due_at
    assert due_at == datetime(2024, 3, 11, 4, 0)
    assert due_at.tzinfo is None
    assert overview.due_now == 1
    assert overview.due_today == 0
