import asyncio
import dataclasses
import random
from datetime import timedelta

import pytest

from retrieval_srs.application.session.driver import SessionDriver
from retrieval_srs.application.study_service import StudyService
from retrieval_srs.domain.constants import DUE_COMPLETE_CUE_TEXT, FROZEN_CUE_TEXT
from retrieval_srs.domain.errors import AudioPlaybackError
from retrieval_srs.domain.models import Rating, SessionMode
from retrieval_srs.domain.ports import AnswerPlayer, CuePlayer, PromptSpeaker


class RecordingSpeaker(PromptSpeaker):
    def __init__(self):
        self.spoken = []

    async def speak(self, text):
        self.spoken.append(text)


class RecordingPlayer(AnswerPlayer):
    def __init__(self, fail=False, signals_completion=True):
        self.played = []
        self.fail = fail
        self.signals_completion = signals_completion

    async def play(self, audio):
        if self.fail:
            raise AudioPlaybackError("device busy")
        self.played.append(audio)


class RecordingCues(CuePlayer):
    def __init__(self):
        self.cues = []

    async def cue(self, text=None):
        self.cues.append(text)


@pytest.fixture
def service(storage):
    return StudyService(storage, rng=random.Random(3))


async def _add(service, *names):
    sentences = []
    for name in names:
        sentences.append(
            await service.add_sentence(
                english_translation_text=name,
                audio=f"audio-{name}".encode(),
                filename=f"{name}.mp3",
                target_audio_duration_seconds=0.01,
                eligible=True,
            )
        )
    return sentences


async def _driver(service, ratings=None, mode=SessionMode.DUE_THEN_EXTRA, player=None, on_rating=None):
    """Driver over a fresh session; ratings maps prompt text -> list of ratings to give."""
    await service.save_settings({"extra_seconds": 0})
    session, _ = await service.start_or_resume_session(10, mode)
    due, extra = await service.build_queues(session)

    speaker = RecordingSpeaker()
    cues = RecordingCues()
    player = player or RecordingPlayer()
    holder = {}

    async def rate(item):
        queue = ratings[item.sentence.english_translation_text]
        holder["driver"].submit_rating(queue.pop(0) if len(queue) > 1 else queue[0])

    driver = SessionDriver(
        service=service,
        session=session,
        due_queue=due,
        extra_queue=extra,
        speaker=speaker,
        player=player,
        cues=cues,
        on_rating_request=on_rating or rate,
        poll_interval=0.001,
        rng=random.Random(0),
    )
    holder["driver"] = driver
    return driver, speaker, player, cues


async def _run(driver):
    return await asyncio.wait_for(driver.run(), timeout=5)


@pytest.mark.asyncio
async def test_runs_due_queue_to_completion(service, storage):
    await _add(service, "one", "two")
    driver, speaker, player, _ = await _driver(
        service, {"one": [Rating.NEXT], "two": [Rating.EASY]}, mode=SessionMode.DUE_ONLY
    )

    ended = await _run(driver)

    assert ended.state.is_complete is True
    assert ended.ended_at is not None
    assert driver.rated_count == 2
    assert sorted(speaker.spoken) == ["one", "two"]
    assert len(player.played) == 2
    assert len(await storage.get_review_events()) == 2
    assert (await storage.get_incomplete_session()) is None


@pytest.mark.asyncio
async def test_repeat_freezes_and_comes_back(service, storage):
    await _add(service, "first", "second")
    ratings = {}
    driver, speaker, _, cues = await _driver(service, ratings, mode=SessionMode.DUE_ONLY)
    order = [q.sentence.english_translation_text for q in driver.queue]
    ratings[order[0]] = [Rating.REPEAT, Rating.EASY]
    ratings[order[1]] = [Rating.NEXT]

    ended = await _run(driver)

    assert speaker.spoken == [order[0], order[1], order[0]]
    assert FROZEN_CUE_TEXT in cues.cues
    assert driver.rated_count == 3
    assert ended.state.frozen_sentence_ids == frozenset()


@pytest.mark.asyncio
async def test_easy_after_repeat_does_not_promote(service, storage):
    (sentence,) = await _add(service, "only")
    driver, speaker, _, _ = await _driver(
        service, {"only": [Rating.REPEAT, Rating.EASY]}, mode=SessionMode.DUE_ONLY
    )

    await _run(driver)

    stored = await storage.get_sentence(sentence.id)
    assert speaker.spoken == ["only", "only"]
    assert stored.scheduling_state.box_level == 1
    assert stored.scheduling_state.last_rating is Rating.EASY


@pytest.mark.asyncio
async def test_miss_is_reinserted_within_session(service, storage):
    (sentence,) = await _add(service, "hard")
    driver, speaker, _, _ = await _driver(
        service, {"hard": [Rating.MISS, Rating.NEXT]}, mode=SessionMode.DUE_ONLY
    )

    await _run(driver)

    stored = await storage.get_sentence(sentence.id)
    assert speaker.spoken == ["hard", "hard"]
    assert stored.scheduling_state.lapse_count == 1
    assert stored.scheduling_state.last_rating is Rating.NEXT


@pytest.mark.asyncio
async def test_missing_audio_is_skipped(service, storage):
    broken, ok = await _add(service, "broken", "ok")
    await storage.delete_audio(broken.id)
    driver, speaker, _, _ = await _driver(
        service, {"broken": [Rating.NEXT], "ok": [Rating.NEXT]}, mode=SessionMode.DUE_ONLY
    )

    ended = await _run(driver)

    assert driver.skipped == [broken.id]
    assert speaker.spoken == ["ok"]
    assert driver.rated_count == 1
    assert ended.state.is_complete is True


@pytest.mark.asyncio
async def test_playback_failure_skips_item(service):
    await _add(service, "loud")
    driver, _, _, _ = await _driver(
        service, {"loud": [Rating.NEXT]}, mode=SessionMode.DUE_ONLY, player=RecordingPlayer(fail=True)
    )

    ended = await _run(driver)

    assert driver.rated_count == 0
    assert len(driver.skipped) == 1
    assert ended.state.is_complete is True


@pytest.mark.asyncio
async def test_player_without_completion_signal_uses_duration(service):
    await _add(service, "quiet")
    player = RecordingPlayer(signals_completion=False)
    driver, _, _, _ = await _driver(service, {"quiet": [Rating.NEXT]}, mode=SessionMode.DUE_ONLY, player=player)

    await _run(driver)

    assert len(player.played) == 1
    assert driver.rated_count == 1


@pytest.mark.asyncio
async def test_duplicate_rating_is_blocked(service, storage):
    await _add(service, "twice")
    accepted = []
    holder = {}

    async def rate_twice(item):
        accepted.append(holder["driver"].submit_rating(Rating.NEXT))
        accepted.append(holder["driver"].submit_rating(Rating.EASY))

    driver, _, _, _ = await _driver(service, mode=SessionMode.DUE_ONLY, on_rating=rate_twice)
    holder["driver"] = driver

    await _run(driver)

    assert accepted == [True, False]
    events = await storage.get_review_events()
    assert [e.rating for e in events] == [Rating.NEXT]


@pytest.mark.asyncio
async def test_rating_outside_capture_is_ignored(service):
    await _add(service, "early")
    driver, _, _, _ = await _driver(service, {"early": [Rating.NEXT]}, mode=SessionMode.DUE_ONLY)

    assert driver.submit_rating(Rating.EASY) is False


@pytest.mark.asyncio
async def test_extra_queue_follows_due_queue(service, storage):
    due_sentence, later = await _add(service, "due", "later")
    future = dataclasses.replace(
        later,
        scheduling_state=dataclasses.replace(
            later.scheduling_state, due_at=service.now() + timedelta(days=3), box_level=3
        ),
    )
    await storage.update_sentence(future)

    driver, speaker, _, cues = await _driver(service, {"due": [Rating.NEXT], "later": [Rating.NEXT]})

    await _run(driver)

    assert speaker.spoken[0] == "due"
    assert sorted(speaker.spoken[1:]) == ["due", "later"]
    assert DUE_COMPLETE_CUE_TEXT in cues.cues
    assert driver.in_extra is True


@pytest.mark.asyncio
async def test_due_only_stops_after_due_queue(service, storage):
    _, later = await _add(service, "due", "later")
    await storage.update_sentence(
        dataclasses.replace(
            later,
            scheduling_state=dataclasses.replace(
                later.scheduling_state, due_at=service.now() + timedelta(days=3)
            ),
        )
    )
    driver, speaker, _, cues = await _driver(service, {"due": [Rating.NEXT]}, mode=SessionMode.DUE_ONLY)

    await _run(driver)

    assert speaker.spoken == ["due"]
    assert DUE_COMPLETE_CUE_TEXT not in cues.cues


@pytest.mark.asyncio
async def test_end_request_stops_session(service):
    await _add(service, "a", "b")
    holder = {}

    async def quit_now(item):
        holder["driver"].request_end("quit")

    driver, _, _, _ = await _driver(service, mode=SessionMode.DUE_ONLY, on_rating=quit_now)
    holder["driver"] = driver

    ended = await _run(driver)

    assert driver.rated_count == 0
    assert ended.state.is_complete is True


@pytest.mark.asyncio
async def test_time_budget_ends_session(service):
    await _add(service, "slow")

    async def never_rate(item):
        return None

    driver, _, _, _ = await _driver(service, mode=SessionMode.DUE_ONLY, on_rating=never_rate)
    driver._base_elapsed = driver.target_seconds

    ended = await _run(driver)

    assert driver.rated_count == 0
    assert ended.state.is_complete is True
    assert ended.state.elapsed_time_seconds >= driver.target_seconds


@pytest.mark.asyncio
async def test_empty_library_ends_immediately(service):
    driver, speaker, _, _ = await _driver(service, {})

    ended = await _run(driver)

    assert speaker.spoken == []
    assert ended.state.is_complete is True
