"""
Session driver: runs a study session against audio collaborators.

The driver is an actor. One asyncio.Queue of events is consumed by a single
loop, and every state change happens inside that loop. Timers and
collaborator callbacks never touch state; they only post events:

- Tick: periodic poll (response window, time budget, answer fallback)
- PromptFinished: the English prompt has been spoken
- AnswerFinished: the answer audio has finished (or failed)
- RatingReceived: the learner rated the current item
- EndRequested: stop now

Each item presentation gets a fresh token and every event carries the token
of the item it refers to, so late callbacks from a previous item are dropped.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime

from retrieval_srs.application.scheduling.session_queue import (
    QueueItem,
    reinsert_item,
    replace_sentence,
)
from retrieval_srs.application.study_service import StudyService
from retrieval_srs.domain.constants import (
    DUE_COMPLETE_CUE_TEXT,
    FROZEN_CUE_TEXT,
    PHASE_POLL_INTERVAL,
)
from retrieval_srs.domain.errors import AudioPlaybackError, MissingAudioError
from retrieval_srs.domain.models import Rating, Sentence, Session, SessionMode
from retrieval_srs.domain.ports import AnswerPlayer, CuePlayer, PromptSpeaker

from .runner import (
    Phase,
    ProcessItemResult,
    SessionItemState,
    is_due_queue_complete,
    on_answer_finished,
    on_prompt_finished,
    process_item,
    start_item,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tick:
    token: int


@dataclass(frozen=True)
class PromptFinished:
    token: int


@dataclass(frozen=True)
class AnswerFinished:
    token: int
    failed: bool = False


@dataclass(frozen=True)
class RatingReceived:
    token: int
    rating: Rating


@dataclass(frozen=True)
class EndRequested:
    reason: str = "requested"


DriverEvent = Tick | PromptFinished | AnswerFinished | RatingReceived | EndRequested

# Called when rating capture opens, with the item being rated.
RatingRequestHandler = Callable[[SessionItemState], Awaitable[None]]


class SessionDriver:
    """
    Owns the phase machine and queues of one running session.

    Args:
        service: Persistence and rating orchestration.
        session: The session to run (new or resumed).
        due_queue: Due items, in order.
        extra_queue: Extra practice items, used after the due queue in
            DueThenExtra mode.
        speaker: Speaks English prompts.
        player: Plays answer audio.
        cues: Plays short cues.
        on_rating_request: Invoked when the driver waits for a rating.
        clock: Current time.
        poll_interval: Seconds between ticks.
        rng: Randomness for reinsertion offsets.
    """

    def __init__(
        self,
        service: StudyService,
        session: Session,
        due_queue: Sequence[QueueItem],
        extra_queue: Sequence[QueueItem],
        speaker: PromptSpeaker,
        player: AnswerPlayer,
        cues: CuePlayer,
        on_rating_request: RatingRequestHandler | None = None,
        clock: Callable[[], datetime] = datetime.now,
        poll_interval: float = PHASE_POLL_INTERVAL,
        rng: random.Random | None = None,
    ):
        self.service = service
        self.session = session
        self._due_queue = list(due_queue)
        self._extra_queue = list(extra_queue)
        self._speaker = speaker
        self._player = player
        self._cues = cues
        self._on_rating_request = on_rating_request
        self._clock = clock
        self._poll_interval = poll_interval
        self._rng = rng or random.Random()

        self._events: asyncio.Queue[DriverEvent] = asyncio.Queue()
        self._tasks: set[asyncio.Task] = set()

        self.queue: list[QueueItem] = self._due_queue
        self.position = 0
        self.in_extra = False
        self.item: SessionItemState | None = None
        self._token = 0
        self._rating_open = False
        self._finished = False

        # Latest copy of every sentence rated this session; the extra queue
        # holds snapshots taken before the due queue ran.
        self._latest: dict[str, Sentence] = {}

        self._base_elapsed = session.state.elapsed_time_seconds
        self._run_started: datetime | None = None

        self.rated_count = 0
        self.skipped: list[str] = []

    # ---------- Public API ----------

    @property
    def is_finished(self) -> bool:
        return self._finished

    @property
    def is_capturing_rating(self) -> bool:
        return self._rating_open

    @property
    def target_seconds(self) -> float:
        return self.session.target_minutes * 60

    def elapsed_seconds(self, now: datetime | None = None) -> float:
        if self._run_started is None:
            return self._base_elapsed
        now = now or self._clock()
        return self._base_elapsed + (now - self._run_started).total_seconds()

    def submit_rating(self, rating: Rating) -> bool:
        """
        Hand a rating to the driver.

        The capture gate closes here, before the event is queued, so only the
        first rating for an item is accepted.

        Returns:
            False if no rating is being captured (none due, or a duplicate).
        """
        if not self._rating_open or self.item is None:
            logger.info(f"Rating {rating.value} ignored: not capturing")
            return False

        self._rating_open = False
        self._post(RatingReceived(token=self._token, rating=rating))
        return True

    def request_end(self, reason: str = "requested") -> None:
        self._post(EndRequested(reason=reason))

    async def run(self) -> Session:
        """Run until the queues are exhausted, time is up or an end is requested."""
        self._run_started = self._clock()

        if self.session.state.queue_position:
            logger.info(
                f"Resuming session {self.session.id}: rebuilding queues, "
                f"{len(self.session.state.frozen_sentence_ids)} frozen"
            )

        if not self._due_queue:
            await self._switch_to_extra(announce=False)
        else:
            await self._present_from(0)

        if not self._finished:
            self._spawn(self._ticker())

        try:
            while not self._finished:
                event = await self._events.get()
                await self._dispatch(event)
        finally:
            for task in list(self._tasks):
                task.cancel()
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)

        return self.session

    # ---------- Event plumbing ----------

    def _post(self, event: DriverEvent) -> None:
        self._events.put_nowait(event)

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _ticker(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            self._post(Tick(token=self._token))

    async def _dispatch(self, event: DriverEvent) -> None:
        if self._finished:
            return

        if isinstance(event, EndRequested):
            logger.info(f"Session {self.session.id} end requested ({event.reason})")
            await self._finish()
            return

        if isinstance(event, Tick):
            await self._on_tick()
            return

        if event.token != self._token or self.item is None:
            logger.debug(f"Dropping stale {type(event).__name__} (token {event.token})")
            return

        if isinstance(event, PromptFinished):
            await self._apply(on_prompt_finished(self.item, self._clock()))
        elif isinstance(event, AnswerFinished):
            if event.failed:
                await self._skip_current("answer playback failed")
            else:
                await self._apply(on_answer_finished(self.item, self._clock()))
        elif isinstance(event, RatingReceived):
            await self._on_rating(event.rating)

    # ---------- Handlers ----------

    async def _on_tick(self) -> None:
        now = self._clock()
        if self.elapsed_seconds(now) >= self.target_seconds:
            logger.info(f"Session {self.session.id} reached its {self.session.target_minutes} min budget")
            await self._finish()
            return

        # Prompt completion is driven by PromptFinished only.
        if self.item is None or self.item.phase is Phase.PROMPT:
            return

        result = process_item(
            self.item,
            now,
            allow_answer_timeout=not self._player.signals_completion,
        )
        await self._apply(result)

    async def _apply(self, result: ProcessItemResult) -> None:
        previous = self.item.phase if self.item else None
        self.item = result.next_state
        if result.next_state.phase is previous:
            return

        if result.should_play_answer:
            self._spawn(self._play_answer(self._token, result.next_state.sentence))
        if result.should_capture_rating:
            await self._open_rating()

    async def _open_rating(self) -> None:
        self._rating_open = True
        await self._cue()
        if self._on_rating_request is not None:
            self._spawn(self._on_rating_request(self.item))

    async def _on_rating(self, rating: Rating) -> None:
        item = self.item
        sentence = item.sentence

        result = await self.service.apply_rating(self.session, sentence, rating)
        self.session = result.session
        self.rated_count += 1

        updated = result.outcome.updated_sentence
        self._latest[updated.id] = updated
        self.queue = replace_sentence(self.queue, updated)

        if result.newly_frozen:
            await self._cue(FROZEN_CUE_TEXT)

        if result.outcome.should_reinsert:
            self.queue = reinsert_item(
                self.queue,
                QueueItem(sentence=updated, position=self.position),
                self.position,
                rng=self._rng,
            )
            self._sync_queue_ref()
            # The next item slid into the current slot.
            await self._present_from(self.position)
            return

        await self._advance()

    # ---------- Queue movement ----------

    def _sync_queue_ref(self) -> None:
        if self.in_extra:
            self._extra_queue = self.queue
        else:
            self._due_queue = self.queue

    async def _advance(self) -> None:
        await self._present_from(self.position + 1)

    async def _skip_current(self, reason: str) -> None:
        if self.item is not None:
            logger.warning(f"Skipping sentence {self.item.sentence.id}: {reason}")
            self.skipped.append(self.item.sentence.id)
        await self._advance()

    async def _present_from(self, position: int) -> None:
        """Present the first playable item at or after position."""
        self._rating_open = False

        while position < len(self.queue):
            queued = self.queue[position]
            sentence = self._latest.get(queued.sentence.id, queued.sentence)

            try:
                await self._ensure_audio(sentence)
            except MissingAudioError as e:
                logger.warning(f"{e}; skipping")
                self.skipped.append(sentence.id)
                position += 1
                continue

            sentence, duration = await self.service.resolve_audio_duration(sentence)
            self._latest[sentence.id] = sentence

            now = self._clock()
            self._token += 1
            self.position = position
            self.item = start_item(sentence, self.session.settings_snapshot, now, duration)
            self.session = await self.service.save_progress(
                self.session,
                current_item_id=sentence.id,
                queue_position=position,
                elapsed_time_seconds=self.elapsed_seconds(now),
            )
            self._spawn(self._speak_prompt(self._token, sentence))
            return

        await self._on_queue_exhausted(position)

    async def _on_queue_exhausted(self, position: int) -> None:
        if self.in_extra or not is_due_queue_complete(len(self._due_queue), position):
            await self._finish()
            return
        await self._switch_to_extra(announce=True)

    async def _switch_to_extra(self, announce: bool) -> None:
        if self.session.mode is not SessionMode.DUE_THEN_EXTRA or not self._extra_queue:
            await self._finish()
            return

        if announce:
            await self._cue(DUE_COMPLETE_CUE_TEXT)
        logger.info(f"Due queue complete; {len(self._extra_queue)} extra items")

        self.in_extra = True
        self.queue = self._extra_queue
        self.position = 0
        await self._present_from(0)

    async def _finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        self._rating_open = False
        self.session = await self.service.end_session(self.session, self.elapsed_seconds())

    # ---------- Collaborators ----------

    async def _cue(self, text: str | None = None) -> None:
        try:
            await self._cues.cue(text)
        except AudioPlaybackError as e:
            logger.warning(f"Cue {text or 'beep'} failed: {e}")

    async def _ensure_audio(self, sentence: Sentence) -> None:
        if not await self.service.storage.audio_exists(sentence.id):
            raise MissingAudioError(sentence.id)

    async def _speak_prompt(self, token: int, sentence: Sentence) -> None:
        try:
            await self._speaker.speak(sentence.english_translation_text)
        except AudioPlaybackError as e:
            logger.warning(f"Prompt speech failed for {sentence.id}: {e}")
        self._post(PromptFinished(token=token))

    async def _play_answer(self, token: int, sentence: Sentence) -> None:
        audio = await self.service.storage.get_audio(sentence.id)
        if audio is None:
            logger.warning(str(MissingAudioError(sentence.id)))
            self._post(AnswerFinished(token=token, failed=True))
            return

        try:
            await self._player.play(audio)
        except AudioPlaybackError as e:
            logger.warning(f"Answer playback failed for {sentence.id}: {e}")
            self._post(AnswerFinished(token=token, failed=True))
            return

        if self._player.signals_completion:
            self._post(AnswerFinished(token=token))
