"""
Study Service: application layer orchestrator.

Coordinates the pure scheduling core with the storage port: loading
sentences and history, persisting ratings, sessions and settings.
"""

import dataclasses
import logging
import random
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from retrieval_srs.application.importer import ImportSentenceData, estimate_audio_duration
from retrieval_srs.application.scheduling.due_calculator import get_due_now, get_due_today
from retrieval_srs.application.scheduling.session_queue import (
    QueueItem,
    build_due_queue,
    build_extra_queue,
)
from retrieval_srs.application.scheduling.streak_calculator import calculate_streak
from retrieval_srs.application.session.runner import (
    RatingOutcome,
    apply_freeze,
    end_session,
    handle_rating,
    update_session_state,
)
from retrieval_srs.application.session.stabilized import count_stabilized
from retrieval_srs.application.session.summary import SessionSummary, summarize_session
from retrieval_srs.domain.constants import DEFAULT_AUDIO_DURATION_SECONDS
from retrieval_srs.domain.errors import NotFoundError, RatingNotAcceptedError
from retrieval_srs.domain.models import (
    Rating,
    Sentence,
    Session,
    SessionMode,
    create_sentence,
    create_session,
)
from retrieval_srs.domain.ports import StorageRepository
from retrieval_srs.domain.settings import Settings, validate_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RatingResult:
    session: Session
    outcome: RatingOutcome
    newly_frozen: bool


@dataclass(frozen=True)
class LibraryOverview:
    language_code: str
    total: int
    eligible: int
    inbox: int
    due_now: int
    due_today: int
    stabilized: int
    streak: int


class StudyService:
    """
    Application service for running study sessions against a storage backend.

    Depends on the StorageRepository abstraction only. The clock is injected
    so every scheduling decision uses one explicit "now".
    """

    def __init__(
        self,
        storage: StorageRepository,
        clock: Callable[[], datetime] = datetime.now,
        rng: random.Random | None = None,
    ):
        """
        Args:
            storage: The repository (port) for all persisted state.
            clock: Returns the current time.
            rng: Randomness for the extra queue shuffle.
        """
        self.storage = storage
        self._clock = clock
        self._rng = rng or random.Random()

    def now(self) -> datetime:
        return self._clock()

    # ---------- Settings ----------

    async def get_settings(self) -> Settings:
        return await self.storage.get_settings()

    async def save_settings(self, changes: Mapping[str, Any]) -> Settings:
        """
        Merge changes into the stored settings and persist them.

        Raises:
            InvalidSettingsError: If the merged settings are invalid.
        """
        current = await self.storage.get_settings()
        merged = {**current.model_dump(), **dict(changes)}
        settings = validate_settings(merged)
        await self.storage.save_settings(settings)
        logger.info(f"Settings saved: {', '.join(sorted(changes))}")
        return settings

    # ---------- Sentences ----------

    async def get_sentences(self, language_code: str | None = None) -> list[Sentence]:
        if language_code is None:
            language_code = (await self.get_settings()).current_language
        return await self.storage.get_sentences(language_code)

    async def get_sentence(self, sentence_id: str) -> Sentence:
        sentence = await self.storage.get_sentence(sentence_id)
        if sentence is None:
            raise NotFoundError(f"Sentence {sentence_id} not found")
        return sentence

    async def add_sentence(
        self,
        english_translation_text: str,
        audio: bytes,
        filename: str,
        language_code: str | None = None,
        target_text: str | None = None,
        tags: list[str] | None = None,
        target_audio_duration_seconds: float | None = None,
        eligible: bool = False,
        sentence_id: str | None = None,
    ) -> Sentence:
        """Create a sentence with its answer audio. New sentences land in the inbox."""
        if language_code is None:
            language_code = (await self.get_settings()).current_language

        sentence = create_sentence(
            language_code=language_code,
            english_translation_text=english_translation_text,
            target_audio_uri="",
            now=self.now(),
            target_text=target_text,
            tags=tags,
            target_audio_duration_seconds=(
                target_audio_duration_seconds or estimate_audio_duration(len(audio))
            ),
            sentence_id=sentence_id,
        )
        uri = await self.storage.save_audio(sentence.id, audio, filename)
        sentence = dataclasses.replace(sentence, target_audio_uri=uri, is_eligible=eligible)
        await self.storage.save_sentence(sentence)
        logger.info(f"Added sentence {sentence.id} ({language_code})")
        return sentence

    async def set_eligibility(self, sentence_id: str, eligible: bool) -> Sentence:
        """Promote a sentence from the inbox to the library, or back."""
        sentence = await self.get_sentence(sentence_id)
        updated = dataclasses.replace(sentence, is_eligible=eligible)
        await self.storage.update_sentence(updated)
        return updated

    async def delete_sentence(self, sentence_id: str) -> None:
        await self.get_sentence(sentence_id)
        await self.storage.delete_sentence(sentence_id)

    async def import_sentences(
        self,
        items: Sequence[ImportSentenceData],
        audio_by_id: Mapping[str, tuple[str, bytes]],
        eligible: bool = False,
    ) -> list[Sentence]:
        """
        Persist parsed import rows that have matching audio.

        Args:
            items: Parsed rows; rows without an id or audio are skipped.
            audio_by_id: Sentence id -> (filename, audio bytes).
            eligible: Put imported sentences straight into the library.
        """
        created = []
        for item in items:
            if not item.id or item.id not in audio_by_id:
                logger.warning(f"Skipping import row without audio: {item.english_translation_text!r}")
                continue
            filename, audio = audio_by_id[item.id]
            created.append(
                await self.add_sentence(
                    english_translation_text=item.english_translation_text,
                    audio=audio,
                    filename=filename,
                    language_code=item.language_code,
                    target_text=item.target_text,
                    tags=item.tags,
                    eligible=eligible,
                    sentence_id=item.id,
                )
            )
        return created

    async def resolve_audio_duration(self, sentence: Sentence) -> tuple[Sentence, float]:
        """
        Duration used for the response window.

        A missing or zero stored duration is estimated from the audio blob
        and persisted; without audio the 3 s default applies.
        """
        duration = sentence.target_audio_duration_seconds
        if duration and duration > 0:
            return sentence, duration

        audio = await self.storage.get_audio(sentence.id)
        if not audio:
            return sentence, DEFAULT_AUDIO_DURATION_SECONDS

        estimated = estimate_audio_duration(len(audio))
        updated = dataclasses.replace(sentence, target_audio_duration_seconds=estimated)
        await self.storage.update_sentence(updated)
        logger.debug(f"Estimated audio duration for {sentence.id}: {estimated:.1f}s")
        return updated, estimated

    # ---------- Sessions ----------

    async def start_or_resume_session(
        self,
        target_minutes: int,
        mode: SessionMode = SessionMode.DUE_THEN_EXTRA,
    ) -> tuple[Session, bool]:
        """
        Resume the incomplete session if one exists, else start a new one.

        Returns:
            The session and whether it was resumed.
        """
        incomplete = await self.storage.get_incomplete_session()
        if incomplete is not None:
            logger.info(f"Resuming session {incomplete.id}")
            return incomplete, True

        settings = await self.get_settings()
        session = create_session(target_minutes, settings, self.now(), mode=mode)
        await self.storage.save_session(session)
        logger.info(f"Started session {session.id} ({target_minutes} min, {mode.value})")
        return session, False

    async def get_session(self, session_id: str) -> Session:
        session = await self.storage.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    async def build_queues(self, session: Session) -> tuple[list[QueueItem], list[QueueItem]]:
        """Due and extra queues for a session, from the current language's sentences."""
        sentences = await self.get_sentences()
        events = await self.storage.get_review_events()
        settings = session.settings_snapshot
        now = self.now()

        due = build_due_queue(sentences, session, settings, now)
        extra = build_extra_queue(sentences, session.id, events, settings, now, rng=self._rng)
        return due, extra

    async def apply_rating(self, session: Session, sentence: Sentence, rating: Rating) -> RatingResult:
        """
        Rate a sentence within a session and persist the consequences.

        The sentence and its review event are saved first; the session is
        saved only when its frozen set changed.
        """
        now = self.now()
        outcome = handle_rating(sentence, rating, session, session.settings_snapshot, now)

        await self.storage.update_sentence(outcome.updated_sentence)
        await self.storage.save_review_event(outcome.review_event)

        updated_session, newly_frozen = apply_freeze(session, sentence.id, outcome, rating)
        if updated_session is not session:
            await self.storage.update_session(updated_session)

        logger.debug(
            f"Rated {sentence.id} {rating.value}: box {outcome.review_event.box_level_after}, "
            f"due {outcome.review_event.computed_next_due_at.isoformat()}"
        )
        return RatingResult(session=updated_session, outcome=outcome, newly_frozen=newly_frozen)

    async def present_item(self, session_id: str, sentence_id: str, queue_position: int) -> Session:
        """
        Mark a sentence as the item awaiting a rating in a running session.

        Raises:
            NotFoundError: If the session or sentence does not exist.
            RatingNotAcceptedError: If the session has ended.
        """
        session = await self.get_session(session_id)
        if session.state.is_complete:
            raise RatingNotAcceptedError(f"Session {session_id} has ended")
        await self.get_sentence(sentence_id)
        return await self.save_progress(
            session, sentence_id, queue_position, session.state.elapsed_time_seconds
        )

    async def rate_presented(self, session_id: str, sentence_id: str, rating: Rating) -> RatingResult:
        """
        Rate the item last presented in a session, once.

        The rating slot is consumed, so a retried or duplicate rating for the
        same presentation never reaches the rating handler.

        Raises:
            NotFoundError: If the session or sentence does not exist.
            RatingNotAcceptedError: If the session has ended or the sentence is
                not the item awaiting a rating.
        """
        session = await self.get_session(session_id)
        if session.state.is_complete:
            raise RatingNotAcceptedError(f"Session {session_id} has ended")
        if session.state.current_item_id != sentence_id:
            raise RatingNotAcceptedError(f"Sentence {sentence_id} is not awaiting a rating")

        sentence = await self.get_sentence(sentence_id)
        result = await self.apply_rating(session, sentence, rating)

        consumed = update_session_state(result.session, current_item_id=None)
        await self.storage.update_session(consumed)
        return dataclasses.replace(result, session=consumed)

    async def save_progress(
        self,
        session: Session,
        current_item_id: str | None,
        queue_position: int,
        elapsed_time_seconds: float,
    ) -> Session:
        updated = update_session_state(
            session,
            current_item_id=current_item_id,
            queue_position=queue_position,
            elapsed_time_seconds=elapsed_time_seconds,
        )
        await self.storage.update_session(updated)
        return updated

    async def end_session(self, session: Session, elapsed_time_seconds: float | None = None) -> Session:
        ended = end_session(session, self.now(), elapsed_time_seconds)
        await self.storage.update_session(ended)
        logger.info(f"Ended session {session.id} after {ended.state.elapsed_time_seconds:.0f}s")
        return ended

    async def session_summary(self, session_id: str) -> SessionSummary:
        session = await self.get_session(session_id)
        events = await self.storage.get_review_events()
        return summarize_session(session, events)

    # ---------- Library ----------

    async def due_now(self) -> list[Sentence]:
        return get_due_now(await self.get_sentences(), self.now())

    async def library_overview(self) -> LibraryOverview:
        settings = await self.get_settings()
        sentences = await self.storage.get_sentences(settings.current_language)
        events = await self.storage.get_review_events()
        sessions = await self.storage.get_sessions()
        now = self.now()

        eligible = [s for s in sentences if s.is_eligible]
        return LibraryOverview(
            language_code=settings.current_language,
            total=len(sentences),
            eligible=len(eligible),
            inbox=len(sentences) - len(eligible),
            due_now=len(get_due_now(sentences, now)),
            due_today=len(get_due_today(sentences, settings, now)),
            stabilized=count_stabilized(sentences, events),
            streak=calculate_streak(sessions, events, settings, now),
        )
