"""
Ports (interfaces) for the collaborators around the scheduling core.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod
from typing import Any

from .models import (
    ExportBundle,
    ReviewEvent,
    Sentence,
    Session,
    TranscriptionResult,
)
from .settings import Settings


class StorageRepository(ABC):
    """
    Port for persisting sentences, sessions, review events, settings and audio.

    Implementations:
        - SqliteStorage: single-file SQLite database.
    """

    # ---------- Sentences ----------

    @abstractmethod
    async def get_sentences(self, language_code: str | None = None) -> list[Sentence]:
        """All sentences, optionally restricted to one language."""
        pass

    @abstractmethod
    async def get_sentence(self, sentence_id: str) -> Sentence | None:
        pass

    @abstractmethod
    async def save_sentence(self, sentence: Sentence) -> None:
        """Insert or replace a sentence."""
        pass

    async def update_sentence(self, sentence: Sentence) -> None:
        await self.save_sentence(sentence)

    @abstractmethod
    async def delete_sentence(self, sentence_id: str) -> None:
        """Delete a sentence together with its audio and review events."""
        pass

    # ---------- Review events ----------

    @abstractmethod
    async def get_review_events(self, sentence_id: str | None = None) -> list[ReviewEvent]:
        """
        Review events, optionally for a single sentence.

        Returns:
            Events sorted by timestamp ascending.
        """
        pass

    @abstractmethod
    async def save_review_event(self, event: ReviewEvent) -> None:
        pass

    # ---------- Sessions ----------

    @abstractmethod
    async def get_sessions(self) -> list[Session]:
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> Session | None:
        pass

    @abstractmethod
    async def save_session(self, session: Session) -> None:
        pass

    async def update_session(self, session: Session) -> None:
        await self.save_session(session)

    @abstractmethod
    async def get_incomplete_session(self) -> Session | None:
        """The resumable session, if any (not complete and not ended)."""
        pass

    @abstractmethod
    async def update_session_state(self, session_id: str, **state: Any) -> Session:
        """
        Merge partial state into a stored session.

        Raises:
            NotFoundError: If no session has this id.
        """
        pass

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        """Delete a session and the review events that reference it."""
        pass

    # ---------- Settings ----------

    @abstractmethod
    async def get_settings(self) -> Settings:
        """Stored settings, or defaults when none were saved."""
        pass

    @abstractmethod
    async def save_settings(self, settings: Settings) -> None:
        pass

    # ---------- Audio ----------

    @abstractmethod
    async def save_audio(self, sentence_id: str, data: bytes, filename: str) -> str:
        """Store an audio blob and return its URI."""
        pass

    @abstractmethod
    async def get_audio(self, sentence_id: str) -> bytes | None:
        pass

    @abstractmethod
    async def delete_audio(self, sentence_id: str) -> None:
        pass

    @abstractmethod
    async def audio_exists(self, sentence_id: str) -> bool:
        pass

    # ---------- Bulk ----------

    @abstractmethod
    async def export_all(self) -> ExportBundle:
        pass

    @abstractmethod
    async def import_all(self, bundle: ExportBundle) -> None:
        """Replace all stored data with the bundle contents."""
        pass

    @abstractmethod
    async def clear_all(self) -> None:
        pass


class TranscriptionService(ABC):
    """Port for turning a recording into timed, translated sentences."""

    @abstractmethod
    async def transcribe(
        self,
        audio: bytes,
        filename: str,
        expected_language: str | None = None,
    ) -> TranscriptionResult:
        """
        Transcribe and translate a recording.

        Raises:
            TranscriptionError: If the service is unavailable or rejects the file.
        """
        pass


class PromptSpeaker(ABC):
    """Speaks the English prompt (TTS). Returns once speech has finished."""

    @abstractmethod
    async def speak(self, text: str) -> None:
        pass


class AnswerPlayer(ABC):
    """
    Plays the target-language answer audio.

    play() returns when playback has finished. Players that cannot observe
    the end of playback set signals_completion to False; the driver then
    falls back to the stored audio duration.
    """

    signals_completion: bool = True

    @abstractmethod
    async def play(self, audio: bytes) -> None:
        """
        Raises:
            AudioPlaybackError: If playback failed.
        """
        pass


class CuePlayer(ABC):
    """Short audible cues (rating beep, "Frozen", "Due reviews complete.")."""

    @abstractmethod
    async def cue(self, text: str | None = None) -> None:
        """Play a spoken cue, or a plain beep when text is None."""
        pass
