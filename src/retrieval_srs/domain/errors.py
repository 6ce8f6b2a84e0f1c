"""
Error taxonomy shared by every layer.

Invariant violations are programming errors and are never caught inside the
core. Everything else is a recoverable condition handled by the caller.
"""


class RetrievalSrsError(Exception):
    """Base class for all application errors."""


class SchedulingInvariantError(RetrievalSrsError):
    """A scheduling function was called with inputs that violate its contract."""


class InvalidSettingsError(RetrievalSrsError, ValueError):
    """Settings failed validation (e.g. malformed daily_reset_time)."""


class MissingAudioError(RetrievalSrsError):
    """No audio blob is stored for a queued sentence."""

    def __init__(self, sentence_id: str):
        super().__init__(f"Audio missing for sentence {sentence_id}")
        self.sentence_id = sentence_id


class AudioPlaybackError(RetrievalSrsError):
    """An audio collaborator failed to play a prompt or answer."""


class TranscriptionError(RetrievalSrsError):
    """The transcription collaborator failed or returned an unusable payload."""


class StorageError(RetrievalSrsError):
    """Persistence failed."""


class NotFoundError(StorageError):
    """A referenced entity does not exist in storage."""


class ImportFormatError(RetrievalSrsError, ValueError):
    """An import payload could not be parsed."""


class RatingNotAcceptedError(RetrievalSrsError):
    """A rating arrived for an item that is not awaiting one (duplicate or late)."""
