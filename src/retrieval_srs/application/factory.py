"""
Adapter Factory
Centralizes the logic for selecting storage and transcription adapters.
"""

from retrieval_srs.application.config import AppConfig
from retrieval_srs.domain.errors import TranscriptionError
from retrieval_srs.domain.ports import StorageRepository, TranscriptionService
from retrieval_srs.infrastructure.storage.sqlite_storage import SqliteStorage
from retrieval_srs.infrastructure.transcription.whisper_client import WhisperTranscriptionClient


def get_storage(config: AppConfig) -> StorageRepository:
    """
    Returns the storage backend for the configured database path.
    """
    return SqliteStorage(config.database_path or config.data_dir / "retrieval_srs.db")


def get_transcription_service(config: AppConfig) -> TranscriptionService:
    """
    Returns the transcription client.

    Raises:
        TranscriptionError: If no API key is configured; callers fall back to
            manual entry.
    """
    if not config.openai_api_key:
        raise TranscriptionError("OPENAI_API_KEY not configured (set RSRS_OPENAI_API_KEY)")

    return WhisperTranscriptionClient(
        api_key=config.openai_api_key,
        base_url=config.openai_base_url,
        transcription_model=config.transcription_model,
        translation_model=config.translation_model,
        timeout=config.request_timeout,
    )
