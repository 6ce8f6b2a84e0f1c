# Infrastructure Transcription Package
from .whisper_client import WhisperTranscriptionClient

__all__ = ["WhisperTranscriptionClient"]
