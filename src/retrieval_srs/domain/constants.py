"""Centralized constants for the retrieval-srs application.

All magic numbers and configuration defaults live here so every layer
imports from a single source of truth.
"""

# ---------- Settings defaults ----------
DEFAULT_DAILY_RESET_TIME = "04:00"
DEFAULT_BOX_INTERVALS = [1, 2, 4, 8, 16, 30]  # days, index 0 = box 1
DEFAULT_EXTRA_SECONDS = 2.0
DEFAULT_LANGUAGE = "hu"
DAILY_RESET_TIME_PATTERN = r"^([0-1][0-9]|2[0-3]):[0-5][0-9]$"

# ---------- Queue Builder ----------
RECENT_MISS_WINDOW_DAYS = 7
REINSERT_OFFSETS = (2, 3, 4)

# ---------- Stabilization ----------
STABILIZED_MIN_BOX = 4
STABILIZED_LOOKBACK_EVENTS = 2

# ---------- Session ----------
DEFAULT_SESSION_MINUTES = 10
DEFAULT_AUDIO_DURATION_SECONDS = 3.0
AUDIO_BYTES_PER_SECOND_ESTIMATE = 16384  # rough MP3 estimate
PHASE_POLL_INTERVAL = 0.1  # seconds
FROZEN_CUE_TEXT = "Frozen"
DUE_COMPLETE_CUE_TEXT = "Due reviews complete."

# ---------- Import ----------
MAX_AUDIO_FILE_SIZE = 5 * 1024 * 1024
AUDIO_EXTENSIONS = (".mp3", ".wav", ".m4a")
DUPLICATE_SIMILARITY_THRESHOLD = 0.8

# ---------- Transcription / HTTP ----------
MAX_TRANSCRIPTION_FILE_SIZE = 25 * 1024 * 1024
REQUEST_TIMEOUT = 60.0
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_TRANSCRIPTION_MODEL = "whisper-1"
DEFAULT_TRANSLATION_MODEL = "gpt-4o-mini"
TRANSLATION_TEMPERATURE = 0.3
TRANSLATION_MAX_TOKENS = 200
