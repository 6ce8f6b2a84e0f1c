from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from retrieval_srs.domain.constants import (
    DEFAULT_OPENAI_BASE_URL,
    DEFAULT_SESSION_MINUTES,
    DEFAULT_TRANSCRIPTION_MODEL,
    DEFAULT_TRANSLATION_MODEL,
    PHASE_POLL_INTERVAL,
    REQUEST_TIMEOUT,
)
from retrieval_srs.domain.models import SessionMode

CONFIG_DIR = Path.home() / ".config/retrieval-srs"
CONFIG_FILES = [
    CONFIG_DIR / "config.toml",
    Path.home() / ".retrieval-srs.toml",
]


class AppConfig(BaseSettings):
    """
    Runtime configuration for retrieval-srs.
    Supports loading from:
    1. Environment variables (RSRS_*)
    2. Config file (~/.config/retrieval-srs/config.toml)
    3. Manual overrides (CLI)

    Learning settings (reset time, box intervals, ...) are not here; they are
    user data and live in storage.
    """

    model_config = SettingsConfigDict(
        env_prefix="RSRS_",
        extra="ignore",
    )

    # Paths
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".local/share/retrieval-srs")
    database_path: Path | None = None

    # Sessions
    default_session_minutes: int = Field(default=DEFAULT_SESSION_MINUTES, gt=0)
    session_mode: SessionMode = SessionMode.DUE_THEN_EXTRA
    poll_interval_seconds: float = Field(default=PHASE_POLL_INTERVAL, gt=0)

    # Transcription
    openai_api_key: str | None = None
    openai_base_url: str = DEFAULT_OPENAI_BASE_URL
    transcription_model: str = DEFAULT_TRANSCRIPTION_MODEL
    translation_model: str = DEFAULT_TRANSLATION_MODEL
    request_timeout: float = REQUEST_TIMEOUT

    verbose: int = 1

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        # First existing file wins
        toml_file = next((f for f in CONFIG_FILES if f.exists()), None)

        # Earlier sources take priority: CLI > env > TOML > defaults
        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (
            init_settings,
            env_settings,
        )

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_dir(cls, v: Any) -> Path:
        return Path(v).expanduser()

    @field_validator("database_path", mode="before")
    @classmethod
    def resolve_database_path(cls, v: Any) -> Path | None:
        if v is None or v == "":
            return None
        return Path(v).expanduser()

    @field_validator("openai_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/retrieval-srs/config.toml (if exists)
    3. Environment variables (RSRS_*)
    4. cli_overrides (passed from Typer)
    """
    # Typer passes None for options the user did not set.
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    config = AppConfig(**overrides)

    if config.database_path is None:
        config.database_path = config.data_dir / "retrieval_srs.db"

    return config
