"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Memory engine configuration. All values come from environment variables."""

    # Anthropic
    anthropic_api_key: str = Field(default="")
    default_memory_model: str = Field(default="haiku")

    # Database
    database_path: Path = Field(default=Path("data/recall.db"))

    # Token budget
    max_context_tokens: int = Field(default=8000, gt=0)
    compressed_budget_ratio: float = Field(default=0.30, gt=0.0, lt=1.0)
    recent_window_size: int = Field(default=10, ge=1)
    chars_per_token: float = Field(default=4.0, gt=0.0)
    unreadable_message_tokens: int = Field(default=1024, ge=1)

    # Summarizer
    max_key_events: int = Field(default=5, ge=1)
    summarizer_temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    summarizer_max_output_tokens: int = Field(default=2000, gt=0)
    summarizer_timeout_seconds: float = Field(default=10.0, gt=0.0)

    # Summarizer rate limit (token bucket)
    summarizer_rate_capacity: int = Field(default=10, ge=1)
    summarizer_rate_per_second: float = Field(default=1.0, gt=0.0)

    # Compaction jobs
    compaction_max_attempts: int = Field(default=3, ge=1)
    compaction_backoff_seconds: float = Field(default=1.0, ge=0.0)
    compaction_worker_concurrency: int = Field(default=4, ge=1)

    # Scheduler
    scheduler_timezone: str = Field(default="UTC")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    @property
    def compressed_token_ceiling(self) -> int:
        """Token ceiling the summarizer should target for the summary text."""
        return int(self.max_context_tokens * self.compressed_budget_ratio)


settings = Settings()
