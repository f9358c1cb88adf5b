"""Application configuration using Pydantic Settings."""

from enum import Enum
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    GEMINI = "gemini"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017"
    db_name: str = "bodyscan_db"

    # LLM Provider Selection (insight text generation)
    llm_provider: LLMProvider = LLMProvider.OPENAI

    # OpenAI Configuration
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"

    # Google Gemini Configuration
    google_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"

    # LLM Settings
    llm_temperature: float = 0.4
    llm_timeout: float = 30.0  # seconds per request
    insight_max_tokens: int = 300

    # Body estimation service (vision model)
    body_estimation_provider: str = "ollama"
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llava:13b"
    estimation_timeout: float = 120.0

    # Photo storage reads
    photo_fetch_timeout: float = 20.0
    max_photo_bytes: int = 10 * 1024 * 1024  # 10 MB

    # Retry policy applied to every stage call
    retry_initial_interval: float = 1.0  # seconds
    retry_backoff_coefficient: float = 2.0
    retry_maximum_interval: float = 30.0  # seconds
    retry_maximum_attempts: int = 3

    # Per-stage start-to-close timeout
    stage_timeout_seconds: float = 300.0

    # Run registry (one pipeline per user/date)
    lease_seconds: int = 900
    attach_poll_interval: float = 2.0
    attach_timeout_seconds: float = 600.0

    # What to do when insight generation keeps failing
    insight_failure_policy: Literal["degrade", "fail"] = "degrade"

    # Vision QC thresholds
    qc_required_angles: list[str] = ["front", "back", "left", "right"]
    qc_min_lighting: float = 0.4
    qc_max_lighting: float = 0.95
    qc_min_same_dress: float = 0.8
    qc_min_framing: float = 0.6

    # Resume sweeper (picks up runs interrupted by a crash)
    resume_schedule_enabled: bool = True
    resume_interval_minutes: int = 5
    stale_after_minutes: int = 20

    # App
    debug: bool = False
    log_level: str = "INFO"
    app_name: str = "Body Scan Pipeline API"
    api_version: str = "1.0.0"

    @property
    def is_llm_configured(self) -> bool:
        """Check if the selected LLM provider is configured."""
        if self.llm_provider == LLMProvider.OPENAI:
            return bool(self.openai_api_key)
        elif self.llm_provider == LLMProvider.GEMINI:
            return bool(self.google_api_key)
        return False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
