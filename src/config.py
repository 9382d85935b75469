from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings

from src.pipeline_config import (
    DEFAULT_OVERLAP_SECTIONS,
    DEFAULT_PAUSE_THRESHOLD_SECONDS,
    DEFAULT_SEMANTIC_MARKERS,
    DEFAULT_SPEAKING_RATE_TOKENS_PER_SECOND,
    ChunkingStrategy,
    Provider,
)


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    """

    # API Keys
    anthropic_api_key: str = ""
    openai_api_key: str = ""

    # Providers
    default_provider: Provider = Provider.ANTHROPIC
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_model: str = "gpt-4.1"
    summary_max_output_tokens: int = 4096

    # Chunking
    max_tokens_per_chunk: int | None = None
    chunking_strategy: ChunkingStrategy | None = None
    overlap_sections: int = DEFAULT_OVERLAP_SECTIONS
    overlap_seconds: float | None = None
    semantic_pause_seconds: float = DEFAULT_PAUSE_THRESHOLD_SECONDS
    semantic_break_markers: list[str] = list(DEFAULT_SEMANTIC_MARKERS)
    cjk_chars_per_token: float = 1.5
    latin_chars_per_token: float = 4.0
    speaking_rate_tokens_per_second: float = DEFAULT_SPEAKING_RATE_TOKENS_PER_SECOND

    # Retry
    retry_max_retries: int = 3
    retry_initial_delay: float = 1.0
    retry_max_delay: float = 10.0
    retry_backoff_factor: float = 2.0
    retry_jitter: bool = True

    # Errors / app config
    error_language: str = "en"
    show_technical_details: bool = False
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Gracefully handles missing .env files (e.g. in CI/testing) by falling
    back to environment variables and defaults.
    """
    try:
        return Settings()
    except Exception:
        # If .env is missing or unreadable, build settings from env vars only.
        return Settings(_env_file=None)  # type: ignore[call-arg]


settings = get_settings()
