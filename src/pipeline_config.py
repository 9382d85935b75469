"""Pipeline configuration: strategy enums and immutable option structs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from src.chunking.tokens import DEFAULT_DENSITY, TokenDensity

if TYPE_CHECKING:
    from src.config import Settings


class ChunkingStrategy(StrEnum):
    """Available boundary strategies for splitting a transcript."""

    SPEAKER_TURNS = "speaker_turns"
    TIME_BASED = "time_based"
    SEMANTIC_BREAKS = "semantic_breaks"
    HYBRID = "hybrid"


class Provider(StrEnum):
    """AI providers with a known context-limit table."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"


# Phrases that usually open a new agenda item. Tuned by hand against Teams
# transcripts; alternate lists have not been validated.
DEFAULT_SEMANTIC_MARKERS: tuple[str, ...] = (
    "next",
    "now",
    "moving on",
    "let's discuss",
    "switching to",
    "下一個",
    "接下來",
    "現在討論",
)

# A silence longer than this between two sections counts as a topic break.
DEFAULT_PAUSE_THRESHOLD_SECONDS = 45.0

# Fraction of the budget after which a semantic break closes a chunk early.
SEMANTIC_NEAR_LIMIT_RATIO = 0.7
HYBRID_NEAR_LIMIT_RATIO = 0.8

# Roughly 135 words per minute of conversational speech.
DEFAULT_SPEAKING_RATE_TOKENS_PER_SECOND = 3.0

DEFAULT_OVERLAP_SECTIONS = 2

# Share of the request limit held back from chunk content for context overlap.
OVERLAP_RESERVE_RATIO = 0.2


@dataclass(frozen=True)
class SemanticBreakConfig:
    """Break-point detection knobs shared by the semantic and hybrid strategies."""

    markers: tuple[str, ...] = DEFAULT_SEMANTIC_MARKERS
    pause_threshold_seconds: float = DEFAULT_PAUSE_THRESHOLD_SECONDS
    semantic_near_limit_ratio: float = SEMANTIC_NEAR_LIMIT_RATIO
    hybrid_near_limit_ratio: float = HYBRID_NEAR_LIMIT_RATIO


@dataclass(frozen=True)
class RetryConfig:
    """Exponential backoff parameters. Delays are in seconds."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_factor: float = 2.0
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be non-negative")


@dataclass(frozen=True)
class ProcessingOptions:
    """Every recognized option for analysing, chunking and summarizing a transcript.

    ``max_tokens_per_chunk`` of ``None`` means "derive from the model's context
    limit"; ``strategy`` of ``None`` means "use the analyzer's recommendation".
    ``overlap_seconds`` switches overlap from a fixed section count to a
    trailing time window.
    """

    max_tokens_per_chunk: int | None = None
    strategy: ChunkingStrategy | None = None
    provider: str = Provider.ANTHROPIC.value
    model: str = "claude-sonnet-4-20250514"
    jitter: bool = True
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_factor: float = 2.0
    overlap_sections: int = DEFAULT_OVERLAP_SECTIONS
    overlap_seconds: float | None = None
    language: str = "en"
    combine_summaries: bool = True
    semantic: SemanticBreakConfig = field(default_factory=SemanticBreakConfig)
    density: TokenDensity = DEFAULT_DENSITY
    speaking_rate_tokens_per_second: float = DEFAULT_SPEAKING_RATE_TOKENS_PER_SECOND

    def __post_init__(self) -> None:
        if self.max_tokens_per_chunk is not None and self.max_tokens_per_chunk < 1:
            raise ValueError(
                f"max_tokens_per_chunk must be a positive integer, got {self.max_tokens_per_chunk}"
            )
        if isinstance(self.strategy, str) and not isinstance(self.strategy, ChunkingStrategy):
            # Accept plain strings from JSON/CLI callers.
            object.__setattr__(self, "strategy", ChunkingStrategy(self.strategy))
        if self.overlap_sections < 0:
            raise ValueError(f"overlap_sections must be >= 0, got {self.overlap_sections}")

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.max_retries,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            backoff_factor=self.backoff_factor,
            jitter=self.jitter,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: object) -> ProcessingOptions:
        """Build options from application settings, applying keyword overrides last."""
        provider = settings.default_provider
        model = settings.openai_model if provider == Provider.OPENAI else settings.anthropic_model
        values: dict[str, object] = {
            "max_tokens_per_chunk": settings.max_tokens_per_chunk,
            "strategy": settings.chunking_strategy,
            "provider": provider,
            "model": model,
            "jitter": settings.retry_jitter,
            "max_retries": settings.retry_max_retries,
            "initial_delay": settings.retry_initial_delay,
            "max_delay": settings.retry_max_delay,
            "backoff_factor": settings.retry_backoff_factor,
            "overlap_sections": settings.overlap_sections,
            "overlap_seconds": settings.overlap_seconds,
            "language": settings.error_language,
            "semantic": SemanticBreakConfig(
                markers=tuple(settings.semantic_break_markers),
                pause_threshold_seconds=settings.semantic_pause_seconds,
            ),
            "density": TokenDensity(
                cjk_chars_per_token=settings.cjk_chars_per_token,
                latin_chars_per_token=settings.latin_chars_per_token,
            ),
            "speaking_rate_tokens_per_second": settings.speaking_rate_tokens_per_second,
        }
        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]
