"""Decide whether a transcript must be chunked for a provider/model."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import StrEnum

from src.chunking.tokens import DEFAULT_DENSITY, TokenDensity, estimate_token_count
from src.ingestion.models import Section, Transcript
from src.pipeline_config import ChunkingStrategy, ProcessingOptions, Provider

logger = logging.getLogger(__name__)

# Usable request size per model, in tokens. Values sit below the advertised
# window to leave room for the prompt template and the response.
PROVIDER_LIMITS: dict[str, dict[str, int]] = {
    Provider.OPENAI: {
        "gpt-4.1": 1_000_000,
        "gpt-4.1-mini": 1_000_000,
        "gpt-4o": 120_000,
        "gpt-4o-mini": 120_000,
        "gpt-4": 120_000,
        "gpt-3.5-turbo": 15_000,
    },
    Provider.ANTHROPIC: {
        "claude-sonnet-4-20250514": 180_000,
        "claude-opus-4-20250514": 180_000,
        "claude-3-5-sonnet-20241022": 180_000,
        "claude-3-opus-20240229": 180_000,
        "claude-3-haiku-20240307": 180_000,
    },
}

# Unknown provider or model: assume a gpt-4 sized window.
DEFAULT_CONTEXT_LIMIT = 120_000

# A request is only safe while it stays under this share of the context limit.
SAFE_LIMIT_RATIO = 0.8
# Default chunk size when the caller sets no explicit budget.
OPTIMAL_CHUNK_RATIO = 0.75

LONG_MEETING_SECONDS = 2 * 60 * 60
MEDIUM_MEETING_SECONDS = 60 * 60

# Speaker switch rate thresholds for strategy recommendation.
LOW_SWITCH_RATE = 0.3
HIGH_SWITCH_RATE = 0.7
MONOLOGUE_SECTION_TOKENS = 100


class Complexity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class ChunkingAnalysis:
    needs_chunking: bool
    estimated_chunks: int
    complexity: Complexity
    recommended_strategy: ChunkingStrategy
    context_limit: int
    token_count: int
    effective_limit: int
    chunk_size: int

    def to_dict(self) -> dict[str, object]:
        return {
            "needs_chunking": self.needs_chunking,
            "estimated_chunks": self.estimated_chunks,
            "complexity": self.complexity.value,
            "recommended_strategy": self.recommended_strategy.value,
            "context_limit": self.context_limit,
            "token_count": self.token_count,
            "effective_limit": self.effective_limit,
            "chunk_size": self.chunk_size,
        }


def get_context_limit(provider: str | None, model: str | None) -> int:
    """Look up the usable context size; never returns 0."""
    models = PROVIDER_LIMITS.get((provider or "").lower(), {})
    return models.get(model or "", DEFAULT_CONTEXT_LIMIT)


def get_safe_limit(context_limit: int) -> int:
    return max(1, math.floor(context_limit * SAFE_LIMIT_RATIO))


def get_optimal_chunk_size(context_limit: int) -> int:
    return max(1, math.floor(context_limit * OPTIMAL_CHUNK_RATIO))


def effective_limit(context_limit: int, max_tokens_per_chunk: int | None) -> int:
    """The largest token count a single request may carry."""
    limit = get_safe_limit(context_limit)
    if max_tokens_per_chunk is not None:
        limit = min(limit, max_tokens_per_chunk)
    return limit


def assess_complexity(transcript: Transcript) -> Complexity:
    """Three-tier complexity from section count, duration and distinct speakers."""
    sections = transcript.sections
    speakers = {s.speaker for s in sections} or set(transcript.metadata.participants)
    duration = transcript.metadata.duration
    if sections:
        duration = max(duration, sections[-1].end_time - sections[0].start_time)

    if len(speakers) > 5 or len(sections) > 200 or duration > LONG_MEETING_SECONDS:
        return Complexity.HIGH
    if len(speakers) > 2 or len(sections) > 100 or duration > MEDIUM_MEETING_SECONDS:
        return Complexity.MEDIUM
    return Complexity.LOW


def speaker_switch_rate(sections: tuple[Section, ...] | list[Section]) -> float:
    """Fraction of adjacent section pairs whose speakers differ."""
    if len(sections) < 2:
        return 0.0
    switches = sum(1 for prev, cur in zip(sections, sections[1:]) if prev.speaker != cur.speaker)
    return switches / (len(sections) - 1)


def recommend_strategy(
    sections: tuple[Section, ...] | list[Section],
    density: TokenDensity = DEFAULT_DENSITY,
) -> ChunkingStrategy:
    """Pick a boundary strategy from the speaker switch rate and turn length.

    Returns ``TIME_BASED`` for long monologues and ``SPEAKER_TURNS`` for rapid
    alternation. Everything else, including single-section input, gets ``HYBRID``.
    """
    if len(sections) < 2:
        return ChunkingStrategy.HYBRID
    rate = speaker_switch_rate(sections)
    avg_tokens = sum(estimate_token_count(s.text, density) for s in sections) / len(sections)
    if rate < LOW_SWITCH_RATE and avg_tokens > MONOLOGUE_SECTION_TOKENS:
        return ChunkingStrategy.TIME_BASED
    if rate >= HIGH_SWITCH_RATE:
        return ChunkingStrategy.SPEAKER_TURNS
    return ChunkingStrategy.HYBRID


def analyze_chunking_needs(
    transcript: Transcript,
    provider: str | None = None,
    model: str | None = None,
    options: ProcessingOptions | None = None,
) -> ChunkingAnalysis:
    """Analyse *transcript* against the context limit of *provider*/*model*.

    ``provider`` and ``model`` default to the values in *options*. Pure: equal
    inputs always produce an equal analysis.
    """
    options = options or ProcessingOptions()
    provider = provider or options.provider
    model = model or options.model

    context_limit = get_context_limit(provider, model)
    token_count = estimate_token_count(transcript.content, options.density)
    limit = effective_limit(context_limit, options.max_tokens_per_chunk)
    chunk_size = options.max_tokens_per_chunk or get_optimal_chunk_size(context_limit)

    analysis = ChunkingAnalysis(
        needs_chunking=token_count > limit,
        estimated_chunks=max(1, math.ceil(token_count / chunk_size)),
        complexity=assess_complexity(transcript),
        recommended_strategy=recommend_strategy(transcript.sections, options.density),
        context_limit=context_limit,
        token_count=token_count,
        effective_limit=limit,
        chunk_size=chunk_size,
    )
    logger.debug(
        "Chunking analysis for %s/%s: tokens=%d limit=%d needs_chunking=%s strategy=%s",
        provider,
        model,
        token_count,
        limit,
        analysis.needs_chunking,
        analysis.recommended_strategy.value,
    )
    return analysis
