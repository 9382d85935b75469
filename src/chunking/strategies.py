"""Boundary strategies that partition transcript sections into chunks.

Every strategy takes ``(transcript, max_tokens_per_chunk, options)`` and
returns chunks whose own sections, read in order, are exactly the
transcript's sections. A section too large for the budget on its own is
first split into ``part_index``-numbered pieces by :func:`split_section_text`.

Chunks returned here carry default metadata; the assembler fills it in.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from collections.abc import Callable, Sequence
from functools import lru_cache

from src.chunking.tokens import (
    DEFAULT_DENSITY,
    TokenDensity,
    count_script_chars,
    estimate_token_count,
    tokens_for_counts,
)
from src.ingestion.models import Chunk, Section, Transcript
from src.pipeline_config import ChunkingStrategy, ProcessingOptions, SemanticBreakConfig

logger = logging.getLogger(__name__)

_SENTENCE_END_RE = re.compile(r"[.!?。！？]+\s*")
_WHITESPACE_RE = re.compile(r"\s+")

BreakDetector = Callable[[Section | None, Section], bool]


class _Window:
    """Sections accumulated for the chunk under construction.

    The token estimate is kept incrementally and always equals
    ``estimate_token_count(section_text(self.sections))``.
    """

    def __init__(self, density: TokenDensity) -> None:
        self.density = density
        self.sections: list[Section] = []
        self.breaks: list[bool] = []
        self._cjk = 0
        self._other = 0

    def __len__(self) -> int:
        return len(self.sections)

    def _counts_with(self, section: Section) -> tuple[int, int]:
        cjk, other = count_script_chars(section.text)
        separator = 1 if self.sections else 0
        return self._cjk + cjk, self._other + other + separator

    def tokens_with(self, section: Section) -> int:
        return tokens_for_counts(*self._counts_with(section), self.density)

    def add(self, section: Section, is_break: bool = False) -> None:
        self._cjk, self._other = self._counts_with(section)
        self.sections.append(section)
        self.breaks.append(is_break)

    def split_at(self, index: int) -> list[Section]:
        """Remove and return ``sections[:index]``, keeping the rest accumulated."""
        head = self.sections[:index]
        tail = list(zip(self.sections[index:], self.breaks[index:]))
        self.sections, self.breaks = [], []
        self._cjk = self._other = 0
        for section, is_break in tail:
            self.add(section, is_break)
        return head

    def drain(self) -> list[Section]:
        return self.split_at(len(self.sections))

    def latest_break(self) -> int | None:
        """Index of the last flagged break point, ignoring the first section."""
        for i in range(len(self.breaks) - 1, 0, -1):
            if self.breaks[i]:
                return i
        return None

    def latest_speaker_change(self) -> int | None:
        for i in range(len(self.sections) - 1, 0, -1):
            if self.sections[i].speaker != self.sections[i - 1].speaker:
                return i
        return None


# ---------------------------------------------------------------------------
# Section splitting
# ---------------------------------------------------------------------------


def _longest_fitting_prefix(text: str, max_tokens: int, density: TokenDensity) -> int:
    # Every character costs at least 1/max_divisor tokens, which caps the search.
    max_divisor = max(density.cjk_chars_per_token, density.latin_chars_per_token)
    lo, hi = 0, min(len(text), max(1, int(max_tokens * max_divisor)))
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if estimate_token_count(text[:mid], density) <= max_tokens:
            lo = mid
        else:
            hi = mid - 1
    return max(lo, 1)


def _cut_point(prefix: str) -> int:
    sentence_ends = [m.end() for m in _SENTENCE_END_RE.finditer(prefix)]
    if sentence_ends and sentence_ends[-1] > len(prefix) // 2:
        return sentence_ends[-1]
    whitespace_ends = [m.end() for m in _WHITESPACE_RE.finditer(prefix)]
    if whitespace_ends:
        return whitespace_ends[-1]
    return len(prefix)


def split_section_text(
    section: Section,
    max_tokens_per_chunk: int,
    density: TokenDensity = DEFAULT_DENSITY,
) -> list[Section]:
    """Split *section* into pieces that each fit *max_tokens_per_chunk*.

    Cuts fall after the last sentence end in the second half of the largest
    fitting prefix, otherwise after the last whitespace run, otherwise
    mid-word. Concatenating the pieces' text restores the original exactly.
    Piece times are interpolated by character offset.

    A section that already fits is returned unchanged as a single element.
    """
    text = section.text
    if estimate_token_count(text, density) <= max_tokens_per_chunk:
        return [section]

    pieces: list[str] = []
    rest = text
    while estimate_token_count(rest, density) > max_tokens_per_chunk:
        prefix = rest[: _longest_fitting_prefix(rest, max_tokens_per_chunk, density)]
        cut = _cut_point(prefix)
        pieces.append(rest[:cut])
        rest = rest[cut:]
    pieces.append(rest)

    span = section.end_time - section.start_time
    offset = 0
    result = []
    for i, piece in enumerate(pieces):
        start = section.start_time + span * offset / len(text)
        offset += len(piece)
        end = section.end_time if i == len(pieces) - 1 else section.start_time + span * offset / len(text)
        result.append(dataclasses.replace(section, text=piece, start_time=start, end_time=end, part_index=i))

    logger.debug("Split oversized section from %s into %d pieces", section.speaker, len(result))
    return result


# ---------------------------------------------------------------------------
# Break detection
# ---------------------------------------------------------------------------


@lru_cache(maxsize=32)
def _marker_pattern(markers: tuple[str, ...]) -> re.Pattern[str] | None:
    if not markers:
        return None
    alternatives = "|".join(re.escape(m.lower()) for m in sorted(markers, key=len, reverse=True))
    return re.compile(rf"(?<![a-z])(?:{alternatives})(?![a-z])")


def has_topic_marker(text: str, config: SemanticBreakConfig = SemanticBreakConfig()) -> bool:
    pattern = _marker_pattern(tuple(config.markers))
    return bool(pattern and pattern.search(text.lower()))


def detect_semantic_break(
    previous: Section | None,
    current: Section,
    config: SemanticBreakConfig = SemanticBreakConfig(),
) -> bool:
    """True when a chunk may start at *current*.

    A break is a topic marker phrase in *current* or a pause longer than
    ``config.pause_threshold_seconds`` after *previous*. Continuation pieces
    of a split section are never breaks.
    """
    if previous is None or (current.part_index or 0) > 0:
        return False
    if current.start_time - previous.end_time > config.pause_threshold_seconds:
        return True
    return has_topic_marker(current.text, config)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


def _prepare(
    transcript: Transcript,
    max_tokens_per_chunk: int,
    options: ProcessingOptions | None,
) -> tuple[list[Section], ProcessingOptions]:
    if max_tokens_per_chunk < 1:
        raise ValueError(f"max_tokens_per_chunk must be a positive integer, got {max_tokens_per_chunk}")
    options = options or ProcessingOptions()
    sections: list[Section] = []
    for section in transcript.sections:
        sections.extend(split_section_text(section, max_tokens_per_chunk, options.density))
    return sections, options


def _to_chunks(groups: Sequence[Sequence[Section]], transcript: Transcript) -> list[Chunk]:
    language = transcript.metadata.language
    return [Chunk(sections=tuple(group), language=language) for group in groups if group]


def _accumulate(
    sections: list[Section],
    max_tokens: int,
    density: TokenDensity,
    *,
    is_break: BreakDetector,
    near_limit_ratio: float | None,
    fall_back_to_speaker_change: bool,
) -> list[list[Section]]:
    """Greedy accumulation with break-aware closing.

    A flagged break closes the chunk early once the chunk would pass
    ``near_limit_ratio`` of the budget. On overflow the chunk is cut at the
    latest break, then (optionally) the latest speaker change, else right
    before the overflowing section.
    """
    groups: list[list[Section]] = []
    window = _Window(density)
    previous: Section | None = None
    for section in sections:
        breaks_here = is_break(previous, section)
        previous = section
        if (
            window
            and breaks_here
            and near_limit_ratio is not None
            and window.tokens_with(section) > max_tokens * near_limit_ratio
        ):
            groups.append(window.drain())
        while window and window.tokens_with(section) > max_tokens:
            cut = window.latest_break()
            if cut is None and fall_back_to_speaker_change:
                cut = window.latest_speaker_change()
            groups.append(window.split_at(cut or len(window)))
        window.add(section, breaks_here)
    if window:
        groups.append(window.drain())
    return groups


def speaker_turn_chunk(
    transcript: Transcript,
    max_tokens_per_chunk: int,
    options: ProcessingOptions | None = None,
) -> list[Chunk]:
    """Pack consecutive speaker turns until the next one would overflow the budget."""
    sections, options = _prepare(transcript, max_tokens_per_chunk, options)
    groups = _accumulate(
        sections,
        max_tokens_per_chunk,
        options.density,
        is_break=lambda _previous, _current: False,
        near_limit_ratio=None,
        fall_back_to_speaker_change=False,
    )
    chunks = _to_chunks(groups, transcript)
    logger.info("Speaker-turn chunking produced %d chunks", len(chunks))
    return chunks


def time_interval_chunk(
    transcript: Transcript,
    max_tokens_per_chunk: int,
    options: ProcessingOptions | None = None,
) -> list[Chunk]:
    """Cut at wall-clock windows sized to roughly match the token budget.

    The window is ``max_tokens_per_chunk / speaking_rate_tokens_per_second``
    seconds. A boundary that falls inside a section snaps to whichever edge
    of that section is nearer. The token budget still applies inside a window.
    """
    sections, options = _prepare(transcript, max_tokens_per_chunk, options)
    rate = options.speaking_rate_tokens_per_second
    if rate <= 0:
        raise ValueError(f"speaking_rate_tokens_per_second must be positive, got {rate}")
    window_seconds = max_tokens_per_chunk / rate

    groups: list[list[Section]] = []
    window = _Window(options.density)
    window_start = 0.0
    for section in sections:
        if window:
            boundary = window_start + window_seconds
            nearer_start = (
                section.start_time < boundary < section.end_time
                and boundary - section.start_time < section.end_time - boundary
            )
            if (
                section.start_time >= boundary
                or nearer_start
                or window.tokens_with(section) > max_tokens_per_chunk
            ):
                groups.append(window.drain())
        if not window:
            window_start = section.start_time
        window.add(section)
        if section.end_time >= window_start + window_seconds:
            groups.append(window.drain())
    if window:
        groups.append(window.drain())

    chunks = _to_chunks(groups, transcript)
    logger.info("Time-interval chunking (%.0fs windows) produced %d chunks", window_seconds, len(chunks))
    return chunks


def semantic_break_chunk(
    transcript: Transcript,
    max_tokens_per_chunk: int,
    options: ProcessingOptions | None = None,
) -> list[Chunk]:
    """Cut at topic markers or long pauses, hard-splitting when none is available."""
    sections, options = _prepare(transcript, max_tokens_per_chunk, options)
    config = options.semantic
    groups = _accumulate(
        sections,
        max_tokens_per_chunk,
        options.density,
        is_break=lambda previous, current: detect_semantic_break(previous, current, config),
        near_limit_ratio=config.semantic_near_limit_ratio,
        fall_back_to_speaker_change=False,
    )
    chunks = _to_chunks(groups, transcript)
    logger.info("Semantic-break chunking produced %d chunks", len(chunks))
    return chunks


def hybrid_chunk(
    transcript: Transcript,
    max_tokens_per_chunk: int,
    options: ProcessingOptions | None = None,
) -> list[Chunk]:
    """Prefer semantic breaks, then speaker changes, then a hard split."""
    sections, options = _prepare(transcript, max_tokens_per_chunk, options)
    config = options.semantic
    groups = _accumulate(
        sections,
        max_tokens_per_chunk,
        options.density,
        is_break=lambda previous, current: detect_semantic_break(previous, current, config),
        near_limit_ratio=config.hybrid_near_limit_ratio,
        fall_back_to_speaker_change=True,
    )
    chunks = _to_chunks(groups, transcript)
    logger.info("Hybrid chunking produced %d chunks", len(chunks))
    return chunks


StrategyFunction = Callable[[Transcript, int, ProcessingOptions | None], list[Chunk]]

STRATEGY_FUNCTIONS: dict[ChunkingStrategy, StrategyFunction] = {
    ChunkingStrategy.SPEAKER_TURNS: speaker_turn_chunk,
    ChunkingStrategy.TIME_BASED: time_interval_chunk,
    ChunkingStrategy.SEMANTIC_BREAKS: semantic_break_chunk,
    ChunkingStrategy.HYBRID: hybrid_chunk,
}


def chunk_transcript(
    transcript: Transcript,
    strategy: str | ChunkingStrategy,
    max_tokens_per_chunk: int,
    options: ProcessingOptions | None = None,
) -> list[Chunk]:
    """Dispatch to the boundary strategy named by *strategy*."""
    return STRATEGY_FUNCTIONS[ChunkingStrategy(strategy)](transcript, max_tokens_per_chunk, options)
