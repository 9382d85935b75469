"""Data models for transcripts and transcript chunks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from src.pipeline_config import ChunkingStrategy

OVERLAP_MARKER = "[Context from previous section]"

# TranscriptMetadata.source of the meta-transcript built from section summaries.
CHUNK_SUMMARIES_SOURCE = "chunk_summaries"


def format_timestamp(seconds: float) -> str:
    """Render an offset in seconds as ``HH:MM:SS`` (fractions truncated)."""
    total = max(0, int(seconds))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


@dataclass(frozen=True)
class TranscriptEntry:
    """A single raw caption/utterance as produced by a parser, before grouping."""

    text: str
    speaker: str | None = None
    start_time: float | None = None
    end_time: float | None = None
    confidence: float | None = None
    language: str | None = None


@dataclass(frozen=True)
class Section:
    """One speaker turn. Times are offsets in seconds from the start of the meeting.

    ``part_index`` is set only on pieces produced by splitting an oversized
    section; joining consecutive pieces (0, 1, 2, ...) restores the original.
    """

    speaker: str
    start_time: float
    end_time: float
    text: str
    confidence: float = 1.0
    is_overlap: bool = False
    part_index: int | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")

    @property
    def is_split(self) -> bool:
        return self.part_index is not None

    def render(self) -> str:
        text = f"{OVERLAP_MARKER} {self.text}" if self.is_overlap else self.text
        return f"[{format_timestamp(self.start_time)}] {self.speaker}: {text}"


def render_sections(sections: list[Section] | tuple[Section, ...]) -> str:
    """Format sections as ``[HH:MM:SS] Speaker: text`` lines for AI consumption."""
    return "\n".join(s.render() for s in sections)


def section_text(sections: list[Section] | tuple[Section, ...]) -> str:
    """Spoken text of *sections* only, one section per line (used for token budgets)."""
    return "\n".join(s.text for s in sections)


@dataclass(frozen=True)
class TranscriptMetadata:
    """Meeting-level metadata. ``source`` distinguishes real transcripts from
    the meta-transcript built out of section summaries."""

    participants: tuple[str, ...] = ()
    duration: float = 0.0
    language: str = "en"
    total_entries: int = 0
    start_time: float = 0.0
    end_time: float = 0.0
    title: str | None = None
    source: str = "transcript"


@dataclass(frozen=True)
class Transcript:
    """A formatted transcript: metadata, AI-ready content and ordered sections."""

    metadata: TranscriptMetadata
    content: str
    sections: tuple[Section, ...] = ()


@dataclass(frozen=True)
class TimeRange:
    start: float
    end: float

    @property
    def duration(self) -> float:
        return max(0.0, self.end - self.start)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": format_timestamp(self.start),
            "end": format_timestamp(self.end),
            "duration": format_timestamp(self.duration),
            "start_seconds": self.start,
            "end_seconds": self.end,
        }


@dataclass(frozen=True)
class ChunkMetadata:
    """Per-chunk metadata assigned by the assembler."""

    chunk_index: int = 0
    total_chunks: int = 0
    token_count: int = 0
    speakers: tuple[str, ...] = ()
    time_range: TimeRange | None = None
    chunking_strategy: ChunkingStrategy | None = None
    has_overlap: bool = False
    overlap_sections: int = 0
    original_transcript_id: str = ""
    oversized: bool = False


@dataclass(frozen=True)
class Chunk:
    """A bounded, ordered run of sections sized to fit a token budget.

    Overlap sections (``is_overlap=True``) are prepended copies of the previous
    chunk's tail and are never counted as this chunk's own content.
    """

    sections: tuple[Section, ...]
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)
    language: str = "en"

    @property
    def content(self) -> str:
        return render_sections(self.sections)

    @property
    def own_sections(self) -> tuple[Section, ...]:
        return tuple(s for s in self.sections if not s.is_overlap)

    def to_dict(self) -> dict[str, Any]:
        meta = self.metadata
        return {
            "chunk_index": meta.chunk_index,
            "total_chunks": meta.total_chunks,
            "token_count": meta.token_count,
            "speakers": list(meta.speakers),
            "time_range": meta.time_range.to_dict() if meta.time_range else None,
            "chunking_strategy": meta.chunking_strategy.value if meta.chunking_strategy else None,
            "has_overlap": meta.has_overlap,
            "overlap_sections": meta.overlap_sections,
            "original_transcript_id": meta.original_transcript_id,
            "oversized": meta.oversized,
            "content": self.content,
        }
