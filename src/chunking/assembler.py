"""Chunk metadata enrichment, cross-chunk context overlap and reassembly."""

from __future__ import annotations

import dataclasses
import hashlib
import logging

from src.chunking.tokens import DEFAULT_DENSITY, TokenDensity, estimate_token_count
from src.ingestion.models import Chunk, Section, TimeRange, Transcript, render_sections, section_text
from src.pipeline_config import DEFAULT_OVERLAP_SECTIONS, ChunkingStrategy

logger = logging.getLogger(__name__)


def generate_transcript_id(transcript: Transcript) -> str:
    """Stable identifier derived from the opening content and the duration."""
    seed = f"{transcript.content[:100]}{transcript.metadata.duration}"
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:16]


def enrich_chunk_metadata(
    chunks: list[Chunk],
    transcript: Transcript,
    strategy_used: ChunkingStrategy,
    max_tokens_per_chunk: int | None = None,
    density: TokenDensity = DEFAULT_DENSITY,
) -> list[Chunk]:
    """Stamp index, totals, token count, speakers and time range on each chunk.

    ``token_count`` covers the chunk's own sections only. When
    *max_tokens_per_chunk* is given, a chunk over budget is flagged
    ``oversized`` and logged.
    """
    transcript_id = generate_transcript_id(transcript)
    total = len(chunks)
    enriched = []
    for index, chunk in enumerate(chunks):
        own = chunk.own_sections
        token_count = estimate_token_count(section_text(own), density)
        oversized = max_tokens_per_chunk is not None and token_count > max_tokens_per_chunk
        if oversized:
            logger.warning(
                "Chunk %d holds %d section(s) totalling %d tokens, over the %d-token budget",
                index,
                len(own),
                token_count,
                max_tokens_per_chunk,
            )
        time_range = (
            TimeRange(min(s.start_time for s in own), max(s.end_time for s in own)) if own else None
        )
        metadata = dataclasses.replace(
            chunk.metadata,
            chunk_index=index,
            total_chunks=total,
            token_count=token_count,
            speakers=tuple(sorted({s.speaker for s in own})),
            time_range=time_range,
            chunking_strategy=strategy_used,
            original_transcript_id=transcript_id,
            oversized=oversized,
        )
        enriched.append(dataclasses.replace(chunk, metadata=metadata))
    return enriched


def _overlap_for(previous: Chunk, overlap_sections: int, overlap_seconds: float | None) -> list[Section]:
    own = list(previous.own_sections)
    if not own:
        return []
    if overlap_seconds is not None:
        cutoff = own[-1].end_time - overlap_seconds
        tail = [s for s in own if s.end_time > cutoff]
        # Always carry at least the final section.
        return tail or own[-1:]
    if overlap_sections <= 0:
        return []
    return own[-overlap_sections:]


def add_context_overlap(
    chunks: list[Chunk],
    transcript: Transcript,
    overlap_sections: int = DEFAULT_OVERLAP_SECTIONS,
    overlap_seconds: float | None = None,
    max_tokens: int | None = None,
    density: TokenDensity = DEFAULT_DENSITY,
) -> list[Chunk]:
    """Prepend the previous chunk's tail to every chunk after the first.

    The tail is the last *overlap_sections* own sections of the previous
    chunk, or, when *overlap_seconds* is set, every own section ending
    within that many seconds of the previous chunk's end. Prepended copies
    are marked ``is_overlap`` and never count toward coverage or tokens.

    With *max_tokens*, overlap sections are dropped oldest first until the
    rendered chunk fits; a chunk with no room gets no overlap.
    """
    if len(chunks) <= 1:
        return list(chunks)

    result = [chunks[0]]
    for previous, chunk in zip(chunks, chunks[1:]):
        own = chunk.own_sections
        overlap = [
            dataclasses.replace(s, is_overlap=True)
            for s in _overlap_for(previous, overlap_sections, overlap_seconds)
        ]
        if max_tokens is not None and overlap:
            while overlap and estimate_token_count(render_sections((*overlap, *own)), density) > max_tokens:
                overlap.pop(0)
            if not overlap:
                logger.debug("No room for overlap in chunk %d", chunk.metadata.chunk_index)
        if not overlap:
            result.append(chunk)
            continue
        metadata = dataclasses.replace(chunk.metadata, has_overlap=True, overlap_sections=len(overlap))
        result.append(dataclasses.replace(chunk, sections=tuple(overlap) + own, metadata=metadata))
    logger.debug(
        "Added context overlap to %d chunks for transcript %s",
        len(result) - 1,
        generate_transcript_id(transcript),
    )
    return result


def reassemble_sections(chunks: list[Chunk]) -> list[Section]:
    """Rebuild the original section sequence from a chunk list.

    Overlap copies are dropped and split pieces are joined back into the
    section they came from.
    """
    sections: list[Section] = []
    pending: list[Section] = []

    def flush() -> None:
        if pending:
            first, last = pending[0], pending[-1]
            sections.append(
                dataclasses.replace(
                    first,
                    text="".join(p.text for p in pending),
                    end_time=last.end_time,
                    part_index=None,
                )
            )
            pending.clear()

    for chunk in chunks:
        for section in chunk.own_sections:
            if section.part_index is None:
                flush()
                sections.append(section)
            elif section.part_index == 0:
                flush()
                pending.append(section)
            else:
                pending.append(section)
    flush()
    return sections
