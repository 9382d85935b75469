"""Large-transcript pipeline: analyse -> chunk -> summarize each chunk -> merge."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import math
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from src.chunking.analyzer import ChunkingAnalysis, analyze_chunking_needs
from src.chunking.assembler import add_context_overlap, enrich_chunk_metadata
from src.chunking.strategies import chunk_transcript
from src.errors.classifier import make_error
from src.errors.retry import RetryEngine, RetryEvent
from src.errors.taxonomy import DomainError, ErrorType
from src.ingestion.models import CHUNK_SUMMARIES_SOURCE, Chunk, Transcript, format_timestamp
from src.pipeline_config import OVERLAP_RESERVE_RATIO, ProcessingOptions

logger = logging.getLogger(__name__)

PROCESSING_METHOD = "large_transcript_chunked"

SummarizeFn = Callable[[Transcript | Chunk, ProcessingOptions], Awaitable[Mapping[str, Any]]]


class ProcessingStage(StrEnum):
    CHUNKING = "chunking"
    PROCESSING = "processing"
    RETRY = "retry"
    COMBINING = "combining"
    COMPLETE = "complete"


@dataclass(frozen=True)
class ProgressUpdate:
    stage: ProcessingStage
    chunk_index: int | None = None
    total_chunks: int | None = None
    attempt: int | None = None
    delay: float | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {k: v for k, v in dataclasses.asdict(self).items() if v is not None}
        data["stage"] = self.stage.value
        return data


ProgressCallback = Callable[[ProgressUpdate], None]


class ProcessingError(Exception):
    """A chunked run that could not finish.

    Carries the classified cause and how far processing got, so callers can
    tell a failure on chunk 7 of 9 from a failure before any work was done.
    ``chunk_index`` is ``None`` when the failure was outside a chunk call
    (for example in the combining pass).
    """

    def __init__(
        self,
        error: DomainError,
        stage: ProcessingStage,
        chunk_index: int | None,
        chunks_completed: int,
        total_chunks: int,
    ) -> None:
        where = f"chunk {chunk_index + 1}/{total_chunks}" if chunk_index is not None else str(stage)
        super().__init__(f"Processing failed at {where}: {error.message}")
        self.error = error
        self.stage = stage
        self.chunk_index = chunk_index
        self.chunks_completed = chunks_completed
        self.total_chunks = total_chunks

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value,
            "chunk_index": self.chunk_index,
            "chunks_completed": self.chunks_completed,
            "total_chunks": self.total_chunks,
            "error": self.error.to_dict(),
        }


def _summary_of(result: Any) -> str:
    if not isinstance(result, Mapping) or not isinstance(result.get("summary"), str):
        raise make_error(ErrorType.INVALID_RESPONSE, "Summarizer returned no 'summary' text")
    return result["summary"]


def _section_header(chunk: Chunk) -> str:
    meta = chunk.metadata
    span = (
        f"{format_timestamp(meta.time_range.start)} - {format_timestamp(meta.time_range.end)}"
        if meta.time_range
        else "unknown time"
    )
    return f"## Section {meta.chunk_index + 1} ({span}, Speakers: {', '.join(meta.speakers)})"


def _merge_summaries(chunks: list[Chunk], summaries: list[str]) -> str:
    return "\n\n".join(f"{_section_header(c)}\n\n{s.strip()}" for c, s in zip(chunks, summaries))


def _chunk_detail(chunk: Chunk, summary: str) -> dict[str, Any]:
    detail = chunk.to_dict()
    detail.pop("content", None)
    detail["summary"] = summary
    return detail


def _check_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise asyncio.CancelledError("transcript processing cancelled")


def prepare_chunks(
    transcript: Transcript,
    options: ProcessingOptions,
    analysis: ChunkingAnalysis,
) -> list[Chunk]:
    """Chunk *transcript* with the chosen strategy, then enrich and overlap.

    When overlap is enabled the strategy budget leaves ``OVERLAP_RESERVE_RATIO``
    of the effective limit free, and overlap is trimmed so that no rendered
    chunk with overlap exceeds ``analysis.effective_limit``.
    """
    strategy = options.strategy or analysis.recommended_strategy
    limit = analysis.effective_limit
    budget = min(analysis.chunk_size, limit)
    if options.overlap_sections > 0 or options.overlap_seconds is not None:
        budget = min(budget, max(1, math.floor(limit * (1 - OVERLAP_RESERVE_RATIO))))
    chunks = chunk_transcript(transcript, strategy, budget, options)
    chunks = enrich_chunk_metadata(chunks, transcript, strategy, budget, options.density)
    return add_context_overlap(
        chunks,
        transcript,
        options.overlap_sections,
        options.overlap_seconds,
        max_tokens=limit,
        density=options.density,
    )


async def process_large_transcript(
    transcript: Transcript,
    summarize_fn: SummarizeFn,
    options: ProcessingOptions | None = None,
    progress_callback: ProgressCallback | None = None,
    *,
    retry_engine: RetryEngine | None = None,
    cancel_event: asyncio.Event | None = None,
) -> Mapping[str, Any]:
    """Summarize *transcript*, chunking it first if it exceeds the model's limit.

    Transcripts that fit are passed to ``summarize_fn`` once, untouched, and
    its result is returned as-is. Larger ones are chunked and summarized one
    chunk at a time, in order, each call wrapped in ``retry_engine``.

    Raises:
        DomainError: ``TRANSCRIPT_EMPTY`` for a transcript with no content,
            ``TRANSCRIPT_TOO_LARGE`` when chunking is needed but there are no
            sections to chunk.
        ProcessingError: A chunk or the combining pass failed for good.
        asyncio.CancelledError: ``cancel_event`` was set.
    """
    options = options or ProcessingOptions()
    engine = retry_engine or RetryEngine()

    def emit(update: ProgressUpdate) -> None:
        if progress_callback is not None:
            progress_callback(update)

    if not transcript.sections and not transcript.content.strip():
        raise make_error(ErrorType.TRANSCRIPT_EMPTY, "Transcript has no content to summarize")

    analysis = analyze_chunking_needs(transcript, options.provider, options.model, options)
    if not analysis.needs_chunking:
        _check_cancelled(cancel_event)
        logger.info("Transcript fits in one request (%d tokens); summarizing directly", analysis.token_count)
        return await summarize_fn(transcript, options)

    if not transcript.sections:
        raise make_error(
            ErrorType.TRANSCRIPT_TOO_LARGE,
            f"Transcript needs chunking ({analysis.token_count} tokens) but has no sections to split on",
            {"token_count": analysis.token_count, "effective_limit": analysis.effective_limit},
        )

    chunks = prepare_chunks(transcript, options, analysis)
    total = len(chunks)
    strategy = chunks[0].metadata.chunking_strategy if chunks else options.strategy
    logger.info("Split transcript into %d chunks using %s", total, strategy)
    emit(ProgressUpdate(ProcessingStage.CHUNKING, total_chunks=total))

    retry_config = options.retry_config()
    summaries: list[str] = []
    for chunk in chunks:
        index = chunk.metadata.chunk_index
        _check_cancelled(cancel_event)
        emit(ProgressUpdate(ProcessingStage.PROCESSING, chunk_index=index, total_chunks=total))
        logger.info("Summarizing chunk %d/%d (%d tokens)", index + 1, total, chunk.metadata.token_count)

        async def summarize_chunk(chunk: Chunk = chunk) -> str:
            return _summary_of(await summarize_fn(chunk, options))

        def on_retry(event: RetryEvent, index: int = index) -> None:
            emit(
                ProgressUpdate(
                    ProcessingStage.RETRY,
                    chunk_index=index,
                    total_chunks=total,
                    attempt=event.attempt,
                    delay=event.delay,
                )
            )

        try:
            summaries.append(
                await engine.with_retry(
                    summarize_chunk,
                    retry_config,
                    on_retry,
                    context={"chunk_index": index, "total_chunks": total},
                    cancel_event=cancel_event,
                )
            )
        except DomainError as error:
            logger.error(
                "Chunk %d/%d failed after %d call(s): %s", index + 1, total, error.attempts, error.type.value
            )
            raise ProcessingError(error, ProcessingStage.PROCESSING, index, len(summaries), total) from error

    merged = _merge_summaries(chunks, summaries)
    combined = False
    if options.combine_summaries and total > 1:
        _check_cancelled(cancel_event)
        emit(ProgressUpdate(ProcessingStage.COMBINING, total_chunks=total))
        meta_transcript = Transcript(
            metadata=dataclasses.replace(transcript.metadata, source=CHUNK_SUMMARIES_SOURCE),
            content=merged,
        )

        async def summarize_all() -> str:
            return _summary_of(await summarize_fn(meta_transcript, options))

        try:
            merged = await engine.with_retry(
                summarize_all,
                retry_config,
                context={"stage": ProcessingStage.COMBINING.value},
                cancel_event=cancel_event,
            )
        except DomainError as error:
            logger.error("Combining %d section summaries failed: %s", total, error.type.value)
            raise ProcessingError(error, ProcessingStage.COMBINING, None, total, total) from error
        combined = True

    token_counts = [c.metadata.token_count for c in chunks]
    emit(ProgressUpdate(ProcessingStage.COMPLETE, total_chunks=total))
    return {
        "summary": merged,
        "metadata": {
            "processing_method": PROCESSING_METHOD,
            "chunks_processed": total,
            "chunking_strategy": str(strategy),
            "total_tokens": analysis.token_count,
            "avg_chunk_tokens": round(sum(token_counts) / total) if total else 0,
            "combined": combined,
            "provider": options.provider,
            "model": options.model,
            "analysis": analysis.to_dict(),
        },
        "chunk_details": [_chunk_detail(c, s) for c, s in zip(chunks, summaries)],
    }
