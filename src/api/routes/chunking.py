"""Analyse, chunk and summarize endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from src.api.models import (
    AnalysisOut,
    AnalyzeResponse,
    ChunkOut,
    ChunkResponse,
    ErrorStatsResponse,
    SummarizeResponse,
    TranscriptRequest,
)
from src.chunking.analyzer import analyze_chunking_needs
from src.chunking.processor import prepare_chunks, process_large_transcript
from src.config import settings
from src.errors.retry import RetryEngine
from src.ingestion.models import Transcript
from src.ingestion.parsers import create_preview, get_transcript_stats, parse_transcript
from src.pipeline_config import ProcessingOptions, Provider
from src.summarization.providers import get_summarizer

logger = logging.getLogger(__name__)

router = APIRouter()

# Shared by every /api/summarize call so /api/errors/stats sees all of them.
retry_engine = RetryEngine()


def build_options(request: TranscriptRequest) -> ProcessingOptions:
    """Merge request overrides over the configured defaults."""
    overrides = request.options.model_dump(exclude_none=True)
    provider = overrides.get("provider")
    if provider is not None and "model" not in overrides:
        overrides["model"] = (
            settings.openai_model if provider == Provider.OPENAI else settings.anthropic_model
        )
    try:
        return ProcessingOptions.from_settings(settings, **overrides)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def load_transcript(request: TranscriptRequest) -> Transcript:
    try:
        return parse_transcript(request.content, request.format, language=request.language, title=request.title)
    except ValueError as exc:
        # Unknown format; parse failures surface as DomainError.
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/api/analyze", response_model=AnalyzeResponse)
async def analyze(request: TranscriptRequest) -> AnalyzeResponse:
    """Report whether the transcript needs chunking for the selected model."""
    options = build_options(request)
    transcript = load_transcript(request)
    analysis = analyze_chunking_needs(transcript, options.provider, options.model, options)
    return AnalyzeResponse(
        analysis=AnalysisOut(**analysis.to_dict()),
        stats=get_transcript_stats(transcript),
        preview=create_preview(transcript),
    )


@router.post("/api/chunk", response_model=ChunkResponse)
async def chunk(request: TranscriptRequest) -> ChunkResponse:
    """Chunk the transcript without summarizing it, whether or not it needs chunking."""
    options = build_options(request)
    transcript = load_transcript(request)
    analysis = analyze_chunking_needs(transcript, options.provider, options.model, options)
    chunks = prepare_chunks(transcript, options, analysis)
    return ChunkResponse(
        analysis=AnalysisOut(**analysis.to_dict()),
        strategy=options.strategy or analysis.recommended_strategy,
        chunks=[ChunkOut(**c.to_dict()) for c in chunks],
    )


@router.post("/api/summarize", response_model=SummarizeResponse)
async def summarize(request: TranscriptRequest) -> SummarizeResponse:
    """Summarize the transcript, chunking it first when it is too large."""
    options = build_options(request)
    transcript = load_transcript(request)
    try:
        summarize_fn = get_summarizer(options.provider)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    result = await process_large_transcript(transcript, summarize_fn, options, retry_engine=retry_engine)
    return SummarizeResponse(
        summary=result["summary"],
        metadata=dict(result.get("metadata") or {}),
        chunk_details=list(result.get("chunk_details") or []),
    )


@router.get("/api/errors/stats", response_model=ErrorStatsResponse)
async def error_stats() -> ErrorStatsResponse:
    return ErrorStatsResponse(**retry_engine.stats.snapshot())


@router.delete("/api/errors/stats", response_model=ErrorStatsResponse)
async def reset_error_stats() -> ErrorStatsResponse:
    retry_engine.stats.reset()
    return ErrorStatsResponse(**retry_engine.stats.snapshot())
