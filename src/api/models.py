"""Pydantic request/response schemas for the transcript chunking API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from src.pipeline_config import ChunkingStrategy


class ProcessingOptionsInput(BaseModel):
    """Per-request overrides. Unset fields fall back to application settings."""

    provider: str | None = None
    model: str | None = None
    max_tokens_per_chunk: int | None = Field(default=None, ge=1)
    strategy: ChunkingStrategy | None = None
    overlap_sections: int | None = Field(default=None, ge=0)
    overlap_seconds: float | None = Field(default=None, gt=0)
    combine_summaries: bool | None = None
    language: str | None = None


class TranscriptRequest(BaseModel):
    """Request body shared by /api/analyze, /api/chunk and /api/summarize."""

    content: str
    format: str = "text"
    title: str | None = None
    language: str | None = None
    options: ProcessingOptionsInput = Field(default_factory=ProcessingOptionsInput)


class AnalysisOut(BaseModel):
    needs_chunking: bool
    estimated_chunks: int
    complexity: str
    recommended_strategy: ChunkingStrategy
    context_limit: int
    token_count: int
    effective_limit: int
    chunk_size: int


class AnalyzeResponse(BaseModel):
    """Response body for the /api/analyze endpoint."""

    analysis: AnalysisOut
    stats: dict[str, Any]
    preview: str


class TimeRangeOut(BaseModel):
    start: str
    end: str
    duration: str
    start_seconds: float
    end_seconds: float


class ChunkOut(BaseModel):
    """A single chunk with its metadata and AI-ready content."""

    chunk_index: int
    total_chunks: int
    token_count: int
    speakers: list[str]
    time_range: TimeRangeOut | None = None
    chunking_strategy: ChunkingStrategy | None = None
    has_overlap: bool = False
    overlap_sections: int = 0
    original_transcript_id: str
    oversized: bool = False
    content: str


class ChunkResponse(BaseModel):
    """Response body for the /api/chunk endpoint."""

    analysis: AnalysisOut
    strategy: ChunkingStrategy
    chunks: list[ChunkOut]


class SummarizeResponse(BaseModel):
    """Response body for the /api/summarize endpoint."""

    summary: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    chunk_details: list[dict[str, Any]] = Field(default_factory=list)


class RecoveryActionOut(BaseModel):
    type: str
    label: str
    primary: bool


class ErrorOut(BaseModel):
    """A classified error rendered for the caller's language."""

    type: str
    category: str
    severity: str
    title: str
    description: str
    technical_details: str | None = None
    is_retryable: bool
    error_id: str
    attempts: int = 0
    recovery_actions: list[RecoveryActionOut] = Field(default_factory=list)


class ProcessingOut(BaseModel):
    stage: str
    chunk_index: int | None = None
    chunks_completed: int
    total_chunks: int


class ErrorResponse(BaseModel):
    error: ErrorOut
    processing: ProcessingOut | None = None


class ErrorStatsResponse(BaseModel):
    total_errors: int
    errors_by_type: dict[str, int]
    errors_by_category: dict[str, int]
    retries_successful: int
    retries_failed: int
