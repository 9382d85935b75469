"""Tests for the large-transcript pipeline (no external APIs required)."""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Mapping
from typing import Any

import pytest

from src.chunking.analyzer import analyze_chunking_needs
from src.chunking.processor import (
    PROCESSING_METHOD,
    ProcessingError,
    ProcessingStage,
    ProgressUpdate,
    prepare_chunks,
    process_large_transcript,
)
from src.chunking.tokens import estimate_token_count
from src.errors.classifier import make_error
from src.errors.retry import RetryEngine
from src.errors.taxonomy import DomainError, ErrorType
from src.ingestion.models import CHUNK_SUMMARIES_SOURCE, Chunk, Transcript, TranscriptMetadata
from src.pipeline_config import ChunkingStrategy, ProcessingOptions

OPTIONS = ProcessingOptions(
    max_tokens_per_chunk=700,
    strategy=ChunkingStrategy.SPEAKER_TURNS,
    jitter=False,
)


class FakeSummarizer:
    """Records every call; fails chunk calls according to ``failures``.

    ``failures`` maps a chunk index to a list of exceptions raised on
    successive calls for that chunk.
    """

    def __init__(
        self,
        failures: dict[int, list[Exception]] | None = None,
        combine_error: Exception | None = None,
    ) -> None:
        self.calls: list[Transcript | Chunk] = []
        self.failures = failures or {}
        self.combine_error = combine_error

    async def __call__(self, item: Transcript | Chunk, options: ProcessingOptions) -> Mapping[str, Any]:
        self.calls.append(item)
        if isinstance(item, Transcript):
            if item.metadata.source == CHUNK_SUMMARIES_SOURCE:
                if self.combine_error is not None:
                    raise self.combine_error
                return {"summary": "Combined meeting summary"}
            return {"summary": "Direct summary", "metadata": {"provider": options.provider}}
        pending = self.failures.get(item.metadata.chunk_index)
        if pending:
            raise pending.pop(0)
        return {"summary": f"Summary of chunk {item.metadata.chunk_index}"}

    @property
    def chunk_calls(self) -> list[Chunk]:
        return [c for c in self.calls if isinstance(c, Chunk)]


class FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _run(transcript: Transcript, summarizer: FakeSummarizer, options: ProcessingOptions = OPTIONS, **kwargs: Any):
    kwargs.setdefault("retry_engine", RetryEngine(sleep=FakeSleep()))
    return asyncio.run(process_large_transcript(transcript, summarizer, options, **kwargs))


def _expected_chunk_count(transcript: Transcript, options: ProcessingOptions = OPTIONS) -> int:
    analysis = analyze_chunking_needs(transcript, options.provider, options.model, options)
    return len(prepare_chunks(transcript, options, analysis))


# ---------------------------------------------------------------------------
# Direct path
# ---------------------------------------------------------------------------


class TestSmallTranscript:
    def test_summarized_once_unchanged(self, make_transcript) -> None:
        """A transcript under the limit goes to the summarizer as-is, exactly once."""
        transcript = make_transcript([("Alice", "Quick sync."), ("Bob", "Agreed.")])
        summarizer = FakeSummarizer()

        result = _run(transcript, summarizer)

        assert summarizer.calls == [transcript]
        assert summarizer.calls[0] is transcript
        assert result == {"summary": "Direct summary", "metadata": {"provider": OPTIONS.provider}}

    def test_no_progress_for_direct_path(self, make_transcript) -> None:
        updates: list[ProgressUpdate] = []
        _run(make_transcript([("A", "hi")]), FakeSummarizer(), progress_callback=updates.append)
        assert updates == []

    def test_content_only_transcript_fits(self) -> None:
        transcript = Transcript(metadata=TranscriptMetadata(), content="Alice: hello there")
        summarizer = FakeSummarizer()
        _run(transcript, summarizer)
        assert summarizer.calls == [transcript]


# ---------------------------------------------------------------------------
# Chunked path
# ---------------------------------------------------------------------------


class TestChunkedProcessing:
    def test_every_chunk_summarized_in_order(self, meeting: Transcript) -> None:
        summarizer = FakeSummarizer()
        total = _expected_chunk_count(meeting)

        result = _run(meeting, summarizer)

        assert total > 1
        assert [c.metadata.chunk_index for c in summarizer.chunk_calls] == list(range(total))
        assert result["metadata"]["chunks_processed"] == total
        assert len(result["chunk_details"]) == total

    def test_result_metadata(self, meeting: Transcript) -> None:
        result = _run(meeting, FakeSummarizer())
        metadata = result["metadata"]

        assert metadata["processing_method"] == PROCESSING_METHOD
        assert metadata["chunking_strategy"] == "speaker_turns"
        assert metadata["total_tokens"] > OPTIONS.max_tokens_per_chunk
        assert 0 < metadata["avg_chunk_tokens"] <= OPTIONS.max_tokens_per_chunk
        assert metadata["combined"] is True
        assert metadata["provider"] == "anthropic"
        assert metadata["analysis"]["needs_chunking"] is True

    def test_chunk_details_carry_summaries(self, meeting: Transcript) -> None:
        result = _run(meeting, FakeSummarizer())
        first = result["chunk_details"][0]
        assert first["summary"] == "Summary of chunk 0"
        assert first["chunk_index"] == 0
        assert "content" not in first

    def test_combining_pass_receives_section_summaries(self, meeting: Transcript) -> None:
        summarizer = FakeSummarizer()
        result = _run(meeting, summarizer)

        combine_call = summarizer.calls[-1]
        assert isinstance(combine_call, Transcript)
        assert combine_call.metadata.source == CHUNK_SUMMARIES_SOURCE
        assert "## Section 1 (00:00:00 - " in combine_call.content
        assert "Summary of chunk 0" in combine_call.content
        assert result["summary"] == "Combined meeting summary"

    def test_without_combining_returns_merged_sections(self, meeting: Transcript) -> None:
        options = ProcessingOptions(
            max_tokens_per_chunk=700,
            strategy=ChunkingStrategy.SPEAKER_TURNS,
            combine_summaries=False,
        )
        summarizer = FakeSummarizer()
        result = _run(meeting, summarizer, options)

        assert all(isinstance(c, Chunk) for c in summarizer.calls)
        assert result["metadata"]["combined"] is False
        assert result["summary"].startswith("## Section 1 (")
        assert "Speakers: Alice, Bob, Carol" in result["summary"]
        assert "Summary of chunk 1" in result["summary"]

    def test_progress_stages(self, meeting: Transcript) -> None:
        updates: list[ProgressUpdate] = []
        total = _expected_chunk_count(meeting)

        _run(meeting, FakeSummarizer(), progress_callback=updates.append)

        stages = [u.stage for u in updates]
        assert stages[0] is ProcessingStage.CHUNKING
        assert stages[1:-2] == [ProcessingStage.PROCESSING] * total
        assert stages[-2:] == [ProcessingStage.COMBINING, ProcessingStage.COMPLETE]
        assert updates[0].total_chunks == total
        assert [u.chunk_index for u in updates[1:-2]] == list(range(total))

    def test_recommended_strategy_used_when_unset(self, meeting: Transcript) -> None:
        options = ProcessingOptions(max_tokens_per_chunk=700)
        analysis = analyze_chunking_needs(meeting, options.provider, options.model, options)
        result = _run(meeting, FakeSummarizer(), options)
        assert result["metadata"]["chunking_strategy"] == analysis.recommended_strategy.value


class TestPrepareChunks:
    """What is actually sent per chunk must fit the request limit, overlap included."""

    OPTIONS = ProcessingOptions(provider="openai", model="gpt-3.5-turbo", strategy=ChunkingStrategy.SPEAKER_TURNS)

    def _long_turns(self, make_transcript) -> Transcript:
        # Eight turns of about 5500 tokens against a 15k context window.
        return make_transcript([(("Alice", "Bob")[i % 2], " ".join(["budget"] * 3143)) for i in range(8)])

    def test_rendered_chunks_fit_effective_limit(self, make_transcript) -> None:
        transcript = self._long_turns(make_transcript)
        analysis = analyze_chunking_needs(transcript, self.OPTIONS.provider, self.OPTIONS.model, self.OPTIONS)

        chunks = prepare_chunks(transcript, self.OPTIONS, analysis)

        assert analysis.effective_limit == 12_000
        assert len(chunks) == 8
        assert all(c.metadata.has_overlap for c in chunks[1:])
        for chunk in chunks:
            assert estimate_token_count(chunk.content) <= analysis.effective_limit

    def test_full_budget_without_overlap(self, make_transcript) -> None:
        transcript = self._long_turns(make_transcript)
        options = dataclasses.replace(self.OPTIONS, overlap_sections=0)
        analysis = analyze_chunking_needs(transcript, options.provider, options.model, options)

        chunks = prepare_chunks(transcript, options, analysis)

        assert len(chunks) == 4
        assert not any(c.metadata.has_overlap for c in chunks)


# ---------------------------------------------------------------------------
# Failures, retries and cancellation
# ---------------------------------------------------------------------------


class TestFailures:
    def test_empty_transcript_rejected(self, empty_transcript: Transcript) -> None:
        with pytest.raises(DomainError) as exc_info:
            _run(empty_transcript, FakeSummarizer())
        assert exc_info.value.type is ErrorType.TRANSCRIPT_EMPTY

    def test_oversized_content_without_sections(self) -> None:
        transcript = Transcript(metadata=TranscriptMetadata(), content="a" * 4000)
        summarizer = FakeSummarizer()
        with pytest.raises(DomainError) as exc_info:
            _run(transcript, summarizer)
        assert exc_info.value.type is ErrorType.TRANSCRIPT_TOO_LARGE
        assert summarizer.calls == []

    def test_failed_chunk_reports_progress_made(self, meeting: Transcript) -> None:
        """A permanent failure on chunk 2 reports the two chunks already done."""
        total = _expected_chunk_count(meeting)
        summarizer = FakeSummarizer(failures={2: [make_error(ErrorType.INVALID_RESPONSE, "bad payload")]})

        with pytest.raises(ProcessingError) as exc_info:
            _run(meeting, summarizer)

        error = exc_info.value
        assert error.stage is ProcessingStage.PROCESSING
        assert error.chunk_index == 2
        assert error.chunks_completed == 2
        assert error.total_chunks == total
        assert error.error.type is ErrorType.INVALID_RESPONSE
        assert error.error.attempts == 1
        assert error.error.context["chunk_index"] == 2
        assert len(summarizer.chunk_calls) == 3
        assert error.to_dict()["error"]["type"] == "invalid_response"

    def test_missing_summary_is_invalid_response(self, meeting: Transcript) -> None:
        async def no_summary(item: Transcript | Chunk, options: ProcessingOptions) -> Mapping[str, Any]:
            return {"text": "wrong key"}

        with pytest.raises(ProcessingError) as exc_info:
            asyncio.run(process_large_transcript(meeting, no_summary, OPTIONS))
        assert exc_info.value.chunk_index == 0
        assert exc_info.value.error.type is ErrorType.INVALID_RESPONSE

    def test_transient_failure_is_retried(self, meeting: Transcript) -> None:
        summarizer = FakeSummarizer(failures={0: [ConnectionError("connection reset by peer")]})
        sleep = FakeSleep()
        updates: list[ProgressUpdate] = []

        result = _run(
            meeting,
            summarizer,
            progress_callback=updates.append,
            retry_engine=RetryEngine(sleep=sleep),
        )

        retries = [u for u in updates if u.stage is ProcessingStage.RETRY]
        assert len(retries) == 1
        assert retries[0].chunk_index == 0
        assert retries[0].attempt == 1
        assert retries[0].delay == OPTIONS.initial_delay
        assert sleep.delays == [OPTIONS.initial_delay]
        assert result["chunk_details"][0]["summary"] == "Summary of chunk 0"

    def test_retries_exhausted(self, meeting: Transcript) -> None:
        options = ProcessingOptions(
            max_tokens_per_chunk=700,
            strategy=ChunkingStrategy.SPEAKER_TURNS,
            max_retries=2,
            jitter=False,
        )
        failures = {1: [TimeoutError("timed out") for _ in range(5)]}
        summarizer = FakeSummarizer(failures=failures)

        with pytest.raises(ProcessingError) as exc_info:
            _run(meeting, summarizer, options)

        assert exc_info.value.chunk_index == 1
        assert exc_info.value.chunks_completed == 1
        assert exc_info.value.error.type is ErrorType.NETWORK_TIMEOUT
        assert exc_info.value.error.attempts == 3

    def test_combining_failure(self, meeting: Transcript) -> None:
        total = _expected_chunk_count(meeting)
        summarizer = FakeSummarizer(combine_error=make_error(ErrorType.API_CONTEXT_TOO_LONG, "prompt is too long"))

        with pytest.raises(ProcessingError) as exc_info:
            _run(meeting, summarizer)

        assert exc_info.value.stage is ProcessingStage.COMBINING
        assert exc_info.value.chunk_index is None
        assert exc_info.value.chunks_completed == total

    def test_cancelled_before_start(self, meeting: Transcript) -> None:
        summarizer = FakeSummarizer()

        async def run() -> None:
            cancel = asyncio.Event()
            cancel.set()
            await process_large_transcript(meeting, summarizer, OPTIONS, cancel_event=cancel)

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(run())
        assert summarizer.calls == []

    def test_cancelled_between_chunks(self, meeting: Transcript) -> None:
        summarizer = FakeSummarizer()

        async def run() -> None:
            cancel = asyncio.Event()

            def on_progress(update: ProgressUpdate) -> None:
                if update.stage is ProcessingStage.PROCESSING and update.chunk_index == 1:
                    cancel.set()

            await process_large_transcript(
                meeting, summarizer, OPTIONS, on_progress, cancel_event=cancel
            )

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(run())
        assert len(summarizer.chunk_calls) == 2


class TestProgressUpdate:
    def test_to_dict_drops_unset_fields(self) -> None:
        update = ProgressUpdate(ProcessingStage.RETRY, chunk_index=3, total_chunks=9, attempt=1, delay=2.0)
        assert update.to_dict() == {
            "stage": "retry",
            "chunk_index": 3,
            "total_chunks": 9,
            "attempt": 1,
            "delay": 2.0,
        }
