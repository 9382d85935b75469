"""Async Anthropic and OpenAI summarizers matching the ``summarize_fn`` shape.

Each summarizer takes a whole ``Transcript``, a ``Chunk`` of one, or the
meta-transcript of section summaries built by the combining pass, and
returns ``{"summary": str, "metadata": {...}}``.
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from typing import Any

from anthropic import AsyncAnthropic
from anthropic.types import TextBlock
from openai import AsyncOpenAI

from src.config import settings
from src.errors.classifier import make_error
from src.errors.taxonomy import ErrorType
from src.ingestion.models import CHUNK_SUMMARIES_SOURCE, OVERLAP_MARKER, Chunk, Transcript, format_timestamp
from src.pipeline_config import ProcessingOptions, Provider

SYSTEM_PROMPT = (
    "You are a meeting assistant that writes accurate, well-structured summaries "
    "of meeting transcripts.\n\n"
    "Rules:\n"
    "- Only use information present in the transcript.\n"
    "- Attribute decisions and action items to the speakers who made them.\n"
    "- Be concise and direct."
)

_SUMMARY_SECTIONS = (
    "Please provide a summary with the following sections:\n"
    "1. Overview\n"
    "2. Key discussion points\n"
    "3. Decisions\n"
    "4. Action items (with owners where known)"
)


def _language_instruction(language: str) -> str:
    if language.lower().startswith("zh"):
        return "Write the summary in Traditional Chinese (zh-TW)."
    return "Write the summary in the same language as the transcript."


def build_prompt(item: Transcript | Chunk, options: ProcessingOptions) -> str:
    """User prompt for a full transcript, a single chunk or the combining pass."""
    if isinstance(item, Chunk):
        meta = item.metadata
        span = ""
        if meta.time_range is not None:
            span = f" covering {format_timestamp(meta.time_range.start)}-{format_timestamp(meta.time_range.end)}"
        context_note = (
            f"Lines starting with {OVERLAP_MARKER!r} repeat the end of the previous section "
            "for continuity only; do not summarize them again.\n\n"
            if meta.has_overlap
            else ""
        )
        return (
            f"This is section {meta.chunk_index + 1} of {meta.total_chunks} of a longer meeting{span}. "
            f"Speakers in this section: {', '.join(meta.speakers) or 'unknown'}.\n\n"
            f"{context_note}"
            f"Summarize this section so it can later be merged with the others.\n"
            f"{_language_instruction(item.language)}\n\n"
            f"Transcript section:\n\n{item.content}"
        )

    if item.metadata.source == CHUNK_SUMMARIES_SOURCE:
        return (
            "The following are summaries of consecutive sections of one meeting. "
            "Combine them into a single coherent summary without repeating points.\n\n"
            f"{_SUMMARY_SECTIONS}\n{_language_instruction(item.metadata.language)}\n\n"
            f"Section summaries:\n\n{item.content}"
        )

    participants = ", ".join(item.metadata.participants) or "unknown"
    return (
        f"Meeting participants: {participants}\n"
        f"Duration: {format_timestamp(item.metadata.duration)}\n\n"
        f"{_SUMMARY_SECTIONS}\n{_language_instruction(item.metadata.language)}\n\n"
        f"Transcript:\n\n{item.content}"
    )


async def summarize_with_anthropic(
    item: Transcript | Chunk,
    options: ProcessingOptions,
    client: AsyncAnthropic | None = None,
) -> dict[str, Any]:
    """Summarize *item* with Claude."""
    if client is None:
        if not settings.anthropic_api_key:
            raise make_error(ErrorType.API_KEY_MISSING, "Anthropic API key is not configured")
        client = AsyncAnthropic(api_key=settings.anthropic_api_key)

    response = await client.messages.create(
        model=options.model,
        max_tokens=settings.summary_max_output_tokens,
        system=SYSTEM_PROMPT,
        messages=[{"role": "user", "content": build_prompt(item, options)}],
    )

    # We request plain text, so the first block should be a TextBlock.
    block = response.content[0] if response.content else None
    if not isinstance(block, TextBlock):
        raise make_error(
            ErrorType.INVALID_RESPONSE,
            f"Expected TextBlock from Claude, got {type(block).__name__}",
        )

    return {
        "summary": block.text,
        "metadata": {
            "provider": Provider.ANTHROPIC.value,
            "model": response.model,
            "usage": {
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
        },
    }


async def summarize_with_openai(
    item: Transcript | Chunk,
    options: ProcessingOptions,
    client: AsyncOpenAI | None = None,
) -> dict[str, Any]:
    """Summarize *item* with an OpenAI chat model."""
    if client is None:
        if not settings.openai_api_key:
            raise make_error(ErrorType.API_KEY_MISSING, "OpenAI API key is not configured")
        client = AsyncOpenAI(api_key=settings.openai_api_key)

    response = await client.chat.completions.create(
        model=options.model,
        max_tokens=settings.summary_max_output_tokens,
        messages=[
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_prompt(item, options)},
        ],
    )

    content = response.choices[0].message.content if response.choices else None
    if not content:
        raise make_error(ErrorType.INVALID_RESPONSE, "OpenAI returned an empty completion")

    usage = response.usage
    return {
        "summary": content,
        "metadata": {
            "provider": Provider.OPENAI.value,
            "model": response.model,
            "usage": {
                "input_tokens": usage.prompt_tokens if usage else 0,
                "output_tokens": usage.completion_tokens if usage else 0,
            },
        },
    }


SummarizeFn = Callable[[Transcript | Chunk, ProcessingOptions], Awaitable[dict[str, Any]]]


def get_summarizer(provider: str, client: Any = None) -> SummarizeFn:
    """Return the summarizer for *provider*, optionally bound to a client.

    Raises:
        ValueError: If *provider* is not supported.
    """
    summarizers: dict[str, Callable[..., Awaitable[dict[str, Any]]]] = {
        Provider.ANTHROPIC: summarize_with_anthropic,
        Provider.OPENAI: summarize_with_openai,
    }
    summarizer = summarizers.get(str(provider).lower())
    if summarizer is None:
        msg = f"Unknown provider: {provider!r}. Supported: {[p.value for p in Provider]}"
        raise ValueError(msg)
    if client is None:
        return summarizer
    return functools.partial(summarizer, client=client)
