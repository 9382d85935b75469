"""Shared transcript builders for the test suite."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from src.ingestion.models import Section, Transcript, TranscriptMetadata, render_sections

TranscriptFactory = Callable[..., Transcript]


def build(sections: list[Section], language: str = "en", **metadata: Any) -> Transcript:
    duration = sections[-1].end_time - sections[0].start_time if sections else 0.0
    values: dict[str, Any] = {
        "participants": tuple(sorted({s.speaker for s in sections})),
        "duration": duration,
        "language": language,
        "total_entries": len(sections),
        "start_time": sections[0].start_time if sections else 0.0,
        "end_time": sections[-1].end_time if sections else 0.0,
    }
    values.update(metadata)
    return Transcript(
        metadata=TranscriptMetadata(**values),
        content=render_sections(sections),
        sections=tuple(sections),
    )


@pytest.fixture
def make_transcript() -> TranscriptFactory:
    """Build a Transcript from ``(speaker, text)`` pairs.

    Each section lasts ``seconds_per_section`` seconds, separated by ``gap``.
    """

    def factory(
        turns: list[tuple[str, str]],
        seconds_per_section: float = 10.0,
        gap: float = 0.0,
        language: str = "en",
    ) -> Transcript:
        sections = []
        t = 0.0
        for speaker, text in turns:
            sections.append(Section(speaker=speaker, start_time=t, end_time=t + seconds_per_section, text=text))
            t += seconds_per_section + gap
        return build(sections, language=language)

    return factory


@pytest.fixture
def meeting(make_transcript: TranscriptFactory) -> Transcript:
    """A 60-turn, three-speaker meeting of a few thousand tokens (about 55 per turn)."""
    speakers = ["Alice", "Bob", "Carol"]
    turns = [
        (speakers[i % 3], f"Turn {i}: we reviewed item {i} and agreed on the follow up actions for it. " * 3)
        for i in range(60)
    ]
    return make_transcript(turns)


@pytest.fixture
def empty_transcript() -> Transcript:
    return build([])
