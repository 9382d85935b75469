"""Transcript parsers and the formatter that turns raw entries into a Transcript.

Supported inputs: Microsoft Stream transcript JSON (``entries[]``), WebVTT
(including Teams ``<v Name>`` voice tags), plain ``Speaker: text`` lines, and
a few other JSON shapes (AssemblyAI utterances, MeetingBank transcription,
internal segments).
"""

from __future__ import annotations

import dataclasses
import json
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from src.errors.classifier import make_error
from src.errors.taxonomy import ErrorType
from src.ingestion.models import (
    Section,
    Transcript,
    TranscriptEntry,
    TranscriptMetadata,
    format_timestamp,
    render_sections,
)

UNKNOWN_SPEAKER = "Unknown"
STREAM_DEFAULT_LANGUAGE = "zh-tw"
LOW_CONFIDENCE = 0.5

_TIMESTAMP_RE = re.compile(r"^(\d+):(\d{1,2}):(\d{1,2}(?:[.,]\d+)?)$")


def parse_offset(value: str) -> float:
    """Convert ``HH:MM:SS[.fffffff]`` (Stream/VTT style) to seconds.

    ``MM:SS.mmm`` is accepted as well.

    Raises:
        DomainError: ``MALFORMED_TIMESTAMPS`` if *value* cannot be read.
    """
    text = str(value).strip()
    if text.count(":") == 1:
        text = f"0:{text}"
    match = _TIMESTAMP_RE.match(text)
    if not match:
        raise make_error(ErrorType.MALFORMED_TIMESTAMPS, f"Unreadable timestamp: {value!r}")
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds.replace(",", "."))


# ---------------------------------------------------------------------------
# Raw entry parsers
# ---------------------------------------------------------------------------


def parse_vtt(content: str) -> list[TranscriptEntry]:
    """Parse a WebVTT file into transcript entries.

    Handles timestamps like ``00:01:23.456 --> 00:01:30.789`` and speaker labels
    in two formats:

    - Colon-style: ``Speaker 1: Hello``
    - Microsoft Teams inline voice tags: ``<v SpeakerName>Hello</v>``

    Teams voice tags win over colon-style labels when a cue has both.
    """
    entries: list[TranscriptEntry] = []

    timestamp_re = re.compile(
        r"(\d{1,2}:\d{2}:\d{2}[.,]\d{3}|\d{2}:\d{2}[.,]\d{3})\s*-->\s*"
        r"(\d{1,2}:\d{2}:\d{2}[.,]\d{3}|\d{2}:\d{2}[.,]\d{3})"
    )
    speaker_re = re.compile(r"^(.+?):\s+(.+)$")
    # The closing </v> tag is optional per the WebVTT spec.
    teams_voice_re = re.compile(r"^<v(?:\.[^ >]+)* ([^>]+)>(.*?)(?:</v>)?$", re.DOTALL)

    lines = content.strip().splitlines()
    i = 0
    while i < len(lines):
        match = timestamp_re.search(lines[i].strip())
        if not match:
            i += 1
            continue

        start = parse_offset(match.group(1))
        end = parse_offset(match.group(2))

        text_lines: list[str] = []
        i += 1
        while i < len(lines) and lines[i].strip() and not timestamp_re.search(lines[i]):
            text_lines.append(lines[i].strip())
            i += 1

        full_text = " ".join(text_lines)
        speaker: str | None = None
        teams_match = teams_voice_re.match(full_text)
        if teams_match:
            speaker = teams_match.group(1).strip()
            full_text = teams_match.group(2).strip()
        else:
            speaker_match = speaker_re.match(full_text)
            if speaker_match:
                speaker = speaker_match.group(1)
                full_text = speaker_match.group(2)

        if full_text:
            entries.append(TranscriptEntry(text=full_text, speaker=speaker, start_time=start, end_time=end))

    return entries


def parse_plain_text(content: str) -> list[TranscriptEntry]:
    """Parse ``Speaker: text`` lines. Lines without a label get no speaker.

    Plain text carries no timing, so every entry starts and ends at 0.
    """
    entries: list[TranscriptEntry] = []
    speaker_re = re.compile(r"^(.+?):\s+(.+)$")

    for line in content.strip().splitlines():
        line = line.strip()
        if not line:
            continue
        match = speaker_re.match(line)
        if match:
            entries.append(TranscriptEntry(text=match.group(2), speaker=match.group(1)))
        else:
            entries.append(TranscriptEntry(text=line))

    return entries


def _load_json(content: str | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(content, Mapping):
        return content
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise make_error(ErrorType.JSON_PARSE_ERROR, f"Transcript is not valid JSON: {exc.msg}") from exc
    if not isinstance(data, Mapping):
        raise make_error(ErrorType.JSON_PARSE_ERROR, "Transcript JSON must be an object")
    return data


def _stream_entries(data: Mapping[str, Any]) -> list[TranscriptEntry]:
    raw_entries = data.get("entries")
    if not isinstance(raw_entries, list):
        raise make_error(ErrorType.JSON_PARSE_ERROR, "Stream transcript is missing its entries array")
    entries = []
    for index, raw in enumerate(raw_entries):
        if not raw.get("startOffset") or not raw.get("endOffset"):
            raise make_error(
                ErrorType.MALFORMED_TIMESTAMPS, f"Entry {index} is missing timestamp information"
            )
        entries.append(
            TranscriptEntry(
                text=str(raw.get("text") or ""),
                speaker=raw.get("speakerDisplayName"),
                start_time=parse_offset(raw["startOffset"]),
                end_time=parse_offset(raw["endOffset"]),
                confidence=raw.get("confidence"),
                language=raw.get("spokenLanguageTag"),
            )
        )
    return entries


def parse_json(content: str | Mapping[str, Any]) -> list[TranscriptEntry]:
    """Parse a JSON transcript into entries.

    Supported formats:

    Microsoft Stream (offsets ``HH:MM:SS.fffffff``)::

        {"entries": [{"speakerDisplayName": "...", "startOffset": "...",
                      "endOffset": "...", "text": "...", "confidence": 0.9,
                      "spokenLanguageTag": "zh-tw"}]}

    AssemblyAI (times in milliseconds)::

        {"utterances": [{"speaker": "A", "text": "...", "start": ms, "end": ms}]}

    MeetingBank (``speaker_id``, times in seconds)::

        {"transcription": [{"speaker_id": "...", "text": "...", "start_time": s, "end_time": s}]}

    Internal segments (times in seconds)::

        {"segments": [{"speaker": "...", "text": "...", "start_time": s, "end_time": s}]}
    """
    data = _load_json(content)

    if "entries" in data:
        return _stream_entries(data)
    if "utterances" in data:
        return [
            TranscriptEntry(
                text=utt["text"],
                speaker=utt.get("speaker"),
                start_time=utt.get("start", 0) / 1000.0,
                end_time=utt.get("end", 0) / 1000.0,
                confidence=utt.get("confidence"),
            )
            for utt in data["utterances"]
        ]
    if "transcription" in data:
        return [
            TranscriptEntry(
                text=item["text"],
                speaker=item.get("speaker_id"),
                start_time=item.get("start_time"),
                end_time=item.get("end_time"),
            )
            for item in data["transcription"]
        ]
    if "segments" in data:
        return [
            TranscriptEntry(
                text=seg["text"],
                speaker=seg.get("speaker"),
                start_time=seg.get("start_time"),
                end_time=seg.get("end_time"),
            )
            for seg in data["segments"]
        ]

    raise make_error(
        ErrorType.JSON_PARSE_ERROR,
        f"Unrecognized JSON transcript format. Keys: {list(data.keys())}",
    )


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def _clamp_confidence(value: Any) -> float:
    if value is None:
        return 1.0
    return min(1.0, max(0.0, float(value)))


def build_transcript(
    entries: list[TranscriptEntry],
    language: str | None = None,
    title: str | None = None,
) -> Transcript:
    """Group raw entries into speaker sections and render AI-ready content.

    Consecutive entries from the same speaker merge into one section; the
    section confidence is updated as the running average
    ``(previous + new) / 2``. Participants are the sorted, unique, non-blank
    speaker names.

    Raises:
        DomainError: ``TRANSCRIPT_EMPTY`` when *entries* is empty.
    """
    if not entries:
        raise make_error(ErrorType.TRANSCRIPT_EMPTY, "Transcript contains no entries")

    participants = sorted({e.speaker.strip() for e in entries if e.speaker and e.speaker.strip()})

    grouped: list[dict[str, Any]] = []
    for entry in entries:
        speaker = (entry.speaker or "").strip() or UNKNOWN_SPEAKER
        start = entry.start_time or 0.0
        end = entry.end_time if entry.end_time is not None else start
        confidence = _clamp_confidence(entry.confidence)
        if grouped and grouped[-1]["speaker"] == speaker:
            current = grouped[-1]
            current["text"] = f"{current['text']} {entry.text}"
            current["end_time"] = end
            current["confidence"] = (current["confidence"] + confidence) / 2
        else:
            grouped.append(
                {"speaker": speaker, "start_time": start, "end_time": end, "text": entry.text, "confidence": confidence}
            )
    sections = tuple(Section(**values) for values in grouped)

    timed = [e for e in entries if e.start_time is not None]
    start_time = timed[0].start_time if timed else 0.0
    end_time = max((e.end_time or 0.0 for e in timed), default=0.0)

    metadata = TranscriptMetadata(
        participants=tuple(participants),
        duration=max(0.0, (end_time or 0.0) - (start_time or 0.0)),
        language=language or entries[0].language or "en",
        total_entries=len(entries),
        start_time=start_time or 0.0,
        end_time=end_time,
        title=title,
    )
    return Transcript(metadata=metadata, content=render_sections(sections), sections=sections)


def parse_stream_json(content: str | Mapping[str, Any], title: str | None = None) -> Transcript:
    """Format a Microsoft Stream transcript. Language defaults to ``zh-tw``."""
    entries = _stream_entries(_load_json(content))
    language = (entries[0].language if entries else None) or STREAM_DEFAULT_LANGUAGE
    return build_transcript(entries, language=language, title=title)


def parse_transcript(
    content: str,
    format: str,
    language: str | None = None,
    title: str | None = None,
) -> Transcript:
    """Dispatch to the correct parser based on *format* and build a Transcript.

    Args:
        content: Raw transcript text.
        format: One of ``"vtt"``, ``"text"`` / ``"plain_text"`` / ``"txt"``,
                ``"json"`` or ``"stream"``.
        language: Language tag; defaults to the entries' own tag, else ``en``.
        title: Optional meeting title.

    Raises:
        ValueError: If *format* is not recognized.
        DomainError: If the content cannot be parsed or holds no entries.
    """
    if format == "stream":
        transcript = parse_stream_json(content, title=title)
        if language:
            transcript = dataclasses.replace(
                transcript, metadata=dataclasses.replace(transcript.metadata, language=language)
            )
        return transcript

    dispatch: dict[str, Callable[[str], list[TranscriptEntry]]] = {
        "vtt": parse_vtt,
        "text": parse_plain_text,
        "plain_text": parse_plain_text,
        "txt": parse_plain_text,
        "json": parse_json,
    }
    parser = dispatch.get(format)
    if parser is None:
        msg = f"Unknown transcript format: {format!r}. Supported: {[*dispatch.keys(), 'stream']}"
        raise ValueError(msg)

    return build_transcript(parser(content), language=language, title=title)


# ---------------------------------------------------------------------------
# Validation, statistics and preview
# ---------------------------------------------------------------------------


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def validate_stream_transcript(data: Any) -> ValidationResult:
    """Check a raw Stream transcript's structure without building it."""
    result = ValidationResult()
    if data is None:
        result.errors.append("Transcript is null or undefined")
        return result

    entries = data.get("entries") if isinstance(data, Mapping) else None
    if not isinstance(entries, list):
        result.errors.append("Missing or invalid entries array")
        return result
    if not entries:
        result.warnings.append("Transcript contains no entries")

    for index, entry in enumerate(entries):
        if not str(entry.get("text") or "").strip():
            result.warnings.append(f"Entry {index} has empty text")
        if not entry.get("speakerDisplayName"):
            result.warnings.append(f"Entry {index} missing speaker name")
        if not entry.get("startOffset") or not entry.get("endOffset"):
            result.errors.append(f"Entry {index} missing timestamp information")
        confidence = entry.get("confidence")
        if isinstance(confidence, (int, float)) and confidence < LOW_CONFIDENCE:
            result.warnings.append(f"Entry {index} has low confidence ({confidence})")
    return result


def get_transcript_stats(transcript: Transcript) -> dict[str, Any]:
    sections = transcript.sections
    speaking_seconds: dict[str, float] = {}
    for section in sections:
        speaking_seconds[section.speaker] = speaking_seconds.get(section.speaker, 0.0) + max(
            0.0, section.end_time - section.start_time
        )
    average_confidence = sum(s.confidence for s in sections) / len(sections) if sections else 0.0
    return {
        "total_sections": len(sections),
        "total_participants": len(transcript.metadata.participants),
        "word_count": len(transcript.content.split()),
        "average_confidence": round(average_confidence, 2),
        "speaking_time": {name: format_timestamp(secs) for name, secs in speaking_seconds.items()},
        "speaking_seconds": speaking_seconds,
        "duration": format_timestamp(transcript.metadata.duration),
    }


def create_preview(transcript: Transcript, max_lines: int = 10) -> str:
    """First *max_lines* lines of the content, noting how many were left out."""
    lines = transcript.content.split("\n")
    preview = "\n".join(lines[:max_lines])
    if len(lines) > max_lines:
        return f"{preview}\n... ({len(lines) - max_lines} more lines)"
    return preview
