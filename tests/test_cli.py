"""Tests for the command-line entry point."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from src.cli import _build_arg_parser, main
from src.errors.classifier import make_error
from src.errors.taxonomy import ErrorType

TRANSCRIPT = "\n".join(
    f"{'Alice' if i % 2 else 'Bob'}: item {i} is about hiring plans and the office move" for i in range(30)
)


@pytest.fixture
def transcript_file(tmp_path: Path) -> Path:
    path = tmp_path / "meeting.txt"
    path.write_text(TRANSCRIPT, encoding="utf-8")
    return path


class TestArgParser:
    def test_subcommand_required(self) -> None:
        with pytest.raises(SystemExit):
            _build_arg_parser().parse_args([])

    def test_common_options(self) -> None:
        args = _build_arg_parser().parse_args(
            ["chunk", "m.vtt", "--max-tokens", "4000", "--strategy", "hybrid", "--content"]
        )
        assert args.command == "chunk"
        assert args.max_tokens == 4000
        assert args.strategy == "hybrid"
        assert args.content is True

    def test_rejects_unknown_strategy(self) -> None:
        with pytest.raises(SystemExit):
            _build_arg_parser().parse_args(["chunk", "m.vtt", "--strategy", "naive"])


class TestCommands:
    def test_analyze(self, transcript_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["analyze", str(transcript_file), "--max-tokens", "60"]) == 0
        output = json.loads(capsys.readouterr().out)
        assert output["analysis"]["needs_chunking"] is True
        assert output["stats"]["total_sections"] == 30

    def test_chunk_without_content(self, transcript_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["chunk", str(transcript_file), "--max-tokens", "60", "--strategy", "speaker_turns"]) == 0
        chunks = json.loads(capsys.readouterr().out)["chunks"]
        assert len(chunks) > 1
        assert "content" not in chunks[0]
        assert all(c["chunking_strategy"] == "speaker_turns" for c in chunks)

    def test_chunk_with_content(self, transcript_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["chunk", str(transcript_file), "--max-tokens", "60", "--content"]) == 0
        chunks = json.loads(capsys.readouterr().out)["chunks"]
        assert chunks[0]["content"].startswith("[00:00:00] Bob:")

    def test_summarize(self, transcript_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        async def summarize(item, options):
            return {"summary": "done"}

        with patch("src.cli.get_summarizer", return_value=summarize):
            code = main(["summarize", str(transcript_file), "--max-tokens", "60", "--no-combine"])

        captured = capsys.readouterr()
        assert code == 0
        output = json.loads(captured.out)
        assert output["metadata"]["combined"] is False
        assert "Summarizing chunk 1/" in captured.err


class TestErrors:
    def test_missing_file(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["analyze", str(tmp_path / "nope.txt")]) == 2
        assert "ERROR" in capsys.readouterr().err

    def test_empty_transcript(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        path = tmp_path / "empty.txt"
        path.write_text("", encoding="utf-8")
        assert main(["analyze", str(path)]) == 1
        assert "Empty Transcript" in capsys.readouterr().err

    def test_chunk_failure_reports_progress(self, transcript_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        async def summarize(item, options):
            raise make_error(ErrorType.API_KEY_INVALID, "bad key")

        with patch("src.cli.get_summarizer", return_value=summarize):
            code = main(["summarize", str(transcript_file), "--max-tokens", "60"])

        err = capsys.readouterr().err
        assert code == 1
        assert "chunk 1/" in err
        assert "Invalid API Key" in err
        assert "0 of " in err
        assert "* Check API Key" in err
