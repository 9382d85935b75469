"""Command-line entry point: analyse, chunk or summarize a transcript file.

Usage::

    python -m src.cli analyze meeting.json --format stream
    python -m src.cli chunk meeting.vtt --max-tokens 4000 --strategy hybrid
    python -m src.cli summarize meeting.vtt --provider openai
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from src.chunking.analyzer import analyze_chunking_needs
from src.chunking.processor import ProcessingError, ProgressUpdate, prepare_chunks, process_large_transcript
from src.config import settings
from src.errors.messages import get_recovery_actions, get_user_message
from src.errors.taxonomy import DomainError
from src.ingestion.models import Transcript
from src.ingestion.parsers import create_preview, get_transcript_stats, parse_transcript
from src.pipeline_config import ChunkingStrategy, ProcessingOptions, Provider
from src.summarization.providers import get_summarizer

logger = logging.getLogger(__name__)

_FORMAT_BY_SUFFIX = {".vtt": "vtt", ".json": "json", ".txt": "text"}


def _build_arg_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="python -m src.cli",
        description=(
            "Meeting Transcript Chunker\n\n"
            "Estimates token usage for a transcript, splits oversized transcripts\n"
            "into token-bounded chunks and summarizes them with Anthropic or OpenAI."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level (default: %(default)s).")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("path", help="Transcript file, or '-' to read standard input.")
    common.add_argument(
        "--format",
        choices=["vtt", "text", "json", "stream"],
        default=None,
        help="Transcript format. Inferred from the file extension when omitted (default: text).",
    )
    common.add_argument(
        "--provider",
        choices=[p.value for p in Provider],
        default=None,
        help="AI provider whose context limit applies (default: from settings).",
    )
    common.add_argument("--model", default=None, help="Model name (default: the provider's configured model).")
    common.add_argument("--max-tokens", type=int, default=None, metavar="N", help="Token budget per chunk.")
    common.add_argument(
        "--strategy",
        choices=[s.value for s in ChunkingStrategy],
        default=None,
        help="Boundary strategy (default: the analyzer's recommendation).",
    )
    common.add_argument("--overlap-sections", type=int, default=None, metavar="N")
    common.add_argument("--language", default=None, help="Transcript language tag, e.g. en or zh-tw.")
    common.add_argument("--title", default=None)

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("analyze", parents=[common], help="Report whether the transcript needs chunking.")
    chunk_parser = subparsers.add_parser("chunk", parents=[common], help="Print the chunks as JSON.")
    chunk_parser.add_argument("--content", action="store_true", help="Include each chunk's text.")
    summarize_parser = subparsers.add_parser("summarize", parents=[common], help="Summarize the transcript.")
    summarize_parser.add_argument(
        "--no-combine",
        action="store_true",
        help="Concatenate section summaries instead of running a final combining pass.",
    )
    return parser


def _read_input(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _options_from_args(args: argparse.Namespace) -> ProcessingOptions:
    overrides: dict[str, object] = {}
    if args.provider:
        overrides["provider"] = args.provider
        overrides["model"] = args.model or (
            settings.openai_model if args.provider == Provider.OPENAI else settings.anthropic_model
        )
    elif args.model:
        overrides["model"] = args.model
    if args.max_tokens is not None:
        overrides["max_tokens_per_chunk"] = args.max_tokens
    if args.strategy:
        overrides["strategy"] = args.strategy
    if args.overlap_sections is not None:
        overrides["overlap_sections"] = args.overlap_sections
    if getattr(args, "no_combine", False):
        overrides["combine_summaries"] = False
    return ProcessingOptions.from_settings(settings, **overrides)


def _load(args: argparse.Namespace) -> Transcript:
    fmt = args.format
    if fmt is None:
        fmt = _FORMAT_BY_SUFFIX.get(Path(args.path).suffix.lower(), "text")
    return parse_transcript(_read_input(args.path), fmt, language=args.language, title=args.title)


def _print_progress(update: ProgressUpdate) -> None:
    if update.stage == "processing" and update.chunk_index is not None:
        print(f"Summarizing chunk {update.chunk_index + 1}/{update.total_chunks} …", file=sys.stderr)
    elif update.stage == "retry":
        print(f"  retry {update.attempt} in {update.delay:.1f}s", file=sys.stderr)
    else:
        print(f"[{update.stage}]", file=sys.stderr)


def _report_error(error: DomainError, prefix: str = "") -> None:
    message = get_user_message(error, settings.error_language, settings.show_technical_details)
    print(f"ERROR: {prefix}{message.title}: {message.description} ({error.error_id})", file=sys.stderr)
    if message.technical_details:
        print(f"  {message.technical_details}", file=sys.stderr)
    for action in get_recovery_actions(error, language=settings.error_language):
        marker = "*" if action.primary else "-"
        print(f"  {marker} {action.label}", file=sys.stderr)


def run(args: argparse.Namespace) -> int:
    options = _options_from_args(args)
    transcript = _load(args)
    analysis = analyze_chunking_needs(transcript, options.provider, options.model, options)

    if args.command == "analyze":
        output = {
            "analysis": analysis.to_dict(),
            "stats": get_transcript_stats(transcript),
            "preview": create_preview(transcript),
        }
    elif args.command == "chunk":
        chunks = prepare_chunks(transcript, options, analysis)
        details = [c.to_dict() for c in chunks]
        if not args.content:
            for detail in details:
                detail.pop("content")
        output = {"analysis": analysis.to_dict(), "chunks": details}
    else:
        summarize_fn = get_summarizer(options.provider)
        output = dict(asyncio.run(process_large_transcript(transcript, summarize_fn, options, _print_progress)))

    print(json.dumps(output, ensure_ascii=False, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(levelname)s %(name)s: %(message)s")

    try:
        return run(args)
    except ProcessingError as exc:
        where = f"chunk {exc.chunk_index + 1}/{exc.total_chunks}: " if exc.chunk_index is not None else ""
        _report_error(exc.error, where)
        print(f"  {exc.chunks_completed} of {exc.total_chunks} chunks completed", file=sys.stderr)
        return 1
    except DomainError as exc:
        _report_error(exc)
        return 1
    except (OSError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
