"""Command-line interface for Cadence Sync.

WHY: The alignment and layout stages are library code; during book
preparation they are run by hand or from build scripts, one step at a
time, with JSON files in between so each step can be inspected.

HOW: argparse with one subcommand per step. Each subcommand has an
async _cmd_* coroutine run through asyncio.run(). Status lines go to
stderr; machine-readable results go to the -o file or stdout.

  transcribe  audio tracks -> transcription.json (Soniox)
  align       chapters.json + transcription.json -> spans.json
  layout      normalized chapters + spans + book -> sync.json (Playwright)
  probe       audio tracks -> durations and chapter markers

RULES:
- Status output goes to stderr (not stdout)
- Logging is configured once in main(); --verbose switches to DEBUG
- Expected failures (bad input, policy violations) exit 1 with a message
- Ctrl-C exits 130
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from cadence_sync import __version__
from cadence_sync.align.audio import (
    AudioTrack,
    DurationProbe,
    ProbeError,
    is_audio_file,
    prepare_tracks,
    tracks_from_directory,
)
from cadence_sync.align.pipeline import ChapterText, align_book
from cadence_sync.api.client import SonioxClient, transcribe_tracks
from cadence_sync.config import DEFAULT_LANGUAGE, SPACY_LANGUAGE, STRICT_VALIDATION
from cadence_sync.core.ir import Span
from cadence_sync.core.package import open_book_package
from cadence_sync.core.transcription import TranscriptionFormatError, dump_transcription, load_transcription
from cadence_sync.layout.oracle import NormalizedContent, get_profile
from cadence_sync.layout.paginate import paginate_chapters, untime_chapter_spans
from cadence_sync.layout.resources import ResourcePolicyError
from cadence_sync.layout.split import split_spans_across_pages
from cadence_sync.validation import (
    CompilationValidationError,
    build_sync_payload,
    ensure_valid,
    validate_compilation_result,
    validate_sync_payload,
)

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def _status(msg: str) -> None:
    """Print a status message to stderr."""
    print(msg, file=sys.stderr, flush=True)


def _fail(msg: str) -> None:
    print("Error: {}".format(msg), file=sys.stderr)
    sys.exit(1)


def _write_json(data: object, output: Optional[str]) -> None:
    text = json.dumps(data, indent=2, ensure_ascii=False)
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
        _status("Saved: {}".format(output))
    else:
        print(text)


def _read_json(path: str) -> object:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        _fail("File not found: {}".format(path))
    except json.JSONDecodeError as e:
        _fail("Invalid JSON in {}: {}".format(path, e))


def _resolve_tracks(paths: List[str]) -> List[Path]:
    """Expand files and directories into an ordered list of audio tracks."""
    tracks: List[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            tracks.extend(tracks_from_directory(path))
        elif path.is_file() and is_audio_file(path):
            tracks.append(path)
        else:
            _fail("Not an audio file or directory: {}".format(path))
    if not tracks:
        _fail("No audio files found in: {}".format(", ".join(paths)))
    return tracks


async def _probe_tracks(paths: List[str], probe: DurationProbe) -> List[AudioTrack]:
    """Resolve and probe every file or directory argument, in order."""
    tracks: List[AudioTrack] = []
    for raw in paths:
        tracks.extend(await prepare_tracks(raw, probe))
    return tracks


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


async def _cmd_transcribe(args: argparse.Namespace) -> None:
    tracks = _resolve_tracks(args.audio)
    context_text = None
    if args.context:
        context_text = Path(args.context).read_text(encoding="utf-8")

    _status("Transcribing {} track(s)...".format(len(tracks)))
    async with SonioxClient() as client:
        transcription = await transcribe_tracks(
            client,
            tracks,
            language=args.language,
            context_text=context_text,
            concurrency=args.concurrency,
            on_status=_status,
        )

    dump_transcription(transcription, args.output)
    _status("Done! {} words, {} characters -> {}".format(
        len(transcription.word_timeline), len(transcription.transcript), args.output,
    ))


async def _cmd_align(args: argparse.Namespace) -> None:
    raw_chapters = _read_json(args.chapters)
    if not isinstance(raw_chapters, list):
        _fail("{} must contain a JSON array of chapters".format(args.chapters))
    chapters = [ChapterText.from_dict(c, args.language) for c in raw_chapters]

    default_audiofile = ""
    track_count = None
    probe = DurationProbe()
    if args.tracks:
        tracks = await _probe_tracks(args.tracks, probe)
        track_count = len(tracks)
        default_audiofile = tracks[0].path

    transcription = load_transcription(args.transcription, default_audiofile)
    _status("Aligning {} chapter(s) against {} characters of transcript...".format(
        len(chapters), len(transcription.transcript),
    ))

    book = await align_book(
        chapters,
        transcription,
        track_count=track_count,
        duration_of=probe.duration_of,
        language=args.language,
    )

    stats = [
        {
            "id": c.chapter.id,
            "sentences": len(c.chapter.sentences),
            "matched": c.matched,
            "skipped": c.skipped_reason,
            "duration": round(c.duration, 3),
        }
        for c in book.chapters
    ]
    for stat in stats:
        if stat["skipped"]:
            _status("  {}: skipped ({})".format(stat["id"], stat["skipped"]))
        else:
            _status("  {}: {}/{} sentences matched, {:.1f}s".format(
                stat["id"], stat["matched"], stat["sentences"], stat["duration"],
            ))

    _write_json({"spans": [s.to_dict() for s in book.spans], "chapters": stats}, args.output)


async def _cmd_layout(args: argparse.Namespace) -> None:
    # Playwright is an optional extra
    from cadence_sync.adapters.playwright_oracle import PlaywrightLayoutOracle

    profile = get_profile(args.profile)
    raw_contents = _read_json(args.contents)
    contents = [
        NormalizedContent(
            chapter_id=c["chapterId"],
            xhtml_path=c["xhtmlPath"],
            html=c["html"],
            span_ids=tuple(c.get("spanIds", ())),
        )
        for c in raw_contents
    ]
    raw_spans = _read_json(args.spans)
    if isinstance(raw_spans, dict):
        raw_spans = raw_spans.get("spans", [])
    spans = [Span.from_dict(s) for s in raw_spans]

    strict = STRICT_VALIDATION if args.strict is None else args.strict
    _status("Paginating {} chapter(s) for {}...".format(len(contents), profile.name))

    package = open_book_package(args.book)
    try:
        async with PlaywrightLayoutOracle() as oracle:
            result = await paginate_chapters(oracle, contents, profile, package, strict=strict)
    finally:
        close = getattr(package, "close", None)
        if close:
            close()

    if result.failed_chapters:
        _status("WARNING: dropped chapter(s) with resource failures: {}".format(
            ", ".join(result.failed_chapters),
        ))
        spans = untime_chapter_spans(spans, result.failed_chapters)

    split = split_spans_across_pages(spans, result.pages)
    _status("  {} page(s), {} span(s) split, {} span(s) added".format(
        len(split.pages), split.split_span_count, split.created_span_count,
    ))

    ensure_valid(validate_compilation_result(split.spans, split.pages))
    payload = build_sync_payload(split.spans, split.pages)
    validate_sync_payload(payload)
    payload["styles"] = [s.to_dict() for s in oracle.styles]
    _write_json(payload, args.output)


async def _cmd_probe(args: argparse.Namespace) -> None:
    probe = DurationProbe()
    tracks = await _probe_tracks(args.audio, probe)

    result = []
    for track in tracks:
        chapters = await probe.chapters_of(track.path)
        result.append({
            "path": track.path,
            "duration": track.duration,
            "chapters": [
                {"id": c.id, "title": c.title, "start": c.start_time, "end": c.end_time}
                for c in chapters
            ],
        })
    _write_json(result, None)


_COMMANDS = {
    "transcribe": _cmd_transcribe,
    "align": _cmd_align,
    "layout": _cmd_layout,
    "probe": _cmd_probe,
}


async def _run(args: argparse.Namespace) -> None:
    try:
        await _COMMANDS[args.command](args)
    except (ResourcePolicyError, CompilationValidationError, ProbeError, TranscriptionFormatError) as e:
        _fail(str(e))
    except FileNotFoundError as e:
        _fail("File not found: {}".format(e.filename or e))
    except ValueError as e:
        # Config errors (missing API key, unknown profile, etc.)
        _fail(str(e))


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="cadence_sync",
        description="Align audiobook narration with book text and lay out "
                    "synchronized pages.",
    )
    parser.add_argument("--version", action="version", version="%(prog)s {}".format(__version__))
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    transcribe = sub.add_parser("transcribe", help="Transcribe audio tracks with Soniox.")
    transcribe.add_argument("audio", nargs="+", help="Audio files or directories, in playback order.")
    transcribe.add_argument("-o", "--output", required=True, help="Transcription JSON to write.")
    transcribe.add_argument(
        "--language", default=DEFAULT_LANGUAGE,
        help="ISO 639-1 language hint (default: %(default)s).",
    )
    transcribe.add_argument("--context", default=None, help="Text file sent as recognition context.")
    transcribe.add_argument(
        "--concurrency", type=int, default=3,
        help="Tracks transcribed at once (default: %(default)s).",
    )

    align = sub.add_parser("align", help="Align chapter sentences to a transcription.")
    align.add_argument("--chapters", required=True, help="JSON array of {id, href, sentences|text}.")
    align.add_argument("--transcription", required=True, help="Transcription JSON.")
    align.add_argument("--tracks", nargs="*", default=None, help="Audio tracks (for durations).")
    align.add_argument(
        "--language", default=SPACY_LANGUAGE,
        help="spaCy language for sentence splitting (default: %(default)s).",
    )
    align.add_argument("-o", "--output", default=None, help="Spans JSON to write (default: stdout).")

    layout = sub.add_parser("layout", help="Paginate chapters and split spans across pages.")
    layout.add_argument("--book", required=True, help="EPUB file or unpacked book directory.")
    layout.add_argument("--contents", required=True, help="JSON array of {chapterId, xhtmlPath, html}.")
    layout.add_argument("--spans", required=True, help="Spans JSON from the align step.")
    layout.add_argument("--profile", default=None, help="Device profile name.")
    layout.add_argument(
        "--strict", action=argparse.BooleanOptionalAction, default=None,
        help="Fail on resource policy violations (default: CADENCE_STRICT).",
    )
    layout.add_argument("-o", "--output", default=None, help="Sync JSON to write (default: stdout).")

    probe = sub.add_parser("probe", help="Print audio durations and chapter markers.")
    probe.add_argument("audio", nargs="+", help="Audio files or directories.")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for `python -m cadence_sync` and the console script.

    RULES:
    - argv=None means use sys.argv
    - Explicit argv is for testing
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=_LOG_FORMAT,
    )
    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        _status("\nCancelled by user.")
        sys.exit(130)


if __name__ == "__main__":
    main()
