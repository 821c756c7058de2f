"""Audio track discovery and ffprobe-based duration/chapter probing.

WHY: The aligner caps a sentence's end at its track's full duration when
the next sentence is on a different track, so it needs track durations.
Probing is an external process call, slow relative to everything else,
and asked about the same few files over and over.

HOW: DurationProbe runs ffprobe through asyncio subprocesses and caches
durations by path. Several tracks can be probed concurrently with
durations_of(), which gathers independent probes. The subprocess runner
is injectable so tests (and other probing backends) can replace ffprobe.

RULES:
- Durations are cached per path for the lifetime of the probe
- Each path is probed at most once per durations_of() call
- ffprobe failures, timeouts and unparsable output raise ProbeError
- Track directories are read in alphabetical order
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from cadence_sync.config import AUDIO_EXTENSIONS, FFPROBE_PATH, FFPROBE_TIMEOUT_S

logger = logging.getLogger(__name__)

Runner = Callable[[Sequence[str]], Awaitable[tuple[int, bytes, bytes]]]
"""Runs a command and returns (returncode, stdout, stderr)."""


class ProbeError(RuntimeError):
    """Raised when an audio file cannot be probed.

    RULES:
    - Message names the file and includes ffprobe's stderr when available
    """


@dataclass(frozen=True)
class AudioChapter:
    """A named chapter marker inside an audio file (e.g. an .m4b)."""

    id: int
    title: str
    start_time: float
    end_time: float


@dataclass(frozen=True)
class AudioTrack:
    """One audio file of the narration, with its probed duration."""

    path: str
    duration: float


async def run_subprocess(args: Sequence[str], timeout: float = FFPROBE_TIMEOUT_S) -> tuple[int, bytes, bytes]:
    """Run a command without a shell and collect its output.

    Raises:
        ProbeError: If the executable is missing or the call times out.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise ProbeError(f"{args[0]} not found: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
    except asyncio.TimeoutError as e:
        proc.kill()
        await proc.wait()
        raise ProbeError(f"{args[0]} timed out after {timeout:.0f}s") from e

    return proc.returncode or 0, stdout, stderr


class DurationProbe:
    """Memoizing async duration and chapter prober.

    WHY: The aligner only needs "how long is this file?", but may ask it
    for the same file at every track seam. Caching by path keeps that to
    one external call per file.

    HOW: duration_of() checks the cache, otherwise runs ffprobe with
    format=duration and parses the single number it prints.

    RULES:
    - Use one probe per compile; it is not shared across event loops
      except through its plain cache dict
    - runner defaults to run_subprocess
    """

    def __init__(self, ffprobe_path: str = FFPROBE_PATH, runner: Runner | None = None) -> None:
        self._ffprobe = ffprobe_path
        self._runner = runner or run_subprocess
        self._cache: dict[str, float] = {}

    @property
    def cached(self) -> dict[str, float]:
        return dict(self._cache)

    def cache_clear(self) -> None:
        self._cache.clear()

    async def duration_of(self, path: str | Path) -> float:
        """Return the duration of an audio file in seconds."""
        key = str(path)
        if key in self._cache:
            return self._cache[key]

        code, stdout, stderr = await self._runner([
            self._ffprobe,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            key,
        ])
        if code != 0:
            raise ProbeError(f"ffprobe failed on {key}: {stderr.decode(errors='replace').strip()}")

        text = stdout.decode(errors="replace").strip()
        try:
            duration = float(text)
        except ValueError:
            raise ProbeError(f"Could not parse duration for {key} from ffprobe output: {text!r}") from None

        self._cache[key] = duration
        logger.debug("Probed %s: %.3fs", key, duration)
        return duration

    async def durations_of(self, paths: Sequence[str | Path]) -> dict[str, float]:
        """Probe several files concurrently.

        Returns:
            Mapping of str(path) to duration in seconds, in input order.
        """
        keys = list(dict.fromkeys(str(p) for p in paths))
        results = await asyncio.gather(*(self.duration_of(k) for k in keys))
        return dict(zip(keys, results))

    async def chapters_of(self, path: str | Path) -> list[AudioChapter]:
        """Return chapter markers embedded in an audio file (empty if none)."""
        key = str(path)
        code, stdout, stderr = await self._runner([
            self._ffprobe, "-v", "error", "-show_chapters", "-of", "json", key,
        ])
        if code != 0:
            raise ProbeError(f"ffprobe failed on {key}: {stderr.decode(errors='replace').strip()}")

        try:
            data = json.loads(stdout.decode(errors="replace") or "{}")
        except json.JSONDecodeError as e:
            raise ProbeError(f"Failed to parse chapter info for {key}: {e}") from e

        chapters: list[AudioChapter] = []
        for index, raw in enumerate(data.get("chapters", [])):
            title = (raw.get("tags") or {}).get("title") or f"Chapter {index + 1}"
            chapters.append(AudioChapter(
                id=raw.get("id", index),
                title=title,
                start_time=float(raw["start_time"]),
                end_time=float(raw["end_time"]),
            ))
        return chapters


_default_probe: DurationProbe | None = None


def get_default_probe() -> DurationProbe:
    """Return the process-wide probe used when callers inject none."""
    global _default_probe
    if _default_probe is None:
        _default_probe = DurationProbe()
    return _default_probe


# ---------------------------------------------------------------------------
# Track discovery
# ---------------------------------------------------------------------------


def is_audio_file(path: str | Path) -> bool:
    return Path(path).suffix.lower() in AUDIO_EXTENSIONS


def tracks_from_directory(directory: str | Path) -> list[Path]:
    """List the audio files in a directory, alphabetically."""
    directory = Path(directory)
    return sorted(
        (p for p in directory.iterdir() if p.is_file() and is_audio_file(p)),
        key=lambda p: p.name,
    )


async def prepare_tracks(audio_path: str | Path, probe: DurationProbe | None = None) -> list[AudioTrack]:
    """Resolve an audio argument (file or directory) into probed tracks.

    RULES:
    - A directory yields one track per audio file, alphabetically
    - A single file yields one track
    - Raises ValueError when nothing playable is found
    """
    probe = probe or get_default_probe()
    audio_path = Path(audio_path)

    if audio_path.is_dir():
        paths = [str(p) for p in tracks_from_directory(audio_path)]
    elif is_audio_file(audio_path):
        paths = [str(audio_path)]
    else:
        paths = []

    if not paths:
        raise ValueError(f"No audio files found at {audio_path}")

    durations = await probe.durations_of(paths)
    return [AudioTrack(path=p, duration=durations[p]) for p in paths]
