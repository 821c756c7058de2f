"""Shared test fixtures for the cadence_sync test suite.

WHY: Alignment tests need transcripts whose word timeline offsets and
times are exactly known, and layout tests need a rendering oracle and
Playwright-style routes without launching a browser. Building those in
one place keeps every test module on the same sample data.

HOW: build_transcription lays words out with single spaces and regular
timing (word i of a track starts at i * WORD_STEP_S). FakeRoute and
FakeLayoutOracle stand in for Playwright; the oracle can be told which
sub-resources each chapter requests so the resource policy runs for real.

RULES:
- Times restart at 0.0 for every audio file, as with real tracks
- Each word's timeline entry covers the word including its punctuation
- Fakes record what they were asked; they never touch the network
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import pytest

from cadence_sync.core.ir import (
    DeviceProfile,
    Page,
    PageSpanRect,
    Rect,
    TextRun,
    Transcription,
    WordTimelineEntry,
)
from cadence_sync.core.transcription import concat_transcriptions
from cadence_sync.layout.oracle import LayoutOracle, NormalizedContent, RouteHandler


# ---------------------------------------------------------------------------
# Sample text
# ---------------------------------------------------------------------------

WORD_STEP_S = 0.5
WORD_LENGTH_S = 0.4

LIBRIVOX_SENTENCES = [
    "This is a LibriVox recording.",
    "All LibriVox recordings are in the public domain.",
]

# Same text as LIBRIVOX_SENTENCES with speech-to-text noise
LIBRIVOX_TRANSCRIPT = (
    "This is a Libre Vox recording. All LibriVox recordings are in the "
    "public domain. For more information or to volunteer please visit "
    "librivox dot org."
)

INTRO_TEXT = "Welcome to this audiobook narration today."

CHAPTER_ONE_SENTENCES = [
    "It was a bright cold day in April.",
    "The clocks were striking thirteen.",
]

CHAPTER_TWO_SENTENCES = [
    "Winston Smith slipped quickly through the glass doors.",
    "He did not move quickly enough to prevent the dust from entering.",
]


def build_transcription(segments: List[Tuple[str, str]]) -> Transcription:
    """Build a Transcription from (text, audiofile) segments.

    Words are whitespace-separated tokens. Within a segment word i runs
    from i * WORD_STEP_S to i * WORD_STEP_S + WORD_LENGTH_S; segments are
    concatenated with a single space like independently transcribed
    tracks.
    """
    parts: List[Transcription] = []
    for text, audiofile in segments:
        words = text.split()
        transcript = " ".join(words)
        entries = []
        offset = 0
        for i, word in enumerate(words):
            entries.append(WordTimelineEntry(
                start_time=i * WORD_STEP_S,
                end_time=i * WORD_STEP_S + WORD_LENGTH_S,
                start_offset=offset,
                end_offset=offset + len(word),
                audiofile=audiofile,
                text=word,
            ))
            offset += len(word) + 1
        parts.append(Transcription(transcript=transcript, word_timeline=tuple(entries)))
    return concat_transcriptions(parts)


def word_start(transcription: Transcription, word: str, occurrence: int = 0) -> float:
    """Start time of the n-th timeline entry whose text is word."""
    matches = [e for e in transcription.word_timeline if e.text == word]
    return matches[occurrence].start_time


# ---------------------------------------------------------------------------
# Playwright-shaped fakes
# ---------------------------------------------------------------------------


@dataclass
class FakeRequest:
    url: str
    resource_type: str = "other"
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class FakeRoute:
    """Records how the handler fulfilled the request."""

    request: FakeRequest
    status: Optional[int] = None
    content_type: Optional[str] = None
    body: Optional[bytes] = None

    async def fulfill(self, *, status=None, content_type=None, body=None):  # noqa: ANN001
        self.status = status
        self.content_type = content_type
        self.body = body.encode("utf-8") if isinstance(body, str) else body


def make_route(url: str, resource_type: str = "other", referer: Optional[str] = None) -> FakeRoute:
    headers = {"referer": referer} if referer else {}
    return FakeRoute(request=FakeRequest(url=url, resource_type=resource_type, headers=headers))


def make_page(
    chapter_id: str,
    page_index: int,
    spans: List[Tuple[str, str]],
    width: float = 1760,
    height: float = 2260,
) -> Page:
    """A page with one text run and one rect per (span_id, text) pair."""
    runs = []
    rects = []
    for line, (span_id, text) in enumerate(spans):
        y = 10 + line * 60
        runs.append(TextRun(text=text, x=0, y=y, width=len(text) * 20, height=50, baseline=y + 40, span_id=span_id))
        rects.append(PageSpanRect(span_id=span_id, rects=(Rect(0, y, len(text) * 20, 50),)))
    return Page(
        page_id=f"{chapter_id}_p{page_index + 1:04d}",
        chapter_id=chapter_id,
        page_index=page_index,
        width=width,
        height=height,
        text_runs=tuple(runs),
        span_rects=tuple(rects),
        first_span_id=rects[0].span_id if rects else "",
        last_span_id=rects[-1].span_id if rects else "",
    )


class FakeLayoutOracle(LayoutOracle):
    """In-memory LayoutOracle returning canned pages.

    pages_by_chapter maps chapter id to the pages to return (chapter-local
    indices); requests_by_chapter maps chapter id to (url, resource type)
    pairs replayed through the installed handler during paginate().
    """

    def __init__(
        self,
        pages_by_chapter: Dict[str, List[Page]],
        requests_by_chapter: Optional[Dict[str, List[Tuple[str, str]]]] = None,
    ) -> None:
        self.pages_by_chapter = pages_by_chapter
        self.requests_by_chapter = requests_by_chapter or {}
        self.handler: Optional[RouteHandler] = None
        self.rendered: List[NormalizedContent] = []
        self.routes: List[FakeRoute] = []
        self.handler_history: List[Optional[RouteHandler]] = []

    async def intercept_requests(self, handler):  # noqa: ANN001
        self.handler = handler
        self.handler_history.append(handler)

    async def paginate(self, content, profile):  # noqa: ANN001
        self.rendered.append(content)
        for url, resource_type in self.requests_by_chapter.get(content.chapter_id, []):
            route = make_route(url, resource_type)
            self.routes.append(route)
            if self.handler is not None:
                await self.handler(route)
        return list(self.pages_by_chapter.get(content.chapter_id, []))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def librivox_transcription():
    """Single-track transcription of LIBRIVOX_TRANSCRIPT."""
    return build_transcription([(LIBRIVOX_TRANSCRIPT, "librivox.mp3")])


@pytest.fixture
def book_transcription():
    """Intro, chapter one and chapter two read into one track."""
    text = " ".join([INTRO_TEXT, *CHAPTER_ONE_SENTENCES, *CHAPTER_TWO_SENTENCES])
    return build_transcription([(text, "book.mp3")])


@pytest.fixture
def durations():
    """Track durations used by fake_duration_of."""
    return {"a.mp3": 42.5, "b.mp3": 30.0, "book.mp3": 60.0, "librivox.mp3": 20.0}


@pytest.fixture
def fake_duration_of(durations):
    """Async duration lookup backed by the durations fixture; records calls."""
    calls: List[str] = []

    async def duration_of(path: str) -> float:
        calls.append(path)
        return durations[path]

    duration_of.calls = calls
    return duration_of


@pytest.fixture
def small_profile():
    """A small device profile with round numbers."""
    return DeviceProfile(
        name="test-small",
        width=1000,
        height=1400,
        margin_top=100,
        margin_right=50,
        margin_bottom=100,
        margin_left=50,
        font_size=32,
        line_height=1.4,
        font_family="serif",
    )
