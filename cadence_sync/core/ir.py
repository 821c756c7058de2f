"""Intermediate representation dataclasses shared by alignment and layout.

WHY: Alignment and layout each consume and produce the same handful of
shapes: transcript word timelines, per-sentence time ranges, timed spans
and rendered pages. A single set of well-typed dataclasses is the
contract between the stages and the external collaborators (speech-to-text
adapter, rendering oracle, bundle writer).

HOW: Plain dataclasses. Everything that flows between stages is frozen so
that each stage returns new values instead of mutating its inputs.
Serialization to the camelCase JSON documents used on disk lives next to
the type (to_dict/from_dict).

RULES:
- Offsets are code-point indices into the Python transcript string
- Times are float seconds in alignment, integer milliseconds on spans
- -1 means "no timing" for both SentenceRange and Span
- A resolved SentenceRange has end > start; a timed Span has end > begin
"""

from __future__ import annotations

from dataclasses import dataclass, field

UNTIMED = -1


# ---------------------------------------------------------------------------
# Transcript side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WordTimelineEntry:
    """One timed unit (usually a word) of the global transcript.

    RULES:
    - start_offset/end_offset index into Transcription.transcript
    - audiofile partitions the timeline when several tracks were
      transcribed independently and concatenated
    """

    start_time: float
    end_time: float
    start_offset: int
    end_offset: int
    audiofile: str
    text: str | None = None


@dataclass(frozen=True)
class Transcription:
    """A global transcript string plus its ordered word timeline.

    WHY: Multi-track books are transcribed one track at a time and then
    concatenated; the aligner searches one string and resolves timing
    through the timeline.

    RULES:
    - Offsets are monotonic per audio file
    - The transcript string spans all files
    """

    transcript: str
    word_timeline: tuple[WordTimelineEntry, ...] = ()

    def audiofiles(self) -> list[str]:
        """Distinct audio files in timeline order."""
        seen: dict[str, None] = {}
        for entry in self.word_timeline:
            seen.setdefault(entry.audiofile, None)
        return list(seen)


# ---------------------------------------------------------------------------
# Alignment output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SentenceRange:
    """Audio timing for one book sentence, identified by its chapter index."""

    id: int
    start: float
    end: float
    audiofile: str

    @property
    def is_placeholder(self) -> bool:
        return self.start < 0 or self.end < 0


@dataclass(frozen=True)
class Span:
    """A unit of synchronized text and audio handed to the bundle writer.

    RULES:
    - clip_begin_ms/clip_end_ms are -1 for untimed spans
    - text_ref is "<chapter href>#<span id>"
    """

    id: str
    chapter_id: str
    text_ref: str
    audio_src: str
    clip_begin_ms: int = UNTIMED
    clip_end_ms: int = UNTIMED

    @property
    def is_timed(self) -> bool:
        return self.clip_begin_ms >= 0 and self.clip_end_ms > self.clip_begin_ms

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "chapterId": self.chapter_id,
            "textRef": self.text_ref,
            "audioSrc": self.audio_src,
            "clipBeginMs": self.clip_begin_ms,
            "clipEndMs": self.clip_end_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Span:
        return cls(
            id=data["id"],
            chapter_id=data["chapterId"],
            text_ref=data["textRef"],
            audio_src=data["audioSrc"],
            clip_begin_ms=data.get("clipBeginMs", UNTIMED),
            clip_end_ms=data.get("clipEndMs", UNTIMED),
        )


# ---------------------------------------------------------------------------
# Layout output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in page-local CSS pixels."""

    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "w": self.width, "h": self.height}

    @classmethod
    def from_dict(cls, data: dict) -> Rect:
        return cls(x=data["x"], y=data["y"], width=data["w"], height=data["h"])


@dataclass(frozen=True)
class TextStyle:
    """Resolved text style referenced by TextRun.style_index."""

    font_family: str
    font_size: float
    font_weight: str = "normal"
    font_style: str = "normal"
    color: str = "#000000"

    def to_dict(self) -> dict:
        return {
            "fontFamily": self.font_family,
            "fontSize": self.font_size,
            "fontWeight": self.font_weight,
            "fontStyle": self.font_style,
            "color": self.color,
        }


@dataclass(frozen=True)
class TextRun:
    """One rendered string fragment on a page.

    RULES:
    - span_id is None for text outside any tagged span
    - baseline is the page-local y of the text baseline
    """

    text: str
    x: float
    y: float
    width: float
    height: float
    baseline: float
    span_id: str | None = None
    style_index: int = 0

    def to_dict(self) -> dict:
        data = {
            "text": self.text,
            "x": self.x,
            "y": self.y,
            "w": self.width,
            "h": self.height,
            "baseline": self.baseline,
            "styleIndex": self.style_index,
        }
        if self.span_id is not None:
            data["spanId"] = self.span_id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> TextRun:
        return cls(
            text=data["text"],
            x=data["x"],
            y=data["y"],
            width=data["w"],
            height=data["h"],
            baseline=data.get("baseline", data["y"] + data["h"]),
            span_id=data.get("spanId"),
            style_index=data.get("styleIndex", 0),
        )


@dataclass(frozen=True)
class PageSpanRect:
    """Highlight rectangles for one span's visible text on one page."""

    span_id: str
    rects: tuple[Rect, ...] = ()

    def to_dict(self) -> dict:
        return {"spanId": self.span_id, "rects": [r.to_dict() for r in self.rects]}

    @classmethod
    def from_dict(cls, data: dict) -> PageSpanRect:
        return cls(
            span_id=data["spanId"],
            rects=tuple(Rect.from_dict(r) for r in data.get("rects", [])),
        )


@dataclass(frozen=True)
class Page:
    """One rendered page of a chapter as reported by the rendering oracle."""

    page_id: str
    chapter_id: str
    page_index: int
    width: float
    height: float
    text_runs: tuple[TextRun, ...] = ()
    span_rects: tuple[PageSpanRect, ...] = ()
    first_span_id: str = ""
    last_span_id: str = ""

    def to_dict(self) -> dict:
        return {
            "pageId": self.page_id,
            "chapterId": self.chapter_id,
            "pageIndex": self.page_index,
            "width": self.width,
            "height": self.height,
            "textRuns": [t.to_dict() for t in self.text_runs],
            "spanRects": [s.to_dict() for s in self.span_rects],
            "firstSpanId": self.first_span_id,
            "lastSpanId": self.last_span_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Page:
        return cls(
            page_id=data["pageId"],
            chapter_id=data["chapterId"],
            page_index=data["pageIndex"],
            width=data["width"],
            height=data["height"],
            text_runs=tuple(TextRun.from_dict(t) for t in data.get("textRuns", [])),
            span_rects=tuple(PageSpanRect.from_dict(s) for s in data.get("spanRects", [])),
            first_span_id=data.get("firstSpanId", ""),
            last_span_id=data.get("lastSpanId", ""),
        )


@dataclass(frozen=True)
class DeviceProfile:
    """Viewport and typography of a target reading device.

    RULES:
    - Margins are in CSS pixels, applied inside width/height
    - content_area() is what the oracle lays text into
    """

    name: str
    width: int
    height: int
    margin_top: int
    margin_right: int
    margin_bottom: int
    margin_left: int
    font_size: float
    line_height: float
    font_family: str
    styles: tuple[TextStyle, ...] = field(default_factory=tuple)

    def content_area(self) -> tuple[int, int]:
        """Return (width, height) of the text area inside the margins."""
        return (
            self.width - self.margin_left - self.margin_right,
            self.height - self.margin_top - self.margin_bottom,
        )
