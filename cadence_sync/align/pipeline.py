"""Book-level alignment: a sequential fold over chapters.

WHY: Chapters must be aligned in spine order because each one resumes
from where the previous one stopped in the transcript, and the previous
chapter's final sentence may still need its end repaired once the next
chapter's first sentence is timed. Threading that state explicitly keeps
each chapter's alignment a function of (state in) -> (result, state out).

HOW: align_chapter locates the chapter in the transcript, aligns its
sentences, interpolates and expands the ranges, and returns a new
AlignmentState. align_book folds align_chapter over the chapters, folds
the repaired carried range back into the previous chapter, and converts
the final ranges to Spans.

RULES:
- Chapters without sentences, or that cannot be located, are skipped
  (logged) and leave the state unchanged
- With a single audio track and more than 80% of the transcript consumed,
  the offset search is skipped and alignment resumes at the last offset
- Span ids are "<chapter id>-sentence<N>", text refs "<href>#<span id>"
- Times become integer milliseconds rounded half up; -1 stays -1
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace

from cadence_sync.align.nlp import tokenize_sentences
from cadence_sync.align.offset import find_chapter_offset
from cadence_sync.align.ranges import (
    DurationOf,
    expand_empty_sentence_ranges,
    get_chapter_duration,
    get_sentence_ranges,
    interpolate_sentence_ranges,
)
from cadence_sync.config import SINGLE_TRACK_CONSUMED_RATIO, SPACY_LANGUAGE
from cadence_sync.core.ir import UNTIMED, SentenceRange, Span, Transcription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChapterText:
    """A spine chapter reduced to what alignment needs."""

    id: str
    href: str
    sentences: tuple[str, ...] = ()

    @classmethod
    def from_text(cls, id: str, href: str, text: str, language: str = SPACY_LANGUAGE) -> ChapterText:
        return cls(id=id, href=href, sentences=tuple(tokenize_sentences(text, language)))

    @classmethod
    def from_dict(cls, data: dict, language: str = SPACY_LANGUAGE) -> ChapterText:
        """Build from {"id", "href", "sentences"} or {"id", "href", "text"}."""
        if "sentences" in data:
            return cls(id=data["id"], href=data["href"], sentences=tuple(data["sentences"]))
        return cls.from_text(data["id"], data["href"], data.get("text", ""), language)


@dataclass(frozen=True)
class AlignmentState:
    """State carried from one chapter to the next."""

    transcription_offset: int = 0
    last_sentence_range: SentenceRange | None = None


@dataclass(frozen=True)
class ChapterAlignment:
    """Alignment outcome for one chapter.

    RULES:
    - ranges is dense and expanded when not skipped, empty when skipped
    - matched counts sentences that were found in the transcript
    """

    chapter: ChapterText
    ranges: tuple[SentenceRange, ...] = ()
    matched: int = 0
    start_sentence: int = 0
    chapter_offset: int | None = None
    end_offset: int | None = None
    skipped_reason: str | None = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None

    @property
    def duration(self) -> float:
        return get_chapter_duration(list(self.ranges))


@dataclass
class BookAlignment:
    """All chapter alignments of a book plus the spans derived from them."""

    chapters: list[ChapterAlignment] = field(default_factory=list)
    spans: list[Span] = field(default_factory=list)
    state: AlignmentState = field(default_factory=AlignmentState)

    @property
    def aligned_chapters(self) -> list[ChapterAlignment]:
        return [c for c in self.chapters if not c.skipped]


async def align_chapter(
    state: AlignmentState,
    chapter: ChapterText,
    transcription: Transcription,
    track_count: int | None = None,
    duration_of: DurationOf | None = None,
    language: str = SPACY_LANGUAGE,
) -> tuple[ChapterAlignment, AlignmentState, SentenceRange | None]:
    """Align one chapter.

    Args:
        state: State after the previous chapter.
        chapter: The chapter to align.
        transcription: The global transcription.
        track_count: Number of audio tracks (defaults to the distinct
            audio files in the timeline).
        duration_of: Async track duration lookup.
        language: spaCy language for transcript sentence splitting.

    Returns:
        (alignment, next state, repaired carried range). The repaired
        range replaces the previous chapter's final range; it is None when
        no range was carried in.
    """
    sentences = list(chapter.sentences)
    if not sentences:
        logger.info("Chapter %s: skipping (no text)", chapter.id)
        return ChapterAlignment(chapter=chapter, skipped_reason="no text"), state, state.last_sentence_range

    transcript_length = len(transcription.transcript)
    if track_count is None:
        track_count = len(transcription.audiofiles())

    consumed = state.transcription_offset / transcript_length if transcript_length else 1.0
    start_sentence = 0
    chapter_offset: int | None
    if track_count == 1 and consumed > SINGLE_TRACK_CONSUMED_RATIO:
        chapter_offset = state.transcription_offset if state.transcription_offset < transcript_length else None
    else:
        located = find_chapter_offset(sentences, transcription, state.transcription_offset)
        start_sentence = located.start_sentence
        chapter_offset = located.transcription_offset

    if chapter_offset is None:
        logger.info("Chapter %s: could not find matching audio, skipping", chapter.id)
        return (
            ChapterAlignment(chapter=chapter, skipped_reason="no matching audio"),
            state,
            state.last_sentence_range,
        )

    logger.info("Chapter %s: matched at offset %d, sentence %d", chapter.id, chapter_offset, start_sentence)

    result = await get_sentence_ranges(
        start_sentence,
        transcription,
        sentences,
        chapter_offset,
        state.last_sentence_range,
        duration_of=duration_of,
        language=language,
    )
    interpolated = interpolate_sentence_ranges(result.sentence_ranges, state.last_sentence_range)
    expanded = expand_empty_sentence_ranges(interpolated)

    logger.info(
        "Chapter %s: aligned %d sentence ranges (%d matched of %d sentences)",
        chapter.id, len(expanded), len(result.sentence_ranges), len(sentences),
    )

    alignment = ChapterAlignment(
        chapter=chapter,
        ranges=tuple(expanded),
        matched=len(result.sentence_ranges),
        start_sentence=start_sentence,
        chapter_offset=chapter_offset,
        end_offset=result.transcription_offset,
    )
    next_state = AlignmentState(
        transcription_offset=result.transcription_offset,
        last_sentence_range=expanded[-1] if expanded else state.last_sentence_range,
    )
    return alignment, next_state, result.last_sentence_range


async def align_book(
    chapters: list[ChapterText],
    transcription: Transcription,
    track_count: int | None = None,
    duration_of: DurationOf | None = None,
    language: str = SPACY_LANGUAGE,
    initial_state: AlignmentState | None = None,
) -> BookAlignment:
    """Align every chapter in spine order and build spans.

    RULES:
    - Strictly sequential; chapter N+1 starts from chapter N's state
    - A repaired carried range is written back into the chapter it came
      from before spans are built
    """
    book = BookAlignment(state=initial_state or AlignmentState())
    last_aligned: int | None = None

    for chapter in chapters:
        alignment, next_state, repaired = await align_chapter(
            book.state, chapter, transcription,
            track_count=track_count, duration_of=duration_of, language=language,
        )

        if (
            not alignment.skipped
            and last_aligned is not None
            and repaired is not None
            and repaired != book.state.last_sentence_range
        ):
            previous = book.chapters[last_aligned]
            fixed = list(previous.ranges[:-1]) + [repaired]
            book.chapters[last_aligned] = replace(previous, ranges=tuple(expand_empty_sentence_ranges(fixed)))

        book.chapters.append(alignment)
        book.state = next_state
        if not alignment.skipped:
            last_aligned = len(book.chapters) - 1

    for alignment in book.chapters:
        book.spans.extend(ranges_to_spans(alignment.chapter, alignment.ranges))

    logger.info(
        "Aligned %d of %d chapters, %d spans",
        len(book.aligned_chapters), len(chapters), len(book.spans),
    )
    return book


def seconds_to_ms(seconds: float) -> int:
    """Convert seconds to integer ms, rounding half up; negatives map to -1."""
    if seconds < 0:
        return UNTIMED
    return int(math.floor(seconds * 1000 + 0.5))


def ranges_to_spans(chapter: ChapterText, ranges: tuple[SentenceRange, ...] | list[SentenceRange]) -> list[Span]:
    spans: list[Span] = []
    for sentence_range in ranges:
        span_id = f"{chapter.id}-sentence{sentence_range.id}"
        spans.append(Span(
            id=span_id,
            chapter_id=chapter.id,
            text_ref=f"{chapter.href}#{span_id}",
            audio_src=sentence_range.audiofile,
            clip_begin_ms=seconds_to_ms(sentence_range.start),
            clip_end_ms=seconds_to_ms(sentence_range.end),
        ))
    return spans
