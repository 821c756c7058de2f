"""Sentence range alignment: book sentences to transcript timing.

WHY: Given where a chapter starts in the transcript, every book sentence
needs an audio start and end. The transcript is noisy, sentences may be
missing from the narration (footnotes, captions) or from the book
(narrator intros), and multi-track audiobooks put seams in the middle of
the timeline. This module walks the chapter and the transcript in
lockstep and turns fuzzy matches into SentenceRanges.

HOW: The transcript from the chapter offset onward is split into
sentences (keeping the text between them, so positions can be mapped
back). A cursor (window index + offset inside that window) marks how far
the transcript has been consumed. For each book sentence, the next ten
transcript sentences form the search window:
  - match: timing comes from the word timeline entries around the match,
    the previous range is repaired to close the gap (or capped at its
    track's duration across a seam) and the cursor moves past the match
  - miss: the sentence is skipped; after three misses in a row the
    window slides forward one transcript sentence and the three are
    retried, and after thirty slides from the last good position the
    window snaps back there and the skipped sentences stay skipped
The sparse result is then made dense by interpolate_sentence_ranges and
sanitized by expand_empty_sentence_ranges.

RULES:
- Sentences with MIN_SENTENCE_ALNUM or fewer alphanumerics are never
  searched but keep their ids
- A range never spans two audio files
- Misses are normal outcomes; nothing here raises on bad matches
- Returned ranges are new objects; inputs are never mutated
"""

from __future__ import annotations

import bisect
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace

from cadence_sync.align.audio import get_default_probe
from cadence_sync.align.fuzzy import find_nearest_match
from cadence_sync.align.nlp import split_with_gaps
from cadence_sync.config import (
    LOOKAHEAD_SENTENCES,
    MAX_CONSECUTIVE_MISSES,
    MIN_RANGE_DURATION_S,
    MIN_SENTENCE_ALNUM,
    RANGE_MIN_EDITS,
    RANGE_TOLERANCE,
    RECOVERY_WINDOW_LIMIT,
    SPACY_LANGUAGE,
)
from cadence_sync.core.ir import UNTIMED, SentenceRange, Transcription, WordTimelineEntry

logger = logging.getLogger(__name__)

DurationOf = Callable[[str], Awaitable[float]]

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class SentenceRangesResult:
    """Output of get_sentence_ranges.

    RULES:
    - sentence_ranges is sparse and id-ascending
    - transcription_offset is where the last match ended (or the chapter
      offset if nothing matched)
    - last_sentence_range is the carried-in range after boundary repair,
      None if none was passed in
    """

    sentence_ranges: list[SentenceRange] = field(default_factory=list)
    transcription_offset: int = 0
    last_sentence_range: SentenceRange | None = None


# ---------------------------------------------------------------------------
# Word timeline lookups
# ---------------------------------------------------------------------------


class TimelineIndex:
    """Offset lookups over a word timeline.

    WHY: Every match needs "first word ending after X" and "last word
    starting before Y", optionally restricted to one audio file. A linear
    scan per sentence is quadratic over a book.

    HOW: When offsets are sorted (the normal case, including concatenated
    tracks) lookups bisect precomputed offset lists. Otherwise they fall
    back to a scan with the same semantics.
    """

    def __init__(self, timeline: tuple[WordTimelineEntry, ...]) -> None:
        self._entries = list(timeline)
        self._ends = [e.end_offset for e in timeline]
        self._starts = [e.start_offset for e in timeline]
        self._sorted = self._ends == sorted(self._ends) and self._starts == sorted(self._starts)
        self._by_file: dict[str, tuple[list[int], list[WordTimelineEntry]]] = {}
        for entry in timeline:
            starts, entries = self._by_file.setdefault(entry.audiofile, ([], []))
            starts.append(entry.start_offset)
            entries.append(entry)

    def first_ending_after(self, offset: int) -> WordTimelineEntry | None:
        if self._sorted:
            i = bisect.bisect_right(self._ends, offset)
            return self._entries[i] if i < len(self._entries) else None
        return next((e for e in self._entries if e.end_offset > offset), None)

    def last_starting_before(self, offset: int, audiofile: str | None = None) -> WordTimelineEntry | None:
        if audiofile is not None:
            starts, entries = self._by_file.get(audiofile, ([], []))
        else:
            starts, entries = self._starts, self._entries
        if self._sorted:
            i = bisect.bisect_left(starts, offset)
            return entries[i - 1] if i > 0 else None
        for entry in reversed(entries):
            if entry.start_offset < offset:
                return entry
        return None


def find_end_timestamp(match_end: int, transcription: Transcription) -> float | None:
    """End time of the last timeline word starting before match_end."""
    entry = TimelineIndex(transcription.word_timeline).last_starting_before(match_end)
    return entry.end_time if entry else None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _lower_same_length(text: str) -> str:
    lowered = text.lower()
    if len(lowered) == len(text):
        return lowered
    # A few characters (e.g. U+0130) grow when lowercased; keep offsets stable.
    return "".join(c.lower() if len(c.lower()) == 1 else c for c in text)


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text)


def is_searchable_sentence(sentence: str) -> bool:
    return sum(ch.isalnum() for ch in sentence) > MIN_SENTENCE_ALNUM


def searchable_sentences(sentences: list[str], start_sentence: int) -> tuple[list[tuple[int, str]], int]:
    """Drop too-short sentences, keeping original ids.

    Returns:
        (entries, start_entry) where entries are (sentence id, text) pairs
        and start_entry is start_sentence re-expressed as a position in
        entries (decremented once per dropped sentence before it).
    """
    entries: list[tuple[int, str]] = []
    start_entry = start_sentence
    for index, sentence in enumerate(sentences):
        if not is_searchable_sentence(sentence):
            if index < start_sentence:
                start_entry -= 1
            continue
        entries.append((index, sentence))
    return entries, start_entry


def _window_position(window: list[str], offset: int) -> tuple[int, int]:
    """Convert an offset into joined window text to (sentence index, offset)."""
    index = 0
    while index < len(window) - 1 and offset >= len(window[index]):
        offset -= len(window[index])
        index += 1
    return index, offset


# ---------------------------------------------------------------------------
# Alignment
# ---------------------------------------------------------------------------


async def get_sentence_ranges(
    start_sentence: int,
    transcription: Transcription,
    sentences: list[str],
    chapter_offset: int,
    last_sentence_range: SentenceRange | None = None,
    duration_of: DurationOf | None = None,
    language: str = SPACY_LANGUAGE,
) -> SentenceRangesResult:
    """Align a chapter's sentences against the transcript.

    Args:
        start_sentence: Chapter sentence the offset search anchored on.
        transcription: The global transcription.
        sentences: The chapter's sentences, in order; ids are indices.
        chapter_offset: Transcript offset where this chapter starts.
        last_sentence_range: Final range of the previous chapter, if any.
        duration_of: Async track duration lookup, used at track seams.
        language: spaCy language for transcript sentence splitting.

    Returns:
        SentenceRangesResult with sparse ranges, the transcript offset
        after the last match, and the repaired carried-in range.
    """
    duration_of = duration_of or get_default_probe().duration_of
    timeline = TimelineIndex(transcription.word_timeline)

    transcript_sentences = [
        _lower_same_length(s)
        for s in split_with_gaps(transcription.transcript[chapter_offset:], language)
    ]
    prefix = [0]
    for s in transcript_sentences:
        prefix.append(prefix[-1] + len(s))

    entries, sentence_index = searchable_sentences(sentences, start_sentence)
    sentence_index = max(sentence_index, 0)

    ranges: list[SentenceRange] = []
    carried = last_sentence_range
    window_index = 0
    window_offset = 0
    last_good_window = 0
    not_found = 0
    last_match_end = chapter_offset

    while sentence_index < len(entries):
        sentence_id, sentence = entries[sentence_index]

        window_list = transcript_sentences[window_index:window_index + LOOKAHEAD_SENTENCES]
        window = "".join(window_list)[window_offset:]
        query = collapse_whitespace(sentence.strip()).lower()

        match = find_nearest_match(
            query, window, max(int(RANGE_TOLERANCE * len(query)), RANGE_MIN_EDITS)
        )

        if match is None:
            sentence_index += 1
            not_found += 1
            if not_found == MAX_CONSECUTIVE_MISSES or sentence_index == len(entries):
                window_index += 1
                if window_index == last_good_window + RECOVERY_WINDOW_LIMIT:
                    logger.debug(
                        "No match within %d windows of window %d; skipping %d sentence(s) at id %d",
                        RECOVERY_WINDOW_LIMIT, last_good_window, not_found, sentence_id,
                    )
                    window_index = last_good_window
                    not_found = 0
                    continue
                sentence_index -= not_found
                not_found = 0
            continue

        base = prefix[min(window_index, len(transcript_sentences))] + window_offset + chapter_offset
        start_entry = timeline.first_ending_after(match.index + base)
        if start_entry is None:
            sentence_index += 1
            continue

        start = start_entry.start_time
        audiofile = start_entry.audiofile
        match_end = match.end + base

        end_entry = timeline.last_starting_before(match_end)
        end = end_entry.end_time if end_entry else start_entry.end_time
        if end_entry is not None and end_entry.audiofile != audiofile:
            own = timeline.last_starting_before(match_end, audiofile)
            end = own.end_time if own else start_entry.end_time

        if ranges:
            previous = ranges[-1]
            if previous.id == sentence_id - 1:
                if previous.audiofile == audiofile:
                    ranges[-1] = replace(previous, end=start)
                else:
                    ranges[-1] = replace(previous, end=await duration_of(previous.audiofile))
        elif carried is not None:
            if carried.audiofile == audiofile:
                if sentence_id == 0:
                    carried = replace(carried, end=start)
            else:
                carried = replace(carried, end=await duration_of(carried.audiofile))

        ranges.append(SentenceRange(id=sentence_id, start=start, end=end, audiofile=audiofile))

        not_found = 0
        last_match_end = match_end
        advance, window_offset = _window_position(window_list, match.end + window_offset)
        window_index += advance
        last_good_window = window_index
        sentence_index += 1

    logger.debug(
        "Aligned %d of %d sentences; transcript offset %d -> %d",
        len(ranges), len(sentences), chapter_offset, last_match_end,
    )
    return SentenceRangesResult(
        sentence_ranges=ranges,
        transcription_offset=last_match_end,
        last_sentence_range=carried,
    )


# ---------------------------------------------------------------------------
# Interpolation and expansion
# ---------------------------------------------------------------------------


def _placeholder(sentence_id: int, audiofile: str) -> SentenceRange:
    return SentenceRange(id=sentence_id, start=UNTIMED, end=UNTIMED, audiofile=audiofile)


def interpolate_sentence_ranges(
    sentence_ranges: list[SentenceRange],
    last_sentence_range: SentenceRange | None = None,
    sentence_count: int | None = None,
) -> list[SentenceRange]:
    """Fill id gaps with untimed placeholders so ids run densely from 0.

    RULES:
    - Output ids are exactly 0..max(id), or 0..sentence_count-1 when
      sentence_count is larger
    - Leading placeholders use last_sentence_range's file when given,
      else the first range's file
    - Gap placeholders use the file of the range that follows them
    - Trailing placeholders (sentence_count) use the last range's file
    - Empty input yields empty output
    """
    if not sentence_ranges:
        return []

    first = sentence_ranges[0]
    lead_file = last_sentence_range.audiofile if last_sentence_range else first.audiofile
    dense = [_placeholder(i, lead_file) for i in range(first.id)]
    dense.append(first)

    for current in sentence_ranges[1:]:
        previous_id = dense[-1].id
        dense.extend(_placeholder(i, current.audiofile) for i in range(previous_id + 1, current.id))
        dense.append(current)

    if sentence_count is not None:
        tail_file = dense[-1].audiofile
        dense.extend(_placeholder(i, tail_file) for i in range(dense[-1].id + 1, sentence_count))

    return dense


def expand_empty_sentence_ranges(sentence_ranges: list[SentenceRange]) -> list[SentenceRange]:
    """Remove overlaps and zero-length ranges.

    HOW: A timed range that starts before the previous timed range on the
    same file ends is pushed to start at that end. A timed range whose
    end is not after its start gets a MIN_RANGE_DURATION_S floor.

    RULES:
    - Placeholders pass through untouched and are never used for nudging
    - start never moves backward; only forward to the previous end
    """
    expanded: list[SentenceRange] = []
    for current in sentence_ranges:
        if current.is_placeholder:
            expanded.append(current)
            continue

        previous = expanded[-1] if expanded else None
        if (
            previous is not None
            and not previous.is_placeholder
            and previous.audiofile == current.audiofile
            and previous.end > current.start
        ):
            current = replace(current, start=previous.end)

        if current.end <= current.start:
            current = replace(current, end=current.start + MIN_RANGE_DURATION_S)

        expanded.append(current)
    return expanded


def get_chapter_duration(sentence_ranges: list[SentenceRange]) -> float:
    """Total narrated time of a chapter, summed per consecutive audio file run.

    RULES:
    - Each run contributes (last end - first start)
    - Placeholders are ignored
    """
    duration = 0.0
    audiofile: str | None = None
    start = 0.0
    end = 0.0
    for sentence_range in sentence_ranges:
        if sentence_range.is_placeholder:
            continue
        if sentence_range.audiofile != audiofile:
            duration += end - start
            start = sentence_range.start
            audiofile = sentence_range.audiofile
        end = sentence_range.end
    return duration + (end - start)
