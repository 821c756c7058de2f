"""Locate where a chapter's narration begins inside the global transcript.

WHY: A book's transcript covers every audio track in one string, but the
chapters of the book do not line up with it one to one. Front matter is
often not narrated, the narrator may read an intro the book lacks, and
multi-file audiobooks are not always in spine order. Before aligning a
chapter sentence by sentence, the aligner needs an anchor: which chapter
sentence can be found in the transcript, and where.

HOW: The transcript is searched in fixed-size windows starting at the
offset where the previous chapter ended, wrapping around to the start if
necessary and advancing by half a window per failed attempt. Inside each
window, rolling six-sentence queries are tried starting at sentence 0,
3, 6, ... Both sides are normalized (case, whitespace, dash and quote
variants) before fuzzy matching. Normalization changes lengths, so an
index map translates the match position back into the raw transcript.

RULES:
- Windows start at last_offset and wrap modulo the transcript length
- Query tolerance: 15% of its normalized length, at least 2 edits
- The first window/query that matches wins
- Only the first OFFSET_MAX_QUERIES queries are tried, so a chapter
  whose first narrated sentence lies beyond them is not anchored
- A window is only scanned for a query when the q-gram count allows a
  match within tolerance; this never changes the result
- Exhausting the transcript returns transcription_offset=None
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cadence_sync.align.fuzzy import find_nearest_match
from cadence_sync.config import (
    OFFSET_MAX_QUERIES,
    OFFSET_MIN_EDITS,
    OFFSET_QUERY_SENTENCES,
    OFFSET_SEARCH_WINDOW_SIZE,
    OFFSET_SENTENCE_STEP,
    OFFSET_TOLERANCE,
)
from cadence_sync.core.ir import Transcription

logger = logging.getLogger(__name__)

_QGRAM = 4

_CHAR_MAP = {
    "—": "-",   # em dash
    "–": "-",   # en dash
    "‘": "'",
    "’": "'",
    "“": '"',
    "”": '"',
}


@dataclass(frozen=True)
class ChapterOffset:
    """Result of the chapter offset search.

    RULES:
    - transcription_offset is None when no window matched
    - start_sentence is the chapter sentence the match was anchored on
    """

    start_sentence: int
    transcription_offset: int | None


def normalize_for_search(text: str) -> tuple[str, list[int]]:
    """Normalize text for offset search and map each output char to its source.

    HOW: Lowercases, turns every whitespace run into one space, folds
    typographic dashes and quotes to ASCII, and trims both ends.

    Returns:
        (normalized, index_map) where index_map[k] is the index in text of
        the character that produced normalized[k].
    """
    out: list[str] = []
    index_map: list[int] = []
    pending_space = -1

    for i, ch in enumerate(text):
        if ch.isspace():
            if pending_space < 0:
                pending_space = i
            continue
        if pending_space >= 0:
            if out:
                out.append(" ")
                index_map.append(pending_space)
            pending_space = -1
        mapped = _CHAR_MAP.get(ch)
        if mapped is None:
            mapped = ch.lower()
        for piece in mapped:
            out.append(piece)
            index_map.append(i)

    return "".join(out), index_map


def _qgrams(text: str) -> set[str]:
    return {text[i:i + _QGRAM] for i in range(len(text) - _QGRAM + 1)}


def _may_match(query: str, window_grams: set[str], tolerance: int) -> bool:
    # Each edit touches at most _QGRAM of the query's q-gram positions.
    needed = len(query) - _QGRAM + 1 - tolerance * _QGRAM
    if needed <= 0:
        return True
    hits = sum(
        1 for i in range(len(query) - _QGRAM + 1) if query[i:i + _QGRAM] in window_grams
    )
    return hits >= needed

def normalize_text(text: str) -> str:
    return normalize_for_search(text)[0]


def find_chapter_offset(
    sentences: list[str],
    transcription: Transcription,
    last_offset: int = 0,
    window_size: int = OFFSET_SEARCH_WINDOW_SIZE,
    max_queries: int = OFFSET_MAX_QUERIES,
) -> ChapterOffset:
    """Find the first chapter sentence that occurs in the transcript, and where.

    Args:
        sentences: The chapter's sentences, in order.
        transcription: The global transcription.
        last_offset: Transcript offset where the previous chapter ended.
        window_size: Characters searched per window.
        max_queries: Rolling queries tried per window.

    Returns:
        ChapterOffset with the anchoring sentence index and the raw
        transcript offset of the match, or offset None if not found.
    """
    text = transcription.transcript
    length = len(text)
    if not sentences or length == 0:
        return ChapterOffset(start_sentence=0, transcription_offset=None)

    queries: list[tuple[int, str, int]] = []
    for start_sentence in range(0, len(sentences), OFFSET_SENTENCE_STEP)[:max_queries]:
        chunk = " ".join(sentences[start_sentence:start_sentence + OFFSET_QUERY_SENTENCES])
        query = normalize_text(chunk)
        queries.append((start_sentence, query, max(int(OFFSET_TOLERANCE * len(query)), OFFSET_MIN_EDITS)))

    i = 0
    while i < length:
        window_start = (last_offset + i) % length
        wrapping = window_start + window_size >= length
        window_end = length if wrapping else window_start + window_size

        if window_start < window_end:
            normalized, index_map = normalize_for_search(text[window_start:window_end])
            window_grams = _qgrams(normalized)
            for start_sentence, query, tolerance in queries:
                if not _may_match(query, window_grams, tolerance):
                    continue
                match = find_nearest_match(query, normalized, tolerance)
                if match is not None:
                    offset = (window_start + index_map[match.index]) % length
                    logger.debug(
                        "Chapter anchored at sentence %d, transcript offset %d (distance %d)",
                        start_sentence, offset, match.distance,
                    )
                    return ChapterOffset(start_sentence=start_sentence, transcription_offset=offset)

        if wrapping:
            i += length - window_start
        else:
            i += window_size // 2

    return ChapterOffset(start_sentence=0, transcription_offset=None)
