"""Forced alignment of book sentences against a speech-to-text transcript.

WHY: Read-along playback needs an audio start and end for every book
sentence, derived from a transcript that only approximately matches the
book's wording.

HOW: nlp.py splits text into sentences, fuzzy.py finds approximate
matches, offset.py anchors each chapter in the transcript, ranges.py
aligns sentences and repairs timing, audio.py probes track durations,
and pipeline.py folds all of it over a book's chapters.

RULES:
- Chapters are aligned sequentially in spine order
- Alignment anomalies are absorbed, never raised
"""

from cadence_sync.align.pipeline import AlignmentState, ChapterText, align_book, align_chapter
from cadence_sync.align.ranges import (
    expand_empty_sentence_ranges,
    get_sentence_ranges,
    interpolate_sentence_ranges,
)

__all__ = [
    "AlignmentState",
    "ChapterText",
    "align_book",
    "align_chapter",
    "expand_empty_sentence_ranges",
    "get_sentence_ranges",
    "interpolate_sentence_ranges",
]
