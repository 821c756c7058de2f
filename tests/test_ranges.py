"""Tests for sentence range alignment, interpolation and expansion.

WHY: Sentence ranges are the timing every span inherits. Gaps between
consecutive matched sentences must close, ranges must never run across a
track seam, and the dense output must have exactly one range per
sentence id with no overlaps or empty ranges.

HOW: Transcripts come from conftest.build_transcription, so each word's
time is known (word i of a track starts at i * WORD_STEP_S). Track
durations come from the fake_duration_of fixture, which records calls.

RULES:
- get_sentence_ranges is async; tests drive it with asyncio.run()
- Float times are compared with pytest.approx where arithmetic is involved
"""

import asyncio

import pytest

from cadence_sync.align.ranges import (
    SentenceRangesResult,
    expand_empty_sentence_ranges,
    find_end_timestamp,
    get_chapter_duration,
    get_sentence_ranges,
    interpolate_sentence_ranges,
    is_searchable_sentence,
    searchable_sentences,
)
from cadence_sync.core.ir import UNTIMED, SentenceRange

from conftest import (
    CHAPTER_ONE_SENTENCES,
    CHAPTER_TWO_SENTENCES,
    LIBRIVOX_SENTENCES,
    build_transcription,
    word_start,
)


def _placeholder(sentence_id, audiofile):
    return SentenceRange(id=sentence_id, start=UNTIMED, end=UNTIMED, audiofile=audiofile)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestSearchableSentences:
    """Tests for the short-sentence filter."""

    def test_short_sentences_not_searchable(self):
        """Three or fewer alphanumerics is too short to search for."""
        assert not is_searchable_sentence("Hi.")
        assert not is_searchable_sentence("I... am!")
        assert is_searchable_sentence("Yes, sir.")

    def test_ids_kept_and_start_shifted(self):
        """Dropped sentences keep the survivors' ids; the start position shifts."""
        entries, start_entry = searchable_sentences(
            ["Hi.", "Hello there world.", "Ok.", "Another sentence."], 2,
        )
        assert [sentence_id for sentence_id, _ in entries] == [1, 3]
        assert start_entry == 1


class TestFindEndTimestamp:
    """Tests for find_end_timestamp()."""

    def test_last_word_before_offset(self, librivox_transcription):
        """The end time comes from the last word starting before the offset."""
        end_of_first_sentence = librivox_transcription.transcript.index("recording.") + len("recording.")
        assert find_end_timestamp(end_of_first_sentence, librivox_transcription) == pytest.approx(2.9)

    def test_nothing_before_start(self, librivox_transcription):
        assert find_end_timestamp(0, librivox_transcription) is None


# ---------------------------------------------------------------------------
# get_sentence_ranges
# ---------------------------------------------------------------------------


class TestGetSentenceRanges:
    """Tests for get_sentence_ranges()."""

    def test_librivox_intro(self, librivox_transcription, fake_duration_of):
        """A noisy transcript still aligns both sentences, in order."""
        result = asyncio.run(get_sentence_ranges(
            0, librivox_transcription, LIBRIVOX_SENTENCES, 0, duration_of=fake_duration_of,
        ))

        assert isinstance(result, SentenceRangesResult)
        ranges = result.sentence_ranges
        assert [r.id for r in ranges] == [0, 1]
        assert ranges[0].start == 0.0
        assert ranges[1].end == pytest.approx(6.9)
        assert all(r.audiofile == "librivox.mp3" for r in ranges)
        assert result.last_sentence_range is None
        assert fake_duration_of.calls == []

    def test_gap_closed_between_consecutive_sentences(self, librivox_transcription, fake_duration_of):
        """A matched sentence ends where the next one starts on the same track."""
        result = asyncio.run(get_sentence_ranges(
            0, librivox_transcription, LIBRIVOX_SENTENCES, 0, duration_of=fake_duration_of,
        ))
        first, second = result.sentence_ranges
        assert first.end == second.start == word_start(librivox_transcription, "All")

    def test_transcription_offset_after_last_match(self, librivox_transcription, fake_duration_of):
        result = asyncio.run(get_sentence_ranges(
            0, librivox_transcription, LIBRIVOX_SENTENCES, 0, duration_of=fake_duration_of,
        ))
        transcript = librivox_transcription.transcript
        assert result.transcription_offset == transcript.index("domain.") + len("domain.")

    def test_skipped_sentence_breaks_repair(self, librivox_transcription, fake_duration_of):
        """A sentence missing from the narration leaves a gap in ids and no repair."""
        sentences = [
            LIBRIVOX_SENTENCES[0],
            "Footnote text that was never read aloud here.",
            LIBRIVOX_SENTENCES[1],
        ]
        result = asyncio.run(get_sentence_ranges(
            0, librivox_transcription, sentences, 0, duration_of=fake_duration_of,
        ))
        ranges = result.sentence_ranges
        assert [r.id for r in ranges] == [0, 2]
        assert ranges[0].end == pytest.approx(2.9)

    def test_cross_track_range_capped_at_duration(self, fake_duration_of):
        """At a track seam the earlier range runs to the end of its file."""
        transcription = build_transcription([
            (CHAPTER_ONE_SENTENCES[0], "a.mp3"),
            (CHAPTER_ONE_SENTENCES[1], "b.mp3"),
        ])
        result = asyncio.run(get_sentence_ranges(
            0, transcription, CHAPTER_ONE_SENTENCES, 0, duration_of=fake_duration_of,
        ))

        first, second = result.sentence_ranges
        assert first.audiofile == "a.mp3"
        assert first.end == 42.5
        assert second.audiofile == "b.mp3"
        assert second.start == 0.0
        assert second.end == pytest.approx(2.4)
        assert fake_duration_of.calls == ["a.mp3"]

    def test_carried_range_snaps_to_first_sentence(self, book_transcription, fake_duration_of):
        """The previous chapter's last range ends where sentence 0 starts."""
        carried = SentenceRange(id=0, start=0.0, end=1.0, audiofile="book.mp3")
        offset = book_transcription.transcript.index("It was")
        result = asyncio.run(get_sentence_ranges(
            0, book_transcription, CHAPTER_ONE_SENTENCES, offset, carried,
            duration_of=fake_duration_of,
        ))
        assert result.last_sentence_range.end == word_start(book_transcription, "It")
        assert result.last_sentence_range.start == 0.0

    def test_carried_range_on_other_track_capped(self, librivox_transcription, fake_duration_of):
        """A carried range on another file is capped at that file's duration."""
        carried = SentenceRange(id=7, start=30.0, end=31.0, audiofile="a.mp3")
        result = asyncio.run(get_sentence_ranges(
            0, librivox_transcription, LIBRIVOX_SENTENCES, 0, carried,
            duration_of=fake_duration_of,
        ))
        assert result.last_sentence_range == SentenceRange(id=7, start=30.0, end=42.5, audiofile="a.mp3")

    def test_nothing_matches(self, librivox_transcription, fake_duration_of):
        """Unrelated text yields no ranges and leaves the offset at the chapter start."""
        sentences = [
            "Sailing ships crowded the harbour at dawn.",
            "Nobody on the quay noticed the stranger.",
        ]
        result = asyncio.run(get_sentence_ranges(
            0, librivox_transcription, sentences, 0, duration_of=fake_duration_of,
        ))
        assert result.sentence_ranges == []
        assert result.transcription_offset == 0

    def test_does_not_mutate_carried_range(self, librivox_transcription, fake_duration_of):
        carried = SentenceRange(id=7, start=30.0, end=31.0, audiofile="a.mp3")
        asyncio.run(get_sentence_ranges(
            0, librivox_transcription, LIBRIVOX_SENTENCES, 0, carried,
            duration_of=fake_duration_of,
        ))
        assert carried.end == 31.0

    def test_window_advances_past_unmatched_prefix(self, fake_duration_of):
        """Repeated misses slide the transcript window forward until the text turns up."""
        fillers = [
            f"Filler passage {n} describes harbour traffic and tides." for n in range(14)
        ]
        sentences = CHAPTER_ONE_SENTENCES + CHAPTER_TWO_SENTENCES
        transcription = build_transcription([(" ".join(fillers + sentences), "book.mp3")])

        result = asyncio.run(get_sentence_ranges(
            0, transcription, sentences, 0, duration_of=fake_duration_of,
        ))

        assert [r.id for r in result.sentence_ranges] == [0, 1, 2, 3]
        assert result.sentence_ranges[0].start == word_start(transcription, "It")
        assert result.sentence_ranges[2].start == word_start(transcription, "Winston")

    def test_unnarrated_run_skipped_after_window_limit(self, fake_duration_of):
        """Sentences missing from the audio are given up on and alignment resumes after them."""
        notes = [
            "Footnote one explains the printing history of this edition.",
            "Footnote two lists the translators and their sources.",
            "Footnote three gives the publisher address in full.",
        ]
        sentences = CHAPTER_ONE_SENTENCES + notes + CHAPTER_TWO_SENTENCES
        transcription = build_transcription([
            (" ".join(CHAPTER_ONE_SENTENCES + CHAPTER_TWO_SENTENCES), "book.mp3"),
        ])

        result = asyncio.run(get_sentence_ranges(
            0, transcription, sentences, 0, duration_of=fake_duration_of,
        ))

        assert [r.id for r in result.sentence_ranges] == [0, 1, 5, 6]
        assert result.sentence_ranges[2].start == word_start(transcription, "Winston")
        assert result.transcription_offset == len(transcription.transcript)


# ---------------------------------------------------------------------------
# Interpolation, expansion, duration
# ---------------------------------------------------------------------------


class TestInterpolateSentenceRanges:
    """Tests for interpolate_sentence_ranges()."""

    def test_dense_ids(self):
        """Gaps before, between and after matches become placeholders."""
        ranges = [
            SentenceRange(id=2, start=1.0, end=2.0, audiofile="a.mp3"),
            SentenceRange(id=5, start=4.0, end=5.0, audiofile="b.mp3"),
        ]
        dense = interpolate_sentence_ranges(ranges, sentence_count=7)

        assert [r.id for r in dense] == list(range(7))
        assert dense[0] == _placeholder(0, "a.mp3")
        assert dense[3] == _placeholder(3, "b.mp3")
        assert dense[4] == _placeholder(4, "b.mp3")
        assert dense[6] == _placeholder(6, "b.mp3")
        assert dense[2] is ranges[0]

    def test_leading_placeholders_use_carried_file(self):
        ranges = [SentenceRange(id=1, start=1.0, end=2.0, audiofile="b.mp3")]
        carried = SentenceRange(id=9, start=0.0, end=1.0, audiofile="a.mp3")
        dense = interpolate_sentence_ranges(ranges, carried)
        assert dense[0] == _placeholder(0, "a.mp3")

    def test_empty(self):
        assert interpolate_sentence_ranges([]) == []


class TestExpandEmptySentenceRanges:
    """Tests for expand_empty_sentence_ranges()."""

    def test_zero_length_gets_floor(self):
        """A range with end <= start gets a minimal positive duration."""
        expanded = expand_empty_sentence_ranges([SentenceRange(0, 5.0, 5.0, "a.mp3")])
        assert expanded[0].start == 5.0
        assert expanded[0].end == pytest.approx(5.001)

    def test_overlap_pushed_forward(self):
        """An overlapping range starts where the previous one ends."""
        expanded = expand_empty_sentence_ranges([
            SentenceRange(0, 0.0, 3.0, "a.mp3"),
            SentenceRange(1, 2.0, 4.0, "a.mp3"),
        ])
        assert expanded[1].start == 3.0
        assert expanded[1].end == 4.0

    def test_overlap_pushed_past_own_end(self):
        """A range swallowed by its predecessor ends up with the floor duration."""
        expanded = expand_empty_sentence_ranges([
            SentenceRange(0, 0.0, 5.0, "a.mp3"),
            SentenceRange(1, 2.0, 4.0, "a.mp3"),
        ])
        assert expanded[1].start == 5.0
        assert expanded[1].end == pytest.approx(5.001)

    def test_other_file_not_nudged(self):
        expanded = expand_empty_sentence_ranges([
            SentenceRange(0, 0.0, 3.0, "a.mp3"),
            SentenceRange(1, 2.0, 4.0, "b.mp3"),
        ])
        assert expanded[1].start == 2.0

    def test_placeholders_untouched(self):
        """Placeholders pass through and never push the range after them."""
        ranges = [
            SentenceRange(0, 0.0, 3.0, "a.mp3"),
            _placeholder(1, "a.mp3"),
            SentenceRange(2, 2.0, 4.0, "a.mp3"),
        ]
        expanded = expand_empty_sentence_ranges(ranges)
        assert expanded[1] == _placeholder(1, "a.mp3")
        assert expanded[2].start == 2.0


class TestGetChapterDuration:
    """Tests for get_chapter_duration()."""

    def test_sums_per_file_runs(self):
        """Each consecutive run on one file contributes last end minus first start."""
        ranges = [
            SentenceRange(0, 1.0, 3.0, "a.mp3"),
            SentenceRange(1, 3.0, 5.0, "a.mp3"),
            _placeholder(2, "a.mp3"),
            SentenceRange(3, 0.0, 2.0, "b.mp3"),
            SentenceRange(4, 2.0, 4.0, "b.mp3"),
        ]
        assert get_chapter_duration(ranges) == pytest.approx(8.0)

    def test_empty(self):
        assert get_chapter_duration([]) == 0.0
