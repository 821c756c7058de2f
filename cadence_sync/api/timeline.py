"""Soniox tokens to a Transcription word timeline.

WHY: The aligner searches a plain transcript string and resolves timing
through word entries that point back into that string. Soniox returns
flat BPE tokens (" fan", "tastic", ".") with millisecond timing, so they
have to be assembled into words and laid out into a transcript.

HOW: A leading space starts a new word, a continuation token extends the
current word, and punctuation-only tokens are glued to the transcript
without a space. Each assembled word becomes a WordTimelineEntry whose
offsets cover the word text in the transcript.

RULES:
- Translation tokens and tokens without timing are dropped
- Words are separated by exactly one space in the transcript
- Punctuation is part of the transcript but not a timeline entry
- Times are seconds (ms / 1000)
"""

from __future__ import annotations

import re

from cadence_sync.api.models import SonioxToken
from cadence_sync.core.ir import Transcription, WordTimelineEntry

# Tokens made only of punctuation attach to the preceding word.
_PUNCTUATION_RE = re.compile(r"^[.,!?;:…—–\-\"'”’)\]]+$")


def filter_translation_tokens(tokens: list[SonioxToken]) -> list[SonioxToken]:
    """Drop translation tokens and tokens without audio timing."""
    return [
        t for t in tokens
        if not t.is_translation and t.start_ms is not None and t.end_ms is not None
    ]


def tokens_to_transcription(tokens: list[SonioxToken], audiofile: str) -> Transcription:
    """Assemble Soniox tokens into a single-track Transcription.

    Args:
        tokens: Flat token list from the transcript response.
        audiofile: Track path recorded on every timeline entry.

    Returns:
        Transcription whose timeline entries reference audiofile.
    """
    parts: list[str] = []
    length = 0
    entries: list[WordTimelineEntry] = []

    word_text: str | None = None
    word_start = 0
    word_end = 0

    def _flush() -> None:
        nonlocal word_text, length
        if word_text is None:
            return
        if parts:
            parts.append(" ")
            length += 1
        start_offset = length
        parts.append(word_text)
        length += len(word_text)
        entries.append(WordTimelineEntry(
            start_time=word_start / 1000.0,
            end_time=word_end / 1000.0,
            start_offset=start_offset,
            end_offset=length,
            audiofile=audiofile,
            text=word_text,
        ))
        word_text = None

    for token in filter_translation_tokens(tokens):
        stripped = token.text.strip()
        if not stripped:
            continue

        if _PUNCTUATION_RE.match(stripped):
            _flush()
            if not parts:
                continue
            parts.append(stripped)
            length += len(stripped)
            continue

        if token.text.startswith(" ") or word_text is None:
            _flush()
            word_text = stripped
            word_start = token.start_ms
            word_end = token.end_ms
        else:
            word_text += token.text
            word_end = token.end_ms

    _flush()
    return Transcription(transcript="".join(parts), word_timeline=tuple(entries))
