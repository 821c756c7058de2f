"""Transcription JSON documents: loading, saving, and multi-track concatenation.

WHY: A transcription is either produced by the speech-to-text adapter or
supplied as a pre-computed JSON file. The file format counts offsets in
UTF-16 code units (it is shared with JavaScript tooling), while the
aligner indexes Python strings by code point. This module is the only
place where that conversion happens.

HOW: Pydantic models describe the on-disk document (camelCase aliases)
and validate it. load/dump convert between the document and the frozen
Transcription IR, remapping offsets through a UTF-16 index table.
concat_transcriptions joins per-track transcriptions into one global
transcript, shifting every offset by the position of its track.

RULES:
- On disk: startOffsetUtf16/endOffsetUtf16 (UTF-16 code units)
- In memory: start_offset/end_offset (code points)
- Entries without an audiofile take the caller's default (first track)
- Concatenation inserts one space between tracks unless one is present
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cadence_sync.core.ir import Transcription, WordTimelineEntry

logger = logging.getLogger(__name__)


class TranscriptionFormatError(ValueError):
    """Raised when a transcription document cannot be parsed.

    RULES:
    - Wraps JSON decode errors and pydantic ValidationError
    - Message names the offending file when one is known
    """


# ---------------------------------------------------------------------------
# Document models
# ---------------------------------------------------------------------------


class WordTimelineDocument(BaseModel):
    """One word timeline entry as stored in transcription JSON."""

    model_config = ConfigDict(populate_by_name=True)

    text: Optional[str] = None
    start_time: float = Field(alias="startTime")
    end_time: float = Field(alias="endTime")
    start_offset_utf16: int = Field(alias="startOffsetUtf16", ge=0)
    end_offset_utf16: int = Field(alias="endOffsetUtf16", ge=0)
    audiofile: Optional[str] = None


class TranscriptionDocument(BaseModel):
    """Top-level transcription JSON: global transcript plus word timeline."""

    model_config = ConfigDict(populate_by_name=True)

    transcript: str
    word_timeline: List[WordTimelineDocument] = Field(default_factory=list, alias="wordTimeline")


# ---------------------------------------------------------------------------
# UTF-16 offset mapping
# ---------------------------------------------------------------------------


def _utf16_to_codepoint_table(text: str) -> list[int]:
    """Return table[u] = code point index for every UTF-16 offset u.

    An offset that falls between the two halves of a surrogate pair maps
    to the code point that pair encodes.
    """
    table: list[int] = []
    for index, ch in enumerate(text):
        table.append(index)
        if ord(ch) > 0xFFFF:
            table.append(index)
    table.append(len(text))
    return table


def _codepoint_to_utf16_table(text: str) -> list[int]:
    table = [0]
    units = 0
    for ch in text:
        units += 2 if ord(ch) > 0xFFFF else 1
        table.append(units)
    return table


def _clamp(value: int, table: list[int]) -> int:
    return table[min(max(value, 0), len(table) - 1)]


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


def transcription_from_document(
    document: TranscriptionDocument,
    default_audiofile: str = "",
) -> Transcription:
    """Build the Transcription IR from a validated document.

    Args:
        document: Parsed transcription document.
        default_audiofile: Used for entries that carry no audiofile.

    Returns:
        Transcription with code point offsets.
    """
    table = _utf16_to_codepoint_table(document.transcript)
    entries = tuple(
        WordTimelineEntry(
            text=entry.text,
            start_time=entry.start_time,
            end_time=entry.end_time,
            start_offset=_clamp(entry.start_offset_utf16, table),
            end_offset=_clamp(entry.end_offset_utf16, table),
            audiofile=entry.audiofile or default_audiofile,
        )
        for entry in document.word_timeline
    )
    return Transcription(transcript=document.transcript, word_timeline=entries)


def transcription_to_document(transcription: Transcription) -> TranscriptionDocument:
    table = _codepoint_to_utf16_table(transcription.transcript)
    return TranscriptionDocument(
        transcript=transcription.transcript,
        word_timeline=[
            WordTimelineDocument(
                text=entry.text,
                start_time=entry.start_time,
                end_time=entry.end_time,
                start_offset_utf16=_clamp(entry.start_offset, table),
                end_offset_utf16=_clamp(entry.end_offset, table),
                audiofile=entry.audiofile,
            )
            for entry in transcription.word_timeline
        ],
    )


def parse_transcription(data: dict, default_audiofile: str = "") -> Transcription:
    """Validate a decoded JSON object and convert it to a Transcription.

    Raises:
        TranscriptionFormatError: If the object does not match the format.
    """
    try:
        document = TranscriptionDocument.model_validate(data)
    except ValidationError as e:
        raise TranscriptionFormatError(f"Invalid transcription document: {e}") from e
    return transcription_from_document(document, default_audiofile)


def load_transcription(path: Path | str, default_audiofile: str = "") -> Transcription:
    """Load a transcription JSON file.

    WHY: Transcribing a whole audiobook is slow; a saved transcription can
    be reused across compiles.

    RULES:
    - default_audiofile is normally the first audio track's path
    - Malformed JSON or schema mismatches raise TranscriptionFormatError

    Args:
        path: Path to the transcription JSON document.
        default_audiofile: Audio file for entries that carry none.

    Returns:
        The parsed Transcription.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise TranscriptionFormatError(f"{path}: not valid JSON ({e})") from e

    try:
        transcription = parse_transcription(data, default_audiofile)
    except TranscriptionFormatError as e:
        raise TranscriptionFormatError(f"{path}: {e}") from e

    logger.info(
        "Loaded transcription %s (%d chars, %d timeline entries)",
        path, len(transcription.transcript), len(transcription.word_timeline),
    )
    return transcription


def dump_transcription(transcription: Transcription, path: Path | str) -> Path:
    """Write a transcription JSON file with UTF-16 offsets."""
    path = Path(path)
    document = transcription_to_document(transcription)
    path.write_text(
        json.dumps(document.model_dump(by_alias=True), ensure_ascii=False, indent=2),
        encoding="utf-8",
    )
    return path


def concat_transcriptions(parts: list[Transcription]) -> Transcription:
    """Join independently transcribed tracks into one global transcription.

    WHY: Each audio track is transcribed on its own, but the aligner
    searches one transcript string for the whole book.

    HOW: Appends each transcript, inserting a single space when the
    accumulated text does not already end in one, and shifts each track's
    offsets by the length of the text before it.

    RULES:
    - Track order is preserved
    - Empty input yields an empty transcription
    - audiofile on each entry is untouched
    """
    if not parts:
        return Transcription(transcript="")
    if len(parts) == 1:
        return parts[0]

    combined = ""
    timeline: list[WordTimelineEntry] = []
    for part in parts:
        if combined and not combined.endswith(" "):
            combined += " "
        shift = len(combined)
        for entry in part.word_timeline:
            timeline.append(WordTimelineEntry(
                text=entry.text,
                start_time=entry.start_time,
                end_time=entry.end_time,
                start_offset=entry.start_offset + shift,
                end_offset=entry.end_offset + shift,
                audiofile=entry.audiofile,
            ))
        combined += part.transcript

    return Transcription(transcript=combined, word_timeline=tuple(timeline))
