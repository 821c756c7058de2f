"""Soniox API response dataclasses.

WHY: Only three Soniox response shapes matter for building a transcript
timeline: the job status while polling, the transcript response, and the
tokens inside it. Typed dataclasses keep the field names in one place.

HOW: Each dataclass has a from_dict factory that reads the raw JSON dict.

RULES:
- start_ms/end_ms are None only on translation tokens
- translation_status is None unless translation was requested
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class SonioxToken:
    """A sub-word token with millisecond timing.

    RULES:
    - A leading space in text starts a new word
    - confidence is 0.0 to 1.0
    """

    text: str
    start_ms: int | None
    end_ms: int | None
    confidence: float = 1.0
    language: str | None = None
    translation_status: str | None = None

    @property
    def is_translation(self) -> bool:
        return self.translation_status == "translation"

    @classmethod
    def from_dict(cls, data: dict) -> SonioxToken:
        return cls(
            text=data["text"],
            start_ms=data.get("start_ms"),
            end_ms=data.get("end_ms"),
            confidence=data.get("confidence", 1.0),
            language=data.get("language"),
            translation_status=data.get("translation_status"),
        )


@dataclass
class TranscriptionStatus:
    """Polling response of GET /transcriptions/{id}.

    RULES:
    - status is "queued", "processing", "completed" or "error"
    - error_message is only set when status is "error"
    """

    id: str
    status: str
    file_id: str | None = None
    error_message: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> TranscriptionStatus:
        return cls(
            id=data["id"],
            status=data["status"],
            file_id=data.get("file_id"),
            error_message=data.get("error_message"),
        )


@dataclass
class TranscriptResponse:
    """Response of GET /transcriptions/{id}/transcript."""

    id: str
    text: str
    tokens: list[SonioxToken] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> TranscriptResponse:
        return cls(
            id=data["id"],
            text=data.get("text", ""),
            tokens=[SonioxToken.from_dict(t) for t in data.get("tokens", [])],
        )
