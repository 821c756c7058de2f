"""Soniox speech-to-text adapter.

WHY: Books without a precomputed transcript need one. This package turns
audio tracks into the Transcription the aligner consumes.

HOW: client.py talks to the Soniox async API with httpx, models.py types
its responses, and timeline.py assembles tokens into a word timeline.

RULES:
- All HTTP calls go through SonioxClient
- Uploaded files and jobs are always cleaned up
"""

from cadence_sync.api.client import SonioxClient, transcribe_track, transcribe_tracks
from cadence_sync.api.models import SonioxToken, TranscriptionStatus
from cadence_sync.api.timeline import tokens_to_transcription

__all__ = [
    "SonioxClient",
    "SonioxToken",
    "TranscriptionStatus",
    "tokens_to_transcription",
    "transcribe_track",
    "transcribe_tracks",
]
