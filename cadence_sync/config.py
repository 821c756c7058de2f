"""Configuration constants, alignment tunables, and .env loading.

WHY: The alignment engine is driven by a handful of empirical numbers
(window sizes, edit-distance tolerances, recovery limits). Keeping them
as plain module constants, not buried in loops, makes them easy to find
and tune. The same goes for the resource policy tables and the
external-tool settings.

HOW: python-dotenv loads the .env file on import. Constants are defined
as module-level values, dicts and sets. Anything a deployment might
reasonably change can be overridden via environment variables.

RULES:
- Tolerances are fractions of the query length, with a minimum edit count
- EPUB_VIRTUAL_ORIGIN has no trailing slash
- AUDIO_EXTENSIONS and RESOURCE_CONTENT_TYPES keys are lowercase with dot
- API keys are loaded from .env via python-dotenv, never hardcoded
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").strip().lower() in ("1", "true", "yes")


# ---------------------------------------------------------------------------
# Chapter offset search
# ---------------------------------------------------------------------------

OFFSET_SEARCH_WINDOW_SIZE = int(os.getenv("CADENCE_OFFSET_WINDOW", "5000"))
"""Characters of transcript searched per attempt when locating a chapter."""

OFFSET_QUERY_SENTENCES = 6
OFFSET_SENTENCE_STEP = 3
OFFSET_TOLERANCE = 0.15
OFFSET_MIN_EDITS = 2

OFFSET_MAX_QUERIES = int(os.getenv("CADENCE_OFFSET_MAX_QUERIES", "20"))
"""Rolling queries tried per window; bounds the search for unnarrated chapters."""

# ---------------------------------------------------------------------------
# Sentence range alignment
# ---------------------------------------------------------------------------

RANGE_TOLERANCE = 0.25
RANGE_MIN_EDITS = 1
LOOKAHEAD_SENTENCES = 10
"""Transcript sentences joined into the search window for each book sentence."""

MAX_CONSECUTIVE_MISSES = 3
RECOVERY_WINDOW_LIMIT = 30
"""Window advances allowed from one recovery point before resetting to it."""

MIN_SENTENCE_ALNUM = 3
"""Sentences with this many alphanumeric characters or fewer never get searched."""

MIN_RANGE_DURATION_S = 0.001
SINGLE_TRACK_CONSUMED_RATIO = 0.8

SPACY_LANGUAGE = os.getenv("CADENCE_SPACY_LANGUAGE", "en")

# ---------------------------------------------------------------------------
# Audio
# ---------------------------------------------------------------------------

FFPROBE_PATH = os.getenv("FFPROBE_PATH", "ffprobe")
FFPROBE_TIMEOUT_S = float(os.getenv("FFPROBE_TIMEOUT_S", "60"))

AUDIO_EXTENSIONS: set[str] = {
    ".mp3", ".m4a", ".m4b", ".mp4", ".aac", ".ogg",
    ".oga", ".opus", ".wav", ".flac", ".webm",
}

# ---------------------------------------------------------------------------
# Layout and resource policy
# ---------------------------------------------------------------------------

EPUB_VIRTUAL_ORIGIN = os.getenv("CADENCE_EPUB_ORIGIN", "https://epub.local").rstrip("/")
STRICT_VALIDATION = _env_bool("CADENCE_STRICT", True)

CRITICAL_RESOURCE_TYPES: set[str] = {"stylesheet", "font"}
CRITICAL_EXTENSIONS: set[str] = {".css", ".ttf", ".otf", ".woff", ".woff2"}

RESOURCE_CONTENT_TYPES: dict[str, str] = {
    ".css": "text/css; charset=utf-8",
    ".html": "text/html; charset=utf-8",
    ".xhtml": "application/xhtml+xml; charset=utf-8",
    ".htm": "text/html; charset=utf-8",
    ".svg": "image/svg+xml",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# ---------------------------------------------------------------------------
# Speech-to-text (Soniox)
# ---------------------------------------------------------------------------

SONIOX_BASE_URL = os.getenv("SONIOX_BASE_URL", "https://api.soniox.com/v1")
SONIOX_MODEL = os.getenv("SONIOX_MODEL", "stt-async-v4")
DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "en")


def load_api_key() -> str:
    """Load the Soniox API key from the environment.

    RULES:
    - Raises ValueError if the key is missing or empty
    - Never returns a default/placeholder value
    """
    key = os.getenv("SONIOX_API_KEY", "").strip()
    if not key:
        raise ValueError(
            "Soniox API key not configured. "
            "Add SONIOX_API_KEY to the .env file or the environment."
        )
    return key
