"""Async HTTP client for the Soniox non-realtime speech-to-text API.

WHY: Books arrive as one or more audio tracks without a transcript. Each
track is sent to Soniox, and the returned tokens become that track's part
of the global Transcription the aligner searches.

HOW: SonioxClient wraps httpx.AsyncClient as an async context manager and
exposes one method per API step:
upload_file -> create_transcription -> poll_until_complete ->
fetch_tokens -> cleanup. transcribe() runs the steps for one file and
always cleans up. transcribe_tracks() transcribes every track
concurrently and concatenates the per-track transcriptions in track
order.

RULES:
- Always use the async context manager (async with SonioxClient() as c:)
- Polling backs off from 2s by 1.5x up to 15s, giving up after 60 min
- Book text sent as context is capped at _CONTEXT_MAX_CHARS
- cleanup() is best-effort and never raises
- A transport can be injected for tests (httpx.MockTransport)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from pathlib import Path

import httpx

from cadence_sync.api.models import SonioxToken, TranscriptionStatus, TranscriptResponse
from cadence_sync.api.timeline import tokens_to_transcription
from cadence_sync.config import DEFAULT_LANGUAGE, SONIOX_BASE_URL, SONIOX_MODEL, load_api_key
from cadence_sync.core.ir import Transcription
from cadence_sync.core.transcription import concat_transcriptions

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_POLL_INITIAL_INTERVAL_S = 2.0
_POLL_BACKOFF_FACTOR = 1.5
_POLL_MAX_INTERVAL_S = 15.0
_POLL_TIMEOUT_S = 60 * 60

_CONTEXT_MAX_CHARS = 10_000  # ~8,000 tokens

_DEFAULT_CONCURRENCY = 3


class SonioxAPIError(Exception):
    """Raised when the Soniox API answers with a non-success status.

    RULES:
    - status_code and message are always set
    """

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Soniox API error {status_code}: {message}")


class TranscriptionError(Exception):
    """Raised when a transcription job reports status "error"."""


class TranscriptionTimeoutError(TimeoutError):
    """Raised when a job is still not complete after _POLL_TIMEOUT_S."""


class SonioxClient:
    """Async client for the Soniox transcription workflow.

    RULES:
    - api_key defaults to load_api_key()
    - base_url and model default to the config values
    - transport is passed to httpx.AsyncClient unchanged
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        poll_interval_s: float = _POLL_INITIAL_INTERVAL_S,
    ) -> None:
        self._api_key = api_key or load_api_key()
        self._base_url = (base_url or SONIOX_BASE_URL).rstrip("/")
        self._model = model or SONIOX_MODEL
        self._transport = transport
        self._poll_interval_s = poll_interval_s
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> SonioxClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=httpx.Timeout(300.0, connect=30.0),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(
                "SonioxClient must be used as an async context manager: "
                "async with SonioxClient() as client: ..."
            )
        return self._client

    # ------------------------------------------------------------------
    # Workflow steps
    # ------------------------------------------------------------------

    async def upload_file(self, file_path: Path) -> str:
        """Upload an audio file and return its Soniox file id.

        Raises:
            SonioxAPIError: On a non-2xx response.
        """
        client = self._ensure_client()
        file_path = Path(file_path)
        with open(file_path, "rb") as f:
            resp = await client.post("/files", files={"file": (file_path.name, f)})

        if resp.status_code not in (200, 201):
            raise SonioxAPIError(resp.status_code, resp.text)
        return resp.json()["id"]

    async def create_transcription(
        self,
        file_id: str,
        language_hints: list[str] | None = None,
        context_text: str | None = None,
    ) -> str:
        """Create a transcription job and return its id.

        Args:
            file_id: Id returned by upload_file().
            language_hints: ISO 639-1 codes spoken in the audio.
            context_text: Optional book text to bias recognition; truncated
                to _CONTEXT_MAX_CHARS.

        Raises:
            SonioxAPIError: On a non-2xx response.
        """
        client = self._ensure_client()
        body: dict = {
            "model": self._model,
            "file_id": file_id,
            "enable_speaker_diarization": False,
            "enable_language_identification": False,
        }
        if language_hints:
            body["language_hints"] = language_hints
        if context_text:
            if len(context_text) > _CONTEXT_MAX_CHARS:
                logger.info(
                    "Context text truncated from %d to %d characters",
                    len(context_text), _CONTEXT_MAX_CHARS,
                )
            body["context"] = {"text": context_text[:_CONTEXT_MAX_CHARS]}

        resp = await client.post("/transcriptions", json=body)
        if resp.status_code not in (200, 201):
            raise SonioxAPIError(resp.status_code, resp.text)
        return resp.json()["id"]

    async def poll_until_complete(
        self,
        transcription_id: str,
        on_status: Callable[[str], None] | None = None,
    ) -> TranscriptionStatus:
        """Poll until the job completes.

        Raises:
            TranscriptionError: If the job reports "error".
            TranscriptionTimeoutError: After _POLL_TIMEOUT_S.
            SonioxAPIError: On a non-200 response.
        """
        client = self._ensure_client()
        interval = self._poll_interval_s
        start_time = time.monotonic()

        while True:
            elapsed = time.monotonic() - start_time
            if elapsed > _POLL_TIMEOUT_S:
                raise TranscriptionTimeoutError(
                    f"Transcription {transcription_id} timed out after "
                    f"{elapsed:.0f}s (limit: {_POLL_TIMEOUT_S}s)"
                )

            resp = await client.get(f"/transcriptions/{transcription_id}")
            if resp.status_code != 200:
                raise SonioxAPIError(resp.status_code, resp.text)

            status = TranscriptionStatus.from_dict(resp.json())
            logger.debug("Transcription %s: %s", transcription_id, status.status)
            if on_status and status.status == "processing":
                on_status(f"Transcribing... (elapsed: {int(elapsed) // 60}m {int(elapsed) % 60:02d}s)")

            if status.status == "completed":
                return status
            if status.status == "error":
                raise TranscriptionError(f"Transcription failed: {status.error_message}")

            await asyncio.sleep(interval)
            interval = min(interval * _POLL_BACKOFF_FACTOR, _POLL_MAX_INTERVAL_S)

    async def fetch_tokens(self, transcription_id: str) -> list[SonioxToken]:
        """Fetch the completed transcript's flat token list.

        Raises:
            SonioxAPIError: On a non-200 response.
        """
        client = self._ensure_client()
        resp = await client.get(f"/transcriptions/{transcription_id}/transcript")
        if resp.status_code != 200:
            raise SonioxAPIError(resp.status_code, resp.text)
        return TranscriptResponse.from_dict(resp.json()).tokens

    async def cleanup(self, transcription_id: str | None, file_id: str | None) -> None:
        """Delete the job and the uploaded file, ignoring failures."""
        client = self._ensure_client()
        if transcription_id:
            try:
                await client.delete(f"/transcriptions/{transcription_id}")
            except httpx.HTTPError as exc:
                logger.warning("Could not delete transcription %s: %s", transcription_id, exc)
        if file_id:
            try:
                await client.delete(f"/files/{file_id}")
            except httpx.HTTPError as exc:
                logger.warning("Could not delete file %s: %s", file_id, exc)

    # ------------------------------------------------------------------
    # Whole-file workflow
    # ------------------------------------------------------------------

    async def transcribe(
        self,
        file_path: Path,
        language: str = DEFAULT_LANGUAGE,
        context_text: str | None = None,
        on_status: Callable[[str], None] | None = None,
    ) -> list[SonioxToken]:
        """Run upload, create, poll and fetch for one file, then clean up."""
        file_id: str | None = None
        transcription_id: str | None = None
        try:
            if on_status:
                on_status(f"Uploading {Path(file_path).name}...")
            file_id = await self.upload_file(file_path)
            transcription_id = await self.create_transcription(
                file_id, language_hints=[language] if language else None, context_text=context_text,
            )
            await self.poll_until_complete(transcription_id, on_status=on_status)
            return await self.fetch_tokens(transcription_id)
        finally:
            await self.cleanup(transcription_id, file_id)


async def transcribe_track(
    client: SonioxClient,
    track: Path,
    language: str = DEFAULT_LANGUAGE,
    context_text: str | None = None,
    on_status: Callable[[str], None] | None = None,
) -> Transcription:
    """Transcribe one track into a Transcription tagged with its path."""
    tokens = await client.transcribe(track, language=language, context_text=context_text, on_status=on_status)
    transcription = tokens_to_transcription(tokens, audiofile=str(track))
    logger.info("Transcribed %s: %d words", track, len(transcription.word_timeline))
    return transcription


async def transcribe_tracks(
    client: SonioxClient,
    tracks: list[Path],
    language: str = DEFAULT_LANGUAGE,
    context_text: str | None = None,
    concurrency: int = _DEFAULT_CONCURRENCY,
    on_status: Callable[[str], None] | None = None,
) -> Transcription:
    """Transcribe tracks concurrently and concatenate them in track order.

    Args:
        client: An entered SonioxClient.
        tracks: Audio tracks in playback order.
        language: Language hint for every track.
        context_text: Optional book text sent as recognition context.
        concurrency: Maximum number of tracks in flight.
        on_status: Optional status callback.

    Returns:
        The global Transcription spanning all tracks.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _one(track: Path) -> Transcription:
        async with semaphore:
            return await transcribe_track(client, track, language, context_text, on_status)

    parts = await asyncio.gather(*(_one(Path(track)) for track in tracks))
    return concat_transcriptions(list(parts))
