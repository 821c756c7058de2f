"""Tests for the async Soniox client.

WHY: Transcribing a book is many minutes of paid API time per track. The
client must walk the upload -> create -> poll -> fetch workflow in order,
always delete what it created (even when the job fails), and stitch the
per-track results together in playback order.

HOW: httpx.MockTransport plays the Soniox API. FakeSoniox keeps the
requests it saw so tests can assert on the workflow. poll_interval_s=0
keeps polling instantaneous.

RULES:
- No test touches the network
- API keys are passed explicitly, never read from .env
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from cadence_sync.api.client import (
    SonioxAPIError,
    SonioxClient,
    TranscriptionError,
    transcribe_tracks,
)

BASE_URL = "https://api.soniox.test/v1"

_TOKENS = {
    "a": [
        {"text": " It", "start_ms": 0, "end_ms": 200},
        {"text": " was", "start_ms": 250, "end_ms": 500},
        {"text": ".", "start_ms": 500, "end_ms": 510},
    ],
    "b": [
        {"text": " Win", "start_ms": 0, "end_ms": 200},
        {"text": "ston", "start_ms": 200, "end_ms": 400},
    ],
}


class FakeSoniox:
    """In-memory Soniox API for httpx.MockTransport."""

    def __init__(self, upload_status=201, job_status="completed", error_message=None):
        self.upload_status = upload_status
        self.job_status = job_status
        self.error_message = error_message
        self.requests: list[tuple[str, str]] = []
        self.created: list[dict] = []
        self.polls: dict[str, int] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path[len("/v1"):]
        self.requests.append((request.method, path))

        if request.method == "DELETE":
            return httpx.Response(204)

        if request.method == "POST" and path == "/files":
            if self.upload_status >= 400:
                return httpx.Response(self.upload_status, text="unauthorized")
            name = "b" if b'filename="b.mp3"' in request.content else "a"
            return httpx.Response(self.upload_status, json={"id": f"file-{name}"})

        if request.method == "POST" and path == "/transcriptions":
            body = json.loads(request.content)
            self.created.append(body)
            return httpx.Response(201, json={"id": f"tr-{body['file_id']}"})

        if request.method == "GET" and path.endswith("/transcript"):
            transcription_id = path.split("/")[2]
            name = transcription_id.rsplit("-", 1)[1]
            return httpx.Response(200, json={"id": transcription_id, "text": "", "tokens": _TOKENS[name]})

        if request.method == "GET" and path.startswith("/transcriptions/"):
            transcription_id = path.split("/")[2]
            count = self.polls.get(transcription_id, 0)
            self.polls[transcription_id] = count + 1
            status = "processing" if count == 0 else self.job_status
            return httpx.Response(200, json={
                "id": transcription_id,
                "status": status,
                "error_message": self.error_message,
            })

        return httpx.Response(404, text="not found")


@pytest.fixture
def audio_files(tmp_path):
    paths = []
    for name in ("a.mp3", "b.mp3"):
        path = tmp_path / name
        path.write_bytes(b"fake audio")
        paths.append(path)
    return paths


def _client(api):
    return SonioxClient(
        api_key="test-key",
        base_url=BASE_URL,
        model="test-model",
        transport=httpx.MockTransport(api),
        poll_interval_s=0,
    )


class TestTranscribe:
    """Tests for SonioxClient.transcribe()."""

    def test_full_workflow(self, audio_files):
        """Upload, create, poll until complete, fetch, then delete both resources."""
        api = FakeSoniox()
        statuses = []

        async def run():
            async with _client(api) as client:
                return await client.transcribe(audio_files[0], language="en", on_status=statuses.append)

        tokens = asyncio.run(run())

        assert [t.text for t in tokens] == [" It", " was", "."]
        assert api.requests == [
            ("POST", "/files"),
            ("POST", "/transcriptions"),
            ("GET", "/transcriptions/tr-file-a"),
            ("GET", "/transcriptions/tr-file-a"),
            ("GET", "/transcriptions/tr-file-a/transcript"),
            ("DELETE", "/transcriptions/tr-file-a"),
            ("DELETE", "/files/file-a"),
        ]
        assert api.created[0]["model"] == "test-model"
        assert api.created[0]["language_hints"] == ["en"]
        assert api.created[0]["enable_speaker_diarization"] is False
        assert statuses[0] == "Uploading a.mp3..."

    def test_context_truncated(self, audio_files):
        api = FakeSoniox()

        async def run():
            async with _client(api) as client:
                await client.transcribe(audio_files[0], context_text="x" * 12_000)

        asyncio.run(run())
        assert len(api.created[0]["context"]["text"]) == 10_000

    def test_upload_error(self, audio_files):
        """A rejected upload raises and there is nothing to clean up."""
        api = FakeSoniox(upload_status=401)

        async def run():
            async with _client(api) as client:
                await client.transcribe(audio_files[0])

        with pytest.raises(SonioxAPIError) as exc_info:
            asyncio.run(run())

        assert exc_info.value.status_code == 401
        assert [method for method, _ in api.requests] == ["POST"]

    def test_job_error_still_cleans_up(self, audio_files):
        api = FakeSoniox(job_status="error", error_message="unsupported audio")

        async def run():
            async with _client(api) as client:
                await client.transcribe(audio_files[0])

        with pytest.raises(TranscriptionError, match="unsupported audio"):
            asyncio.run(run())

        assert ("DELETE", "/transcriptions/tr-file-a") in api.requests
        assert ("DELETE", "/files/file-a") in api.requests

    def test_requires_context_manager(self, audio_files):
        client = _client(FakeSoniox())
        with pytest.raises(RuntimeError, match="async context manager"):
            asyncio.run(client.upload_file(audio_files[0]))


class TestTranscribeTracks:
    """Tests for transcribe_tracks()."""

    def test_concatenated_in_track_order(self, audio_files):
        """Per-track transcripts are joined in playback order, tagged by file."""
        api = FakeSoniox()

        async def run():
            async with _client(api) as client:
                return await transcribe_tracks(client, audio_files, concurrency=2)

        transcription = asyncio.run(run())

        assert transcription.transcript == "It was. Winston"
        assert transcription.audiofiles() == [str(audio_files[0]), str(audio_files[1])]
        winston = transcription.word_timeline[-1]
        assert transcription.transcript[winston.start_offset:winston.end_offset] == "Winston"
        assert winston.start_time == 0.0
        assert winston.end_time == 0.4
