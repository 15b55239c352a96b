"""Pytest configuration and fixtures for the bucket_uploader tests."""

import asyncio
import json
from collections import defaultdict
from collections.abc import AsyncGenerator, Generator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import httpx
import pytest

from bucket_uploader.services.gate import AdmissionGate
from bucket_uploader.services.transfer import SourceFile
from bucket_uploader.services.upload_manager import UploadManager

API_PATH = "https://app.test/api/storage"
UPLOAD_HOST = "https://uploads.test"
ACCESS_URL = "https://files.test/bucket/abc/photo.jpg"
UPLOADED_AT = "2024-06-15T14:30:00.000Z"


def single_plan(**overrides: Any) -> dict[str, Any]:
    """Build a /request-upload response for a single-part upload."""
    plan: dict[str, Any] = {
        "uploadUrl": f"{UPLOAD_HOST}/single",
        "accessUrl": ACCESS_URL,
        "thumbnailUrl": None,
        "size": 1000,
        "uploadedAt": UPLOADED_AT,
        "metadata": {"owner": "tests"},
        "path": {"type": "post"},
    }
    plan.update(overrides)
    return plan


def multipart_plan(total_parts: int, part_size: int, size: int, **overrides: Any) -> dict[str, Any]:
    """Build a /request-upload response for a multipart upload."""
    plan: dict[str, Any] = {
        "multipart": {
            "partSize": part_size,
            "totalParts": total_parts,
            "uploadId": "upload-123",
            "key": "bucket/abc/video.mp4",
            "parts": [
                {"partNumber": n, "uploadUrl": f"{UPLOAD_HOST}/part/{n}"}
                for n in range(1, total_parts + 1)
            ],
        },
        "accessUrl": ACCESS_URL,
        "thumbnailUrl": None,
        "size": size,
        "uploadedAt": UPLOADED_AT,
        "metadata": {},
        "path": {},
    }
    plan.update(overrides)
    return plan


def part_url(part_number: int) -> str:
    return f"{UPLOAD_HOST}/part/{part_number}"


class FakeStorage:
    """In-memory control plane and upload targets served through MockTransport."""

    def __init__(self) -> None:
        self.plan: dict[str, Any] = single_plan()
        self.request_status = 200
        self.complete_status = 200
        self.delete_status = 200

        self.upload_requests: list[dict[str, Any]] = []
        self.completions: list[dict[str, Any]] = []
        self.deletions: list[dict[str, Any]] = []
        self.put_bodies: dict[str, bytes] = {}
        self.put_headers: dict[str, httpx.Headers] = {}
        self.put_attempts: dict[str, int] = defaultdict(int)

        # url -> number of attempts that fail before one succeeds
        self.put_failures: dict[str, int] = {}
        # url -> how a failing attempt fails: "network" or an HTTP status
        self.put_failure_mode: dict[str, str | int] = {}
        self.missing_etag: set[str] = set()
        self.put_delay = 0.0
        # When set, every PUT waits for this event before answering
        self.put_release: asyncio.Event | None = None

        self.active_puts = 0
        self.max_active_puts = 0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "PUT":
            return await self._handle_put(request)

        body = json.loads(request.content)
        path = request.url.path
        if path.endswith("/request-upload"):
            self.upload_requests.append(body)
            if self.request_status != 200:
                return httpx.Response(self.request_status, json={"error": "nope"})
            return httpx.Response(200, json=self.plan)
        if path.endswith("/complete-multipart-upload"):
            self.completions.append(body)
            return httpx.Response(self.complete_status)
        if path.endswith("/delete-file"):
            self.deletions.append(body)
            return httpx.Response(self.delete_status)
        return httpx.Response(404)

    async def _handle_put(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.put_attempts[url] += 1
        attempt = self.put_attempts[url]

        self.active_puts += 1
        self.max_active_puts = max(self.max_active_puts, self.active_puts)
        try:
            if self.put_delay:
                await asyncio.sleep(self.put_delay)
            if self.put_release is not None:
                await self.put_release.wait()
        finally:
            self.active_puts -= 1

        if attempt <= self.put_failures.get(url, 0):
            mode = self.put_failure_mode.get(url, "network")
            if mode == "network":
                raise httpx.ConnectError("connection reset", request=request)
            return httpx.Response(int(mode))

        self.put_bodies[url] = request.content
        self.put_headers[url] = request.headers
        if url in self.missing_etag:
            return httpx.Response(200)
        return httpx.Response(200, headers={"ETag": f'"etag-{url.rsplit("/", 1)[-1]}"'})


@pytest.fixture(autouse=True)
def event_log_settings() -> Generator[MagicMock, None, None]:
    """Keep the JSONL event log off disk unless a test sets log_directory."""
    mock_settings = MagicMock()
    mock_settings.log_directory = None
    with patch("bucket_uploader.services.log_service.get_settings", return_value=mock_settings):
        yield mock_settings


@pytest.fixture
def storage() -> FakeStorage:
    """Fake control plane and upload targets."""
    return FakeStorage()


@pytest.fixture
async def http(storage: FakeStorage) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client wired to the fake storage."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(storage.handler)) as client:
        yield client


@pytest.fixture
def gate() -> AdmissionGate:
    """A private admission gate with a short poll interval."""
    return AdmissionGate(max_concurrent=5, poll_interval=0.01)


@pytest.fixture
def manager(http: httpx.AsyncClient, gate: AdmissionGate) -> UploadManager:
    """Upload manager with no retry delay."""
    return UploadManager(http, API_PATH, gate=gate, retry_delay=0, chunk_size=100)


@pytest.fixture
def payload() -> bytes:
    """Deterministic file content, 1000 bytes."""
    return bytes(i % 251 for i in range(1000))


@pytest.fixture
def source(payload: bytes) -> SourceFile:
    return SourceFile.from_bytes("video.mp4", payload, "video/mp4")


@pytest.fixture
def temp_file(tmp_path: Path, payload: bytes) -> Path:
    """A file on disk with the payload content."""
    path = tmp_path / "photo.jpg"
    path.write_bytes(payload)
    return path
