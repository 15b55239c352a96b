"""Byte-range transfer to pre-signed upload targets."""

import logging
import mimetypes
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from pathlib import Path

import httpx

from bucket_uploader.errors import TransportError

logger = logging.getLogger(__name__)

# Size of the sub-chunks handed to the transport; progress is reported per sub-chunk
DEFAULT_CHUNK_SIZE = 256 * 1024

ProgressCallback = Callable[[float], None]


@dataclass(frozen=True)
class SourceFile:
    """A file to upload, read lazily one byte range at a time."""

    name: str
    content_type: str
    size: int
    local_path: str | None = None
    data: bytes | None = None

    @classmethod
    def from_path(cls, path: str | Path, content_type: str | None = None) -> "SourceFile":
        """Describe a file on disk, guessing its MIME type from the name."""
        file_path = Path(path)
        guessed, _ = mimetypes.guess_type(file_path.name)
        return cls(
            name=file_path.name,
            content_type=content_type or guessed or "application/octet-stream",
            size=file_path.stat().st_size,
            local_path=str(file_path.absolute()),
        )

    @classmethod
    def from_bytes(
        cls, name: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> "SourceFile":
        """Wrap an in-memory payload."""
        return cls(name=name, content_type=content_type, size=len(data), data=data)

    @property
    def extension(self) -> str:
        """Text after the last dot of the name (the whole name when there is none)."""
        return self.name.rsplit(".", 1)[-1]

    def read_range(self, start: int, end: int) -> bytes:
        """Return bytes ``[start, end)``, clipped to the file size."""
        start = max(0, start)
        end = min(end, self.size)
        if end <= start:
            return b""
        if self.data is not None:
            return self.data[start:end]
        if self.local_path is None:
            raise ValueError(f"Source file '{self.name}' has neither data nor a path")
        with open(self.local_path, "rb") as f:
            f.seek(start)
            return f.read(end - start)

    def read_all(self) -> bytes:
        return self.read_range(0, self.size)


async def upload_part(
    client: httpx.AsyncClient,
    data: bytes,
    upload_url: str,
    on_progress: ProgressCallback | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> str | None:
    """PUT ``data`` to a pre-signed URL, reporting progress as it is sent.

    Args:
        client: HTTP client used for the request
        data: Raw bytes of the range to upload
        upload_url: Pre-signed upload target
        on_progress: Called with a 0-100 percentage (2 decimals): 0 at start,
            then after every sub-chunk handed to the transport
        chunk_size: Size of the streamed sub-chunks

    Returns:
        Value of the response's ETag header, or None if it has none

    Raises:
        TransportError: On network failure, abort or a non-2xx response
    """
    total = len(data)

    def report(percent: float) -> None:
        if on_progress:
            on_progress(percent)

    async def body() -> AsyncIterator[bytes]:
        view = memoryview(data)
        loaded = 0
        for offset in range(0, total, chunk_size):
            chunk = view[offset : offset + chunk_size]
            yield bytes(chunk)
            loaded += len(chunk)
            report(round(loaded / total * 100, 2))

    report(0)
    try:
        response = await client.put(
            upload_url,
            content=body(),
            headers={"Content-Length": str(total)},
        )
    except httpx.TransportError as e:
        raise TransportError(f"Error uploading file: {e}") from e

    if not response.is_success:
        raise TransportError(
            f"Upload target rejected the file (HTTP {response.status_code})",
            status_code=response.status_code,
        )

    if total == 0:
        report(100)

    etag = response.headers.get("ETag")
    logger.debug("Uploaded %d bytes, etag=%s", total, etag)
    return etag
