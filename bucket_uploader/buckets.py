"""Per-bucket upload and delete entry points."""

import asyncio
from pathlib import Path
from types import TracebackType
from typing import Any

from bucket_uploader.errors import UnknownBucketError
from bucket_uploader.services.transfer import SourceFile
from bucket_uploader.services.upload_manager import (
    ProgressHandler,
    UploadManager,
    UploadOptions,
    UploadResult,
)


class BucketClient:
    """Upload and delete functions bound to one bucket name."""

    def __init__(self, name: str, manager: UploadManager) -> None:
        self.name = name
        self.manager = manager

    async def upload(
        self,
        file: SourceFile | str | Path,
        input: dict[str, Any] | None = None,
        on_progress_change: ProgressHandler | None = None,
        options: UploadOptions | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> UploadResult:
        """Upload a file (a SourceFile or a path on disk) to this bucket."""
        source = file if isinstance(file, SourceFile) else SourceFile.from_path(file)
        return await self.manager.upload_file(
            self.name,
            source,
            input=input,
            on_progress_change=on_progress_change,
            options=options,
            cancel_event=cancel_event,
        )

    async def delete(self, url: str) -> dict[str, bool]:
        """Delete a file previously uploaded to this bucket."""
        return await self.manager.delete_file(self.name, url)

    def __repr__(self) -> str:
        return f"BucketClient(name={self.name!r})"


class StorageClient:
    """Maps bucket names to BucketClients built once from a static bucket list."""

    def __init__(
        self,
        manager: UploadManager,
        bucket_names: list[str],
        owns_http: bool = False,
    ) -> None:
        self.manager = manager
        self._owns_http = owns_http
        self._buckets = {name: BucketClient(name, manager) for name in bucket_names}

    @property
    def bucket_names(self) -> list[str]:
        return list(self._buckets)

    def bucket(self, name: str) -> BucketClient:
        """Look up a bucket by name.

        Raises:
            UnknownBucketError: The name is not in the configured bucket list
        """
        try:
            return self._buckets[name]
        except KeyError:
            raise UnknownBucketError(name) from None

    def __getitem__(self, name: str) -> BucketClient:
        return self.bucket(name)

    def __contains__(self, name: object) -> bool:
        return name in self._buckets

    async def aclose(self) -> None:
        """Close the HTTP client if this StorageClient created it."""
        if self._owns_http:
            await self.manager.http.aclose()

    async def __aenter__(self) -> "StorageClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
