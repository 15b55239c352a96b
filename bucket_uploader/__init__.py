"""Client-side upload engine for a hosted object-storage service."""

import httpx

from bucket_uploader.buckets import BucketClient, StorageClient
from bucket_uploader.config import get_package_version, get_settings
from bucket_uploader.errors import (
    ProtocolError,
    RetryExhaustedError,
    TransferError,
    TransportError,
    UnknownBucketError,
    UploadCancelledError,
    UploadError,
)
from bucket_uploader.services.gate import AdmissionGate, get_admission_gate
from bucket_uploader.services.log_service import get_log_service
from bucket_uploader.services.transfer import SourceFile
from bucket_uploader.services.upload_manager import UploadManager, UploadOptions, UploadResult

__all__ = [
    "AdmissionGate",
    "BucketClient",
    "ProtocolError",
    "RetryExhaustedError",
    "SourceFile",
    "StorageClient",
    "TransferError",
    "TransportError",
    "UnknownBucketError",
    "UploadCancelledError",
    "UploadError",
    "UploadOptions",
    "UploadResult",
    "create_client",
]


def create_client(
    api_path: str | None = None,
    buckets: list[str] | None = None,
    max_concurrent_uploads: int | None = None,
    environment: str | None = None,
    http: httpx.AsyncClient | None = None,
) -> StorageClient:
    """Create and configure a StorageClient.

    Unset arguments fall back to settings. Without ``max_concurrent_uploads``
    the client shares the process-wide admission gate; with it, the client
    gets a gate of its own. An HTTP client created here is closed by
    ``StorageClient.aclose()``.
    """
    settings = get_settings()
    version = get_package_version()

    if max_concurrent_uploads is None:
        gate = get_admission_gate()
    else:
        gate = AdmissionGate(
            max_concurrent=max_concurrent_uploads,
            poll_interval=settings.gate_poll_interval,
        )

    owns_http = http is None
    if http is None:
        http = httpx.AsyncClient(
            timeout=settings.request_timeout_seconds,
            headers={"User-Agent": f"bucket-uploader/{version}"},
        )

    manager = UploadManager(
        http,
        api_path or settings.api_path,
        gate=gate,
        environment=(environment or settings.environment).lower(),
        max_parallel_parts=settings.max_parallel_parts,
        max_part_retries=settings.max_part_retries,
        retry_delay=settings.retry_delay_seconds,
    )
    bucket_names = buckets if buckets is not None else settings.buckets

    log = get_log_service()
    log.info(
        "app",
        "client_created",
        f"Storage client created for {len(bucket_names)} buckets (v{version})",
        {"version": version, "api_path": manager.api_path, "buckets": bucket_names},
    )

    return StorageClient(manager, bucket_names, owns_http=owns_http)
