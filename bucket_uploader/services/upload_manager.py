"""Upload manager for orchestrating whole-file uploads through the control plane."""

import asyncio
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import httpx

from bucket_uploader.config import PRODUCTION
from bucket_uploader.errors import ProtocolError, UploadCancelledError
from bucket_uploader.services.control_plane import (
    ControlPlaneClient,
    FileInfo,
    MultipartPlan,
    TransferPlan,
)
from bucket_uploader.services.gate import AdmissionGate, get_admission_gate
from bucket_uploader.services.log_service import get_log_service
from bucket_uploader.services.multipart import (
    MAX_PARALLEL_PARTS,
    MAX_PART_RETRIES,
    MultipartUploader,
)
from bucket_uploader.services.scheduler import RETRY_DELAY_SECONDS, raise_if_cancelled
from bucket_uploader.services.transfer import DEFAULT_CHUNK_SIZE, SourceFile, upload_part
from bucket_uploader.services.urls import resolve_url
from bucket_uploader.services.utils import format_file_size, parse_timestamp


ProgressHandler = Callable[[float], None]


class UploadStatus(Enum):
    """Status of an upload session."""

    PENDING = "pending"
    REQUESTING = "requesting"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class UploadOptions:
    """Per-upload options.

    ``manual_file_name`` replaces the generated file name; reusing a name
    overwrites the earlier file (CDN caches may serve the old one for a
    while). ``replace_target_url`` replaces an existing file and deletes the
    old one once the upload completes.
    """

    manual_file_name: str | None = None
    replace_target_url: str | None = None


@dataclass(frozen=True)
class UploadResult:
    """What the caller gets back for a finished upload."""

    url: str
    thumbnail_url: str | None
    size: int
    uploaded_at: datetime
    metadata: dict[str, Any]
    path: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "url": self.url,
            "thumbnail_url": self.thumbnail_url,
            "size": self.size,
            "uploaded_at": self.uploaded_at.isoformat(),
            "metadata": self.metadata,
            "path": self.path,
        }


@dataclass
class UploadSession:
    """State of one upload_file call."""

    session_id: str
    bucket_name: str
    filename: str
    file_size: int
    status: UploadStatus = UploadStatus.PENDING
    progress: float = 0.0
    multipart: bool = False
    total_parts: int = 1
    error_message: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None  # When the gate admitted the session
    completed_at: datetime | None = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def duration_seconds(self) -> float | None:
        """Time from admission to completion in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "session_id": self.session_id,
            "bucket_name": self.bucket_name,
            "filename": self.filename,
            "file_size": self.file_size,
            "file_size_formatted": format_file_size(self.file_size),
            "status": self.status.value,
            "progress_percent": self.progress,
            "multipart": self.multipart,
            "total_parts": self.total_parts,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


class UploadManager:
    """Runs upload sessions against one control plane."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_path: str,
        gate: AdmissionGate | None = None,
        environment: str = PRODUCTION,
        max_parallel_parts: int = MAX_PARALLEL_PARTS,
        max_part_retries: int = MAX_PART_RETRIES,
        retry_delay: float = RETRY_DELAY_SECONDS,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.http = http
        self.api_path = api_path.rstrip("/")
        self.environment = environment.lower()
        self.gate = gate if gate is not None else get_admission_gate()
        self.chunk_size = chunk_size
        self.control_plane = ControlPlaneClient(http, self.api_path)
        self.multipart = MultipartUploader(
            http,
            self.control_plane,
            max_parallel=max_parallel_parts,
            max_retries=max_part_retries,
            retry_delay=retry_delay,
            chunk_size=chunk_size,
        )
        self.sessions: dict[str, UploadSession] = {}
        self._lock = threading.Lock()

    def _create_session(
        self,
        bucket_name: str,
        source: SourceFile,
        cancel_event: asyncio.Event | None,
    ) -> UploadSession:
        session = UploadSession(
            session_id=str(uuid.uuid4()),
            bucket_name=bucket_name,
            filename=source.name,
            file_size=source.size,
        )
        if cancel_event is not None:
            session.cancel_event = cancel_event
        with self._lock:
            self.sessions[session.session_id] = session
        return session

    def get_session(self, session_id: str) -> UploadSession | None:
        """Get a session by ID."""
        return self.sessions.get(session_id)

    def list_sessions(self, status: UploadStatus | None = None) -> list[UploadSession]:
        """List known sessions, optionally filtered by status, oldest first."""
        with self._lock:
            sessions = list(self.sessions.values())
        if status is not None:
            sessions = [s for s in sessions if s.status == status]
        return sorted(sessions, key=lambda s: s.created_at)

    def cancel_session(self, session_id: str) -> bool:
        """Ask a running session to stop before its next part attempt.

        Returns:
            True if the session was found and still running
        """
        session = self.get_session(session_id)
        if not session or session.completed_at is not None:
            return False
        session.cancel_event.set()
        return True

    def cleanup_old_sessions(self, max_age_seconds: int = 3600) -> int:
        """Remove finished sessions older than max_age_seconds.

        Args:
            max_age_seconds: Maximum age in seconds for finished sessions

        Returns:
            Number of sessions removed
        """
        now = datetime.now(UTC)
        removed = 0

        with self._lock:
            to_remove = []
            for session_id, session in self.sessions.items():
                if session.completed_at:
                    age = (now - session.completed_at).total_seconds()
                    if age > max_age_seconds:
                        to_remove.append(session_id)

            for session_id in to_remove:
                del self.sessions[session_id]
                removed += 1

        return removed

    async def upload_file(
        self,
        bucket_name: str,
        source: SourceFile,
        input: dict[str, Any] | None = None,
        on_progress_change: ProgressHandler | None = None,
        options: UploadOptions | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> UploadResult:
        """Upload one file, waiting for a free slot in the admission gate first.

        Args:
            bucket_name: Target bucket
            source: File to upload
            input: Optional structured input for the bucket
            on_progress_change: Receives 0-100 progress; reset to 0 on failure
            options: Manual file name / replace target
            cancel_event: Optional event that stops further part attempts once set

        Returns:
            The normalized UploadResult

        Raises:
            TransportError: Network failure while talking to the control plane
                or uploading a single-part file
            ProtocolError: Unusable plan, missing ETag or rejected request
            RetryExhaustedError: A part of a multipart upload never succeeded
            UploadCancelledError: The session was cancelled
        """
        options = options or UploadOptions()
        session = self._create_session(bucket_name, source, cancel_event)
        log = get_log_service()

        def report(progress: float) -> None:
            session.progress = progress
            if on_progress_change:
                on_progress_change(progress)

        report(0)
        try:
            async with self.gate.slot():
                session.started_at = datetime.now(UTC)
                log.info(
                    "upload",
                    "upload_started",
                    f"Uploading {source.name} to {bucket_name}",
                    {
                        "session_id": session.session_id,
                        "bucket": bucket_name,
                        "filename": source.name,
                        "file_size": source.size,
                    },
                )
                result = await self._run_session(session, source, input, options, report)

            session.completed_at = datetime.now(UTC)
            log.info(
                "upload",
                "upload_completed",
                f"Uploaded {source.name} ({format_file_size(source.size)})",
                {
                    "session_id": session.session_id,
                    "bucket": bucket_name,
                    "filename": source.name,
                    "file_size": source.size,
                    "url": result.url,
                    "duration_seconds": session.duration_seconds,
                },
            )
            session.status = UploadStatus.COMPLETED
        except (Exception, asyncio.CancelledError) as e:
            session.completed_at = datetime.now(UTC)
            cancelled = isinstance(e, (UploadCancelledError, asyncio.CancelledError))
            session.status = UploadStatus.CANCELLED if cancelled else UploadStatus.FAILED
            session.error_message = str(e) or type(e).__name__
            report(0)
            log.error(
                "upload",
                "upload_failed",
                f"Failed to upload {source.name}: {session.error_message}",
                {
                    "session_id": session.session_id,
                    "bucket": bucket_name,
                    "filename": source.name,
                    "error": session.error_message,
                    "error_type": type(e).__name__,
                },
            )
            raise

        return result

    async def _run_session(
        self,
        session: UploadSession,
        source: SourceFile,
        input: dict[str, Any] | None,
        options: UploadOptions,
        report: ProgressHandler,
    ) -> UploadResult:
        """Request a plan, move the bytes and normalize the result."""
        raise_if_cancelled(session.cancel_event)
        session.status = UploadStatus.REQUESTING
        file_info = FileInfo(
            extension=source.extension,
            type=source.content_type,
            size=source.size,
            file_name=options.manual_file_name,
            replace_target_url=options.replace_target_url,
        )
        plan = await self.control_plane.request_upload(session.bucket_name, file_info, input)

        session.status = UploadStatus.UPLOADING
        if isinstance(plan, MultipartPlan):
            session.multipart = True
            session.total_parts = plan.total_parts
        get_log_service().info(
            "upload",
            "plan_received",
            f"{source.name}: {'multipart' if session.multipart else 'single-part'} upload "
            f"in {session.total_parts} part(s)",
            {
                "session_id": session.session_id,
                "bucket": session.bucket_name,
                "multipart": session.multipart,
                "total_parts": session.total_parts,
            },
        )

        if isinstance(plan, MultipartPlan):
            await self.multipart.upload(
                session.bucket_name,
                plan,
                source,
                on_progress=report,
                cancel_event=session.cancel_event,
            )
        else:
            raise_if_cancelled(session.cancel_event)
            data = await asyncio.to_thread(source.read_all)
            await upload_part(
                self.http,
                data,
                plan.upload_url,
                on_progress=report,
                chunk_size=self.chunk_size,
            )

        return self._build_result(plan)

    def _build_result(self, plan: TransferPlan) -> UploadResult:
        try:
            uploaded_at = parse_timestamp(plan.uploaded_at)
        except ValueError as e:
            raise ProtocolError(f"Invalid uploadedAt timestamp: {plan.uploaded_at!r}") from e

        return UploadResult(
            url=resolve_url(plan.access_url, self.api_path, self.environment),
            thumbnail_url=(
                resolve_url(plan.thumbnail_url, self.api_path, self.environment)
                if plan.thumbnail_url
                else None
            ),
            size=plan.size,
            uploaded_at=uploaded_at,
            metadata=dict(plan.metadata),
            path=dict(plan.path),
        )

    async def delete_file(self, bucket_name: str, url: str) -> dict[str, bool]:
        """Delete a previously uploaded file.

        Raises:
            TransportError: The request could not be sent
            ProtocolError: The control plane rejected the request
        """
        log = get_log_service()
        try:
            await self.control_plane.delete_file(bucket_name, url)
        except Exception as e:
            log.error(
                "delete",
                "delete_failed",
                f"Failed to delete {url}: {e}",
                {"bucket": bucket_name, "url": url, "error": str(e)},
            )
            raise

        log.info(
            "delete",
            "file_deleted",
            f"Deleted {url}",
            {"bucket": bucket_name, "url": url},
        )
        return {"success": True}
