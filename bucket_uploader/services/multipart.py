"""Multipart upload orchestration.

Slices a file into the parts listed by a multipart plan, uploads them through
the bounded scheduler with per-part retry, aggregates their progress and,
once every part is acknowledged, reports the completed parts to the control
plane. Finalization never happens with a partial part set.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from bucket_uploader.errors import ProtocolError
from bucket_uploader.services.control_plane import ControlPlaneClient, MultipartPlan
from bucket_uploader.services.log_service import get_log_service
from bucket_uploader.services.progress import ProgressAggregator
from bucket_uploader.services.scheduler import RETRY_DELAY_SECONDS, run_bounded
from bucket_uploader.services.transfer import DEFAULT_CHUNK_SIZE, SourceFile, upload_part
from bucket_uploader.services.utils import format_file_size

logger = logging.getLogger(__name__)

MAX_PARALLEL_PARTS = 5
MAX_PART_RETRIES = 10


@dataclass(frozen=True)
class PartJob:
    """One byte range of the source file and where to send it."""

    part_number: int
    start: int
    end: int
    upload_url: str

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class CompletedPart:
    """A part acknowledged by its upload target."""

    part_number: int
    etag: str

    def to_dict(self) -> dict[str, Any]:
        return {"partNumber": self.part_number, "eTag": self.etag}


def build_part_jobs(plan: MultipartPlan, file_size: int) -> list[PartJob]:
    """Derive one PartJob per plan part.

    Part ``n`` covers ``[(n - 1) * part_size, n * part_size)``; the last part
    is cut short at the end of the file.

    Raises:
        ProtocolError: A part would start past the end of a non-empty file
    """
    jobs = []
    for part in plan.parts:
        start = (part.part_number - 1) * plan.part_size
        end = min(part.part_number * plan.part_size, file_size)
        if file_size > 0 and start >= file_size:
            raise ProtocolError(
                f"Part {part.part_number} starts past the end of the file "
                f"({start} >= {file_size})"
            )
        jobs.append(
            PartJob(
                part_number=part.part_number,
                start=start,
                end=max(start, end),
                upload_url=part.upload_url,
            )
        )
    return jobs


def _check_complete(completed: list[CompletedPart], total_parts: int) -> None:
    numbers = {p.part_number for p in completed}
    if len(completed) != total_parts or len(numbers) != total_parts:
        raise ProtocolError(
            f"Expected {total_parts} completed parts, got {len(numbers)} distinct"
        )


class MultipartUploader:
    """Uploads the parts of a multipart plan and finalizes the transfer."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        control_plane: ControlPlaneClient,
        max_parallel: int = MAX_PARALLEL_PARTS,
        max_retries: int = MAX_PART_RETRIES,
        retry_delay: float = RETRY_DELAY_SECONDS,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.http = http
        self.control_plane = control_plane
        self.max_parallel = max_parallel
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.chunk_size = chunk_size

    async def upload(
        self,
        bucket_name: str,
        plan: MultipartPlan,
        source: SourceFile,
        on_progress: Callable[[float], None] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[CompletedPart]:
        """Upload every part of ``source`` and complete the multipart upload.

        Args:
            bucket_name: Bucket the file belongs to
            plan: Multipart plan issued by the control plane
            source: File being uploaded
            on_progress: Receives the aggregated 0-100 progress
            cancel_event: Optional event that stops further attempts once set

        Returns:
            The completed parts, in plan order

        Raises:
            RetryExhaustedError: A part failed on every allowed attempt, including
                parts whose response carried no ETag
            ProtocolError: The control plane rejected the completion request
            TransportError: The completion request could not be sent
        """
        log = get_log_service()
        jobs = build_part_jobs(plan, source.size)
        aggregator = ProgressAggregator(plan.total_parts, on_progress)

        async def upload_one(job: PartJob) -> CompletedPart:
            data = await asyncio.to_thread(source.read_range, job.start, job.end)
            etag = await upload_part(
                self.http,
                data,
                job.upload_url,
                on_progress=aggregator.reporter(job.part_number),
                chunk_size=self.chunk_size,
            )
            if not etag:
                raise ProtocolError("Could not get ETag from multipart response")
            return CompletedPart(part_number=job.part_number, etag=etag)

        def on_retry(index: int, attempt: int, error: Exception) -> None:
            job = jobs[index]
            log.warning(
                "multipart",
                "part_retry",
                f"Part {job.part_number}/{plan.total_parts} failed (attempt {attempt}): {error}",
                {
                    "upload_id": plan.upload_id,
                    "key": plan.key,
                    "part_number": job.part_number,
                    "attempt": attempt,
                    "error": str(error),
                },
            )

        logger.debug(
            "Uploading %s in %d parts of %s",
            source.name,
            plan.total_parts,
            format_file_size(plan.part_size),
        )
        completed = await run_bounded(
            jobs,
            upload_one,
            max_parallel=self.max_parallel,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            cancel_event=cancel_event,
            on_retry=on_retry,
        )

        _check_complete(completed, plan.total_parts)
        await self.control_plane.complete_multipart_upload(
            bucket_name,
            plan.upload_id,
            plan.key,
            [p.to_dict() for p in completed],
        )

        log.info(
            "multipart",
            "multipart_completed",
            f"Completed multipart upload of {source.name} ({plan.total_parts} parts)",
            {
                "bucket": bucket_name,
                "upload_id": plan.upload_id,
                "key": plan.key,
                "total_parts": plan.total_parts,
                "size": source.size,
            },
        )
        return completed
