"""Process-wide limit on concurrent whole-file upload sessions."""

import asyncio
import logging
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from bucket_uploader.config import get_settings

logger = logging.getLogger(__name__)

# How often a waiting session re-checks for a free slot
POLL_INTERVAL_SECONDS = 0.3


class AdmissionGate:
    """Counts active upload sessions and holds new ones back at the limit.

    A session is admitted when fewer than ``max_concurrent`` sessions are
    active, or when none are (so a limit of 0 or less cannot deadlock).
    The check and the increment happen under one lock with no suspension
    point in between.
    """

    def __init__(
        self,
        max_concurrent: int = 5,
        poll_interval: float = POLL_INTERVAL_SECONDS,
    ) -> None:
        self.max_concurrent = max_concurrent
        self.poll_interval = poll_interval
        self._active = 0
        self._lock = threading.Lock()

    @property
    def active(self) -> int:
        """Number of sessions currently admitted."""
        with self._lock:
            return self._active

    def try_acquire(self) -> bool:
        """Take a slot if one is free, without waiting."""
        with self._lock:
            if self._active < self.max_concurrent or self._active == 0:
                self._active += 1
                return True
            return False

    async def acquire(self) -> None:
        """Wait until a slot is free, then take it."""
        waited = False
        while not self.try_acquire():
            if not waited:
                logger.debug(
                    "Upload gate full (%d/%d), waiting for a free slot",
                    self.active,
                    self.max_concurrent,
                )
                waited = True
            await asyncio.sleep(self.poll_interval)

    def release(self) -> None:
        """Give a slot back. Never drops the count below zero."""
        with self._lock:
            if self._active > 0:
                self._active -= 1
            else:
                logger.warning("Upload gate released more often than acquired")

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold a slot for the duration of the block."""
        await self.acquire()
        try:
            yield
        finally:
            self.release()


# Module-level singleton accessor
_admission_gate: AdmissionGate | None = None


def get_admission_gate() -> AdmissionGate:
    """Get the process-wide AdmissionGate, sized from settings."""
    global _admission_gate
    if _admission_gate is None:
        settings = get_settings()
        _admission_gate = AdmissionGate(
            max_concurrent=settings.max_concurrent_uploads,
            poll_interval=settings.gate_poll_interval,
        )
    return _admission_gate
