"""Progress aggregation across the parts of one multipart transfer."""

import threading
from collections.abc import Callable


class ProgressAggregator:
    """Combines per-part percentages into one 0-100 figure.

    Each part's last reported percentage is kept; the overall figure is their
    sum divided by the part count, rounded to 2 decimals once at the end so a
    fully uploaded file reads exactly 100. Parts that have not reported yet
    count as 0. Input is trusted as-is: no clamping or reordering.
    """

    def __init__(
        self,
        total_parts: int,
        on_progress: Callable[[float], None] | None = None,
    ) -> None:
        if total_parts < 1:
            raise ValueError(f"total_parts must be at least 1, got {total_parts}")
        self.total_parts = total_parts
        self.on_progress = on_progress
        self._parts: dict[int, float] = {}
        self._lock = threading.Lock()

    @property
    def progress(self) -> float:
        """Current overall progress percentage."""
        with self._lock:
            return self._compute()

    def part_progress(self, part_number: int) -> float:
        """Last known percentage for one part."""
        with self._lock:
            return self._parts.get(part_number, 0.0)

    def _compute(self) -> float:
        return round(sum(self._parts.values()) / self.total_parts, 2)

    def update(self, part_number: int, percent: float) -> float:
        """Record a part's progress and emit the new overall figure.

        Args:
            part_number: 1-based part number
            percent: Progress of that part, 0-100

        Returns:
            Overall progress after the update
        """
        with self._lock:
            self._parts[part_number] = percent
            overall = self._compute()
        if self.on_progress:
            self.on_progress(overall)
        return overall

    def reporter(self, part_number: int) -> Callable[[float], None]:
        """Build a progress callback bound to one part."""

        def report(percent: float) -> None:
            self.update(part_number, percent)

        return report
