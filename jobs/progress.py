"""Progress reporting and ETA helpers for long-running handlers."""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from jobs.queue import JobQueueService

logger = logging.getLogger(__name__)

RATE_WINDOW_SECONDS = 15.0


def format_eta(seconds: float | None) -> str:
    """Render a remaining-time estimate as ``45s``, ``3m 5s`` or ``1h 2m 3s``."""
    if seconds is None or not math.isfinite(seconds) or seconds < 0:
        return "Calculating..."
    total = round(seconds)
    if total < 60:
        return f"{total}s"
    minutes, secs = divmod(total, 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m {secs}s"


def estimate_remaining_seconds(
    processed: int,
    total: int,
    elapsed_seconds: float,
) -> float | None:
    """Linear extrapolation from the average rate so far."""
    if processed <= 0 or elapsed_seconds <= 0 or total <= 0:
        return None
    rate = processed / elapsed_seconds
    return max(0, total - processed) / rate


class RateTracker:
    """Moving-average processing rate over a fixed time window."""

    def __init__(self, window_seconds: float = RATE_WINDOW_SECONDS) -> None:
        self.window_seconds = window_seconds
        self._samples: deque[tuple[float, int]] = deque()
        self._started = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started

    def record(self, processed: int, *, now: float | None = None) -> None:
        now = time.monotonic() if now is None else now
        self._samples.append((now, processed))
        cutoff = now - self.window_seconds
        # Keep one sample at or before the cutoff as the window's baseline
        while len(self._samples) > 2 and self._samples[1][0] <= cutoff:
            self._samples.popleft()

    def rate(self) -> float:
        """Items per second across the current window, 0 when unknown."""
        if len(self._samples) < 2:
            return 0.0
        first_time, first_count = self._samples[0]
        last_time, last_count = self._samples[-1]
        span = last_time - first_time
        if span <= 0:
            return 0.0
        return max(0.0, (last_count - first_count) / span)

    def eta_seconds(self, processed: int, total: int) -> float | None:
        rate = self.rate()
        if rate <= 0:
            return None
        return max(0, total - processed) / rate


class ProgressReporter:
    """Writes job progress with throttling and a non-decreasing percentage.

    Writes are skipped when they arrive within ``throttle_ms`` of the last
    one, unless the message changed, the job reached 100%, or ``force`` is
    set.
    """

    def __init__(
        self,
        job_id: str,
        queue: JobQueueService,
        *,
        throttle_ms: int = 1000,
    ) -> None:
        self.job_id = job_id
        self._queue = queue
        self._throttle_ms = max(0, int(throttle_ms))
        self._last_saved = 0.0
        self._last_message: str | None = None
        self.percentage = 0.0

    def _should_write(self, message: str, percentage: float, force: bool) -> bool:
        if force or self._throttle_ms == 0 or percentage >= 100:
            return True
        if message != self._last_message:
            return True
        return time.monotonic() - self._last_saved >= self._throttle_ms / 1000.0

    async def update(
        self,
        percentage: float,
        message: str,
        *,
        force: bool = False,
        **fields: Any,
    ) -> bool:
        """Record progress; returns whether a write happened."""
        clamped = min(100.0, max(0.0, float(percentage)))
        self.percentage = max(self.percentage, clamped)

        if not self._should_write(message, self.percentage, force):
            return False

        partial = {"message": message, "percentage": self.percentage, **fields}
        await self._queue.update_progress(self.job_id, self.percentage, partial)
        self._last_saved = time.monotonic()
        self._last_message = message
        return True
