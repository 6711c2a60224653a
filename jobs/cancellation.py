"""Cooperative cancellation for running jobs.

Cancelling a job only flips its stored status. Handlers observe that by
awaiting ``token.raise_if_cancelled()`` at their checkpoints.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from db.models import JobStatus

if TYPE_CHECKING:
    from jobs.queue import JobQueueService

logger = logging.getLogger(__name__)


class JobCancelled(Exception):
    """Raised inside a handler once its job has been cancelled."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} was cancelled")
        self.job_id = job_id


class CancellationToken:
    """Re-reads the job status, at most once per ``check_interval`` seconds."""

    def __init__(
        self,
        job_id: str,
        queue: JobQueueService,
        *,
        check_interval: float = 1.0,
    ) -> None:
        self.job_id = job_id
        self._queue = queue
        self._check_interval = check_interval
        self._last_check = 0.0
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def is_cancelled(self) -> bool:
        if self._cancelled:
            return True
        now = time.monotonic()
        if self._last_check and now - self._last_check < self._check_interval:
            return False
        self._last_check = now
        status = await self._queue.get_job_status(self.job_id)
        # A deleted job is treated like a cancelled one
        if status is None or status == JobStatus.CANCELLED:
            logger.info("Job %s observed cancellation", self.job_id)
            self._cancelled = True
        return self._cancelled

    async def raise_if_cancelled(self) -> None:
        if await self.is_cancelled():
            raise JobCancelled(self.job_id)
