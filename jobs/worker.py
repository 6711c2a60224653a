"""Polling job worker.

Each worker is an independent loop: heartbeat, try to claim a job, run it
through the registry, record the outcome, sleep ``poll_interval``. Workers
share nothing in memory; the job store is the only coordination point.
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
from typing import TYPE_CHECKING, Any

from core.exceptions import ConflictError, ResourceNotFoundError, ValidationError
from db.models import Job, WorkerStatus
from jobs.cancellation import JobCancelled

if TYPE_CHECKING:
    from jobs.config import JobQueueConfig
    from jobs.queue import JobQueueService
    from jobs.registry import JobProcessorRegistry

logger = logging.getLogger(__name__)

SHUTDOWN_REQUEUE_MESSAGE = "Worker shutdown during job execution"
FORCED_STOP_MESSAGE = "Worker stopped (forced shutdown)"

# Raised for bad input or state; retrying cannot help
OPERATIONAL_ERRORS = (ValidationError, ResourceNotFoundError, ConflictError)


class JobWorker:
    def __init__(
        self,
        worker_id: str,
        queue: JobQueueService,
        registry: JobProcessorRegistry,
        config: JobQueueConfig,
    ) -> None:
        self.worker_id = worker_id
        self._queue = queue
        self._registry = registry
        self._config = config

        self._task: asyncio.Task | None = None
        self._job_task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self._stop_reason: str | None = None
        self._running = False
        self.current_job_id: str | None = None
        self.jobs_processed = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def busy(self) -> bool:
        return self.current_job_id is not None

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            logger.warning("Worker %s already running", self.worker_id)
            return
        self._running = True
        self._stop_event.clear()
        self._stop_reason = None
        self._task = asyncio.create_task(self._run(), name=self.worker_id)
        logger.info("Worker %s started", self.worker_id)

    async def stop(
        self,
        *,
        graceful: bool = True,
        drain: bool = False,
    ) -> None:
        """Stop polling and wind down the in-flight job, if any.

        A graceful stop waits up to the shutdown grace period before the
        job is interrupted and requeued; with ``drain`` it waits for the job
        however long it takes. A forced stop interrupts at once.
        """
        self._running = False
        self._stop_event.set()
        task = self._task
        if task is None:
            return

        if graceful:
            timeout = None if drain else self._config.shutdown_grace_period
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
            except TimeoutError:
                logger.warning(
                    "Worker %s: job %s still running after %.0fs grace period",
                    self.worker_id,
                    self.current_job_id,
                    timeout,
                )
                self._interrupt(SHUTDOWN_REQUEUE_MESSAGE)
        else:
            self._interrupt(FORCED_STOP_MESSAGE)

        await asyncio.gather(task, return_exceptions=True)
        self._task = None
        await self._heartbeat(WorkerStatus.STOPPED)
        logger.info("Worker %s stopped", self.worker_id)

    def _interrupt(self, reason: str) -> None:
        self._stop_reason = reason
        if self._job_task is not None and not self._job_task.done():
            self._job_task.cancel()

    async def _heartbeat(self, status: WorkerStatus, job_id: str | None = None) -> None:
        try:
            await self._queue.record_heartbeat(
                self.worker_id,
                status,
                job_id,
                hostname=socket.gethostname(),
                pid=os.getpid(),
            )
        except Exception:
            logger.exception("Worker %s failed to record heartbeat", self.worker_id)

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            pass

    async def _run(self) -> None:
        while self._running:
            await self._heartbeat(WorkerStatus.IDLE)
            try:
                job = await self._queue.claim_next_job(self.worker_id)
            except Exception:
                logger.exception("Worker %s failed to claim a job", self.worker_id)
                job = None

            if job is not None:
                await self._execute(job)
            if self._running:
                await self._sleep(self._config.poll_interval)

    async def _execute(self, job: Job) -> None:
        job_id = str(job.id)
        self.current_job_id = job_id
        await self._heartbeat(WorkerStatus.BUSY, job_id)
        self._job_task = asyncio.create_task(
            self._registry.process(job, self._queue),
            name=f"{self.worker_id}:{job_id}",
        )
        if self._stop_reason is not None:
            self._job_task.cancel()
        try:
            result: dict[str, Any] = await self._job_task
        except JobCancelled:
            logger.info("Worker %s: job %s cancelled", self.worker_id, job_id)
        except asyncio.CancelledError:
            if self._stop_reason is None:
                raise
            logger.warning(
                "Worker %s: job %s interrupted (%s)",
                self.worker_id,
                job_id,
                self._stop_reason,
            )
            await self._queue.fail_job(job_id, self._stop_reason)
        except Exception as exc:
            logger.exception(
                "Worker %s: job %s (%s) failed",
                self.worker_id,
                job_id,
                job.job_type.value,
            )
            await self._queue.fail_job(
                job_id,
                str(exc) or type(exc).__name__,
                permanent=isinstance(exc, OPERATIONAL_ERRORS),
            )
        else:
            await self._queue.complete_job(job_id, result)
        finally:
            self.jobs_processed += 1
            self._job_task = None
            self.current_job_id = None

    def describe(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "running": self._running,
            "current_job": self.current_job_id,
            "jobs_processed": self.jobs_processed,
        }
