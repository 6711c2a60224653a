"""Worker pool: starts, resizes and restarts in-process job workers."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Any

from core.exceptions import ValidationError
from jobs.worker import JobWorker

if TYPE_CHECKING:
    from jobs.config import JobQueueConfig
    from jobs.queue import JobQueueService
    from jobs.registry import JobProcessorRegistry

logger = logging.getLogger(__name__)


class WorkerPool:
    def __init__(
        self,
        queue: JobQueueService,
        registry: JobProcessorRegistry,
        config: JobQueueConfig | None = None,
    ) -> None:
        self._queue = queue
        self._registry = registry
        self.config = config or queue.config
        self._workers: dict[str, JobWorker] = {}
        self._draining: set[asyncio.Task] = set()
        self._sequence = 0
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def workers(self) -> list[JobWorker]:
        return list(self._workers.values())

    def _spawn(self) -> JobWorker:
        self._sequence += 1
        worker_id = f"worker-{self._sequence}-{uuid.uuid4().hex[:8]}"
        worker = JobWorker(worker_id, self._queue, self._registry, self.config)
        self._workers[worker_id] = worker
        worker.start()
        return worker

    async def start(self) -> None:
        if self._running:
            logger.warning("Worker pool already running")
            return
        self._running = True
        for _ in range(self.config.max_workers):
            self._spawn()
        logger.info("Worker pool started with %d workers", len(self._workers))

    async def stop(self, *, graceful: bool = True) -> None:
        self._running = False
        workers = list(self._workers.values())
        self._workers.clear()
        await asyncio.gather(
            *(worker.stop(graceful=graceful) for worker in workers),
            *self._draining,
            return_exceptions=True,
        )
        self._draining.clear()
        logger.info("Worker pool stopped (%d workers)", len(workers))

    async def resize(self, target: int) -> None:
        """Start or stop individual workers to reach ``target``.

        Workers removed by a shrink finish their in-flight job before
        exiting; only their next poll is affected.
        """
        if target < 1:
            msg = "Worker count must be at least 1"
            raise ValidationError(msg, {"target": target})

        self.config = self.config.merged(max_workers=target)
        if not self._running:
            return

        current = len(self._workers)
        if target > current:
            for _ in range(target - current):
                self._spawn()
        elif target < current:
            # Idle workers go first
            ordered = sorted(
                self._workers.values(),
                key=lambda w: (w.busy, w.worker_id),
            )
            for worker in ordered[: current - target]:
                self._workers.pop(worker.worker_id, None)
                task = asyncio.create_task(worker.stop(drain=True))
                self._draining.add(task)
                task.add_done_callback(self._draining.discard)
        logger.info("Worker pool resized from %d to %d", current, target)

    async def update_config(self, **changes: Any) -> None:
        """Apply new settings with a full restart of all workers."""
        new_config = self.config.merged(**changes)
        was_running = self._running
        if was_running:
            await self.stop()
        self.config = new_config
        self._queue.config = new_config
        if was_running:
            await self.start()
        logger.info("Worker pool configuration updated: %s", changes)

    def status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "worker_count": len(self._workers),
            "draining": len(self._draining),
            "config": self.config.model_dump(),
            "workers": [worker.describe() for worker in self._workers.values()],
        }
