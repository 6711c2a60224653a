"""Job processor registry.

Maps every ``JobType`` to its handler. The mapping is checked for
completeness at import time, so a job type without a handler fails fast
instead of surfacing as a runtime lookup error inside a worker.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any

from db.models import JobType
from jobs.cancellation import CancellationToken
from jobs.context import JobContext, JobServices
from jobs.handlers.data_export import process_data_export
from jobs.handlers.data_import import process_data_import
from jobs.handlers.poi_detection import process_poi_detection
from jobs.handlers.reverse_geocoding import process_reverse_geocoding
from jobs.handlers.trip_generation import process_trip_generation
from jobs.progress import ProgressReporter

if TYPE_CHECKING:
    from db.models import Job
    from jobs.queue import JobQueueService

logger = logging.getLogger(__name__)

JobHandler = Callable[[JobContext], Awaitable[dict[str, Any]]]

HANDLERS: dict[JobType, JobHandler] = {
    JobType.REVERSE_GEOCODING_MISSING: process_reverse_geocoding,
    JobType.DATA_IMPORT: process_data_import,
    JobType.DATA_EXPORT: process_data_export,
    JobType.TRIP_GENERATION: process_trip_generation,
    JobType.POI_DETECTION: process_poi_detection,
}


def _check_exhaustive(handlers: Mapping[JobType, JobHandler]) -> None:
    missing = sorted(t.value for t in set(JobType) - set(handlers))
    if missing:
        msg = f"No handler registered for job types: {', '.join(missing)}"
        raise RuntimeError(msg)


_check_exhaustive(HANDLERS)


class JobProcessorRegistry:
    def __init__(
        self,
        services: JobServices | None = None,
        *,
        overrides: Mapping[JobType, JobHandler] | None = None,
        progress_throttle_ms: int = 1000,
        cancellation_check_interval: float = 1.0,
    ) -> None:
        self._services = services
        self._handlers: dict[JobType, JobHandler] = {**HANDLERS, **(overrides or {})}
        self._progress_throttle_ms = progress_throttle_ms
        self._cancellation_check_interval = cancellation_check_interval

    @property
    def services(self) -> JobServices:
        if self._services is None:
            self._services = JobServices()
        return self._services

    def handler_for(self, job_type: JobType) -> JobHandler:
        return self._handlers[JobType(job_type)]

    def build_context(self, job: Job, queue: JobQueueService) -> JobContext:
        job_id = str(job.id)
        return JobContext(
            job=job,
            queue=queue,
            token=CancellationToken(
                job_id,
                queue,
                check_interval=self._cancellation_check_interval,
            ),
            progress=ProgressReporter(
                job_id,
                queue,
                throttle_ms=self._progress_throttle_ms,
            ),
            services=self.services,
        )

    async def process(self, job: Job, queue: JobQueueService) -> dict[str, Any]:
        handler = self.handler_for(job.job_type)
        logger.info(
            "Processing %s job %s (attempt %d)",
            job.job_type.value,
            job.id,
            job.retry_count + 1,
        )
        result = await handler(self.build_context(job, queue))
        return result or {}
