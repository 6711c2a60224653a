"""Durable background job queue, worker pool and job handlers."""

from jobs.cancellation import CancellationToken, JobCancelled
from jobs.config import JobQueueConfig
from jobs.queue import JobQueueService

__all__ = [
    "CancellationToken",
    "JobCancelled",
    "JobQueueConfig",
    "JobQueueService",
]
