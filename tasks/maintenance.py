"""Periodic maintenance for the job queue."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any

from db.models import Job, JobPriority, JobStatus, JobType
from jobs.handlers.poi_detection import owners_with_pois
from jobs.queue import JobQueueService

logger = logging.getLogger(__name__)


def _queue(ctx: dict) -> JobQueueService:
    queue = ctx.get("job_queue")
    if queue is None:
        queue = JobQueueService()
        ctx["job_queue"] = queue
    return queue


async def cleanup_stale_jobs(ctx: dict) -> dict[str, Any]:
    """Requeue or fail jobs whose worker stopped heartbeating."""
    sweep = await _queue(ctx).cleanup_stale_jobs()
    return {"status": "success", **asdict(sweep)}


async def enqueue_poi_detection(ctx: dict) -> dict[str, Any]:
    """Queue one POI detection job per owner with places, skipping owners with one pending."""
    queue = _queue(ctx)
    queued: list[str] = []
    for owner_id in await owners_with_pois():
        pending = await Job.find_one(
            {
                "owner_id": owner_id,
                "job_type": JobType.POI_DETECTION.value,
                "status": {"$in": [JobStatus.QUEUED.value, JobStatus.RUNNING.value]},
            },
        )
        if pending is not None:
            logger.debug("POI detection already pending for %s", owner_id)
            continue
        job = await queue.create_job(
            JobType.POI_DETECTION,
            {},
            JobPriority.LOW,
            owner_id,
        )
        queued.append(str(job.id))
    logger.info("Queued %d POI detection jobs", len(queued))
    return {"status": "success", "queued": queued}


async def job_queue_stats(ctx: dict) -> dict[str, Any]:
    return await _queue(ctx).get_queue_stats()
