"""
Job queue service.

All coordination between workers goes through the ``jobs`` collection. The
only cross-worker safety mechanism is the conditional update in
``claim_next_job``: the write is scoped to ``{_id, status: queued}`` and a
zero modified count means another worker won the race.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from beanie import PydanticObjectId
from bson.errors import InvalidId

from core.exceptions import ConflictError, ResourceNotFoundError, ValidationError
from db.models import (
    Job,
    JobPriority,
    JobStatus,
    JobType,
    WorkerRecord,
    WorkerStatus,
)
from jobs.config import JobQueueConfig

logger = logging.getLogger(__name__)

STALE_JOB_MESSAGE = "Job timeout exceeded - worker may have died"
_ACTIVE_STATUSES = [JobStatus.QUEUED.value, JobStatus.RUNNING.value]


@dataclass
class StaleSweepResult:
    requeued: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    workers_stopped: int = 0


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _object_id(job_id: str | PydanticObjectId) -> PydanticObjectId:
    if isinstance(job_id, PydanticObjectId):
        return job_id
    try:
        return PydanticObjectId(str(job_id))
    except (InvalidId, TypeError) as exc:
        msg = f"Invalid job id: {job_id}"
        raise ValidationError(msg, {"job_id": str(job_id)}) from exc


def _modified(result: Any) -> int:
    return int(getattr(result, "modified_count", 0) or 0)


class JobQueueService:
    """Atomic create/claim/progress/retry/cleanup operations over Job documents."""

    def __init__(self, config: JobQueueConfig | None = None) -> None:
        self.config = config or JobQueueConfig()

    # ------------------------------------------------------------------
    # Creation and lookup
    # ------------------------------------------------------------------

    async def create_job(
        self,
        job_type: JobType | str,
        payload: dict[str, Any] | None = None,
        priority: JobPriority | str = JobPriority.NORMAL,
        owner_id: str | None = None,
        *,
        max_retries: int | None = None,
    ) -> Job:
        try:
            job_type = JobType(job_type)
        except ValueError as exc:
            msg = f"Unknown job type: {job_type}"
            raise ValidationError(msg, {"job_type": str(job_type)}) from exc
        try:
            priority = JobPriority(priority)
        except ValueError as exc:
            msg = f"Unknown job priority: {priority}"
            raise ValidationError(msg, {"priority": str(priority)}) from exc
        if payload is not None and not isinstance(payload, dict):
            msg = "Job payload must be a mapping"
            raise ValidationError(msg, {"job_type": job_type.value})
        if max_retries is not None and max_retries < 0:
            msg = "max_retries must be >= 0"
            raise ValidationError(msg, {"max_retries": max_retries})

        now = _utcnow()
        job = Job(
            job_type=job_type,
            status=JobStatus.QUEUED,
            priority=priority,
            priority_rank=priority.rank,
            payload=payload or {},
            progress=0.0,
            max_retries=(
                self.config.retry_attempts if max_retries is None else max_retries
            ),
            owner_id=owner_id,
            created_at=now,
            updated_at=now,
        )
        await job.insert()
        logger.info(
            "Created %s job %s (priority=%s, owner=%s)",
            job_type.value,
            job.id,
            priority.value,
            owner_id,
        )
        return job

    async def get_job(self, job_id: str | PydanticObjectId) -> Job:
        job = await Job.get(_object_id(job_id))
        if job is None:
            msg = f"Job {job_id} not found"
            raise ResourceNotFoundError(msg, {"job_id": str(job_id)})
        return job

    async def get_job_status(self, job_id: str | PydanticObjectId) -> JobStatus | None:
        job = await Job.get(_object_id(job_id))
        return job.status if job else None

    async def get_jobs(
        self,
        owner_id: str,
        *,
        status: JobStatus | str | None = None,
        limit: int = 50,
    ) -> list[Job]:
        query: dict[str, Any] = {"owner_id": owner_id}
        if status is not None:
            query["status"] = JobStatus(status).value
        return await Job.find(query).sort("-created_at").limit(limit).to_list()

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------

    async def claim_next_job(self, worker_id: str) -> Job | None:
        """Claim the highest-priority, oldest queued job for ``worker_id``.

        Returns None when nothing is queued or when another worker claimed
        the selected job first; callers simply poll again.
        """
        now = _utcnow()
        candidate = (
            await Job.find(
                {
                    "status": JobStatus.QUEUED.value,
                    "$or": [
                        {"available_at": None},
                        {"available_at": {"$lte": now}},
                    ],
                },
            )
            .sort("-priority_rank", "created_at")
            .first_or_none()
        )
        if candidate is None:
            return None

        result = await Job.find_one(
            {"_id": candidate.id, "status": JobStatus.QUEUED.value},
        ).update(
            {
                "$set": {
                    "status": JobStatus.RUNNING.value,
                    "worker_id": worker_id,
                    "started_at": now,
                    "updated_at": now,
                },
            },
        )
        if _modified(result) == 0:
            logger.debug(
                "Worker %s lost the claim race for job %s",
                worker_id,
                candidate.id,
            )
            return None

        logger.info(
            "Worker %s claimed %s job %s",
            worker_id,
            candidate.job_type.value,
            candidate.id,
        )
        return await Job.get(candidate.id)

    # ------------------------------------------------------------------
    # Progress and completion
    # ------------------------------------------------------------------

    async def update_progress(
        self,
        job_id: str | PydanticObjectId,
        progress: float,
        partial_result: dict[str, Any] | None = None,
    ) -> None:
        """Merge ``partial_result`` keys into the job's accumulated result."""
        update: dict[str, Any] = {
            "progress": float(progress),
            "updated_at": _utcnow(),
        }
        for key, value in (partial_result or {}).items():
            update[f"result.{key}"] = value
        await Job.find_one({"_id": _object_id(job_id)}).update({"$set": update})

    async def complete_job(
        self,
        job_id: str | PydanticObjectId,
        result: dict[str, Any] | None = None,
    ) -> bool:
        """Mark a job completed. A job that is already terminal is left alone."""
        now = _utcnow()
        update: dict[str, Any] = {
            "status": JobStatus.COMPLETED.value,
            "progress": 100.0,
            "completed_at": now,
            "updated_at": now,
        }
        for key, value in (result or {}).items():
            update[f"result.{key}"] = value
        outcome = await Job.find_one(
            {"_id": _object_id(job_id), "status": {"$in": _ACTIVE_STATUSES}},
        ).update({"$set": update})
        if _modified(outcome) == 0:
            logger.warning("Job %s was not active; completion ignored", job_id)
            return False
        logger.info("Job %s completed", job_id)
        return True

    async def fail_job(
        self,
        job_id: str | PydanticObjectId,
        message: str,
        *,
        permanent: bool = False,
    ) -> Job | None:
        """Route a failure through the retry path or the terminal path.

        Retries keep accumulating ``retry_count``; once it reaches
        ``max_retries`` the next failure is terminal. ``permanent`` failures
        (operational errors) skip the retry path.
        """
        oid = _object_id(job_id)
        job = await Job.get(oid)
        if job is None:
            logger.warning("Cannot fail missing job %s", job_id)
            return None
        if job.status.is_terminal:
            logger.info(
                "Job %s already %s; ignoring failure: %s",
                job_id,
                job.status.value,
                message,
            )
            return job

        now = _utcnow()
        scope = {
            "_id": oid,
            "status": {"$in": _ACTIVE_STATUSES},
            "retry_count": job.retry_count,
        }
        if not permanent and job.retry_count < job.max_retries:
            available_at = (
                now + timedelta(seconds=self.config.retry_delay)
                if self.config.retry_delay
                else None
            )
            outcome = await Job.find_one(scope).update(
                {
                    "$set": {
                        "status": JobStatus.QUEUED.value,
                        "retry_count": job.retry_count + 1,
                        "error": message,
                        "worker_id": None,
                        "started_at": None,
                        "progress": 0.0,
                        "available_at": available_at,
                        "updated_at": now,
                    },
                },
            )
            if _modified(outcome):
                logger.warning(
                    "Job %s failed (attempt %d/%d), requeued: %s",
                    job_id,
                    job.retry_count + 1,
                    job.max_retries + 1,
                    message,
                )
        else:
            outcome = await Job.find_one(scope).update(
                {
                    "$set": {
                        "status": JobStatus.FAILED.value,
                        "error": (
                            message
                            if permanent
                            else f"Failed after {job.max_retries} attempts. "
                            f"Last error: {message}"
                        ),
                        "completed_at": now,
                        "updated_at": now,
                    },
                },
            )
            if _modified(outcome):
                logger.error(
                    "Job %s permanently failed after %d retries: %s",
                    job_id,
                    job.max_retries,
                    message,
                )

        if _modified(outcome) == 0:
            logger.info("Job %s changed concurrently; failure not applied", job_id)
        return await Job.get(oid)

    async def cancel_job(self, job_id: str | PydanticObjectId) -> Job:
        """Flag a job cancelled. Running handlers notice at their next checkpoint."""
        oid = _object_id(job_id)
        job = await self.get_job(oid)
        if job.status.is_terminal:
            msg = f"Job {job_id} is already {job.status.value}"
            raise ConflictError(
                msg,
                {"job_id": str(job_id), "status": job.status.value},
            )

        now = _utcnow()
        outcome = await Job.find_one(
            {"_id": oid, "status": {"$in": _ACTIVE_STATUSES}},
        ).update(
            {
                "$set": {
                    "status": JobStatus.CANCELLED.value,
                    "completed_at": now,
                    "updated_at": now,
                },
            },
        )
        if _modified(outcome) == 0:
            current = await self.get_job(oid)
            msg = f"Job {job_id} is already {current.status.value}"
            raise ConflictError(
                msg,
                {"job_id": str(job_id), "status": current.status.value},
            )
        logger.info("Job %s cancelled", job_id)
        return await self.get_job(oid)

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    async def record_heartbeat(
        self,
        worker_id: str,
        status: WorkerStatus,
        current_job: str | None = None,
        **extra: Any,
    ) -> None:
        now = _utcnow()
        await WorkerRecord.find_one({"worker_id": worker_id}).upsert(
            {
                "$set": {
                    "status": status.value,
                    "current_job": current_job,
                    "last_heartbeat": now,
                    **extra,
                },
            },
            on_insert=WorkerRecord(
                worker_id=worker_id,
                status=status,
                current_job=current_job,
                last_heartbeat=now,
                started_at=now,
                **extra,
            ),
        )

    async def cleanup_stale_jobs(self, timeout: float | None = None) -> StaleSweepResult:
        """Fail jobs stuck running past ``timeout`` and stop silent workers."""
        timeout = self.config.job_timeout if timeout is None else timeout
        now = _utcnow()
        sweep = StaleSweepResult()

        stale_jobs = await Job.find(
            {
                "status": JobStatus.RUNNING.value,
                "started_at": {"$lt": now - timedelta(seconds=timeout)},
            },
        ).to_list()
        for job in stale_jobs:
            logger.warning(
                "Job %s stuck running on %s since %s",
                job.id,
                job.worker_id,
                job.started_at,
            )
            updated = await self.fail_job(job.id, STALE_JOB_MESSAGE)
            if updated is None:
                continue
            if updated.status == JobStatus.QUEUED:
                sweep.requeued.append(str(job.id))
            elif updated.status == JobStatus.FAILED:
                sweep.failed.append(str(job.id))

        worker_cutoff = now - timedelta(seconds=self.config.worker_stale_after)
        outcome = await WorkerRecord.find(
            {
                "last_heartbeat": {"$lt": worker_cutoff},
                "status": {"$ne": WorkerStatus.STOPPED.value},
            },
        ).update(
            {
                "$set": {
                    "status": WorkerStatus.STOPPED.value,
                    "current_job": None,
                },
            },
        )
        sweep.workers_stopped = _modified(outcome)

        if stale_jobs or sweep.workers_stopped:
            logger.info(
                "Stale sweep: %d requeued, %d failed, %d workers stopped",
                len(sweep.requeued),
                len(sweep.failed),
                sweep.workers_stopped,
            )
        return sweep

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def get_queue_stats(self) -> dict[str, int]:
        stats: dict[str, int] = {}
        for status in JobStatus:
            stats[status.value] = await Job.find({"status": status.value}).count()
        active_cutoff = _utcnow() - timedelta(seconds=self.config.worker_active_window)
        stats["active_workers"] = await WorkerRecord.find(
            {
                "last_heartbeat": {"$gte": active_cutoff},
                "status": {"$ne": WorkerStatus.STOPPED.value},
            },
        ).count()
        return stats

    async def get_workers(self) -> list[WorkerRecord]:
        return await WorkerRecord.find_all().sort("worker_id").to_list()
