from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from core.exceptions import ConflictError, ResourceNotFoundError, ValidationError
from db.models import Job, JobPriority, JobStatus, JobType, WorkerRecord, WorkerStatus
from jobs.config import JobQueueConfig
from jobs.queue import STALE_JOB_MESSAGE, JobQueueService


@pytest.fixture
def queue() -> JobQueueService:
    return JobQueueService(JobQueueConfig(retry_delay=0))


async def _set_fields(job: Job, **fields) -> None:
    await Job.find_one({"_id": job.id}).update({"$set": fields})


@pytest.mark.asyncio
async def test_create_job_defaults(beanie_db, queue: JobQueueService) -> None:
    job = await queue.create_job(JobType.DATA_EXPORT, {"format": "gpx"}, owner_id="owner-1")

    stored = await queue.get_job(job.id)
    assert stored.status == JobStatus.QUEUED
    assert stored.priority == JobPriority.NORMAL
    assert stored.priority_rank == 1
    assert stored.progress == 0
    assert stored.retry_count == 0
    assert stored.max_retries == 3
    assert stored.payload == {"format": "gpx"}
    assert stored.worker_id is None


@pytest.mark.asyncio
async def test_create_job_rejects_unknown_type(beanie_db, queue: JobQueueService) -> None:
    with pytest.raises(ValidationError):
        await queue.create_job("defragment_disk", {})

    with pytest.raises(ValidationError):
        await queue.create_job(JobType.DATA_IMPORT, {}, priority="whenever")

    assert await Job.find_all().count() == 0


@pytest.mark.asyncio
async def test_get_job_errors(beanie_db, queue: JobQueueService) -> None:
    with pytest.raises(ValidationError):
        await queue.get_job("not-an-object-id")
    with pytest.raises(ResourceNotFoundError):
        await queue.get_job("0123456789abcdef01234567")
    assert await queue.get_job_status("0123456789abcdef01234567") is None


@pytest.mark.asyncio
async def test_claim_returns_none_when_empty(beanie_db, queue: JobQueueService) -> None:
    assert await queue.claim_next_job("worker-a") is None


@pytest.mark.asyncio
async def test_claim_marks_job_running(beanie_db, queue: JobQueueService) -> None:
    job = await queue.create_job(JobType.POI_DETECTION, {}, owner_id="owner-1")

    claimed = await queue.claim_next_job("worker-a")

    assert claimed is not None
    assert claimed.id == job.id
    assert claimed.status == JobStatus.RUNNING
    assert claimed.worker_id == "worker-a"
    assert claimed.started_at is not None
    assert await queue.claim_next_job("worker-b") is None


@pytest.mark.asyncio
async def test_concurrent_claims_have_one_winner(beanie_db, queue: JobQueueService) -> None:
    await queue.create_job(JobType.POI_DETECTION, {}, owner_id="owner-1")

    results = await asyncio.gather(
        *(queue.claim_next_job(f"worker-{n}") for n in range(5)),
    )

    winners = [job for job in results if job is not None]
    assert len(winners) == 1
    stored = await Job.find_all().to_list()
    assert stored[0].worker_id == winners[0].worker_id


@pytest.mark.asyncio
async def test_claim_order_is_priority_then_age(beanie_db, queue: JobQueueService) -> None:
    base = datetime(2024, 1, 1, tzinfo=UTC)
    low = await queue.create_job(JobType.POI_DETECTION, {}, JobPriority.LOW)
    normal_new = await queue.create_job(JobType.POI_DETECTION, {}, JobPriority.NORMAL)
    normal_old = await queue.create_job(JobType.POI_DETECTION, {}, JobPriority.NORMAL)
    urgent = await queue.create_job(JobType.POI_DETECTION, {}, JobPriority.URGENT)
    await _set_fields(low, created_at=base)
    await _set_fields(normal_new, created_at=base + timedelta(minutes=5))
    await _set_fields(normal_old, created_at=base + timedelta(minutes=1))
    await _set_fields(urgent, created_at=base + timedelta(minutes=10))

    order = []
    while (claimed := await queue.claim_next_job("worker-a")) is not None:
        order.append(claimed.id)

    assert order == [urgent.id, normal_old.id, normal_new.id, low.id]


@pytest.mark.asyncio
async def test_update_progress_merges_partial_results(
    beanie_db,
    queue: JobQueueService,
) -> None:
    job = await queue.create_job(JobType.DATA_IMPORT, {})

    await queue.update_progress(job.id, 25, {"message": "Parsing", "total": 10})
    await queue.update_progress(job.id, 50, {"message": "Importing"})

    stored = await queue.get_job(job.id)
    assert stored.progress == 50
    assert stored.result == {"message": "Importing", "total": 10}


@pytest.mark.asyncio
async def test_complete_job_sets_result(beanie_db, queue: JobQueueService) -> None:
    job = await queue.create_job(JobType.DATA_IMPORT, {})
    await queue.claim_next_job("worker-a")

    assert await queue.complete_job(job.id, {"imported": 3}) is True

    stored = await queue.get_job(job.id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.progress == 100
    assert stored.result["imported"] == 3
    assert stored.completed_at is not None


@pytest.mark.asyncio
async def test_failures_retry_until_max_retries_then_fail_once(
    beanie_db,
    queue: JobQueueService,
) -> None:
    job = await queue.create_job(JobType.DATA_IMPORT, {}, max_retries=2)

    executions = 0
    while (claimed := await queue.claim_next_job("worker-a")) is not None:
        executions += 1
        await queue.fail_job(claimed.id, "disk on fire")

    stored = await queue.get_job(job.id)
    assert executions == 3
    assert stored.status == JobStatus.FAILED
    assert stored.retry_count == 2
    assert stored.error == "Failed after 2 attempts. Last error: disk on fire"

    # Failing a terminal job again changes nothing
    again = await queue.fail_job(job.id, "late failure")
    assert again.status == JobStatus.FAILED
    assert again.retry_count == 2


@pytest.mark.asyncio
async def test_retry_resets_run_fields(beanie_db, queue: JobQueueService) -> None:
    job = await queue.create_job(JobType.DATA_IMPORT, {})
    await queue.claim_next_job("worker-a")
    await queue.update_progress(job.id, 40, {"message": "halfway"})

    updated = await queue.fail_job(job.id, "connection reset")

    assert updated.status == JobStatus.QUEUED
    assert updated.retry_count == 1
    assert updated.progress == 0
    assert updated.worker_id is None
    assert updated.started_at is None
    assert updated.error == "connection reset"


@pytest.mark.asyncio
async def test_retry_delay_defers_next_claim(beanie_db) -> None:
    queue = JobQueueService(JobQueueConfig(retry_delay=60))
    job = await queue.create_job(JobType.DATA_IMPORT, {})
    await queue.claim_next_job("worker-a")

    updated = await queue.fail_job(job.id, "timeout talking to mongo")

    assert updated.available_at is not None
    assert updated.available_at > datetime.now(UTC)
    assert await queue.claim_next_job("worker-a") is None


@pytest.mark.asyncio
async def test_permanent_failure_skips_retries(beanie_db, queue: JobQueueService) -> None:
    job = await queue.create_job(JobType.DATA_IMPORT, {})
    await queue.claim_next_job("worker-a")

    updated = await queue.fail_job(job.id, "Unsupported import format: xls", permanent=True)

    assert updated.status == JobStatus.FAILED
    assert updated.retry_count == 0
    assert updated.error == "Unsupported import format: xls"


@pytest.mark.asyncio
async def test_cancel_job(beanie_db, queue: JobQueueService) -> None:
    job = await queue.create_job(JobType.TRIP_GENERATION, {}, owner_id="owner-1")

    cancelled = await queue.cancel_job(job.id)
    assert cancelled.status == JobStatus.CANCELLED
    assert cancelled.completed_at is not None

    with pytest.raises(ConflictError):
        await queue.cancel_job(job.id)

    # A handler finishing after cancellation does not overwrite the status
    assert await queue.complete_job(job.id, {"trips_generated": 1}) is False
    assert (await queue.get_job(job.id)).status == JobStatus.CANCELLED

    # Failures arriving after cancellation are ignored too
    failed = await queue.fail_job(job.id, "late error")
    assert failed.status == JobStatus.CANCELLED
    assert failed.error is None


@pytest.mark.parametrize(
    ("status", "terminal"),
    [
        (JobStatus.QUEUED, False),
        (JobStatus.RUNNING, False),
        (JobStatus.COMPLETED, True),
        (JobStatus.FAILED, True),
        (JobStatus.CANCELLED, True),
    ],
)
def test_job_status_terminal_flag(status: JobStatus, terminal: bool) -> None:
    assert status.is_terminal is terminal


@pytest.mark.asyncio
async def test_cleanup_stale_jobs_requeues_stuck_job(
    beanie_db,
    queue: JobQueueService,
) -> None:
    stuck = await queue.create_job(JobType.DATA_EXPORT, {})
    fresh = await queue.create_job(JobType.DATA_EXPORT, {})
    await queue.claim_next_job("worker-a")
    await queue.claim_next_job("worker-b")
    await _set_fields(stuck, started_at=datetime.now(UTC) - timedelta(hours=1))

    sweep = await queue.cleanup_stale_jobs(timeout=300)

    assert sweep.requeued == [str(stuck.id)]
    assert sweep.failed == []
    stored = await queue.get_job(stuck.id)
    assert stored.status == JobStatus.QUEUED
    assert stored.retry_count == 1
    assert stored.error == STALE_JOB_MESSAGE
    assert (await queue.get_job(fresh.id)).status == JobStatus.RUNNING


@pytest.mark.asyncio
async def test_cleanup_stale_jobs_fails_exhausted_job(
    beanie_db,
    queue: JobQueueService,
) -> None:
    job = await queue.create_job(JobType.DATA_EXPORT, {}, max_retries=0)
    await queue.claim_next_job("worker-a")
    await _set_fields(job, started_at=datetime.now(UTC) - timedelta(hours=1))

    sweep = await queue.cleanup_stale_jobs(timeout=300)

    assert sweep.failed == [str(job.id)]
    assert (await queue.get_job(job.id)).status == JobStatus.FAILED


@pytest.mark.asyncio
async def test_cleanup_marks_silent_workers_stopped(
    beanie_db,
    queue: JobQueueService,
) -> None:
    await queue.record_heartbeat("worker-old", WorkerStatus.BUSY, "job-1")
    await queue.record_heartbeat("worker-new", WorkerStatus.IDLE)
    await WorkerRecord.find_one({"worker_id": "worker-old"}).update(
        {"$set": {"last_heartbeat": datetime.now(UTC) - timedelta(hours=1)}},
    )

    sweep = await queue.cleanup_stale_jobs()

    assert sweep.workers_stopped == 1
    old = await WorkerRecord.find_one({"worker_id": "worker-old"})
    assert old.status == WorkerStatus.STOPPED
    assert old.current_job is None
    stats = await queue.get_queue_stats()
    assert stats["active_workers"] == 1


@pytest.mark.asyncio
async def test_record_heartbeat_upserts_single_record(
    beanie_db,
    queue: JobQueueService,
) -> None:
    await queue.record_heartbeat("worker-a", WorkerStatus.IDLE, hostname="box", pid=7)
    await queue.record_heartbeat("worker-a", WorkerStatus.BUSY, "job-9", hostname="box", pid=7)

    workers = await queue.get_workers()
    assert len(workers) == 1
    assert workers[0].status == WorkerStatus.BUSY
    assert workers[0].current_job == "job-9"
    assert workers[0].pid == 7


@pytest.mark.asyncio
async def test_queue_stats_and_owner_listing(beanie_db, queue: JobQueueService) -> None:
    first = await queue.create_job(JobType.DATA_EXPORT, {}, owner_id="owner-1")
    await queue.create_job(JobType.DATA_IMPORT, {}, owner_id="owner-1")
    await queue.create_job(JobType.DATA_IMPORT, {}, owner_id="owner-2")
    await queue.cancel_job(first.id)

    stats = await queue.get_queue_stats()
    assert stats["queued"] == 2
    assert stats["cancelled"] == 1
    assert stats["running"] == 0

    owner_jobs = await queue.get_jobs("owner-1")
    assert len(owner_jobs) == 2
    queued_only = await queue.get_jobs("owner-1", status="queued")
    assert [job.job_type for job in queued_only] == [JobType.DATA_IMPORT]


def test_config_rejects_invalid_values() -> None:
    with pytest.raises(ValidationError):
        JobQueueConfig.build(max_workers=0)

    config = JobQueueConfig(max_workers=2)
    assert config.merged(max_workers=4).max_workers == 4
    assert config.max_workers == 2
