"""ARQ worker settings and startup hooks.

Run with ``arq tasks.worker.WorkerSettings``. The process hosts the job
worker pool; arq itself only drives the cron schedule.
"""

from __future__ import annotations

import logging
from typing import ClassVar

from arq import cron

from config import LOG_LEVEL
from core.http.session import cleanup_session
from db import db_manager
from db.logging_handler import MongoDBHandler
from jobs.config import JobQueueConfig
from jobs.pool import WorkerPool
from jobs.queue import JobQueueService
from jobs.registry import JobProcessorRegistry
from tasks.arq import get_redis_settings
from tasks.cron import cron_cleanup_stale_jobs, cron_enqueue_poi_detection
from tasks.maintenance import cleanup_stale_jobs, enqueue_poi_detection, job_queue_stats

logger = logging.getLogger(__name__)


async def on_startup(ctx: dict) -> None:
    logging.getLogger().setLevel(LOG_LEVEL)
    await db_manager.init_beanie()

    handler = MongoDBHandler()
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    handler.setFormatter(formatter)
    handler.setLevel(logging.INFO)
    logging.getLogger().addHandler(handler)
    ctx["mongo_handler"] = handler

    config = JobQueueConfig.from_env()
    queue = JobQueueService(config)
    pool = WorkerPool(queue, JobProcessorRegistry(), config)
    await pool.start()
    ctx["job_queue"] = queue
    ctx["worker_pool"] = pool
    logger.info("Job worker pool started with %d workers", config.max_workers)


async def on_shutdown(ctx: dict) -> None:
    pool: WorkerPool | None = ctx.get("worker_pool")
    if pool is not None:
        await pool.stop(graceful=True)

    handler: MongoDBHandler | None = ctx.get("mongo_handler")
    if handler:
        logging.getLogger().removeHandler(handler)
        await handler.flush_pending()
        handler.close()

    await cleanup_session()
    await db_manager.cleanup_connections()


class WorkerSettings:
    functions: ClassVar[list[object]] = [
        cleanup_stale_jobs,
        enqueue_poi_detection,
        job_queue_stats,
    ]
    cron_jobs: ClassVar[list[object]] = [
        # Every minute
        cron(cron_cleanup_stale_jobs, second={0}),
        cron(cron_enqueue_poi_detection, hour={3}, minute={15}, second={0}),
    ]
    redis_settings = get_redis_settings()
    on_startup = on_startup
    on_shutdown = on_shutdown
