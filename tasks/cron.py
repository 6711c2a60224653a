"""ARQ cron wrappers for scheduled tasks."""

from __future__ import annotations

from tasks.maintenance import cleanup_stale_jobs, enqueue_poi_detection


async def cron_cleanup_stale_jobs(ctx: dict) -> dict:
    return await cleanup_stale_jobs(ctx)


async def cron_enqueue_poi_detection(ctx: dict) -> dict:
    return await enqueue_poi_detection(ctx)
