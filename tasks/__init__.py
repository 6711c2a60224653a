"""
ARQ process host for the job worker pool.

- arq: Redis connection settings
- maintenance: stale-job sweep and scheduled POI detection
- cron: cron wrappers around maintenance tasks
- worker: WorkerSettings (``arq tasks.worker.WorkerSettings``)
"""
