"""Job queue configuration.

The queue, workers and pool all receive a ``JobQueueConfig`` at
construction; nothing reads queue settings from module globals.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

import config
from core.exceptions import ValidationError


class JobQueueConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_workers: int = Field(default=2, ge=1)
    poll_interval: float = Field(default=5.0, gt=0)
    job_timeout: float = Field(default=300.0, gt=0)
    retry_attempts: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=60.0, ge=0)
    worker_stale_after: float = Field(default=120.0, gt=0)
    worker_active_window: float = Field(default=30.0, gt=0)
    shutdown_grace_period: float = Field(default=30.0, ge=0)

    @classmethod
    def build(cls, **values: Any) -> JobQueueConfig:
        """Validate values, raising the application's ValidationError."""
        try:
            return cls(**values)
        except PydanticValidationError as exc:
            msg = "Invalid job queue configuration"
            raise ValidationError(msg, {"errors": exc.errors()}) from exc

    @classmethod
    def from_env(cls) -> JobQueueConfig:
        return cls.build(
            max_workers=config.JOB_MAX_WORKERS,
            poll_interval=config.JOB_POLL_INTERVAL_SECONDS,
            job_timeout=config.JOB_TIMEOUT_SECONDS,
            retry_attempts=config.JOB_RETRY_ATTEMPTS,
            retry_delay=config.JOB_RETRY_DELAY_SECONDS,
        )

    def merged(self, **changes: Any) -> JobQueueConfig:
        return self.build(**{**self.model_dump(), **changes})
