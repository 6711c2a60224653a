"""Retry decorators for async HTTP operations, built on tenacity."""

from __future__ import annotations

import asyncio
import logging

from aiohttp import ClientError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})


def is_transient_error(exc: BaseException) -> bool:
    """Transport failures and 429/5xx service errors are worth another try."""
    if isinstance(exc, ClientError | asyncio.TimeoutError):
        return True
    if isinstance(exc, ExternalServiceError):
        return exc.details.get("status") in TRANSIENT_STATUSES
    return False


def retry_async(
    max_retries: int = 3,
    retry_delay: float = 1.0,
    backoff_factor: float = 2.0,
):
    """Return a tenacity retry decorator for transient HTTP failures.

    Args:
        max_retries: Retry attempts in addition to the first call.
        retry_delay: Initial delay in seconds (exponential multiplier).
        backoff_factor: Exponential backoff base.

    Example:
        @retry_async(max_retries=5, retry_delay=2.0)
        async def fetch_data():
            ...
    """
    return retry(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=retry_delay, exp_base=backoff_factor),
        retry=retry_if_exception(is_transient_error),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
