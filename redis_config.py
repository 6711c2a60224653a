"""
Centralized Redis connection configuration for the arq process host.

Credentials are URL-encoded so passwords with special characters survive.
"""

import logging
import os
from urllib.parse import quote_plus

logger = logging.getLogger(__name__)


def get_redis_url() -> str:
    """
    Get Redis URL from environment with proper URL encoding.

    Environment Variables:
        REDIS_URL: Complete Redis URL (if provided, used directly)
        REDISHOST: Redis host
        REDISPORT: Redis port (default: 6379)
        REDISPASSWORD or REDIS_PASSWORD: Redis password
        REDISUSER: Redis username (default: "default")
    """
    redis_url = os.getenv("REDIS_URL")
    if redis_url:
        return redis_url

    redis_host = os.getenv("REDISHOST")
    redis_port = os.getenv("REDISPORT", "6379")
    redis_password = os.getenv("REDISPASSWORD") or os.getenv("REDIS_PASSWORD")
    redis_user = os.getenv("REDISUSER", "default")

    if redis_host and redis_password:
        encoded_user = quote_plus(redis_user)
        encoded_password = quote_plus(redis_password)
        return f"redis://{encoded_user}:{encoded_password}@{redis_host}:{redis_port}"

    redis_url = "redis://localhost:6379"
    logger.warning(
        "REDIS_URL not provided; defaulting to localhost Redis at %s",
        redis_url,
    )
    return redis_url
