"""ARQ connection helpers."""

from __future__ import annotations

from urllib.parse import urlparse

from arq.connections import RedisSettings

from redis_config import get_redis_url


def get_redis_settings() -> RedisSettings:
    """Build RedisSettings from REDIS_URL or component env vars."""
    redis_url = get_redis_url()
    parsed = urlparse(redis_url)
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(parsed.path.lstrip("/") or 0),
        username=parsed.username,
        password=parsed.password,
        ssl=parsed.scheme == "rediss",
    )
