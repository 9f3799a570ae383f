"""
Shared Redis connection used by the rate limiter and the hotel cache
"""
from functools import lru_cache

from redis import Redis

from travelpi.core.config import settings


def _create_redis_client(redis_url: str) -> Redis:
    return Redis.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True,
        retry_on_timeout=True,
        max_connections=30,
        socket_keepalive=True,
        socket_connect_timeout=5,
        socket_timeout=5,
    )


@lru_cache()
def get_redis() -> Redis:
    """Lazily created client; connecting happens on first command"""
    return _create_redis_client(settings.REDIS_URL)
