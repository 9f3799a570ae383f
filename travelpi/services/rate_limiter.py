"""
Sliding-window rate limiting per client IP and subscription tier

Each request is recorded in a Redis sorted set scored by its timestamp in
milliseconds; entries older than the window are trimmed before counting.
"""
import math
import time
import uuid
from typing import Dict, Optional

from pydantic import BaseModel
from redis import Redis

from travelpi.core.config import settings
from travelpi.core.logging_config import logger
from travelpi.db.models import UserTier

TIER_LIMITS: Dict[str, int] = {
    UserTier.FREE.value: 100,
    UserTier.BRONZE.value: 200,
    UserTier.SILVER.value: 500,
    UserTier.GOLD.value: 1000,
    UserTier.PLATINUM.value: 5000,
}

FAIL_OPEN_LIMIT = 100


class RateLimitResult(BaseModel):
    allowed: bool
    limit: int
    remaining: int
    reset: int  # epoch seconds
    retry_after: Optional[int] = None


def limit_for_tier(tier: Optional[str]) -> int:
    return TIER_LIMITS.get(tier or "", TIER_LIMITS[UserTier.FREE.value])


class RateLimiter:
    """Per-identifier request quota backed by Redis sorted sets"""

    def __init__(self, redis_client: Redis, window_seconds: int = 3600):
        self.redis = redis_client
        self.window_seconds = window_seconds

    @classmethod
    def from_settings(cls, redis_client: Redis) -> "RateLimiter":
        return cls(redis_client, window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS)

    def check(self, identifier: str, tier: Optional[str] = None, now: Optional[int] = None) -> RateLimitResult:
        """
        Record one request and report whether it is within quota

        Args:
            identifier: Client IP address
            tier: Subscription tier; unknown tiers get the free quota
            now: Current time in epoch milliseconds

        Returns:
            RateLimitResult; when Redis is unreachable the request is allowed
        """
        if tier not in TIER_LIMITS:
            tier = UserTier.FREE.value
        limit = limit_for_tier(tier)

        if now is None:
            now = int(time.time() * 1000)
        window_ms = self.window_seconds * 1000
        window_start = now - window_ms
        reset = math.ceil((now + window_ms) / 1000)
        key = f"ratelimit:{identifier}:{tier}"

        try:
            pipe = self.redis.pipeline()
            pipe.zadd(key, {f"{now}-{uuid.uuid4().hex[:8]}": now})
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcount(key, window_start, "+inf")
            pipe.expire(key, self.window_seconds)
            results = pipe.execute()
            count = int(results[2])
        except Exception as e:
            logger.error(f"Rate limiter unavailable, allowing request: {str(e)}")
            return RateLimitResult(
                allowed=True,
                limit=FAIL_OPEN_LIMIT,
                remaining=FAIL_OPEN_LIMIT,
                reset=reset,
            )

        remaining = max(0, limit - count)
        if count > limit:
            return RateLimitResult(
                allowed=False,
                limit=limit,
                remaining=0,
                reset=reset,
                retry_after=max(1, reset - now // 1000),
            )

        return RateLimitResult(allowed=True, limit=limit, remaining=remaining, reset=reset)
