"""
JSON cache on top of Redis

Cache failures never break a request: errors are logged and reported as a
miss (or a no-op write).
"""
import json
from typing import Any, Optional

from redis import Redis

from travelpi.core.logging_config import logger


class CacheService:
    """Service for cached JSON values"""

    def __init__(self, redis_client: Redis, prefix: str = "travelpi"):
        self.redis = redis_client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.redis.get(self._key(key))
            if raw is None:
                return None
            return json.loads(raw)
        except Exception as e:
            logger.warning(f"[CACHE] Failed to read {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: int) -> bool:
        try:
            self.redis.setex(self._key(key), ttl, json.dumps(value, default=str))
            return True
        except Exception as e:
            logger.warning(f"[CACHE] Failed to write {key}: {e}")
            return False

    def delete(self, *keys: str) -> bool:
        if not keys:
            return True
        try:
            self.redis.delete(*[self._key(k) for k in keys])
            return True
        except Exception as e:
            logger.warning(f"[CACHE] Failed to invalidate {keys}: {e}")
            return False
