"""
Redis caching layer for relationship lookups
"""
import redis.asyncio as redis
from typing import Optional, Any
import json
import logging

from .config import settings

logger = logging.getLogger(__name__)


class RedisCache:
    """Redis cache manager for follow checks and follow stats"""

    def __init__(self):
        self.redis: Optional[redis.Redis] = None

    async def connect(self):
        """Connect to Redis"""
        if not settings.REDIS_ENABLED:
            logger.info("Redis caching is disabled")
            return

        try:
            self.redis = redis.from_url(
                f"redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}",
                password=settings.REDIS_PASSWORD if settings.REDIS_PASSWORD else None,
                encoding="utf-8",
                decode_responses=True,
            )
            # Test connection
            await self.redis.ping()
            logger.info("Connected to Redis successfully")
        except Exception as e:
            logger.warning(f"Failed to connect to Redis: {e}. Continuing without cache.")
            self.redis = None

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.redis:
            await self.redis.aclose()
            logger.info("Disconnected from Redis")

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        if not self.redis:
            return None

        try:
            value = await self.redis.get(key)
            if value:
                return json.loads(value)
            return None
        except Exception as e:
            logger.error(f"Error getting cache key {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = 300):
        """Set value in cache with TTL"""
        if not self.redis:
            return

        try:
            await self.redis.setex(key, ttl, json.dumps(value, default=str))
        except Exception as e:
            logger.error(f"Error setting cache key {key}: {e}")

    async def delete(self, *keys: str):
        """Delete keys from cache"""
        if not self.redis or not keys:
            return

        try:
            await self.redis.delete(*keys)
        except Exception as e:
            logger.error(f"Error deleting cache keys {keys}: {e}")

    def _follow_key(self, follower_id: str, following_id: str) -> str:
        return f"crate:follow:{follower_id}:{following_id}"

    def _stats_key(self, user_id: str) -> str:
        return f"crate:stats:{user_id}"

    async def get_follow_check(self, follower_id: str, following_id: str) -> Optional[dict]:
        """Get cached follow check"""
        return await self.get(self._follow_key(follower_id, following_id))

    async def set_follow_check(self, follower_id: str, following_id: str, check: dict):
        await self.set(
            self._follow_key(follower_id, following_id),
            check,
            settings.CACHE_TTL_RELATIONSHIP,
        )

    async def get_stats(self, user_id: str) -> Optional[dict]:
        """Get cached follow stats"""
        return await self.get(self._stats_key(user_id))

    async def set_stats(self, user_id: str, stats: dict):
        await self.set(self._stats_key(user_id), stats, settings.CACHE_TTL_STATS)

    async def invalidate_edge(self, follower_id: str, following_id: str):
        """Drop everything derived from one follow edge"""
        await self.delete(
            self._follow_key(follower_id, following_id),
            self._stats_key(follower_id),
            self._stats_key(following_id),
        )


# Global cache instance
cache = RedisCache()


async def get_cache() -> RedisCache:
    """Dependency for getting cache instance"""
    return cache
