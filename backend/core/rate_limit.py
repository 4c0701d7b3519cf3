"""
Rate Limiting Module
Redis-based per-user budget for AI match analyses.
"""

import logging
import time
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from backend.core.config import settings

logger = logging.getLogger(__name__)


# =============================================================================
# Redis Rate Limiter
# =============================================================================


class RedisRateLimiter:
    """
    Redis-based sliding window rate limiter.

    Uses a sorted set to track request timestamps, allowing for
    accurate sliding window rate limiting across distributed workers.
    """

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self._redis: Optional[aioredis.Redis] = None

    async def get_redis(self) -> aioredis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = aioredis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def is_rate_limited(
        self,
        key: str,
        limit: int,
        window: int,
    ) -> tuple[bool, int, int]:
        """
        Record a request and check it against a sliding window.

        Args:
            key: Unique identifier (e.g., "rate_limit:ai_analysis:user_123")
            limit: Maximum number of requests allowed
            window: Time window in seconds

        Returns:
            Tuple of (is_limited, remaining_requests, retry_after_seconds)
        """
        redis = await self.get_redis()
        now = time.time()

        pipe = redis.pipeline()
        pipe.zremrangebyscore(key, "-inf", now - window)
        pipe.zcard(key)
        pipe.zadd(key, {str(now): now})
        pipe.expire(key, window + 1)
        pipe.zrange(key, 0, 0, withscores=True)
        results = await pipe.execute()

        current_count = results[1]
        oldest_entries = results[4]

        remaining = max(0, limit - current_count - 1)
        is_limited = current_count >= limit

        retry_after = 0
        if is_limited and oldest_entries:
            oldest_timestamp = oldest_entries[0][1]
            retry_after = int(window - (now - oldest_timestamp)) + 1

        return is_limited, remaining, retry_after


# =============================================================================
# In-Memory Fallback Rate Limiter
# =============================================================================


class InMemoryRateLimiter:
    """
    Sliding window limiter for when Redis is unavailable.

    Only accurate for single-instance deployments.
    """

    def __init__(self):
        self._requests: dict[str, list[float]] = {}

    async def is_rate_limited(
        self,
        key: str,
        limit: int,
        window: int,
    ) -> tuple[bool, int, int]:
        now = time.time()
        timestamps = [ts for ts in self._requests.get(key, []) if ts > now - window]
        self._requests[key] = timestamps

        if len(timestamps) >= limit:
            retry_after = int(window - (now - min(timestamps))) + 1
            return True, 0, retry_after

        timestamps.append(now)
        return False, max(0, limit - len(timestamps)), 0


# Global rate limiter instances
_rate_limiter: Optional[RedisRateLimiter] = None
_fallback_limiter: Optional[InMemoryRateLimiter] = None


def get_rate_limiter() -> RedisRateLimiter:
    """Get the global Redis rate limiter instance."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RedisRateLimiter(settings.redis_url)
    return _rate_limiter


def get_fallback_limiter() -> InMemoryRateLimiter:
    """Get the global in-memory fallback rate limiter."""
    global _fallback_limiter
    if _fallback_limiter is None:
        _fallback_limiter = InMemoryRateLimiter()
    return _fallback_limiter


async def close_rate_limiter() -> None:
    """Close the global rate limiter."""
    global _rate_limiter, _fallback_limiter
    if _rate_limiter:
        await _rate_limiter.close()
        _rate_limiter = None
    _fallback_limiter = None


# =============================================================================
# AI Analysis Budget
# =============================================================================


def build_rate_limit_key(scope: str, user_id: str) -> str:
    return f"rate_limit:{scope}:user_{user_id}"


class AIAnalysisBudget:
    """
    Per-user allowance of AI match analyses.

    Redis is tried first; on connection errors the in-memory limiter takes
    over so the budget is still enforced.
    """

    SCOPE = "ai_analysis"

    def __init__(
        self,
        limiter: Optional[RedisRateLimiter] = None,
        fallback: Optional[InMemoryRateLimiter] = None,
        requests: Optional[int] = None,
        window: Optional[int] = None,
    ):
        self.limiter = limiter or get_rate_limiter()
        self.fallback = fallback or get_fallback_limiter()
        self.requests = requests or settings.rate_limit_ai_analysis_requests
        self.window = window or settings.rate_limit_ai_analysis_window
        self._redis_available = True

    async def consume(self, user_id: str) -> tuple[bool, int]:
        """
        Spend one analysis from the user's budget.

        Returns:
            Tuple of (allowed, retry_after_seconds)
        """
        if not settings.rate_limit_enabled:
            return True, 0

        key = build_rate_limit_key(self.SCOPE, user_id)
        try:
            is_limited, _, retry_after = await self.limiter.is_rate_limited(key, self.requests, self.window)
            self._redis_available = True
        except (RedisError, OSError) as e:
            if self._redis_available:
                logger.warning(f"Redis rate limiting unavailable, using in-memory fallback: {e}")
                self._redis_available = False
            is_limited, _, retry_after = await self.fallback.is_rate_limited(key, self.requests, self.window)

        return not is_limited, retry_after
