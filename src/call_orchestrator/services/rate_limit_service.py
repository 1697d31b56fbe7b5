"""Per-API-key request throttling backed by a Redis sorted set.

Each request is a member scored by its arrival time; members older than the
window are trimmed before counting. Account call volume is the quota
service's job, not this one's. Redis trouble never blocks a request.
"""

import logging
import time
import uuid
from typing import Optional, Tuple

import redis.asyncio as redis

from call_orchestrator.config import get_settings
from call_orchestrator.exceptions import RateLimitError

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "rate_limit:api_key"


class RateLimitService:
    def __init__(self):
        config = get_settings()
        self._redis_client: Optional[redis.Redis] = None
        self._enabled = bool(config.rate_limit.enabled and config.redis.url)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _connect(self) -> redis.Redis:
        options = get_settings().redis
        return redis.from_url(
            options.url,
            password=options.password,
            decode_responses=options.decode_responses,
            socket_timeout=options.socket_timeout,
            socket_connect_timeout=options.socket_connect_timeout,
        )

    async def _get_redis_client(self) -> Optional[redis.Redis]:
        """Lazily connect. An unreachable Redis disables limiting for this process."""
        if not self._enabled:
            return None
        if self._redis_client is not None:
            return self._redis_client

        client = self._connect()
        try:
            await client.ping()
        except Exception as e:
            logger.warning(f"Redis unavailable, rate limiting disabled: {e}")
            self._enabled = False
            return None

        self._redis_client = client
        return client

    async def check_rate_limit(
        self, key: str, max_attempts: int, window_seconds: int
    ) -> Tuple[bool, Optional[int]]:
        """
        Count this request against ``key`` and decide whether it may proceed.

        Returns:
            ``(True, None)`` when allowed, otherwise ``(False, retry_after_seconds)``
        """
        if not self._enabled:
            return True, None

        try:
            client = await self._get_redis_client()
            if client is None:
                return True, None

            now = time.time()
            pipe = client.pipeline()
            pipe.zremrangebyscore(key, 0, now - window_seconds)
            pipe.zcard(key)
            pipe.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
            pipe.expire(key, window_seconds)
            _, in_window, _, _ = await pipe.execute()

            if in_window < max_attempts:
                return True, None
            return False, await self._seconds_until_slot(client, key, now, window_seconds)
        except Exception as e:
            logger.warning(f"Rate limit check for {key} failed, allowing request: {e}")
            return True, None

    @staticmethod
    async def _seconds_until_slot(
        client: redis.Redis, key: str, now: float, window_seconds: int
    ) -> int:
        oldest = await client.zrange(key, 0, 0, withscores=True)
        if not oldest:
            return window_seconds
        _, first_seen = oldest[0]
        return max(1, int(first_seen + window_seconds - now))

    async def enforce_api_key_limit(self, api_key_id: str) -> None:
        """
        Raises:
            RateLimitError: The key used up its requests for the current window
        """
        limits = get_settings().rate_limit
        allowed, retry_after = await self.check_rate_limit(
            f"{API_KEY_PREFIX}:{api_key_id}",
            max_attempts=limits.calls_per_minute,
            window_seconds=limits.window_seconds,
        )
        if not allowed:
            logger.warning(f"API key {api_key_id} throttled for {retry_after}s")
            raise RateLimitError(
                "Too many requests for this API key. Please try again later.",
                retry_after=retry_after,
            )

    async def close(self) -> None:
        client, self._redis_client = self._redis_client, None
        if client is None:
            return
        try:
            await client.aclose()
        except Exception as e:
            logger.warning(f"Error closing Redis connection: {e}")


_rate_limit_service: Optional[RateLimitService] = None


def get_rate_limit_service() -> RateLimitService:
    global _rate_limit_service
    if _rate_limit_service is None:
        _rate_limit_service = RateLimitService()
    return _rate_limit_service
