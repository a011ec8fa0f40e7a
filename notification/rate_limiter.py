"""
Per-user send rate limiting.

A sliding window of admitted send timestamps per user, kept in a Redis
sorted set so every dispatcher instance enforces one limit and the state
survives restarts. The limiter gates whole dispatches, not channels.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Optional

from redis import Redis
from redis.exceptions import RedisError

from core.config_loader import RateLimitConfig
from notification.exceptions import RateLimiterUnavailable

logger = logging.getLogger(__name__)


def _ts(now: Optional[datetime]) -> float:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.timestamp()


class RateLimiter(ABC):
    def __init__(self, max_sends: int = 3, window_seconds: int = 3600):
        self.max_sends = max_sends
        self.window_seconds = window_seconds

    @abstractmethod
    def admit(self, user_id: int, now: Optional[datetime] = None) -> bool:
        """Record and allow a send, or reject it if the window is full."""
        pass

    @abstractmethod
    def remaining(self, user_id: int, now: Optional[datetime] = None) -> int:
        pass

    @abstractmethod
    def reset(self, user_id: int) -> None:
        pass


class InMemoryRateLimiter(RateLimiter):
    """Process-local limiter. Resets on restart and is not shared between instances."""

    def __init__(self, max_sends: int = 3, window_seconds: int = 3600):
        super().__init__(max_sends, window_seconds)
        self._sends = defaultdict(deque)
        self._lock = threading.Lock()

    def _prune(self, user_id: int, now_ts: float) -> deque:
        sends = self._sends[user_id]
        cutoff = now_ts - self.window_seconds
        while sends and sends[0] < cutoff:
            sends.popleft()
        return sends

    def admit(self, user_id: int, now: Optional[datetime] = None) -> bool:
        now_ts = _ts(now)
        with self._lock:
            sends = self._prune(user_id, now_ts)
            if len(sends) >= self.max_sends:
                return False
            sends.append(now_ts)
            return True

    def remaining(self, user_id: int, now: Optional[datetime] = None) -> int:
        with self._lock:
            return max(0, self.max_sends - len(self._prune(user_id, _ts(now))))

    def reset(self, user_id: int) -> None:
        with self._lock:
            self._sends.pop(user_id, None)


class RedisRateLimiter(RateLimiter):
    """
    Sliding window over a Redis sorted set (score = send timestamp).

    The new send is added optimistically and removed again if it pushed
    the window over the limit, so concurrent dispatchers can only
    over-reject, never over-admit.
    """

    def __init__(
        self,
        redis_conn: Redis,
        max_sends: int = 3,
        window_seconds: int = 3600,
        key_prefix: str = "notification:rate:",
        fallback: Optional[InMemoryRateLimiter] = None,
    ):
        super().__init__(max_sends, window_seconds)
        self.redis = redis_conn
        self.key_prefix = key_prefix
        self.fallback = fallback

    def _key(self, user_id: int) -> str:
        return f"{self.key_prefix}{user_id}"

    def _unavailable(self, e: Exception):
        if self.fallback is None:
            raise RateLimiterUnavailable(f"Rate limit backend unavailable: {e}") from e
        logger.warning(f"Redis unavailable for rate limiting, using local limiter: {e}")
        return self.fallback

    def admit(self, user_id: int, now: Optional[datetime] = None) -> bool:
        now_ts = _ts(now)
        key = self._key(user_id)
        member = f"{now_ts}:{uuid.uuid4().hex}"
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.zremrangebyscore(key, '-inf', f"({now_ts - self.window_seconds}")
            pipe.zadd(key, {member: now_ts})
            pipe.zcard(key)
            pipe.expire(key, self.window_seconds + 60)
            _, _, count, _ = pipe.execute()

            if count > self.max_sends:
                self.redis.zrem(key, member)
                logger.info(f"Rate limit reached for user {user_id} ({self.max_sends}/{self.window_seconds}s)")
                return False
            return True
        except RedisError as e:
            return self._unavailable(e).admit(user_id, now)

    def remaining(self, user_id: int, now: Optional[datetime] = None) -> int:
        now_ts = _ts(now)
        key = self._key(user_id)
        try:
            self.redis.zremrangebyscore(key, '-inf', f"({now_ts - self.window_seconds}")
            return max(0, self.max_sends - self.redis.zcard(key))
        except RedisError as e:
            return self._unavailable(e).remaining(user_id, now)

    def reset(self, user_id: int) -> None:
        try:
            self.redis.delete(self._key(user_id))
        except RedisError as e:
            self._unavailable(e).reset(user_id)


def build_rate_limiter(config: RateLimitConfig, redis_conn: Optional[Redis] = None) -> Optional[RateLimiter]:
    """
    Build the limiter described by config; None when rate limiting is disabled.

    Raises:
        RateLimiterUnavailable: Redis cannot be reached and local fallback is off
    """
    if not config.enabled:
        logger.info("Rate limiting disabled")
        return None

    fallback = None
    if config.allow_local_fallback:
        fallback = InMemoryRateLimiter(config.max_sends, config.window_seconds)

    try:
        redis_conn = redis_conn or Redis.from_url(config.redis_url)
        redis_conn.ping()
        logger.info("Connected to Redis for rate limiting")
    except RedisError as e:
        if fallback is None:
            raise RateLimiterUnavailable(f"Cannot connect to Redis at {config.redis_url}: {e}") from e
        logger.warning(f"Redis unreachable ({e}); rate limits are per-process only")
        return fallback

    return RedisRateLimiter(
        redis_conn,
        max_sends=config.max_sends,
        window_seconds=config.window_seconds,
        key_prefix=config.key_prefix,
        fallback=fallback,
    )
