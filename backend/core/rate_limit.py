"""
Sliding-window rate limiting for CSRF validation failures.

The limiter itself is stateless; hits live in an injected store. The in-memory
store is process local and resets on restart, the Redis store can be shared
between instances. Both take explicit timestamps so tests can drive the clock.
"""

import logging
import threading
import time
import uuid
from collections import deque
from typing import Callable, Deque, Dict, Optional, Protocol

import redis

from core.config import settings

logger = logging.getLogger(__name__)


class RateLimitStore(Protocol):
    def add(self, key: str, timestamp: float, window: float) -> None: ...

    def count(self, key: str, since: float) -> int: ...

    def close(self) -> None: ...


class InMemoryRateLimitStore:
    """Timestamps of hits per key. Every add sweeps keys whose hits have all left the window."""

    def __init__(self):
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def _prune(self, key: str, since: float) -> Deque[float]:
        hits = self._hits.get(key)
        if hits is None:
            return deque()
        while hits and hits[0] < since:
            hits.popleft()
        if not hits:
            del self._hits[key]
        return hits

    def _sweep(self, since: float) -> None:
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] < since]
        for key in stale:
            del self._hits[key]

    def add(self, key: str, timestamp: float, window: float) -> None:
        with self._lock:
            self._sweep(timestamp - window)
            self._prune(key, timestamp - window)
            self._hits.setdefault(key, deque()).append(timestamp)

    def count(self, key: str, since: float) -> int:
        with self._lock:
            return len(self._prune(key, since))

    def close(self) -> None:
        with self._lock:
            self._hits.clear()


class RedisRateLimitStore:
    """Redis sorted-set store: one member per hit, scored by its timestamp."""

    def __init__(self, client: Optional[redis.Redis] = None):
        try:
            self.redis_client = client or redis.Redis(
                host=settings.REDIS_HOST,
                port=settings.REDIS_PORT,
                db=settings.REDIS_DB,
                password=settings.REDIS_PASSWORD,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            # Test connection
            self.redis_client.ping()
            logger.info(f"Redis rate limit store initialized at {settings.REDIS_HOST}:{settings.REDIS_PORT}")
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    def add(self, key: str, timestamp: float, window: float) -> None:
        try:
            pipe = self.redis_client.pipeline()
            pipe.zadd(key, {f"{timestamp}:{uuid.uuid4().hex}": timestamp})
            pipe.zremrangebyscore(key, "-inf", f"({timestamp - window}")
            pipe.expire(key, int(window) + 1)
            pipe.execute()
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.error(f"Redis rate limit add error for key {key}: {e}")

    def count(self, key: str, since: float) -> int:
        try:
            self.redis_client.zremrangebyscore(key, "-inf", f"({since}")
            return int(self.redis_client.zcard(key))
        except (redis.ConnectionError, redis.TimeoutError) as e:
            # Limiter unavailable: let validation proceed, the token check still applies
            logger.error(f"Redis rate limit count error for key {key}: {e}")
            return 0

    def close(self) -> None:
        self.redis_client.close()


class SlidingWindowRateLimiter:
    def __init__(
        self,
        store: RateLimitStore,
        max_attempts: int,
        window_seconds: float,
        authenticated_multiplier: int = 2,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.authenticated_multiplier = authenticated_multiplier
        self.clock = clock

    @staticmethod
    def key_for(client_ip: str, authenticated: bool) -> str:
        return f"csrf:{client_ip}:{'auth' if authenticated else 'anon'}"

    def limit_for(self, authenticated: bool) -> int:
        return self.max_attempts * self.authenticated_multiplier if authenticated else self.max_attempts

    def attempts(self, client_ip: str, authenticated: bool) -> int:
        since = self.clock() - self.window_seconds
        return self.store.count(self.key_for(client_ip, authenticated), since)

    def is_limited(self, client_ip: str, authenticated: bool) -> bool:
        return self.attempts(client_ip, authenticated) >= self.limit_for(authenticated)

    def record_failure(self, client_ip: str, authenticated: bool) -> None:
        self.store.add(self.key_for(client_ip, authenticated), self.clock(), self.window_seconds)

    def close(self) -> None:
        self.store.close()


def create_rate_limit_store(backend: Optional[str] = None) -> RateLimitStore:
    backend = backend or settings.RATE_LIMIT_BACKEND
    if backend == "redis":
        return RedisRateLimitStore()
    if backend != "memory":
        logger.warning(f"Unknown RATE_LIMIT_BACKEND '{backend}', using in-memory store")
    return InMemoryRateLimitStore()


def create_rate_limiter(store: Optional[RateLimitStore] = None) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(
        store=store or create_rate_limit_store(),
        max_attempts=settings.CSRF_MAX_FAILED_ATTEMPTS,
        window_seconds=settings.CSRF_RATE_LIMIT_WINDOW_SECONDS,
    )
