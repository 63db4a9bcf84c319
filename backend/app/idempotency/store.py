"""
Backing stores for idempotency claims and the scheduling mutex.

Both stores expose one atomic primitive, ``set_if_absent``: create the key
with a TTL only if it does not already exist. Errors are raised to the
caller; deciding to fail open is the guard's job.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Optional, Protocol

from redis import Redis

logger = logging.getLogger(__name__)


class IdempotencyStoreUnavailable(Exception):
    """Raised when the backing store cannot be reached."""


class IdempotencyStore(Protocol):
    def set_if_absent(self, key: str, value: str, ttl_s: int) -> bool: ...

    def delete(self, key: str) -> bool: ...

    def exists(self, key: str) -> bool: ...


class RedisIdempotencyStore:
    """Redis-backed store using ``SET key value NX EX ttl``."""

    def __init__(self, redis_url: Optional[str] = None, client: Optional[Redis] = None):
        self._redis_url = redis_url
        self._client = client
        self._client_lock = threading.Lock()

    def _get_client(self) -> Redis:
        if self._client is not None:
            return self._client
        with self._client_lock:
            if self._client is not None:
                return self._client
            if not self._redis_url:
                raise IdempotencyStoreUnavailable("No Redis URL configured")
            try:
                client = Redis.from_url(
                    self._redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=1,
                    socket_timeout=1,
                )
                client.ping()
            except Exception as exc:
                raise IdempotencyStoreUnavailable(str(exc)) from exc
            self._client = client
            return client

    def set_if_absent(self, key: str, value: str, ttl_s: int) -> bool:
        return bool(self._get_client().set(key, value, nx=True, ex=ttl_s))

    def delete(self, key: str) -> bool:
        return bool(self._get_client().delete(key))

    def exists(self, key: str) -> bool:
        return bool(self._get_client().exists(key))


class InMemoryIdempotencyStore:
    """
    Process-local store with the same semantics as the Redis store.

    Atomic within one process only; meant for tests and single-worker
    development servers.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]

    def set_if_absent(self, key: str, value: str, ttl_s: int) -> bool:
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            if key in self._entries:
                return False
            self._entries[key] = (value, now + ttl_s)
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def exists(self, key: str) -> bool:
        with self._lock:
            self._purge_expired(self._clock())
            return key in self._entries

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
