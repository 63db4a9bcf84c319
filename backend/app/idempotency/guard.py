"""
Claim-once semantics for logical operations.

``claim`` atomically records that an operation key is being processed and
reports whether the caller should proceed. Successful claims are left to
expire so a replay inside the TTL is still recognised; ``release`` is for
definitive failures only.

When the store cannot be reached the guard fails open: the request is
treated as new and the event is logged as ``idempotency_store_unavailable``,
distinct from ``idempotency_duplicate_rejected``.
"""

from __future__ import annotations

from contextlib import contextmanager
import hashlib
import logging
import threading
import time
from typing import Iterator, Optional

from app.core.config import settings
from app.monitoring.prometheus_metrics import prometheus_metrics

from .store import IdempotencyStore, InMemoryIdempotencyStore, RedisIdempotencyStore

logger = logging.getLogger(__name__)

_GUARD: Optional["IdempotencyGuard"] = None
_GUARD_LOCK = threading.Lock()


def fingerprint(raw: str) -> str:
    """Stable sha256 hex digest of a raw operation key."""
    return hashlib.sha256(raw.encode()).hexdigest()


def request_key(*parts: object) -> str:
    """Join request components into a raw operation key."""
    return ":".join(str(part) for part in parts)


class IdempotencyGuard:
    def __init__(
        self,
        store: IdempotencyStore,
        namespace: Optional[str] = None,
        default_ttl_s: Optional[int] = None,
    ):
        self.store = store
        self.namespace = namespace or settings.namespace
        self.default_ttl_s = default_ttl_s or settings.idempotency_ttl_seconds

    def idem_key(self, raw: str) -> str:
        return f"{self.namespace}:idem:{fingerprint(raw)}"

    def lock_key(self, raw: str) -> str:
        return f"{self.namespace}:lock:{raw}"

    def claim(self, key: str, ttl_s: Optional[int] = None) -> bool:
        """Return True if the caller owns the operation, False on a duplicate."""
        ttl = ttl_s or self.default_ttl_s
        try:
            claimed = self.store.set_if_absent(self.idem_key(key), str(time.time()), ttl)
        except Exception as exc:
            prometheus_metrics.record_idempotency_claim("store_unavailable")
            logger.warning(
                "idempotency_store_unavailable",
                extra={
                    "idempotency_key": fingerprint(key),
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return True

        if claimed:
            prometheus_metrics.record_idempotency_claim("claimed")
        else:
            prometheus_metrics.record_idempotency_claim("duplicate")
            logger.info(
                "idempotency_duplicate_rejected",
                extra={"idempotency_key": fingerprint(key)},
            )
        return claimed

    def release(self, key: str) -> None:
        """Drop a claim so a legitimate retry is not blocked for the full TTL."""
        try:
            self.store.delete(self.idem_key(key))
        except Exception as exc:
            logger.warning(
                "idempotency_release_failed",
                extra={
                    "idempotency_key": fingerprint(key),
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )

    @contextmanager
    def hold(
        self,
        key: str,
        ttl_s: Optional[int] = None,
        wait_s: Optional[float] = None,
        poll_s: Optional[float] = None,
    ) -> Iterator[bool]:
        """
        Short-lived mutex around a check-then-insert.

        Polls until the lock is taken or ``wait_s`` elapses and yields whether
        it was acquired. Store errors yield True without holding anything.
        """
        ttl = ttl_s or settings.schedule_lock_ttl_seconds
        wait = settings.schedule_lock_wait_seconds if wait_s is None else wait_s
        poll = poll_s or settings.schedule_lock_poll_seconds
        namespaced = self.lock_key(key)
        deadline = time.monotonic() + wait

        acquired = False
        degraded = False
        while True:
            try:
                acquired = self.store.set_if_absent(namespaced, str(time.time()), ttl)
            except Exception as exc:
                prometheus_metrics.record_schedule_lock("acquire", "error")
                logger.warning(
                    "schedule_lock_store_unavailable",
                    extra={
                        "lock_key": key,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
                degraded = True
                break
            if acquired or time.monotonic() >= deadline:
                break
            time.sleep(poll)

        if not degraded:
            prometheus_metrics.record_schedule_lock("acquire", "success" if acquired else "blocked")

        try:
            yield acquired or degraded
        finally:
            if acquired:
                try:
                    self.store.delete(namespaced)
                    prometheus_metrics.record_schedule_lock("release", "success")
                except Exception as exc:
                    prometheus_metrics.record_schedule_lock("release", "error")
                    logger.warning(
                        "schedule_lock_release_failed",
                        extra={
                            "lock_key": key,
                            "error": str(exc),
                            "error_type": type(exc).__name__,
                        },
                    )


def build_store() -> IdempotencyStore:
    if settings.idempotency_backend == "memory":
        return InMemoryIdempotencyStore()
    return RedisIdempotencyStore(redis_url=settings.redis_url)


def get_idempotency_guard() -> IdempotencyGuard:
    """Process-wide guard built from settings."""
    global _GUARD
    if _GUARD is not None:
        return _GUARD
    with _GUARD_LOCK:
        if _GUARD is None:
            _GUARD = IdempotencyGuard(build_store())
        return _GUARD
