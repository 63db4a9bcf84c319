"""
Prometheus metrics module for the TutorHub scheduling engine.

Service timings come from @measure_operation. The idempotency guard, the
notification emitter and the ledger report their own counters. Everything
lives on a private registry served by GET /metrics.
"""

from threading import Lock
from time import monotonic
from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "tutorhub_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "tutorhub_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "tutorhub_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

idempotency_claims_total = Counter(
    "tutorhub_idempotency_claims_total",
    "Idempotency claim outcomes",
    ["outcome"],  # claimed | duplicate | store_unavailable
    registry=REGISTRY,
)

schedule_lock_total = Counter(
    "tutorhub_schedule_lock_total",
    "Tutor-day scheduling mutex operations",
    ["action", "outcome"],  # acquire|release x success|blocked|error
    registry=REGISTRY,
)

notifications_total = Counter(
    "tutorhub_notifications_total",
    "Notifications handed to the delivery collaborator",
    ["kind", "status"],  # status: sent | failed
    registry=REGISTRY,
)

ledger_reminders_total = Counter(
    "tutorhub_ledger_reminders_total",
    "Payment reminders triggered by the ledger",
    ["trigger"],  # threshold | manual
    registry=REGISTRY,
)

_METRICS_TTL_SECONDS = 1.0


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    _cache_lock: Lock = Lock()
    _cache_payload: Optional[bytes] = None
    _cache_ts: Optional[float] = None

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'BookingService')
            operation: Operation/method name (e.g., 'create_appointment')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()

        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()
        PrometheusMetrics.invalidate_cache()

    @staticmethod
    def record_idempotency_claim(outcome: str) -> None:
        idempotency_claims_total.labels(outcome=outcome).inc()
        PrometheusMetrics.invalidate_cache()

    @staticmethod
    def record_schedule_lock(action: str, outcome: str) -> None:
        schedule_lock_total.labels(action=action, outcome=outcome).inc()
        PrometheusMetrics.invalidate_cache()

    @staticmethod
    def record_notification(kind: str, status: str) -> None:
        notifications_total.labels(kind=kind, status=status).inc()
        PrometheusMetrics.invalidate_cache()

    @staticmethod
    def record_ledger_reminder(trigger: str) -> None:
        ledger_reminders_total.labels(trigger=trigger).inc()
        PrometheusMetrics.invalidate_cache()

    @staticmethod
    def get_metrics() -> bytes:
        """
        Generate Prometheus metrics in exposition format.

        Returns:
            Metrics data in Prometheus text format
        """
        now = monotonic()
        payload = PrometheusMetrics._cache_payload
        ts = PrometheusMetrics._cache_ts

        if payload is not None and ts is not None and (now - ts) <= _METRICS_TTL_SECONDS:
            return payload

        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_payload = cast(bytes, generate_latest(REGISTRY))
            PrometheusMetrics._cache_ts = monotonic()
            return PrometheusMetrics._cache_payload

    @staticmethod
    def get_content_type() -> str:
        """Get the content type for Prometheus metrics."""
        return cast(str, CONTENT_TYPE_LATEST)

    @staticmethod
    def invalidate_cache() -> None:
        """Invalidate cached metrics so next scrape refreshes."""

        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_ts = None
            PrometheusMetrics._cache_payload = None


# Singleton instance
prometheus_metrics = PrometheusMetrics()
