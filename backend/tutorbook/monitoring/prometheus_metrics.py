"""
Prometheus metrics for TutorBook.

Service timings come from the ``@measure_operation`` decorator; the payment
flows add counters for webhook outcomes, captures and orphaned-hold refunds.
"""

from typing import Optional

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

# Custom registry so test runs and reloads never collide with the default one
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "tutorbook_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "tutorbook_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "tutorbook_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

webhook_events_total = Counter(
    "tutorbook_webhook_events_total",
    "Gateway webhook events by type and reconciliation outcome",
    ["event_type", "outcome"],
    registry=REGISTRY,
)

orphaned_hold_refunds_total = Counter(
    "tutorbook_orphaned_hold_refunds_total",
    "Refunds issued for authorizations whose lesson no longer exists",
    ["status"],
    registry=REGISTRY,
)

payment_captures_total = Counter(
    "tutorbook_payment_captures_total",
    "Lesson payment capture attempts",
    ["status"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin facade over the module-level collectors."""

    content_type = CONTENT_TYPE_LATEST

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
            operation: Operation name (e.g., 'create_lesson')
            duration: Operation duration in seconds
            status: 'success' or 'error'
            error_type: Exception class name if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_webhook_event(event_type: str, outcome: str) -> None:
        webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    @staticmethod
    def record_orphan_refund(status: str) -> None:
        orphaned_hold_refunds_total.labels(status=status).inc()

    @staticmethod
    def record_capture(status: str) -> None:
        payment_captures_total.labels(status=status).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        return generate_latest(REGISTRY)


prometheus_metrics = PrometheusMetrics()
