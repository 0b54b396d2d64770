from __future__ import annotations

from decimal import Decimal

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from crq_webhook.domain.services.metrics_sink import MetricsSink


class PrometheusMetricsSink(MetricsSink):
    """MetricsSink backed by prometheus_client collectors on its own registry."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()

        self.crq_usage = Gauge(
            "crq_webhook_crq_usage",
            "Current usage of a resource in one namespace of a ClusterResourceQuota",
            ["crq_name", "namespace", "resource"],
            registry=self.registry,
        )
        self.crq_total_usage = Gauge(
            "crq_webhook_crq_total_usage",
            "Current usage of a resource across a ClusterResourceQuota",
            ["crq_name", "resource"],
            registry=self.registry,
        )
        self.decision_total = Counter(
            "crq_webhook_admission_decision_total",
            "Admission decisions by kind, operation and outcome",
            ["kind", "operation", "outcome"],
            registry=self.registry,
        )
        self.decision_duration_seconds = Histogram(
            "crq_webhook_admission_duration_seconds",
            "Admission decision duration in seconds",
            ["kind", "outcome"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self.registry,
        )
        self.aggregation_duration_seconds = Histogram(
            "crq_webhook_aggregation_duration_seconds",
            "Usage aggregation duration per ClusterResourceQuota in seconds",
            ["crq_name"],
            buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
            registry=self.registry,
        )
        self.errors_total = Counter(
            "crq_webhook_errors_total",
            "Non-allow admission outcomes by reason",
            ["reason"],
            registry=self.registry,
        )
        self.event_cleanup_deleted_total = Counter(
            "crq_webhook_event_cleanup_deleted_total",
            "Events deleted by the retention sweep",
            ["source"],
            registry=self.registry,
        )

    def record_decision(self, *, kind: str, operation: str, outcome: str, duration_s: float) -> None:
        self.decision_total.labels(kind=kind, operation=operation, outcome=outcome).inc()
        self.decision_duration_seconds.labels(kind=kind, outcome=outcome).observe(duration_s)

    def record_error(self, reason: str) -> None:
        self.errors_total.labels(reason=reason).inc()

    def error_count(self, reason: str) -> int:
        value = self.registry.get_sample_value("crq_webhook_errors_total", {"reason": reason})
        return int(value or 0)

    def set_namespace_usage(self, *, crq_name: str, namespace: str, resource: str, value: Decimal) -> None:
        self.crq_usage.labels(crq_name=crq_name, namespace=namespace, resource=resource).set(float(value))

    def set_total_usage(self, *, crq_name: str, resource: str, value: Decimal) -> None:
        self.crq_total_usage.labels(crq_name=crq_name, resource=resource).set(float(value))

    def observe_aggregation(self, *, crq_name: str, duration_s: float) -> None:
        self.aggregation_duration_seconds.labels(crq_name=crq_name).observe(duration_s)

    def record_event_cleanup(self, *, source: str, deleted: int) -> None:
        self.event_cleanup_deleted_total.labels(source=source).inc(deleted)

    def render(self) -> bytes:
        return generate_latest(self.registry)
