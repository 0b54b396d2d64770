from __future__ import annotations

from decimal import Decimal
from typing import Protocol, runtime_checkable


@runtime_checkable
class MetricsSink(Protocol):
    """Metrics emitted by the admission path.

    A sink is constructed once and injected; nothing in the core reaches for a
    process-wide registry.
    """

    def record_decision(self, *, kind: str, operation: str, outcome: str, duration_s: float) -> None:
        """Count one admission decision and observe its duration."""

    def record_error(self, reason: str) -> None:
        """Count one non-allow outcome by reason."""

    def error_count(self, reason: str) -> int:
        """Return how many times `reason` has been recorded by this sink."""

    def set_namespace_usage(self, *, crq_name: str, namespace: str, resource: str, value: Decimal) -> None:
        ...

    def set_total_usage(self, *, crq_name: str, resource: str, value: Decimal) -> None:
        ...

    def observe_aggregation(self, *, crq_name: str, duration_s: float) -> None:
        ...

    def record_event_cleanup(self, *, source: str, deleted: int) -> None:
        ...
