from __future__ import annotations

from fastapi import Request

from crq_webhook.application.services.admission_handler import AdmissionHandler
from crq_webhook.monitoring.metrics import PrometheusMetricsSink


def get_admission_handler(request: Request) -> AdmissionHandler:
    """Return the AdmissionHandler singleton."""
    return request.app.state.admission_handler


def get_metrics_sink(request: Request) -> PrometheusMetricsSink:
    """Return the metrics sink owned by this application."""
    return request.app.state.metrics
