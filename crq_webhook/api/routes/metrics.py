from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST

from crq_webhook.api.dependencies import get_metrics_sink
from crq_webhook.monitoring.metrics import PrometheusMetricsSink


router = APIRouter(tags=["metrics"])


@router.get("/metrics", summary="Prometheus metrics")
async def metrics(sink: PrometheusMetricsSink = Depends(get_metrics_sink)) -> Response:
    return Response(content=sink.render(), media_type=CONTENT_TYPE_LATEST)
