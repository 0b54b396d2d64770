from __future__ import annotations

from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request

from crq_webhook.api.routes import admission, health, metrics
from crq_webhook.application.quota.decision_engine import QuotaDecisionEngine
from crq_webhook.application.quota.extractor import ResourceExtractor
from crq_webhook.application.quota.reservations import QuotaLockRegistry, ReservationLedger
from crq_webhook.application.services.admission_handler import AdmissionHandler
from crq_webhook.application.services.event_retention import EventRetentionService
from crq_webhook.application.services.scope_resolver import NamespaceScopeResolver
from crq_webhook.application.services.usage_aggregator import UsageAggregator
from crq_webhook.core.logging import configure_logging, get_logger
from crq_webhook.core.settings import Settings, get_settings
from crq_webhook.domain.services.cluster_reader import ClusterReader
from crq_webhook.domain.services.metrics_sink import MetricsSink
from crq_webhook.infrastructure.kube_client import KubernetesClientFactory
from crq_webhook.infrastructure.memory_cluster import InMemoryCluster
from crq_webhook.monitoring.metrics import PrometheusMetricsSink


logger = get_logger(__name__)


def build_admission_handler(
    settings: Settings,
    reader: ClusterReader,
    metrics_sink: MetricsSink,
) -> AdmissionHandler:
    """Wire the admission path from settings resolved once per process."""

    extractor = ResourceExtractor(
        pod_tracked_resources=settings.pod_tracked_resources,
        object_count_resources=settings.object_count_resources,
    )
    resolver = NamespaceScopeResolver(
        reader,
        exclude_label_key=settings.exclude_namespace_label_key,
        excluded_namespaces=settings.all_excluded_namespaces(),
    )
    ledger = ReservationLedger(ttl_s=settings.reservation_ttl_s)
    aggregator = UsageAggregator(
        reader=reader,
        resolver=resolver,
        extractor=extractor,
        ledger=ledger,
        metrics=metrics_sink,
        status_max_age_s=settings.status_max_age_s,
    )
    engine = QuotaDecisionEngine(
        reader=reader,
        resolver=resolver,
        aggregator=aggregator,
        ledger=ledger,
        locks=QuotaLockRegistry(),
    )
    return AdmissionHandler(
        engine=engine,
        extractor=extractor,
        metrics=metrics_sink,
        admission_timeout_s=settings.admission_timeout_s,
        fail_open=settings.fail_open,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context."""

    settings: Settings = app.state.settings
    configure_logging(json=settings.environment != "dev", level=settings.log_level)

    if settings.sentry_dsn:
        sentry_sdk.init(dsn=settings.sentry_dsn, traces_sample_rate=0.1)

    # Initialize shared services
    factory: KubernetesClientFactory | None = None
    reader: ClusterReader | None = getattr(app.state, "cluster_reader", None)
    if reader is None:
        if settings.kube_api_url == "memory://":
            reader = InMemoryCluster()
        else:
            factory = KubernetesClientFactory(settings)
            reader = factory.get_reader()

    metrics_sink = PrometheusMetricsSink()
    handler = build_admission_handler(settings, reader, metrics_sink)

    retention: EventRetentionService | None = None
    if settings.event_cleanup_enabled:
        retention = EventRetentionService(
            reader,
            metrics_sink,
            sources=[settings.event_controller_source, settings.event_webhook_source],
            max_age_s=settings.event_max_age_s,
            max_per_crq=settings.event_max_per_crq,
            interval_s=settings.event_cleanup_interval_s,
        )
        await retention.start()

    # Store in app state for dependencies
    app.state.cluster_reader = reader
    app.state.metrics = metrics_sink
    app.state.admission_handler = handler

    logger.info(f"Admission webhook ready against {settings.kube_api_url}")

    yield

    # Cleanup
    if retention is not None:
        await retention.stop()
    if factory is not None:
        await factory.shutdown()


def create_app(
    settings: Settings | None = None,
    cluster_reader: ClusterReader | None = None,
) -> FastAPI:
    """Application factory."""

    settings = settings or get_settings()
    app = FastAPI(
        title=settings.app_name,
        version=settings.api_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    if cluster_reader is not None:
        app.state.cluster_reader = cluster_reader

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f"Incoming {request.method} request to {request.url.path}")
        response = await call_next(request)
        logger.info(f"Response status: {response.status_code}")
        return response

    @app.get("/")
    async def root():
        return {
            "name": settings.app_name,
            "version": settings.api_version,
            "status": "online",
            "message": "ClusterResourceQuota admission webhook. Access /readyz for status.",
        }

    app.include_router(health.router)
    app.include_router(metrics.router)
    app.include_router(admission.router)

    return app


app = create_app()
