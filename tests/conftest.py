"""Shared fixtures: an in-memory cluster with two team namespaces."""

from __future__ import annotations

import pytest

from crq_webhook.application.quota.extractor import ResourceExtractor
from crq_webhook.application.quota.reservations import ReservationLedger
from crq_webhook.application.services.scope_resolver import NamespaceScopeResolver
from crq_webhook.application.services.usage_aggregator import UsageAggregator
from crq_webhook.core.settings import DEFAULT_OBJECT_COUNT_RESOURCES, Settings
from crq_webhook.infrastructure.memory_cluster import InMemoryCluster
from crq_webhook.main import build_admission_handler
from crq_webhook.monitoring.metrics import PrometheusMetricsSink


EXCLUDE_LABEL = "pac-quota-controller.powerapp.cloud/exclude"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        kube_api_url="memory://",
        excluded_namespaces=["kube-system"],
        own_namespace="crq-system",
        admission_timeout_s=2.0,
    )


@pytest.fixture
def cluster() -> InMemoryCluster:
    cluster = InMemoryCluster()
    cluster.add_namespace("ns-a", {"team": "payments"})
    cluster.add_namespace("ns-b", {"team": "payments"})
    cluster.add_namespace("ns-other", {"team": "search"})
    cluster.add_namespace("ns-excluded", {"team": "payments", EXCLUDE_LABEL: "true"})
    cluster.add_namespace("kube-system", {})
    cluster.add_namespace("crq-system", {"team": "payments"})
    return cluster


@pytest.fixture
def metrics() -> PrometheusMetricsSink:
    return PrometheusMetricsSink()


@pytest.fixture
def extractor() -> ResourceExtractor:
    return ResourceExtractor(
        pod_tracked_resources=["cpu", "memory", "ephemeral-storage", "nvidia.com/gpu"],
        object_count_resources=DEFAULT_OBJECT_COUNT_RESOURCES,
    )


@pytest.fixture
def resolver(cluster, settings) -> NamespaceScopeResolver:
    return NamespaceScopeResolver(
        cluster,
        exclude_label_key=settings.exclude_namespace_label_key,
        excluded_namespaces=settings.all_excluded_namespaces(),
    )


@pytest.fixture
def ledger() -> ReservationLedger:
    return ReservationLedger(ttl_s=30.0)


@pytest.fixture
def aggregator(cluster, resolver, extractor, ledger, metrics) -> UsageAggregator:
    return UsageAggregator(
        reader=cluster,
        resolver=resolver,
        extractor=extractor,
        ledger=ledger,
        metrics=metrics,
        status_max_age_s=5.0,
    )


@pytest.fixture
def handler(cluster, settings, metrics):
    return build_admission_handler(settings, cluster, metrics)
