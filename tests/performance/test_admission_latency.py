from __future__ import annotations

import asyncio
import time
import statistics
import logging

from crq_webhook.core.settings import Settings
from crq_webhook.domain.models import AdmissionKind
from crq_webhook.infrastructure.memory_cluster import InMemoryCluster
from crq_webhook.main import build_admission_handler
from crq_webhook.monitoring.metrics import PrometheusMetricsSink

from tests.builders import make_crq, make_pod, make_review

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def seed_cluster(namespaces: int = 20, pods_per_namespace: int = 50) -> InMemoryCluster:
    cluster = InMemoryCluster()
    for n in range(namespaces):
        ns = f"team-{n}"
        cluster.add_namespace(ns, {"team": "payments"})
        for p in range(pods_per_namespace):
            cluster.put_object("pods", ns, make_pod(f"pod-{p}", ns, requests={"cpu": "100m", "memory": "128Mi"}))
    cluster.put_quota(
        make_crq(
            "payments",
            {"requests.cpu": "1000", "requests.memory": "1Ti", "pods": "100000"},
            selector={"matchLabels": {"team": "payments"}},
        )
    )
    return cluster


async def benchmark_admission(iterations: int = 500):
    logger.info(f"Starting admission benchmark with {iterations} iterations...")

    cluster = seed_cluster()
    settings = Settings(_env_file=None, kube_api_url="memory://")
    handler = build_admission_handler(settings, cluster, PrometheusMetricsSink())

    # Every request recomputes usage live: the quota carries no status.
    latencies = []

    for i in range(iterations):
        body = make_review(make_pod(f"bench-{i}", f"team-{i % 20}", requests={"cpu": "10m"}))
        start = time.perf_counter()
        status, review = await handler.handle(body, AdmissionKind.POD)
        end = time.perf_counter()

        if status != 200 or not review["response"]["allowed"]:
            logger.error(f"Admission unexpectedly refused during benchmark: {review['response']}")
            break

        latencies.append((end - start) * 1000) # ms

    if len(latencies) < 2:
        return

    avg = statistics.mean(latencies)
    p95 = statistics.quantiles(latencies, n=20)[18]  # 95th percentile
    p99 = statistics.quantiles(latencies, n=100)[98] # 99th percentile

    logger.info("--- Benchmark Results ---")
    logger.info(f"Average Latency: {avg:.3f} ms")
    logger.info(f"P95 Latency:     {p95:.3f} ms")
    logger.info(f"P99 Latency:     {p99:.3f} ms")
    logger.info(f"Throughput:      {len(latencies) / sum(latencies) * 1000:.1f} req/s")

    target_p95 = 50.0
    if p95 <= target_p95:
        logger.info(f"SUCCESS: P95 latency ({p95:.3f}ms) is within target ({target_p95}ms)")
    else:
        logger.warning(f"FAILURE: P95 latency ({p95:.3f}ms) exceeds target ({target_p95}ms)")

if __name__ == "__main__":
    asyncio.run(benchmark_admission())
