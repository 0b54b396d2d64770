from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable, Iterable, Sequence
from decimal import Decimal

from crq_webhook.application.quota.extractor import ObjectFamily, ResourceExtractor, object_key
from crq_webhook.application.quota.reservations import ReservationLedger
from crq_webhook.application.services.scope_resolver import NamespaceScopeResolver, ScopeResolution
from crq_webhook.core.logging import get_logger
from crq_webhook.domain.errors import ExtractionError
from crq_webhook.domain.models import ClusterResourceQuota, Namespace, UsageSnapshot, UsageSource
from crq_webhook.domain.quantity import ZERO, add_into
from crq_webhook.domain.services.cluster_reader import ClusterReader
from crq_webhook.domain.services.metrics_sink import MetricsSink


logger = get_logger(__name__)


class UsageAggregator:
    """Reads the current usage of a quota, one snapshot per resource.

    The reconciler-maintained status is used when it is fresh and agrees with
    the current scope; otherwise usage is recomputed from live listings. The
    aggregator never writes quota status.
    """

    def __init__(
        self,
        *,
        reader: ClusterReader,
        resolver: NamespaceScopeResolver,
        extractor: ResourceExtractor,
        ledger: ReservationLedger,
        metrics: MetricsSink,
        status_max_age_s: float = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._reader = reader
        self._resolver = resolver
        self._extractor = extractor
        self._ledger = ledger
        self._metrics = metrics
        self._status_max_age_s = status_max_age_s
        self._clock = clock

    async def snapshot(
        self,
        quota: ClusterResourceQuota,
        resources: Iterable[str],
        *,
        namespaces: Sequence[Namespace] | None = None,
        exclude_key: str | None = None,
        use_status: bool = True,
    ) -> dict[str, UsageSnapshot]:
        """Aggregate usage of `resources` across the quota's scope.

        Args:
            quota: Quota whose scope and status are used.
            resources: Resource names to aggregate.
            namespaces: Pre-fetched namespace listing for this call.
            exclude_key: Object whose own reservation is ignored.
            use_status: Allow the status shortcut; False forces a live read.
        """

        started = time.perf_counter()
        scope = await self._resolver.resolve(quota, namespaces)
        wanted = sorted(set(resources))

        snapshots: dict[str, UsageSnapshot] = {}
        live: list[str] = []
        for resource in wanted:
            from_status = self._from_status(quota, resource, scope) if use_status else None
            if from_status is None:
                live.append(resource)
            else:
                snapshots[resource] = from_status

        visible: set[str] = set()
        if live:
            per_namespace, visible = await self._live_usage(quota, live, scope)
            for resource in live:
                snapshots[resource] = UsageSnapshot(
                    crq_name=quota.name,
                    resource=resource,
                    per_namespace={ns: used.get(resource, ZERO) for ns, used in per_namespace.items()},
                    source=UsageSource.LIVE,
                )

        observed_since = quota.status_updated_at.timestamp() if quota.status_updated_at else None
        for resource, snap in snapshots.items():
            if snap.source == UsageSource.LIVE:
                snap.reserved = self._ledger.reserved(
                    quota.name, resource, visible_keys=visible, exclude_key=exclude_key
                )
            else:
                snap.reserved = self._ledger.reserved(
                    quota.name, resource, observed_since=observed_since, exclude_key=exclude_key
                )
            self._publish(snap)

        self._metrics.observe_aggregation(crq_name=quota.name, duration_s=time.perf_counter() - started)
        return snapshots

    def _from_status(
        self,
        quota: ClusterResourceQuota,
        resource: str,
        scope: ScopeResolution,
    ) -> UsageSnapshot | None:
        if resource not in quota.status_used or quota.status_updated_at is None:
            return None
        age = self._clock() - quota.status_updated_at.timestamp()
        if age > self._status_max_age_s:
            return None
        if sorted(quota.tracked_namespaces) != scope.selected:
            return None

        per_namespace = {ns.namespace: ns.used.get(resource, ZERO) for ns in quota.status_namespaces}
        if sum(per_namespace.values(), ZERO) != quota.status_used[resource]:
            logger.warning(
                "Quota status is inconsistent, recomputing",
                extra={"crq_extra": json.dumps({"crq_name": quota.name, "resource": resource})},
            )
            return None

        return UsageSnapshot(
            crq_name=quota.name,
            resource=resource,
            per_namespace=per_namespace,
            source=UsageSource.STATUS,
            taken_at=quota.status_updated_at.timestamp(),
        )

    async def _live_usage(
        self,
        quota: ClusterResourceQuota,
        resources: list[str],
        scope: ScopeResolution,
    ) -> tuple[dict[str, dict[str, Decimal]], set[str]]:
        # Namespaces that left the selector stay counted until the reconciler
        # drops them from status.
        targets = sorted((set(scope.selected) | set(quota.tracked_namespaces)) - scope.excluded)
        families: dict[str, ObjectFamily] = {}
        for resource in resources:
            family = self._extractor.family_for(resource)
            if family is not None:
                families[family.qualified] = family

        per_namespace: dict[str, dict[str, Decimal]] = {ns: {} for ns in targets}
        visible: set[str] = set()
        pairs = [(ns, family) for ns in targets for family in families.values()]
        listings = await asyncio.gather(
            *(
                self._reader.list_objects(
                    group=family.group,
                    version=family.version,
                    plural=family.plural,
                    namespace=ns,
                )
                for ns, family in pairs
            )
        )

        for (ns, family), objects in zip(pairs, listings):
            for obj in objects:
                try:
                    usage = self._extractor.usage_of(family, obj)
                except ExtractionError as exc:
                    logger.warning(
                        "Skipping unreadable object during usage recompute",
                        extra={
                            "crq_extra": json.dumps(
                                {"crq_name": quota.name, "namespace": ns, "family": family.qualified, "error": exc.message}
                            )
                        },
                    )
                    continue
                add_into(per_namespace[ns], usage)
                visible.add(object_key(obj, ns))

        return per_namespace, visible

    def _publish(self, snap: UsageSnapshot) -> None:
        for namespace, value in snap.per_namespace.items():
            self._metrics.set_namespace_usage(
                crq_name=snap.crq_name,
                namespace=namespace,
                resource=snap.resource,
                value=value,
            )
        self._metrics.set_total_usage(crq_name=snap.crq_name, resource=snap.resource, value=snap.total)
