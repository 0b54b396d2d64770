from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from crq_webhook.application.quota.reservations import QuotaLockRegistry, ReservationLedger
from crq_webhook.application.services.scope_resolver import NamespaceScopeResolver
from crq_webhook.application.services.usage_aggregator import UsageAggregator
from crq_webhook.core.logging import get_logger
from crq_webhook.domain.errors import (
    ExtractionError,
    InvalidQuotaObject,
    NamespaceConflict,
    QuotaExceeded,
)
from crq_webhook.domain.models import (
    AdmissionDecision,
    ClusterResourceQuota,
    Namespace,
    ResourceRequest,
)
from crq_webhook.domain.quantity import format_quantity
from crq_webhook.domain.services.cluster_reader import ClusterReader


logger = get_logger(__name__)


class QuotaDecisionEngine:
    """Decides whether an admission fits within every applicable quota.

    Check-and-reserve for a quota runs under that quota's lock, so within one
    process two admissions against the same quota are strictly sequential.
    Each method returns an allowed decision or raises an AdmissionError.
    """

    def __init__(
        self,
        *,
        reader: ClusterReader,
        resolver: NamespaceScopeResolver,
        aggregator: UsageAggregator,
        ledger: ReservationLedger,
        locks: QuotaLockRegistry,
    ) -> None:
        self._reader = reader
        self._resolver = resolver
        self._aggregator = aggregator
        self._ledger = ledger
        self._locks = locks

    async def admit_workload(self, request: ResourceRequest, *, dry_run: bool = False) -> AdmissionDecision:
        """Check a workload delta against every quota selecting its namespace.

        Raises:
            QuotaExceeded: when `current + delta > hard` for any tracked
                resource of any applicable quota.
        """

        decision = AdmissionDecision()
        increases = request.positive()
        if not increases:
            return decision.allow("no resource increase")

        namespaces = await self._resolver.list_namespaces()
        namespace = next((ns for ns in namespaces if ns.name == request.namespace), None)
        if namespace is None:
            return decision.allow(f"namespace {request.namespace} is not known")

        quotas = self._resolver.quotas_selecting(namespace, await self._reader.list_cluster_resource_quotas())
        if not quotas:
            return decision.allow()

        async with self._locks.hold(q.name for q in quotas):
            for quota in quotas:
                # Resources absent from spec.hard are unlimited here.
                checked = sorted(set(increases) & set(quota.hard))
                if not checked:
                    continue
                snapshots = await self._aggregator.snapshot(
                    quota,
                    checked,
                    namespaces=namespaces,
                    exclude_key=request.object_key,
                )
                for resource in checked:
                    current = snapshots[resource].total
                    if current + increases[resource] > quota.hard[resource]:
                        raise QuotaExceeded(
                            crq_name=quota.name,
                            resource=resource,
                            current=current,
                            requested=increases[resource],
                            limit=quota.hard[resource],
                        )

            if not dry_run:
                for quota in quotas:
                    held = {name: value for name, value in increases.items() if name in quota.hard}
                    if held:
                        self._ledger.reserve(quota.name, request.object_key, held)

        if len(quotas) > 1:
            decision.warnings.append(
                f"namespace {request.namespace} is selected by several ClusterResourceQuotas: "
                + ", ".join(q.name for q in quotas)
            )
        return decision.allow()

    async def admit_quota(self, obj: Any, *, is_update: bool) -> AdmissionDecision:
        """Validate a ClusterResourceQuota being created or updated.

        Raises:
            InvalidQuotaObject: on a malformed object, a namespace already
                owned by another quota, or (on update) a limit lowered below
                the live usage of its scope.
        """

        quota = ClusterResourceQuota.from_dict(obj)
        if not quota.name:
            raise InvalidQuotaObject("metadata.name is required")

        namespaces = await self._resolver.list_namespaces()
        scope = await self._resolver.resolve(quota, namespaces)
        others = [q for q in await self._reader.list_cluster_resource_quotas() if q.name != quota.name]
        by_name = {ns.name: ns for ns in namespaces}
        for name in scope.selected:
            owners = self._resolver.quotas_selecting(by_name[name], others)
            if owners:
                raise InvalidQuotaObject(
                    f"namespace {name} is already selected by ClusterResourceQuota '{owners[0].name}'"
                )

        if not is_update or not quota.hard:
            return AdmissionDecision().allow()

        async with self._locks.hold([quota.name]):
            snapshots = await self._aggregator.snapshot(quota, quota.hard, namespaces=namespaces, use_status=False)

        for resource in sorted(quota.hard):
            snap = snapshots[resource]
            limit = quota.hard[resource]
            if snap.total > limit:
                breakdown = ", ".join(
                    f"{ns}: {format_quantity(value, resource)}"
                    for ns, value in sorted(snap.per_namespace.items())
                    if value
                )
                logger.info(
                    "Rejecting quota update below current usage",
                    extra={"crq_extra": json.dumps({"crq_name": quota.name, "resource": resource})},
                )
                raise InvalidQuotaObject(
                    f"ClusterResourceQuota '{quota.name}' {resource} limit "
                    f"{format_quantity(limit, resource)} is below current usage "
                    f"{format_quantity(snap.total, resource)} ({breakdown or 'in-flight admissions'})"
                )
        return AdmissionDecision().allow()

    async def admit_namespace(self, obj: Any) -> AdmissionDecision:
        """Reject a namespace whose labels would put it under several quotas.

        Raises:
            NamespaceConflict: when more than one quota would select it.
        """

        if not isinstance(obj, Mapping) or not isinstance(obj.get("metadata") or {}, Mapping):
            raise ExtractionError("Namespace object must be a JSON object")
        namespace = Namespace.from_dict(obj)
        if not namespace.name:
            raise ExtractionError("Namespace metadata.name is required")

        owners = self._resolver.quotas_selecting(namespace, await self._reader.list_cluster_resource_quotas())
        if len(owners) > 1:
            raise NamespaceConflict(
                f"namespace {namespace.name} would be selected by multiple ClusterResourceQuotas: "
                + ", ".join(q.name for q in owners)
            )
        return AdmissionDecision().allow()
