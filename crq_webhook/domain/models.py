from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from crq_webhook.domain.errors import (
    AdmissionError,
    DecisionReason,
    InvalidQuotaObject,
)
from crq_webhook.domain.quantity import ZERO, QuantityError, parse
from crq_webhook.domain.quantity import total as sum_quantities
from crq_webhook.domain.selectors import LabelSelector, SelectorError


class AdmissionKind(str, Enum):
    """Closed set of object kinds the webhook admits."""

    POD = "Pod"
    PERSISTENT_VOLUME_CLAIM = "PersistentVolumeClaim"
    SERVICE = "Service"
    NAMESPACE = "Namespace"
    CLUSTER_RESOURCE_QUOTA = "ClusterResourceQuota"
    OBJECT_COUNT = "ObjectCount"


class DecisionState(str, Enum):
    PENDING = "pending"
    ALLOWED = "allowed"
    DENIED = "denied"
    ERRORED = "errored"


class UsageSource(str, Enum):
    STATUS = "status"
    LIVE = "live"


@dataclass(frozen=True, slots=True)
class Namespace:
    """Namespace name and labels as seen by the scope resolver."""

    name: str
    labels: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Namespace":
        metadata = _mapping(raw.get("metadata"))
        labels = _mapping(metadata.get("labels"))
        return cls(
            name=str(metadata.get("name") or ""),
            labels={str(k): str(v) for k, v in labels.items()},
        )


@dataclass(frozen=True, slots=True)
class NamespaceUsage:
    namespace: str
    used: Mapping[str, Decimal] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ClusterResourceQuota:
    """Domain entity for a ClusterResourceQuota.

    Args:
        name: Cluster-scoped object name.
        selector: Namespace selector; None means the field was omitted.
        hard: Resource name to hard limit.
        status_used: Aggregated usage written by the reconciler.
        status_namespaces: Per-namespace usage written by the reconciler.
        status_updated_at: Time of the last status write, when known.
    """

    name: str
    selector: LabelSelector | None
    hard: Mapping[str, Decimal]
    status_used: Mapping[str, Decimal] = field(default_factory=dict)
    status_namespaces: tuple[NamespaceUsage, ...] = ()
    status_updated_at: datetime | None = None

    @property
    def tracked_namespaces(self) -> list[str]:
        return [ns.namespace for ns in self.status_namespaces]

    @classmethod
    def from_dict(cls, raw: Any) -> "ClusterResourceQuota":
        """Build and structurally validate a CRQ from its JSON form.

        Raises:
            InvalidQuotaObject: on negative or unparseable limits, duplicate
                resource names, or a malformed namespace selector.
        """

        if not isinstance(raw, Mapping):
            raise InvalidQuotaObject("ClusterResourceQuota must be a JSON object")

        metadata = raw.get("metadata") or {}
        spec = raw.get("spec") or {}
        if not isinstance(metadata, Mapping) or not isinstance(spec, Mapping):
            raise InvalidQuotaObject("ClusterResourceQuota metadata and spec must be objects")

        try:
            selector = LabelSelector.from_dict(spec.get("namespaceSelector"))
        except SelectorError as exc:
            raise InvalidQuotaObject(f"invalid namespaceSelector: {exc}") from exc

        raw_hard = spec.get("hard") or {}
        if not isinstance(raw_hard, Mapping):
            raise InvalidQuotaObject("spec.hard must be a map of resource name to quantity")

        duplicates = sorted(set(getattr(raw_hard, "duplicate_keys", ())))
        if duplicates:
            raise InvalidQuotaObject(f"spec.hard has duplicate resource names: {', '.join(duplicates)}")

        hard: dict[str, Decimal] = {}
        for resource, value in raw_hard.items():
            if not isinstance(resource, str) or not resource.strip():
                raise InvalidQuotaObject("spec.hard resource names must be non-empty strings")
            try:
                limit = parse(value)
            except QuantityError as exc:
                raise InvalidQuotaObject(f"spec.hard[{resource}]: {exc}") from exc
            if limit < ZERO:
                raise InvalidQuotaObject(f"spec.hard[{resource}] must not be negative, got {value}")
            hard[resource] = limit

        status = _mapping(raw.get("status"))
        raw_namespaces = status.get("namespaces")
        status_namespaces = tuple(
            NamespaceUsage(
                namespace=str(item.get("namespace") or ""),
                used=_lenient_resource_list(_mapping(item.get("status")).get("used")),
            )
            for item in (raw_namespaces if isinstance(raw_namespaces, list) else [])
            if isinstance(item, Mapping)
        )

        return cls(
            name=str(metadata.get("name") or ""),
            selector=selector,
            hard=hard,
            status_used=_lenient_resource_list(_mapping(status.get("total")).get("used")),
            status_namespaces=status_namespaces,
            status_updated_at=_status_updated_at(metadata.get("managedFields")),
        )


def _mapping(raw: Any) -> Mapping[str, Any]:
    return raw if isinstance(raw, Mapping) else {}


def _lenient_resource_list(raw: Any) -> dict[str, Decimal]:
    # Status is advisory; unreadable entries are dropped and the aggregator
    # falls back to a live recompute for them.
    result: dict[str, Decimal] = {}
    if not isinstance(raw, Mapping):
        return result
    for name, value in raw.items():
        try:
            result[str(name)] = parse(value)
        except QuantityError:
            continue
    return result


def _status_updated_at(managed_fields: Any) -> datetime | None:
    latest: datetime | None = None
    if not isinstance(managed_fields, list):
        return None
    for entry in managed_fields:
        if not isinstance(entry, Mapping) or entry.get("subresource") != "status":
            continue
        raw_time = entry.get("time")
        if not isinstance(raw_time, str):
            continue
        try:
            stamp = datetime.fromisoformat(raw_time.replace("Z", "+00:00"))
        except ValueError:
            continue
        if latest is None or stamp > latest:
            latest = stamp
    return latest


@dataclass(slots=True)
class ResourceRequest:
    """Resource deltas an object would add to its namespace if admitted."""

    namespace: str
    object_key: str
    deltas: dict[str, Decimal] = field(default_factory=dict)

    def minus(self, previous: "ResourceRequest") -> "ResourceRequest":
        names = set(self.deltas) | set(previous.deltas)
        return ResourceRequest(
            namespace=self.namespace,
            object_key=self.object_key,
            deltas={
                name: self.deltas.get(name, ZERO) - previous.deltas.get(name, ZERO)
                for name in sorted(names)
            },
        )

    def positive(self) -> dict[str, Decimal]:
        return {name: value for name, value in self.deltas.items() if value > ZERO}


@dataclass(slots=True)
class UsageSnapshot:
    """Point-in-time usage of one resource for one CRQ."""

    crq_name: str
    resource: str
    per_namespace: dict[str, Decimal]
    source: UsageSource
    reserved: Decimal = ZERO
    taken_at: float = field(default_factory=time.time)

    @property
    def observed(self) -> Decimal:
        return sum_quantities(self.per_namespace.values())

    @property
    def total(self) -> Decimal:
        return self.observed + self.reserved


@dataclass(slots=True)
class AdmissionDecision:
    """Terminal state machine: Pending -> Allowed | Denied | Errored."""

    state: DecisionState = DecisionState.PENDING
    reason: DecisionReason = DecisionReason.ALLOWED
    message: str = ""
    warnings: list[str] = field(default_factory=list)
    admitted_on_error: bool = False

    @property
    def allowed(self) -> bool:
        if self.state == DecisionState.ERRORED:
            return self.admitted_on_error
        return self.state == DecisionState.ALLOWED

    @property
    def code(self) -> int:
        return self.reason.http_code

    @property
    def is_terminal(self) -> bool:
        return self.state != DecisionState.PENDING

    def _transition(self, state: DecisionState, reason: DecisionReason, message: str) -> "AdmissionDecision":
        if self.is_terminal:
            raise RuntimeError(f"decision already {self.state.value}, cannot move to {state.value}")
        self.state = state
        self.reason = reason
        self.message = message
        return self

    def allow(self, message: str = "") -> "AdmissionDecision":
        return self._transition(DecisionState.ALLOWED, DecisionReason.ALLOWED, message)

    def deny(self, reason: DecisionReason, message: str) -> "AdmissionDecision":
        return self._transition(DecisionState.DENIED, reason, message)

    def error(self, reason: DecisionReason, message: str, *, admit: bool = False) -> "AdmissionDecision":
        self._transition(DecisionState.ERRORED, reason, message)
        self.admitted_on_error = admit
        return self

    def fail(self, exc: AdmissionError, *, admit_on_error: bool = False) -> "AdmissionDecision":
        if exc.reason.is_policy_denial:
            return self.deny(exc.reason, exc.message)
        return self.error(exc.reason, exc.message, admit=admit_on_error)
