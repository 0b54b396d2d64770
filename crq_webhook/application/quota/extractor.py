from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from crq_webhook.domain.errors import ExtractionError
from crq_webhook.domain.models import AdmissionKind, ResourceRequest
from crq_webhook.domain.quantity import ZERO, QuantityError, parse


ONE = Decimal(1)

STANDARD_COMPUTE_RESOURCES: tuple[str, ...] = ("cpu", "memory", "ephemeral-storage")
TERMINAL_POD_PHASES = frozenset({"Succeeded", "Failed"})
STORAGE_CLASS_SUFFIX = ".storageclass.storage.k8s.io/"

_GROUP_VERSIONS: dict[str, str] = {
    "": "v1",
    "apps": "v1",
    "batch": "v1",
    "autoscaling": "v2",
    "networking.k8s.io": "v1",
    "policy": "v1",
    "rbac.authorization.k8s.io": "v1",
    "storage.k8s.io": "v1",
}


@dataclass(frozen=True, slots=True)
class ObjectFamily:
    """A listable resource type: one API group/version/plural triple."""

    group: str
    version: str
    plural: str

    @property
    def qualified(self) -> str:
        return f"{self.plural}.{self.group}" if self.group else self.plural

    @classmethod
    def from_qualified(cls, name: str) -> "ObjectFamily":
        plural, _, group = name.partition(".")
        return cls(group=group, version=_GROUP_VERSIONS.get(group, "v1"), plural=plural)


PODS = ObjectFamily(group="", version="v1", plural="pods")
PERSISTENT_VOLUME_CLAIMS = ObjectFamily(group="", version="v1", plural="persistentvolumeclaims")
SERVICES = ObjectFamily(group="", version="v1", plural="services")


def object_key(obj: Mapping[str, Any], namespace: str, fallback: str = "") -> str:
    metadata = obj.get("metadata")
    name = metadata.get("name") if isinstance(metadata, Mapping) else None
    return f"{namespace}/{name or fallback}"


def _quantity(value: Any, where: str) -> Decimal:
    try:
        return parse(value)
    except QuantityError as exc:
        raise ExtractionError(f"{where}: {exc}") from exc


def _resource_list(container: Mapping[str, Any], field_name: str, where: str) -> Mapping[str, Any]:
    resources = container.get("resources") or {}
    if not isinstance(resources, Mapping):
        raise ExtractionError(f"{where}.resources must be an object")
    values = resources.get(field_name) or {}
    if not isinstance(values, Mapping):
        raise ExtractionError(f"{where}.resources.{field_name} must be an object")
    return values


class ResourceExtractor:
    """Maps admitted objects to the resource deltas they add to a namespace.

    The same usage functions serve the live recompute in the aggregator, so an
    object contributes identically whether it is being admitted or listed.
    """

    def __init__(
        self,
        *,
        pod_tracked_resources: Iterable[str] = STANDARD_COMPUTE_RESOURCES,
        object_count_resources: Iterable[str] = (),
    ) -> None:
        self._pod_resources = tuple(dict.fromkeys(pod_tracked_resources))
        self._object_counts: dict[str, ObjectFamily] = {
            family.qualified: family
            for family in map(ObjectFamily.from_qualified, object_count_resources)
        }

    def object_count_family(self, qualified: str) -> ObjectFamily | None:
        return self._object_counts.get(qualified)

    def pod_usage(self, pod: Mapping[str, Any]) -> dict[str, Decimal]:
        spec = pod.get("spec")
        if not isinstance(spec, Mapping):
            raise ExtractionError("pod has no spec")
        containers = spec.get("containers")
        if not isinstance(containers, list):
            raise ExtractionError("pod spec.containers must be a list")
        init_containers = spec.get("initContainers") or []
        if not isinstance(init_containers, list):
            raise ExtractionError("pod spec.initContainers must be a list")

        usage: dict[str, Decimal] = {"pods": ONE}
        for resource in self._pod_resources:
            usage[f"requests.{resource}"] = ZERO
            usage[f"limits.{resource}"] = ZERO

        for section, items in (("containers", containers), ("initContainers", init_containers)):
            for index, container in enumerate(items):
                where = f"spec.{section}[{index}]"
                if not isinstance(container, Mapping):
                    raise ExtractionError(f"{where} must be an object")
                requests = _resource_list(container, "requests", where)
                limits = _resource_list(container, "limits", where)
                # Requests are never inferred from limits.
                for resource in self._pod_resources:
                    if resource in requests:
                        usage[f"requests.{resource}"] += _quantity(
                            requests[resource], f"{where}.resources.requests.{resource}"
                        )
                    if resource in limits:
                        usage[f"limits.{resource}"] += _quantity(
                            limits[resource], f"{where}.resources.limits.{resource}"
                        )

        for resource in STANDARD_COMPUTE_RESOURCES:
            if resource in self._pod_resources:
                usage[resource] = usage[f"requests.{resource}"]
        return usage

    def pvc_usage(self, pvc: Mapping[str, Any]) -> dict[str, Decimal]:
        spec = pvc.get("spec")
        if not isinstance(spec, Mapping):
            raise ExtractionError("persistentvolumeclaim has no spec")
        requests = _resource_list(spec, "requests", "spec")
        if "storage" not in requests:
            raise ExtractionError("persistentvolumeclaim spec.resources.requests.storage is required")
        storage = _quantity(requests["storage"], "spec.resources.requests.storage")

        usage = {"requests.storage": storage, "persistentvolumeclaims": ONE}
        storage_class = spec.get("storageClassName")
        if isinstance(storage_class, str) and storage_class:
            prefix = f"{storage_class}{STORAGE_CLASS_SUFFIX}"
            usage[f"{prefix}requests.storage"] = storage
            usage[f"{prefix}persistentvolumeclaims"] = ONE
        return usage

    def service_usage(self, service: Mapping[str, Any]) -> dict[str, Decimal]:
        spec = service.get("spec")
        if not isinstance(spec, Mapping):
            raise ExtractionError("service has no spec")
        usage = {"services": ONE}
        service_type = spec.get("type") or "ClusterIP"
        if service_type == "LoadBalancer":
            usage["services.loadbalancers"] = ONE
        elif service_type == "NodePort":
            usage["services.nodeports"] = ONE
        return usage

    def object_count_usage(self, family: ObjectFamily) -> dict[str, Decimal]:
        return {family.qualified: ONE, f"count/{family.qualified}": ONE}

    def usage_of(self, family: ObjectFamily, obj: Mapping[str, Any]) -> dict[str, Decimal]:
        """Usage of one listed object; terminal pods contribute nothing."""

        if family == PODS:
            status = obj.get("status")
            if isinstance(status, Mapping) and status.get("phase") in TERMINAL_POD_PHASES:
                return {}
            return self.pod_usage(obj)
        if family == PERSISTENT_VOLUME_CLAIMS:
            return self.pvc_usage(obj)
        if family == SERVICES:
            return self.service_usage(obj)
        return self.object_count_usage(family)

    def family_for(self, resource: str) -> ObjectFamily | None:
        """Return the object family whose listing yields usage for `resource`."""

        if resource in ("requests.storage", "persistentvolumeclaims") or STORAGE_CLASS_SUFFIX in resource:
            return PERSISTENT_VOLUME_CLAIMS
        if resource in ("services", "services.loadbalancers", "services.nodeports"):
            return SERVICES
        counted = resource.removeprefix("count/")
        if counted in self._object_counts:
            return self._object_counts[counted]
        if resource == "pods" or resource.startswith(("requests.", "limits.")):
            return PODS
        if resource in STANDARD_COMPUTE_RESOURCES:
            return PODS
        return None

    def extract(
        self,
        kind: AdmissionKind,
        obj: Any,
        *,
        namespace: str,
        resource: str = "",
        fallback_name: str = "",
    ) -> ResourceRequest:
        """Build the ResourceRequest for an admitted object.

        Args:
            kind: Classified admission kind.
            obj: Decoded object from the review.
            namespace: Namespace the object is admitted into.
            resource: `plural.group` of the request, used for object counts.
            fallback_name: Key suffix when the object carries no name yet.

        Raises:
            ExtractionError: when the object is not shaped like its kind.
        """

        if not isinstance(obj, Mapping):
            raise ExtractionError(f"{kind.value} object must be a JSON object")
        key = object_key(obj, namespace, fallback_name)

        if kind == AdmissionKind.POD:
            deltas = self.pod_usage(obj)
        elif kind == AdmissionKind.PERSISTENT_VOLUME_CLAIM:
            deltas = self.pvc_usage(obj)
        elif kind == AdmissionKind.SERVICE:
            deltas = self.service_usage(obj)
        elif kind == AdmissionKind.OBJECT_COUNT:
            family = self._object_counts.get(resource)
            if family is None:
                raise ExtractionError(f"{resource or 'resource'} is not an object-count tracked resource")
            deltas = self.object_count_usage(family)
        else:
            deltas = {}
        return ResourceRequest(namespace=namespace, object_key=key, deltas=deltas)
