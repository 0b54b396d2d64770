from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any

from crq_webhook.application.services.admission_handler import QUOTA_API_GROUP
from crq_webhook.domain.quantity import format_quantity, parse


PAYMENTS_SELECTOR = {"matchLabels": {"team": "payments"}}

KIND_GROUPS = {
    "Pod": ("", "pods"),
    "PersistentVolumeClaim": ("", "persistentvolumeclaims"),
    "Service": ("", "services"),
    "Namespace": ("", "namespaces"),
    "ClusterResourceQuota": (QUOTA_API_GROUP, "clusterresourcequotas"),
}


def make_pod(
    name: str,
    namespace: str,
    *,
    requests: dict[str, str] | None = None,
    limits: dict[str, str] | None = None,
    init_requests: dict[str, str] | None = None,
    phase: str | None = None,
) -> dict[str, Any]:
    container: dict[str, Any] = {"name": "app", "image": "nginx", "resources": {}}
    if requests:
        container["resources"]["requests"] = dict(requests)
    if limits:
        container["resources"]["limits"] = dict(limits)
    pod: dict[str, Any] = {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"containers": [container]},
    }
    if init_requests:
        pod["spec"]["initContainers"] = [
            {"name": "init", "image": "busybox", "resources": {"requests": dict(init_requests)}}
        ]
    if phase:
        pod["status"] = {"phase": phase}
    return pod


def make_pvc(name: str, namespace: str, storage: str, storage_class: str | None = None) -> dict[str, Any]:
    spec: dict[str, Any] = {"resources": {"requests": {"storage": storage}}}
    if storage_class:
        spec["storageClassName"] = storage_class
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


def make_service(name: str, namespace: str, service_type: str = "ClusterIP") -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"type": service_type, "ports": [{"port": 80}]},
    }


def make_namespace(name: str, labels: dict[str, str] | None = None) -> dict[str, Any]:
    return {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": name, "labels": dict(labels or {})}}


def make_crq(
    name: str,
    hard: dict[str, Any],
    *,
    selector: dict[str, Any] | None = None,
    namespaces_used: dict[str, dict[str, str]] | None = None,
    status_time: datetime | None = None,
) -> dict[str, Any]:
    """Build a ClusterResourceQuota; `namespaces_used` fills a consistent status."""

    crq: dict[str, Any] = {
        "apiVersion": f"{QUOTA_API_GROUP}/v1alpha1",
        "kind": "ClusterResourceQuota",
        "metadata": {"name": name, "resourceVersion": "1"},
        "spec": {"hard": dict(hard)},
    }
    if selector is not None:
        crq["spec"]["namespaceSelector"] = selector
    if namespaces_used is not None:
        totals: dict[str, Any] = {}
        for used in namespaces_used.values():
            for resource, value in used.items():
                totals[resource] = totals.get(resource, 0) + parse(value)
        crq["status"] = {
            "total": {"hard": dict(hard), "used": {r: format_quantity(v, r) for r, v in totals.items()}},
            "namespaces": [
                {"namespace": ns, "status": {"used": dict(used)}} for ns, used in sorted(namespaces_used.items())
            ],
        }
        stamp = status_time or datetime.now(timezone.utc)
        crq["metadata"]["managedFields"] = [
            {
                "manager": "pac-quota-controller",
                "operation": "Update",
                "subresource": "status",
                "time": stamp.strftime("%Y-%m-%dT%H:%M:%SZ"),
            }
        ]
    return crq


def make_review(
    obj: Any,
    *,
    kind: str | None = None,
    operation: str = "CREATE",
    uid: str | None = None,
    namespace: str | None = None,
    old_object: Any = None,
    resource: tuple[str, str] | None = None,
    dry_run: bool = False,
) -> bytes:
    """Build an AdmissionReview request body for `obj`."""

    if kind is None:
        kind = obj["kind"]
    group, plural = resource or KIND_GROUPS.get(kind, ("", kind.lower() + "s"))
    if namespace is None and isinstance(obj, dict):
        namespace = (obj.get("metadata") or {}).get("namespace", "")
    request: dict[str, Any] = {
        "uid": uid or str(uuid.uuid4()),
        "kind": {"group": group, "version": "v1alpha1" if group == QUOTA_API_GROUP else "v1", "kind": kind},
        "resource": {"group": group, "version": "v1", "resource": plural},
        "name": (obj.get("metadata") or {}).get("name", "") if isinstance(obj, dict) else "",
        "namespace": namespace or "",
        "operation": operation,
        "object": obj,
        "dryRun": dry_run,
    }
    if old_object is not None:
        request["oldObject"] = old_object
    return json.dumps(
        {"apiVersion": "admission.k8s.io/v1", "kind": "AdmissionReview", "request": request}
    ).encode()
