from __future__ import annotations

import asyncio
import copy
from typing import Any

from crq_webhook.domain.errors import ServiceUnavailableError
from crq_webhook.domain.models import ClusterResourceQuota, Namespace
from crq_webhook.domain.services.cluster_reader import ClusterReader


class InMemoryCluster(ClusterReader):
    """A minimal in-memory cluster for local runs and tests."""

    def __init__(self) -> None:
        self._namespaces: dict[str, dict[str, str]] = {}
        self._quotas: dict[str, dict[str, Any]] = {}
        self._objects: dict[tuple[str, str, str], dict[str, dict[str, Any]]] = {}
        self._events: dict[tuple[str, str], dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self.unavailable = False
        self.latency_s = 0.0
        self.list_calls = 0

    def add_namespace(self, name: str, labels: dict[str, str] | None = None) -> None:
        self._namespaces[name] = dict(labels or {})

    def put_quota(self, raw: dict[str, Any]) -> None:
        self._quotas[raw["metadata"]["name"]] = copy.deepcopy(raw)

    def put_object(self, plural: str, namespace: str, obj: dict[str, Any], group: str = "") -> None:
        name = obj["metadata"]["name"]
        self._objects.setdefault((group, plural, namespace), {})[name] = copy.deepcopy(obj)

    def remove_object(self, plural: str, namespace: str, name: str, group: str = "") -> None:
        self._objects.get((group, plural, namespace), {}).pop(name, None)

    def add_event(self, event: dict[str, Any]) -> None:
        metadata = event["metadata"]
        self._events[(metadata.get("namespace", ""), metadata["name"])] = copy.deepcopy(event)

    def event_names(self) -> list[str]:
        return sorted(name for _, name in self._events)

    async def _io(self) -> None:
        self.list_calls += 1
        if self.latency_s:
            await asyncio.sleep(self.latency_s)
        if self.unavailable:
            raise ServiceUnavailableError("in-memory cluster is unavailable")

    async def list_namespaces(self) -> list[Namespace]:
        await self._io()
        async with self._lock:
            return [Namespace(name=name, labels=dict(labels)) for name, labels in sorted(self._namespaces.items())]

    async def list_cluster_resource_quotas(self) -> list[ClusterResourceQuota]:
        await self._io()
        async with self._lock:
            return [ClusterResourceQuota.from_dict(raw) for raw in self._quotas.values()]

    async def list_objects(
        self,
        *,
        group: str,
        version: str,
        plural: str,
        namespace: str,
    ) -> list[dict[str, Any]]:
        await self._io()
        async with self._lock:
            return [copy.deepcopy(obj) for obj in self._objects.get((group, plural, namespace), {}).values()]

    async def list_events(self, *, label_selector: str) -> list[dict[str, Any]]:
        await self._io()
        key, _, value = label_selector.partition("=")
        async with self._lock:
            return [
                copy.deepcopy(event)
                for event in self._events.values()
                if (event["metadata"].get("labels") or {}).get(key) == value
            ]

    async def delete_event(self, *, namespace: str, name: str) -> None:
        await self._io()
        async with self._lock:
            self._events.pop((namespace, name), None)

    async def ping(self) -> None:
        await self._io()
