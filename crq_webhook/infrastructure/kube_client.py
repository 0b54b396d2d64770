from __future__ import annotations

import json
import ssl
from pathlib import Path
from typing import Any

import httpx

from crq_webhook.core.logging import get_logger
from crq_webhook.core.settings import Settings
from crq_webhook.domain.errors import InvalidQuotaObject, ServiceUnavailableError
from crq_webhook.domain.models import ClusterResourceQuota, Namespace
from crq_webhook.domain.services.cluster_reader import ClusterReader


logger = get_logger(__name__)

QUOTA_API_PATH = "/apis/quota.powerapp.cloud/v1alpha1/clusterresourcequotas"
LIST_PAGE_SIZE = 500


class KubernetesClusterReader(ClusterReader):
    """ClusterReader backed by the Kubernetes REST API over httpx."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def _request(self, method: str, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        try:
            return await self._client.request(method, path, params=params)
        except httpx.HTTPError as exc:
            raise ServiceUnavailableError(f"{method} {path} failed: {exc}") from exc

    async def _list(self, path: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        query: dict[str, Any] = {"limit": LIST_PAGE_SIZE, **(params or {})}
        while True:
            resp = await self._request("GET", path, params=query)
            if resp.status_code >= 400:
                raise ServiceUnavailableError(
                    f"GET {path} returned {resp.status_code}: {resp.text[:200]}"
                )
            try:
                data = resp.json()
            except ValueError as exc:
                raise ServiceUnavailableError(f"GET {path} returned invalid JSON") from exc
            items.extend(data.get("items") or [])
            token = (data.get("metadata") or {}).get("continue")
            if not token:
                return items
            query["continue"] = token

    async def list_namespaces(self) -> list[Namespace]:
        return [Namespace.from_dict(item) for item in await self._list("/api/v1/namespaces")]

    async def list_cluster_resource_quotas(self) -> list[ClusterResourceQuota]:
        quotas: list[ClusterResourceQuota] = []
        for item in await self._list(QUOTA_API_PATH):
            try:
                quotas.append(ClusterResourceQuota.from_dict(item))
            except InvalidQuotaObject as exc:
                logger.warning(
                    "Ignoring stored ClusterResourceQuota that fails validation",
                    extra={
                        "crq_extra": json.dumps(
                            {"crq_name": (item.get("metadata") or {}).get("name"), "error": exc.message}
                        )
                    },
                )
        return quotas

    async def list_objects(
        self,
        *,
        group: str,
        version: str,
        plural: str,
        namespace: str,
    ) -> list[dict[str, Any]]:
        prefix = f"/apis/{group}/{version}" if group else f"/api/{version}"
        return await self._list(f"{prefix}/namespaces/{namespace}/{plural}")

    async def list_events(self, *, label_selector: str) -> list[dict[str, Any]]:
        return await self._list("/api/v1/events", {"labelSelector": label_selector})

    async def delete_event(self, *, namespace: str, name: str) -> None:
        path = f"/api/v1/namespaces/{namespace}/events/{name}"
        resp = await self._request("DELETE", path)
        if resp.status_code >= 400 and resp.status_code != 404:
            raise ServiceUnavailableError(f"DELETE {path} returned {resp.status_code}: {resp.text[:200]}")

    async def ping(self) -> None:
        resp = await self._request("GET", "/version")
        if resp.status_code >= 400:
            raise ServiceUnavailableError(f"API server returned {resp.status_code}")


class KubernetesClientFactory:
    """Creates and pools the HTTP client used to talk to the API server."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._client: httpx.AsyncClient | None = None
        self._reader: KubernetesClusterReader | None = None

    def get_reader(self) -> KubernetesClusterReader:
        if self._reader is None:
            self._reader = KubernetesClusterReader(self._get_or_create_client())
        return self._reader

    def _get_or_create_client(self) -> httpx.AsyncClient:
        if self._client is None:
            settings = self._settings
            headers = {"Accept": "application/json"}
            token_path = Path(settings.kube_token_path)
            if token_path.is_file():
                headers["Authorization"] = f"Bearer {token_path.read_text().strip()}"

            verify: ssl.SSLContext | bool = settings.kube_verify_tls
            if settings.kube_verify_tls and Path(settings.kube_ca_path).is_file():
                verify = ssl.create_default_context(cafile=settings.kube_ca_path)

            self._client = httpx.AsyncClient(
                base_url=settings.kube_api_url,
                headers=headers,
                verify=verify,
                timeout=httpx.Timeout(
                    timeout=settings.http_read_timeout_s,
                    connect=settings.http_connect_timeout_s,
                ),
                limits=httpx.Limits(
                    max_connections=settings.kube_max_connections,
                    max_keepalive_connections=settings.kube_max_connections,
                ),
            )
        return self._client

    async def shutdown(self) -> None:
        """Close the pooled client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            self._reader = None
