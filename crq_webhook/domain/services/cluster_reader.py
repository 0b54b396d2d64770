from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from crq_webhook.domain.models import ClusterResourceQuota, Namespace


@runtime_checkable
class ClusterReader(Protocol):
    """Read-only view of the cluster used by the admission path.

    Implementations raise ServiceUnavailableError when the backing API cannot
    be reached; callers never receive a partial listing.
    """

    async def list_namespaces(self) -> list[Namespace]:
        """List every namespace with its labels."""

    async def list_cluster_resource_quotas(self) -> list[ClusterResourceQuota]:
        """List all ClusterResourceQuota objects, including their status."""

    async def list_objects(
        self,
        *,
        group: str,
        version: str,
        plural: str,
        namespace: str,
    ) -> list[dict[str, Any]]:
        """List raw objects of one resource type in a namespace.

        Args:
            group: API group, empty for the core group.
            version: API version within the group.
            plural: Lower-case plural resource name, e.g. 'pods'.
            namespace: Namespace to list in.
        """

    async def list_events(self, *, label_selector: str) -> list[dict[str, Any]]:
        """List events across all namespaces matching a label selector."""

    async def delete_event(self, *, namespace: str, name: str) -> None:
        """Delete a single event; a missing event is not an error."""

    async def ping(self) -> None:
        """Raise ServiceUnavailableError unless the backing API answers."""
