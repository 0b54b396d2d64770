from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from crq_webhook.domain.models import ClusterResourceQuota, Namespace
from crq_webhook.domain.selectors import LabelSelector
from crq_webhook.domain.services.cluster_reader import ClusterReader


@dataclass(frozen=True, slots=True)
class ScopeResolution:
    """Namespaces a quota governs, plus those hidden by exclusion."""

    selected: list[str]
    excluded: frozenset[str]


class NamespaceScopeResolver:
    """Computes which namespaces a ClusterResourceQuota applies to.

    Exclusion is global: a namespace carrying the exclusion label key (any
    value) or listed by name is invisible to every quota, whatever the
    selector says.
    """

    def __init__(
        self,
        reader: ClusterReader,
        *,
        exclude_label_key: str,
        excluded_namespaces: Iterable[str] = (),
    ) -> None:
        self._reader = reader
        self._exclude_label_key = exclude_label_key
        self._excluded_names = frozenset(excluded_namespaces)

    def is_excluded(self, namespace: Namespace) -> bool:
        return namespace.name in self._excluded_names or self._exclude_label_key in namespace.labels

    @staticmethod
    def selector_matches(selector: LabelSelector | None, labels: Mapping[str, str]) -> bool:
        if selector is None or selector.is_empty:
            return True
        return selector.matches(labels)

    async def list_namespaces(self) -> list[Namespace]:
        # Errors propagate; a partial listing must never become a scope.
        return await self._reader.list_namespaces()

    async def resolve(
        self,
        quota: ClusterResourceQuota,
        namespaces: Sequence[Namespace] | None = None,
    ) -> ScopeResolution:
        if namespaces is None:
            namespaces = await self.list_namespaces()

        selected: list[str] = []
        excluded: set[str] = set()
        for namespace in namespaces:
            if self.is_excluded(namespace):
                excluded.add(namespace.name)
            elif self.selector_matches(quota.selector, namespace.labels):
                selected.append(namespace.name)

        return ScopeResolution(selected=sorted(selected), excluded=frozenset(excluded | self._excluded_names))

    def quotas_selecting(
        self,
        namespace: Namespace,
        quotas: Iterable[ClusterResourceQuota],
    ) -> list[ClusterResourceQuota]:
        """Return the quotas whose selector picks `namespace`, sorted by name."""

        if self.is_excluded(namespace):
            return []
        return sorted(
            (q for q in quotas if self.selector_matches(q.selector, namespace.labels)),
            key=lambda q: q.name,
        )
