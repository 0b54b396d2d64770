import pytest

from builders import PAYMENTS_SELECTOR, make_crq
from crq_webhook.application.services.scope_resolver import NamespaceScopeResolver
from crq_webhook.domain.errors import ServiceUnavailableError
from crq_webhook.domain.models import ClusterResourceQuota, Namespace
from crq_webhook.infrastructure.memory_cluster import InMemoryCluster


def _quota(name="payments", selector=PAYMENTS_SELECTOR):
    return ClusterResourceQuota.from_dict(make_crq(name, {"pods": "10"}, selector=selector))


class TestResolve:
    @pytest.mark.asyncio
    async def test_selector_and_exclusion(self, resolver):
        scope = await resolver.resolve(_quota())

        assert scope.selected == ["ns-a", "ns-b"]
        assert {"ns-excluded", "kube-system", "crq-system"} <= scope.excluded

    @pytest.mark.asyncio
    async def test_absent_selector_matches_all_non_excluded(self, resolver):
        scope = await resolver.resolve(_quota(selector=None))
        assert scope.selected == ["ns-a", "ns-b", "ns-other"]

    @pytest.mark.asyncio
    async def test_empty_selector_still_honours_exclusion_label(self, resolver):
        scope = await resolver.resolve(_quota(selector={}))
        assert "ns-excluded" not in scope.selected

    @pytest.mark.asyncio
    async def test_exclusion_label_value_is_irrelevant(self, cluster, resolver):
        cluster.add_namespace("ns-c", {"team": "payments", "pac-quota-controller.powerapp.cloud/exclude": "false"})
        scope = await resolver.resolve(_quota())
        assert "ns-c" not in scope.selected

    @pytest.mark.asyncio
    async def test_scope_is_independent_of_listing_order(self, resolver):
        namespaces = [Namespace("zeta", {"team": "payments"}), Namespace("alpha", {"team": "payments"})]
        forward = await resolver.resolve(_quota(), namespaces)
        backward = await resolver.resolve(_quota(), list(reversed(namespaces)))
        assert forward.selected == backward.selected == ["alpha", "zeta"]

    @pytest.mark.asyncio
    async def test_listing_failure_is_surfaced(self, cluster, resolver):
        cluster.unavailable = True
        with pytest.raises(ServiceUnavailableError):
            await resolver.resolve(_quota())


class TestQuotasSelecting:
    @pytest.mark.asyncio
    async def test_returns_quotas_selecting_namespace(self, cluster, resolver):
        payments = ClusterResourceQuota.from_dict(make_crq("payments", {"pods": "10"}, selector=PAYMENTS_SELECTOR))
        search = ClusterResourceQuota.from_dict(
            make_crq("search", {"pods": "10"}, selector={"matchLabels": {"team": "search"}})
        )
        by_name = {ns.name: ns for ns in await cluster.list_namespaces()}

        assert resolver.quotas_selecting(by_name["ns-a"], [search, payments]) == [payments]
        assert resolver.quotas_selecting(by_name["ns-other"], [search, payments]) == [search]

    @pytest.mark.asyncio
    async def test_excluded_namespaces_have_no_quotas(self, cluster, resolver):
        everything = ClusterResourceQuota.from_dict(make_crq("everything", {"pods": "10"}))
        by_name = {ns.name: ns for ns in await cluster.list_namespaces()}

        assert resolver.quotas_selecting(by_name["ns-excluded"], [everything]) == []
        assert resolver.quotas_selecting(by_name["kube-system"], [everything]) == []
        assert resolver.quotas_selecting(by_name["crq-system"], [everything]) == []


def test_not_in_selector_uses_labels():
    resolver = NamespaceScopeResolver(InMemoryCluster(), exclude_label_key="skip")
    quota = _quota(selector={"matchExpressions": [{"key": "team", "operator": "NotIn", "values": ["search"]}]})

    assert resolver.quotas_selecting(Namespace("ns-a", {"team": "payments"}), [quota]) == [quota]
    assert resolver.quotas_selecting(Namespace("ns-b", {"team": "search"}), [quota]) == []
    assert resolver.quotas_selecting(Namespace("ns-c", {"skip": ""}), [quota]) == []
