from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


DEFAULT_OBJECT_COUNT_RESOURCES: list[str] = [
    "configmaps",
    "secrets",
    "replicationcontrollers",
    "deployments.apps",
    "statefulsets.apps",
    "daemonsets.apps",
    "jobs.batch",
    "cronjobs.batch",
    "horizontalpodautoscalers.autoscaling",
    "ingresses.networking.k8s.io",
]


class Settings(BaseSettings):
    """Webhook settings loaded from environment variables.

    Args:
        environment: Deployment environment, e.g. 'dev', 'staging', 'prod'.
        app_name: Human-readable application name.
        api_version: Version string reported by the root route.
        log_level: Root log level name.
        kube_api_url: Kubernetes API server URL, or 'memory://' for the
            in-memory cluster used in local runs.
        kube_token_path: Service-account bearer token file.
        kube_ca_path: CA bundle used to verify the API server.
        exclude_namespace_label_key: Label key whose presence hides a
            namespace from every quota.
        excluded_namespaces: Namespace names hidden from every quota.
        own_namespace: Namespace the webhook runs in; always excluded.
        admission_timeout_s: Deadline for a single admission call.
        fail_open: Allow instead of deny when the engine cannot decide.
        reservation_ttl_s: How long an admitted delta is held in-process.
        status_max_age_s: Maximum age of CRQ status before recomputing.
        pod_tracked_resources: Compute resources summed for pods.
        object_count_resources: Generic kinds counted as objects.
    """

    environment: Literal["dev", "staging", "prod"] = Field(default="dev")
    app_name: str = Field(default="ClusterResourceQuota Admission Webhook")
    api_version: str = Field(default="v1alpha1")
    log_level: str = Field(default="INFO")

    kube_api_url: str = Field(default="memory://")
    kube_token_path: str = Field(default="/var/run/secrets/kubernetes.io/serviceaccount/token")
    kube_ca_path: str = Field(default="/var/run/secrets/kubernetes.io/serviceaccount/ca.crt")
    kube_verify_tls: bool = Field(default=True)
    kube_max_connections: int = Field(default=50)

    sentry_dsn: str | None = None

    # Default HTTP timeouts (seconds)
    http_connect_timeout_s: float = Field(default=2.0)
    http_read_timeout_s: float = Field(default=5.0)

    # Namespace exclusion, resolved once per process
    exclude_namespace_label_key: str = Field(default="pac-quota-controller.powerapp.cloud/exclude")
    excluded_namespaces: list[str] = Field(default_factory=list)
    own_namespace: str | None = None

    # Admission behaviour
    admission_timeout_s: float = Field(default=8.0)
    fail_open: bool = Field(default=False)
    reservation_ttl_s: float = Field(default=30.0)
    status_max_age_s: float = Field(default=5.0)
    pod_tracked_resources: list[str] = Field(default=["cpu", "memory", "ephemeral-storage"])
    object_count_resources: list[str] = Field(default_factory=lambda: list(DEFAULT_OBJECT_COUNT_RESOURCES))

    # Event retention sweep
    event_cleanup_enabled: bool = Field(default=False)
    event_cleanup_interval_s: int = Field(default=3600)
    event_max_age_s: int = Field(default=86400)
    event_max_per_crq: int = Field(default=100)
    event_controller_source: str = Field(default="controller")
    event_webhook_source: str = Field(default="webhook")

    class Config:
        env_prefix = "CRQ_"
        env_file = ".env"
        env_file_encoding = "utf-8"

    def all_excluded_namespaces(self) -> frozenset[str]:
        names = set(self.excluded_namespaces)
        if self.own_namespace:
            names.add(self.own_namespace)
        return frozenset(names)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached instance of Settings."""

    return Settings()  # type: ignore[call-arg]
