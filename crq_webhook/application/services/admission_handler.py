from __future__ import annotations

import asyncio
import json
import time
from typing import Any, cast

from crq_webhook.application.quota.decision_engine import QuotaDecisionEngine
from crq_webhook.application.quota.extractor import ResourceExtractor
from crq_webhook.core.logging import get_logger
from crq_webhook.domain.admission import (
    AdmissionRequest,
    Operation,
    decode_review,
    encode_review,
)
from crq_webhook.domain.errors import (
    AdmissionError,
    DecisionReason,
    DecodeError,
    ExtractionError,
    ServiceUnavailableError,
    UnsupportedKind,
)
from crq_webhook.domain.models import AdmissionDecision, AdmissionKind
from crq_webhook.domain.services.metrics_sink import MetricsSink


logger = get_logger(__name__)

QUOTA_API_GROUP = "quota.powerapp.cloud"

_KIND_BY_GROUP_KIND: dict[tuple[str, str], AdmissionKind] = {
    ("", "Pod"): AdmissionKind.POD,
    ("", "PersistentVolumeClaim"): AdmissionKind.PERSISTENT_VOLUME_CLAIM,
    ("", "Service"): AdmissionKind.SERVICE,
    ("", "Namespace"): AdmissionKind.NAMESPACE,
    (QUOTA_API_GROUP, "ClusterResourceQuota"): AdmissionKind.CLUSTER_RESOURCE_QUOTA,
}

_DISPATCH: dict[AdmissionKind, str] = {
    AdmissionKind.POD: "_admit_workload",
    AdmissionKind.PERSISTENT_VOLUME_CLAIM: "_admit_workload",
    AdmissionKind.SERVICE: "_admit_workload",
    AdmissionKind.OBJECT_COUNT: "_admit_workload",
    AdmissionKind.NAMESPACE: "_admit_namespace",
    AdmissionKind.CLUSTER_RESOURCE_QUOTA: "_admit_quota",
}

_unhandled = set(AdmissionKind) - set(_DISPATCH)
if _unhandled:
    raise RuntimeError(f"admission kinds without a handler: {sorted(k.value for k in _unhandled)}")


class AdmissionHandler:
    """Turns one raw AdmissionReview body into one AdmissionReview response.

    Every path returns a well-formed envelope. Only an undecodable envelope
    gets a non-200 transport status; everything else is expressed in
    `response.status`.
    """

    def __init__(
        self,
        *,
        engine: QuotaDecisionEngine,
        extractor: ResourceExtractor,
        metrics: MetricsSink,
        admission_timeout_s: float = 8.0,
        fail_open: bool = False,
    ) -> None:
        self._engine = engine
        self._extractor = extractor
        self._metrics = metrics
        self._admission_timeout_s = admission_timeout_s
        self._fail_open = fail_open

    async def handle(
        self,
        body: bytes | str,
        expected: AdmissionKind | None = None,
    ) -> tuple[int, dict[str, Any]]:
        """Decide one admission review.

        Args:
            body: Raw request body.
            expected: Kind served by the route the body arrived on; None
                accepts any supported kind.

        Returns:
            HTTP status and the AdmissionReview response body.
        """

        started = time.perf_counter()
        kind_label = expected.value if expected else "unknown"

        try:
            review = decode_review(body)
        except DecodeError as exc:
            decision = AdmissionDecision().fail(exc)
            self._finish(decision, kind=kind_label, operation="UNKNOWN", uid=exc.uid, started=started)
            return 400, encode_review(exc.uid, decision)

        # decode_review only returns reviews that carry a request.
        request = cast(AdmissionRequest, review.request)

        try:
            kind = self.classify(request, expected)
            kind_label = kind.value
            decision = await asyncio.wait_for(
                self._dispatch(kind, request),
                timeout=self._admission_timeout_s,
            )
        except AdmissionError as exc:
            decision = self._failed(exc)
        except asyncio.TimeoutError:
            decision = self._failed(
                ServiceUnavailableError(f"admission did not complete within {self._admission_timeout_s}s")
            )
        except Exception as exc:
            logger.exception(
                "Unexpected error while deciding admission",
                extra={"crq_extra": json.dumps({"uid": request.uid, "kind": kind_label})},
            )
            decision = self._failed(ServiceUnavailableError(f"internal error: {type(exc).__name__}: {exc}"))

        self._finish(
            decision,
            kind=kind_label,
            operation=request.operation.value,
            uid=request.uid,
            started=started,
        )
        return 200, encode_review(request.uid, decision, api_version=review.api_version)

    def classify(self, request: AdmissionRequest, expected: AdmissionKind | None = None) -> AdmissionKind:
        gvk = request.kind
        kind = _KIND_BY_GROUP_KIND.get((gvk.group, gvk.kind))
        if kind is None and self._extractor.object_count_family(request.resource.qualified) is not None:
            kind = AdmissionKind.OBJECT_COUNT
        if kind is None:
            group = f"{gvk.group}/" if gvk.group else ""
            raise UnsupportedKind(f"unsupported kind {group}{gvk.version}/{gvk.kind}")
        if expected is not None and kind != expected:
            raise UnsupportedKind(f"{kind.value} cannot be admitted on the {expected.value} endpoint")
        return kind

    async def _dispatch(self, kind: AdmissionKind, request: AdmissionRequest) -> AdmissionDecision:
        if request.operation in (Operation.DELETE, Operation.CONNECT):
            return AdmissionDecision().allow(f"{request.operation.value} does not add usage")
        handler = getattr(self, _DISPATCH[kind])
        return await handler(kind, request)

    async def _admit_workload(self, kind: AdmissionKind, request: AdmissionRequest) -> AdmissionDecision:
        namespace = request.namespace
        if not namespace and isinstance(request.object, dict):
            metadata = request.object.get("metadata")
            if isinstance(metadata, dict):
                namespace = str(metadata.get("namespace") or "")
        if not namespace:
            raise ExtractionError(f"{kind.value} has no namespace")

        options = {
            "namespace": namespace,
            "resource": request.resource.qualified,
            "fallback_name": request.name or request.uid,
        }
        delta = self._extractor.extract(kind, request.object, **options)
        if request.operation == Operation.UPDATE and request.old_object is not None:
            delta = delta.minus(self._extractor.extract(kind, request.old_object, **options))
        return await self._engine.admit_workload(delta, dry_run=request.is_dry_run)

    async def _admit_namespace(self, kind: AdmissionKind, request: AdmissionRequest) -> AdmissionDecision:
        return await self._engine.admit_namespace(request.object)

    async def _admit_quota(self, kind: AdmissionKind, request: AdmissionRequest) -> AdmissionDecision:
        return await self._engine.admit_quota(request.object, is_update=request.operation == Operation.UPDATE)

    def _failed(self, exc: AdmissionError) -> AdmissionDecision:
        admit = self._fail_open and exc.reason == DecisionReason.SERVICE_UNAVAILABLE
        decision = AdmissionDecision().fail(exc, admit_on_error=admit)
        if admit:
            decision.warnings.append(f"admitted without a quota check: {exc.message}")
        return decision

    def _finish(
        self,
        decision: AdmissionDecision,
        *,
        kind: str,
        operation: str,
        uid: str,
        started: float,
    ) -> None:
        duration_s = time.perf_counter() - started
        self._metrics.record_decision(
            kind=kind,
            operation=operation,
            outcome=decision.state.value,
            duration_s=duration_s,
        )
        if decision.reason != DecisionReason.ALLOWED:
            self._metrics.record_error(decision.reason.value)
            logger.info(
                f"Admission {decision.state.value}: {decision.message}",
                extra={
                    "crq_extra": json.dumps(
                        {
                            "uid": uid,
                            "kind": kind,
                            "operation": operation,
                            "reason": decision.reason.value,
                            "allowed": decision.allowed,
                        }
                    )
                },
            )
