from __future__ import annotations

from decimal import Decimal
from enum import Enum

from crq_webhook.domain.quantity import format_quantity


class DecisionReason(str, Enum):
    """Reason attached to every admission decision."""

    ALLOWED = "Allowed"
    QUOTA_EXCEEDED = "QuotaExceeded"
    INVALID_QUOTA_OBJECT = "InvalidQuotaObject"
    NAMESPACE_CONFLICT = "NamespaceConflict"
    DECODE_ERROR = "DecodeError"
    EXTRACTION_ERROR = "ExtractionError"
    UNSUPPORTED_KIND = "UnsupportedKind"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"

    @property
    def http_code(self) -> int:
        return _HTTP_CODES[self]

    @property
    def is_policy_denial(self) -> bool:
        return self in (
            DecisionReason.QUOTA_EXCEEDED,
            DecisionReason.INVALID_QUOTA_OBJECT,
            DecisionReason.NAMESPACE_CONFLICT,
        )


_HTTP_CODES: dict[DecisionReason, int] = {
    DecisionReason.ALLOWED: 200,
    DecisionReason.QUOTA_EXCEEDED: 403,
    DecisionReason.INVALID_QUOTA_OBJECT: 422,
    DecisionReason.NAMESPACE_CONFLICT: 403,
    DecisionReason.DECODE_ERROR: 400,
    DecisionReason.EXTRACTION_ERROR: 400,
    DecisionReason.UNSUPPORTED_KIND: 400,
    DecisionReason.SERVICE_UNAVAILABLE: 500,
}


class AdmissionError(Exception):
    """Base class for every failure the admission handler turns into a response."""

    reason: DecisionReason = DecisionReason.SERVICE_UNAVAILABLE

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def code(self) -> int:
        return self.reason.http_code


class DecodeError(AdmissionError):
    """The wire envelope could not be decoded."""

    reason = DecisionReason.DECODE_ERROR

    def __init__(self, message: str, *, uid: str = "") -> None:
        super().__init__(message)
        self.uid = uid


class ExtractionError(AdmissionError):
    """The reviewed object could not be read into its typed form."""

    reason = DecisionReason.EXTRACTION_ERROR


class UnsupportedKind(AdmissionError):
    reason = DecisionReason.UNSUPPORTED_KIND


class ServiceUnavailableError(AdmissionError):
    """A collaborator (namespace lister, API server) failed or timed out."""

    reason = DecisionReason.SERVICE_UNAVAILABLE


class InvalidQuotaObject(AdmissionError):
    reason = DecisionReason.INVALID_QUOTA_OBJECT


class NamespaceConflict(AdmissionError):
    reason = DecisionReason.NAMESPACE_CONFLICT


class QuotaExceeded(AdmissionError):
    """Policy denial carrying the offending resource, usage and limit."""

    reason = DecisionReason.QUOTA_EXCEEDED

    def __init__(
        self,
        *,
        crq_name: str,
        resource: str,
        current: Decimal,
        requested: Decimal,
        limit: Decimal,
    ) -> None:
        self.crq_name = crq_name
        self.resource = resource
        self.current = current
        self.requested = requested
        self.limit = limit
        projected = current + requested
        super().__init__(
            f"ClusterResourceQuota '{crq_name}' {resource} limit exceeded: "
            f"requested {format_quantity(requested, resource)}, "
            f"current usage {format_quantity(current, resource)}, "
            f"quota limit {format_quantity(limit, resource)}, "
            f"total would be {format_quantity(projected, resource)}"
        )
