from __future__ import annotations

import json
from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from crq_webhook.domain.errors import DecodeError
from crq_webhook.domain.models import AdmissionDecision


ADMISSION_API_VERSION = "admission.k8s.io/v1"


class Operation(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONNECT = "CONNECT"


class GroupVersionKind(BaseModel):
    group: str = ""
    version: str = ""
    kind: str = ""


class GroupVersionResource(BaseModel):
    group: str = ""
    version: str = ""
    resource: str = ""

    @property
    def qualified(self) -> str:
        """Resource in `plural.group` form, bare plural for the core group."""
        return f"{self.resource}.{self.group}" if self.group else self.resource


class AdmissionRequest(BaseModel):
    """The `request` half of an AdmissionReview.

    `object` and `old_object` are kept as decoded JSON; typing them happens in
    the extractor so that a malformed object is an extraction failure rather
    than an envelope failure.
    """

    model_config = ConfigDict(populate_by_name=True)

    uid: str = Field(min_length=1)
    kind: GroupVersionKind
    resource: GroupVersionResource = Field(default_factory=GroupVersionResource)
    name: str = ""
    namespace: str = ""
    operation: Operation
    object: Any = None
    old_object: Any = Field(default=None, alias="oldObject")
    dry_run: bool | None = Field(default=None, alias="dryRun")

    @property
    def is_dry_run(self) -> bool:
        return bool(self.dry_run)


class ResponseStatus(BaseModel):
    code: int
    reason: str | None = None
    message: str | None = None


class AdmissionResponse(BaseModel):
    uid: str
    allowed: bool
    status: ResponseStatus | None = None
    warnings: list[str] | None = None


class AdmissionReview(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_version: str = Field(default=ADMISSION_API_VERSION, alias="apiVersion")
    kind: str = "AdmissionReview"
    request: AdmissionRequest | None = None
    response: AdmissionResponse | None = None


class DecodedObject(dict):
    """JSON object that remembers keys which appeared more than once."""

    duplicate_keys: tuple[str, ...] = ()


def _object_pairs(pairs: list[tuple[str, Any]]) -> DecodedObject:
    obj = DecodedObject()
    duplicates: list[str] = []
    for key, value in pairs:
        if key in obj:
            duplicates.append(key)
        obj[key] = value
    if duplicates:
        obj.duplicate_keys = tuple(duplicates)
    return obj


def decode_review(body: bytes | str) -> AdmissionReview:
    """Decode a raw AdmissionReview body.

    Raises:
        DecodeError: for invalid JSON, a missing request, a missing uid, or
            any other shape mismatch in the envelope.
    """

    try:
        raw = json.loads(body, object_pairs_hook=_object_pairs)
    except ValueError as exc:
        raise DecodeError(f"request body is not valid JSON: {exc}") from exc

    if not isinstance(raw, Mapping):
        raise DecodeError("AdmissionReview must be a JSON object")

    # The uid is echoed even when the rest of the envelope is unusable.
    request = raw.get("request")
    uid = request.get("uid") if isinstance(request, Mapping) else ""
    uid = uid if isinstance(uid, str) else ""

    try:
        review = AdmissionReview.model_validate(raw)
    except ValidationError as exc:
        raise DecodeError(f"malformed AdmissionReview: {exc.errors()[0]['msg']}", uid=uid) from exc

    if review.request is None:
        raise DecodeError("AdmissionReview has no request")
    return review


def encode_review(
    uid: str,
    decision: AdmissionDecision,
    *,
    api_version: str = ADMISSION_API_VERSION,
) -> dict[str, Any]:
    """Serialize a terminal decision into an AdmissionReview response body."""

    response = AdmissionResponse(
        uid=uid,
        allowed=decision.allowed,
        status=ResponseStatus(
            code=decision.code,
            reason=decision.reason.value,
            message=decision.message or None,
        ),
        warnings=list(decision.warnings) or None,
    )
    review = AdmissionReview(api_version=api_version, response=response)
    return review.model_dump(by_alias=True, exclude_none=True)
