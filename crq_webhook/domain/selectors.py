from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SelectorError(ValueError):
    """Raised when a label selector is not well-formed."""


class SelectorOperator(str, Enum):
    IN = "In"
    NOT_IN = "NotIn"
    EXISTS = "Exists"
    DOES_NOT_EXIST = "DoesNotExist"


@dataclass(frozen=True, slots=True)
class LabelSelectorRequirement:
    key: str
    operator: SelectorOperator
    values: tuple[str, ...] = ()

    def matches(self, labels: Mapping[str, str]) -> bool:
        if self.operator == SelectorOperator.EXISTS:
            return self.key in labels
        if self.operator == SelectorOperator.DOES_NOT_EXIST:
            return self.key not in labels
        if self.operator == SelectorOperator.IN:
            return self.key in labels and labels[self.key] in self.values
        # NotIn also matches when the key is absent.
        return self.key not in labels or labels[self.key] not in self.values


@dataclass(frozen=True, slots=True)
class LabelSelector:
    """Kubernetes label selector (matchLabels AND matchExpressions)."""

    match_labels: Mapping[str, str] = field(default_factory=dict)
    match_expressions: tuple[LabelSelectorRequirement, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.match_labels and not self.match_expressions

    def matches(self, labels: Mapping[str, str]) -> bool:
        for key, value in self.match_labels.items():
            if labels.get(key) != value:
                return False
        return all(req.matches(labels) for req in self.match_expressions)

    @classmethod
    def from_dict(cls, raw: Any) -> "LabelSelector | None":
        """Parse and validate a selector; None means no selector was given."""

        if raw is None:
            return None
        if not isinstance(raw, Mapping):
            raise SelectorError("namespaceSelector must be an object")

        raw_labels = raw.get("matchLabels") or {}
        if not isinstance(raw_labels, Mapping):
            raise SelectorError("matchLabels must be a map of strings")
        match_labels: dict[str, str] = {}
        for key, value in raw_labels.items():
            if not isinstance(key, str) or not key:
                raise SelectorError("matchLabels keys must be non-empty strings")
            if not isinstance(value, str):
                raise SelectorError(f"matchLabels value for {key!r} must be a string")
            match_labels[key] = value

        raw_expressions = raw.get("matchExpressions") or []
        if not isinstance(raw_expressions, list):
            raise SelectorError("matchExpressions must be a list")
        expressions = tuple(_parse_requirement(item, i) for i, item in enumerate(raw_expressions))

        return cls(match_labels=match_labels, match_expressions=expressions)


def _parse_requirement(raw: Any, index: int) -> LabelSelectorRequirement:
    where = f"matchExpressions[{index}]"
    if not isinstance(raw, Mapping):
        raise SelectorError(f"{where} must be an object")

    key = raw.get("key")
    if not isinstance(key, str) or not key:
        raise SelectorError(f"{where}.key must be a non-empty string")

    try:
        operator = SelectorOperator(raw.get("operator"))
    except ValueError as exc:
        raise SelectorError(f"{where}.operator {raw.get('operator')!r} is not supported") from exc

    values = raw.get("values") or []
    if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
        raise SelectorError(f"{where}.values must be a list of strings")

    if operator in (SelectorOperator.IN, SelectorOperator.NOT_IN) and not values:
        raise SelectorError(f"{where}.values must be non-empty for operator {operator.value}")
    if operator in (SelectorOperator.EXISTS, SelectorOperator.DOES_NOT_EXIST) and values:
        raise SelectorError(f"{where}.values must be empty for operator {operator.value}")

    return LabelSelectorRequirement(key=key, operator=operator, values=tuple(values))
