from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from kubernetes.utils import parse_quantity


ZERO = Decimal(0)

_BINARY_SUFFIXES: tuple[tuple[str, int], ...] = (
    ("Ei", 1024**6),
    ("Pi", 1024**5),
    ("Ti", 1024**4),
    ("Gi", 1024**3),
    ("Mi", 1024**2),
    ("Ki", 1024),
)


class QuantityError(ValueError):
    """Raised when a value is not a valid Kubernetes quantity."""


def parse(value: Any) -> Decimal:
    """Parse a Kubernetes quantity ("500m", "2Gi", 3) into an exact Decimal.

    JSON numbers go through their string form so that 0.1 stays 0.1 rather
    than the nearest binary float.
    """

    if isinstance(value, bool) or value is None:
        raise QuantityError(f"invalid quantity: {value!r}")
    if isinstance(value, (int, float)):
        value = str(value)
    if not isinstance(value, (str, Decimal)):
        raise QuantityError(f"invalid quantity: {value!r}")
    try:
        parsed = parse_quantity(value.strip() if isinstance(value, str) else value)
    except (ValueError, InvalidOperation) as exc:
        raise QuantityError(f"invalid quantity: {value!r}") from exc
    if not parsed.is_finite():
        raise QuantityError(f"invalid quantity: {value!r}")
    return parsed


def is_binary_resource(resource: str | None) -> bool:
    return bool(resource) and ("memory" in resource or "storage" in resource)


def format_quantity(value: Decimal, resource: str | None = None) -> str:
    """Render a Decimal back into the canonical quantity notation.

    Memory and storage use binary suffixes when they divide evenly; fractional
    values use milli units when exact.
    """

    if value == value.to_integral_value():
        as_int = int(value)
        if is_binary_resource(resource):
            for suffix, factor in _BINARY_SUFFIXES:
                if as_int and as_int % factor == 0:
                    return f"{as_int // factor}{suffix}"
        return str(as_int)

    milli = value * 1000
    if milli == milli.to_integral_value():
        return f"{int(milli)}m"
    return format(value.normalize(), "f")


def add_into(target: dict[str, Decimal], source: Mapping[str, Decimal]) -> dict[str, Decimal]:
    for name, quantity in source.items():
        target[name] = target.get(name, ZERO) + quantity
    return target


def total(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)
