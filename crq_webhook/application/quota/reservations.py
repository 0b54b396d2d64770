from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable, Collection, Iterable, Mapping
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal

from crq_webhook.domain.quantity import ZERO


@dataclass(slots=True)
class Reservation:
    """Capacity held for an admitted object until it shows up in usage."""

    crq_name: str
    object_key: str
    deltas: dict[str, Decimal]
    created_at: float
    expires_at: float


class ReservationLedger:
    """In-process ledger of deltas admitted but not yet visible in listings.

    Only touched from the event loop, so plain dict operations are atomic with
    respect to other admissions.
    """

    def __init__(
        self,
        ttl_s: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl_s = ttl_s
        self._clock = clock
        self._reservations: dict[str, dict[str, Reservation]] = {}

    def reserve(self, crq_name: str, object_key: str, deltas: Mapping[str, Decimal]) -> Reservation:
        now = self._clock()
        reservation = Reservation(
            crq_name=crq_name,
            object_key=object_key,
            deltas={name: value for name, value in deltas.items() if value > ZERO},
            created_at=now,
            expires_at=now + self._ttl_s,
        )
        # A repeated admission of the same object replaces its reservation.
        self._reservations.setdefault(crq_name, {})[object_key] = reservation
        return reservation

    def pending(self, crq_name: str) -> list[Reservation]:
        self._expire(crq_name)
        return list(self._reservations.get(crq_name, {}).values())

    def reserved(
        self,
        crq_name: str,
        resource: str,
        *,
        visible_keys: Collection[str] = (),
        observed_since: float | None = None,
        exclude_key: str | None = None,
    ) -> Decimal:
        """Sum of live reservations for one resource.

        Args:
            visible_keys: Object keys already present in the usage being
                added to; their reservations are skipped.
            observed_since: Timestamp of the usage source; reservations made
                before it are assumed to be included.
            exclude_key: Object being admitted right now, whose previous
                reservation must not count against itself.
        """

        amount = ZERO
        for reservation in self.pending(crq_name):
            if reservation.object_key in visible_keys or reservation.object_key == exclude_key:
                continue
            if observed_since is not None and reservation.created_at <= observed_since:
                continue
            amount += reservation.deltas.get(resource, ZERO)
        return amount

    def _expire(self, crq_name: str) -> None:
        held = self._reservations.get(crq_name)
        if not held:
            return
        now = self._clock()
        for key in [k for k, r in held.items() if r.expires_at <= now]:
            del held[key]
        if not held:
            del self._reservations[crq_name]


class QuotaLockRegistry:
    """Per-CRQ asyncio locks; unrelated quotas never contend."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def _get_lock(self, crq_name: str) -> asyncio.Lock:
        if crq_name not in self._locks:
            self._locks[crq_name] = asyncio.Lock()
        return self._locks[crq_name]

    def is_locked(self, crq_name: str) -> bool:
        lock = self._locks.get(crq_name)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, crq_names: Iterable[str]) -> AsyncIterator[list[str]]:
        """Acquire the locks for several quotas in name order."""

        ordered = sorted(set(crq_names))
        async with AsyncExitStack() as stack:
            for name in ordered:
                await stack.enter_async_context(self._get_lock(name))
            yield ordered
