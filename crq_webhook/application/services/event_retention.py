from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any

from crq_webhook.core.logging import get_logger
from crq_webhook.domain.errors import ServiceUnavailableError
from crq_webhook.domain.services.cluster_reader import ClusterReader
from crq_webhook.domain.services.metrics_sink import MetricsSink


logger = get_logger(__name__)

EVENT_SOURCE_LABEL = "quota.pac.io/event-source"
CRQ_NAME_LABEL = "quota.pac.io/crq-name"


def _event_time(event: Mapping[str, Any]) -> float | None:
    metadata = event.get("metadata") or {}
    for raw in (
        event.get("lastTimestamp"),
        event.get("eventTime"),
        metadata.get("creationTimestamp") if isinstance(metadata, Mapping) else None,
    ):
        if not isinstance(raw, str) or not raw:
            continue
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00")).timestamp()
        except ValueError:
            continue
    return None


class EventRetentionService:
    """Periodically deletes old quota events.

    Each configured source label value is swept with its own query. Within a
    quota, events past `max_age_s` go, and so does everything beyond the
    newest `max_per_crq`.
    """

    def __init__(
        self,
        reader: ClusterReader,
        metrics: MetricsSink,
        *,
        sources: Sequence[str],
        max_age_s: float,
        max_per_crq: int,
        interval_s: float = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._reader = reader
        self._metrics = metrics
        self._sources = list(dict.fromkeys(sources))
        self._max_age_s = max_age_s
        self._max_per_crq = max_per_crq
        self._interval_s = interval_s
        self._clock = clock
        self._sweep_task: asyncio.Task | None = None
        self._is_running = False

    async def start(self) -> None:
        """Start the background sweep."""
        if self._is_running:
            return
        self._is_running = True
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("Event retention sweep started.")

    async def stop(self) -> None:
        """Stop the background sweep."""
        self._is_running = False
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
        logger.info("Event retention sweep stopped.")

    async def _sweep_loop(self) -> None:
        while self._is_running:
            try:
                await self.sweep()
                await asyncio.sleep(self._interval_s)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error during event retention sweep")
                await asyncio.sleep(self._interval_s)

    async def sweep(self) -> dict[str, int]:
        """Run one pass over every source; returns deletions per source."""

        seen: set[str] = set()
        deleted: dict[str, int] = {}
        for source in self._sources:
            events = await self._reader.list_events(label_selector=f"{EVENT_SOURCE_LABEL}={source}")
            fresh = []
            for event in events:
                uid = str((event.get("metadata") or {}).get("uid") or id(event))
                if uid not in seen:
                    seen.add(uid)
                    fresh.append(event)
            deleted[source] = await self._sweep_source(source, fresh)
            self._metrics.record_event_cleanup(source=source, deleted=deleted[source])
        return deleted

    def expired(self, events: list[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
        """Select the events of one source that should be deleted."""

        cutoff = self._clock() - self._max_age_s
        by_quota: dict[str, list[tuple[float | None, Mapping[str, Any]]]] = {}
        for event in events:
            labels = (event.get("metadata") or {}).get("labels") or {}
            by_quota.setdefault(str(labels.get(CRQ_NAME_LABEL) or ""), []).append((_event_time(event), event))

        doomed: list[Mapping[str, Any]] = []
        for entries in by_quota.values():
            # Newest first; events without a timestamp rank oldest.
            entries.sort(key=lambda e: e[0] if e[0] is not None else float("-inf"), reverse=True)
            for rank, (stamp, event) in enumerate(entries):
                if rank >= self._max_per_crq or (stamp is not None and stamp < cutoff):
                    doomed.append(event)
        return doomed

    async def _sweep_source(self, source: str, events: list[Mapping[str, Any]]) -> int:
        count = 0
        for event in self.expired(events):
            metadata = event.get("metadata") or {}
            try:
                await self._reader.delete_event(
                    namespace=str(metadata.get("namespace") or ""),
                    name=str(metadata.get("name") or ""),
                )
            except ServiceUnavailableError as exc:
                logger.warning(
                    "Failed to delete event",
                    extra={
                        "crq_extra": json.dumps(
                            {"source": source, "event": metadata.get("name"), "error": exc.message}
                        )
                    },
                )
                continue
            count += 1

        logger.info(
            f"Event retention removed {count} events",
            extra={"crq_extra": json.dumps({"source": source, "examined": len(events)})},
        )
        return count
