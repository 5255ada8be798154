"""TTL cache of per-node samples with single-flight fetching."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from .errors import NodeConnectionError
from .models import HostName, MetricSample
from .telemetry import ServiceTelemetry

Fetcher = Callable[[HostName], Awaitable[MetricSample]]


@dataclass(slots=True)
class CacheEntry:
    """Last settled sample for one host plus the fetch currently running."""
    sample: MetricSample | None = None
    expires_at: float = 0.0
    stored_at: float = 0.0
    in_flight: asyncio.Task[MetricSample] | None = None

    @property
    def is_in_flight(self) -> bool:
        return self.in_flight is not None and not self.in_flight.done()


class MetricsCache:
    """Per-host cache bounded by a short TTL.

    A fresh entry is served without sampling. When it is stale, the first
    caller starts a fetch and every concurrent caller awaits that same task.
    Failed fetches leave the previous sample in place.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        ttl: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        telemetry: ServiceTelemetry | None = None,
    ) -> None:
        self._fetcher = fetcher
        self.ttl = ttl
        self._clock = clock
        self.telemetry = telemetry or ServiceTelemetry()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._entries: dict[HostName, CacheEntry] = {}
        # Bumped on invalidation so fetches started earlier cannot write back
        self._generation = 0

    async def get_or_fetch(self, host: HostName) -> MetricSample:
        """Return a fresh sample for ``host``, sampling at most once at a time.

        Raises:
            Whatever the fetcher raised; all concurrent callers see the same error.
        """
        entry = self._entries.get(host)
        if entry is not None and entry.sample is not None and self._clock() < entry.expires_at:
            self.telemetry.cache_lookups.labels(result="hit").inc()
            return entry.sample

        if entry is None:
            entry = self._entries[host] = CacheEntry()

        if entry.is_in_flight:
            self.telemetry.cache_lookups.labels(result="coalesced").inc()
        else:
            self.telemetry.cache_lookups.labels(result="miss").inc()
            entry.in_flight = asyncio.create_task(
                self._fetch(host, entry, self._generation), name=f"fetch_{host}"
            )
            entry.in_flight.add_done_callback(self._consume_result)

        task = entry.in_flight
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and not (current and current.cancelling()):
                raise NodeConnectionError(host, "sampling cancelled by reset") from None
            raise

    async def _fetch(self, host: HostName, entry: CacheEntry, generation: int) -> MetricSample:
        try:
            sample = await self._fetcher(host)
        except Exception as e:
            if entry.sample is not None:
                self.logger.warning(f"Refresh of {host} failed, keeping stale sample: {e}")
            raise
        finally:
            if entry.in_flight is asyncio.current_task():
                entry.in_flight = None

        if generation == self._generation and self._entries.get(host) is entry:
            now = self._clock()
            entry.sample = sample
            entry.stored_at = now
            entry.expires_at = now + self.ttl
        return sample

    @staticmethod
    def _consume_result(task: asyncio.Task) -> None:
        # Keeps asyncio from logging errors nobody was left waiting for
        if not task.cancelled():
            task.exception()

    def peek(self, host: HostName) -> MetricSample | None:
        """Last settled sample for ``host``, fresh or stale; never fetches."""
        entry = self._entries.get(host)
        return entry.sample if entry else None

    def snapshot(self, hosts: Iterable[HostName]) -> dict[HostName, MetricSample | None]:
        return {host: self.peek(host) for host in hosts}

    def is_fresh(self, host: HostName) -> bool:
        entry = self._entries.get(host)
        return entry is not None and entry.sample is not None and self._clock() < entry.expires_at

    def invalidate_all(self) -> int:
        """Cancel in-flight fetches and drop every entry."""
        self._generation += 1
        for entry in self._entries.values():
            if entry.in_flight is not None:
                entry.in_flight.cancel()
        count = len(self._entries)
        self._entries.clear()
        self.logger.info(f"Invalidated {count} cache entries")
        return count

    def drop(self, hosts: Iterable[HostName]) -> None:
        """Forget hosts that left the registry."""
        for host in hosts:
            entry = self._entries.pop(host, None)
            if entry is not None and entry.in_flight is not None:
                entry.in_flight.cancel()

    def evict_expired(self, retention: float) -> list[HostName]:
        """Drop idle entries whose sample expired more than ``retention`` seconds ago."""
        cutoff = self._clock() - retention
        evicted = [
            host for host, entry in self._entries.items()
            if not entry.is_in_flight and entry.expires_at < cutoff
        ]
        for host in evicted:
            del self._entries[host]
        if evicted:
            self.logger.debug(f"Evicted {len(evicted)} expired cache entries")
        return evicted

    def get_statistics(self) -> dict[str, Any]:
        now = self._clock()
        return {
            "entries": len(self._entries),
            "fresh": sum(1 for e in self._entries.values() if e.sample is not None and now < e.expires_at),
            "in_flight": sum(1 for e in self._entries.values() if e.is_in_flight),
        }
