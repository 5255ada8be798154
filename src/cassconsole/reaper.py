"""Slow periodic sweep of idle connections and expired cache entries."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime

from .cache import MetricsCache
from .config import CacheConfig, ReaperConfig
from .connection_manager import ConnectionManager
from .models import HostName


@dataclass(frozen=True, slots=True)
class SweepReport:
    closed: list[HostName] = field(default_factory=list)
    evicted: list[HostName] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ResetReport:
    success: bool
    nodes_reset: int
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "nodes_reset": self.nodes_reset,
            "timestamp": self.timestamp.isoformat(),
        }


class HealthReaper:
    """Closes idle connections and owns the operator-facing forced reset.

    Idle nodes go to Disconnected, not Failed, so the next
    ``ensure_connected`` reconnects them without backoff.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        cache: MetricsCache,
        config: ReaperConfig | None = None,
        cache_config: CacheConfig | None = None,
    ) -> None:
        self.manager = manager
        self.cache = cache
        self.config = config or ReaperConfig()
        self.cache_config = cache_config or CacheConfig()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._stats = {"sweeps": 0, "closed": 0, "evicted": 0, "resets": 0}

    def sweep(self) -> SweepReport:
        closed = self.manager.close_idle(self.config.idle_threshold_seconds)
        evicted = self.cache.evict_expired(self.cache_config.stale_retention_seconds)

        self._stats["sweeps"] += 1
        self._stats["closed"] += len(closed)
        self._stats["evicted"] += len(evicted)
        if closed:
            self.logger.info(f"Closed idle connections: {', '.join(closed)}")
        return SweepReport(closed=closed, evicted=evicted)

    def force_reset(self) -> ResetReport:
        """Disconnect every node and clear the cache. Always succeeds."""
        count = self.manager.force_disconnect_all()
        self._stats["resets"] += 1
        return ResetReport(success=True, nodes_reset=count)

    async def run(self) -> None:
        self._running = True
        self.logger.info(f"Health reaper started (every {self.config.interval_seconds:.0f}s)")
        try:
            while self._running:
                await asyncio.sleep(self.config.interval_seconds)
                try:
                    self.sweep()
                except Exception as e:
                    self.logger.error(f"Reaper sweep failed: {e}")
        finally:
            self._running = False
            self.logger.info("Health reaper stopped")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="health_reaper")

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def get_statistics(self) -> dict[str, int]:
        return dict(self._stats)
