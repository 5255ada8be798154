"""Monitoring service: owns and wires every engine component.

One ``MonitoringService`` is built per process and passed by reference to
whoever needs it (the HTTP API, tests). ``start``/``stop`` control the
background loops.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from .aggregator import MetricsAggregator
from .assessment import assess_node
from .broadcast import BroadcastScheduler, BroadcastSink, SubscriptionHub
from .cache import MetricsCache
from .config import ConsoleConfig
from .connection_manager import ConnectionManager
from .errors import ConsoleError, MetadataUnavailableError, UnknownNodeError
from .jmx import JMXTransport, JmxQueryTransport
from .models import (
    ClusterMetricsReport,
    ConnectionState,
    HealthProbeResult,
    HostName,
    MetricSample,
    NodeInfo,
    NodeResult,
)
from .reaper import HealthReaper, ResetReport
from .registry import CassandraNodeRegistry, NodeRegistry, StaticNodeRegistry
from .sampler import MetricSampler
from .telemetry import ServiceTelemetry


class MonitoringService:
    """Connection manager, sampler, cache, aggregator, reaper and broadcaster."""

    def __init__(
        self,
        config: ConsoleConfig,
        registry: NodeRegistry,
        transport: JMXTransport,
        sink: BroadcastSink | None = None,
        telemetry: ServiceTelemetry | None = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.telemetry = telemetry or ServiceTelemetry()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

        self.manager = ConnectionManager(
            transport, config.jmx, config.backoff, telemetry=self.telemetry
        )
        self.sampler = MetricSampler(self.manager, config.sampling, telemetry=self.telemetry)
        self.cache = MetricsCache(
            self._sample_node, ttl=config.cache.ttl_seconds, telemetry=self.telemetry
        )
        self.manager.add_reset_listener(self.cache.invalidate_all)
        self.aggregator = MetricsAggregator(self.cache, is_available=self._is_available)
        self.reaper = HealthReaper(self.manager, self.cache, config.reaper, config.cache)

        self.sink = sink or SubscriptionHub()
        self.broadcaster = BroadcastScheduler(
            registry, self.sink, config.broadcast, telemetry=self.telemetry
        )
        self._started = False

    # Lifecycle

    async def start(self) -> None:
        if self._started:
            return
        try:
            await self.refresh_nodes()
        except MetadataUnavailableError as e:
            # The broadcaster reports connection_pending until metadata is back
            self.logger.warning(f"Initial node discovery failed: {e}")
        self.reaper.start()
        self.broadcaster.start()
        self._started = True
        self.logger.info(f"Monitoring service started with {len(self.manager.hosts())} nodes")

    async def stop(self) -> None:
        await self.broadcaster.stop()
        await self.reaper.stop()
        await self.manager.close()
        await self.registry.close()
        self._started = False
        self.logger.info("Monitoring service stopped")

    @asynccontextmanager
    async def lifecycle(self) -> AsyncGenerator["MonitoringService", None]:
        await self.start()
        try:
            yield self
        finally:
            await self.stop()

    # Operations

    async def refresh_nodes(self) -> list[NodeInfo]:
        """Re-read membership and sync connection records and cache."""
        nodes = await self.registry.nodes()
        _, removed = self.manager.sync_nodes(nodes)
        if removed:
            self.cache.drop(removed)
        return nodes

    async def _sample_node(self, host: HostName) -> MetricSample:
        await self.manager.ensure_connected(host)
        return await self.sampler.sample(host)

    def _is_available(self, host: HostName) -> bool:
        return self.manager.state_of(host) is not ConnectionState.FAILED

    async def node_metrics(self, host: HostName) -> NodeResult:
        """Fetch (or serve cached) metrics for one node; never raises for node errors."""
        try:
            sample = await self.cache.get_or_fetch(host)
        except UnknownNodeError:
            raise
        except ConsoleError as e:
            return NodeResult(host=host, success=False, error=str(e))

        if sample.all_failed:
            return NodeResult(
                host=host,
                success=False,
                error="; ".join(f"{g}: {note}" for g, note in sample.failures.items()) or "no data",
            )
        return NodeResult(host=host, success=True, sample=sample, assessment=assess_node(sample))

    async def cluster_metrics(self, refresh: bool = True) -> ClusterMetricsReport:
        """Sample every known node concurrently and aggregate the results."""
        error = None
        if refresh:
            try:
                await self.refresh_nodes()
            except MetadataUnavailableError as e:
                error = str(e)
                self.logger.warning(f"Node refresh failed, using known nodes: {e}")

        hosts = self.manager.hosts()
        results = await asyncio.gather(
            *(self.node_metrics(host) for host in hosts), return_exceptions=True
        )

        nodes: list[NodeResult] = []
        for host, result in zip(hosts, results):
            match result:
                case NodeResult():
                    nodes.append(result)
                case BaseException():
                    # Host vanished mid-query, or an unexpected bug
                    self.logger.error(f"Metrics for {host} failed: {result!r}")
                    nodes.append(NodeResult(host=host, success=False, error=str(result)))

        aggregation = self.aggregator.aggregate(hosts)
        return ClusterMetricsReport(
            nodes=nodes,
            unavailable_nodes=aggregation.unavailable_nodes,
            aggregated=aggregation.aggregated,
            error=aggregation.error or error,
        )

    def aggregated_snapshot(self) -> ClusterMetricsReport:
        """Aggregate what is already cached without sampling anything."""
        hosts = self.manager.hosts()
        aggregation = self.aggregator.aggregate(hosts)
        return ClusterMetricsReport(
            nodes=[],
            unavailable_nodes=aggregation.unavailable_nodes,
            aggregated=aggregation.aggregated,
            error=aggregation.error,
        )

    def force_reset(self) -> ResetReport:
        return self.reaper.force_reset()

    async def health_probe(self, host: HostName) -> HealthProbeResult:
        return await self.manager.health_probe(host)

    def node_states(self) -> list[dict[str, Any]]:
        return [self.manager.get_node(host).to_dict() for host in self.manager.hosts()]

    def statistics(self) -> dict[str, Any]:
        return {
            "connections": self.manager.get_statistics(),
            "cache": self.cache.get_statistics(),
            "reaper": self.reaper.get_statistics(),
            "broadcast_ticks": self.broadcaster.tick_count,
            "running": self._started,
        }


# Factory function for easy instantiation
def create_monitoring_service(
    config: ConsoleConfig,
    registry: NodeRegistry | None = None,
    transport: JMXTransport | None = None,
    sink: BroadcastSink | None = None,
) -> MonitoringService:
    """Build a service from configuration.

    Uses a static registry when nodes are listed in configuration, CQL
    discovery otherwise.
    """
    if registry is None:
        if config.nodes:
            registry = StaticNodeRegistry(config.nodes, cluster_name=config.name)
        else:
            registry = CassandraNodeRegistry(config.cassandra, jmx_port=config.jmx.port)
    return MonitoringService(
        config,
        registry,
        transport or JmxQueryTransport(config.jmx),
        sink=sink,
    )
