"""Domain types shared by the connection, sampling and aggregation layers.

Metric groups are a closed set of frozen dataclass variants. A group that
could only be read partially is kept with ``None`` fields and
``degraded=True``; a group that failed outright is absent from
``MetricSample.groups`` and explained in ``MetricSample.failures``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any, Literal, TypeAlias

HostName: TypeAlias = str
ChannelName: TypeAlias = str


class ConnectionState(StrEnum):
    """Lifecycle of a node's management connection."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class MetricGroup(StrEnum):
    """Fixed catalogue of sampled metric groups."""
    MEMORY = "memory"
    GARBAGE_COLLECTION = "gc"
    THREAD_POOLS = "thread_pools"
    CACHE = "cache"
    COMPACTION = "compaction"
    CLIENT_REQUESTS = "client_requests"
    STORAGE = "storage"


@dataclass(frozen=True, slots=True)
class NodeInfo:
    """A node as reported by the registry."""
    host: HostName
    management_port: int | None = None
    datacenter: str | None = None
    rack: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class NodeConnection:
    """Connection-state record for one node, owned by the ConnectionManager."""
    host: HostName
    port: int
    state: ConnectionState = ConnectionState.DISCONNECTED
    last_error: str | None = None
    backoff_attempt: int = 0
    connected_at: datetime | None = None
    last_used_at: datetime | None = None
    next_retry_delay: float | None = None

    def snapshot(self) -> "NodeConnection":
        """Return a detached copy safe to hand to other components."""
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "state": self.state.value,
            "last_error": self.last_error,
            "backoff_attempt": self.backoff_attempt,
            "connected_at": self.connected_at.isoformat() if self.connected_at else None,
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
            "next_retry_delay": self.next_retry_delay,
        }


# Metric group variants


@dataclass(frozen=True, slots=True)
class MemoryMetrics:
    """JVM heap and non-heap usage in bytes."""
    heap_used: int | None = None
    heap_committed: int | None = None
    heap_max: int | None = None
    non_heap_used: int | None = None
    heap_usage_percent: float | None = None
    degraded: bool = False


@dataclass(frozen=True, slots=True)
class GarbageCollectionMetrics:
    """G1 collector counters; times in milliseconds."""
    young_collections: int | None = None
    young_time_ms: int | None = None
    old_collections: int | None = None
    old_time_ms: int | None = None
    degraded: bool = False

    @property
    def total_time_ms(self) -> int | None:
        times = [t for t in (self.young_time_ms, self.old_time_ms) if t is not None]
        return sum(times) if times else None


@dataclass(frozen=True, slots=True)
class ThreadPoolStats:
    active: int | None = None
    pending: int | None = None
    completed: int | None = None
    status: str = "unknown"


@dataclass(frozen=True, slots=True)
class ThreadPoolMetrics:
    """Selected Cassandra stage pools keyed by short name."""
    pools: dict[str, ThreadPoolStats] = field(default_factory=dict)
    degraded: bool = False


@dataclass(frozen=True, slots=True)
class CacheStats:
    hit_rate: float | None = None
    requests: int | None = None
    efficiency: str = "unknown"

    @property
    def hits(self) -> int | None:
        if self.hit_rate is None or self.requests is None:
            return None
        return round(self.hit_rate * self.requests)


@dataclass(frozen=True, slots=True)
class CacheMetrics:
    """Key and row cache hit ratios (0..1)."""
    key_cache: CacheStats = field(default_factory=CacheStats)
    row_cache: CacheStats = field(default_factory=CacheStats)
    degraded: bool = False


@dataclass(frozen=True, slots=True)
class CompactionMetrics:
    pending_tasks: int | None = None
    completed_tasks: int | None = None
    bytes_compacted: int | None = None
    status: str = "unknown"
    degraded: bool = False


@dataclass(frozen=True, slots=True)
class LatencyStats:
    """Latency figures in milliseconds and throughput in ops/sec."""
    mean_ms: float | None = None
    p95_ms: float | None = None
    p99_ms: float | None = None
    count: int | None = None
    one_minute_rate: float | None = None


@dataclass(frozen=True, slots=True)
class ClientRequestMetrics:
    read: LatencyStats = field(default_factory=LatencyStats)
    write: LatencyStats = field(default_factory=LatencyStats)
    range_slice: LatencyStats = field(default_factory=LatencyStats)
    read_timeouts: int | None = None
    write_timeouts: int | None = None
    read_unavailables: int | None = None
    write_unavailables: int | None = None
    read_failures: int | None = None
    write_failures: int | None = None
    degraded: bool = False

    @staticmethod
    def _total(*values: int | None) -> int | None:
        present = [v for v in values if v is not None]
        return sum(present) if present else None

    @property
    def total_timeouts(self) -> int | None:
        return self._total(self.read_timeouts, self.write_timeouts)

    @property
    def total_unavailables(self) -> int | None:
        return self._total(self.read_unavailables, self.write_unavailables)

    @property
    def total_failures(self) -> int | None:
        return self._total(self.read_failures, self.write_failures)

    @property
    def total_errors(self) -> int | None:
        return self._total(self.total_timeouts, self.total_unavailables, self.total_failures)

    @property
    def request_rate(self) -> float | None:
        rates = [r for r in (self.read.one_minute_rate, self.write.one_minute_rate) if r is not None]
        return sum(rates) if rates else None

    @property
    def error_rate_percent(self) -> float | None:
        errors, rate = self.total_errors, self.request_rate
        if errors is None or not rate:
            return None
        return errors / rate * 100


@dataclass(frozen=True, slots=True)
class StorageMetrics:
    load_bytes: int | None = None
    total_hints: int | None = None
    exceptions: int | None = None
    hints_status: str = "unknown"
    degraded: bool = False


GroupMetrics: TypeAlias = (
    MemoryMetrics
    | GarbageCollectionMetrics
    | ThreadPoolMetrics
    | CacheMetrics
    | CompactionMetrics
    | ClientRequestMetrics
    | StorageMetrics
)


@dataclass(frozen=True, slots=True)
class MetricSample:
    """One sampling pass over a node. Never mutated after construction."""
    host: HostName
    captured_at: datetime
    groups: dict[MetricGroup, GroupMetrics] = field(default_factory=dict)
    failures: dict[MetricGroup, str] = field(default_factory=dict)

    @property
    def all_failed(self) -> bool:
        return not self.groups

    @property
    def partial(self) -> bool:
        return bool(self.failures) or any(g.degraded for g in self.groups.values())

    def group(self, name: MetricGroup) -> GroupMetrics | None:
        return self.groups.get(name)

    @property
    def memory(self) -> MemoryMetrics | None:
        return self.groups.get(MetricGroup.MEMORY)  # type: ignore[return-value]

    @property
    def gc(self) -> GarbageCollectionMetrics | None:
        return self.groups.get(MetricGroup.GARBAGE_COLLECTION)  # type: ignore[return-value]

    @property
    def thread_pools(self) -> ThreadPoolMetrics | None:
        return self.groups.get(MetricGroup.THREAD_POOLS)  # type: ignore[return-value]

    @property
    def cache(self) -> CacheMetrics | None:
        return self.groups.get(MetricGroup.CACHE)  # type: ignore[return-value]

    @property
    def compaction(self) -> CompactionMetrics | None:
        return self.groups.get(MetricGroup.COMPACTION)  # type: ignore[return-value]

    @property
    def client_requests(self) -> ClientRequestMetrics | None:
        return self.groups.get(MetricGroup.CLIENT_REQUESTS)  # type: ignore[return-value]

    @property
    def storage(self) -> StorageMetrics | None:
        return self.groups.get(MetricGroup.STORAGE)  # type: ignore[return-value]

    def to_dict(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "captured_at": self.captured_at.isoformat(),
            "groups": {name.value: asdict(group) for name, group in self.groups.items()},
            "failures": {name.value: note for name, note in self.failures.items()},
            "partial": self.partial,
        }


@dataclass(frozen=True, slots=True)
class NodeAssessment:
    """Heuristic health score derived from one sample."""
    score: int | None
    status: str
    issues: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class AggregatedMetrics:
    """Cluster-wide figures derived from the currently cached samples.

    Counts and byte totals are sums, latency means are unweighted means,
    percentiles are the maximum across nodes and cache hit rates are the
    mean of per-node ratios. A field is ``None`` when no contributing node
    reported it.
    """
    contributing_nodes: int
    read_count: int | None = None
    write_count: int | None = None
    read_rate: float | None = None
    write_rate: float | None = None
    total_timeouts: int | None = None
    total_unavailables: int | None = None
    total_failures: int | None = None
    read_latency_mean_ms: float | None = None
    write_latency_mean_ms: float | None = None
    range_latency_mean_ms: float | None = None
    read_latency_p95_ms: float | None = None
    read_latency_p99_ms: float | None = None
    write_latency_p95_ms: float | None = None
    write_latency_p99_ms: float | None = None
    key_cache_hit_rate: float | None = None
    row_cache_hit_rate: float | None = None
    heap_used_bytes: int | None = None
    heap_max_bytes: int | None = None
    heap_usage_percent: float | None = None
    gc_time_ms: int | None = None
    pending_compactions: int | None = None
    completed_compactions: int | None = None
    thread_pool_active: int | None = None
    thread_pool_pending: int | None = None
    storage_load_bytes: int | None = None
    total_hints: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class AggregationResult:
    """Outcome of one aggregation pass."""
    aggregated: AggregatedMetrics | None
    contributing: list[HostName]
    unavailable_nodes: list[HostName]
    error: str | None = None

    @property
    def insufficient_data(self) -> bool:
        return self.aggregated is None


@dataclass(frozen=True, slots=True)
class NodeResult:
    """Per-node entry of the cluster metrics query."""
    host: HostName
    success: bool
    sample: MetricSample | None = None
    assessment: NodeAssessment | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"host": self.host, "success": self.success}
        if self.success and self.sample is not None:
            payload["metrics"] = self.sample.to_dict()
            if self.assessment is not None:
                payload["health"] = asdict(self.assessment)
        else:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True, slots=True)
class ClusterMetricsReport:
    """Best-effort structured answer to the aggregated-metrics query."""
    nodes: list[NodeResult]
    unavailable_nodes: list[HostName]
    aggregated: AggregatedMetrics | None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.aggregated is not None

    @property
    def insufficient_data(self) -> bool:
        return self.aggregated is None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "nodes": [node.to_dict() for node in self.nodes],
            "unavailable_nodes": list(self.unavailable_nodes),
            "insufficient_data": self.insufficient_data,
            "total_nodes": len(self.nodes),
            "successful_nodes": sum(1 for node in self.nodes if node.success),
        }
        if self.aggregated is not None:
            payload["aggregated"] = self.aggregated.to_dict()
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True, slots=True)
class HealthProbeResult:
    host: HostName
    reachable: bool
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"host": self.host, "reachable": self.reachable}
        if self.last_error is not None:
            payload["last_error"] = self.last_error
        return payload


# Broadcast message shapes


@dataclass(frozen=True, slots=True)
class MetricsSnapshotMessage:
    """Periodic basic-metrics snapshot."""
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.now)
    type: Literal["metrics_update"] = "metrics_update"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data, "timestamp": self.timestamp.isoformat()}


@dataclass(frozen=True, slots=True)
class ConnectionPendingMessage:
    """Sent instead of a snapshot while the metadata source is unreachable."""
    message: str
    timestamp: datetime = field(default_factory=datetime.now)
    type: Literal["connection_pending"] = "connection_pending"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "message": self.message, "timestamp": self.timestamp.isoformat()}


BroadcastMessage: TypeAlias = MetricsSnapshotMessage | ConnectionPendingMessage


@dataclass(slots=True)
class Subscription:
    client_id: str
    channels: set[ChannelName] = field(default_factory=set)

    def accepts(self, channel: ChannelName | None) -> bool:
        """A client with no subscriptions receives every channel."""
        return channel is None or not self.channels or channel in self.channels
