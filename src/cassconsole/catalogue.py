"""Fixed catalogue of MBean reads and their normalisation.

Every group is described by the MBeans it reads and a normaliser that turns
the raw attribute values into a typed group variant. Normalisers raise
``ProtocolError`` for values of the wrong shape; attributes that are simply
missing become ``None`` and mark the group degraded.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Final, TypeAlias

from .errors import ProtocolError
from .models import (
    CacheMetrics,
    CacheStats,
    ClientRequestMetrics,
    CompactionMetrics,
    GarbageCollectionMetrics,
    GroupMetrics,
    LatencyStats,
    MemoryMetrics,
    MetricGroup,
    StorageMetrics,
    ThreadPoolMetrics,
    ThreadPoolStats,
)

RawReads: TypeAlias = Mapping[str, Mapping[str, Any]]

CASSANDRA_METRICS: Final[str] = "org.apache.cassandra.metrics"
MICROS_PER_MILLI: Final[float] = 1000.0


@dataclass(frozen=True, slots=True)
class MBeanRead:
    """One MBean read; ``key`` names the result for the normaliser."""
    key: str
    object_name: str
    attributes: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class GroupSpec:
    group: MetricGroup
    reads: tuple[MBeanRead, ...]
    normalize: Callable[[RawReads], GroupMetrics]


class _Reader:
    """Pulls typed values out of raw reads and remembers what was missing."""

    def __init__(self, group: MetricGroup, raw: RawReads) -> None:
        self.group = group
        self.raw = raw
        self.missing = False

    def value(self, key: str, attribute: str, sub_key: str | None = None) -> Any:
        value = self.raw.get(key, {}).get(attribute)
        if value is not None and sub_key is not None:
            if not isinstance(value, Mapping):
                raise ProtocolError(
                    f"{self.group}: {key}.{attribute} expected composite data, got {type(value).__name__}"
                )
            value = value.get(sub_key)
        if value is None:
            self.missing = True
        return value

    def number(self, key: str, attribute: str, sub_key: str | None = None) -> float | None:
        value = self.value(key, attribute, sub_key)
        if value is None:
            return None
        if isinstance(value, bool):
            raise ProtocolError(f"{self.group}: {key}.{attribute} is boolean, expected a number")
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                pass
        label = f"{key}.{attribute}" + (f".{sub_key}" if sub_key else "")
        raise ProtocolError(f"{self.group}: {label} is not numeric: {value!r}")

    def integer(self, key: str, attribute: str, sub_key: str | None = None) -> int | None:
        value = self.number(key, attribute, sub_key)
        return None if value is None else int(value)

    def millis(self, key: str, attribute: str) -> float | None:
        """Latency histograms are reported in microseconds."""
        value = self.number(key, attribute)
        return None if value is None else round(value / MICROS_PER_MILLI, 3)


# Status bands


def cache_efficiency(hit_rate: float | None) -> str:
    match hit_rate:
        case None:
            return "unknown"
        case rate if rate > 0.95:
            return "excellent"
        case rate if rate > 0.85:
            return "good"
        case rate if rate > 0.70:
            return "fair"
        case _:
            return "poor"


def thread_pool_status(pending: int | None) -> str:
    match pending:
        case None:
            return "unknown"
        case p if p > 100:
            return "overloaded"
        case p if p > 50:
            return "busy"
        case p if p > 10:
            return "moderate"
        case _:
            return "healthy"


def compaction_status(pending: int | None) -> str:
    match pending:
        case None:
            return "unknown"
        case p if p > 20:
            return "behind"
        case p if p > 5:
            return "active"
        case _:
            return "current"


def hints_status(hints: int | None) -> str:
    match hints:
        case None:
            return "unknown"
        case h if h > 1000:
            return "high"
        case h if h > 100:
            return "moderate"
        case _:
            return "low"


# Normalisers


def normalize_memory(raw: RawReads) -> MemoryMetrics:
    r = _Reader(MetricGroup.MEMORY, raw)
    heap_used = r.integer("memory", "HeapMemoryUsage", "used")
    heap_committed = r.integer("memory", "HeapMemoryUsage", "committed")
    heap_max = r.integer("memory", "HeapMemoryUsage", "max")
    non_heap_used = r.integer("memory", "NonHeapMemoryUsage", "used")

    usage = None
    # The JVM reports max=-1 when the heap is unbounded
    if heap_used is not None and heap_max and heap_max > 0:
        usage = round(heap_used / heap_max * 100, 2)

    return MemoryMetrics(
        heap_used=heap_used,
        heap_committed=heap_committed,
        heap_max=heap_max,
        non_heap_used=non_heap_used,
        heap_usage_percent=usage,
        degraded=r.missing,
    )


def normalize_gc(raw: RawReads) -> GarbageCollectionMetrics:
    r = _Reader(MetricGroup.GARBAGE_COLLECTION, raw)
    return GarbageCollectionMetrics(
        young_collections=r.integer("young", "CollectionCount"),
        young_time_ms=r.integer("young", "CollectionTime"),
        old_collections=r.integer("old", "CollectionCount"),
        old_time_ms=r.integer("old", "CollectionTime"),
        degraded=r.missing,
    )


THREAD_POOLS: Final[dict[str, tuple[str, str]]] = {
    "mutation": ("request", "MutationStage"),
    "read": ("request", "ReadStage"),
    "compaction": ("internal", "CompactionExecutor"),
    "native_transport": ("transport", "Native-Transport-Requests"),
}
_POOL_COUNTERS: Final[dict[str, str]] = {
    "active": "ActiveTasks",
    "pending": "PendingTasks",
    "completed": "CompletedTasks",
}


def normalize_thread_pools(raw: RawReads) -> ThreadPoolMetrics:
    r = _Reader(MetricGroup.THREAD_POOLS, raw)
    pools = {}
    for pool in THREAD_POOLS:
        counters = {field: r.integer(f"{pool}.{field}", "Value") for field in _POOL_COUNTERS}
        pools[pool] = ThreadPoolStats(**counters, status=thread_pool_status(counters["pending"]))
    return ThreadPoolMetrics(pools=pools, degraded=r.missing)


def normalize_cache(raw: RawReads) -> CacheMetrics:
    r = _Reader(MetricGroup.CACHE, raw)

    def stats(prefix: str) -> CacheStats:
        hit_rate = r.number(f"{prefix}.hit_rate", "Value")
        if hit_rate is not None and not 0.0 <= hit_rate <= 1.0:
            # NaN before the first request compares false here too
            hit_rate = None if hit_rate != hit_rate else max(0.0, min(1.0, hit_rate))
        return CacheStats(
            hit_rate=hit_rate,
            requests=r.integer(f"{prefix}.requests", "Count"),
            efficiency=cache_efficiency(hit_rate),
        )

    key_cache = stats("key_cache")
    row_cache = stats("row_cache")
    return CacheMetrics(key_cache=key_cache, row_cache=row_cache, degraded=r.missing)


def normalize_compaction(raw: RawReads) -> CompactionMetrics:
    r = _Reader(MetricGroup.COMPACTION, raw)
    pending = r.integer("pending", "Value")
    return CompactionMetrics(
        pending_tasks=pending,
        completed_tasks=r.integer("completed", "Value"),
        bytes_compacted=r.integer("bytes", "Count"),
        status=compaction_status(pending),
        degraded=r.missing,
    )


_LATENCY_ATTRIBUTES: Final[tuple[str, ...]] = (
    "Mean", "95thPercentile", "99thPercentile", "Count", "OneMinuteRate",
)


def normalize_client_requests(raw: RawReads) -> ClientRequestMetrics:
    r = _Reader(MetricGroup.CLIENT_REQUESTS, raw)

    def latency(key: str) -> LatencyStats:
        rate = r.number(key, "OneMinuteRate")
        return LatencyStats(
            mean_ms=r.millis(key, "Mean"),
            p95_ms=r.millis(key, "95thPercentile"),
            p99_ms=r.millis(key, "99thPercentile"),
            count=r.integer(key, "Count"),
            one_minute_rate=None if rate is None else round(rate, 3),
        )

    read = latency("read")
    write = latency("write")
    range_slice = latency("range_slice")
    return ClientRequestMetrics(
        read=read,
        write=write,
        range_slice=range_slice,
        read_timeouts=r.integer("read_timeouts", "Count"),
        write_timeouts=r.integer("write_timeouts", "Count"),
        read_unavailables=r.integer("read_unavailables", "Count"),
        write_unavailables=r.integer("write_unavailables", "Count"),
        read_failures=r.integer("read_failures", "Count"),
        write_failures=r.integer("write_failures", "Count"),
        degraded=r.missing,
    )


def normalize_storage(raw: RawReads) -> StorageMetrics:
    r = _Reader(MetricGroup.STORAGE, raw)
    hints = r.integer("hints", "Count")
    return StorageMetrics(
        load_bytes=r.integer("load", "Count"),
        total_hints=hints,
        exceptions=r.integer("exceptions", "Count"),
        hints_status=hints_status(hints),
        degraded=r.missing,
    )


# Catalogue


def _metric(type_: str, name: str, scope: str | None = None, path: str | None = None) -> str:
    parts = [f"type={type_}"]
    if path:
        parts.append(f"path={path}")
    if scope:
        parts.append(f"scope={scope}")
    parts.append(f"name={name}")
    return f"{CASSANDRA_METRICS}:{','.join(parts)}"


def _build_catalogue() -> dict[MetricGroup, GroupSpec]:
    pool_reads = tuple(
        MBeanRead(f"{pool}.{field}", _metric("ThreadPools", counter, scope=scope, path=path), ("Value",))
        for pool, (path, scope) in THREAD_POOLS.items()
        for field, counter in _POOL_COUNTERS.items()
    )

    request_reads = [
        MBeanRead("read", _metric("ClientRequest", "Latency", scope="Read"), _LATENCY_ATTRIBUTES),
        MBeanRead("write", _metric("ClientRequest", "Latency", scope="Write"), _LATENCY_ATTRIBUTES),
        MBeanRead("range_slice", _metric("ClientRequest", "Latency", scope="RangeSlice"), _LATENCY_ATTRIBUTES),
    ]
    for scope in ("Read", "Write"):
        for name in ("Timeouts", "Unavailables", "Failures"):
            request_reads.append(
                MBeanRead(f"{scope.lower()}_{name.lower()}", _metric("ClientRequest", name, scope=scope), ("Count",))
            )

    specs = [
        GroupSpec(
            MetricGroup.MEMORY,
            (MBeanRead("memory", "java.lang:type=Memory", ("HeapMemoryUsage", "NonHeapMemoryUsage")),),
            normalize_memory,
        ),
        GroupSpec(
            MetricGroup.GARBAGE_COLLECTION,
            (
                MBeanRead("young", "java.lang:type=GarbageCollector,name=G1 Young Generation",
                          ("CollectionCount", "CollectionTime")),
                MBeanRead("old", "java.lang:type=GarbageCollector,name=G1 Old Generation",
                          ("CollectionCount", "CollectionTime")),
            ),
            normalize_gc,
        ),
        GroupSpec(MetricGroup.THREAD_POOLS, pool_reads, normalize_thread_pools),
        GroupSpec(
            MetricGroup.CACHE,
            (
                MBeanRead("key_cache.hit_rate", _metric("Cache", "HitRate", scope="KeyCache"), ("Value",)),
                MBeanRead("key_cache.requests", _metric("Cache", "Requests", scope="KeyCache"), ("Count",)),
                MBeanRead("row_cache.hit_rate", _metric("Cache", "HitRate", scope="RowCache"), ("Value",)),
                MBeanRead("row_cache.requests", _metric("Cache", "Requests", scope="RowCache"), ("Count",)),
            ),
            normalize_cache,
        ),
        GroupSpec(
            MetricGroup.COMPACTION,
            (
                MBeanRead("pending", _metric("Compaction", "PendingTasks"), ("Value",)),
                MBeanRead("completed", _metric("Compaction", "CompletedTasks"), ("Value",)),
                MBeanRead("bytes", _metric("Compaction", "BytesCompacted"), ("Count",)),
            ),
            normalize_compaction,
        ),
        GroupSpec(MetricGroup.CLIENT_REQUESTS, tuple(request_reads), normalize_client_requests),
        GroupSpec(
            MetricGroup.STORAGE,
            (
                MBeanRead("load", _metric("Storage", "Load"), ("Count",)),
                MBeanRead("hints", _metric("Storage", "TotalHints"), ("Count",)),
                MBeanRead("exceptions", _metric("Storage", "Exceptions"), ("Count",)),
            ),
            normalize_storage,
        ),
    ]
    return {spec.group: spec for spec in specs}


DEFAULT_CATALOGUE: Final[dict[MetricGroup, GroupSpec]] = _build_catalogue()
