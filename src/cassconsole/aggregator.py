"""Cross-node aggregation of cached samples."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from statistics import fmean
from typing import TypeVar

from .cache import MetricsCache
from .errors import AggregationInsufficientDataError
from .models import AggregatedMetrics, AggregationResult, HostName, MetricSample

logger = logging.getLogger(__name__)

N = TypeVar("N", int, float)


def _present(values: Iterable[N | None]) -> list[N]:
    return [v for v in values if v is not None]


def total(values: Iterable[N | None]) -> N | None:
    present = _present(values)
    return sum(present) if present else None


def mean(values: Iterable[float | None]) -> float | None:
    present = _present(values)
    return round(fmean(present), 3) if present else None


def worst(values: Iterable[N | None]) -> N | None:
    present = _present(values)
    return max(present) if present else None


def rate_total(values: Iterable[float | None]) -> float | None:
    """Throughput adds up across nodes."""
    summed = total(values)
    return None if summed is None else round(summed, 3)


def combine(samples: Sequence[MetricSample]) -> AggregatedMetrics:
    """Derive cluster metrics from contributing samples.

    Latency means are averaged without weighting by traffic. Percentiles take
    the worst node, which never underestimates the cluster-wide figure but is
    not a true cross-node percentile.

    Raises:
        AggregationInsufficientDataError: no samples were given
    """
    if not samples:
        raise AggregationInsufficientDataError("No nodes contributed metrics")

    requests = [s.client_requests for s in samples if s.client_requests is not None]
    memory = [s.memory for s in samples if s.memory is not None]
    gc = [s.gc for s in samples if s.gc is not None]
    caches = [s.cache for s in samples if s.cache is not None]
    compaction = [s.compaction for s in samples if s.compaction is not None]
    pools = [pool for s in samples if s.thread_pools is not None for pool in s.thread_pools.pools.values()]
    storage = [s.storage for s in samples if s.storage is not None]

    return AggregatedMetrics(
        contributing_nodes=len(samples),
        read_count=total(r.read.count for r in requests),
        write_count=total(r.write.count for r in requests),
        read_rate=rate_total(r.read.one_minute_rate for r in requests),
        write_rate=rate_total(r.write.one_minute_rate for r in requests),
        total_timeouts=total(r.total_timeouts for r in requests),
        total_unavailables=total(r.total_unavailables for r in requests),
        total_failures=total(r.total_failures for r in requests),
        read_latency_mean_ms=mean(r.read.mean_ms for r in requests),
        write_latency_mean_ms=mean(r.write.mean_ms for r in requests),
        range_latency_mean_ms=mean(r.range_slice.mean_ms for r in requests),
        read_latency_p95_ms=worst(r.read.p95_ms for r in requests),
        read_latency_p99_ms=worst(r.read.p99_ms for r in requests),
        write_latency_p95_ms=worst(r.write.p95_ms for r in requests),
        write_latency_p99_ms=worst(r.write.p99_ms for r in requests),
        key_cache_hit_rate=mean(c.key_cache.hit_rate for c in caches),
        row_cache_hit_rate=mean(c.row_cache.hit_rate for c in caches),
        heap_used_bytes=total(m.heap_used for m in memory),
        heap_max_bytes=total(m.heap_max for m in memory),
        heap_usage_percent=mean(m.heap_usage_percent for m in memory),
        gc_time_ms=total(g.total_time_ms for g in gc),
        pending_compactions=total(c.pending_tasks for c in compaction),
        completed_compactions=total(c.completed_tasks for c in compaction),
        thread_pool_active=total(p.active for p in pools),
        thread_pool_pending=total(p.pending for p in pools),
        storage_load_bytes=total(s.load_bytes for s in storage),
        total_hints=total(s.total_hints for s in storage),
    )


class MetricsAggregator:
    """Combines whatever samples are already settled in the cache.

    Never triggers a fetch. A host counts as unavailable when it has no
    sample, its sample failed every group, or ``is_available`` rejects it
    (a node whose connection is Failed).
    """

    def __init__(
        self,
        cache: MetricsCache,
        is_available: Callable[[HostName], bool] | None = None,
    ) -> None:
        self.cache = cache
        self.is_available = is_available or (lambda host: True)

    def aggregate(self, hosts: Iterable[HostName]) -> AggregationResult:
        contributing: list[HostName] = []
        unavailable: list[HostName] = []
        samples: list[MetricSample] = []

        for host, sample in self.cache.snapshot(hosts).items():
            if sample is None or sample.all_failed or not self.is_available(host):
                unavailable.append(host)
                continue
            contributing.append(host)
            samples.append(sample)

        try:
            aggregated = combine(samples)
        except AggregationInsufficientDataError as e:
            logger.warning(f"Insufficient data for aggregation: {len(unavailable)} nodes unavailable")
            return AggregationResult(None, contributing, unavailable, error=str(e))

        return AggregationResult(aggregated, contributing, unavailable)
