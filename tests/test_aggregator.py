"""Tests for cross-node aggregation."""

from datetime import datetime

import pytest

from cassconsole.aggregator import MetricsAggregator, combine, mean, total, worst
from cassconsole.cache import MetricsCache
from cassconsole.errors import AggregationInsufficientDataError
from cassconsole.models import (
    CacheMetrics,
    CacheStats,
    ClientRequestMetrics,
    LatencyStats,
    MemoryMetrics,
    MetricGroup,
    MetricSample,
)


def make_sample(host: str, read_mean: float, read_p95: float, timeouts: int = 0,
                hit_rate: float | None = 0.9, heap_used: int = 100) -> MetricSample:
    requests = ClientRequestMetrics(
        read=LatencyStats(mean_ms=read_mean, p95_ms=read_p95, p99_ms=read_p95 * 2, count=100,
                          one_minute_rate=10.0),
        write=LatencyStats(mean_ms=1.0, p95_ms=2.0, p99_ms=3.0, count=50, one_minute_rate=5.0),
        read_timeouts=timeouts,
        write_timeouts=0,
    )
    return MetricSample(
        host=host,
        captured_at=datetime.now(),
        groups={
            MetricGroup.CLIENT_REQUESTS: requests,
            MetricGroup.CACHE: CacheMetrics(key_cache=CacheStats(hit_rate=hit_rate)),
            MetricGroup.MEMORY: MemoryMetrics(heap_used=heap_used, heap_max=1000, heap_usage_percent=10.0),
        },
    )


def failed_sample(host: str) -> MetricSample:
    return MetricSample(
        host=host,
        captured_at=datetime.now(),
        failures={group: "timed out" for group in MetricGroup},
    )


async def cache_with(samples: dict[str, MetricSample]) -> MetricsCache:
    async def fetch(host):
        return samples[host]

    cache = MetricsCache(fetch, ttl=60.0)
    for host in samples:
        await cache.get_or_fetch(host)
    return cache


class TestReducers:
    """Test the reduction helpers."""

    def test_none_values_are_ignored(self) -> None:
        assert total([1, None, 2]) == 3
        assert mean([None, 10.0, 20.0]) == 15.0
        assert worst([None, 5.0, 8.0]) == 8.0

    def test_all_missing_is_none(self) -> None:
        assert total([None, None]) is None
        assert mean([]) is None
        assert worst([None]) is None


class TestCombine:
    """Test aggregation rules."""

    def test_means_are_unweighted_and_percentiles_take_worst(self) -> None:
        samples = [
            make_sample("a", read_mean=10.0, read_p95=5.0),
            make_sample("b", read_mean=20.0, read_p95=8.0),
            make_sample("c", read_mean=30.0, read_p95=3.0),
        ]

        aggregated = combine(samples)

        assert aggregated.contributing_nodes == 3
        assert aggregated.read_latency_mean_ms == 20.0
        assert aggregated.read_latency_p95_ms == 8.0
        assert aggregated.read_latency_p99_ms == 16.0
        assert aggregated.read_count == 300
        assert aggregated.read_rate == 30.0

    def test_counts_sum_and_hit_rates_average(self) -> None:
        samples = [
            make_sample("a", 1.0, 1.0, timeouts=3, hit_rate=0.8, heap_used=100),
            make_sample("b", 1.0, 1.0, timeouts=4, hit_rate=1.0, heap_used=250),
        ]

        aggregated = combine(samples)

        assert aggregated.total_timeouts == 7
        assert aggregated.key_cache_hit_rate == 0.9
        assert aggregated.heap_used_bytes == 350
        assert aggregated.heap_max_bytes == 2000

    def test_missing_group_contributes_nothing(self) -> None:
        partial = MetricSample(host="b", captured_at=datetime.now())

        aggregated = combine([make_sample("a", 12.0, 20.0), partial])

        assert aggregated.contributing_nodes == 2
        assert aggregated.read_latency_mean_ms == 12.0
        assert aggregated.pending_compactions is None

    def test_empty_input_is_insufficient(self) -> None:
        with pytest.raises(AggregationInsufficientDataError):
            combine([])


class TestMetricsAggregator:
    """Test node exclusion over cached samples."""

    @pytest.mark.asyncio
    async def test_failed_and_missing_nodes_are_excluded(self) -> None:
        cache = await cache_with({
            "a": make_sample("a", 10.0, 5.0),
            "b": failed_sample("b"),
        })

        result = MetricsAggregator(cache).aggregate(["a", "b", "c"])

        assert result.contributing == ["a"]
        assert result.unavailable_nodes == ["b", "c"]
        assert result.aggregated.contributing_nodes == 1
        assert result.aggregated.read_latency_mean_ms == 10.0

    @pytest.mark.asyncio
    async def test_no_contributors_yields_insufficient_data(self) -> None:
        cache = await cache_with({"b": failed_sample("b")})

        result = MetricsAggregator(cache).aggregate(["a", "b"])

        assert result.aggregated is None
        assert result.insufficient_data is True
        assert result.unavailable_nodes == ["a", "b"]
        assert result.error

    @pytest.mark.asyncio
    async def test_unavailable_connection_excludes_node_until_recovered(self) -> None:
        cache = await cache_with({
            "a": make_sample("a", 10.0, 5.0),
            "b": make_sample("b", 30.0, 9.0),
        })
        failed = {"b"}
        aggregator = MetricsAggregator(cache, is_available=lambda host: host not in failed)

        before = aggregator.aggregate(["a", "b"])
        failed.clear()
        after = aggregator.aggregate(["a", "b"])

        assert before.unavailable_nodes == ["b"]
        assert before.aggregated.read_latency_mean_ms == 10.0
        assert after.unavailable_nodes == []
        assert after.aggregated.read_latency_mean_ms == 20.0
        assert after.aggregated.read_latency_p95_ms == 9.0

    @pytest.mark.asyncio
    async def test_aggregate_never_fetches(self) -> None:
        calls = []

        async def fetch(host):
            calls.append(host)
            return make_sample(host, 1.0, 1.0)

        cache = MetricsCache(fetch, ttl=60.0)

        result = MetricsAggregator(cache).aggregate(["a"])

        assert calls == []
        assert result.unavailable_nodes == ["a"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
