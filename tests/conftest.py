"""Shared fakes for the JMX transport and node registry."""

import time
from collections import defaultdict
from typing import Any

import pytest

from cassconsole.catalogue import DEFAULT_CATALOGUE
from cassconsole.config import (
    BackoffConfig,
    CacheConfig,
    ConsoleConfig,
    JMXConfig,
    ReaperConfig,
    SamplingConfig,
)
from cassconsole.errors import MetadataUnavailableError, NodeConnectionError
from cassconsole.jmx import JMXHandle, JMXTransport
from cassconsole.models import NodeInfo
from cassconsole.registry import NodeRegistry

METRICS = "org.apache.cassandra.metrics"


def build_mbeans(
    read_mean_us: float = 10_000.0,
    read_p95_us: float = 20_000.0,
    read_p99_us: float = 30_000.0,
    write_mean_us: float = 5_000.0,
    heap_used: int = 512 * 1024**2,
    heap_max: int = 1024 * 1024**2,
    key_cache_hit_rate: float = 0.9,
    pending_compactions: int = 2,
    read_count: int = 1000,
    write_count: int = 2000,
) -> dict[str, dict[str, Any]]:
    """Raw MBean attribute values for a healthy node."""
    def latency(mean, p95, p99, count, rate):
        return {"Mean": mean, "95thPercentile": p95, "99thPercentile": p99, "Count": count, "OneMinuteRate": rate}

    mbeans = {
        "java.lang:type=Runtime": {"Uptime": 123456},
        "java.lang:type=Memory": {
            "HeapMemoryUsage": {"used": heap_used, "committed": heap_max, "max": heap_max},
            "NonHeapMemoryUsage": {"used": 64 * 1024**2, "committed": 80 * 1024**2, "max": -1},
        },
        "java.lang:type=GarbageCollector,name=G1 Young Generation": {"CollectionCount": 40, "CollectionTime": 400},
        "java.lang:type=GarbageCollector,name=G1 Old Generation": {"CollectionCount": 1, "CollectionTime": 100},
        f"{METRICS}:type=Cache,scope=KeyCache,name=HitRate": {"Value": key_cache_hit_rate},
        f"{METRICS}:type=Cache,scope=KeyCache,name=Requests": {"Count": 5000},
        f"{METRICS}:type=Cache,scope=RowCache,name=HitRate": {"Value": "NaN"},
        f"{METRICS}:type=Cache,scope=RowCache,name=Requests": {"Count": 0},
        f"{METRICS}:type=Compaction,name=PendingTasks": {"Value": pending_compactions},
        f"{METRICS}:type=Compaction,name=CompletedTasks": {"Value": 100},
        f"{METRICS}:type=Compaction,name=BytesCompacted": {"Count": 4096},
        f"{METRICS}:type=ClientRequest,scope=Read,name=Latency": latency(
            read_mean_us, read_p95_us, read_p99_us, read_count, 50.0
        ),
        f"{METRICS}:type=ClientRequest,scope=Write,name=Latency": latency(
            write_mean_us, write_mean_us * 2, write_mean_us * 3, write_count, 100.0
        ),
        f"{METRICS}:type=ClientRequest,scope=RangeSlice,name=Latency": latency(1000.0, 2000.0, 3000.0, 10, 1.0),
        f"{METRICS}:type=Storage,name=Load": {"Count": 10 * 1024**3},
        f"{METRICS}:type=Storage,name=TotalHints": {"Count": 5},
        f"{METRICS}:type=Storage,name=Exceptions": {"Count": 0},
    }
    for scope in ("Read", "Write"):
        for name in ("Timeouts", "Unavailables", "Failures"):
            mbeans[f"{METRICS}:type=ClientRequest,scope={scope},name={name}"] = {"Count": 0}
    for spec in DEFAULT_CATALOGUE.values():
        for read in spec.reads:
            if "ThreadPools" in read.object_name:
                mbeans[read.object_name] = {"Value": 1}
    return mbeans


class FakeHandle(JMXHandle):
    def __init__(self, transport: "FakeTransport", host: str) -> None:
        self.transport = transport
        self.host = host
        self.closed = False

    def read(self, object_name, attributes, timeout=None):
        if self.closed:
            raise NodeConnectionError(self.host, "closed")
        self.transport.reads[self.host] += 1
        error = self.transport.read_errors.get((self.host, object_name))
        if error is not None:
            raise error
        delay = self.transport.read_delays.get((self.host, object_name))
        if delay:
            time.sleep(delay)
        values = self.transport.mbeans.get(self.host, {}).get(object_name, {})
        return {attr: values[attr] for attr in attributes if attr in values}

    def close(self):
        if not self.closed:
            self.closed = True
            self.transport.live[self.host] -= 1


class FakeTransport(JMXTransport):
    """In-memory transport; behaviour is scripted per host."""

    def __init__(self) -> None:
        self.mbeans: dict[str, dict[str, dict[str, Any]]] = {}
        self.failing: set[str] = set()
        self.open_delay: dict[str, float] = {}
        self.read_errors: dict[tuple[str, str], Exception] = {}
        self.read_delays: dict[tuple[str, str], float] = {}
        self.open_calls: dict[str, int] = defaultdict(int)
        self.reads: dict[str, int] = defaultdict(int)
        self.live: dict[str, int] = defaultdict(int)
        self.max_live: dict[str, int] = defaultdict(int)

    def open(self, host, port, timeout):
        self.open_calls[host] += 1
        delay = self.open_delay.get(host)
        if delay:
            time.sleep(delay)
        if host in self.failing:
            raise NodeConnectionError(host, "connection refused")
        self.live[host] += 1
        self.max_live[host] = max(self.max_live[host], self.live[host])
        return FakeHandle(self, host)


class FakeRegistry(NodeRegistry):
    def __init__(self, hosts: list[str]) -> None:
        self.hosts = list(hosts)
        self.available = True
        self.calls = 0

    async def nodes(self):
        if not self.available:
            raise MetadataUnavailableError("cassandra down")
        return [NodeInfo(host=h, management_port=7199, datacenter="dc1", rack="r1") for h in self.hosts]

    async def basic_metrics(self):
        self.calls += 1
        if not self.available:
            raise MetadataUnavailableError("cassandra down")
        return {"cluster": {"name": "test", "total_nodes": len(self.hosts)}, "nodes": self.hosts}


@pytest.fixture
def mbeans():
    return build_mbeans


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def hosts():
    return ["10.0.0.1", "10.0.0.2", "10.0.0.3"]


@pytest.fixture
def healthy_transport(transport, hosts):
    for host in hosts:
        transport.mbeans[host] = build_mbeans()
    return transport


@pytest.fixture
def fast_config():
    """Configuration with timings short enough for tests."""
    return ConsoleConfig(
        jmx=JMXConfig(connect_timeout=1.0, probe_timeout=0.5, workers_per_node=2),
        backoff=BackoffConfig(base_delay=0.01, max_delay=0.08),
        sampling=SamplingConfig(group_timeout=0.5, sample_timeout=1.0),
        cache=CacheConfig(ttl_seconds=60.0, stale_retention_seconds=300.0),
        reaper=ReaperConfig(interval_seconds=60.0, idle_threshold_seconds=120.0),
    )


@pytest.fixture
def registry(hosts):
    return FakeRegistry(hosts)
