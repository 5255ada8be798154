"""Prometheus instrumentation for the engine's own behaviour."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge

from .models import ConnectionState


class ServiceTelemetry:
    """Counters and gauges kept on a private registry.

    Each service gets its own ``CollectorRegistry`` so several services (or
    test cases) in one process never collide on metric names.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.connect_attempts = Counter(
            "cassconsole_connect_attempts_total",
            "Management connection attempts by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.cache_lookups = Counter(
            "cassconsole_cache_lookups_total",
            "Metrics cache lookups by result",
            ["result"],
            registry=self.registry,
        )
        self.samples = Counter(
            "cassconsole_samples_total",
            "Node sampling passes by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.broadcast_ticks = Counter(
            "cassconsole_broadcast_ticks_total",
            "Broadcast loop ticks by message type",
            ["type"],
            registry=self.registry,
        )
        self.nodes = Gauge(
            "cassconsole_nodes",
            "Known nodes by connection state",
            ["state"],
            registry=self.registry,
        )

    def set_node_states(self, states: dict[str, ConnectionState]) -> None:
        for state in ConnectionState:
            self.nodes.labels(state=state.value).set(
                sum(1 for s in states.values() if s is state)
            )
