"""Per-node management connection lifecycle.

Each node moves through an explicit state machine::

    Disconnected -> Connecting -> Connected
    Connecting -> Failed -> (backoff) -> Connecting
    Connected -> Disconnected   (forced reset, idle close, link loss)
    Connected -> Failed         (failed health probe)

Reconnection is driven by one retry task per failed node. The backoff
counter lives on the ``NodeConnection`` record and resets on every successful
connect.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta
from functools import partial
from typing import Any

from .config import BackoffConfig, JMXConfig
from .errors import NodeConnectionError, ProtocolError, UnknownNodeError
from .jmx import HANDSHAKE_ATTRIBUTE, RUNTIME_MBEAN, JMXHandle, JMXTransport
from .models import ConnectionState, HealthProbeResult, HostName, NodeConnection, NodeInfo
from .telemetry import ServiceTelemetry


class ConnectionManager:
    """Owns one ``NodeConnection`` record and at most one live handle per host.

    All state changes happen on the event loop thread between suspension
    points, so readers never observe a half-applied transition. Blocking
    transport calls run in a thread pool owned by the host they target.
    Handles never leave this class; other components read through :meth:`read`.
    """

    def __init__(
        self,
        transport: JMXTransport,
        jmx_config: JMXConfig | None = None,
        backoff: BackoffConfig | None = None,
        telemetry: ServiceTelemetry | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.transport = transport
        self.jmx_config = jmx_config or JMXConfig()
        self.backoff = backoff or BackoffConfig()
        self.telemetry = telemetry or ServiceTelemetry()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._sleep = sleep
        self._clock = clock

        # One pool per host so a stalled link only ties up its own threads
        self._executors: dict[HostName, ThreadPoolExecutor] = {}
        self._nodes: dict[HostName, NodeConnection] = {}
        self._handles: dict[HostName, JMXHandle] = {}
        self._connect_tasks: dict[HostName, asyncio.Task[bool]] = {}
        self._retry_tasks: dict[HostName, asyncio.Task[None]] = {}
        self._reset_listeners: list[Callable[[], None]] = []

        # Bumped on every forced reset; work started under an older epoch
        # must not write back into the state map.
        self._epoch = 0

        self._stats = {
            "connect_attempts": 0,
            "connect_failures": 0,
            "forced_resets": 0,
            "idle_closed": 0,
        }

    # Registry synchronisation

    def sync_nodes(self, nodes: Iterable[NodeInfo]) -> tuple[list[HostName], list[HostName]]:
        """Create records for new hosts and tear down vanished ones.

        Returns:
            ``(added, removed)`` host lists
        """
        incoming = {node.host: node for node in nodes}
        added = [host for host in incoming if host not in self._nodes]
        removed = [host for host in self._nodes if host not in incoming]

        for host in removed:
            self._teardown(host)
            del self._nodes[host]
            self.logger.info(f"Node {host} left the registry")

        for host in added:
            port = incoming[host].management_port or self.jmx_config.port
            self._nodes[host] = NodeConnection(host=host, port=port)
            self._executor_for(host)
            self.logger.info(f"Tracking node {host}:{port}")

        if added or removed:
            self._publish_states()
        return added, removed

    def hosts(self) -> list[HostName]:
        return list(self._nodes)

    def states(self) -> dict[HostName, ConnectionState]:
        return {host: node.state for host, node in self._nodes.items()}

    def state_of(self, host: HostName) -> ConnectionState:
        return self._require(host).state

    def get_node(self, host: HostName) -> NodeConnection:
        """Return a detached copy of the host's record."""
        return self._require(host).snapshot()

    def add_reset_listener(self, listener: Callable[[], None]) -> None:
        """Register a callback run at the end of :meth:`force_disconnect_all`."""
        self._reset_listeners.append(listener)

    # Connection lifecycle

    def compute_backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return min(self.backoff.max_delay, self.backoff.base_delay * (2 ** attempt))

    async def ensure_connected(self, host: HostName) -> NodeConnection:
        """Make sure ``host`` has a live connection.

        Returns immediately when already connected. A node in backoff fails
        fast; its retry task reconnects it in the background. Concurrent
        callers share a single connect attempt.

        Raises:
            NodeConnectionError: the node could not be connected
            UnknownNodeError: the host has no record
        """
        node = self._require(host)
        match node.state:
            case ConnectionState.CONNECTED:
                return node.snapshot()
            case ConnectionState.FAILED:
                raise NodeConnectionError(host, node.last_error or "connection failed, retry pending")

        task = self._start_connect(host)
        try:
            connected = await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and not (current and current.cancelling()):
                raise NodeConnectionError(host, "connect cancelled by reset") from None
            raise

        current_node = self._nodes.get(host)
        if not connected or current_node is None:
            reason = current_node.last_error if current_node else "node removed"
            raise NodeConnectionError(host, reason or "connect aborted")
        return current_node.snapshot()

    def _start_connect(self, host: HostName) -> asyncio.Task[bool]:
        task = self._connect_tasks.get(host)
        if task is not None and not task.done():
            return task

        node = self._nodes[host]
        self._transition(node, ConnectionState.CONNECTING)
        task = asyncio.create_task(self._connect(host, self._epoch), name=f"connect_{host}")
        self._connect_tasks[host] = task
        task.add_done_callback(partial(self._forget_task, self._connect_tasks, host))
        return task

    async def _connect(self, host: HostName, epoch: int) -> bool:
        node = self._nodes[host]
        timeout = self.jmx_config.connect_timeout
        self._stats["connect_attempts"] += 1

        future = self._executor_for(host).submit(self.transport.open, host, node.port, timeout)
        try:
            handle = await asyncio.wait_for(asyncio.wrap_future(future), timeout=timeout)
        except asyncio.CancelledError:
            future.add_done_callback(self._close_orphan)
            raise
        except TimeoutError:
            future.add_done_callback(self._close_orphan)
            if not self._is_stale(host, node, epoch):
                self._record_failure(node, f"connect timed out after {timeout:.1f}s")
            return False
        except Exception as e:
            if not self._is_stale(host, node, epoch):
                reason = e.reason if isinstance(e, NodeConnectionError) else str(e)
                self._record_failure(node, reason)
            return False

        if self._is_stale(host, node, epoch):
            self._close_quietly(host, handle)
            return False

        now = self._clock()
        self._handles[host] = handle
        node.backoff_attempt = 0
        node.next_retry_delay = None
        node.last_error = None
        node.connected_at = now
        node.last_used_at = now
        self._transition(node, ConnectionState.CONNECTED)
        self.telemetry.connect_attempts.labels(outcome="success").inc()
        return True

    def _record_failure(self, node: NodeConnection, reason: str) -> None:
        self._stats["connect_failures"] += 1
        self.telemetry.connect_attempts.labels(outcome="failure").inc()
        node.last_error = reason
        node.connected_at = None
        self._transition(node, ConnectionState.FAILED, reason)
        self._schedule_retry(node.host)

    def _schedule_retry(self, host: HostName) -> None:
        task = self._retry_tasks.get(host)
        if task is not None and not task.done():
            return
        task = asyncio.create_task(self._retry_loop(host, self._epoch), name=f"retry_{host}")
        self._retry_tasks[host] = task
        task.add_done_callback(partial(self._forget_task, self._retry_tasks, host))

    async def _retry_loop(self, host: HostName, epoch: int) -> None:
        while True:
            node = self._nodes.get(host)
            if node is None or epoch != self._epoch or node.state is not ConnectionState.FAILED:
                return

            delay = self.compute_backoff_delay(node.backoff_attempt)
            node.backoff_attempt += 1
            node.next_retry_delay = delay
            self.logger.info(f"Retrying {host} in {delay:.1f}s (attempt {node.backoff_attempt})")
            await self._sleep(delay)

            if self._is_stale(host, node, epoch) or node.state is not ConnectionState.FAILED:
                return
            if await self._start_connect(host):
                return

    # Reads and probes

    async def read(
        self,
        host: HostName,
        object_name: str,
        attributes: Sequence[str],
        timeout: float,
    ) -> dict[str, Any]:
        """Read MBean attributes over the host's live connection.

        Raises:
            NodeConnectionError: not connected, or the transport failed
            TimeoutError: the read exceeded ``timeout``
        """
        node = self._require(host)
        handle = self._handles.get(host)
        if node.state is not ConnectionState.CONNECTED or handle is None:
            raise NodeConnectionError(host, f"not connected ({node.state.value})")

        node.last_used_at = self._clock()
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(
                    self._executor_for(host), handle.read, object_name, list(attributes), timeout
                ),
                timeout=timeout,
            )
        except (TimeoutError, NodeConnectionError):
            raise
        except Exception as e:
            raise NodeConnectionError(host, f"read {object_name} failed: {e}") from e

    def report_link_lost(self, host: HostName, reason: str) -> None:
        """Drop a connection whose link was found dead during sampling."""
        node = self._require(host)
        if node.state is not ConnectionState.CONNECTED:
            return
        self._close_handle(host)
        node.last_error = reason
        node.connected_at = None
        self._transition(node, ConnectionState.DISCONNECTED, reason)

    async def health_probe(self, host: HostName) -> HealthProbeResult:
        """Cheap liveness read against a connected node.

        A failing probe marks the node Failed so the backoff path picks it up.
        """
        node = self._require(host)
        if node.state is not ConnectionState.CONNECTED:
            return HealthProbeResult(host, False, node.last_error or f"node is {node.state.value}")

        try:
            values = await self.read(
                host, RUNTIME_MBEAN, [HANDSHAKE_ATTRIBUTE], timeout=self.jmx_config.probe_timeout
            )
            if values.get(HANDSHAKE_ATTRIBUTE) is None:
                raise ProtocolError(f"{RUNTIME_MBEAN} returned no {HANDSHAKE_ATTRIBUTE}")
        except (NodeConnectionError, ProtocolError, TimeoutError) as e:
            reason = str(e) or f"probe timed out after {self.jmx_config.probe_timeout:.1f}s"
            if self._nodes.get(host) is node and node.state is ConnectionState.CONNECTED:
                self._close_handle(host)
                self._record_failure(node, reason)
            return HealthProbeResult(host, False, reason)

        return HealthProbeResult(host, True)

    # Teardown

    def close_idle(self, idle_threshold: float) -> list[HostName]:
        """Disconnect connected nodes unused for ``idle_threshold`` seconds."""
        cutoff = self._clock() - timedelta(seconds=idle_threshold)
        closed = []
        for host, node in self._nodes.items():
            if node.state is not ConnectionState.CONNECTED:
                continue
            if node.last_used_at is not None and node.last_used_at > cutoff:
                continue
            self._close_handle(host)
            node.connected_at = None
            self._transition(node, ConnectionState.DISCONNECTED, "idle")
            closed.append(host)

        self._stats["idle_closed"] += len(closed)
        return closed

    def force_disconnect_all(self) -> int:
        """Cancel all in-flight work and return every node to Disconnected.

        Idempotent and never fails. Reset listeners (the metrics cache) are
        notified afterwards.

        Returns:
            Number of node records reset
        """
        self._epoch += 1
        for registry in (self._connect_tasks, self._retry_tasks):
            for task in registry.values():
                task.cancel()
            registry.clear()

        for host in list(self._handles):
            self._close_handle(host)

        for node in self._nodes.values():
            node.backoff_attempt = 0
            node.next_retry_delay = None
            node.last_error = None
            node.connected_at = None
            node.state = ConnectionState.DISCONNECTED

        for listener in self._reset_listeners:
            listener()

        self._stats["forced_resets"] += 1
        self._publish_states()
        self.logger.warning(f"Forced disconnect of {len(self._nodes)} nodes")
        return len(self._nodes)

    async def close(self) -> None:
        """Reset everything and release the per-node thread pools."""
        self.force_disconnect_all()
        for host in list(self._executors):
            self._shutdown_executor(host)

    def get_statistics(self) -> dict[str, Any]:
        states = self.states()
        return {
            **self._stats,
            "nodes": len(states),
            **{f"nodes_{state.value}": sum(1 for s in states.values() if s is state) for state in ConnectionState},
        }

    # Helpers

    def _require(self, host: HostName) -> NodeConnection:
        try:
            return self._nodes[host]
        except KeyError:
            raise UnknownNodeError(host) from None

    def _is_stale(self, host: HostName, node: NodeConnection, epoch: int) -> bool:
        return epoch != self._epoch or self._nodes.get(host) is not node

    def _transition(self, node: NodeConnection, state: ConnectionState, reason: str | None = None) -> None:
        previous = node.state
        node.state = state
        if state is ConnectionState.FAILED:
            self.logger.warning(f"Node {node.host}: {previous} -> {state} ({reason})")
        else:
            suffix = f" ({reason})" if reason else ""
            self.logger.info(f"Node {node.host}: {previous} -> {state}{suffix}")
        self._publish_states()

    def _publish_states(self) -> None:
        self.telemetry.set_node_states(self.states())

    def _teardown(self, host: HostName) -> None:
        for registry in (self._connect_tasks, self._retry_tasks):
            task = registry.pop(host, None)
            if task is not None:
                task.cancel()
        self._close_handle(host)
        self._shutdown_executor(host)

    def _executor_for(self, host: HostName) -> ThreadPoolExecutor:
        executor = self._executors.get(host)
        if executor is None:
            executor = ThreadPoolExecutor(
                max_workers=self.jmx_config.workers_per_node, thread_name_prefix=f"jmx-{host}"
            )
            self._executors[host] = executor
        return executor

    def _shutdown_executor(self, host: HostName) -> None:
        executor = self._executors.pop(host, None)
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)

    def _close_handle(self, host: HostName) -> None:
        handle = self._handles.pop(host, None)
        if handle is not None:
            self._close_quietly(host, handle)

    def _close_quietly(self, host: HostName, handle: JMXHandle) -> None:
        try:
            handle.close()
        except Exception as e:
            self.logger.warning(f"Error closing connection to {host}: {e}")

    def _close_orphan(self, future: Future) -> None:
        """Close a handle whose connect finished after its caller gave up."""
        if future.cancelled() or future.exception() is not None:
            return
        handle = future.result()
        try:
            handle.close()
        except Exception as e:
            self.logger.debug(f"Error closing orphaned connection: {e}")

    @staticmethod
    def _forget_task(registry: dict[HostName, asyncio.Task], host: HostName, task: asyncio.Task) -> None:
        if registry.get(host) is task:
            del registry[host]
