"""Fixed-interval push of basic metrics to subscribers.

The scheduler only talks to the node registry's metadata path. It holds no
reference to the connection manager, so a stalled management link can never
delay a tick.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from .config import BroadcastConfig
from .errors import MetadataUnavailableError
from .models import (
    BroadcastMessage,
    ChannelName,
    ConnectionPendingMessage,
    MetricsSnapshotMessage,
    Subscription,
)
from .registry import NodeRegistry
from .telemetry import ServiceTelemetry

Sender = Callable[[dict[str, Any]], Awaitable[None]]


class BroadcastSink(ABC):
    """Anything that accepts structured broadcast messages."""

    @abstractmethod
    async def publish(self, message: BroadcastMessage, channel: ChannelName | None = None) -> int:
        """Deliver ``message``; return how many subscribers received it."""


class SubscriptionHub(BroadcastSink):
    """In-process fan-out to connected clients with per-client channel sets."""

    def __init__(self) -> None:
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._subscriptions: dict[str, Subscription] = {}
        self._senders: dict[str, Sender] = {}
        self._lock = asyncio.Lock()

    @property
    def client_count(self) -> int:
        return len(self._subscriptions)

    async def register(self, client_id: str, sender: Sender) -> Subscription:
        async with self._lock:
            subscription = Subscription(client_id=client_id)
            self._subscriptions[client_id] = subscription
            self._senders[client_id] = sender
        self.logger.info(f"Client {client_id} connected ({self.client_count} total)")
        return subscription

    async def unregister(self, client_id: str) -> None:
        async with self._lock:
            self._subscriptions.pop(client_id, None)
            self._senders.pop(client_id, None)
        self.logger.info(f"Client {client_id} disconnected ({self.client_count} total)")

    def subscribe(self, client_id: str, channels: list[ChannelName]) -> set[ChannelName]:
        subscription = self._subscriptions[client_id]
        subscription.channels.update(channels)
        return set(subscription.channels)

    def unsubscribe(self, client_id: str, channels: list[ChannelName]) -> set[ChannelName]:
        subscription = self._subscriptions[client_id]
        subscription.channels.difference_update(channels)
        return set(subscription.channels)

    async def send(self, client_id: str, payload: dict[str, Any]) -> None:
        """Send a direct reply to one client."""
        sender = self._senders.get(client_id)
        if sender is not None:
            await sender(payload)

    async def publish(self, message: BroadcastMessage, channel: ChannelName | None = None) -> int:
        payload = message.to_dict()
        async with self._lock:
            targets = [
                (client_id, self._senders[client_id])
                for client_id, sub in self._subscriptions.items()
                if sub.accepts(channel)
            ]

        dead = []
        for client_id, sender in targets:
            try:
                await sender(payload)
            except Exception as e:
                self.logger.warning(f"Dropping client {client_id}: {e}")
                dead.append(client_id)

        for client_id in dead:
            await self.unregister(client_id)
        return len(targets) - len(dead)


class BroadcastScheduler:
    """Pulls basic metrics every ``interval_seconds`` and publishes them.

    When the metadata source is unreachable a ``connection_pending`` message
    goes out instead. Errors are logged and the loop keeps its cadence.
    """

    def __init__(
        self,
        registry: NodeRegistry,
        sink: BroadcastSink,
        config: BroadcastConfig | None = None,
        telemetry: ServiceTelemetry | None = None,
    ) -> None:
        self.registry = registry
        self.sink = sink
        self.config = config or BroadcastConfig()
        self.telemetry = telemetry or ServiceTelemetry()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self.tick_count = 0
        self.last_message: BroadcastMessage | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def build_message(self) -> BroadcastMessage:
        """Snapshot of basic metrics, or ``connection_pending`` when unreachable."""
        try:
            data = await asyncio.wait_for(self.registry.basic_metrics(), timeout=self.config.fetch_timeout)
        except MetadataUnavailableError as e:
            return ConnectionPendingMessage(message=f"Waiting for database connection: {e}")
        except TimeoutError:
            return ConnectionPendingMessage(
                message=f"Metadata query timed out after {self.config.fetch_timeout:.1f}s"
            )
        except Exception as e:
            self.logger.error(f"Basic metrics fetch failed: {e}")
            return ConnectionPendingMessage(message=f"Metrics unavailable: {e}")
        return MetricsSnapshotMessage(data=data)

    async def tick(self) -> BroadcastMessage:
        """Build and publish one message."""
        message = await self.build_message()
        # Control messages go to every client regardless of subscriptions
        channel = self.config.channel if isinstance(message, MetricsSnapshotMessage) else None

        try:
            delivered = await self.sink.publish(message, channel)
            self.logger.debug(f"Broadcast {message.type} to {delivered} clients")
        except Exception as e:
            self.logger.error(f"Broadcast publish failed: {e}")

        self.tick_count += 1
        self.last_message = message
        self.telemetry.broadcast_ticks.labels(type=message.type).inc()
        return message

    @asynccontextmanager
    async def _loop_lifecycle(self) -> AsyncGenerator[None, None]:
        try:
            self._running = True
            self.logger.info(f"Broadcast loop started (every {self.config.interval_seconds:.1f}s)")
            yield
        finally:
            self._running = False
            self.logger.info("Broadcast loop stopped")

    async def run(self) -> None:
        async with self._loop_lifecycle():
            interval = self.config.interval_seconds
            next_tick = time.monotonic()
            while self._running:
                await self.tick()
                next_tick += interval
                # Skip missed slots instead of bursting after a slow tick
                now = time.monotonic()
                if next_tick < now:
                    next_tick = now
                await asyncio.sleep(next_tick - now)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self.run(), name="broadcast_loop")

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
