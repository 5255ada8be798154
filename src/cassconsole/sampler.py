"""Metric sampling over a live management connection."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

from .catalogue import DEFAULT_CATALOGUE, GroupSpec
from .config import SamplingConfig
from .connection_manager import ConnectionManager
from .errors import NodeConnectionError, ProtocolError, SampleTimeoutError
from .models import ConnectionState, GroupMetrics, HostName, MetricGroup, MetricSample
from .telemetry import ServiceTelemetry


class MetricSampler:
    """Reads every catalogue group from one node concurrently.

    Each group is bounded by ``group_timeout`` and the whole pass by
    ``sample_timeout``. Failed groups are left out of the sample and noted in
    ``MetricSample.failures``; a partial sample is a normal result.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        config: SamplingConfig | None = None,
        catalogue: dict[MetricGroup, GroupSpec] | None = None,
        telemetry: ServiceTelemetry | None = None,
    ) -> None:
        self.manager = manager
        self.config = config or SamplingConfig()
        self.catalogue = catalogue if catalogue is not None else DEFAULT_CATALOGUE
        self.telemetry = telemetry or manager.telemetry
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def sample(self, host: HostName) -> MetricSample:
        """Sample all groups from a connected node.

        Raises:
            NodeConnectionError: the node is not connected
        """
        state = self.manager.state_of(host)
        if state is not ConnectionState.CONNECTED:
            raise NodeConnectionError(host, f"cannot sample while {state.value}")

        captured_at = datetime.now()
        tasks = {
            group: asyncio.create_task(self._read_group(host, spec), name=f"sample_{host}_{group}")
            for group, spec in self.catalogue.items()
        }
        try:
            _, pending = await asyncio.wait(tasks.values(), timeout=self.config.sample_timeout)
        finally:
            # Also reached when the caller is cancelled by a forced reset
            for task in tasks.values():
                if not task.done():
                    task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        groups: dict[MetricGroup, GroupMetrics] = {}
        failures: dict[MetricGroup, str] = {}
        link_errors: list[str] = []

        for group, task in tasks.items():
            if task in pending:
                failures[group] = str(SampleTimeoutError(host, group, self.config.sample_timeout))
                continue

            error = task.exception()
            match error:
                case None:
                    groups[group] = task.result()
                case SampleTimeoutError() | ProtocolError():
                    failures[group] = str(error)
                case NodeConnectionError():
                    failures[group] = str(error)
                    link_errors.append(error.reason)
                case _:
                    failures[group] = f"{type(error).__name__}: {error}"

        sample = MetricSample(host=host, captured_at=captured_at, groups=groups, failures=failures)
        self._record_outcome(host, sample)

        if not groups and link_errors:
            self.manager.report_link_lost(host, link_errors[0])
        return sample

    async def _read_group(self, host: HostName, spec: GroupSpec) -> GroupMetrics:
        timeout = self.config.group_timeout
        raw: dict[str, dict[str, Any]] = {}
        try:
            async with asyncio.timeout(timeout):
                for read in spec.reads:
                    raw[read.key] = await self.manager.read(
                        host, read.object_name, read.attributes, timeout=timeout
                    )
        except TimeoutError:
            raise SampleTimeoutError(host, spec.group, timeout) from None
        return spec.normalize(raw)

    def _record_outcome(self, host: HostName, sample: MetricSample) -> None:
        if sample.all_failed:
            outcome = "failed"
            self.logger.warning(f"All metric groups failed on {host}: {sample.failures}")
        elif sample.failures:
            outcome = "partial"
            self.logger.info(
                f"Partial sample from {host}: "
                + ", ".join(f"{group}={note}" for group, note in sample.failures.items())
            )
        else:
            outcome = "complete"
            self.logger.debug(f"Sampled {len(sample.groups)} groups from {host}")
        self.telemetry.samples.labels(outcome=outcome).inc()
