"""
Cassandra Console: node connection and metrics aggregation backend.

Maintains one management (JMX) connection per Cassandra node, samples a fixed
catalogue of metric groups, caches and aggregates them, and pushes basic
cluster metrics to subscribers on a fixed cadence.
"""

__version__ = "0.1.0"

from .config import ConsoleConfig, load_config
from .errors import (
    AggregationInsufficientDataError,
    ConsoleError,
    MetadataUnavailableError,
    NodeConnectionError,
    ProtocolError,
    SampleTimeoutError,
    UnknownNodeError,
)
from .models import ConnectionState, MetricGroup, MetricSample, NodeInfo
from .service import MonitoringService, create_monitoring_service

__all__ = [
    "__version__",
    "ConsoleConfig",
    "load_config",
    "ConsoleError",
    "NodeConnectionError",
    "SampleTimeoutError",
    "ProtocolError",
    "AggregationInsufficientDataError",
    "MetadataUnavailableError",
    "UnknownNodeError",
    "ConnectionState",
    "MetricGroup",
    "MetricSample",
    "NodeInfo",
    "MonitoringService",
    "create_monitoring_service",
]
