"""Management-interface (JMX) transport.

The connection manager only talks to ``JMXTransport``/``JMXHandle``. The
concrete implementation wraps the blocking ``jmxquery`` client, so every call
is expected to run in an executor thread.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Final

import jmxquery

from .config import JMXConfig
from .errors import NodeConnectionError

logger = logging.getLogger(__name__)

RUNTIME_MBEAN: Final[str] = "java.lang:type=Runtime"
HANDSHAKE_ATTRIBUTE: Final[str] = "Uptime"
JMX_URL_TEMPLATE: Final[str] = "service:jmx:rmi:///jndi/rmi://{host}:{port}/jmxrmi"


class JMXHandle(ABC):
    """An open management connection to one node."""

    @abstractmethod
    def read(
        self, object_name: str, attributes: Sequence[str], timeout: float | None = None
    ) -> dict[str, Any]:
        """Read attributes of one MBean, giving up after ``timeout`` seconds.

        Returns a mapping of attribute name to value. Composite attributes
        are returned as nested mappings. Attributes the MBean does not
        expose are left out.
        """

    @abstractmethod
    def close(self) -> None:
        """Release the connection."""


class JMXTransport(ABC):
    """Factory for per-node handles."""

    @abstractmethod
    def open(self, host: str, port: int, timeout: float) -> JMXHandle:
        """Connect and handshake; raise ``NodeConnectionError`` on failure."""


def resolve_endpoint(host: str, port: int, config: JMXConfig) -> tuple[str, int]:
    """Map a node address to the endpoint actually dialled.

    In SSH tunnel mode every node is reached through the tunnel host on the
    node's forwarded port.
    """
    if config.ssh_tunnel:
        return config.ssh_tunnel_host, port
    return host, port


class JmxQueryHandle(JMXHandle):
    """Handle backed by a ``jmxquery.JMXConnection``."""

    def __init__(self, connection: jmxquery.JMXConnection, host: str, url: str, timeout: float) -> None:
        self._connection = connection
        self.host = host
        self.url = url
        self.timeout = timeout
        self._closed = False

    def read(
        self, object_name: str, attributes: Sequence[str], timeout: float | None = None
    ) -> dict[str, Any]:
        if self._closed:
            raise NodeConnectionError(self.host, "handle already closed")

        queries = [jmxquery.JMXQuery(object_name, attribute) for attribute in attributes]
        try:
            # The JVM subprocess is killed once the timeout passes, freeing the thread
            results = self._connection.query(queries, timeout=timeout or self.timeout)
        except Exception as exc:
            raise NodeConnectionError(self.host, f"query {object_name} failed: {exc}") from exc

        values: dict[str, Any] = {}
        for metric in results:
            key = getattr(metric, "attributeKey", None)
            if key:
                values.setdefault(metric.attribute, {})[key] = metric.value
            else:
                values[metric.attribute] = metric.value
        return values

    def close(self) -> None:
        # jmxquery spawns a short-lived JVM per query; nothing stays open
        self._closed = True


class JmxQueryTransport(JMXTransport):
    """Transport that dials nodes through ``jmxquery``."""

    def __init__(self, config: JMXConfig | None = None) -> None:
        self.config = config or JMXConfig()

    def _create_connection(self, url: str) -> jmxquery.JMXConnection:
        kwargs: dict[str, Any] = {"java_path": self.config.java_path}
        if self.config.username:
            kwargs["jmx_username"] = self.config.username
            kwargs["jmx_password"] = self.config.password
        return jmxquery.JMXConnection(url, **kwargs)

    def open(self, host: str, port: int, timeout: float) -> JMXHandle:
        target_host, target_port = resolve_endpoint(host, port, self.config)
        url = JMX_URL_TEMPLATE.format(host=target_host, port=target_port)
        logger.debug(f"Opening JMX connection {url}")

        try:
            connection = self._create_connection(url)
            handle = JmxQueryHandle(connection, host, url, timeout)
            uptime = handle.read(RUNTIME_MBEAN, [HANDSHAKE_ATTRIBUTE]).get(HANDSHAKE_ATTRIBUTE)
        except NodeConnectionError as exc:
            raise NodeConnectionError(host, f"handshake failed: {exc.reason}") from exc
        except Exception as exc:
            raise NodeConnectionError(host, f"cannot open {url}: {exc}") from exc

        if uptime is None:
            raise NodeConnectionError(host, f"handshake returned no {HANDSHAKE_ATTRIBUTE} from {url}")
        return handle
