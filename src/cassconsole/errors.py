"""Exception hierarchy for the console engine.

Node-level errors (connection, timeout, protocol) are contained at the node
boundary and reported structurally. ``UnknownNodeError`` is a programming
error and is allowed to propagate.
"""

from __future__ import annotations


class ConsoleError(Exception):
    """Base class for all console engine errors."""


class NodeConnectionError(ConsoleError):
    """Management endpoint unreachable, handshake failed or link lost."""

    def __init__(self, host: str, reason: str) -> None:
        super().__init__(f"{host}: {reason}")
        self.host = host
        self.reason = reason


class SampleTimeoutError(ConsoleError):
    """A metric group read did not finish within its timeout."""

    def __init__(self, host: str, group: str, timeout: float) -> None:
        super().__init__(f"{host}: {group} read timed out after {timeout:.1f}s")
        self.host = host
        self.group = group
        self.timeout = timeout


class ProtocolError(ConsoleError):
    """A node returned an attribute with an unexpected shape."""


class AggregationInsufficientDataError(ConsoleError):
    """No node contributed data to a requested aggregate."""


class MetadataUnavailableError(ConsoleError):
    """The cluster metadata source (CQL session) cannot be queried."""


class UnknownNodeError(ConsoleError, LookupError):
    """An operation referenced a host with no connection record."""

    def __init__(self, host: str) -> None:
        super().__init__(f"No connection record for host {host!r}")
        self.host = host
