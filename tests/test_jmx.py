"""Tests for the jmxquery-backed transport."""

from types import SimpleNamespace
from unittest.mock import patch

import pytest

from cassconsole.config import JMXConfig
from cassconsole.errors import NodeConnectionError
from cassconsole.jmx import JmxQueryTransport, resolve_endpoint


def metric(attribute, value, key=None):
    return SimpleNamespace(attribute=attribute, value=value, attributeKey=key)


class TestEndpoint:
    """Test endpoint resolution."""

    def test_direct(self) -> None:
        assert resolve_endpoint("10.0.0.5", 7199, JMXConfig()) == ("10.0.0.5", 7199)

    def test_ssh_tunnel(self) -> None:
        config = JMXConfig(ssh_tunnel=True, ssh_tunnel_host="localhost")
        assert resolve_endpoint("10.0.0.5", 17199, config) == ("localhost", 17199)


class TestJmxQueryTransport:
    """Test connection handshake and attribute folding."""

    @patch("cassconsole.jmx.jmxquery.JMXConnection")
    def test_open_handshakes_and_reads_composites(self, mock_connection_cls) -> None:
        connection = mock_connection_cls.return_value
        connection.query.side_effect = [
            [metric("Uptime", 1234)],
            [metric("HeapMemoryUsage", 10, "used"), metric("HeapMemoryUsage", 20, "max")],
        ]
        transport = JmxQueryTransport(JMXConfig(username="monitor", password="pw"))

        handle = transport.open("10.0.0.5", 7199, timeout=5.0)
        values = handle.read("java.lang:type=Memory", ["HeapMemoryUsage"])

        assert values == {"HeapMemoryUsage": {"used": 10, "max": 20}}
        url = mock_connection_cls.call_args.args[0]
        assert url == "service:jmx:rmi:///jndi/rmi://10.0.0.5:7199/jmxrmi"
        assert mock_connection_cls.call_args.kwargs["jmx_username"] == "monitor"

    @patch("cassconsole.jmx.jmxquery.JMXConnection")
    def test_reads_are_bounded_and_report_node_host(self, mock_connection_cls) -> None:
        connection = mock_connection_cls.return_value
        connection.query.side_effect = [[metric("Uptime", 1)], RuntimeError("java process timed out")]

        handle = JmxQueryTransport().open("10.0.0.5", 7199, timeout=5.0)
        assert connection.query.call_args.kwargs["timeout"] == 5.0

        with pytest.raises(NodeConnectionError, match="timed out") as exc_info:
            handle.read("java.lang:type=Memory", ["HeapMemoryUsage"], timeout=0.5)

        assert exc_info.value.host == "10.0.0.5"
        assert connection.query.call_args.kwargs["timeout"] == 0.5
        assert "timeout" not in mock_connection_cls.call_args.kwargs

    @patch("cassconsole.jmx.jmxquery.JMXConnection")
    def test_handshake_failure(self, mock_connection_cls) -> None:
        mock_connection_cls.return_value.query.side_effect = OSError("Connection refused")

        with pytest.raises(NodeConnectionError, match="handshake failed") as exc_info:
            JmxQueryTransport().open("10.0.0.5", 7199, timeout=5.0)

        assert exc_info.value.host == "10.0.0.5"

    @patch("cassconsole.jmx.jmxquery.JMXConnection")
    def test_handshake_without_uptime(self, mock_connection_cls) -> None:
        mock_connection_cls.return_value.query.return_value = []

        with pytest.raises(NodeConnectionError, match="no Uptime"):
            JmxQueryTransport().open("10.0.0.5", 7199, timeout=5.0)

    @patch("cassconsole.jmx.jmxquery.JMXConnection")
    def test_closed_handle_refuses_reads(self, mock_connection_cls) -> None:
        mock_connection_cls.return_value.query.return_value = [metric("Uptime", 1)]
        handle = JmxQueryTransport().open("10.0.0.5", 7199, timeout=5.0)

        handle.close()

        with pytest.raises(NodeConnectionError):
            handle.read("java.lang:type=Runtime", ["Uptime"])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
