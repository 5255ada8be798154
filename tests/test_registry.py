"""Tests for node registries."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cassconsole.config import CassandraConfig, StaticNode
from cassconsole.errors import MetadataUnavailableError
from cassconsole.registry import (
    KEYSPACES_QUERY,
    LOCAL_QUERY,
    PEERS_QUERY,
    CassandraNodeRegistry,
    StaticNodeRegistry,
)

LOCAL_ROW = SimpleNamespace(
    cluster_name="prod", release_version="4.1.3", partitioner="Murmur3Partitioner",
    data_center="dc1", rack="rack1", broadcast_address="10.0.0.1", listen_address="10.0.0.1",
    host_id="a1",
)
PEER_ROWS = [
    SimpleNamespace(peer="10.0.0.2", rpc_address="10.0.0.2", data_center="dc1", rack="rack2",
                    release_version="4.1.3", host_id="b2"),
    SimpleNamespace(peer="10.0.0.3", rpc_address=None, data_center="dc2", rack="rack1",
                    release_version="4.1.3", host_id=None),
]
KEYSPACE_ROWS = [
    SimpleNamespace(keyspace_name="system", durable_writes=True, replication={"class": "LocalStrategy"}),
    SimpleNamespace(keyspace_name="shop", durable_writes=True, replication={"class": "NetworkTopologyStrategy"}),
]


def fake_session():
    results = {LOCAL_QUERY: [LOCAL_ROW], PEERS_QUERY: PEER_ROWS, KEYSPACES_QUERY: KEYSPACE_ROWS}
    session = MagicMock()
    session.execute.side_effect = lambda statement: results[statement]
    return session


class TestStaticNodeRegistry:
    """Test the configuration-backed registry."""

    @pytest.mark.asyncio
    async def test_nodes_and_basic_metrics(self) -> None:
        registry = StaticNodeRegistry(
            [StaticNode(host="10.0.0.1", datacenter="dc1"), StaticNode(host="10.0.0.2", management_port=7299)],
            cluster_name="lab",
        )

        nodes = await registry.nodes()
        metrics = await registry.basic_metrics()

        assert [n.host for n in nodes] == ["10.0.0.1", "10.0.0.2"]
        assert nodes[1].management_port == 7299
        assert metrics["cluster"] == {"name": "lab", "total_nodes": 2, "datacenters": ["dc1"]}


class TestCassandraNodeRegistry:
    """Test CQL discovery with a mocked driver."""

    @pytest.mark.asyncio
    @patch("cassconsole.registry.Cluster")
    async def test_nodes_from_local_and_peers(self, mock_cluster_cls) -> None:
        mock_cluster_cls.return_value.connect.return_value = fake_session()
        registry = CassandraNodeRegistry(CassandraConfig(contact_points=["10.0.0.1"]), jmx_port=7199)

        nodes = await registry.nodes()

        assert [n.host for n in nodes] == ["10.0.0.1", "10.0.0.2", "10.0.0.3"]
        assert all(n.management_port == 7199 for n in nodes)
        assert nodes[2].datacenter == "dc2"
        assert registry.connected

    @pytest.mark.asyncio
    @patch("cassconsole.registry.Cluster")
    async def test_basic_metrics(self, mock_cluster_cls) -> None:
        mock_cluster_cls.return_value.connect.return_value = fake_session()
        registry = CassandraNodeRegistry()

        with patch.object(registry, "_reachable", AsyncMock(side_effect=[True, False])):
            metrics = await registry.basic_metrics()

        assert metrics["cluster"]["name"] == "prod"
        assert metrics["cluster"]["total_nodes"] == 3
        assert metrics["cluster"]["nodes_up"] == 2
        assert metrics["cluster"]["datacenters"] == ["dc1", "dc2"]
        assert metrics["nodes"][0]["is_local"] is True
        assert metrics["nodes"][2]["status"] == "down"
        assert [k["system"] for k in metrics["keyspaces"]] == [True, False]

    @pytest.mark.asyncio
    @patch("cassconsole.registry.Cluster")
    async def test_connect_failure_is_metadata_unavailable(self, mock_cluster_cls) -> None:
        mock_cluster_cls.return_value.connect.side_effect = RuntimeError("NoHostAvailable")
        registry = CassandraNodeRegistry()

        with pytest.raises(MetadataUnavailableError, match="NoHostAvailable"):
            await registry.nodes()

        mock_cluster_cls.return_value.shutdown.assert_called_once()
        assert not registry.connected

    @pytest.mark.asyncio
    @patch("cassconsole.registry.PlainTextAuthProvider")
    @patch("cassconsole.registry.Cluster")
    async def test_credentials_and_close(self, mock_cluster_cls, mock_auth_cls) -> None:
        mock_cluster_cls.return_value.connect.return_value = fake_session()
        registry = CassandraNodeRegistry(CassandraConfig(username="admin", password="secret"))

        await registry.connect()
        await registry.close()

        mock_auth_cls.assert_called_once_with("admin", "secret")
        mock_cluster_cls.return_value.shutdown.assert_called_once()
        assert not registry.connected

    @pytest.mark.asyncio
    async def test_reachable_peer_socket_is_closed(self) -> None:
        writer = MagicMock()
        writer.wait_closed = AsyncMock()
        registry = CassandraNodeRegistry()

        with patch("cassconsole.registry.asyncio.open_connection", AsyncMock(return_value=(MagicMock(), writer))):
            assert await registry._reachable("10.0.0.2") is True

        writer.close.assert_called_once()
        writer.wait_closed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_refused_peer_is_unreachable(self) -> None:
        registry = CassandraNodeRegistry()

        with patch("cassconsole.registry.asyncio.open_connection", AsyncMock(side_effect=ConnectionRefusedError())):
            assert await registry._reachable("10.0.0.2") is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
