"""Node registries: where the node list and basic (CQL) metrics come from."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import Cluster, Session

from .config import CassandraConfig, StaticNode
from .errors import MetadataUnavailableError
from .models import NodeInfo

logger = logging.getLogger(__name__)

LOCAL_QUERY = (
    "SELECT cluster_name, release_version, partitioner, data_center, rack, "
    "broadcast_address, listen_address, host_id FROM system.local"
)
PEERS_QUERY = "SELECT peer, rpc_address, data_center, rack, release_version, host_id FROM system.peers"
KEYSPACES_QUERY = "SELECT keyspace_name, durable_writes, replication FROM system_schema.keyspaces"


class NodeRegistry(ABC):
    """Source of the current node list and metadata-only metrics."""

    @abstractmethod
    async def nodes(self) -> list[NodeInfo]:
        """Current cluster membership."""

    @abstractmethod
    async def basic_metrics(self) -> dict[str, Any]:
        """Cluster overview built from metadata only.

        Raises:
            MetadataUnavailableError: the metadata source cannot be queried
        """

    async def close(self) -> None:
        """Release any connection held by the registry."""


class StaticNodeRegistry(NodeRegistry):
    """Registry backed by a fixed list, used when CQL discovery is not wanted."""

    def __init__(self, nodes: list[StaticNode] | list[NodeInfo], cluster_name: str = "static") -> None:
        self._nodes = [
            node if isinstance(node, NodeInfo) else NodeInfo(
                host=node.host,
                management_port=node.management_port,
                datacenter=node.datacenter,
                rack=node.rack,
            )
            for node in nodes
        ]
        self.cluster_name = cluster_name

    async def nodes(self) -> list[NodeInfo]:
        return list(self._nodes)

    async def basic_metrics(self) -> dict[str, Any]:
        datacenters = sorted({n.datacenter for n in self._nodes if n.datacenter})
        return {
            "cluster": {
                "name": self.cluster_name,
                "total_nodes": len(self._nodes),
                "datacenters": datacenters,
            },
            "nodes": [node.to_dict() for node in self._nodes],
            "keyspaces": [],
            "last_update": datetime.now().isoformat(),
        }


class CassandraNodeRegistry(NodeRegistry):
    """Discovers nodes from ``system.local``/``system.peers`` over CQL.

    The driver is blocking; every call runs in the default executor.
    """

    def __init__(self, config: CassandraConfig | None = None, jmx_port: int | None = None) -> None:
        self.config = config or CassandraConfig()
        self.jmx_port = jmx_port
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._cluster: Cluster | None = None
        self._session: Session | None = None
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._session is not None

    async def connect(self) -> None:
        async with self._lock:
            if self._session is not None:
                return

            auth = None
            if self.config.username and self.config.password:
                auth = PlainTextAuthProvider(self.config.username, self.config.password)

            cluster = Cluster(
                self.config.contact_points,
                port=self.config.port,
                auth_provider=auth,
                connect_timeout=self.config.connect_timeout,
            )
            loop = asyncio.get_running_loop()
            try:
                self._session = await loop.run_in_executor(None, cluster.connect)
            except Exception as e:
                cluster.shutdown()
                raise MetadataUnavailableError(f"Cannot connect to {self.config.contact_points}: {e}") from e
            self._cluster = cluster
            self.logger.info(f"Connected to Cassandra at {', '.join(self.config.contact_points)}")

    async def close(self) -> None:
        async with self._lock:
            if self._cluster is not None:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, self._cluster.shutdown)
            self._cluster = None
            self._session = None

    async def _query(self, statement: str) -> list[Any]:
        if self._session is None:
            await self.connect()
        session = self._session
        if session is None:
            raise MetadataUnavailableError("Cassandra session not available")

        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(None, session.execute, statement)
        except Exception as e:
            raise MetadataUnavailableError(f"Query failed: {e}") from e
        return list(result)

    async def nodes(self) -> list[NodeInfo]:
        local_rows = await self._query(LOCAL_QUERY)
        peer_rows = await self._query(PEERS_QUERY)

        nodes = []
        for row in local_rows:
            address = row.broadcast_address or row.listen_address
            if address:
                nodes.append(self._node(str(address), row))
        for row in peer_rows:
            address = row.rpc_address or row.peer
            if address:
                nodes.append(self._node(str(address), row))
        return nodes

    def _node(self, address: str, row: Any) -> NodeInfo:
        return NodeInfo(
            host=address,
            management_port=self.jmx_port,
            datacenter=getattr(row, "data_center", None),
            rack=getattr(row, "rack", None),
        )

    async def _reachable(self, host: str) -> bool:
        """TCP probe of a peer's CQL port."""
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, self.config.port),
                timeout=self.config.peer_probe_timeout,
            )
        except (OSError, TimeoutError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            # The port answered; a reset while closing does not change that
            self.logger.debug(f"Closing probe socket to {host}: {e}")
        return True

    async def basic_metrics(self) -> dict[str, Any]:
        local_rows = await self._query(LOCAL_QUERY)
        if not local_rows:
            raise MetadataUnavailableError("system.local returned no rows")
        local = local_rows[0]
        peer_rows = await self._query(PEERS_QUERY)
        keyspace_rows = await self._query(KEYSPACES_QUERY)

        local_address = str(local.broadcast_address or local.listen_address)
        peers = [(str(row.rpc_address or row.peer), row) for row in peer_rows]
        reachability = await asyncio.gather(*(self._reachable(address) for address, _ in peers))

        nodes = [{
            "address": local_address,
            "datacenter": local.data_center,
            "rack": local.rack,
            "version": local.release_version,
            "host_id": str(local.host_id) if local.host_id else None,
            "status": "up",
            "is_local": True,
        }]
        for (address, row), up in zip(peers, reachability):
            nodes.append({
                "address": address,
                "datacenter": row.data_center,
                "rack": row.rack,
                "version": row.release_version,
                "host_id": str(row.host_id) if row.host_id else None,
                "status": "up" if up else "down",
                "is_local": False,
            })

        datacenters = sorted({n["datacenter"] for n in nodes if n["datacenter"]})
        keyspaces = [
            {
                "name": row.keyspace_name,
                "durable_writes": row.durable_writes,
                "replication": dict(row.replication or {}),
                "system": row.keyspace_name.startswith("system"),
            }
            for row in keyspace_rows
        ]

        return {
            "cluster": {
                "name": local.cluster_name,
                "cassandra_version": local.release_version,
                "partitioner": local.partitioner,
                "total_nodes": len(nodes),
                "nodes_up": sum(1 for n in nodes if n["status"] == "up"),
                "datacenters": datacenters,
            },
            "nodes": nodes,
            "keyspaces": keyspaces,
            "last_update": datetime.now().isoformat(),
        }
