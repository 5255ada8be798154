import pytest
from fastapi.testclient import TestClient

from apps.api.main import create_app
from cassconsole.service import MonitoringService


@pytest.fixture
def client(fast_config, registry, healthy_transport):
    service = MonitoringService(fast_config, registry, healthy_transport)
    with TestClient(create_app(service=service)) as client:
        yield client


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "cassconsole-api"}


def test_cluster_metrics(client):
    response = client.get("/api/v1/jmx/cluster-metrics")
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["total_nodes"] == 3
    assert data["successful_nodes"] == 3
    assert data["aggregated"]["read_latency_mean_ms"] == 10.0
    assert data["nodes"][0]["health"]["status"] == "healthy"


def test_node_metrics(client, hosts):
    response = client.get(f"/api/v1/jmx/metrics/{hosts[0]}")
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["metrics"]["groups"]["memory"]["heap_usage_percent"] == 50.0


def test_unknown_node_is_404(client):
    assert client.get("/api/v1/jmx/metrics/192.168.1.1").status_code == 404
    assert client.get("/api/v1/jmx/health/192.168.1.1").status_code == 404


def test_unreachable_node_reported_in_body(client, healthy_transport, hosts):
    healthy_transport.failing.add(hosts[1])

    data = client.get(f"/api/v1/jmx/metrics/{hosts[1]}").json()

    assert data["success"] is False
    assert "connection refused" in data["error"]


def test_force_disconnect_then_aggregated(client, hosts):
    client.get("/api/v1/jmx/cluster-metrics")

    response = client.post("/api/v1/jmx/force-disconnect")
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["nodes_reset"] == 3

    data = client.get("/api/v1/jmx/aggregated").json()
    assert data["insufficient_data"] is True
    assert data["unavailable_nodes"] == hosts


def test_health_probe(client, hosts):
    data = client.get(f"/api/v1/jmx/health/{hosts[0]}").json()
    assert data["reachable"] is False

    client.get(f"/api/v1/jmx/metrics/{hosts[0]}")
    data = client.get(f"/api/v1/jmx/health/{hosts[0]}").json()
    assert data == {"host": hosts[0], "reachable": True, "last_error": None}


def test_list_nodes(client, hosts):
    response = client.get("/api/v1/cluster/nodes")
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 3
    assert [n["host"] for n in data["nodes"]] == hosts
    assert all(n["state"] == "disconnected" for n in data["nodes"])


def test_basic_metrics_unavailable(client, registry):
    assert client.get("/api/v1/cluster/basic-metrics").status_code == 200

    registry.available = False
    response = client.get("/api/v1/cluster/basic-metrics")
    assert response.status_code == 503
    assert client.post("/api/v1/cluster/refresh").status_code == 503


def test_prometheus_metrics(client):
    client.get("/api/v1/jmx/cluster-metrics")

    response = client.get("/metrics/")
    assert response.status_code == 200
    assert "cassconsole_cache_lookups_total" in response.text
    assert 'cassconsole_nodes{state="connected"} 3.0' in response.text


def test_websocket_protocol(client, hosts):
    with client.websocket_connect("/ws") as websocket:
        greeting = websocket.receive_json()
        assert greeting["type"] == "connection"
        assert greeting["client_id"]

        websocket.send_json({"type": "ping"})
        assert websocket.receive_json()["type"] == "pong"

        websocket.send_json({"type": "subscribe", "channels": ["metrics"]})
        assert websocket.receive_json() == {"type": "subscribed", "channels": ["metrics"]}

        websocket.send_json({"type": "request_metrics"})
        reply = websocket.receive_json()
        assert reply["type"] == "metrics_update"
        assert reply["data"]["nodes"] == hosts

        websocket.send_json({"type": "shout"})
        assert websocket.receive_json()["type"] == "error"
