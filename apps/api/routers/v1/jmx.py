from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from apps.api.deps import get_service
from apps.api.schemas.metrics import HealthProbeResponse, ResetResponse
from cassconsole.errors import UnknownNodeError
from cassconsole.service import MonitoringService

router = APIRouter(prefix="/jmx", tags=["jmx"])


@router.get("/cluster-metrics")
async def get_cluster_metrics(service: MonitoringService = Depends(get_service)) -> Dict[str, Any]:
    """Sample every node (subject to the cache TTL) and aggregate."""
    report = await service.cluster_metrics()
    return report.to_dict()


@router.get("/aggregated")
async def get_aggregated(service: MonitoringService = Depends(get_service)) -> Dict[str, Any]:
    """Aggregate already cached samples without touching any node."""
    return service.aggregated_snapshot().to_dict()


@router.get("/metrics/{host}")
async def get_node_metrics(host: str, service: MonitoringService = Depends(get_service)) -> Dict[str, Any]:
    """Metrics for a single node."""
    try:
        result = await service.node_metrics(host)
    except UnknownNodeError:
        raise HTTPException(status_code=404, detail=f"Unknown node {host}")
    return result.to_dict()


@router.post("/force-disconnect", response_model=ResetResponse)
async def force_disconnect(service: MonitoringService = Depends(get_service)):
    """Drop every management connection and cached sample."""
    return service.force_reset().to_dict()


@router.get("/health/{host}", response_model=HealthProbeResponse)
async def probe_node(host: str, service: MonitoringService = Depends(get_service)):
    """Lightweight liveness read against a connected node."""
    try:
        result = await service.health_probe(host)
    except UnknownNodeError:
        raise HTTPException(status_code=404, detail=f"Unknown node {host}")
    return result.to_dict()
