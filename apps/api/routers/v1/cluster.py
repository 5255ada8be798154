from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from apps.api.deps import get_service
from apps.api.schemas.metrics import NodeListResponse
from cassconsole.errors import MetadataUnavailableError
from cassconsole.service import MonitoringService

router = APIRouter(prefix="/cluster", tags=["cluster"])


@router.get("/nodes", response_model=NodeListResponse)
async def get_nodes(service: MonitoringService = Depends(get_service)):
    """Known nodes with their management connection state."""
    nodes = service.node_states()
    return {"nodes": nodes, "total": len(nodes)}


@router.post("/refresh", response_model=NodeListResponse)
async def refresh_nodes(service: MonitoringService = Depends(get_service)):
    """Re-read cluster membership from the registry."""
    try:
        await service.refresh_nodes()
    except MetadataUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    nodes = service.node_states()
    return {"nodes": nodes, "total": len(nodes)}


@router.get("/basic-metrics")
async def get_basic_metrics(service: MonitoringService = Depends(get_service)) -> Dict[str, Any]:
    """Metadata-only cluster overview (the same data the push loop sends)."""
    try:
        return await service.registry.basic_metrics()
    except MetadataUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/stats")
async def get_statistics(service: MonitoringService = Depends(get_service)) -> Dict[str, Any]:
    """Engine counters."""
    return service.statistics()
