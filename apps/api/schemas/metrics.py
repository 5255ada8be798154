from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class HealthProbeResponse(BaseModel):
    host: str
    reachable: bool
    last_error: Optional[str] = None


class ResetResponse(BaseModel):
    success: bool
    nodes_reset: int = Field(..., description="Node records returned to disconnected")
    timestamp: str


class NodeStateResponse(BaseModel):
    host: str
    port: int
    state: str
    last_error: Optional[str] = None
    backoff_attempt: int = 0
    connected_at: Optional[str] = None
    last_used_at: Optional[str] = None
    next_retry_delay: Optional[float] = None


class NodeListResponse(BaseModel):
    nodes: List[NodeStateResponse]
    total: int


# Push channel client messages

class ClientMessage(BaseModel):
    type: Literal["subscribe", "unsubscribe", "ping", "request_metrics"]
    channels: List[str] = Field(default_factory=list)
