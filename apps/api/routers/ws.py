"""WebSocket push sink for broadcast messages.

Clients may send ``subscribe``/``unsubscribe`` with a list of channels,
``ping`` (answered with ``pong``) and ``request_metrics`` (answered with an
immediate basic-metrics message).
"""
import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from apps.api.schemas.metrics import ClientMessage
from cassconsole.broadcast import SubscriptionHub

logger = logging.getLogger(__name__)

router = APIRouter(tags=["push"])


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    service = websocket.app.state.service
    hub = service.sink
    if not isinstance(hub, SubscriptionHub):
        await websocket.close(code=1011)
        return

    await websocket.accept()
    client_id = str(uuid.uuid4())
    await hub.register(client_id, websocket.send_json)
    await websocket.send_json({
        "type": "connection",
        "message": "Connected to Cassandra console",
        "client_id": client_id,
        "timestamp": datetime.now().isoformat(),
    })

    try:
        while True:
            raw = await websocket.receive_json()
            try:
                message = ClientMessage.model_validate(raw)
            except ValidationError as e:
                await websocket.send_json({"type": "error", "message": f"Invalid message: {e.errors()[0]['msg']}"})
                continue

            match message.type:
                case "subscribe":
                    channels = hub.subscribe(client_id, message.channels)
                    await websocket.send_json({"type": "subscribed", "channels": sorted(channels)})
                case "unsubscribe":
                    channels = hub.unsubscribe(client_id, message.channels)
                    await websocket.send_json({"type": "unsubscribed", "channels": sorted(channels)})
                case "ping":
                    await websocket.send_json({"type": "pong", "timestamp": datetime.now().isoformat()})
                case "request_metrics":
                    reply = await service.broadcaster.build_message()
                    await websocket.send_json(reply.to_dict())
    except WebSocketDisconnect:
        pass
    finally:
        await hub.unregister(client_id)
