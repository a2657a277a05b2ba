"""WebSocket push channel for dashboards."""

import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

from signal_trader.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


class ConnectionManager:
    def __init__(self):
        self._clients: set[WebSocket] = set()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self._clients.add(websocket)
        logger.info(f"WebSocket client connected ({len(self._clients)} total)")

    def disconnect(self, websocket: WebSocket):
        self._clients.discard(websocket)
        logger.info(f"WebSocket client disconnected ({len(self._clients)} total)")

    async def broadcast(self, event: str, data: Any):
        if not self._clients:
            return
        message = jsonable_encoder({"type": event, "data": data})
        for websocket in list(self._clients):
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.debug(f"Dropping WebSocket client: {e}")
                self._clients.discard(websocket)

    async def forward_event(self, topic: str, payload: dict[str, Any]):
        """EventBus subscriber relaying every pipeline event."""
        await self.broadcast(topic, payload)


manager = ConnectionManager()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    if settings.api_key and websocket.query_params.get("api_key") != settings.api_key:
        await websocket.close(code=1008)
        return
    await manager.connect(websocket)
    try:
        while True:
            # Clients only listen; reading detects disconnects
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)
