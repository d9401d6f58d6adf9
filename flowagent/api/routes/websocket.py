"""
WebSocket Routes for Live Flow Updates.

Clients subscribe to a flow and receive every engine event (node status
changes, level barriers, run completion) while runs are in progress.
"""

from typing import Any, Dict, Optional, Set
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import asyncio
import logging

from flowagent.config import settings
from flowagent.storage.memory import flow_storage


logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])


class ConnectionManager:
    """Manages WebSocket connections per flow."""

    def __init__(self, send_timeout: Optional[float] = None):
        self.active_connections: Dict[str, Set[WebSocket]] = {}
        self.send_timeout = (
            send_timeout if send_timeout is not None else settings.WS_SEND_TIMEOUT
        )

    async def connect(self, websocket: WebSocket, flow_id: str):
        """Accept a new WebSocket connection."""
        await websocket.accept()
        if flow_id not in self.active_connections:
            self.active_connections[flow_id] = set()
        self.active_connections[flow_id].add(websocket)
        logger.info(f"WebSocket connected for flow: {flow_id}")

    def disconnect(self, websocket: WebSocket, flow_id: str):
        """Remove a WebSocket connection."""
        if flow_id in self.active_connections:
            self.active_connections[flow_id].discard(websocket)
            if not self.active_connections[flow_id]:
                del self.active_connections[flow_id]
        logger.info(f"WebSocket disconnected for flow: {flow_id}")

    async def broadcast(self, flow_id: str, message: Dict[str, Any]):
        """
        Broadcast a message to all connections for a flow.

        Subscribers are sent to concurrently, each bounded by
        settings.WS_SEND_TIMEOUT; one that fails or times out is dropped.
        """
        if flow_id not in self.active_connections:
            return

        websockets = list(self.active_connections[flow_id])
        results = await asyncio.gather(
            *(
                asyncio.wait_for(ws.send_json(message), timeout=self.send_timeout)
                for ws in websockets
            ),
            return_exceptions=True,
        )

        # Clean up disconnected or stalled clients
        for ws, result in zip(websockets, results):
            if isinstance(result, Exception):
                logger.warning(f"Dropping subscriber of flow {flow_id}: {result!r}")
                self.disconnect(ws, flow_id)


# Global connection manager
manager = ConnectionManager()


@router.websocket("/ws/flows/{flow_id}")
async def websocket_flow(websocket: WebSocket, flow_id: str):
    """
    Subscribe to live updates for a flow.

    On connect the current flow state is sent, followed by every engine
    event for runs of this flow.

    Message format (server -> client):
    ```json
    {"type": "state", "flow": {...}}
    {"type": "node_completed", "run_id": "...", "node": {...}, "level": 0, "step": 1}
    {"type": "run_finished", "run_id": "...", "status": "completed", "levels": 2}
    ```

    Sending `{"action": "state"}` requests a fresh state message.
    """
    session = await flow_storage.get(flow_id)
    if not session:
        await websocket.close(code=4004, reason=f"Flow '{flow_id}' not found")
        return

    await manager.connect(websocket, flow_id)

    try:
        await websocket.send_json({"type": "state", "flow": session.to_dict()})

        while True:
            data = await websocket.receive_json()
            if data.get("action") == "state":
                await websocket.send_json({"type": "state", "flow": session.to_dict()})
            else:
                await websocket.send_json({
                    "type": "error",
                    "error": "Expected 'state' action"
                })

    except WebSocketDisconnect:
        logger.info(f"Subscriber disconnected from flow {flow_id}")
    except Exception as e:
        logger.exception(f"WebSocket error: {e}")
    finally:
        manager.disconnect(websocket, flow_id)
