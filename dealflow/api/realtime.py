"""WebSocket endpoint for real-time events."""

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..core import get_settings
from ..realtime import RealtimeGateway

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(tags=["realtime"])


def _socket_token(websocket: WebSocket) -> str | None:
    """Token from the query string, the Authorization header or the auth cookie."""
    token = websocket.query_params.get("token")
    if token:
        return token
    authorization = websocket.headers.get("authorization", "")
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return websocket.cookies.get(settings.auth_cookie_name)


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    gateway: RealtimeGateway = websocket.app.state.gateway
    connection = await gateway.connect(websocket, _socket_token(websocket))
    if connection is None:
        return

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug(f"Ignoring malformed socket message from {connection.id}")
                continue
            if isinstance(message, dict):
                await gateway.handle_message(connection, message)
    except WebSocketDisconnect:
        pass
    finally:
        gateway.disconnect(connection)
