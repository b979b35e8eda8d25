"""
Agora - WebSocket Adapter
===========================
Connects FastAPI WebSockets to the realtime hub.

Message format (both directions):
    {
        "type": "products",
        "data": [ ... ],
        "timestamp": "2026-02-08T12:00:00+00:00"
    }

Server -> client types: "products", "messages", "error"
Client -> server types: "update-products", "update-chat" (text or binary frames)

Usage:
    @app.websocket("/ws")
    async def ws_endpoint(websocket: WebSocket):
        await serve_websocket(websocket, hub, auth_manager)
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError

from agora import events
from agora.auth import AuthManager
from agora.errors import AgoraError, NotAuthenticated
from agora.events import UpdateChat, UpdateProducts, parse_inbound
from agora.hub import RealtimeHub

logger = logging.getLogger(__name__)


class WebSocketPeer:
    """
    One browser connection as seen by the hub.

    Attributes:
        websocket: The accepted FastAPI WebSocket.
        username:  Owner of the session that opened the connection.
        peer_id:   Random id used in logs and as the hub's key.
    """

    def __init__(self, websocket: WebSocket, username: str | None = None):
        self.websocket = websocket
        self.username = username
        self.peer_id = uuid.uuid4().hex[:12]

    async def send(self, event: str, data: Any) -> None:
        message = {
            "type": event,
            "data": jsonable_encoder(data),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        await self.websocket.send_text(json.dumps(message, ensure_ascii=False))


async def serve_websocket(websocket: WebSocket, hub: RealtimeHub, auth: AuthManager) -> None:
    """
    Run one realtime connection from handshake to disconnect.

    The session cookie is checked before the handshake is accepted; an
    unauthenticated client is closed with code 1008 (policy violation).
    Invalid frames are answered with an "error" event to the sender only.
    """
    try:
        session = auth.require_session(websocket.cookies.get(auth.cookie_name))
    except NotAuthenticated as e:
        logger.info("Rejected realtime connection: %s", e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    peer = WebSocketPeer(websocket, username=session.username)
    try:
        await hub.connect(peer)
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            # Text and binary frames carry the same JSON envelope
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            await _dispatch(hub, peer, raw)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(peer)


async def _dispatch(hub: RealtimeHub, peer: WebSocketPeer, raw: str | bytes) -> None:
    try:
        event = parse_inbound(raw)
    except ValidationError as e:
        logger.warning("Invalid event from %s: %s", peer.peer_id, e.error_count())
        await peer.send(events.ERROR, {
            "error": "invalid_event",
            "message": "Event could not be parsed",
            "details": e.errors(include_url=False, include_context=False, include_input=False),
        })
        return

    try:
        if isinstance(event, UpdateProducts):
            await hub.catalog_update(peer, event.data)
        elif isinstance(event, UpdateChat):
            await hub.chat_message(peer, event.data)
    except AgoraError as e:
        # Only raised under the strict persistence policy
        await peer.send(events.ERROR, e.to_dict())
