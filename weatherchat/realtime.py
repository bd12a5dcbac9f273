"""
Realtime notification channel over WebSocket.

One hub per app tracks every open connection and the conversation each
one has joined. Inbound frames are JSON objects with a `type`:

  join_conversation   remember {conversationId} for this connection, no ack
  typing              rebroadcast {conversationId, isTyping} to everyone else

A `welcome` frame goes out on connect. Unknown types and malformed frames
are logged and skipped; the connection stays open. Nothing is persisted
and delivery is best-effort.
"""

from __future__ import annotations

import json
import logging

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from weatherchat.errors import TransportError

logger = logging.getLogger(__name__)

WELCOME = {"type": "welcome", "message": "Connected to Weather Agent WebSocket"}


def parse_frame(raw: str | None) -> dict:
    """Decode one text frame. Raises TransportError if it isn't a JSON object."""
    if raw is None:
        raise TransportError("expected a text frame")
    try:
        msg = json.loads(raw)
    except json.JSONDecodeError as e:
        raise TransportError(f"invalid JSON: {e}") from e
    if not isinstance(msg, dict):
        raise TransportError("frame must be a JSON object")
    return msg


class NotificationHub:
    """Fan-out of typing indicators between connected clients."""

    def __init__(self):
        # id(connection) -> [connection, joined conversation id]
        self._connections: dict[int, list] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def members(self, conversation_id: str) -> int:
        """How many connections have joined a conversation."""
        return sum(1 for _, joined in self._connections.values() if joined == conversation_id)

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self._connections[id(websocket)] = [websocket, None]
        logger.info("WebSocket client connected (%d open)", len(self._connections))
        await websocket.send_json(WELCOME)

    def disconnect(self, websocket: WebSocket):
        self._connections.pop(id(websocket), None)
        logger.info("WebSocket client disconnected (%d open)", len(self._connections))

    async def serve(self, websocket: WebSocket):
        """Run one connection until the peer goes away."""
        await self.connect(websocket)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                await self.dispatch(websocket, message.get("text"))
        finally:
            self.disconnect(websocket)

    async def dispatch(self, websocket: WebSocket, raw: str | None):
        try:
            msg = parse_frame(raw)
        except TransportError as e:
            logger.warning("Dropping malformed WebSocket frame: %s", e)
            return

        msg_type = msg.get("type")
        if msg_type == "typing":
            await self.broadcast(
                {
                    "type": "typing",
                    "conversationId": msg.get("conversationId"),
                    "isTyping": msg.get("isTyping"),
                },
                exclude=websocket,
            )
        elif msg_type == "join_conversation":
            entry = self._connections.get(id(websocket))
            if entry is not None:
                entry[1] = msg.get("conversationId")
            logger.debug("Connection joined conversation %s", msg.get("conversationId"))
        else:
            logger.info("Unknown WebSocket message type: %s", msg_type)

    async def broadcast(self, payload: dict, exclude: WebSocket | None = None):
        """Send to every open connection except `exclude`. Failures are dropped."""
        for ws, _ in list(self._connections.values()):
            if ws is exclude or ws.client_state != WebSocketState.CONNECTED:
                continue
            try:
                await ws.send_json(payload)
            except Exception as e:
                logger.debug("Broadcast to a closing connection failed: %s", e)
