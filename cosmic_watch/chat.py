"""
Global chat relay: a single websocket room, best effort, at most once.

Nothing is stored. A message goes to whoever is in the room when it is
broadcast; sockets that fail to receive are dropped from the room.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

ROOM = "global_chat"


class ChatMessage(BaseModel):
    text: str = Field(max_length=500)
    author: str = Field(default="Explorer", max_length=64)
    id: int | str | None = None
    time: str | None = None

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("message text is empty")
        return value


class ChatRoom:
    """Tracks the sockets that joined the room and relays messages to them."""

    def __init__(self, name: str = ROOM):
        self.name = name
        self.members: list[WebSocket] = []

    def join(self, websocket: WebSocket) -> None:
        if websocket not in self.members:
            self.members.append(websocket)
        logger.info("chat join %s (%d members)", self.name, len(self.members))

    def leave(self, websocket: WebSocket) -> None:
        if websocket in self.members:
            self.members.remove(websocket)
            logger.info("chat leave %s (%d members)", self.name, len(self.members))

    async def broadcast(self, message: dict[str, Any]) -> int:
        """Send to every member; returns how many sends succeeded."""
        data = json.dumps(message)
        delivered = 0
        dead = []
        for member in list(self.members):
            try:
                await member.send_text(data)
                delivered += 1
            except Exception:
                dead.append(member)
        for member in dead:
            self.leave(member)
        return delivered

    @property
    def count(self) -> int:
        return len(self.members)


room = ChatRoom()


async def _handle(websocket: WebSocket, msg: dict[str, Any]) -> None:
    kind = msg.get("type")
    if kind == "join_chat":
        room.join(websocket)
        await websocket.send_json({"type": "joined", "room": room.name, "members": room.count})
    elif kind == "send_message":
        try:
            message = ChatMessage.model_validate(msg.get("data") or {})
        except ValidationError as exc:
            await websocket.send_json({"type": "error", "detail": exc.errors()[0]["msg"]})
            return
        data = message.model_dump()
        data["sent_at"] = datetime.now(timezone.utc).isoformat()
        await room.broadcast({"type": "receive_message", "data": data})
    elif kind == "ping":
        await websocket.send_json({"type": "pong"})
    else:
        await websocket.send_json({"type": "error", "detail": f"unknown message type {kind!r}"})


async def chat_endpoint(websocket: WebSocket) -> None:
    await websocket.accept()
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "detail": "invalid JSON"})
                continue
            if not isinstance(msg, dict):
                await websocket.send_json({"type": "error", "detail": "expected an object"})
                continue
            await _handle(websocket, msg)
    except WebSocketDisconnect:
        pass
    finally:
        room.leave(websocket)
