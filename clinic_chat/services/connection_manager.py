"""
Live connection and channel bookkeeping for the realtime gateway.

A channel is a named fan-out group. Every connection joins its owner's
`user:<uid>` channel; `conversation:<id>` channels are joined on request.
"""

import logging
from typing import Dict, List, Optional, Set
from uuid import uuid4

from fastapi import WebSocket, WebSocketDisconnect

from clinic_chat.models.user import User

logger = logging.getLogger(__name__)


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


def conversation_channel(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


class Connection:
    """One authenticated socket"""

    def __init__(self, websocket: WebSocket, user: User):
        self.id = uuid4().hex
        self.websocket = websocket
        self.user = user
        self.channels: Set[str] = set()

    @property
    def user_id(self) -> str:
        return self.user.uid

    async def send(self, event: str, data: dict):
        await self.websocket.send_json({"event": event, "data": data})

    def __repr__(self) -> str:
        return f"<Connection {self.id} user={self.user_id}>"


class ConnectionManager:
    def __init__(self):
        # {connection_id: Connection}
        self.connections: Dict[str, Connection] = {}
        # {channel: {connection_id}}
        self.channels: Dict[str, Set[str]] = {}

    def add(self, connection: Connection):
        self.connections[connection.id] = connection

    def remove(self, connection: Connection):
        """Forget the connection and drop all of its channel memberships"""
        for channel in list(connection.channels):
            self.leave(connection, channel)
        self.connections.pop(connection.id, None)

    def join(self, connection: Connection, channel: str):
        self.channels.setdefault(channel, set()).add(connection.id)
        connection.channels.add(channel)

    def leave(self, connection: Connection, channel: str):
        connection.channels.discard(channel)
        members = self.channels.get(channel)
        if members is None:
            return
        members.discard(connection.id)
        if not members:
            del self.channels[channel]

    def members(self, channel: str) -> List[Connection]:
        return [
            self.connections[connection_id]
            for connection_id in self.channels.get(channel, ())
            if connection_id in self.connections
        ]

    async def send(self, connection: Connection, event: str, data: dict) -> bool:
        """Send to one connection. A dead socket is logged, not raised."""
        try:
            await connection.send(event, data)
            return True
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.warning(f"Error sending {event} to {connection}: {e}")
            return False

    async def emit(
        self, channel: str, event: str, data: dict, exclude: Optional[Connection] = None
    ) -> int:
        """Send to every member of a channel. Returns the delivered count."""
        sent_count = 0
        for connection in self.members(channel):
            if exclude is not None and connection.id == exclude.id:
                continue
            if await self.send(connection, event, data):
                sent_count += 1
        return sent_count

    async def broadcast(
        self, event: str, data: dict, exclude: Optional[Connection] = None
    ) -> int:
        """Send to every live connection"""
        sent_count = 0
        for connection in list(self.connections.values()):
            if exclude is not None and connection.id == exclude.id:
                continue
            if await self.send(connection, event, data):
                sent_count += 1
        return sent_count
