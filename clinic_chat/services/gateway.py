"""
Realtime gateway

Authenticates each socket once at the handshake, then routes its frames:

    join-conversation / leave-conversation  channel membership
    send-message                            persist through ChatService, fan out `new-message`
    typing / stop-typing                    forwarded to the other channel members
    mark-read                               shared read operation, fan out `messages-read`

Every frame is `{"event": ..., "data": {...}}`. Failures become an `error`
frame for the offending connection; the socket stays open.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional, Tuple

from fastapi import WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from clinic_chat.dependencies import authenticate_token
from clinic_chat.exceptions import ChatError, Forbidden, NotFound, Unauthenticated
from clinic_chat.models.user import User
from clinic_chat.schemas.realtime import ConversationEvent, Frame, SendMessageEvent
from clinic_chat.services.chat_service import ChatService
from clinic_chat.services.connection_manager import (
    Connection,
    ConnectionManager,
    conversation_channel,
    user_channel,
)
from clinic_chat.services.presence import PresenceRegistry

logger = logging.getLogger(__name__)

BEARER_SUBPROTOCOL = "bearer"


def extract_token(websocket: WebSocket, token: Optional[str] = None) -> Tuple[Optional[str], Optional[str]]:
    """
    Find the bearer credential offered at connection time.

    Browsers cannot set headers on a WebSocket, so the token comes either as
    the `token` query parameter or as the subprotocol pair `bearer, <token>`.
    Returns the token and the subprotocol to accept with.
    """
    if token:
        return token, None
    offered = websocket.scope.get("subprotocols") or []
    if len(offered) == 2 and offered[0].lower() == BEARER_SUBPROTOCOL:
        return offered[1], offered[0]
    return None, None


def dump(model) -> dict:
    return model.model_dump(mode="json", by_alias=True)


class RealtimeGateway:
    def __init__(
        self,
        chat_service: ChatService,
        presence: PresenceRegistry,
        manager: Optional[ConnectionManager] = None,
        directory=None,
    ):
        self.chat_service = chat_service
        self.presence = presence
        self.manager = manager or ConnectionManager()
        self.directory = directory or chat_service.directory
        # One lock per conversation sequences persistence and fan-out.
        # Entries live only while some send holds or waits on them.
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._handlers = {
            "join-conversation": self.join_conversation,
            "leave-conversation": self.leave_conversation,
            "send-message": self.send_message,
            "typing": self.typing,
            "stop-typing": self.stop_typing,
            "mark-read": self.mark_read,
        }

    async def serve(self, websocket: WebSocket, token: Optional[str] = None):
        """Run one socket from handshake to teardown"""
        token, subprotocol = extract_token(websocket, token)
        try:
            user = await authenticate_token(token, self.directory)
        except Unauthenticated as e:
            logger.info(f"Rejected realtime handshake: {e.message}")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
            return
        except ChatError as e:
            logger.error(f"Realtime handshake failed: {e.message}")
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason=e.message)
            return

        await websocket.accept(subprotocol=subprotocol)
        connection = await self.connect(websocket, user)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))
                raw = message.get("text")
                if raw is None:
                    await self.send_error(
                        connection, "Binary frames are not supported", "validation")
                    continue
                await self.handle_frame(connection, raw)
        except WebSocketDisconnect:
            pass
        finally:
            await self.disconnect(connection)

    async def connect(self, websocket: WebSocket, user: User) -> Connection:
        connection = Connection(websocket, user)
        self.manager.add(connection)
        self.presence.register(user.uid, connection.id, connection)
        self.manager.join(connection, user_channel(user.uid))
        logger.info(f"User connected: {user.uid} ({user.role.value})")

        await self.manager.broadcast(
            "user-online",
            {"userId": user.uid, "userName": user.name},
            exclude=connection,
        )
        return connection

    async def disconnect(self, connection: Connection):
        self.manager.remove(connection)
        went_offline = self.presence.unregister(connection.user_id, connection.id)
        logger.info(f"User disconnected: {connection.user_id}")
        if went_offline:
            await self.manager.broadcast("user-offline", {"userId": connection.user_id})

    async def handle_frame(self, connection: Connection, raw: str):
        try:
            frame = Frame.model_validate_json(raw)
        except ValidationError:
            await self.send_error(connection, "Malformed frame", "validation")
            return

        handler = self._handlers.get(frame.event)
        if handler is None:
            await self.send_error(
                connection, f"Unknown event: {frame.event}", "validation", frame.event)
            return

        try:
            await handler(connection, frame.data)
        except ChatError as e:
            await self.send_error(connection, e.message, e.category, frame.event)
        except ValidationError as e:
            await self.send_error(
                connection, f"Invalid {frame.event} payload: {e.errors()[0]['msg']}",
                "validation", frame.event)

    @asynccontextmanager
    async def conversation_lock(self, conversation_id: str):
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        self._lock_users[conversation_id] = self._lock_users.get(conversation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[conversation_id] -= 1
            if not self._lock_users[conversation_id]:
                del self._lock_users[conversation_id]
                del self._locks[conversation_id]

    async def send_error(
        self, connection: Connection, message: str, category: str, event: Optional[str] = None
    ):
        payload = {"message": message, "category": category}
        if event:
            payload["event"] = event
        await self.manager.send(connection, "error", payload)

    async def join_conversation(self, connection: Connection, data: dict):
        payload = ConversationEvent.model_validate(data)
        try:
            await self.chat_service.require_conversation(
                payload.conversation_id, connection.user_id)
        except (Forbidden, NotFound):
            # Denied joins are not reported to the client
            logger.warning(
                f"User {connection.user_id} denied join to {payload.conversation_id}")
            return
        self.manager.join(connection, conversation_channel(payload.conversation_id))
        logger.info(
            f"User {connection.user_id} joined conversation {payload.conversation_id}")

    async def leave_conversation(self, connection: Connection, data: dict):
        payload = ConversationEvent.model_validate(data)
        self.manager.leave(connection, conversation_channel(payload.conversation_id))

    async def send_message(self, connection: Connection, data: dict):
        payload = SendMessageEvent.model_validate(data)
        await self.chat_service.require_conversation(
            payload.conversation_id, connection.user_id)
        async with self.conversation_lock(payload.conversation_id):
            message, conversation = await self.chat_service.send_message(
                payload.conversation_id, connection.user, payload.content)
            await self.manager.emit(
                conversation_channel(conversation.id),
                "new-message",
                {"message": dump(message), "conversation": dump(conversation.summary())},
            )
        logger.info(f"Message sent in conversation {conversation.id}")

    async def typing(self, connection: Connection, data: dict):
        payload = ConversationEvent.model_validate(data)
        channel = conversation_channel(payload.conversation_id)
        if channel not in connection.channels:
            return
        await self.manager.emit(
            channel,
            "user-typing",
            {
                "userId": connection.user_id,
                "userName": connection.user.name,
                "conversationId": payload.conversation_id,
            },
            exclude=connection,
        )

    async def stop_typing(self, connection: Connection, data: dict):
        payload = ConversationEvent.model_validate(data)
        channel = conversation_channel(payload.conversation_id)
        if channel not in connection.channels:
            return
        await self.manager.emit(
            channel,
            "user-stop-typing",
            {"userId": connection.user_id, "conversationId": payload.conversation_id},
            exclude=connection,
        )

    async def mark_read(self, connection: Connection, data: dict):
        payload = ConversationEvent.model_validate(data)
        try:
            await self.chat_service.mark_conversation_read(
                payload.conversation_id, connection.user_id)
        except (Forbidden, NotFound):
            logger.warning(
                f"User {connection.user_id} denied mark-read on {payload.conversation_id}")
            return
        await self.notify_read(payload.conversation_id, connection.user_id, exclude=connection)

    async def notify_read(
        self, conversation_id: str, user_id: str, exclude: Optional[Connection] = None
    ) -> int:
        """Tell the conversation channel that `user_id` has read it"""
        return await self.manager.emit(
            conversation_channel(conversation_id),
            "messages-read",
            {"conversationId": conversation_id, "userId": user_id},
            exclude=exclude,
        )

    async def notify_user(self, user_id: str, event: str, data: dict) -> int:
        """Targeted emission to every connection of one user"""
        return await self.manager.emit(user_channel(user_id), event, data)
