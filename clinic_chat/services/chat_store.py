"""
Conversation and message persistence

`ChatStore` is the storage contract used by the chat service; the
Firestore implementation keeps one document per conversation with the
messages in a `messages` subcollection:

    conversations/{conversationId}
    conversations/{conversationId}/messages/{messageId}
"""

from __future__ import annotations
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, UTC
from typing import List, Optional, Tuple

from firebase_admin import firestore
from google.cloud.firestore_v1.field_path import FieldPath
from google.api_core.exceptions import (
    AlreadyExists,
    FailedPrecondition,
    GoogleAPICallError,
)

from clinic_chat.exceptions import NotFound, PersistenceFailure
from clinic_chat.models.conversation import (
    Conversation,
    conversation_model_to_firestore,
    firestore_conversation_to_model,
)
from clinic_chat.models.message import (
    Message,
    compute_is_read,
    firestore_message_to_model,
    message_model_to_firestore,
)

logger = logging.getLogger(__name__)

# Firestore rejects batches with more than 500 writes
BATCH_LIMIT = 500


class ChatStore(ABC):
    """Storage contract for conversations and their messages"""

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        ...

    @abstractmethod
    async def create_conversation(self, conversation: Conversation) -> Tuple[Conversation, bool]:
        """Create the conversation unless one already exists for its id.

        Returns the stored conversation and whether it was created.
        """

    @abstractmethod
    async def list_conversations(self, user_id: str, limit: int) -> List[Conversation]:
        """Conversations of `user_id`, most recent message first."""

    @abstractmethod
    async def append_message(
        self, conversation_id: str, message: Message, recipient_id: str
    ) -> Tuple[Message, Conversation]:
        """Store `message`, update the summary and bump the recipient's unread count.

        All three writes succeed or none do.
        """

    @abstractmethod
    async def list_messages(
        self, conversation_id: str, offset: int, limit: int
    ) -> Tuple[List[Message], int]:
        """Newest-first page of messages and the total message count."""

    @abstractmethod
    async def mark_read(self, conversation: Conversation, user_id: str) -> int:
        """Acknowledge every message not sent by `user_id` and reset their unread count.

        Returns how many messages changed.
        """

    @abstractmethod
    async def delete_conversation(self, conversation_id: str) -> int:
        """Hard-delete a conversation and its messages. Returns messages removed."""


class FirestoreChatStore(ChatStore):
    """ChatStore backed by Firestore"""

    def __init__(self, db):
        self.db = db

    def _conversations(self):
        return self.db.collection("conversations")

    def _messages(self, conversation_id: str):
        return self._conversations().document(conversation_id).collection("messages")

    async def _run(self, fn, *args):
        """Run a blocking SDK call in a thread, translating store errors."""
        try:
            return await asyncio.to_thread(fn, *args)
        except GoogleAPICallError as e:
            logger.error(f"Firestore call failed: {e}")
            raise PersistenceFailure(f"Store operation failed: {e}") from e

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        doc = await self._run(self._conversations().document(conversation_id).get)
        if not doc.exists:
            return None
        return firestore_conversation_to_model(doc.to_dict(), doc.id)

    async def create_conversation(self, conversation: Conversation) -> Tuple[Conversation, bool]:
        conv_ref = self._conversations().document(conversation.id)

        def _create():
            try:
                conv_ref.create(conversation_model_to_firestore(conversation))
                return conversation, True
            except AlreadyExists:
                # Lost the race to another request for the same pair
                doc = conv_ref.get()
                return firestore_conversation_to_model(doc.to_dict(), doc.id), False

        return await self._run(_create)

    async def list_conversations(self, user_id: str, limit: int) -> List[Conversation]:
        base = self._conversations().where("participants", "array_contains", user_id)

        def _stream(query):
            return [(doc.id, doc.to_dict()) for doc in query.stream()]

        try:
            # Note: requires a composite index on [participants, lastMessageTime DESC]
            docs = await asyncio.to_thread(
                _stream,
                base.order_by("lastMessageTime",
                              direction=firestore.Query.DESCENDING).limit(limit),
            )
        except FailedPrecondition as e:
            logger.warning(
                f"Conversation index missing, sorting in memory: {e}")
            docs = await self._run(_stream, base)
            docs.sort(key=lambda d: d[1].get("lastMessageTime")
                      or datetime.min.replace(tzinfo=UTC), reverse=True)
            docs = docs[:limit]
        except GoogleAPICallError as e:
            raise PersistenceFailure(f"Store operation failed: {e}") from e

        return [firestore_conversation_to_model(data, doc_id) for doc_id, data in docs]

    async def append_message(
        self, conversation_id: str, message: Message, recipient_id: str
    ) -> Tuple[Message, Conversation]:
        conv_ref = self._conversations().document(conversation_id)
        msg_ref = self._messages(conversation_id).document()
        transaction = self.db.transaction()

        @firestore.transactional
        def _append(transaction):
            snapshot = conv_ref.get(transaction=transaction)
            if not snapshot.exists:
                raise NotFound("Conversation", conversation_id)
            conversation = firestore_conversation_to_model(
                snapshot.to_dict(), snapshot.id)

            stored = message.model_copy(update={"id": msg_ref.id})
            unread = dict(conversation.unread_count)
            unread[recipient_id] = unread.get(recipient_id, 0) + 1
            updated = conversation.model_copy(update={
                "last_message": stored.content,
                "last_message_time": stored.created_at,
                "unread_count": unread,
                "updated_at": stored.created_at,
            })

            transaction.set(msg_ref, message_model_to_firestore(stored))
            transaction.update(conv_ref, {
                "lastMessage": updated.last_message,
                "lastMessageTime": updated.last_message_time,
                "unreadCount": unread,
                "updatedAt": updated.updated_at,
            })
            return stored, updated

        return await self._run(_append, transaction)

    async def list_messages(
        self, conversation_id: str, offset: int, limit: int
    ) -> Tuple[List[Message], int]:
        messages_ref = self._messages(conversation_id)
        query = messages_ref.order_by(
            "createdAt", direction=firestore.Query.DESCENDING)
        if offset > 0:
            query = query.offset(offset)
        query = query.limit(limit)

        def _page():
            docs = [(doc.id, doc.to_dict()) for doc in query.stream()]
            total = messages_ref.count().get()[0][0].value
            return docs, int(total)

        docs, total = await self._run(_page)
        return [firestore_message_to_model(data, doc_id) for doc_id, data in docs], total

    async def mark_read(self, conversation: Conversation, user_id: str) -> int:
        conv_ref = self._conversations().document(conversation.id)
        messages_ref = self._messages(conversation.id)
        participants = conversation.participants

        def _mark():
            now = datetime.now(UTC)
            pending = []
            for doc in messages_ref.where("isRead", "==", False).stream():
                data = doc.to_dict()
                read_by = data.get("readBy") or []
                if data.get("senderId") == user_id or user_id in read_by:
                    continue
                pending.append((doc.reference, read_by))

            # Reset goes in the last batch so it only lands with the final receipts
            writes = [
                (ref, {
                    "readBy": firestore.ArrayUnion([user_id]),
                    "isRead": compute_is_read(read_by + [user_id], participants),
                    "updatedAt": now,
                })
                for ref, read_by in pending
            ]
            writes.append((conv_ref, {
                FieldPath("unreadCount", user_id).to_api_repr(): 0,
                "updatedAt": now,
            }))

            for start in range(0, len(writes), BATCH_LIMIT):
                batch = self.db.batch()
                for ref, fields in writes[start:start + BATCH_LIMIT]:
                    batch.update(ref, fields)
                batch.commit()
            return len(pending)

        return await self._run(_mark)

    async def delete_conversation(self, conversation_id: str) -> int:
        conv_ref = self._conversations().document(conversation_id)
        messages_ref = self._messages(conversation_id)

        def _delete():
            refs = [doc.reference for doc in messages_ref.stream()]
            refs.append(conv_ref)
            for start in range(0, len(refs), BATCH_LIMIT):
                batch = self.db.batch()
                for ref in refs[start:start + BATCH_LIMIT]:
                    batch.delete(ref)
                batch.commit()
            return len(refs) - 1

        return await self._run(_delete)
