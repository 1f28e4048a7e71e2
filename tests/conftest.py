"""
Shared fixtures: an in-memory ChatStore and directory wired onto the app.
"""

import asyncio
import itertools
import json
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from clinic_chat.config import settings
from clinic_chat.exceptions import NotFound, PersistenceFailure
from clinic_chat.main import app, configure_app_state
from clinic_chat.models.conversation import Conversation
from clinic_chat.models.doctor import Doctor
from clinic_chat.models.message import Message
from clinic_chat.models.user import User, UserRole
from clinic_chat.services.chat_service import ChatService
from clinic_chat.services.chat_store import ChatStore
from clinic_chat.services.gateway import RealtimeGateway
from clinic_chat.services.presence import InMemoryPresenceRegistry
from clinic_chat.utils.security import create_access_token


class InMemoryChatStore(ChatStore):
    """ChatStore kept in dicts. `fail_writes` makes every write raise."""

    def __init__(self):
        self.conversations: Dict[str, Conversation] = {}
        self.messages: Dict[str, List[Message]] = {}
        self.fail_writes = False
        self._ids = itertools.count(1)

    def _check_writable(self):
        if self.fail_writes:
            raise PersistenceFailure("Store unavailable")

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return self.conversations.get(conversation_id)

    async def create_conversation(self, conversation):
        existing = self.conversations.get(conversation.id)
        if existing is not None:
            return existing, False
        self._check_writable()
        self.conversations[conversation.id] = conversation
        self.messages[conversation.id] = []
        return conversation, True

    async def list_conversations(self, user_id, limit):
        mine = [c for c in self.conversations.values() if c.is_participant(user_id)]
        mine.sort(key=lambda c: c.last_message_time, reverse=True)
        return mine[:limit]

    async def append_message(self, conversation_id, message, recipient_id):
        self._check_writable()
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            raise NotFound("Conversation", conversation_id)
        # Yield between read and write, as a network round trip would
        await asyncio.sleep(0)
        stored = message.model_copy(update={"id": f"msg_{next(self._ids):04d}"})
        unread = dict(conversation.unread_count)
        unread[recipient_id] = unread.get(recipient_id, 0) + 1
        updated = conversation.model_copy(update={
            "last_message": stored.content,
            "last_message_time": stored.created_at,
            "unread_count": unread,
            "updated_at": stored.created_at,
        })
        self.messages[conversation_id].append(stored)
        self.conversations[conversation_id] = updated
        return stored, updated

    async def list_messages(self, conversation_id, offset, limit):
        stored = self.messages.get(conversation_id, [])
        newest_first = [
            m for _, m in sorted(
                enumerate(stored), key=lambda pair: (pair[1].created_at, pair[0]),
                reverse=True)
        ]
        return newest_first[offset:offset + limit], len(stored)

    async def mark_read(self, conversation, user_id):
        self._check_writable()
        changed = 0
        stored = self.messages.get(conversation.id, [])
        for index, message in enumerate(stored):
            if message.sender_id == user_id or user_id in message.read_by:
                continue
            stored[index] = message.read_by_user(user_id, conversation.participants)
            changed += 1
        current = self.conversations[conversation.id]
        self.conversations[conversation.id] = current.model_copy(
            update={"unread_count": {**current.unread_count, user_id: 0}})
        return changed

    async def delete_conversation(self, conversation_id):
        self._check_writable()
        self.conversations.pop(conversation_id, None)
        return len(self.messages.pop(conversation_id, []))


class FakeDirectory:
    """Read-only user and doctor directory"""

    def __init__(self):
        self.users: Dict[str, User] = {}
        self.doctors: Dict[str, Doctor] = {}

    def add_user(self, uid, name, role=UserRole.PATIENT, is_active=True) -> User:
        user = User(uid=uid, email=f"{uid}@example.com", name=name, role=role,
                    is_active=is_active)
        self.users[uid] = user
        return user

    def add_doctor(self, uid, name, specialization="General Practice") -> User:
        user = self.add_user(uid, name, role=UserRole.DOCTOR)
        self.doctors[uid] = Doctor(
            user_id=uid, full_name=name, email=user.email, prefix="Dr.",
            specialization=specialization)
        return user

    async def get_user(self, uid):
        return self.users.get(uid)

    async def get_doctor(self, user_id):
        return self.doctors.get(user_id)


class FakeSocket:
    """Records frames sent by the gateway"""

    def __init__(self):
        self.sent: List[dict] = []
        self.closed = False

    async def send_json(self, data):
        if self.closed:
            raise RuntimeError("Cannot send on a closed socket")
        self.sent.append(data)

    def events(self, name=None):
        return [f for f in self.sent if name is None or f["event"] == name]


def token_for(uid: str) -> str:
    return create_access_token({"sub": uid})


def auth_headers(uid: str) -> dict:
    return {"Authorization": f"Bearer {token_for(uid)}"}


def frame(event: str, **data) -> str:
    return json.dumps({"event": event, "data": data})


def drain(ws) -> List[dict]:
    """Round-trip a marker frame; returns the frames received before its reply."""
    ws.send_json({"event": "sync"})
    frames = []
    while True:
        received = ws.receive_json()
        if received["event"] == "error" and received["data"].get("event") == "sync":
            return frames
        frames.append(received)


@pytest.fixture
def store():
    return InMemoryChatStore()


@pytest.fixture
def directory():
    d = FakeDirectory()
    d.add_user("patient_1", "Jane Doe")
    d.add_user("patient_2", "John Roe")
    d.add_doctor("doctor_1", "Alice Smith", "Cardiology")
    d.add_doctor("doctor_2", "Bob Jones", "Dermatology")
    d.add_user("admin_1", "Admin", role=UserRole.ADMIN)
    d.add_user("inactive_1", "Gone", is_active=False)
    return d


@pytest.fixture
def chat_service(store, directory):
    return ChatService(store, directory, settings)


@pytest.fixture
def presence():
    return InMemoryPresenceRegistry()


@pytest.fixture
def gateway(chat_service, presence, directory):
    return RealtimeGateway(chat_service, presence, directory=directory)


@pytest.fixture
def client(store, directory):
    configure_app_state(app, store, directory)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides = {}
