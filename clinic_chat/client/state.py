"""
Client-side chat state

A local view of the messaging core for a single signed-in user. Query API
results seed it (`set_conversations`, `set_messages`) and gateway frames
keep it current through `apply_event`. Conversations and messages are kept
in their wire form (camelCase dicts); the unread list is folded back into a
`{userId: count}` map on the way in.
"""

import logging
from typing import Dict, List, Optional, Set

from clinic_chat.models.conversation import unread_from_wire

logger = logging.getLogger(__name__)


def _normalize_conversation(conversation: dict) -> dict:
    data = dict(conversation)
    unread = data.get("unreadCount")
    if isinstance(unread, list):
        data["unreadCount"] = unread_from_wire(unread)
    return data


class ChatState:
    def __init__(self):
        self.conversations: List[dict] = []  # most recent first
        self.messages: Dict[str, List[dict]] = {}
        self.active_conversation_id: Optional[str] = None
        self.typing_users: Dict[str, str] = {}  # conversationId -> userName
        self.online_users: Set[str] = set()
        self.last_error: Optional[dict] = None

    def conversation(self, conversation_id: str) -> Optional[dict]:
        for conversation in self.conversations:
            if conversation["id"] == conversation_id:
                return conversation
        return None

    def set_conversations(self, conversations: List[dict]):
        self.conversations = [_normalize_conversation(c) for c in conversations]

    def add_conversation(self, conversation: dict):
        if self.conversation(conversation["id"]) is None:
            self.conversations.insert(0, _normalize_conversation(conversation))

    def update_conversation(self, changes: dict):
        """Merge `changes` into a known conversation and move it to the top"""
        for index, conversation in enumerate(self.conversations):
            if conversation["id"] == changes["id"]:
                merged = {**conversation, **_normalize_conversation(changes)}
                del self.conversations[index]
                self.conversations.insert(0, merged)
                return
        logger.debug(f"Update for unknown conversation {changes['id']} ignored")

    def set_messages(self, conversation_id: str, messages: List[dict]):
        self.messages[conversation_id] = list(messages)

    def add_message(self, message: dict):
        bucket = self.messages.setdefault(message["conversationId"], [])
        if any(m.get("id") == message.get("id") for m in bucket):
            return
        bucket.append(message)

    def set_active_conversation(self, conversation_id: Optional[str]):
        self.active_conversation_id = conversation_id

    def set_typing(self, conversation_id: str, user_name: str):
        self.typing_users[conversation_id] = user_name

    def clear_typing(self, conversation_id: str):
        self.typing_users.pop(conversation_id, None)

    def set_user_online(self, user_id: str):
        self.online_users.add(user_id)

    def set_user_offline(self, user_id: str):
        self.online_users.discard(user_id)

    def mark_read_by(self, conversation_id: str, user_id: str):
        """Apply a peer's read receipt to the cached messages"""
        conversation = self.conversation(conversation_id)
        participants = set(conversation["participants"]) if conversation else set()
        for message in self.messages.get(conversation_id, []):
            if message["senderId"] == user_id or user_id in message["readBy"]:
                continue
            message["readBy"] = message["readBy"] + [user_id]
            if participants and participants.issubset(message["readBy"]):
                message["isRead"] = True
        if conversation is not None:
            conversation.setdefault("unreadCount", {})[user_id] = 0

    def clear(self):
        self.conversations = []
        self.messages = {}
        self.active_conversation_id = None
        self.typing_users = {}
        self.online_users = set()
        self.last_error = None

    def apply_event(self, event: str, data: dict):
        """Fold one gateway frame into the state"""
        if event == "new-message":
            message = data["message"]
            self.add_message(message)
            self.update_conversation(data["conversation"])
            self.clear_typing(message["conversationId"])
        elif event == "user-online":
            self.set_user_online(data["userId"])
        elif event == "user-offline":
            self.set_user_offline(data["userId"])
        elif event == "user-typing":
            self.set_typing(data["conversationId"], data.get("userName", ""))
        elif event == "user-stop-typing":
            self.clear_typing(data["conversationId"])
        elif event == "messages-read":
            self.mark_read_by(data["conversationId"], data["userId"])
        elif event == "error":
            self.last_error = data
            logger.warning(f"Gateway error: {data.get('message')}")
        else:
            logger.debug(f"Unhandled event {event}")
