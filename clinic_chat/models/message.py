"""
Message model and Firestore conversion helpers

Collection: conversations/{conversationId}/messages/
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field, ConfigDict


def utc_now():
    return datetime.now(timezone.utc)


class SenderType(str, Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"


def compute_is_read(read_by: Iterable[str], participants: Iterable[str]) -> bool:
    """A message is read once every participant has acknowledged it."""
    return set(participants).issubset(set(read_by))


class Message(BaseModel):
    id: Optional[str] = None
    conversation_id: str = Field(..., alias="conversationId")
    sender_id: str = Field(..., alias="senderId")
    sender_type: SenderType = Field(..., alias="senderType")
    sender_name: str = Field("", alias="senderName")
    content: str = Field(..., min_length=1)
    read_by: List[str] = Field(default_factory=list, alias="readBy")
    is_read: bool = Field(False, alias="isRead")
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    updated_at: datetime = Field(default_factory=utc_now, alias="updatedAt")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": "msg_123",
                "conversationId": "0f6c9a...",
                "senderId": "patient_1",
                "senderType": "patient",
                "senderName": "Jane Doe",
                "content": "Hello doctor, I have a question about my results.",
                "readBy": ["patient_1"],
                "isRead": False,
                "createdAt": "2024-01-20T10:00:00Z",
                "updatedAt": "2024-01-20T10:00:00Z",
            }
        }
    )

    def read_by_user(self, user_id: str, participants: Iterable[str]) -> "Message":
        """Copy of the message acknowledged by `user_id`. isRead never reverts."""
        read_by = list(self.read_by)
        if user_id not in read_by:
            read_by.append(user_id)
        return self.model_copy(update={
            "read_by": read_by,
            "is_read": self.is_read or compute_is_read(read_by, participants),
            "updated_at": utc_now(),
        })


def firestore_message_to_model(doc: dict, message_id: str) -> Message:
    return Message.model_validate({**doc, "id": message_id})


def message_model_to_firestore(message: Message) -> dict:
    data = message.model_dump(by_alias=True)
    data["senderType"] = message.sender_type.value
    data.pop("id", None)
    return data
