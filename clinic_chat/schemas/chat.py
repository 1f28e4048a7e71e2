from datetime import datetime
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field, ConfigDict

from clinic_chat.models.conversation import (
    Conversation,
    ParticipantDetails,
    UnreadEntry,
    unread_to_wire,
)
from clinic_chat.models.message import Message

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Envelope shared by every Query API success response"""
    status: str = "success"
    message: str
    data: Optional[T] = None


class ConversationCreateSchema(BaseModel):
    """
    A patient names the doctor (`doctorId`); a doctor may name the patient
    (`participantId`).
    """
    doctor_id: Optional[str] = Field(None, alias="doctorId")
    participant_id: Optional[str] = Field(None, alias="participantId")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def other_party_id(self) -> Optional[str]:
        return self.doctor_id or self.participant_id


class ConversationResponse(BaseModel):
    id: str
    participants: List[str]
    participant_details: ParticipantDetails = Field(..., alias="participantDetails")
    last_message: str = Field("", alias="lastMessage")
    last_message_time: datetime = Field(..., alias="lastMessageTime")
    unread_count: List[UnreadEntry] = Field(default_factory=list, alias="unreadCount")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_model(cls, conversation: Conversation) -> "ConversationResponse":
        return cls(
            id=conversation.id,
            participants=conversation.participants,
            participant_details=conversation.participant_details,
            last_message=conversation.last_message,
            last_message_time=conversation.last_message_time,
            unread_count=unread_to_wire(conversation.unread_count),
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
        )


class Pagination(BaseModel):
    current_page: int = Field(..., alias="currentPage")
    total_pages: int = Field(..., alias="totalPages")
    total_messages: int = Field(..., alias="totalMessages")
    has_more: bool = Field(..., alias="hasMore")

    model_config = ConfigDict(populate_by_name=True)


class MessagePageResponse(BaseModel):
    # Oldest first within the page
    messages: List[Message]
    pagination: Pagination


class PresenceResponse(BaseModel):
    user_id: str = Field(..., alias="userId")
    online: bool

    model_config = ConfigDict(populate_by_name=True)
