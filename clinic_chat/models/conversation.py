"""
Conversation model and Firestore conversion helpers

Collection: conversations/
Document ID: derived from the unordered (patient, doctor) pair, so the
same two participants always map to the same document.
"""

import hashlib
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict


def utc_now():
    return datetime.now(timezone.utc)


def conversation_id_for(user_a: str, user_b: str) -> str:
    """Opaque, order-independent id for a participant pair."""
    first, second = sorted((user_a, user_b))
    digest = hashlib.sha256(f"{first}|{second}".encode("utf-8")).hexdigest()
    return digest[:32]


class PatientDetails(BaseModel):
    id: str
    name: str = ""
    email: Optional[str] = None


class DoctorDetails(BaseModel):
    id: str
    name: str = ""
    email: Optional[str] = None
    prefix: Optional[str] = None
    specialization: Optional[str] = None


class ParticipantDetails(BaseModel):
    """Snapshot taken when the conversation is created; not kept in sync."""

    user: PatientDetails
    doctor: DoctorDetails


class UnreadEntry(BaseModel):
    user_id: str = Field(..., alias="userId")
    count: int = Field(0, ge=0)

    model_config = ConfigDict(populate_by_name=True)


def unread_to_wire(unread: Dict[str, int]) -> List[UnreadEntry]:
    """Explicit ordered key/value form of an unread map."""
    return [
        UnreadEntry(user_id=user_id, count=count)
        for user_id, count in sorted(unread.items())
    ]


def unread_from_wire(entries: List[dict]) -> Dict[str, int]:
    result = {}
    for entry in entries or []:
        if isinstance(entry, UnreadEntry):
            result[entry.user_id] = entry.count
        else:
            result[entry["userId"]] = int(entry.get("count", 0))
    return result


class ConversationSummary(BaseModel):
    """Summary carried by `new-message` events."""

    id: str
    last_message: str = Field("", alias="lastMessage")
    last_message_time: datetime = Field(..., alias="lastMessageTime")
    unread_count: List[UnreadEntry] = Field(
        default_factory=list, alias="unreadCount")

    model_config = ConfigDict(populate_by_name=True)


class Conversation(BaseModel):
    id: str
    participants: List[str] = Field(..., min_length=2, max_length=2)
    participant_details: ParticipantDetails = Field(
        ..., alias="participantDetails")
    last_message: str = Field("", alias="lastMessage")
    last_message_time: datetime = Field(
        default_factory=utc_now, alias="lastMessageTime")
    unread_count: Dict[str, int] = Field(
        default_factory=dict, alias="unreadCount")
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    updated_at: datetime = Field(default_factory=utc_now, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def patient_id(self) -> str:
        return self.participant_details.user.id

    @property
    def doctor_id(self) -> str:
        return self.participant_details.doctor.id

    def is_participant(self, user_id: str) -> bool:
        return user_id in self.participants

    def other_participant(self, user_id: str) -> Optional[str]:
        for participant in self.participants:
            if participant != user_id:
                return participant
        return None

    def unread_for(self, user_id: str) -> int:
        return self.unread_count.get(user_id, 0)

    def summary(self) -> ConversationSummary:
        return ConversationSummary(
            id=self.id,
            last_message=self.last_message,
            last_message_time=self.last_message_time,
            unread_count=unread_to_wire(self.unread_count),
        )


def new_conversation(patient: PatientDetails, doctor: DoctorDetails) -> Conversation:
    now = utc_now()
    return Conversation(
        id=conversation_id_for(patient.id, doctor.id),
        participants=[patient.id, doctor.id],
        participant_details=ParticipantDetails(user=patient, doctor=doctor),
        last_message="",
        last_message_time=now,
        unread_count={patient.id: 0, doctor.id: 0},
        created_at=now,
        updated_at=now,
    )


def firestore_conversation_to_model(doc: dict, conversation_id: str) -> Conversation:
    return Conversation.model_validate({**doc, "id": conversation_id})


def conversation_model_to_firestore(conversation: Conversation) -> dict:
    data = conversation.model_dump(by_alias=True)
    # id is the document ID
    data.pop("id", None)
    return data
