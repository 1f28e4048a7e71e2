"""
Chat service

Every messaging operation lives here exactly once. The REST routes and the
realtime gateway are thin adapters over this class, so participant checks,
unread bookkeeping and read receipts behave the same on both paths.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from clinic_chat.config import settings as default_settings
from clinic_chat.exceptions import Forbidden, NotFound, ValidationFailed
from clinic_chat.models.conversation import (
    Conversation,
    DoctorDetails,
    PatientDetails,
    conversation_id_for,
    new_conversation,
)
from clinic_chat.models.message import Message, SenderType
from clinic_chat.models.user import User, UserRole
from clinic_chat.services.chat_store import ChatStore

logger = logging.getLogger(__name__)


@dataclass
class MessagePage:
    messages: List[Message]
    current_page: int
    page_size: int
    total_messages: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_messages / self.page_size) if self.page_size else 0

    @property
    def has_more(self) -> bool:
        offset = (self.current_page - 1) * self.page_size
        return offset + len(self.messages) < self.total_messages


class ChatService:
    """Conversation and message operations shared by both transports"""

    def __init__(self, store: ChatStore, directory, settings=None):
        self.store = store
        self.directory = directory
        self.settings = settings or default_settings

    async def require_conversation(self, conversation_id: str, user_id: str) -> Conversation:
        """
        Load a conversation the user participates in.

        Raises:
            ValidationFailed: no id given
            NotFound: the conversation does not exist
            Forbidden: the user is not one of its participants
        """
        if not conversation_id:
            raise ValidationFailed("Conversation ID is required")
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFound("Conversation", conversation_id)
        if not conversation.is_participant(user_id):
            raise Forbidden()
        return conversation

    async def list_conversations(self, user_id: str) -> List[Conversation]:
        return await self.store.list_conversations(
            user_id, limit=self.settings.CONVERSATION_LIST_LIMIT)

    async def get_or_create_conversation(
        self, requester: User, other_party_id: Optional[str]
    ) -> Tuple[Conversation, bool]:
        """
        Return the conversation between the requester and the other party,
        creating it on first contact.

        A patient names the doctor; a doctor names the patient. Display details
        of both sides are copied into the conversation when it is created.
        """
        if not other_party_id:
            raise ValidationFailed("Doctor ID is required")
        if other_party_id == requester.uid:
            raise ValidationFailed("Cannot start a conversation with yourself")
        if requester.role == UserRole.ADMIN:
            raise Forbidden("Only patients and doctors can start conversations")

        if requester.is_doctor:
            patient_id, doctor_id = other_party_id, requester.uid
        else:
            patient_id, doctor_id = requester.uid, other_party_id

        existing = await self.store.get_conversation(
            conversation_id_for(patient_id, doctor_id))
        if existing is not None:
            return existing, False

        patient = await self.directory.get_user(patient_id)
        if patient is None:
            raise NotFound("User", patient_id)
        if patient.role != UserRole.PATIENT:
            raise ValidationFailed("Conversations are between a patient and a doctor")
        doctor = await self.directory.get_doctor(doctor_id)
        if doctor is None:
            raise NotFound("Doctor", doctor_id)

        conversation = new_conversation(
            PatientDetails(id=patient.uid, name=patient.name, email=patient.email),
            DoctorDetails(
                id=doctor.user_id,
                name=doctor.full_name,
                email=doctor.email,
                prefix=doctor.prefix,
                specialization=doctor.specialization,
            ),
        )
        stored, created = await self.store.create_conversation(conversation)
        if created:
            logger.info(
                f"Conversation {stored.id} created: patient={patient_id}, doctor={doctor_id}")
        return stored, created

    async def send_message(
        self, conversation_id: str, sender: User, content
    ) -> Tuple[Message, Conversation]:
        """
        Persist a message and update the conversation summary.

        The sender counts as having read their own message; only the other
        participant's unread counter moves.
        """
        text = content.strip() if isinstance(content, str) else ""
        if not text:
            raise ValidationFailed("Message content is required")
        if len(text) > self.settings.MAX_MESSAGE_LENGTH:
            raise ValidationFailed(
                f"Message exceeds {self.settings.MAX_MESSAGE_LENGTH} characters")

        conversation = await self.require_conversation(conversation_id, sender.uid)
        sender_type = (
            SenderType.DOCTOR if sender.uid == conversation.doctor_id else SenderType.PATIENT
        )
        message = Message(
            conversation_id=conversation.id,
            sender_id=sender.uid,
            sender_type=sender_type,
            sender_name=sender.name,
            content=text,
            read_by=[sender.uid],
            is_read=False,
        )
        recipient_id = conversation.other_participant(sender.uid)
        return await self.store.append_message(conversation.id, message, recipient_id)

    async def list_messages(
        self,
        conversation_id: str,
        user_id: str,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> MessagePage:
        if page_size is None:
            page_size = self.settings.MESSAGE_PAGE_SIZE
        if page < 1:
            raise ValidationFailed("page must be at least 1")
        if page_size < 1 or page_size > self.settings.MAX_MESSAGE_PAGE_SIZE:
            raise ValidationFailed(
                f"limit must be between 1 and {self.settings.MAX_MESSAGE_PAGE_SIZE}")

        await self.require_conversation(conversation_id, user_id)
        newest_first, total = await self.store.list_messages(
            conversation_id, offset=(page - 1) * page_size, limit=page_size)
        return MessagePage(
            messages=list(reversed(newest_first)),
            current_page=page,
            page_size=page_size,
            total_messages=total,
        )

    async def mark_conversation_read(self, conversation_id: str, user_id: str) -> int:
        """Acknowledge the other participant's messages and zero the reader's unread count."""
        conversation = await self.require_conversation(conversation_id, user_id)
        changed = await self.store.mark_read(conversation, user_id)
        logger.info(
            f"User {user_id} read conversation {conversation_id} ({changed} messages)")
        return changed

    async def delete_conversation(self, conversation_id: str, user_id: str) -> int:
        await self.require_conversation(conversation_id, user_id)
        removed = await self.store.delete_conversation(conversation_id)
        logger.info(
            f"Conversation {conversation_id} deleted by {user_id} ({removed} messages)")
        return removed
