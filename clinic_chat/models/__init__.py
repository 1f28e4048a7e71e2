"""
Data models for Clinic Chat
"""
from clinic_chat.models.user import User, UserRole
from clinic_chat.models.doctor import Doctor
from clinic_chat.models.conversation import Conversation, ConversationSummary
from clinic_chat.models.message import Message, SenderType

__all__ = [
    "User", "UserRole", "Doctor", "Conversation", "ConversationSummary",
    "Message", "SenderType",
]
