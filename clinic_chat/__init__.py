"""
Clinic Chat Backend Application Package
"""

from clinic_chat.utils.security import (
    create_access_token,
    decode_token,
    verify_access_token,
)
from clinic_chat.models.user import User, UserRole
from clinic_chat.models.conversation import Conversation
from clinic_chat.models.message import Message
__version__ = "1.0.0"
__app_name__ = "Clinic Chat Backend"
