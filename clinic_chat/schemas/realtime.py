from typing import Any, Dict
from pydantic import BaseModel, Field, ConfigDict


class Frame(BaseModel):
    """Envelope of every realtime frame, in both directions"""
    event: str = Field(..., min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)


class ConversationEvent(BaseModel):
    """join-conversation, leave-conversation, typing, stop-typing, mark-read"""
    conversation_id: str = Field(..., alias="conversationId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class SendMessageEvent(ConversationEvent):
    # Trimmed and length-checked by the chat service
    content: str
