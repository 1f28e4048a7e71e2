"""
Chat Query API

Request/response access to conversations and message history. Every route
delegates to ChatService, the same code path the realtime gateway uses.
ChatError subclasses raised below are rendered by the handler in main.py.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status

from clinic_chat.dependencies import (
    get_chat_service,
    get_current_user,
    get_gateway,
    get_presence,
)
from clinic_chat.models.user import User
from clinic_chat.schemas.chat import (
    ApiResponse,
    ConversationCreateSchema,
    ConversationResponse,
    MessagePageResponse,
    Pagination,
    PresenceResponse,
)
from clinic_chat.services.chat_service import ChatService

router = APIRouter(prefix="/api/v1/chat", tags=["chat"])


@router.get("/conversations", response_model=ApiResponse[List[ConversationResponse]])
async def list_conversations(
    user: User = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service),
):
    """Conversations of the current user, most recent message first."""
    conversations = await chat_service.list_conversations(user.uid)
    return ApiResponse(
        message="Conversations fetched successfully",
        data=[ConversationResponse.from_model(c) for c in conversations],
    )


@router.post("/conversations", response_model=ApiResponse[ConversationResponse])
async def get_or_create_conversation(
    payload: ConversationCreateSchema,
    response: Response,
    user: User = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service),
):
    """
    Get the conversation with a doctor (or, for a doctor, with a patient),
    creating it on first contact.

    Returns 201 when the conversation was created, 200 when it already existed.
    """
    conversation, created = await chat_service.get_or_create_conversation(
        user, payload.other_party_id)
    if created:
        response.status_code = status.HTTP_201_CREATED
    return ApiResponse(
        message="Conversation created successfully" if created
        else "Conversation retrieved successfully",
        data=ConversationResponse.from_model(conversation),
    )


@router.get("/conversations/{conversation_id}", response_model=ApiResponse[ConversationResponse])
async def get_conversation(
    conversation_id: str,
    user: User = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service),
):
    conversation = await chat_service.require_conversation(conversation_id, user.uid)
    return ApiResponse(
        message="Conversation retrieved successfully",
        data=ConversationResponse.from_model(conversation),
    )


@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=ApiResponse[MessagePageResponse],
)
async def list_messages(
    conversation_id: str,
    page: int = 1,
    limit: Optional[int] = None,
    user: User = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service),
):
    """
    One page of history, oldest first within the page.

    - **page**: 1-based, page 1 holds the most recent messages
    - **limit**: page size, 1 to MAX_MESSAGE_PAGE_SIZE
    """
    result = await chat_service.list_messages(
        conversation_id, user.uid, page=page, page_size=limit)
    return ApiResponse(
        message="Messages fetched successfully",
        data=MessagePageResponse(
            messages=result.messages,
            pagination=Pagination(
                current_page=result.current_page,
                total_pages=result.total_pages,
                total_messages=result.total_messages,
                has_more=result.has_more,
            ),
        ),
    )


@router.put("/conversations/{conversation_id}/read", response_model=ApiResponse[dict])
async def mark_conversation_read(
    conversation_id: str,
    user: User = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service),
    gateway=Depends(get_gateway),
):
    changed = await chat_service.mark_conversation_read(conversation_id, user.uid)
    # Live peers see the same `messages-read` event as for the socket path
    await gateway.notify_read(conversation_id, user.uid)
    return ApiResponse(
        message="Messages marked as read",
        data={"conversationId": conversation_id, "updated": changed},
    )


@router.delete("/conversations/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: str,
    user: User = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service),
):
    """Hard delete of the conversation and all of its messages."""
    await chat_service.delete_conversation(conversation_id, user.uid)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/presence/{user_id}", response_model=PresenceResponse)
async def get_presence_status(
    user_id: str,
    user: User = Depends(get_current_user),
    presence=Depends(get_presence),
):
    return PresenceResponse(user_id=user_id, online=presence.is_online(user_id))
