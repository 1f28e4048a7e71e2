"""
Realtime chat socket

Connect with `/ws/chat?token=<jwt>`, or offer the subprotocols
`["bearer", "<jwt>"]`. Frames are JSON objects `{"event": ..., "data": {...}}`.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket

from clinic_chat.dependencies import get_gateway

router = APIRouter(tags=["realtime"])


@router.websocket("/ws/chat")
async def chat_socket(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    gateway=Depends(get_gateway),
):
    await gateway.serve(websocket, token)
