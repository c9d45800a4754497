from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response

from dmchat.schemas.conversation import ApiResponse, ConversationSummary, MarkReadResult
from dmchat.schemas.message import Message
from dmchat.services.chat_service import ChatService
from dmchat.utils.dependencies import get_chat_service, get_current_user_id


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.get("", response_model=ApiResponse[List[ConversationSummary]])
async def list_conversations(
    q: Optional[str] = Query(None, max_length=200),
    current_user_id: str = Depends(get_current_user_id),
    service: ChatService = Depends(get_chat_service),
) -> ApiResponse[List[ConversationSummary]]:
    items = await service.list_conversations(current_user_id, current_user_id, search=q)
    return ApiResponse(data=items)


@router.get("/{partner_id}/messages", response_model=ApiResponse[List[Message]])
async def open_thread(
    partner_id: str,
    current_user_id: str = Depends(get_current_user_id),
    service: ChatService = Depends(get_chat_service),
) -> ApiResponse[List[Message]]:
    """Return the thread with ``partner_id`` and mark its incoming messages read."""
    messages = await service.open_thread(current_user_id, current_user_id, partner_id)
    return ApiResponse(data=messages)


@router.post("/{partner_id}/read", response_model=ApiResponse[MarkReadResult])
async def mark_read(
    partner_id: str,
    response: Response,
    wait: bool = Query(True),
    current_user_id: str = Depends(get_current_user_id),
    service: ChatService = Depends(get_chat_service),
) -> ApiResponse[MarkReadResult]:
    """Mark the thread read. With ``wait=false`` the update is queued and 202 is returned."""
    if not wait:
        service.mark_read_in_background(current_user_id, current_user_id, partner_id)
        response.status_code = 202
        return ApiResponse(data=MarkReadResult(partner_id=partner_id))
    updated = await service.mark_read(current_user_id, current_user_id, partner_id)
    return ApiResponse(data=MarkReadResult(partner_id=partner_id, updated=updated))
