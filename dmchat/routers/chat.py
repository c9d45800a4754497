import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError

from dmchat.errors import AuthorizationError, MessagingError
from dmchat.schemas.conversation import ApiResponse
from dmchat.schemas.message import DeliveryReceipt, MessageFrame, ReadFrame, SendMessageRequest
from dmchat.services.chat_service import ChatService
from dmchat.services.delivery_coordinator import new_message_event
from dmchat.utils.dependencies import get_chat_service, get_current_user_id, get_room_channel, get_settings_for
from dmchat.utils.security import decode_access_token
from dmchat.utils.websocket_manager import RoomChannel


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["chat"])


@router.post("", response_model=ApiResponse[DeliveryReceipt], status_code=201)
async def send_message(
    payload: SendMessageRequest,
    current_user_id: str = Depends(get_current_user_id),
    service: ChatService = Depends(get_chat_service),
) -> ApiResponse[DeliveryReceipt]:
    receipt = await service.send_message(
        current_user_id,
        payload.recipient_id,
        payload.content,
        subject=payload.subject,
        client_message_id=payload.client_message_id,
    )
    return ApiResponse(data=receipt)


@router.get("/unread", response_model=ApiResponse[Dict[str, int]])
async def get_unread(
    current_user_id: str = Depends(get_current_user_id),
    service: ChatService = Depends(get_chat_service),
) -> ApiResponse[Dict[str, int]]:
    count = await service.unread_total(current_user_id, current_user_id)
    return ApiResponse(data={"unread": count})


@router.websocket("/ws/{user_id}")
async def chat_socket(
    websocket: WebSocket,
    user_id: str,
    service: ChatService = Depends(get_chat_service),
    rooms: RoomChannel = Depends(get_room_channel),
):
    # token comes in the query string: ?token=...
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401)
        return
    try:
        claims = decode_access_token(token, get_settings_for(websocket))
    except AuthorizationError:
        await websocket.close(code=4401)
        return
    if claims["sub"] != user_id:
        await websocket.close(code=4403)
        return

    await websocket.accept()
    await rooms.join_room(websocket, user_id)
    try:
        resume_since = websocket.query_params.get("resume_since")
        if resume_since:
            await _send_catch_up(websocket, service, user_id, resume_since)

        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                await websocket.send_json({"type": "error", "detail": "Frames must be JSON objects"})
                continue
            if not isinstance(frame, dict):
                await websocket.send_json({"type": "error", "detail": "Frames must be JSON objects"})
                continue
            reply = await _handle_frame(service, user_id, frame)
            if reply is not None:
                await websocket.send_json(reply)
    except WebSocketDisconnect:
        logger.debug("ws.disconnected user_id=%s", user_id)
    finally:
        await rooms.leave_room(websocket)


async def _send_catch_up(websocket: WebSocket, service: ChatService, user_id: str, resume_since: str) -> None:
    try:
        since = datetime.fromtimestamp(int(resume_since) / 1000.0, tz=timezone.utc)
    except (ValueError, OverflowError):
        await websocket.send_json({"type": "error", "detail": "resume_since must be epoch milliseconds"})
        return
    try:
        missed = await service.catch_up(user_id, user_id, since)
    except MessagingError as exc:
        await websocket.send_json({"type": "error", "detail": str(exc)})
        return
    for message in missed:
        await websocket.send_json(new_message_event(message))


async def _handle_frame(service: ChatService, user_id: str, frame: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    kind = frame.get("type", "message")
    try:
        if kind == "message":
            incoming = MessageFrame.model_validate(frame)
            receipt = await service.send_message(
                user_id,
                incoming.to,
                incoming.content,
                subject=incoming.subject,
                client_message_id=incoming.client_message_id,
            )
            return {"type": "ack", **receipt.model_dump(mode="json")}
        if kind == "read":
            read = ReadFrame.model_validate(frame)
            updated = await service.mark_read(user_id, user_id, read.partner_id)
            return {"type": "read_ack", "partner_id": read.partner_id, "updated": updated}
    except PydanticValidationError as exc:
        return {"type": "error", "kind": "ValidationError", "detail": _describe(exc)}
    except MessagingError as exc:
        return {"type": "error", "kind": type(exc).__name__, "detail": str(exc)}
    return {"type": "error", "detail": f"Unknown frame type: {kind}"}


def _describe(exc: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
