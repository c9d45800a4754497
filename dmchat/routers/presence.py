from fastapi import APIRouter, Depends

from dmchat.utils.dependencies import get_current_user_id, get_room_channel
from dmchat.utils.websocket_manager import RoomChannel


router = APIRouter(prefix="/presence", tags=["chat"])


@router.get("/{user_id}")
async def presence(
    user_id: str,
    _: str = Depends(get_current_user_id),
    rooms: RoomChannel = Depends(get_room_channel),
):
    """
    Online means at least one live session has joined the user's room in this process.
    """
    return {"user_id": user_id, "online": rooms.is_online(user_id)}
