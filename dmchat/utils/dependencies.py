from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from motor.motor_asyncio import AsyncIOMotorDatabase
from starlette.requests import HTTPConnection

from dmchat.config import Settings, get_settings
from dmchat.errors import AuthorizationError
from dmchat.repositories.message_repository import MessageRepository
from dmchat.repositories.user_repository import UserRepository
from dmchat.services.chat_service import ChatService
from dmchat.services.delivery_coordinator import DeliveryCoordinator
from dmchat.services.identity_directory import IdentityDirectory
from dmchat.services.message_store import MessageStore
from dmchat.services.read_state import ReadStateTracker
from dmchat.utils.security import decode_access_token
from dmchat.utils.websocket_manager import RoomChannel


bearer = HTTPBearer(auto_error=False)


def build_chat_service(db: AsyncIOMotorDatabase, rooms: RoomChannel, notify_max_attempts: int = 1) -> ChatService:
    # one instance per app so single-flight sees every pending send
    directory = IdentityDirectory(UserRepository(db))
    store = MessageStore(MessageRepository(db), directory)
    coordinator = DeliveryCoordinator(store, rooms, notify_max_attempts=notify_max_attempts)
    return ChatService(store, directory, coordinator, ReadStateTracker(store, rooms))


def get_room_channel(conn: HTTPConnection) -> RoomChannel:
    return conn.app.state.rooms


def get_chat_service(conn: HTTPConnection) -> ChatService:
    return conn.app.state.chat_service


def get_settings_for(conn: HTTPConnection) -> Settings:
    return getattr(conn.app.state, "settings", None) or get_settings()


async def get_current_user_id(
    conn: HTTPConnection,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> str:
    if credentials is None:
        raise AuthorizationError("Not authenticated", authenticated=False)
    return decode_access_token(credentials.credentials, get_settings_for(conn))["sub"]
