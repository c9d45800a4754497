import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dmchat.config import Settings, get_settings
from dmchat.database.connection import MongoConnection
from dmchat.errors import (
    AuthorizationError,
    MessagingError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from dmchat.repositories.message_repository import MessageRepository
from dmchat.routers.chat import router as chat_router
from dmchat.routers.conversations import router as conversations_router
from dmchat.routers.presence import router as presence_router
from dmchat.utils.dependencies import build_chat_service
from dmchat.utils.log_config import configure_logging
from dmchat.utils.realtime_bus import build_bus
from dmchat.utils.websocket_manager import RoomChannel


logger = logging.getLogger(__name__)


def error_status(exc: MessagingError) -> int:
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, AuthorizationError):
        return 403 if exc.authenticated else 401
    if isinstance(exc, PersistenceError):
        return 503
    return 500


async def messaging_error_handler(request: Request, exc: MessagingError) -> JSONResponse:
    status_code = error_status(exc)
    if status_code >= 500:
        logger.error("request.failed path=%s error=%s", request.url.path, exc)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(status_code=status_code, content={"detail": str(exc)}, headers=headers)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        mongo = MongoConnection(settings.mongo_url, settings.mongo_db_name)
        db = await mongo.open()
        await MessageRepository(db).ensure_indexes()
        bus = build_bus(settings.redis_url)
        rooms = RoomChannel(bus, multi_join=settings.room_multi_join)
        app.state.mongo = mongo
        app.state.rooms = rooms
        app.state.chat_service = build_chat_service(db, rooms, settings.notify_max_attempts)
        try:
            yield
        finally:
            await app.state.chat_service.drain()
            await rooms.close()
            await bus.close()
            await mongo.close()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.add_exception_handler(MessagingError, messaging_error_handler)
    app.include_router(chat_router)
    app.include_router(conversations_router)
    app.include_router(presence_router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
