import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from dmchat.errors import PersistenceError


logger = logging.getLogger(__name__)


class MongoConnection:
    """Owns one motor client; opened and closed by the application lifespan."""

    def __init__(self, url: str, db_name: str, client: Optional[AsyncIOMotorClient] = None) -> None:
        self._url = url
        self._db_name = db_name
        self._client = client

    @property
    def is_open(self) -> bool:
        return self._client is not None

    async def open(self) -> AsyncIOMotorDatabase:
        if self._client is None:
            self._client = AsyncIOMotorClient(self._url)
        try:
            await self._client.admin.command("ping")
        except PyMongoError as exc:
            raise PersistenceError(f"MongoDB is unreachable: {exc}") from exc
        logger.info("mongo.connected db=%s", self._db_name)
        return self.database

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("mongo.closed db=%s", self._db_name)

    @property
    def database(self) -> AsyncIOMotorDatabase:
        if self._client is None:
            raise PersistenceError("MongoDB connection is not open")
        return self._client[self._db_name]
