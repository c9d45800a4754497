from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from dmchat.errors import PersistenceError
from dmchat.models.message import MessageDocument


CHRONOLOGICAL = [("created_at", ASCENDING), ("_id", ASCENDING)]


def bson_now() -> datetime:
    # BSON dates hold milliseconds; truncate so stored and returned values agree
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        try:
            await self.collection.create_index([("sender_id", ASCENDING), ("created_at", ASCENDING)])
            await self.collection.create_index([("recipient_id", ASCENDING), ("created_at", ASCENDING)])
            await self.collection.create_index(
                [("recipient_id", ASCENDING), ("sender_id", ASCENDING), ("read_at", ASCENDING)]
            )
        except PyMongoError as exc:
            raise PersistenceError(f"Could not create message indexes: {exc}") from exc

    async def insert_message(
        self,
        sender_id: str,
        recipient_id: str,
        content: str,
        subject: Optional[str] = None,
    ) -> MessageDocument:
        doc: MessageDocument = {
            "sender_id": sender_id,
            "recipient_id": recipient_id,
            "content": content,
            "subject": subject,
            "message_type": "direct",
            "created_at": bson_now(),
            "read_at": None,
        }
        try:
            result = await self.collection.insert_one(doc)
        except PyMongoError as exc:
            raise PersistenceError(f"Could not store message: {exc}") from exc
        doc["_id"] = result.inserted_id
        return doc

    async def find_for_user(self, user_id: str) -> List[MessageDocument]:
        query = {"$or": [{"sender_id": user_id}, {"recipient_id": user_id}]}
        return await self._find(query)

    async def find_between(self, user_a: str, user_b: str) -> List[MessageDocument]:
        query = {
            "$or": [
                {"sender_id": user_a, "recipient_id": user_b},
                {"sender_id": user_b, "recipient_id": user_a},
            ]
        }
        return await self._find(query)

    async def find_received_since(self, user_id: str, since: datetime) -> List[MessageDocument]:
        # BSON dates are naive UTC
        since_utc = since.astimezone(timezone.utc).replace(tzinfo=None) if since.tzinfo else since
        return await self._find({"recipient_id": user_id, "created_at": {"$gt": since_utc}})

    async def count_unread(self, recipient_id: str) -> int:
        try:
            return await self.collection.count_documents({"recipient_id": recipient_id, "read_at": None})
        except PyMongoError as exc:
            raise PersistenceError(f"Could not count unread messages: {exc}") from exc

    async def mark_read(self, recipient_id: str, sender_id: str) -> int:
        # set-based and conditional on read_at so concurrent callers converge
        query = {"recipient_id": recipient_id, "sender_id": sender_id, "read_at": None}
        try:
            result = await self.collection.update_many(
                query, {"$set": {"read_at": bson_now()}}
            )
        except PyMongoError as exc:
            raise PersistenceError(f"Could not update read state: {exc}") from exc
        return result.modified_count or 0

    async def _find(self, query: Dict[str, Any]) -> List[MessageDocument]:
        try:
            cursor = self.collection.find(query).sort(CHRONOLOGICAL)
            return await cursor.to_list(length=None)
        except PyMongoError as exc:
            raise PersistenceError(f"Could not query messages: {exc}") from exc
