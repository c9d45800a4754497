from typing import Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from dmchat.errors import PersistenceError
from dmchat.models.user import UserDocument


class UserRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db["users"]

    async def get_user_by_id(self, user_id: str) -> Optional[UserDocument]:
        key = _to_key(user_id)
        try:
            user = await self._collection.find_one({"_id": key})
        except PyMongoError as exc:
            raise PersistenceError(f"Could not look up user: {exc}") from exc
        if user:
            user["_id"] = str(user["_id"])  # normalize to string for API layer
        return user

    async def get_users_by_ids(self, user_ids: Iterable[str]) -> List[UserDocument]:
        keys = [_to_key(uid) for uid in set(user_ids)]
        if not keys:
            return []
        try:
            cursor = self._collection.find({"_id": {"$in": keys}})
            users = await cursor.to_list(length=len(keys))
        except PyMongoError as exc:
            raise PersistenceError(f"Could not look up users: {exc}") from exc
        for user in users:
            user["_id"] = str(user["_id"])
        return users


def _to_key(user_id: str):
    # users created by the auth service carry ObjectIds; imported ones keep string ids
    try:
        return ObjectId(user_id)
    except InvalidId:
        return user_id
