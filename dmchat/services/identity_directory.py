from typing import Dict, Iterable

from dmchat.errors import NotFoundError
from dmchat.models.user import UserDocument
from dmchat.repositories.user_repository import UserRepository
from dmchat.schemas.user import UserProfile


class IdentityDirectory:
    """Resolves opaque user ids to profiles; the messaging core only compares ids."""

    def __init__(self, user_repo: UserRepository) -> None:
        self._user_repo = user_repo

    async def resolve(self, user_id: str) -> UserProfile:
        user = await self._user_repo.get_user_by_id(user_id)
        if not user:
            raise NotFoundError(f"Unknown user: {user_id}")
        return _to_profile(user)

    async def profiles(self, user_ids: Iterable[str]) -> Dict[str, UserProfile]:
        users = await self._user_repo.get_users_by_ids(user_ids)
        return {user["_id"]: _to_profile(user) for user in users}


def _to_profile(user: UserDocument) -> UserProfile:
    return UserProfile(
        id=user["_id"],
        full_name=user.get("full_name"),
        email=user.get("email"),
        avatar_url=user.get("avatar_url"),
        role=user.get("role"),
    )
