from typing import Optional

from pydantic import BaseModel


class UserProfile(BaseModel):

    id: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    role: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or "Unknown User"
