from datetime import datetime
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

from dmchat.schemas.user import UserProfile


T = TypeVar("T")


class ConversationSummary(BaseModel):
    """Derived view of the messages between a viewer and one partner."""

    partner_id: str
    last_message: str
    last_message_id: str
    last_message_subject: Optional[str] = None
    last_message_time: datetime
    last_sender_id: str
    unread_count: int = 0
    partner: Optional[UserProfile] = None


class MarkReadResult(BaseModel):

    partner_id: str
    # None while a background mark-read is still pending
    updated: Optional[int] = None


class ApiResponse(BaseModel, Generic[T]):
    """JSON envelope for API responses."""

    data: T
