from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Message(BaseModel):
    """A stored direct message. Only ``read_at`` ever changes after insert."""

    model_config = ConfigDict(frozen=True)

    id: str
    sender_id: str
    recipient_id: str
    content: str
    subject: Optional[str] = None
    message_type: str = "direct"
    created_at: datetime
    read_at: Optional[datetime] = None

    @field_validator("created_at", "read_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # BSON dates come back naive
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Message":
        return cls(
            id=str(doc["_id"]),
            sender_id=doc["sender_id"],
            recipient_id=doc["recipient_id"],
            content=doc["content"],
            subject=doc.get("subject"),
            message_type=doc.get("message_type", "direct"),
            created_at=doc["created_at"],
            read_at=doc.get("read_at"),
        )

    @property
    def sort_key(self) -> tuple:
        return (self.created_at, self.id)

    def involves(self, user_id: str) -> bool:
        return user_id in (self.sender_id, self.recipient_id)

    def partner_of(self, viewer_id: str) -> str:
        return self.recipient_id if self.sender_id == viewer_id else self.sender_id


class SendMessageRequest(BaseModel):

    recipient_id: str = Field(min_length=1)
    content: str
    subject: Optional[str] = None
    client_message_id: Optional[str] = None


class MessageFrame(BaseModel):
    """``{"type": "message"}`` frame received on the chat socket."""

    type: Literal["message"] = "message"
    to: str = Field(min_length=1)
    content: str
    subject: Optional[str] = None
    client_message_id: Optional[str] = None


class ReadFrame(BaseModel):

    type: Literal["read"]
    partner_id: str = Field(min_length=1)


class DeliveryState(str, Enum):

    CREATED = "created"
    NOTIFY_ATTEMPTED = "notify_attempted"
    NOTIFIED = "notified"
    NOTIFY_SKIPPED = "notify_skipped"


class DeliveryReceipt(BaseModel):

    message: Message
    state: DeliveryState
    receivers: int = 0
    client_message_id: Optional[str] = None
