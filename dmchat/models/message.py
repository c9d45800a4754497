from datetime import datetime
from typing import Literal, Optional, TypedDict


MessageType = Literal["direct"]


class MessageDocument(TypedDict, total=False):
    _id: str
    sender_id: str
    recipient_id: str
    content: str
    subject: Optional[str]
    message_type: MessageType
    created_at: datetime
    # one-way: null until the recipient opens the thread
    read_at: Optional[datetime]
