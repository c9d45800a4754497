import logging
from datetime import datetime
from typing import List, Optional

from dmchat.errors import ValidationError
from dmchat.repositories.message_repository import MessageRepository
from dmchat.schemas.message import Message
from dmchat.services.identity_directory import IdentityDirectory


logger = logging.getLogger(__name__)


class MessageStore:
    """Append-only log of direct messages; the only source consulted for correctness."""

    def __init__(self, message_repo: MessageRepository, directory: IdentityDirectory) -> None:
        self._message_repo = message_repo
        self._directory = directory

    async def append(self, sender_id: str, recipient_id: str, content: str, subject: Optional[str] = None) -> Message:
        """Validate and persist one message.

        Raises ``ValidationError`` for empty content or a self-addressed message,
        ``NotFoundError`` when the recipient does not resolve, and
        ``PersistenceError`` when the insert fails. Nothing is written on error.
        """
        # ids reach Mongo filters, so anything but a string is refused up front
        if not isinstance(sender_id, str) or not isinstance(recipient_id, str):
            raise ValidationError("Sender and recipient ids must be strings")
        if subject is not None and not isinstance(subject, str):
            raise ValidationError("Subject must be a string")
        text = content.strip() if isinstance(content, str) else ""
        if not text:
            raise ValidationError("Message content cannot be empty")
        if not sender_id or not recipient_id:
            raise ValidationError("Sender and recipient are required")
        if sender_id == recipient_id:
            raise ValidationError("Cannot send a message to yourself")
        await self._directory.resolve(recipient_id)

        subject = (subject or "").strip() or None
        doc = await self._message_repo.insert_message(sender_id, recipient_id, text, subject)
        message = Message.from_document(doc)
        logger.info(
            "message.appended message_id=%s sender_id=%s recipient_id=%s",
            message.id,
            sender_id,
            recipient_id,
        )
        return message

    async def query(self, viewer_id: str) -> List[Message]:
        docs = await self._message_repo.find_for_user(viewer_id)
        return [Message.from_document(doc) for doc in docs]

    async def thread(self, viewer_id: str, partner_id: str) -> List[Message]:
        docs = await self._message_repo.find_between(viewer_id, partner_id)
        return [Message.from_document(doc) for doc in docs]

    async def received_since(self, viewer_id: str, since: datetime) -> List[Message]:
        docs = await self._message_repo.find_received_since(viewer_id, since)
        return [Message.from_document(doc) for doc in docs]

    async def mark_read(self, viewer_id: str, partner_id: str) -> int:
        return await self._message_repo.mark_read(recipient_id=viewer_id, sender_id=partner_id)

    async def unread_total(self, viewer_id: str) -> int:
        return await self._message_repo.count_unread(viewer_id)
