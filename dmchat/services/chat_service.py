from datetime import datetime
from typing import List, Optional

from dmchat.errors import AuthorizationError
from dmchat.schemas.conversation import ConversationSummary
from dmchat.schemas.message import DeliveryReceipt, Message
from dmchat.services.conversation_aggregator import ConversationIndex, filter_conversations
from dmchat.services.delivery_coordinator import DeliveryCoordinator
from dmchat.services.identity_directory import IdentityDirectory
from dmchat.services.message_store import MessageStore
from dmchat.services.read_state import ReadStateTracker


class ChatService:
    """Entry point for routers. Every call is checked against the authenticated caller."""

    def __init__(
        self,
        store: MessageStore,
        directory: IdentityDirectory,
        coordinator: DeliveryCoordinator,
        read_state: ReadStateTracker,
    ) -> None:
        self._store = store
        self._directory = directory
        self._coordinator = coordinator
        self._read_state = read_state

    async def send_message(
        self,
        caller_id: Optional[str],
        recipient_id: str,
        content: str,
        subject: Optional[str] = None,
        client_message_id: Optional[str] = None,
    ) -> DeliveryReceipt:
        sender_id = _require_caller(caller_id)
        return await self._coordinator.send(sender_id, recipient_id, content, subject, client_message_id)

    async def list_conversations(
        self, caller_id: Optional[str], viewer_id: str, search: Optional[str] = None
    ) -> List[ConversationSummary]:
        _authorize(caller_id, viewer_id)
        index = ConversationIndex(viewer_id)
        for message in await self._store.query(viewer_id):
            index.apply(message)
        summaries = index.summaries()
        if summaries:
            profiles = await self._directory.profiles(s.partner_id for s in summaries)
            index.attach_profiles(profiles)
        return filter_conversations(summaries, search)

    async def open_thread(self, caller_id: Optional[str], viewer_id: str, partner_id: str) -> List[Message]:
        _authorize(caller_id, viewer_id)
        return await self._read_state.open_thread(viewer_id, partner_id)

    async def mark_read(self, caller_id: Optional[str], viewer_id: str, partner_id: str) -> int:
        _authorize(caller_id, viewer_id)
        return await self._read_state.mark_read(viewer_id, partner_id)

    def mark_read_in_background(self, caller_id: Optional[str], viewer_id: str, partner_id: str) -> None:
        _authorize(caller_id, viewer_id)
        self._read_state.mark_read_in_background(viewer_id, partner_id)

    async def drain(self) -> None:
        await self._read_state.drain()

    async def unread_total(self, caller_id: Optional[str], viewer_id: str) -> int:
        _authorize(caller_id, viewer_id)
        return await self._store.unread_total(viewer_id)

    async def catch_up(self, caller_id: Optional[str], viewer_id: str, since: datetime) -> List[Message]:
        _authorize(caller_id, viewer_id)
        return await self._store.received_since(viewer_id, since)


def _require_caller(caller_id: Optional[str]) -> str:
    if not caller_id:
        raise AuthorizationError("Not authenticated", authenticated=False)
    return caller_id


def _authorize(caller_id: Optional[str], viewer_id: str) -> str:
    caller = _require_caller(caller_id)
    if caller != viewer_id:
        raise AuthorizationError("Not a participant of this conversation")
    return caller
