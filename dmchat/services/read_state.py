import asyncio
import logging
from typing import List, Set

from dmchat.schemas.message import Message
from dmchat.services.message_store import MessageStore
from dmchat.utils.websocket_manager import RoomChannel


logger = logging.getLogger(__name__)


class ReadStateTracker:
    """Moves messages from unread to read when a viewer opens a thread.

    The transition is one-way and set-based, so concurrent calls from several
    sessions of the same viewer converge to the same final state.
    """

    def __init__(self, store: MessageStore, channel: RoomChannel) -> None:
        self._store = store
        self._channel = channel
        self._background: Set[asyncio.Task] = set()

    async def open_thread(self, viewer_id: str, partner_id: str) -> List[Message]:
        await self.mark_read(viewer_id, partner_id)
        return await self._store.thread(viewer_id, partner_id)

    async def mark_read(self, viewer_id: str, partner_id: str) -> int:
        updated = await self._store.mark_read(viewer_id, partner_id)
        if updated:
            logger.info("read_state.marked viewer_id=%s partner_id=%s updated=%d", viewer_id, partner_id, updated)
            await self._channel.broadcast(
                partner_id,
                {"type": "read", "reader_id": viewer_id, "partner_id": partner_id, "updated": updated},
            )
        return updated

    def mark_read_in_background(self, viewer_id: str, partner_id: str) -> asyncio.Task:
        # may outlive the view that started it
        task = asyncio.create_task(self._mark_read_logged(viewer_id, partner_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _mark_read_logged(self, viewer_id: str, partner_id: str) -> int:
        try:
            return await self.mark_read(viewer_id, partner_id)
        except Exception:
            logger.exception("read_state.background_failed viewer_id=%s partner_id=%s", viewer_id, partner_id)
            return 0
