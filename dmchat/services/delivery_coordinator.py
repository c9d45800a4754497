import asyncio
import logging
from typing import Dict, Optional, Tuple

from dmchat.errors import BroadcastError, ValidationError
from dmchat.schemas.message import DeliveryReceipt, DeliveryState, Message
from dmchat.services.message_store import MessageStore
from dmchat.utils.websocket_manager import RoomChannel


logger = logging.getLogger(__name__)


def new_message_event(message: Message) -> dict:
    return {"type": "message", "message": message.model_dump(mode="json")}


class DeliveryCoordinator:
    """Persist first, then nudge the recipient's room.

    The insert is the commit point. The notify step never gates or reverses
    it: a failed or unheard notification still yields a successful receipt,
    and the recipient picks the message up on the next query.
    """

    def __init__(self, store: MessageStore, channel: RoomChannel, notify_max_attempts: int = 1) -> None:
        self._store = store
        self._channel = channel
        self._notify_max_attempts = max(1, notify_max_attempts)
        self._pending: Dict[Tuple[str, str], asyncio.Future] = {}

    async def send(
        self,
        sender_id: str,
        recipient_id: str,
        content: str,
        subject: Optional[str] = None,
        client_message_id: Optional[str] = None,
    ) -> DeliveryReceipt:
        if client_message_id is not None and not isinstance(client_message_id, str):
            raise ValidationError("client_message_id must be a string")
        if not client_message_id:
            return await self._dispatch(sender_id, recipient_id, content, subject, None)

        key = (sender_id, client_message_id)
        pending = self._pending.get(key)
        if pending is not None:
            logger.info("delivery.deduplicated sender_id=%s client_message_id=%s", sender_id, client_message_id)
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(
            self._dispatch(sender_id, recipient_id, content, subject, client_message_id)
        )
        self._pending[key] = task
        task.add_done_callback(lambda _: self._pending.pop(key, None))
        return await asyncio.shield(task)

    async def _dispatch(
        self,
        sender_id: str,
        recipient_id: str,
        content: str,
        subject: Optional[str],
        client_message_id: Optional[str],
    ) -> DeliveryReceipt:
        # any append failure propagates before a notify attempt is made
        message = await self._store.append(sender_id, recipient_id, content, subject)
        state, receivers = await self._notify(message)
        return DeliveryReceipt(
            message=message,
            state=state,
            receivers=receivers,
            client_message_id=client_message_id,
        )

    async def _notify(self, message: Message) -> Tuple[DeliveryState, int]:
        event = new_message_event(message)
        receivers = 0
        for attempt in range(1, self._notify_max_attempts + 1):
            try:
                receivers = await self._channel.publish(message.recipient_id, event)
                break
            except BroadcastError:
                logger.warning(
                    "delivery.notify_failed message_id=%s attempt=%d/%d",
                    message.id,
                    attempt,
                    self._notify_max_attempts,
                    exc_info=True,
                )
        if receivers > 0:
            return DeliveryState.NOTIFIED, receivers
        logger.info("delivery.notify_skipped message_id=%s recipient_id=%s", message.id, message.recipient_id)
        return DeliveryState.NOTIFY_SKIPPED, 0
