import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Protocol, Set, Tuple

from dmchat.errors import BroadcastError
from dmchat.utils.realtime_bus import NoopBus


logger = logging.getLogger(__name__)


class ClientContext(Protocol):
    """Anything that can receive a text frame; a Starlette WebSocket in production."""

    async def send_text(self, data: str) -> None:
        ...


def room_channel_name(room_id: str) -> str:
    return f"room:{room_id}"


class RoomChannel:
    """Ephemeral rooms keyed by user id, used for best-effort "new message" nudges.

    Delivery is at-most-once: a context that joins after a broadcast never sees
    it, and nothing is buffered. When the bus is enabled, publishes go through
    it and every process relays to its own local members.
    """

    def __init__(self, bus=None, multi_join: bool = False) -> None:
        self._bus = bus or NoopBus()
        self._multi_join = multi_join
        self._rooms: Dict[str, Set[ClientContext]] = {}
        self._joined: Dict[ClientContext, Set[str]] = {}
        self._subscriptions: Dict[str, Tuple[Any, asyncio.Task]] = {}

    async def join_room(self, context: ClientContext, room_id: str) -> None:
        if not self._multi_join:
            for other in list(self._joined.get(context, ())):
                if other != room_id:
                    await self.leave_room(context, other)
        self._rooms.setdefault(room_id, set()).add(context)
        self._joined.setdefault(context, set()).add(room_id)
        if self._bus.enabled and room_id not in self._subscriptions:
            await self._subscribe(room_id)
        logger.debug("room.joined room_id=%s members=%d", room_id, len(self._rooms[room_id]))

    async def leave_room(self, context: ClientContext, room_id: Optional[str] = None) -> None:
        joined = self._joined.get(context)
        if not joined:
            return
        targets = [room_id] if room_id is not None else list(joined)
        for target in targets:
            if target not in joined:
                continue
            joined.discard(target)
            members = self._rooms.get(target)
            if members is not None:
                members.discard(context)
                if not members:
                    del self._rooms[target]
                    await self._unsubscribe(target)
        if not joined:
            del self._joined[context]

    def rooms_of(self, context: ClientContext) -> Set[str]:
        return set(self._joined.get(context, ()))

    def members(self, room_id: str) -> List[ClientContext]:
        return list(self._rooms.get(room_id, ()))

    def is_online(self, room_id: str) -> bool:
        return bool(self._rooms.get(room_id))

    async def publish(self, room_id: str, payload: Any) -> int:
        """Deliver ``payload`` to the room; raises ``BroadcastError`` if the transport fails."""

        message = payload if isinstance(payload, str) else json.dumps(payload, default=str)
        if self._bus.enabled:
            return await self._bus.publish(room_channel_name(room_id), message)
        return await self._deliver(room_id, message)

    async def broadcast(self, room_id: str, payload: Any) -> int:
        try:
            return await self.publish(room_id, payload)
        except BroadcastError:
            logger.warning("room.broadcast_failed room_id=%s", room_id, exc_info=True)
            return 0

    async def close(self) -> None:
        for room_id in list(self._subscriptions):
            await self._unsubscribe(room_id)
        self._rooms.clear()
        self._joined.clear()

    async def _deliver(self, room_id: str, message: str) -> int:
        delivered = 0
        dead: List[ClientContext] = []
        for context in list(self._rooms.get(room_id, ())):
            try:
                await context.send_text(message)
                delivered += 1
            except Exception:
                logger.warning("room.send_failed room_id=%s", room_id, exc_info=True)
                dead.append(context)
        for context in dead:
            await self.leave_room(context)
        return delivered

    async def _subscribe(self, room_id: str) -> None:
        async def relay(message: str) -> None:
            await self._deliver(room_id, message)

        try:
            subscription = await self._bus.subscribe(room_channel_name(room_id), relay)
        except BroadcastError:
            # retried on the next join to this room
            logger.warning("room.subscribe_failed room_id=%s", room_id, exc_info=True)
            return
        if room_id in self._subscriptions or room_id not in self._rooms:
            # a concurrent join already subscribed, or everyone left meanwhile
            await subscription.cancel()
            return
        task = asyncio.create_task(subscription.run())
        self._subscriptions[room_id] = (subscription, task)

    async def _unsubscribe(self, room_id: str) -> None:
        entry = self._subscriptions.pop(room_id, None)
        if entry is None:
            return
        subscription, task = entry
        await subscription.cancel()
        task.cancel()
