"""Tests for persist-then-notify delivery."""

from __future__ import annotations

import asyncio
import unittest

from chat_fixtures import FailingBus, StubSocket, new_database, seed_users
from dmchat.errors import NotFoundError, ValidationError
from dmchat.repositories.message_repository import MessageRepository
from dmchat.repositories.user_repository import UserRepository
from dmchat.schemas.message import DeliveryState
from dmchat.services.delivery_coordinator import DeliveryCoordinator
from dmchat.services.identity_directory import IdentityDirectory
from dmchat.services.message_store import MessageStore
from dmchat.utils.websocket_manager import RoomChannel


class _SpyChannel(RoomChannel):
    def __init__(self) -> None:
        super().__init__()
        self.published: list[tuple[str, dict]] = []

    async def publish(self, room_id, payload):
        self.published.append((room_id, payload))
        return await super().publish(room_id, payload)


class _SlowStore(MessageStore):
    def __init__(self, inner: MessageStore) -> None:
        self._inner = inner
        self.append_calls = 0

    async def append(self, *args, **kwargs):
        self.append_calls += 1
        await asyncio.sleep(0.01)
        return await self._inner.append(*args, **kwargs)


class DeliveryCoordinatorTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = new_database()
        self.alice, self.bob = await seed_users(self.db, "Alice", "Bob")
        self.store = MessageStore(MessageRepository(self.db), IdentityDirectory(UserRepository(self.db)))
        self.rooms = _SpyChannel()
        self.coordinator = DeliveryCoordinator(self.store, self.rooms)

    async def asyncTearDown(self) -> None:
        await self.rooms.close()

    async def test_online_recipient_is_notified(self) -> None:
        bob_tab = StubSocket()
        await self.rooms.join_room(bob_tab, self.bob)

        receipt = await self.coordinator.send(self.alice, self.bob, "hello", client_message_id="c-1")

        self.assertEqual(receipt.state, DeliveryState.NOTIFIED)
        self.assertEqual(receipt.receivers, 1)
        self.assertEqual(receipt.client_message_id, "c-1")
        self.assertEqual(bob_tab.sent[0]["type"], "message")
        self.assertEqual(bob_tab.sent[0]["message"]["id"], receipt.message.id)

    async def test_missed_broadcast_is_recovered_by_query(self) -> None:
        receipt = await self.coordinator.send(self.bob, self.alice, "are you there?")

        self.assertEqual(receipt.state, DeliveryState.NOTIFY_SKIPPED)
        stored = await self.store.query(self.alice)
        self.assertEqual([m.id for m in stored], [receipt.message.id])

    async def test_failed_append_makes_no_notify_attempt(self) -> None:
        with self.assertRaises(ValidationError):
            await self.coordinator.send(self.alice, self.alice, "note to self")
        with self.assertRaises(NotFoundError):
            await self.coordinator.send(self.alice, "000000000000000000000000", "hello?")
        self.assertEqual(self.rooms.published, [])

    async def test_channel_failure_still_reports_success(self) -> None:
        bus = FailingBus()
        rooms = RoomChannel(bus)
        coordinator = DeliveryCoordinator(self.store, rooms, notify_max_attempts=3)

        with self.assertLogs("dmchat.services.delivery_coordinator", level="WARNING"):
            receipt = await coordinator.send(self.alice, self.bob, "still stored")

        self.assertEqual(receipt.state, DeliveryState.NOTIFY_SKIPPED)
        self.assertEqual(bus.publish_calls, 3)
        self.assertEqual(len(await self.store.query(self.bob)), 1)
        await rooms.close()

    async def test_duplicate_pending_send_is_dispatched_once(self) -> None:
        slow = _SlowStore(self.store)
        coordinator = DeliveryCoordinator(slow, self.rooms)

        first, second = await asyncio.gather(
            coordinator.send(self.alice, self.bob, "once", client_message_id="compose-7"),
            coordinator.send(self.alice, self.bob, "once", client_message_id="compose-7"),
        )

        self.assertEqual(slow.append_calls, 1)
        self.assertEqual(first.message.id, second.message.id)
        self.assertEqual(len(await self.store.query(self.alice)), 1)

    async def test_non_string_client_id_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            await self.coordinator.send(self.alice, self.bob, "hello", client_message_id=["c", "1"])
        self.assertEqual(await self.store.query(self.alice), [])
        self.assertEqual(self.rooms.published, [])

    async def test_sends_without_client_id_are_independent(self) -> None:
        await asyncio.gather(
            self.coordinator.send(self.alice, self.bob, "one"),
            self.coordinator.send(self.alice, self.bob, "two"),
        )
        self.assertEqual(len(await self.store.query(self.alice)), 2)


if __name__ == "__main__":
    unittest.main()
