"""End-to-end service tests: send, list, open thread, read state, authorization."""

from __future__ import annotations

import asyncio
import unittest
from datetime import datetime, timezone

from chat_fixtures import StubSocket, new_database, seed_users
from dmchat.errors import AuthorizationError
from dmchat.utils.dependencies import build_chat_service
from dmchat.utils.websocket_manager import RoomChannel


class ChatServiceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = new_database()
        self.alice, self.bob, self.carol = await seed_users(self.db, "Alice", "Bob", "Carol")
        self.rooms = RoomChannel()
        self.service = build_chat_service(self.db, self.rooms)

    async def asyncTearDown(self) -> None:
        await self.rooms.close()

    async def test_reply_then_open_thread_clears_unread(self) -> None:
        await self.service.send_message(self.alice, self.bob, "hello")
        await self.service.send_message(self.bob, self.alice, "hi")

        conversations = await self.service.list_conversations(self.alice, self.alice)
        self.assertEqual(len(conversations), 1)
        self.assertEqual(conversations[0].partner_id, self.bob)
        self.assertEqual(conversations[0].last_message, "hi")
        self.assertEqual(conversations[0].unread_count, 1)
        self.assertEqual(conversations[0].partner.display_name, "Bob")

        thread = await self.service.open_thread(self.alice, self.alice, self.bob)

        self.assertEqual([m.content for m in thread], ["hello", "hi"])
        self.assertIsNotNone(thread[1].read_at)
        self.assertIsNone(thread[0].read_at)
        conversations = await self.service.list_conversations(self.alice, self.alice)
        self.assertEqual(conversations[0].unread_count, 0)
        self.assertEqual(await self.service.unread_total(self.alice, self.alice), 0)

    async def test_second_mark_read_transitions_nothing(self) -> None:
        await self.service.send_message(self.bob, self.alice, "one")
        await self.service.send_message(self.bob, self.alice, "two")

        self.assertEqual(await self.service.mark_read(self.alice, self.alice, self.bob), 2)
        self.assertEqual(await self.service.mark_read(self.alice, self.alice, self.bob), 0)

    async def test_concurrent_tabs_converge(self) -> None:
        for n in range(5):
            await self.service.send_message(self.bob, self.alice, f"msg {n}")

        results = await asyncio.gather(
            self.service.mark_read(self.alice, self.alice, self.bob),
            self.service.mark_read(self.alice, self.alice, self.bob),
            self.service.mark_read(self.alice, self.alice, self.bob),
        )

        self.assertEqual(sum(results), 5)
        self.assertEqual(await self.service.unread_total(self.alice, self.alice), 0)

    async def test_partner_room_receives_read_receipt(self) -> None:
        bob_tab = StubSocket()
        await self.service.send_message(self.bob, self.alice, "seen?")
        await self.rooms.join_room(bob_tab, self.bob)

        await self.service.mark_read(self.alice, self.alice, self.bob)

        self.assertEqual(bob_tab.sent, [
            {"type": "read", "reader_id": self.alice, "partner_id": self.bob, "updated": 1}
        ])

    async def test_background_mark_read_completes_after_view_closes(self) -> None:
        await self.service.send_message(self.bob, self.alice, "later")

        self.service.mark_read_in_background(self.alice, self.alice, self.bob)
        await self.service._read_state.drain()

        self.assertEqual(await self.service.unread_total(self.alice, self.alice), 0)

    async def test_unread_invariant_across_partners(self) -> None:
        await self.service.send_message(self.bob, self.alice, "b1")
        await self.service.send_message(self.carol, self.alice, "c1")
        await self.service.send_message(self.bob, self.alice, "b2")
        await self.service.send_message(self.alice, self.carol, "reply")
        await self.service.mark_read(self.alice, self.alice, self.carol)
        await self.service.send_message(self.carol, self.alice, "c2")

        conversations = await self.service.list_conversations(self.alice, self.alice)

        self.assertEqual(
            sum(c.unread_count for c in conversations),
            await self.service.unread_total(self.alice, self.alice),
        )
        self.assertEqual([c.partner_id for c in conversations], [self.carol, self.bob])

    async def test_search_filters_by_partner_name(self) -> None:
        await self.service.send_message(self.bob, self.alice, "about the lease")
        await self.service.send_message(self.carol, self.alice, "about the deposit")

        matched = await self.service.list_conversations(self.alice, self.alice, search="carol")

        self.assertEqual([c.partner_id for c in matched], [self.carol])

    async def test_catch_up_returns_messages_received_since(self) -> None:
        await self.service.send_message(self.bob, self.alice, "while you were away")
        missed = await self.service.catch_up(self.alice, self.alice, datetime(2000, 1, 1, tzinfo=timezone.utc))
        self.assertEqual([m.content for m in missed], ["while you were away"])

    async def test_unauthenticated_caller_is_rejected(self) -> None:
        with self.assertRaises(AuthorizationError) as ctx:
            await self.service.send_message(None, self.bob, "hello")
        self.assertFalse(ctx.exception.authenticated)
        self.assertEqual(await self.db["messages"].count_documents({}), 0)

    async def test_non_participant_cannot_read_or_mark(self) -> None:
        await self.service.send_message(self.bob, self.alice, "private")

        with self.assertRaises(AuthorizationError):
            await self.service.list_conversations(self.carol, self.alice)
        with self.assertRaises(AuthorizationError):
            await self.service.mark_read(self.carol, self.alice, self.bob)
        with self.assertRaises(AuthorizationError):
            await self.service.open_thread(self.carol, self.alice, self.bob)
        self.assertEqual(await self.service.unread_total(self.alice, self.alice), 1)


if __name__ == "__main__":
    unittest.main()
