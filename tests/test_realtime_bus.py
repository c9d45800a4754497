"""Tests for the pub/sub transport wrappers."""

from __future__ import annotations

import unittest

from redis.exceptions import ConnectionError as RedisConnectionError

from dmchat.errors import BroadcastError
from dmchat.utils.realtime_bus import NoopBus, RedisBus, build_bus


class _StubRedis:
    def __init__(self, receivers: int = 0, fail: bool = False) -> None:
        self.receivers = receivers
        self.fail = fail
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel: str, message: str) -> int:
        if self.fail:
            raise RedisConnectionError("connection refused")
        self.published.append((channel, message))
        return self.receivers


class RealtimeBusTests(unittest.IsolatedAsyncioTestCase):
    def test_no_url_means_local_only(self) -> None:
        bus = build_bus(None)
        self.assertIsInstance(bus, NoopBus)
        self.assertFalse(bus.enabled)

    async def test_noop_publish_reaches_nobody(self) -> None:
        self.assertEqual(await NoopBus().publish("room:alice", "{}"), 0)

    async def test_redis_publish_returns_receiver_count(self) -> None:
        client = _StubRedis(receivers=2)
        bus = RedisBus(client)

        self.assertEqual(await bus.publish("room:alice", '{"type": "message"}'), 2)
        self.assertEqual(client.published, [("room:alice", '{"type": "message"}')])

    async def test_redis_failure_becomes_broadcast_error(self) -> None:
        bus = RedisBus(_StubRedis(fail=True))
        with self.assertRaises(BroadcastError):
            await bus.publish("room:alice", "{}")


if __name__ == "__main__":
    unittest.main()
