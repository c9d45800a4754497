import asyncio
import logging
from typing import Awaitable, Callable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from dmchat.errors import BroadcastError


logger = logging.getLogger(__name__)

OnMessage = Callable[[str], Awaitable[None]]


class NoopSubscription:

    async def run(self) -> None:
        await asyncio.Future()

    async def cancel(self) -> None:
        return


class NoopBus:
    """Single-process transport: nothing crosses the process boundary."""

    enabled = False

    async def publish(self, channel: str, message: str) -> int:
        return 0

    async def subscribe(self, channel: str, on_message: OnMessage) -> NoopSubscription:
        return NoopSubscription()

    async def close(self) -> None:
        return


class RedisSubscription:

    def __init__(self, pubsub, channel: str, on_message: OnMessage) -> None:
        self._pubsub = pubsub
        self._channel = channel
        self._on_message = on_message
        self._running = True

    async def run(self) -> None:
        while self._running:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except RedisError:
                logger.warning("bus.receive_failed channel=%s", self._channel, exc_info=True)
                await asyncio.sleep(0.5)
                continue
            if msg and msg.get("type") == "message":
                data = msg.get("data")
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                await self._on_message(data)

    async def cancel(self) -> None:
        self._running = False
        try:
            await self._pubsub.unsubscribe(self._channel)
            await self._pubsub.aclose()
        except RedisError:
            logger.warning("bus.unsubscribe_failed channel=%s", self._channel, exc_info=True)


class RedisBus:
    """Cross-process fan-out over Redis pub/sub. At-most-once, no persistence."""

    enabled = True

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisBus":
        return cls(redis.from_url(url))

    async def publish(self, channel: str, message: str) -> int:
        try:
            return int(await self._redis.publish(channel, message))
        except RedisError as exc:
            raise BroadcastError(f"Redis publish to {channel} failed: {exc}") from exc

    async def subscribe(self, channel: str, on_message: OnMessage) -> RedisSubscription:
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(channel)
        except RedisError as exc:
            raise BroadcastError(f"Redis subscribe to {channel} failed: {exc}") from exc
        return RedisSubscription(pubsub, channel, on_message)

    async def close(self) -> None:
        await self._redis.aclose()


def build_bus(url: Optional[str]):
    if not url:
        logger.info("bus.disabled reason=no_redis_url")
        return NoopBus()
    return RedisBus.from_url(url)
