# foodcart/services/push_channel.py
import asyncio
from typing import Dict, Set

import redis.asyncio as aioredis

from foodcart.domain.gateways import PushChannel, PushHandler, Subscription
from foodcart.utils.settings import REDIS_URL
from foodcart.utils.logging import get_logger

logger = get_logger(__name__)


def channel_name(key: str) -> str:
    return f"cart:{key}"


class _HandlerSubscription(Subscription):
    def __init__(self, channel: "PushChannel", key: str, handler: PushHandler):
        self._channel = channel
        self.key = key
        self.handler = handler
        self.active = True

    async def release(self) -> None:
        if not self.active:
            return
        self.active = False
        await self._channel._remove(self.key, self.handler)


class InMemoryPushChannel(PushChannel):
    """Push channel for a single process (and for tests)."""

    def __init__(self):
        self._subscribers: Dict[str, Set[PushHandler]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, key: str, handler: PushHandler) -> Subscription:
        async with self._lock:
            self._subscribers.setdefault(key, set()).add(handler)
            logger.debug(f"Subscribed to {channel_name(key)}, total: {len(self._subscribers[key])}")
        return _HandlerSubscription(self, key, handler)

    async def publish(self, key: str) -> None:
        handlers = self._subscribers.get(key, set()).copy()
        for handler in handlers:
            try:
                await handler(key)
            except Exception as e:
                logger.error(f"Handler error in channel {channel_name(key)}: {e}")

    async def _remove(self, key: str, handler: PushHandler) -> None:
        async with self._lock:
            if key in self._subscribers:
                self._subscribers[key].discard(handler)
                if not self._subscribers[key]:
                    del self._subscribers[key]

    async def close(self) -> None:
        self._subscribers.clear()


class RedisPushChannel(PushChannel):
    """
    "Cart changed" signals over Redis pub/sub, one channel per cart key.
    The message body is ignored; receiving anything on cart:{key} means reload.
    """

    def __init__(self, url: str | None = None, client=None, poll_timeout: float = 1.0):
        self._url = url or REDIS_URL
        self._redis = client
        self._pubsub = None
        self._subscribers: Dict[str, Set[PushHandler]] = {}
        self._listener_task: asyncio.Task | None = None
        self._running = False
        self._poll_timeout = poll_timeout

    async def _ensure_connected(self) -> None:
        if self._redis is None:
            self._redis = aioredis.from_url(self._url, decode_responses=True)
        if self._pubsub is None:
            self._pubsub = self._redis.pubsub()
            self._running = True
            self._listener_task = asyncio.create_task(self._listen())

    async def _listen(self) -> None:
        while self._running and self._pubsub:
            try:
                if not self._subscribers:
                    # get_message on a pubsub without channels raises
                    await asyncio.sleep(self._poll_timeout)
                    continue

                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=self._poll_timeout
                )
                if not message or message["type"] != "message":
                    continue

                channel = message["channel"]
                if isinstance(channel, bytes):
                    channel = channel.decode()
                key = channel.split(":", 1)[1] if ":" in channel else channel

                for handler in self._subscribers.get(key, set()).copy():
                    try:
                        await handler(key)
                    except Exception as e:
                        logger.error(f"Handler error in channel {channel}: {e}")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Redis listener error: {e}")
                await asyncio.sleep(self._poll_timeout)

    async def subscribe(self, key: str, handler: PushHandler) -> Subscription:
        await self._ensure_connected()

        if key not in self._subscribers:
            self._subscribers[key] = set()
            await self._pubsub.subscribe(channel_name(key))
            logger.info(f"Subscribed to {channel_name(key)}")

        self._subscribers[key].add(handler)
        return _HandlerSubscription(self, key, handler)

    async def publish(self, key: str) -> None:
        await self._ensure_connected()
        await self._redis.publish(channel_name(key), "changed")

    async def _remove(self, key: str, handler: PushHandler) -> None:
        if key in self._subscribers:
            self._subscribers[key].discard(handler)
            if not self._subscribers[key]:
                del self._subscribers[key]
                if self._pubsub:
                    await self._pubsub.unsubscribe(channel_name(key))
                    logger.info(f"Unsubscribed from {channel_name(key)}")

    async def close(self) -> None:
        self._running = False
        if self._listener_task:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None
        if self._pubsub:
            await self._pubsub.aclose()
            self._pubsub = None
        if self._redis:
            await self._redis.aclose()
            self._redis = None
