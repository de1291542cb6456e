import asyncio

import pytest

from foodcart.services.push_channel import InMemoryPushChannel, RedisPushChannel, channel_name


class FakePubSub:
    def __init__(self):
        self.channels = set()
        self.queue = asyncio.Queue()
        self.closed = False

    async def subscribe(self, *channels):
        self.channels.update(channels)

    async def unsubscribe(self, *channels):
        self.channels.difference_update(channels)

    async def get_message(self, ignore_subscribe_messages=False, timeout=None):
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    async def aclose(self):
        self.closed = True


class FakeRedis:
    def __init__(self):
        self.pubsubs = []
        self.published = []
        self.closed = False

    def pubsub(self):
        ps = FakePubSub()
        self.pubsubs.append(ps)
        return ps

    async def publish(self, channel, message):
        self.published.append((channel, message))
        for ps in self.pubsubs:
            if channel in ps.channels:
                await ps.queue.put({"type": "message", "channel": channel, "data": message})
        return 1

    async def aclose(self):
        self.closed = True


@pytest.mark.asyncio
async def test_in_memory_publish_reaches_subscribers_of_that_key():
    channel = InMemoryPushChannel()
    seen = []

    async def handler(key):
        seen.append(key)

    await channel.subscribe("user:1", handler)
    await channel.publish("user:1")
    await channel.publish("user:2")

    assert seen == ["user:1"]


@pytest.mark.asyncio
async def test_in_memory_release_stops_delivery():
    channel = InMemoryPushChannel()
    seen = []

    async def handler(key):
        seen.append(key)

    subscription = await channel.subscribe("user:1", handler)
    await subscription.release()
    await subscription.release()
    await channel.publish("user:1")

    assert seen == []


@pytest.mark.asyncio
async def test_in_memory_handler_error_does_not_stop_others():
    channel = InMemoryPushChannel()
    seen = []

    async def broken(key):
        raise RuntimeError("boom")

    async def handler(key):
        seen.append(key)

    await channel.subscribe("user:1", broken)
    await channel.subscribe("user:1", handler)
    await channel.publish("user:1")

    assert seen == ["user:1"]


def test_channel_name():
    assert channel_name("device:abc") == "cart:device:abc"


@pytest.mark.asyncio
async def test_redis_channel_delivers_to_key_with_colons():
    redis = FakeRedis()
    channel = RedisPushChannel(client=redis, poll_timeout=0.01)
    received = asyncio.Event()
    seen = []

    async def handler(key):
        seen.append(key)
        received.set()

    await channel.subscribe("device:abc", handler)
    await channel.publish("device:abc")
    await asyncio.wait_for(received.wait(), 1)

    assert seen == ["device:abc"]
    assert redis.published == [("cart:device:abc", "changed")]
    await channel.close()


@pytest.mark.asyncio
async def test_redis_channel_unsubscribes_after_last_release_and_closes():
    redis = FakeRedis()
    channel = RedisPushChannel(client=redis, poll_timeout=0.01)

    async def handler(key):
        pass

    subscription = await channel.subscribe("user:1", handler)
    pubsub = redis.pubsubs[0]
    assert pubsub.channels == {"cart:user:1"}

    await subscription.release()
    assert pubsub.channels == set()

    await channel.close()
    assert pubsub.closed
    assert redis.closed
