# foodcart/services/checkout_guard.py
import uuid
from abc import ABC, abstractmethod
from typing import Set

import redis.asyncio as aioredis

from foodcart.utils.retry import redis_retry
from foodcart.utils.settings import CHECKOUT_LOCK_TTL_SECONDS, REDIS_URL
from foodcart.utils.logging import get_logger

logger = get_logger(__name__)

# compare-and-delete; a lock that expired and was re-taken by another
# checkout must not be released by us
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""


class CheckoutGuard(ABC):
    """One checkout at a time per cart key."""

    @abstractmethod
    async def acquire(self, cart_key: str) -> str | None:
        """Token when the key was free, None when a checkout is already running."""

    @abstractmethod
    async def release(self, cart_key: str, token: str) -> bool:
        ...


class LocalCheckoutGuard(CheckoutGuard):
    """In-process guard. Enough when one app instance owns the cart."""

    def __init__(self):
        self._busy: Set[str] = set()

    async def acquire(self, cart_key: str) -> str | None:
        # no await between check and add, so this is atomic on the event loop
        if cart_key in self._busy:
            return None
        self._busy.add(cart_key)
        return cart_key

    async def release(self, cart_key: str, token: str) -> bool:
        if cart_key not in self._busy:
            return False
        self._busy.discard(cart_key)
        return True


class RedisCheckoutGuard(CheckoutGuard):
    """
    -checkout lock shared by every device of the cart key
    -SET NX EX, expires by itself if the app dies mid-checkout
    -release is atomic through lua
    """

    def __init__(self, url: str | None = None, ttl: int | None = None, client=None):
        self.redis = client or aioredis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )
        self.ttl = ttl or CHECKOUT_LOCK_TTL_SECONDS

    @staticmethod
    def _lock_key(cart_key: str) -> str:
        return f"cart:{cart_key}:checkout"

    @redis_retry()
    async def acquire(self, cart_key: str) -> str | None:
        key = self._lock_key(cart_key)
        token = uuid.uuid4().hex
        logger.info(f"Acquire checkout lock {key}")
        #SET cart:<key>:checkout <token> NX EX <ttl>
        locked = await self.redis.set(name=key, value=token, nx=True, ex=self.ttl)
        return token if locked else None

    @redis_retry()
    async def release(self, cart_key: str, token: str) -> bool:
        key = self._lock_key(cart_key)
        logger.info(f"Release checkout lock {key}")
        res = await self.redis.eval(_RELEASE_LUA, 1, key, token)
        return bool(res)

    async def close(self) -> None:
        await self.redis.aclose()
