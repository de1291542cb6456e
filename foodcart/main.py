# foodcart/main.py
from foodcart.domain.gateways import OrderGateway, PushChannel, RemoteCartGateway
from foodcart.domain.schemas import CheckoutRequest
from foodcart.services.badge import BadgeProjector
from foodcart.services.cart_client import HttpCartGateway
from foodcart.services.cart_key import cart_key_for
from foodcart.services.cart_store import CartStore
from foodcart.services.checkout_guard import CheckoutGuard, RedisCheckoutGuard
from foodcart.services.order_client import HttpOrderGateway
from foodcart.services.order_saga import OrderPlacementSaga, SagaResult
from foodcart.services.push_channel import RedisPushChannel
from foodcart.services.sync_engine import SyncEngine, SyncResult
from foodcart.tasks.cleanup import schedule_cart_cleanup
from foodcart.utils.logging import get_logger

logger = get_logger(__name__)


class CartSession:
    """
    One cart key wired up: store, badge, sync engine and checkout.
    The owner (a screen, a bot handler) opens it when it becomes active
    and closes it on teardown.
    """

    def __init__(
        self,
        key: str,
        cart_gateway: RemoteCartGateway,
        order_gateway: OrderGateway,
        push_channel: PushChannel | None = None,
        guard: CheckoutGuard | None = None,
        cleanup=None,
    ):
        self.key = key
        self.store = CartStore(key)
        self.badge = BadgeProjector(self.store)
        self.sync = SyncEngine(self.store, cart_gateway, push_channel)
        self.checkout = OrderPlacementSaga(
            self.store,
            cart_gateway,
            order_gateway,
            guard=guard,
            cleanup=cleanup,
            sync=self.sync,
        )
        self._resources = []

    def own(self, *resources) -> None:
        """Resources with an async close() that die with the session."""
        self._resources.extend(resources)

    async def open(self) -> SyncResult:
        logger.info(f"Opening cart session {self.key}")
        return await self.sync.start()

    async def close(self) -> None:
        await self.sync.stop()
        self.badge.detach()
        for resource in self._resources:
            try:
                await resource.close()
            except Exception as e:
                logger.warning(f"Cart session {self.key}: failed to close {type(resource).__name__}: {e}")
        logger.info(f"Closed cart session {self.key}")

    async def place_order(self, request: CheckoutRequest | None = None) -> SagaResult:
        return await self.checkout.run(request)

    async def __aenter__(self) -> "CartSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def create_session(user_id: str | int | None = None, base_url: str | None = None) -> CartSession:
    key = cart_key_for(user_id)

    cart_gateway = HttpCartGateway(base_url)
    order_gateway = HttpOrderGateway(base_url)
    push_channel = RedisPushChannel()
    guard = RedisCheckoutGuard()

    session = CartSession(
        key,
        cart_gateway,
        order_gateway,
        push_channel=push_channel,
        guard=guard,
        cleanup=schedule_cart_cleanup,
    )
    session.own(cart_gateway, order_gateway, push_channel, guard)
    return session
