import pytest

from foodcart.services.cart_store import CartStore
from foodcart.services.order_saga import OrderPlacementSaga
from foodcart.services.push_channel import InMemoryPushChannel
from foodcart.services.sync_engine import SyncEngine
from tests.fakes import FakeCartGateway, FakeOrderGateway

CART_KEY = "device:test-cart"


@pytest.fixture
def cart_key():
    return CART_KEY


@pytest.fixture
def store():
    return CartStore(CART_KEY)


@pytest.fixture
def cart_gateway():
    return FakeCartGateway()


@pytest.fixture
def order_gateway():
    return FakeOrderGateway(restaurants={"A": "R1", "B": "R1", "X": "R2"})


@pytest.fixture
def push():
    return InMemoryPushChannel()


@pytest.fixture
def engine(store, cart_gateway, push):
    # no waiting between reconcile attempts in tests
    return SyncEngine(store, cart_gateway, push, reconcile_attempts=2, retry_wait=(0, 0))


@pytest.fixture
def saga(store, cart_gateway, order_gateway, engine):
    return OrderPlacementSaga(store, cart_gateway, order_gateway, sync=engine)
