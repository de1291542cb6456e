import asyncio
from decimal import Decimal

import pytest

from foodcart.domain.errors import (
    DataIntegrityError,
    EmptyCart,
    PartialOrderFailure,
    RemoteUnavailable,
    SagaAlreadyRunning,
    StepFailed,
)
from foodcart.domain.schemas import CheckoutRequest
from foodcart.services.badge import BadgeProjector
from foodcart.services.order_saga import OrderPlacementSaga, SagaStep
from tests.fakes import line


def _fill(store, cart_gateway, cart_key, *lines):
    store.replace_all(cart_gateway.seed(cart_key, *lines))


@pytest.fixture
def request_with_promo():
    return CheckoutRequest(delivery_fee=Decimal("2.5"), discount=Decimal("-3.2"))


@pytest.mark.asyncio
async def test_checkout_places_order_and_empties_cart(saga, store, cart_gateway, order_gateway, cart_key, request_with_promo):
    _fill(store, cart_gateway, cart_key, line("A", 2, 10), line("B", 1, 5))
    badge = BadgeProjector(store)

    result = await saga.run(request_with_promo)

    assert result.ok
    assert result.state == SagaStep.DONE
    assert result.order.subtotal == Decimal("25")
    assert result.order.total == Decimal("24.3")
    assert result.order.restaurant_ref == "R1"
    assert [(l.item_ref, l.quantity) for l in result.lines] == [("A", 2), ("B", 1)]
    assert order_gateway.order_lines[result.order_id] == result.lines
    assert store.lines == ()
    assert cart_gateway.carts[cart_key] == []
    assert badge.value == 0
    assert result.warnings == []


@pytest.mark.asyncio
async def test_steps_run_in_order(saga, store, cart_gateway, cart_key):
    _fill(store, cart_gateway, cart_key, line("A", 1, 10))

    await saga.run()

    assert saga.history == [
        SagaStep.IDLE,
        SagaStep.RESOLVING_RESTAURANT,
        SagaStep.CREATING_ORDER,
        SagaStep.CREATING_ORDER_LINES,
        SagaStep.CLEARING_REMOTE_CART,
        SagaStep.CLEARING_LOCAL_CART,
        SagaStep.DONE,
    ]


@pytest.mark.asyncio
async def test_empty_cart_is_refused(saga, order_gateway):
    result = await saga.run()

    assert result.state == SagaStep.FAILED
    assert result.failed_step == SagaStep.IDLE
    assert isinstance(result.error, EmptyCart)
    assert order_gateway.calls == []


@pytest.mark.asyncio
async def test_failed_order_creation_leaves_cart_untouched(saga, store, cart_gateway, order_gateway, cart_key):
    _fill(store, cart_gateway, cart_key, line("A", 2, 10))
    before = store.snapshot()
    order_gateway.fail("create_order", RemoteUnavailable())

    result = await saga.run()

    assert result.failed_step == SagaStep.CREATING_ORDER
    assert isinstance(result.error, StepFailed)
    assert isinstance(result.error.cause, RemoteUnavailable)
    assert result.order_id is None
    assert store.snapshot() == before
    assert not cart_gateway.ops("delete_all")


@pytest.mark.asyncio
async def test_failed_order_lines_keep_cart_for_manual_reconciliation(saga, store, cart_gateway, order_gateway, cart_key):
    _fill(store, cart_gateway, cart_key, line("A", 2, 10), line("B", 1, 5))
    before = store.snapshot()
    order_gateway.fail("create_order_lines", RemoteUnavailable())

    result = await saga.run()

    assert result.state == SagaStep.FAILED
    assert result.failed_step == SagaStep.CREATING_ORDER_LINES
    assert isinstance(result.error, PartialOrderFailure)
    assert result.error.order_id == result.order_id == "O100"
    assert store.snapshot() == before
    assert len(cart_gateway.carts[cart_key]) == 2
    # no retry of the order itself
    assert len(order_gateway.orders) == 1


@pytest.mark.asyncio
async def test_failed_remote_clear_is_a_warning(store, cart_gateway, order_gateway, cart_key):
    scheduled = []
    saga = OrderPlacementSaga(store, cart_gateway, order_gateway, cleanup=scheduled.append)
    _fill(store, cart_gateway, cart_key, line("A", 1, 10))
    cart_gateway.fail("delete_all", RemoteUnavailable())

    result = await saga.run()

    assert result.ok
    assert len(result.warnings) == 1
    assert scheduled == [cart_key]
    assert store.lines == ()
    assert len(cart_gateway.carts[cart_key]) == 1


@pytest.mark.asyncio
async def test_cleanup_scheduling_error_is_reported(store, cart_gateway, order_gateway, cart_key):
    def broken(key):
        raise RuntimeError("broker down")

    saga = OrderPlacementSaga(store, cart_gateway, order_gateway, cleanup=broken)
    _fill(store, cart_gateway, cart_key, line("A", 1, 10))
    cart_gateway.fail("delete_all", RemoteUnavailable())

    result = await saga.run()

    assert result.ok
    assert len(result.warnings) == 2
    assert store.lines == ()


@pytest.mark.asyncio
async def test_second_checkout_while_running_is_rejected(saga, store, cart_gateway, order_gateway, cart_key):
    _fill(store, cart_gateway, cart_key, line("A", 1, 10))
    gate = order_gateway.hold("create_order")

    first = asyncio.create_task(saga.run())
    await order_gateway.started["create_order"].wait()
    second = await saga.run()
    gate.set()
    first_result = await first

    assert isinstance(second.error, SagaAlreadyRunning)
    assert second.failed_step == SagaStep.IDLE
    assert first_result.ok
    assert len([c for c in order_gateway.calls if c[0] == "create_order"]) == 1


@pytest.mark.asyncio
async def test_checkout_can_run_again_after_finishing(saga, store, cart_gateway, order_gateway, cart_key):
    _fill(store, cart_gateway, cart_key, line("A", 1, 10))
    assert (await saga.run()).ok

    _fill(store, cart_gateway, cart_key, line("B", 1, 5))
    result = await saga.run()

    assert result.ok
    assert len(order_gateway.orders) == 2


@pytest.mark.asyncio
async def test_mixed_restaurants_are_a_data_error(saga, store, order_gateway):
    # cannot happen through CartStore, only through a corrupted server cart
    store.replace_all([line("A", 1, 10, line_id="L1"), line("X", 1, 7, restaurant="R2", line_id="L2")])

    result = await saga.run()

    assert result.failed_step == SagaStep.RESOLVING_RESTAURANT
    assert isinstance(result.error, DataIntegrityError)
    assert order_gateway.orders == []


@pytest.mark.asyncio
async def test_restaurant_looked_up_when_lines_lack_it(saga, store, cart_gateway, order_gateway, cart_key):
    _fill(store, cart_gateway, cart_key, line("X", 1, 7, restaurant=None))

    result = await saga.run()

    assert result.ok
    assert ("resolve_restaurant", "X") in order_gateway.calls
    assert result.order.restaurant_ref == "R2"


@pytest.mark.asyncio
async def test_unknown_restaurant_fails_before_ordering(saga, store, order_gateway):
    store.replace_all([line("ghost", 1, 7, restaurant=None, line_id="L1")])

    result = await saga.run()

    assert result.failed_step == SagaStep.RESOLVING_RESTAURANT
    assert isinstance(result.error, DataIntegrityError)
    assert order_gateway.orders == []


@pytest.mark.asyncio
async def test_step_timeout_fails_that_step(store, cart_gateway, order_gateway, cart_key):
    saga = OrderPlacementSaga(store, cart_gateway, order_gateway, step_timeout=0.05)
    _fill(store, cart_gateway, cart_key, line("A", 1, 10))
    order_gateway.hold("create_order")

    result = await saga.run()

    assert result.failed_step == SagaStep.CREATING_ORDER
    assert isinstance(result.error, StepFailed)
    assert isinstance(result.error.cause, asyncio.TimeoutError)
    assert len(store.lines) == 1


@pytest.mark.asyncio
async def test_guard_released_after_failure(saga, store, cart_gateway, order_gateway, cart_key):
    _fill(store, cart_gateway, cart_key, line("A", 1, 10))
    order_gateway.fail("create_order", RemoteUnavailable())

    assert not (await saga.run()).ok
    assert (await saga.run()).ok


@pytest.mark.asyncio
async def test_fetch_started_before_checkout_cannot_restore_ordered_lines(saga, engine, store, cart_gateway, order_gateway, cart_key):
    _fill(store, cart_gateway, cart_key, line("A", 2, 10))
    gate = asyncio.Event()
    cart_gateway.gates["fetch_all"] = gate

    in_flight = asyncio.create_task(engine.reconcile())
    while not cart_gateway.ops("fetch_all"):
        await asyncio.sleep(0)
    result = await saga.run()
    gate.set()
    late = await in_flight

    assert result.ok
    assert not late.reconciled
    assert store.lines == ()

    again = await saga.run()
    assert isinstance(again.error, EmptyCart)
    assert len(order_gateway.orders) == 1
