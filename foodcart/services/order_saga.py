# foodcart/services/order_saga.py
"""
Order placement saga - turns the cart into an order, then clears the cart.

Flow:
    1. RESOLVING_RESTAURANT  - one restaurant for every line
    2. CREATING_ORDER        - first side effect; failure leaves everything as it was
    3. CREATING_ORDER_LINES  - failure -> PartialOrderFailure, cart kept, no retry
    4. CLEARING_REMOTE_CART  - failure is only a warning, cleanup is scheduled
    5. CLEARING_LOCAL_CART   - always done once the order and its lines exist
    6. DONE

Nothing here retries: re-running order creation could place the order twice.
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List

from foodcart.domain.errors import (
    DataIntegrityError,
    EmptyCart,
    NotFound,
    PartialOrderFailure,
    SagaAlreadyRunning,
    SagaError,
    StepFailed,
)
from foodcart.domain.gateways import OrderGateway, RemoteCartGateway
from foodcart.domain.schemas import (
    CartSnapshot,
    CheckoutRequest,
    Order,
    OrderDraft,
    OrderLine,
    order_lines_for,
)
from foodcart.services.cart_store import CartStore
from foodcart.services.checkout_guard import CheckoutGuard, LocalCheckoutGuard
from foodcart.services.sync_engine import SyncEngine
from foodcart.utils.settings import SAGA_STEP_TIMEOUT_SECONDS
from foodcart.utils.logging import get_logger

logger = get_logger(__name__)


class SagaStep(str, Enum):
    IDLE = "idle"
    RESOLVING_RESTAURANT = "resolving_restaurant"
    CREATING_ORDER = "creating_order"
    CREATING_ORDER_LINES = "creating_order_lines"
    CLEARING_REMOTE_CART = "clearing_remote_cart"
    CLEARING_LOCAL_CART = "clearing_local_cart"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SagaResult:
    state: SagaStep
    order_id: str | None = None
    order: Order | None = None
    lines: List[OrderLine] = field(default_factory=list)
    failed_step: SagaStep | None = None
    error: SagaError | None = None
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state == SagaStep.DONE


class _Abort(Exception):
    def __init__(self, error: SagaError):
        super().__init__(str(error))
        self.error = error


class OrderPlacementSaga:

    def __init__(
        self,
        store: CartStore,
        cart_gateway: RemoteCartGateway,
        order_gateway: OrderGateway,
        guard: CheckoutGuard | None = None,
        step_timeout: float | None = None,
        cleanup: Callable[[str], None] | None = None,
        sync: SyncEngine | None = None,
    ):
        self.store = store
        self.cart_gateway = cart_gateway
        self.order_gateway = order_gateway
        self.guard = guard or LocalCheckoutGuard()
        self.step_timeout = step_timeout if step_timeout is not None else (SAGA_STEP_TIMEOUT_SECONDS or None)
        self.cleanup = cleanup
        self.sync = sync

        self.state = SagaStep.IDLE
        self.history: List[SagaStep] = []

    async def run(self, request: CheckoutRequest | None = None) -> SagaResult:
        request = request or CheckoutRequest()
        key = self.store.key

        try:
            token = await self.guard.acquire(key)
        except Exception as e:
            logger.error(f"Checkout for cart {key}: guard unavailable: {e}")
            return SagaResult(
                state=SagaStep.FAILED,
                failed_step=SagaStep.IDLE,
                error=StepFailed(SagaStep.IDLE, e),
            )

        if token is None:
            logger.warning(f"Checkout for cart {key} rejected, another one is running")
            return SagaResult(
                state=SagaStep.FAILED,
                failed_step=SagaStep.IDLE,
                error=SagaAlreadyRunning(key),
            )

        try:
            return await self._run(request)
        finally:
            try:
                await self.guard.release(key, token)
            except Exception as e:
                logger.warning(f"Checkout for cart {key}: guard release failed: {e}")

    # =====================================================
    # STEPS
    # =====================================================
    async def _run(self, request: CheckoutRequest) -> SagaResult:
        key = self.store.key
        self.history = []
        self._enter(SagaStep.IDLE)
        result = SagaResult(state=SagaStep.IDLE)

        snapshot = self.store.snapshot()
        if snapshot.is_empty:
            return self._fail(result, SagaStep.IDLE, EmptyCart())

        logger.info(f"Placing order for cart {key}: {len(snapshot.lines)} lines, subtotal {snapshot.subtotal}")

        try:
            restaurant_ref = await self._step(
                SagaStep.RESOLVING_RESTAURANT,
                lambda: self._resolve_restaurant(snapshot),
            )

            draft = OrderDraft.from_snapshot(snapshot, restaurant_ref, request)
            order = await self._step(SagaStep.CREATING_ORDER, lambda: self.order_gateway.create_order(draft))
        except _Abort as abort:
            # nothing was written yet, cart stays as it is
            return self._fail(result, self.state, abort.error)

        result.order = order
        result.order_id = order.id
        logger.info(f"Order {order.id} created for cart {key}, total {order.total}")

        lines = order_lines_for(snapshot)
        try:
            result.lines = await self._step(
                SagaStep.CREATING_ORDER_LINES,
                lambda: self.order_gateway.create_order_lines(order.id, lines),
            )
        except _Abort as abort:
            cause = getattr(abort.error, "cause", abort.error)
            logger.error(f"Order {order.id} has incomplete lines, needs manual reconciliation: {cause!r}")
            return self._fail(result, SagaStep.CREATING_ORDER_LINES, PartialOrderFailure(order.id, cause))

        try:
            await self._step(SagaStep.CLEARING_REMOTE_CART, lambda: self._clear_remote(key))
        except _Abort as abort:
            message = f"Remote cart {key} not cleared after order {order.id}: {abort.error}"
            logger.warning(message)
            result.warnings.append(message)
            self._schedule_cleanup(key, result)

        self._enter(SagaStep.CLEARING_LOCAL_CART)
        self._clear_local()

        self._enter(SagaStep.DONE)
        result.state = SagaStep.DONE
        logger.info(f"Order {order.id} placed, cart {key} cleared")
        return result

    async def _resolve_restaurant(self, snapshot: CartSnapshot) -> str:
        refs = {line.restaurant_ref for line in snapshot.lines if line.restaurant_ref}
        if len(refs) > 1:
            raise DataIntegrityError(f"Cart {self.store.key} mixes restaurants: {sorted(refs)}")
        if refs:
            return refs.pop()

        # no line carries it: look it up once, from the first line
        first = snapshot.lines[0]
        restaurant_ref = await self.order_gateway.resolve_restaurant(first.item_ref)
        if not restaurant_ref:
            raise DataIntegrityError(f"No restaurant found for item {first.item_ref}")
        return restaurant_ref

    def _clear_local(self) -> None:
        if self.sync is not None:
            # through the engine so a fetch started before checkout can't bring the lines back
            self.sync.apply_local([])
        else:
            self.store.replace_all([])

    async def _clear_remote(self, key: str) -> None:
        try:
            await self.cart_gateway.delete_all(key)
        except NotFound:
            logger.info(f"Remote cart {key} already empty")

    # =====================================================
    # INTERNALS
    # =====================================================
    def _enter(self, step: SagaStep) -> None:
        self.state = step
        self.history.append(step)
        logger.debug(f"Checkout {self.store.key}: -> {step.value}")

    async def _step(self, step: SagaStep, action: Callable[[], Awaitable]):
        self._enter(step)
        try:
            if self.step_timeout:
                return await asyncio.wait_for(action(), timeout=self.step_timeout)
            return await action()
        except SagaError as e:
            raise _Abort(e) from e
        except asyncio.TimeoutError as e:
            logger.error(f"Checkout {self.store.key}: {step.value} timed out after {self.step_timeout}s")
            raise _Abort(StepFailed(step, e)) from e
        except Exception as e:
            logger.warning(f"Checkout {self.store.key}: {step.value} failed: {e!r}")
            raise _Abort(StepFailed(step, e)) from e

    def _schedule_cleanup(self, key: str, result: SagaResult) -> None:
        if self.cleanup is None:
            return
        try:
            self.cleanup(key)
        except Exception as e:
            message = f"Could not schedule cleanup of remote cart {key}: {e}"
            logger.error(message)
            result.warnings.append(message)

    def _fail(self, result: SagaResult, step: SagaStep, error: SagaError) -> SagaResult:
        self._enter(SagaStep.FAILED)
        result.state = SagaStep.FAILED
        result.failed_step = step
        result.error = error
        return result
