# foodcart/domain/errors.py
"""
Error taxonomy for the cart and checkout core.

Gateways raise RemoteUnavailable / NotFound, CartStore raises
CrossRestaurantConflict, the saga reports the SagaError family. SyncEngine
and the saga turn all of them into result objects at their public boundary.
"""


class CartError(Exception):
    """Base for everything the cart core reports."""


# ----- remote boundary -----

class RemoteError(CartError):
    pass


class RemoteUnavailable(RemoteError):
    """Network failure, timeout or unexpected server status. Safe to retry reads."""

    def __init__(self, message: str = "Remote store unavailable", status: int | None = None):
        super().__init__(message)
        self.status = status


class NotFound(RemoteError):
    """The addressed line/cart is already gone on the server."""


class InvalidQuantity(CartError, ValueError):
    """Quantity <= 0 sent to an upsert; callers must delete instead."""


# ----- local cart -----

class CrossRestaurantConflict(CartError):
    def __init__(self, cart_restaurant: str, attempted_restaurant: str):
        super().__init__(
            f"Cart holds items from restaurant {cart_restaurant}, "
            f"cannot add item from {attempted_restaurant}"
        )
        self.cart_restaurant = cart_restaurant
        self.attempted_restaurant = attempted_restaurant


class SyncFailed(CartError):
    """A local edit could not be made durable; the cart was reverted."""

    def __init__(self, operation: str, cause: Exception):
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause


# ----- order placement -----

class SagaError(CartError):
    pass


class EmptyCart(SagaError):
    def __init__(self):
        super().__init__("Cannot place an order from an empty cart")


class DataIntegrityError(SagaError):
    pass


class SagaAlreadyRunning(SagaError):
    def __init__(self, cart_key: str):
        super().__init__(f"Checkout already in progress for cart {cart_key}")
        self.cart_key = cart_key


class StepFailed(SagaError):
    def __init__(self, step, cause: Exception):
        super().__init__(f"Order placement failed at {step.value}: {cause!r}")
        self.step = step
        self.cause = cause


class PartialOrderFailure(SagaError):
    """Order header exists but its lines were not all persisted. Needs ops reconciliation."""

    def __init__(self, order_id: str, cause: Exception):
        super().__init__(f"Order {order_id} created but its lines could not be saved: {cause!r}")
        self.order_id = order_id
        self.cause = cause
