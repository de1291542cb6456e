# foodcart/services/badge.py
from typing import Callable, List

from foodcart.domain.schemas import CartSnapshot
from foodcart.services.cart_store import CartStore


class BadgeProjector:
    """Number shown on the cart icon: sum of line quantities, not line count."""

    def __init__(self, store: CartStore):
        self._value = store.snapshot().total_quantity
        self._callbacks: List[Callable[[int], None]] = []
        self._unsubscribe = store.subscribe(self._on_cart_changed)

    @property
    def value(self) -> int:
        return self._value

    def on_change(self, callback: Callable[[int], None]) -> None:
        self._callbacks.append(callback)

    def detach(self) -> None:
        self._unsubscribe()

    def _on_cart_changed(self, snapshot: CartSnapshot) -> None:
        value = snapshot.total_quantity
        if value == self._value:
            return
        self._value = value
        for callback in list(self._callbacks):
            callback(value)
