# foodcart/services/cart_store.py
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, List, Tuple

from foodcart.domain.errors import CrossRestaurantConflict
from foodcart.domain.schemas import CartLine, CartSnapshot, options_key
from foodcart.utils.logging import get_logger

logger = get_logger(__name__)

CartListener = Callable[[CartSnapshot], None]


class CartStore:
    """
    In-memory cart the UI reads from.

    - optimistic edits (upsert_line, set_quantity, remove_line)
    - replace_all as the only way server truth gets in
    - listeners notified synchronously after every effective change

    The line tuple is swapped as a whole on every change, so a reader never
    sees a half-applied edit.
    """

    def __init__(self, key: str, lines: Iterable[CartLine] = ()):
        self.key = key
        self._lines: Tuple[CartLine, ...] = self._dedupe(lines)
        self._listeners: List[CartListener] = []

    # =====================================================
    # QUERY
    # =====================================================
    @property
    def lines(self) -> Tuple[CartLine, ...]:
        return self._lines

    def snapshot(self) -> CartSnapshot:
        return CartSnapshot(lines=self._lines)

    def find(self, item_ref: str, options: dict | None = None) -> CartLine | None:
        identity = (str(item_ref), options_key(options))
        return next((line for line in self._lines if line.identity == identity), None)

    def get_line(self, line_id: str) -> CartLine | None:
        if line_id is None:
            return None
        return next((line for line in self._lines if line.id == str(line_id)), None)

    def subscribe(self, listener: CartListener) -> Callable[[], None]:
        self._listeners.append(listener)
        logger.debug(f"Cart {self.key}: listener subscribed, total {len(self._listeners)}")

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # =====================================================
    # COMMANDS
    # =====================================================
    def upsert_line(
        self,
        item_ref: str,
        options: dict | None,
        delta: int,
        price_if_new: Decimal,
        restaurant_ref: str | None = None,
        name: str | None = None,
    ) -> int:
        """
        Add delta to the line matching (item_ref, options).

        Returns the resulting quantity, 0 when the line was removed or never
        created. Raises CrossRestaurantConflict for a new line from another
        restaurant; the cart is left untouched in that case.
        """
        existing = self.find(item_ref, options)

        if existing:
            new_quantity = existing.quantity + delta
            if new_quantity <= 0:
                self._commit(tuple(line for line in self._lines if line is not existing))
                return 0
            updated = existing.model_copy(update={"quantity": new_quantity})
            self._commit(tuple(updated if line is existing else line for line in self._lines))
            return new_quantity

        if delta <= 0:
            return 0

        current_restaurant = self.snapshot().restaurant_ref
        if restaurant_ref is not None and current_restaurant is not None and str(restaurant_ref) != current_restaurant:
            logger.warning(
                f"Cart {self.key}: rejected item {item_ref} from restaurant {restaurant_ref}, "
                f"cart belongs to {current_restaurant}"
            )
            raise CrossRestaurantConflict(current_restaurant, str(restaurant_ref))

        line = CartLine(
            item_ref=item_ref,
            unit_price=Decimal(str(price_if_new)),
            quantity=delta,
            options=dict(options or {}),
            restaurant_ref=restaurant_ref,
            name=name,
            created_at=datetime.now(timezone.utc),
        )
        self._commit(self._lines + (line,))
        return delta

    def set_quantity(self, line_id: str, quantity: int) -> int:
        """Absolute quantity for a persisted line; <= 0 removes it. Unknown id -> 0."""
        existing = self.get_line(line_id)
        if existing is None:
            return 0
        return self.upsert_line(
            existing.item_ref,
            existing.options,
            quantity - existing.quantity,
            existing.unit_price,
        )

    def remove_line(self, line_id: str) -> None:
        existing = self.get_line(line_id)
        if existing is None:
            return
        self._commit(tuple(line for line in self._lines if line is not existing))

    def replace_all(self, lines: Iterable[CartLine]) -> None:
        """Swap the whole line list. Idempotent: the same input twice changes nothing."""
        self._commit(self._dedupe(lines))

    # =====================================================
    # INTERNALS
    # =====================================================
    def _dedupe(self, lines: Iterable[CartLine]) -> Tuple[CartLine, ...]:
        seen = set()
        kept = []
        for line in lines:
            if line.identity in seen:
                logger.warning(f"Cart {self.key}: duplicate line for item {line.item_ref} dropped")
                continue
            seen.add(line.identity)
            kept.append(line)
        return tuple(kept)

    def _commit(self, new_lines: Tuple[CartLine, ...]) -> None:
        if new_lines == self._lines:
            return

        self._lines = new_lines
        snapshot = self.snapshot()

        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Cart {self.key}: listener error: {e}")
