# foodcart/services/sync_engine.py
import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Tuple

from foodcart.domain.errors import (
    CartError,
    CrossRestaurantConflict,
    InvalidQuantity,
    NotFound,
    RemoteError,
    SyncFailed,
)
from foodcart.domain.gateways import PushChannel, RemoteCartGateway, Subscription
from foodcart.domain.schemas import CartLine
from foodcart.services.cart_store import CartStore
from foodcart.utils.retry import reconcile_retrying
from foodcart.utils.settings import RECONCILE_ATTEMPTS
from foodcart.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class SyncResult:
    ok: bool
    operation: str
    quantity: int | None = None
    reconciled: bool = False
    # a newer local change owns the next reconcile
    superseded: bool = False
    error: CartError | None = None


class SyncEngine:
    """
    Keeps a CartStore in line with the remote cart.

    Local edit:
        1. optimistic change in the store
        2. remote write
        3. ok    -> fetch_all + replace_all (server truth wins)
           error -> undo the lines this edit touched, report SyncFailed

    Push signal ("cart changed elsewhere"): step 3 only.

    Every reconcile takes a ticket when it starts; a result is applied only if
    no newer reconcile or local edit has been applied since, so an old fetch
    that finishes late can't roll the cart back. After stop() nothing is
    applied any more.
    """

    def __init__(
        self,
        store: CartStore,
        gateway: RemoteCartGateway,
        push_channel: PushChannel | None = None,
        reconcile_attempts: int | None = None,
        retry_wait: Tuple[float, float] = (0.2, 2.0),
    ):
        self.store = store
        self.gateway = gateway
        self.push_channel = push_channel
        self.reconcile_attempts = reconcile_attempts or RECONCILE_ATTEMPTS
        self.retry_wait = retry_wait

        self._alive = True
        self._subscription: Subscription | None = None
        self._issued = 0
        self._applied = 0
        self._inserts: Dict[Tuple[str, str], asyncio.Future] = {}
        self._error_listeners: List[Callable[[SyncFailed], None]] = []

    @property
    def alive(self) -> bool:
        return self._alive

    def on_sync_failed(self, callback: Callable[[SyncFailed], None]) -> None:
        self._error_listeners.append(callback)

    # =====================================================
    # LIFECYCLE
    # =====================================================
    async def start(self) -> SyncResult:
        """Subscribe to push signals for the cart key and load the cart once."""
        self._alive = True
        if self.push_channel is not None and self._subscription is None:
            self._subscription = await self.push_channel.subscribe(self.store.key, self._on_push)
            logger.info(f"Cart {self.store.key}: listening for remote changes")
        return await self.reconcile()

    async def stop(self) -> None:
        """Teardown: reconciliations that complete after this are dropped."""
        self._alive = False
        if self._subscription is not None:
            await self._subscription.release()
            self._subscription = None
            logger.info(f"Cart {self.store.key}: push subscription released")

    async def _on_push(self, key: str) -> None:
        if not self._alive:
            logger.debug(f"Cart {key}: push after teardown ignored")
            return
        logger.info(f"Cart {key}: changed remotely, reconciling")
        await self.reconcile()

    # =====================================================
    # RECONCILIATION
    # =====================================================
    async def reconcile(self) -> SyncResult:
        if not self._alive:
            return SyncResult(ok=True, operation="reconcile")

        self._issued += 1
        ticket = self._issued

        try:
            async for attempt in reconcile_retrying(self.reconcile_attempts, *self.retry_wait):
                with attempt:
                    lines = await self.gateway.fetch_all(self.store.key)
        except RemoteError as e:
            logger.warning(f"Cart {self.store.key}: reconcile failed: {e}")
            return SyncResult(ok=False, operation="reconcile", error=SyncFailed("reconcile", e))

        if not self._alive:
            logger.debug(f"Cart {self.store.key}: reconcile finished after teardown, dropped")
            return SyncResult(ok=True, operation="reconcile")

        if ticket < self._applied:
            logger.debug(f"Cart {self.store.key}: stale reconcile #{ticket} dropped (applied #{self._applied})")
            return SyncResult(ok=True, operation="reconcile", superseded=True)

        self._applied = ticket
        self.store.replace_all(lines)
        return SyncResult(ok=True, operation="reconcile", reconciled=True)

    # =====================================================
    # LOCAL EDITS
    # =====================================================
    async def add_item(
        self,
        item_ref: str,
        options: dict | None = None,
        quantity: int = 1,
        unit_price: Decimal = Decimal("0"),
        restaurant_ref: str | None = None,
        name: str | None = None,
    ) -> SyncResult:
        if quantity <= 0:
            return self._rejected("add_item", InvalidQuantity(f"Quantity must be greater than 0, got {quantity}"))

        async def remote():
            line = self.store.find(item_ref, options)
            if line is None:
                return
            if line.id:
                await self.gateway.upsert_quantity(line.id, line.quantity)
                return
            await self._insert_or_follow(line)

        return await self._run_edit(
            "add_item",
            lambda: self.store.upsert_line(item_ref, options, quantity, unit_price, restaurant_ref, name),
            remote,
        )

    async def change_quantity(self, line_id: str, delta: int) -> SyncResult:
        line = self.store.get_line(line_id)
        if line is None:
            return self._rejected("change_quantity", NotFound(f"Line {line_id} is not in the cart"))
        return await self.set_quantity(line_id, line.quantity + delta)

    async def set_quantity(self, line_id: str, quantity: int) -> SyncResult:
        if quantity <= 0:
            return await self.remove_line(line_id)

        if self.store.get_line(line_id) is None:
            return self._rejected("set_quantity", NotFound(f"Line {line_id} is not in the cart"))

        return await self._run_edit(
            "set_quantity",
            lambda: self.store.set_quantity(line_id, quantity),
            lambda: self.gateway.upsert_quantity(line_id, quantity),
        )

    async def remove_line(self, line_id: str) -> SyncResult:
        def apply():
            self.store.remove_line(line_id)
            return 0

        return await self._run_edit(
            "remove_line",
            apply,
            lambda: self.gateway.delete_line(line_id),
            not_found_ok=True,
        )

    async def clear(self) -> SyncResult:
        def apply():
            self.store.replace_all([])
            return 0

        return await self._run_edit(
            "clear",
            apply,
            lambda: self.gateway.delete_all(self.store.key),
            not_found_ok=True,
        )

    def apply_local(self, lines) -> None:
        """Replace the cart locally only, e.g. once an order was placed. Fetches already in flight are dropped."""
        self._local_change()
        self.store.replace_all(lines)

    # =====================================================
    # INTERNALS
    # =====================================================
    async def _insert_or_follow(self, line: CartLine) -> None:
        """
        Insert an optimistic line, or, if its insert is still in flight,
        wait for it and push the newer local quantity onto the created row.
        """
        identity = line.identity
        pending = self._inserts.get(identity)
        if pending is not None:
            persisted = await asyncio.shield(pending)
            # line.quantity is what this edit wanted, later edits send their own
            if persisted.id and line.quantity != persisted.quantity:
                await self.gateway.upsert_quantity(persisted.id, line.quantity)
            return

        task = asyncio.ensure_future(self.gateway.insert_line(self.store.key, line))
        self._inserts[identity] = task
        try:
            await task
        finally:
            if self._inserts.get(identity) is task:
                del self._inserts[identity]

    def _local_change(self) -> None:
        # a local change supersedes every fetch started before it
        self._issued += 1
        self._applied = self._issued

    async def _run_edit(
        self,
        operation: str,
        apply: Callable[[], int],
        remote: Callable[[], Awaitable],
        not_found_ok: bool = False,
    ) -> SyncResult:
        before = self.store.snapshot()

        try:
            quantity = apply()
        except CrossRestaurantConflict as e:
            return self._rejected(operation, e)

        after = self.store.snapshot()
        self._local_change()
        ticket = self._applied

        try:
            await remote()
        except NotFound as e:
            if not not_found_ok:
                logger.warning(f"Cart {self.store.key}: {operation} target gone remotely, refreshing")
                self._revert(before, after)
                await self.reconcile()
                return self._failed(operation, e)
            logger.info(f"Cart {self.store.key}: {operation} target already gone remotely")
        except CartError as e:
            logger.warning(f"Cart {self.store.key}: {operation} failed: {e}")
            return await self._undo(operation, e, before, after, ticket)
        except Exception as e:
            logger.exception(f"Cart {self.store.key}: unexpected error in {operation}")
            return await self._undo(operation, e, before, after, ticket)

        result = await self.reconcile()
        if not result.reconciled and not result.superseded and self._alive:
            # write is durable, local state stays optimistic until the next reconcile
            logger.warning(f"Cart {self.store.key}: {operation} saved but not reconciled")
        return SyncResult(
            ok=True,
            operation=operation,
            quantity=quantity,
            reconciled=result.reconciled,
            superseded=result.superseded,
        )

    async def _undo(self, operation: str, cause: Exception, before, after, ticket: int) -> SyncResult:
        moved = self._applied != ticket
        self._revert(before, after)
        if moved:
            # other changes landed while this edit was in flight
            logger.info(f"Cart {self.store.key}: changed during failed {operation}, refreshing")
            await self.reconcile()
        return self._failed(operation, cause)

    def _revert(self, before, after) -> None:
        """
        Undo only the lines this edit touched. Everything else in the cart
        may have come from a newer fetch or a later edit and is kept.
        """
        old = {line.identity: line for line in before.lines}
        new = {line.identity: line for line in after.lines}
        touched = {k for k in old.keys() | new.keys() if old.get(k) != new.get(k)}

        lines = []
        for line in self.store.lines:
            if line.identity in touched:
                line = self._undone(old.get(line.identity), line)
            if line is not None:
                lines.append(line)

        present = {line.identity for line in lines}
        for index, line in enumerate(before.lines):
            if line.identity in touched and line.identity not in present:
                restored = self._undone(line, None)
                if restored is not None:
                    lines.insert(min(index, len(lines)), restored)

        self._local_change()
        self.store.replace_all(lines)

    def _undone(self, old: CartLine | None, current: CartLine | None) -> CartLine | None:
        if old is None:
            return None
        if old.id is None:
            if current is not None and current.id is not None:
                # saved in the meantime
                return current
            if old.identity not in self._inserts:
                # its insert failed, the server never had it
                return None
        return old

    def _rejected(self, operation: str, error: CartError) -> SyncResult:
        # refused before anything changed, nothing to revert
        logger.info(f"Cart {self.store.key}: {operation} rejected: {error}")
        return SyncResult(ok=False, operation=operation, error=error)

    def _failed(self, operation: str, cause: Exception) -> SyncResult:
        error = SyncFailed(operation, cause)
        for callback in list(self._error_listeners):
            try:
                callback(error)
            except Exception as e:
                logger.error(f"Cart {self.store.key}: sync error listener failed: {e}")
        return SyncResult(ok=False, operation=operation, error=error)
