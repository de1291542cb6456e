# foodcart/domain/gateways.py
"""
Contracts of the collaborators behind the network boundary.

Implementations are plain request/response: no retries, no caching, no
queueing. Failures surface as RemoteUnavailable or NotFound.
"""
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List

from foodcart.domain.schemas import CartLine, Order, OrderDraft, OrderLine


class RemoteCartGateway(ABC):

    @abstractmethod
    async def fetch_all(self, key: str) -> List[CartLine]:
        """Full authoritative line list of a cart, oldest first."""

    @abstractmethod
    async def insert_line(self, key: str, line: CartLine) -> CartLine:
        """Persist a new line; returns it with the server-assigned id."""

    @abstractmethod
    async def upsert_quantity(self, line_id: str, quantity: int) -> CartLine:
        """Set the quantity of an existing line. quantity <= 0 raises InvalidQuantity."""

    @abstractmethod
    async def delete_line(self, line_id: str) -> None:
        ...

    @abstractmethod
    async def delete_all(self, key: str) -> None:
        ...


class OrderGateway(ABC):

    @abstractmethod
    async def resolve_restaurant(self, item_ref: str) -> str | None:
        """Restaurant owning a catalog item, None if the item is unknown."""

    @abstractmethod
    async def create_order(self, draft: OrderDraft) -> Order:
        ...

    @abstractmethod
    async def create_order_lines(self, order_id: str, lines: List[OrderLine]) -> List[OrderLine]:
        ...


PushHandler = Callable[[str], Awaitable[None]]


class Subscription(ABC):
    """Handle of a live push subscription. Must be released on teardown."""

    @abstractmethod
    async def release(self) -> None:
        ...


class PushChannel(ABC):
    """At-least-once "cart changed" signal keyed by cart key, no payload."""

    @abstractmethod
    async def subscribe(self, key: str, handler: PushHandler) -> Subscription:
        ...

    @abstractmethod
    async def publish(self, key: str) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...
