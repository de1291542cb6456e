# foodcart/services/order_client.py
from typing import List
from urllib.parse import quote

from pydantic import ValidationError

from foodcart.domain.errors import NotFound, RemoteUnavailable
from foodcart.domain.gateways import OrderGateway
from foodcart.domain.schemas import Order, OrderDraft, OrderLine
from foodcart.services.http_client import JsonHttpClient
from foodcart.utils.logging import get_logger

logger = get_logger(__name__)


class HttpOrderGateway(JsonHttpClient, OrderGateway):
    """
    OrderGateway over the orders REST API.
    Order creation is not idempotent - nothing here (or above) retries it.
    """

    async def resolve_restaurant(self, item_ref: str) -> str | None:
        try:
            data = await self._request("GET", f"/food-items/{quote(str(item_ref), safe='')}")
        except NotFound:
            logger.warning(f"Food item {item_ref} not found while resolving restaurant")
            return None

        restaurant = data.get("restaurant_id") if isinstance(data, dict) else None
        return str(restaurant) if restaurant is not None else None

    async def create_order(self, draft: OrderDraft) -> Order:
        payload = draft.model_dump(mode="json")
        data = await self._request("POST", "/orders", json=payload)
        if not isinstance(data, dict) or data.get("id") is None:
            raise RemoteUnavailable("Order insert returned no id")

        # server only guarantees the id, the rest is what we sent
        try:
            return Order(**{**payload, **data})
        except ValidationError as e:
            raise RemoteUnavailable(f"Order {data['id']}: malformed response: {e}") from e

    async def create_order_lines(self, order_id: str, lines: List[OrderLine]) -> List[OrderLine]:
        payload = {"items": [line.model_dump(mode="json") for line in lines]}
        data = await self._request("POST", f"/orders/{quote(str(order_id), safe='')}/items", json=payload)

        if data is None:
            # 204, nothing echoed back
            return list(lines)

        rows = data.get("items") if isinstance(data, dict) else data
        if not isinstance(rows, list):
            raise RemoteUnavailable(f"Order {order_id}: unexpected order lines response")
        if len(rows) != len(lines):
            raise RemoteUnavailable(f"Order {order_id}: {len(rows)} of {len(lines)} lines persisted")
        try:
            return [OrderLine(**row) for row in rows]
        except (ValidationError, TypeError) as e:
            raise RemoteUnavailable(f"Order {order_id}: malformed order line: {e}") from e
