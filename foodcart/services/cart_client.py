# foodcart/services/cart_client.py
from typing import Any, Dict, List
from urllib.parse import quote

from pydantic import ValidationError

from foodcart.domain.errors import InvalidQuantity, RemoteUnavailable
from foodcart.domain.gateways import RemoteCartGateway
from foodcart.domain.schemas import CartLine
from foodcart.services.http_client import JsonHttpClient
from foodcart.utils.logging import get_logger

logger = get_logger(__name__)


def line_from_row(row: Dict[str, Any]) -> CartLine:
    """
    cart_items row -> CartLine.
    Accepts the store's column names (food_item_id, price, meta, restaurant_id)
    as well as our own field names.
    """
    return CartLine(
        id=row.get("id"),
        item_ref=row.get("item_ref", row.get("food_item_id")),
        unit_price=row.get("unit_price", row.get("price")),
        quantity=row["quantity"],
        options=row.get("options", row.get("meta")) or {},
        restaurant_ref=row.get("restaurant_ref", row.get("restaurant_id")),
        name=row.get("name"),
        created_at=row.get("created_at"),
    )


def row_from_line(key: str, line: CartLine) -> Dict[str, Any]:
    return {
        "cart_key": key,
        "food_item_id": line.item_ref,
        "name": line.name,
        "price": str(line.unit_price),
        "quantity": line.quantity,
        "meta": line.options,
        "restaurant_id": line.restaurant_ref,
    }


def _parse_row(data: Any, what: str) -> CartLine:
    if not isinstance(data, dict) or not data:
        raise RemoteUnavailable(f"{what} returned no row")
    try:
        return line_from_row(data)
    except (ValidationError, KeyError) as e:
        raise RemoteUnavailable(f"{what} returned a malformed row: {e}") from e


class HttpCartGateway(JsonHttpClient, RemoteCartGateway):
    """RemoteCartGateway over the cart REST API."""

    async def fetch_all(self, key: str) -> List[CartLine]:
        data = await self._request("GET", f"/carts/{quote(key, safe='')}/items")
        rows = data.get("items", []) if isinstance(data, dict) else (data or [])
        if not isinstance(rows, list):
            raise RemoteUnavailable(f"Cart {key}: unexpected response {type(rows).__name__}")

        lines = []
        for row in rows:
            if not isinstance(row, dict):
                raise RemoteUnavailable(f"Cart {key}: malformed row {row!r}")
            try:
                quantity = int(row.get("quantity") or 0)
                if quantity <= 0:
                    # zero-quantity rows are never valid cart lines
                    logger.warning(f"Cart {key}: skipping row {row.get('id')} with quantity {row.get('quantity')}")
                    continue
                lines.append(line_from_row(row))
            except (ValidationError, KeyError, TypeError, ValueError) as e:
                raise RemoteUnavailable(f"Cart {key}: malformed row {row.get('id')}: {e}") from e

        return lines

    async def insert_line(self, key: str, line: CartLine) -> CartLine:
        data = await self._request(
            "POST",
            f"/carts/{quote(key, safe='')}/items",
            json=row_from_line(key, line),
        )
        return _parse_row(data, f"Insert into cart {key}")

    async def upsert_quantity(self, line_id: str, quantity: int) -> CartLine:
        if quantity <= 0:
            raise InvalidQuantity(f"Quantity must be greater than 0, got {quantity}; delete the line instead")

        data = await self._request(
            "PATCH",
            f"/cart-items/{quote(str(line_id), safe='')}",
            json={"quantity": quantity},
        )
        return _parse_row(data, f"Update of line {line_id}")

    async def delete_line(self, line_id: str) -> None:
        await self._request("DELETE", f"/cart-items/{quote(str(line_id), safe='')}")

    async def delete_all(self, key: str) -> None:
        await self._request("DELETE", f"/carts/{quote(key, safe='')}/items")
