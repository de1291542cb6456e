# foodcart/domain/schemas.py
import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Iterable, List, Tuple

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def options_key(options: dict | None) -> str:
    """Canonical form of line options, used as part of line identity."""
    return json.dumps(options or {}, sort_keys=True, separators=(",", ":"), default=str)


def _as_str(value):
    if value is None:
        return None
    return str(value)


# ids come back from the store as ints or uuids depending on the table
Ref = Annotated[str, BeforeValidator(_as_str)]
OptionalRef = Annotated[str | None, BeforeValidator(_as_str)]


class CartLine(BaseModel):
    """One row of the cart."""

    model_config = ConfigDict(frozen=True)

    id: OptionalRef = Field(None, description="Server-assigned id, None while only optimistic")
    item_ref: Ref = Field(..., min_length=1, description="Catalog item id")
    unit_price: Decimal = Field(..., ge=0, description="Price fixed when the line was added")
    quantity: int = Field(..., ge=1)
    options: dict[str, Any] = Field(default_factory=dict, description="Size, spice level, toppings, note")
    restaurant_ref: OptionalRef = None
    name: str | None = None
    created_at: datetime | None = None

    @property
    def identity(self) -> Tuple[str, str]:
        return self.item_ref, options_key(self.options)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


def total_quantity(lines: Iterable[CartLine]) -> int:
    return sum(line.quantity for line in lines)


def cart_subtotal(lines: Iterable[CartLine]) -> Decimal:
    return sum((line.line_total for line in lines), Decimal("0"))


class CartSnapshot(BaseModel):
    """Read-only copy of the cart handed to the saga and to listeners."""

    model_config = ConfigDict(frozen=True)

    lines: Tuple[CartLine, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def total_quantity(self) -> int:
        return total_quantity(self.lines)

    @property
    def subtotal(self) -> Decimal:
        return cart_subtotal(self.lines)

    @property
    def restaurant_ref(self) -> str | None:
        # restaurant of the cart = restaurant of the first line that knows it
        for line in self.lines:
            if line.restaurant_ref:
                return line.restaurant_ref
        return None


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    DELIVERING = "DELIVERING"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class CheckoutRequest(BaseModel):
    """Inputs of a checkout that do not come from the cart."""

    delivery_fee: Decimal = Field(Decimal("0"), ge=0)
    discount: Decimal = Field(Decimal("0"), description="Flat signed promotion, negative lowers the total")
    payment_method: str = "cash"
    delivery_address_ref: str | None = None
    estimated_delivery_minutes: int = Field(20, gt=0)


class OrderDraft(BaseModel):
    """Order header as sent to the order gateway."""

    restaurant_ref: Ref
    status: OrderStatus = OrderStatus.PENDING
    subtotal: Decimal
    delivery_fee: Decimal
    discount: Decimal
    total: Decimal
    payment_method: str
    delivery_address_ref: str | None = None
    estimated_delivery_minutes: int = 20

    @classmethod
    def from_snapshot(
        cls,
        snapshot: CartSnapshot,
        restaurant_ref: str,
        request: CheckoutRequest,
    ) -> "OrderDraft":
        subtotal = snapshot.subtotal
        return cls(
            restaurant_ref=restaurant_ref,
            subtotal=subtotal,
            delivery_fee=request.delivery_fee,
            discount=request.discount,
            total=subtotal + request.delivery_fee + request.discount,
            payment_method=request.payment_method,
            delivery_address_ref=request.delivery_address_ref,
            estimated_delivery_minutes=request.estimated_delivery_minutes,
        )


class Order(OrderDraft):
    id: Ref
    created_at: datetime | None = None
    updated_at: datetime | None = None


class OrderLine(BaseModel):
    """Snapshot of a cart line at order time. Later cart edits never touch it."""

    model_config = ConfigDict(frozen=True)

    item_ref: Ref
    quantity: int = Field(..., ge=1)
    unit_price: Decimal
    options: dict[str, Any] = Field(default_factory=dict)
    special_instructions: str = ""

    @classmethod
    def from_cart_line(cls, line: CartLine) -> "OrderLine":
        return cls(
            item_ref=line.item_ref,
            quantity=line.quantity,
            unit_price=line.unit_price,
            # deep copy so the snapshot does not share the options dict with the cart
            options=json.loads(json.dumps(line.options, default=str)),
        )


def order_lines_for(snapshot: CartSnapshot) -> List[OrderLine]:
    return [OrderLine.from_cart_line(line) for line in snapshot.lines]
