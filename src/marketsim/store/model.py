from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import IntEnum
from typing import List, Literal

Role = Literal["buyer", "seller"]


class OrderStatus(IntEnum):
    # Values are the persisted status codes.
    PAID = 0
    COMPLETED = 1
    CANCELED = 2


@dataclass
class Item:
    item_id: str
    name: str
    price: Decimal
    stock: int
    sold_count: int = 0

    def can_sell(self, qty: int) -> bool:
        return self.stock >= qty

    def sell(self, qty: int) -> bool:
        if not self.can_sell(qty):
            return False
        self.stock -= qty
        self.sold_count += qty
        return True

    def replenish(self, qty: int) -> None:
        self.stock += qty

    def discard(self, qty: int) -> None:
        # Over-discarding floors at zero instead of failing.
        self.stock = max(0, self.stock - qty)


@dataclass(frozen=True)
class Order:
    """A recorded purchase. References buyer, seller and item by id only."""

    order_id: str
    date: str
    buyer_id: str
    seller_id: str
    item_id: str
    item_name: str
    quantity: int
    total_price: Decimal
    status: OrderStatus = OrderStatus.PAID


@dataclass
class Buyer:
    user_id: str
    username: str
    credential: str
    order_ids: List[str] = field(default_factory=list)

    @property
    def role(self) -> Role:
        return "buyer"


@dataclass
class Seller:
    user_id: str
    username: str
    credential: str
    item_ids: List[str] = field(default_factory=list)
    sale_ids: List[str] = field(default_factory=list)

    @property
    def role(self) -> Role:
        return "seller"
