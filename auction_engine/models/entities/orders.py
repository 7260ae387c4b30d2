from decimal import Decimal
from typing import Literal

from .base import BaseEntity, BaseEntityData


class OrderData(BaseEntityData):
    product_id: str
    auction_id: str
    buyer_id: str
    seller_id: str
    price: Decimal
    quantity: int = 1
    status: Literal["pending", "confirmed", "completed", "cancelled"] = "pending"
    origin: Literal["auction", "direct"] = "auction"


class Order(BaseEntity[OrderData]):
    _collection_name = "orders"
