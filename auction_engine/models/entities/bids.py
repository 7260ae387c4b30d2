from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import Field

from .base import BaseEntity, BaseEntityData


class BidData(BaseEntityData):
    auction_id: str
    auction_run: int
    bidder_id: str
    amount: Decimal = Field(gt=0)
    placed_at: datetime
    # Informational only; recomputed from amounts whenever bids are listed
    status: Literal["active", "outbid"] = "active"


class Bid(BaseEntity[BidData]):
    _collection_name = "bids"
