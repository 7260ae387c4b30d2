from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import Field, model_validator

from .base import BaseEntity, BaseEntityData

AuctionType = Literal["english", "dutch", "sealed_bid"]
AuctionStatus = Literal["scheduled", "active", "ended", "cancelled"]
SettlementStatus = Literal["none", "pending", "settled"]
ProductSaleStatus = Literal["active", "sold"]


class AuctionData(BaseEntityData):
    # Ownership
    product_id: str
    seller_id: str  # copied from the product at creation

    auction_type: AuctionType = "english"

    # Pricing
    starting_price: Decimal = Field(gt=0)
    reserve_price: Optional[Decimal] = Field(default=None, gt=0)
    bid_increment: Decimal = Field(default=Decimal("0"), ge=0)

    # Schedule
    start_time: datetime
    end_time: datetime

    status: AuctionStatus = "scheduled"

    # Each restart begins a new run; bids belong to exactly one run
    run_number: int = 1

    # Denormalized high bid (updated atomically via CAS on each bid)
    current_bid: Optional[Decimal] = None
    current_high_bid_id: Optional[str] = None
    current_high_bidder_id: Optional[str] = None
    bid_count: int = Field(default=0, ge=0)

    # Settlement
    winner_id: Optional[str] = None
    reserve_met: Optional[bool] = None
    order_id: Optional[str] = None
    ended_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None
    settlement_status: SettlementStatus = "none"

    # Product status still to be written after the last transition
    pending_product_status: Optional[ProductSaleStatus] = None

    @model_validator(mode="after")
    def _check_schedule(self) -> "AuctionData":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class Auction(BaseEntity[AuctionData]):
    _collection_name = "auctions"
