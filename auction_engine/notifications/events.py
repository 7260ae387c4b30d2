import json
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

EventType = Literal["started", "ended", "restarted", "cancelled", "ending_soon", "bid_placed"]


class ProductSummary(BaseModel):
    id: str
    title: str
    seller_id: str


class WinnerSummary(BaseModel):
    bidder_id: str
    amount: Decimal


class AuctionEvent(BaseModel):
    """Something that happened to an auction, as published to listeners."""

    event_type: EventType
    auction_id: str
    status: str
    start_time: datetime
    end_time: datetime
    occurred_at: datetime
    starting_price: Decimal
    current_bid: Optional[Decimal] = None
    bid_count: int = 0
    product: ProductSummary
    winner: Optional[WinnerSummary] = None

    # User ids to email; never published
    recipient_ids: List[str] = Field(default_factory=list, exclude=True)

    def to_sse(self) -> str:
        payload = self.model_dump(mode="json")
        return f"event: {self.event_type}\ndata: {json.dumps(payload)}\n\n"
