"""
Bid admission (the bid arbitrator) and bid ledger queries.

A bid is committed in two steps:

1. CAS-update the auction's denormalized high-bid fields. This is the
   commit point that orders competing bids; every admission rule is checked
   inside the mutator, so a racing loser re-reads and is rejected against
   the bid that beat it.
2. Insert the Bid document under the id reserved in step 1. If the insert
   fails, step 1 is compensated and the error propagates.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Union

from auction_engine.models.entities.auctions import AuctionData
from auction_engine.models.entities.bids import Bid, BidData
from auction_engine.models.store.base import AuctionStore
from auction_engine.utils import Clock, utc_now

from .cas import DEFAULT_MAX_RETRIES, auction_cas_retry
from .errors import (
    AuctionAlreadyEnded,
    AuctionNotActive,
    AuctionNotFound,
    BidTooLow,
    SelfBidForbidden,
)

logger = logging.getLogger(__name__)

Amount = Union[Decimal, int, float, str]


def to_amount(value: Amount) -> Decimal:
    """Coerce a bid amount to Decimal; floats go through ``str`` to keep 0.1 == 0.1."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise BidTooLow(f"Invalid bid amount: {value!r}") from e
    if not amount.is_finite() or amount <= 0:
        raise BidTooLow("Bid amount must be positive")
    return amount


def minimum_next_bid(d: AuctionData) -> Decimal:
    """Smallest amount the next bid may have."""
    if d.current_bid is None:
        return d.starting_price
    return max(d.starting_price, d.current_bid + d.bid_increment)


def check_bid_admissible(d: AuctionData, bidder_id: str, amount: Decimal, now: datetime) -> None:
    """Raise the first admission rule *amount* breaks, in rule order."""
    if d.status != "active":
        raise AuctionNotActive(f"Auction is not active (status: {d.status})")
    if now > d.end_time:
        raise AuctionAlreadyEnded("Auction has ended")
    if bidder_id == d.seller_id:
        raise SelfBidForbidden("Sellers cannot bid on their own auction")
    if amount < d.starting_price:
        raise BidTooLow(f"Bid must be at least {d.starting_price}")
    if d.current_bid is not None:
        if amount <= d.current_bid:
            raise BidTooLow(f"Bid must be higher than current highest bid of {d.current_bid}")
        if amount < d.current_bid + d.bid_increment:
            raise BidTooLow(f"Bid must be at least {d.current_bid + d.bid_increment}")


async def auction_place_bid(
    store: AuctionStore,
    auction_id: str,
    bidder_id: str,
    amount: Amount,
    clock: Clock = utc_now,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> Bid:
    """Atomically admit a bid, or raise the rule it breaks."""
    amount = to_amount(amount)
    bid_id = str(uuid.uuid4())
    committed = {}

    def _mutate(d: AuctionData) -> None:
        now = clock()
        check_bid_admissible(d, bidder_id, amount, now)
        committed["placed_at"] = now
        committed["previous"] = (d.current_bid, d.current_high_bid_id, d.current_high_bidder_id)

        d.current_bid = amount
        d.current_high_bid_id = bid_id
        d.current_high_bidder_id = bidder_id
        d.bid_count += 1

    auction = await auction_cas_retry(store, auction_id, _mutate, max_retries)

    bid = Bid(
        id=bid_id,
        data=BidData(
            auction_id=auction_id,
            auction_run=auction.data.run_number,
            bidder_id=bidder_id,
            amount=amount,
            placed_at=committed["placed_at"],
            status="active",
        ),
    )
    try:
        bid = await store.bid_insert(bid)
    except Exception:
        logger.error(f"Failed to record bid {bid_id} on auction {auction_id}, reverting", exc_info=True)
        await _revert_bid(store, auction_id, bid_id, committed["previous"], max_retries)
        raise

    logger.info(f"Bid placed: {bid.id} for auction {auction_id}, amount: {amount}")
    return bid


async def _revert_bid(store, auction_id, bid_id, previous, max_retries) -> None:
    current_bid, high_bid_id, high_bidder_id = previous

    def _mutate(d: AuctionData) -> None:
        d.bid_count = max(d.bid_count - 1, 0)
        if d.current_high_bid_id == bid_id:
            d.current_bid = current_bid
            d.current_high_bid_id = high_bid_id
            d.current_high_bidder_id = high_bidder_id

    try:
        await auction_cas_retry(store, auction_id, _mutate, max_retries)
    except Exception:
        logger.critical(
            f"Could not revert bid {bid_id} on auction {auction_id}; high-bid fields may be stale",
            exc_info=True,
        )


def rank_bids(bids: List[Bid]) -> List[Bid]:
    """Order bids by amount (desc) then time; only the top bid is active."""
    ranked = sorted(bids, key=lambda b: (-b.data.amount, b.data.placed_at))
    for i, bid in enumerate(ranked):
        bid.data.status = "active" if i == 0 else "outbid"
    return ranked


async def bid_list_for_auction(store: AuctionStore, auction_id: str) -> List[Bid]:
    """Bids of the auction's current run, ranked."""
    auction = await store.auction_get(auction_id)
    if not auction:
        raise AuctionNotFound(f"Auction {auction_id} not found")
    bids = await store.bid_list(auction_id, auction.data.run_number)
    return rank_bids(bids)


async def bid_get_winning(store: AuctionStore, auction_id: str, auction_run: int) -> Optional[Bid]:
    bids = await store.bid_list(auction_id, auction_run)
    return rank_bids(bids)[0] if bids else None
