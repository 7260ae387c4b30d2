"""
Settlement of ended auctions.

``auction_end`` decides the outcome inside its CAS commit (reserve met or
not, which product status follows) and leaves ``settlement_status =
"pending"``. :func:`auction_settle` then performs the side effects, every
one of them idempotent, and marks the auction settled. An auction left
pending by a crash or a failed write is picked up again by the sweep's
reconciliation pass.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from auction_engine.models.entities.auctions import Auction, AuctionData
from auction_engine.models.store.base import AuctionStore
from auction_engine.utils import Clock, utc_now

from .bids import bid_get_winning
from .cas import DEFAULT_MAX_RETRIES, auction_cas_retry
from .errors import AuctionNotFound
from .orders import order_create_for_auction
from .products import product_set_status

logger = logging.getLogger(__name__)


class WinningBidMissing(Exception):
    """The committed high bid is not (yet) in the bid ledger."""


@dataclass
class SettlementDecision:
    reserve_met: bool
    winner_id: Optional[str]
    winning_amount: Optional[Decimal]

    @property
    def sold(self) -> bool:
        return self.winner_id is not None


def decide_settlement(d: AuctionData) -> SettlementDecision:
    """Winner and reserve outcome for the auction's committed high bid."""
    has_bid = d.current_high_bidder_id is not None and d.current_bid is not None
    reserve_met = d.reserve_price is None or (has_bid and d.current_bid >= d.reserve_price)
    if reserve_met and has_bid:
        return SettlementDecision(True, d.current_high_bidder_id, d.current_bid)
    return SettlementDecision(reserve_met, None, None)


async def auction_settle(
    store: AuctionStore,
    auction_id: str,
    clock: Clock = utc_now,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> Auction:
    """Create the order (if sold), update the product and mark the auction settled.

    No-op for auctions that are not pending settlement.
    """
    auction = await store.auction_get(auction_id)
    if not auction:
        raise AuctionNotFound(f"Auction {auction_id} not found")
    d = auction.data
    if d.settlement_status != "pending":
        return auction

    run_number = d.run_number
    decision = decide_settlement(d)
    order_id = None

    if decision.sold:
        winning_bid = await bid_get_winning(store, auction_id, run_number)
        if (
            winning_bid is None
            or winning_bid.id != d.current_high_bid_id
            or winning_bid.data.amount != decision.winning_amount
        ):
            raise WinningBidMissing(
                f"Winning bid {d.current_high_bid_id} of auction {auction_id} is not in the ledger"
            )
        order = await order_create_for_auction(
            store,
            auction_id=auction_id,
            run_number=run_number,
            product_id=d.product_id,
            buyer_id=decision.winner_id,
            seller_id=d.seller_id,
            price=decision.winning_amount,
        )
        order_id = order.id

    # Decided again from the committed high bid, which a reverted bid may have changed since end
    product_status = "sold" if decision.sold else "active"
    await product_set_status(store, d.product_id, product_status, max_retries)

    def _mark_settled(ad: AuctionData) -> None:
        if ad.settlement_status != "pending" or ad.run_number != run_number:
            return
        ad.settlement_status = "settled"
        ad.settled_at = clock()
        ad.winner_id = decision.winner_id
        ad.reserve_met = decision.reserve_met
        ad.order_id = order_id
        ad.pending_product_status = None

    auction = await auction_cas_retry(store, auction_id, _mark_settled, max_retries)
    if decision.sold:
        logger.info(
            f"Auction {auction_id} settled: winner={decision.winner_id}, "
            f"price={decision.winning_amount}, order={order_id}"
        )
    else:
        reason = "reserve price not met" if not decision.reserve_met else "no bids received"
        logger.info(f"Auction {auction_id} settled without sale: {reason}")
    return auction
