"""
Auction lifecycle transitions with CAS-guarded atomic operations.

    scheduled -> active -> ended -> (restart) -> scheduled | active
    scheduled | active -> cancelled

Every transition is one compare-and-commit on the auction document
(``auction_cas_retry``); its preconditions run inside the mutator so they
are re-checked against whatever state is committed. Product status changes
are recorded on the auction as ``pending_product_status`` in that same
commit and applied afterwards, so a failed product write is retried by the
sweep instead of being lost.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from auction_engine.models.entities.auctions import (
    Auction,
    AuctionData,
    AuctionStatus,
    AuctionType,
)
from auction_engine.models.store.base import AuctionStore
from auction_engine.utils import Clock, utc_now

from .bids import Amount
from .cas import DEFAULT_MAX_RETRIES, auction_cas_retry
from .errors import (
    AuctionNotActive,
    AuctionNotAuthorized,
    AuctionNotCancellable,
    AuctionNotEnded,
    AuctionNotScheduled,
    InvalidAuctionPrice,
    InvalidAuctionSchedule,
    ProductNotFound,
    RestartNotAuthorized,
    RestartTimeInvalid,
    SettlementPending,
)
from .products import product_set_status
from .settlement import auction_settle, decide_settlement

logger = logging.getLogger(__name__)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _price(value: Amount, name: str, allow_zero: bool = False) -> Decimal:
    try:
        price = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidAuctionPrice(f"Invalid {name}: {value!r}") from e
    if not price.is_finite():
        raise InvalidAuctionPrice(f"Invalid {name}: {value!r}")
    if price < 0:
        raise InvalidAuctionPrice(f"{name.capitalize()} cannot be negative")
    if price == 0 and not allow_zero:
        raise InvalidAuctionPrice(f"{name.capitalize()} must be positive")
    return price


# ---------------------------------------------------------------------------
# Creation & queries
# ---------------------------------------------------------------------------

async def auction_create(
    store: AuctionStore,
    product_id: str,
    seller_id: str,
    starting_price: Amount,
    start_time: datetime,
    end_time: datetime,
    reserve_price: Optional[Amount] = None,
    bid_increment: Amount = Decimal("0"),
    auction_type: AuctionType = "english",
) -> Auction:
    """Create a scheduled auction for a product owned by *seller_id*."""
    product = await store.product_get(product_id)
    if not product:
        raise ProductNotFound(f"Product {product_id} not found")
    if product.data.seller_id != seller_id:
        raise AuctionNotAuthorized("Product does not belong to seller")

    start_time, end_time = ensure_utc(start_time), ensure_utc(end_time)
    if end_time <= start_time:
        raise InvalidAuctionSchedule("End time must be after start time")

    data = AuctionData(
        product_id=product_id,
        seller_id=seller_id,
        auction_type=auction_type,
        starting_price=_price(starting_price, "starting price"),
        reserve_price=_price(reserve_price, "reserve price") if reserve_price is not None else None,
        bid_increment=_price(bid_increment, "bid increment", allow_zero=True),
        start_time=start_time,
        end_time=end_time,
        status="scheduled",
        created_by_user_id=seller_id,
    )
    auction = await store.auction_insert(Auction(id=str(uuid.uuid4()), data=data))
    logger.info(f"Auction {auction.id} created for product {product_id}, starts {start_time.isoformat()}")
    return auction


async def auction_get(store: AuctionStore, auction_id: str) -> Optional[Auction]:
    return await store.auction_get(auction_id)


async def auction_list(
    store: AuctionStore, status: Optional[AuctionStatus] = "active", limit: int = 50
) -> List[Auction]:
    return await store.auction_list(status=status, limit=limit)


# ---------------------------------------------------------------------------
# Product status follow-up
# ---------------------------------------------------------------------------

async def auction_sync_product_status(
    store: AuctionStore,
    auction_id: str,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> Optional[Auction]:
    """Apply the auction's pending product status and clear it.

    Skipped while a settlement is pending; settlement applies it itself.
    """
    auction = await store.auction_get(auction_id)
    if not auction:
        return None
    d = auction.data
    if d.pending_product_status is None or d.settlement_status == "pending":
        return auction

    status = d.pending_product_status
    await product_set_status(store, d.product_id, status, max_retries)

    def _clear(ad: AuctionData) -> None:
        if ad.pending_product_status == status:
            ad.pending_product_status = None

    return await auction_cas_retry(store, auction_id, _clear, max_retries)


async def _sync_product_status_logged(store, auction: Auction, max_retries: int) -> Auction:
    try:
        synced = await auction_sync_product_status(store, auction.id, max_retries)
        return synced or auction
    except Exception:
        logger.error(
            f"Failed to update product {auction.data.product_id} for auction {auction.id}; "
            f"will retry on next sweep",
            exc_info=True,
        )
        return auction


# ---------------------------------------------------------------------------
# Lifecycle transitions
# ---------------------------------------------------------------------------

async def auction_start(
    store: AuctionStore,
    auction_id: str,
    clock: Clock = utc_now,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> Auction:
    """Transition a scheduled auction to active."""

    def _mutate(d: AuctionData) -> None:
        if d.status != "scheduled":
            raise AuctionNotScheduled(f"Auction is not scheduled (status: {d.status})")
        now = clock()
        # Re-stamp to the actual start, unless the window already elapsed
        if now < d.end_time:
            d.start_time = now
        d.status = "active"
        d.pending_product_status = "active"

    auction = await auction_cas_retry(store, auction_id, _mutate, max_retries)
    logger.info(f"Auction started: {auction_id}")
    return await _sync_product_status_logged(store, auction, max_retries)


async def auction_end(
    store: AuctionStore,
    auction_id: str,
    clock: Clock = utc_now,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> Auction:
    """Transition an active auction to ended and settle it."""

    def _mutate(d: AuctionData) -> None:
        if d.status != "active":
            raise AuctionNotActive(f"Auction is not active (status: {d.status})")
        now = clock()
        decision = decide_settlement(d)
        d.status = "ended"
        if now > d.start_time:
            d.end_time = now
        d.ended_at = now
        d.reserve_met = decision.reserve_met
        d.winner_id = None
        d.order_id = None
        d.settlement_status = "pending"
        d.pending_product_status = "sold" if decision.sold else "active"

    auction = await auction_cas_retry(store, auction_id, _mutate, max_retries)
    logger.info(f"Auction ended: {auction_id}, reserve met: {auction.data.reserve_met}")

    try:
        auction = await auction_settle(store, auction_id, clock=clock, max_retries=max_retries)
    except Exception:
        logger.error(
            f"Settlement of auction {auction_id} failed; will retry on next sweep",
            exc_info=True,
        )
    return auction


async def auction_restart(
    store: AuctionStore,
    auction_id: str,
    requester_id: str,
    custom_start: Optional[datetime] = None,
    custom_end: Optional[datetime] = None,
    clock: Clock = utc_now,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> Auction:
    """Restart an ended auction, immediately or at custom times.

    Without custom times the auction becomes active now and keeps its
    previous duration. All bids of earlier runs are discarded.

    ``current_bid`` is cleared rather than set to the starting price, so it
    stays equal to the highest bid in the ledger; the first bid of the new
    run may therefore be exactly the starting price.
    """
    if (custom_start is None) != (custom_end is None):
        raise RestartTimeInvalid("Custom start and end times must be provided together")
    if custom_start is not None:
        custom_start, custom_end = ensure_utc(custom_start), ensure_utc(custom_end)

    def _mutate(d: AuctionData) -> None:
        if requester_id != d.seller_id:
            raise RestartNotAuthorized("Only the seller can restart this auction")
        if d.status != "ended":
            raise AuctionNotEnded(f"Only ended auctions can be restarted (status: {d.status})")
        if d.settlement_status == "pending":
            raise SettlementPending("Auction settlement is still in progress")

        now = clock()
        if custom_start is not None:
            if custom_start <= now:
                raise RestartTimeInvalid("Start time must be in the future")
            if custom_end <= custom_start:
                raise RestartTimeInvalid("End time must be after start time")
            d.start_time, d.end_time = custom_start, custom_end
            d.status = "scheduled" if custom_start > now else "active"
        else:
            duration = d.end_time - d.start_time
            d.start_time = now
            d.end_time = now + duration
            d.status = "active"

        d.run_number += 1
        d.current_bid = None
        d.current_high_bid_id = None
        d.current_high_bidder_id = None
        d.bid_count = 0
        d.winner_id = None
        d.reserve_met = None
        d.order_id = None
        d.ended_at = None
        d.settled_at = None
        d.settlement_status = "none"
        d.pending_product_status = "active"

    auction = await auction_cas_retry(store, auction_id, _mutate, max_retries)
    logger.info(
        f"Auction restarted: {auction_id} (run {auction.data.run_number}), status: {auction.data.status}"
    )

    try:
        deleted = await store.bid_delete_before_run(auction_id, auction.data.run_number)
        logger.info(f"Deleted {deleted} bids from earlier runs of auction {auction_id}")
    except Exception:
        # Old-run bids are never read; the next restart deletes them again
        logger.error(f"Failed to delete old bids of auction {auction_id}", exc_info=True)

    return await _sync_product_status_logged(store, auction, max_retries)


async def auction_cancel(
    store: AuctionStore,
    auction_id: str,
    requester_id: str,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> Auction:
    """Cancel an auction. Only allowed for the seller and if no bids have been placed."""

    def _mutate(d: AuctionData) -> None:
        if requester_id != d.seller_id:
            raise AuctionNotAuthorized("Only the seller can cancel this auction")
        if d.status not in ("scheduled", "active"):
            raise AuctionNotCancellable(f"Cannot cancel auction with status: {d.status}")
        if d.bid_count > 0:
            raise AuctionNotCancellable("Cannot cancel auction with existing bids")
        d.status = "cancelled"
        d.pending_product_status = "active"

    auction = await auction_cas_retry(store, auction_id, _mutate, max_retries)
    logger.info(f"Auction cancelled: {auction_id}")
    return await _sync_product_status_logged(store, auction, max_retries)


async def auction_reconcile(
    store: AuctionStore,
    auction_id: str,
    clock: Clock = utc_now,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> Optional[Auction]:
    """Finish whatever an interrupted transition left pending. Errors propagate."""
    auction = await store.auction_get(auction_id)
    if not auction:
        return None
    if auction.data.settlement_status == "pending":
        return await auction_settle(store, auction_id, clock=clock, max_retries=max_retries)
    return await auction_sync_product_status(store, auction_id, max_retries)
