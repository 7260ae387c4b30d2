"""
AuctionEngine: the single entry point for bids, transitions and sweeps.

User calls and the sweep go through the same methods. Each state-changing
call holds a per-auction lock for its duration so calls in this process
queue up instead of burning CAS retries; the CAS commit inside the
operation still arbitrates against other processes. Notifications are built
after the lock is released and delivered in background tasks, so a slow
notifier never delays the call and a failing one never fails it. Call
:meth:`AuctionEngine.drain` to wait for deliveries still in flight.
"""

import asyncio
import weakref
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Set

from auction_engine.models.entities.auctions import Auction, AuctionStatus, AuctionType
from auction_engine.models.entities.bids import Bid
from auction_engine.models.operations import auctions as auction_ops
from auction_engine.models.operations import sweep as sweep_ops
from auction_engine.models.operations.bids import Amount, auction_place_bid, bid_list_for_auction
from auction_engine.models.operations.cas import DEFAULT_MAX_RETRIES
from auction_engine.models.operations.errors import AuctionNotFound
from auction_engine.models.store.base import AuctionStore
from auction_engine.notifications.base import Notifier, NullNotifier
from auction_engine.notifications.events import (
    AuctionEvent,
    EventType,
    ProductSummary,
    WinnerSummary,
)
from auction_engine.utils import Clock, log, utc_now

logger = log.get_logger(__name__)


class AuctionEngine:

    def __init__(
        self,
        store: AuctionStore,
        notifier: Optional[Notifier] = None,
        clock: Clock = utc_now,
        max_retries: int = DEFAULT_MAX_RETRIES,
        ending_soon_window_start: timedelta = sweep_ops.ENDING_SOON_WINDOW_START,
        ending_soon_window_end: timedelta = sweep_ops.ENDING_SOON_WINDOW_END,
    ):
        self.store = store
        self.notifier = notifier or NullNotifier()
        self.clock = clock
        self.max_retries = max_retries
        self.ending_soon_window_start = ending_soon_window_start
        self.ending_soon_window_end = ending_soon_window_end
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._deliveries: Set[asyncio.Task] = set()

    def _lock(self, auction_id: str) -> asyncio.Lock:
        lock = self._locks.get(auction_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[auction_id] = lock
        return lock

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_auction(self, auction_id: str) -> Auction:
        auction = await auction_ops.auction_get(self.store, auction_id)
        if not auction:
            raise AuctionNotFound(f"Auction {auction_id} not found")
        return auction

    async def get_bids(self, auction_id: str) -> List[Bid]:
        return await bid_list_for_auction(self.store, auction_id)

    async def list_auctions(self, status: Optional[AuctionStatus] = None, limit: int = 50) -> List[Auction]:
        return await auction_ops.auction_list(self.store, status=status, limit=limit)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def create_auction(
        self,
        product_id: str,
        seller_id: str,
        starting_price: Amount,
        start_time: datetime,
        end_time: datetime,
        reserve_price: Optional[Amount] = None,
        bid_increment: Amount = Decimal("0"),
        auction_type: AuctionType = "english",
    ) -> Auction:
        return await auction_ops.auction_create(
            self.store,
            product_id=product_id,
            seller_id=seller_id,
            starting_price=starting_price,
            start_time=start_time,
            end_time=end_time,
            reserve_price=reserve_price,
            bid_increment=bid_increment,
            auction_type=auction_type,
        )

    async def place_bid(self, auction_id: str, bidder_id: str, amount: Amount) -> Bid:
        async with self._lock(auction_id):
            bid = await auction_place_bid(
                self.store, auction_id, bidder_id, amount, clock=self.clock, max_retries=self.max_retries
            )
            auction = await self.store.auction_get(auction_id)
        if auction:
            await self._notify("bid_placed", auction)
        return bid

    async def start(self, auction_id: str) -> Auction:
        async with self._lock(auction_id):
            auction = await auction_ops.auction_start(
                self.store, auction_id, clock=self.clock, max_retries=self.max_retries
            )
        await self._notify("started", auction, [auction.data.seller_id])
        return auction

    async def end(self, auction_id: str) -> Auction:
        async with self._lock(auction_id):
            auction = await auction_ops.auction_end(
                self.store, auction_id, clock=self.clock, max_retries=self.max_retries
            )
        if auction.data.settlement_status == "settled":
            await self._notify_ended(auction)
        else:
            logger.warning(f"Auction {auction_id} ended but not settled yet; notification deferred")
        return auction

    async def restart(
        self,
        auction_id: str,
        requester_id: str,
        custom_start: Optional[datetime] = None,
        custom_end: Optional[datetime] = None,
    ) -> Auction:
        async with self._lock(auction_id):
            auction = await auction_ops.auction_restart(
                self.store,
                auction_id,
                requester_id,
                custom_start=custom_start,
                custom_end=custom_end,
                clock=self.clock,
                max_retries=self.max_retries,
            )
        await self._notify("restarted", auction, [auction.data.seller_id])
        return auction

    async def cancel(self, auction_id: str, requester_id: str) -> Auction:
        async with self._lock(auction_id):
            auction = await auction_ops.auction_cancel(
                self.store, auction_id, requester_id, max_retries=self.max_retries
            )
        await self._notify("cancelled", auction, [auction.data.seller_id])
        return auction

    async def reconcile(self, auction_id: str) -> Optional[Auction]:
        """Finish an interrupted settlement or product update."""
        async with self._lock(auction_id):
            before = await self.store.auction_get(auction_id)
            auction = await auction_ops.auction_reconcile(
                self.store, auction_id, clock=self.clock, max_retries=self.max_retries
            )
        if (
            before
            and auction
            and before.data.settlement_status == "pending"
            and auction.data.settlement_status == "settled"
        ):
            await self._notify_ended(auction)
        return auction

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    async def run_sweep(self) -> sweep_ops.SweepResult:
        return await sweep_ops.run_sweep(self)

    async def run_ending_soon_sweep(self) -> int:
        return await sweep_ops.run_ending_soon_sweep(
            self, self.ending_soon_window_start, self.ending_soon_window_end
        )

    async def notify_ending_soon(self, auction: Auction) -> None:
        bids = await self.store.bid_list(auction.id, auction.data.run_number)
        bidders = list(dict.fromkeys(b.data.bidder_id for b in bids))
        await self._notify("ending_soon", auction, bidders)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def _notify_ended(self, auction: Auction) -> None:
        recipients = [auction.data.seller_id]
        if auction.data.winner_id:
            recipients.append(auction.data.winner_id)
        await self._notify("ended", auction, recipients)

    async def build_event(
        self, event_type: EventType, auction: Auction, recipient_ids: Optional[List[str]] = None
    ) -> AuctionEvent:
        d = auction.data
        product = await self.store.product_get(d.product_id)
        winner = None
        if d.winner_id and d.current_bid is not None:
            winner = WinnerSummary(bidder_id=d.winner_id, amount=d.current_bid)
        return AuctionEvent(
            event_type=event_type,
            auction_id=auction.id,
            status=d.status,
            start_time=d.start_time,
            end_time=d.end_time,
            occurred_at=self.clock(),
            starting_price=d.starting_price,
            current_bid=d.current_bid,
            bid_count=d.bid_count,
            product=ProductSummary(
                id=d.product_id,
                title=product.data.title if product else d.product_id,
                seller_id=d.seller_id,
            ),
            winner=winner,
            recipient_ids=recipient_ids or [],
        )

    async def _notify(
        self, event_type: EventType, auction: Auction, recipient_ids: Optional[List[str]] = None
    ) -> None:
        try:
            event = await self.build_event(event_type, auction, recipient_ids)
        except Exception:
            logger.error(f"Failed to build {event_type} notification for auction {auction.id}", exc_info=True)
            return
        task = asyncio.create_task(self.notifier.notify(event))
        self._deliveries.add(task)
        task.add_done_callback(self._delivery_done)

    def _delivery_done(self, task: asyncio.Task) -> None:
        self._deliveries.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Failed to deliver auction notification", exc_info=exc)

    async def drain(self) -> None:
        """Wait until every notification handed off so far has been delivered."""
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)
