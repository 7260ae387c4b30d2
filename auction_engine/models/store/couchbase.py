"""
Couchbase-backed store.

Single-document reads and writes use the KV API with CAS; the sweep
candidate queries and the bulk bid deletion use N1QL. Timestamps are stored
as ISO-8601 strings, so time comparisons go through ``STR_TO_MILLIS``.
"""

import logging
from datetime import datetime
from typing import List, Optional

from auction_engine.clients.couchbase import CouchbaseRepository, check_connection, close_cluster
from auction_engine.models.entities.auctions import Auction, AuctionStatus
from auction_engine.models.entities.bids import Bid
from auction_engine.models.entities.orders import Order
from auction_engine.models.entities.products import Product
from auction_engine.models.entities.users import User

from .base import AuctionStore

logger = logging.getLogger(__name__)


def _millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


class CouchbaseAuctionStore(AuctionStore):

    def __init__(self, scope_name: str = "_default"):
        self.auctions = CouchbaseRepository(Auction, scope_name)
        self.bids = CouchbaseRepository(Bid, scope_name)
        self.products = CouchbaseRepository(Product, scope_name)
        self.orders = CouchbaseRepository(Order, scope_name)
        self.users = CouchbaseRepository(User, scope_name)

    async def connect(self) -> None:
        logger.info("Verifying Couchbase connection...")
        await check_connection()
        logger.info("Couchbase connection verified.")

    # Auctions

    async def auction_get(self, auction_id: str) -> Optional[Auction]:
        return await self.auctions.get(auction_id)

    async def auction_insert(self, auction: Auction) -> Auction:
        return await self.auctions.create(auction, user_id=auction.data.seller_id)

    async def auction_replace(self, auction: Auction) -> Auction:
        return await self.auctions.update(auction)

    async def auction_list(self, status: Optional[AuctionStatus] = None, limit: int = 50) -> List[Auction]:
        if status:
            return await self.auctions.select(
                "status = $status", order_by=f"created_at DESC LIMIT {int(limit)}", status=status
            )
        return await self.auctions.select("1=1", order_by=f"created_at DESC LIMIT {int(limit)}")

    async def auctions_due_to_start(self, now: datetime) -> List[Auction]:
        return await self.auctions.select(
            "status = 'scheduled' AND STR_TO_MILLIS(start_time) <= $now_ms",
            order_by="start_time ASC",
            now_ms=_millis(now),
        )

    async def auctions_due_to_end(self, now: datetime) -> List[Auction]:
        return await self.auctions.select(
            "status = 'active' AND STR_TO_MILLIS(end_time) <= $now_ms",
            order_by="end_time ASC",
            now_ms=_millis(now),
        )

    async def auctions_ending_between(self, start: datetime, end: datetime) -> List[Auction]:
        return await self.auctions.select(
            "status = 'active' "
            "AND STR_TO_MILLIS(end_time) >= $start_ms AND STR_TO_MILLIS(end_time) <= $end_ms",
            order_by="end_time ASC",
            start_ms=_millis(start),
            end_ms=_millis(end),
        )

    async def auctions_needing_reconciliation(self) -> List[Auction]:
        return await self.auctions.select(
            "settlement_status = 'pending' OR pending_product_status IS VALUED"
        )

    # Bids

    async def bid_insert(self, bid: Bid) -> Bid:
        return await self.bids.create(bid, user_id=bid.data.bidder_id)

    async def bid_list(self, auction_id: str, auction_run: int) -> List[Bid]:
        return await self.bids.select(
            "auction_id = $auction_id AND auction_run = $auction_run",
            order_by="placed_at ASC",
            auction_id=auction_id,
            auction_run=auction_run,
        )

    async def bid_delete_before_run(self, auction_id: str, auction_run: int) -> int:
        keyspace = self.bids.get_keyspace()
        rows = await keyspace.query(
            f"DELETE FROM {keyspace} "
            f"WHERE auction_id = $auction_id AND auction_run < $auction_run "
            f"RETURNING META().id",
            auction_id=auction_id,
            auction_run=auction_run,
        )
        return len(rows)

    # Collaborators

    async def product_get(self, product_id: str) -> Optional[Product]:
        return await self.products.get(product_id)

    async def product_replace(self, product: Product) -> Product:
        return await self.products.update(product)

    async def order_upsert(self, order: Order) -> Order:
        return await self.orders.create_or_update(order)

    async def order_get(self, order_id: str) -> Optional[Order]:
        return await self.orders.get(order_id)

    async def user_get(self, user_id: str) -> Optional[User]:
        return await self.users.get(user_id)

    async def close(self) -> None:
        await close_cluster()
