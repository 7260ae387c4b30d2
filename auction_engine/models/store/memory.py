"""
In-process store with Couchbase-like CAS semantics.

Documents are deep-copied on the way in and out, so callers can only change
stored state through the store methods. Reads yield to the event loop once,
as a network round-trip would, which lets concurrent coroutines interleave
between read and write exactly as they do against a real database.
"""

import asyncio
from datetime import datetime, timezone
from itertools import count
from typing import Dict, List, Optional, Tuple, Type

from auction_engine.models.entities.auctions import Auction, AuctionStatus
from auction_engine.models.entities.base import T
from auction_engine.models.entities.bids import Bid
from auction_engine.models.entities.orders import Order
from auction_engine.models.entities.products import Product
from auction_engine.models.entities.users import User

from .base import AuctionStore, StaleWriteError


class _Collection:
    def __init__(self, entity_cls: Type[T], cas_counter):
        self.entity_cls = entity_cls
        self._docs: Dict[str, Tuple[int, object]] = {}
        self._cas = cas_counter

    def get(self, key: str):
        entry = self._docs.get(key)
        if entry is None:
            return None
        cas, data = entry
        return self.entity_cls(id=key, data=data.model_copy(deep=True), cas=cas)

    def all(self) -> list:
        return [self.get(key) for key in list(self._docs)]

    def _stamp(self, item, created: bool):
        now = datetime.now(timezone.utc)
        if created and item.data.created_at is None:
            item.data.created_at = now
        item.data.updated_at = now

    def insert(self, item):
        if item.id in self._docs:
            raise KeyError(f"{self.entity_cls.collection_name()}/{item.id} already exists")
        self._stamp(item, created=True)
        return self._write(item)

    def upsert(self, item):
        self._stamp(item, created=True)
        return self._write(item)

    def replace(self, item):
        entry = self._docs.get(item.id)
        if entry is None:
            raise StaleWriteError(f"{self.entity_cls.collection_name()}/{item.id} no longer exists")
        if item.cas is not None and item.cas != entry[0]:
            raise StaleWriteError(f"{self.entity_cls.collection_name()}/{item.id} changed since it was read")
        self._stamp(item, created=False)
        return self._write(item)

    def remove(self, key: str) -> bool:
        return self._docs.pop(key, None) is not None

    def _write(self, item):
        cas = next(self._cas)
        self._docs[item.id] = (cas, item.data.model_copy(deep=True))
        item.cas = cas
        return item


class MemoryAuctionStore(AuctionStore):

    def __init__(self):
        cas_counter = count(1)
        self.auctions = _Collection(Auction, cas_counter)
        self.bids = _Collection(Bid, cas_counter)
        self.products = _Collection(Product, cas_counter)
        self.orders = _Collection(Order, cas_counter)
        self.users = _Collection(User, cas_counter)

    # Seeding helpers for collaborator records the engine does not own

    def add_product(self, product: Product) -> Product:
        return self.products.upsert(product)

    def add_user(self, user: User) -> User:
        return self.users.upsert(user)

    # Auctions

    async def auction_get(self, auction_id: str) -> Optional[Auction]:
        await asyncio.sleep(0)
        return self.auctions.get(auction_id)

    async def auction_insert(self, auction: Auction) -> Auction:
        return self.auctions.insert(auction)

    async def auction_replace(self, auction: Auction) -> Auction:
        return self.auctions.replace(auction)

    async def auction_list(self, status: Optional[AuctionStatus] = None, limit: int = 50) -> List[Auction]:
        await asyncio.sleep(0)
        items = [a for a in self.auctions.all() if status is None or a.data.status == status]
        items.sort(key=lambda a: a.data.created_at, reverse=True)
        return items[:limit]

    async def auctions_due_to_start(self, now: datetime) -> List[Auction]:
        await asyncio.sleep(0)
        return [
            a for a in self.auctions.all()
            if a.data.status == "scheduled" and a.data.start_time <= now
        ]

    async def auctions_due_to_end(self, now: datetime) -> List[Auction]:
        await asyncio.sleep(0)
        return [
            a for a in self.auctions.all()
            if a.data.status == "active" and a.data.end_time <= now
        ]

    async def auctions_ending_between(self, start: datetime, end: datetime) -> List[Auction]:
        await asyncio.sleep(0)
        return [
            a for a in self.auctions.all()
            if a.data.status == "active" and start <= a.data.end_time <= end
        ]

    async def auctions_needing_reconciliation(self) -> List[Auction]:
        await asyncio.sleep(0)
        return [
            a for a in self.auctions.all()
            if a.data.settlement_status == "pending" or a.data.pending_product_status is not None
        ]

    # Bids

    async def bid_insert(self, bid: Bid) -> Bid:
        return self.bids.insert(bid)

    async def bid_list(self, auction_id: str, auction_run: int) -> List[Bid]:
        await asyncio.sleep(0)
        return [
            b for b in self.bids.all()
            if b.data.auction_id == auction_id and b.data.auction_run == auction_run
        ]

    async def bid_delete_before_run(self, auction_id: str, auction_run: int) -> int:
        stale = [
            b.id for b in self.bids.all()
            if b.data.auction_id == auction_id and b.data.auction_run < auction_run
        ]
        for key in stale:
            self.bids.remove(key)
        return len(stale)

    # Collaborators

    async def product_get(self, product_id: str) -> Optional[Product]:
        await asyncio.sleep(0)
        return self.products.get(product_id)

    async def product_replace(self, product: Product) -> Product:
        return self.products.replace(product)

    async def order_upsert(self, order: Order) -> Order:
        return self.orders.upsert(order)

    async def order_get(self, order_id: str) -> Optional[Order]:
        await asyncio.sleep(0)
        return self.orders.get(order_id)

    async def user_get(self, user_id: str) -> Optional[User]:
        await asyncio.sleep(0)
        return self.users.get(user_id)
