"""
Persistence contract for the auction engine.

Every auction write goes through :meth:`AuctionStore.auction_replace`, which
must refuse the write (``StaleWriteError``) when the document changed since
it was read. That compare-and-commit is what serializes competing bids and
transitions across processes.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from auction_engine.models.entities.auctions import Auction, AuctionStatus
from auction_engine.models.entities.bids import Bid
from auction_engine.models.entities.orders import Order
from auction_engine.models.entities.products import Product
from auction_engine.models.entities.users import User


class StaleWriteError(Exception):
    """The document's CAS value no longer matches the one it was read at."""


class AuctionStore(ABC):

    # Auctions

    @abstractmethod
    async def auction_get(self, auction_id: str) -> Optional[Auction]: ...

    @abstractmethod
    async def auction_insert(self, auction: Auction) -> Auction: ...

    @abstractmethod
    async def auction_replace(self, auction: Auction) -> Auction:
        """Write *auction* if its ``cas`` is current, else raise ``StaleWriteError``."""

    @abstractmethod
    async def auction_list(self, status: Optional[AuctionStatus] = None, limit: int = 50) -> List[Auction]: ...

    @abstractmethod
    async def auctions_due_to_start(self, now: datetime) -> List[Auction]:
        """Scheduled auctions whose start time is at or before *now*."""

    @abstractmethod
    async def auctions_due_to_end(self, now: datetime) -> List[Auction]:
        """Active auctions whose end time is at or before *now*."""

    @abstractmethod
    async def auctions_ending_between(self, start: datetime, end: datetime) -> List[Auction]:
        """Active auctions with ``start <= end_time <= end``."""

    @abstractmethod
    async def auctions_needing_reconciliation(self) -> List[Auction]:
        """Auctions with a pending settlement or an unapplied product status."""

    # Bids

    @abstractmethod
    async def bid_insert(self, bid: Bid) -> Bid: ...

    @abstractmethod
    async def bid_list(self, auction_id: str, auction_run: int) -> List[Bid]: ...

    @abstractmethod
    async def bid_delete_before_run(self, auction_id: str, auction_run: int) -> int:
        """Delete bids of runs older than *auction_run*; returns how many went."""

    # Collaborators

    @abstractmethod
    async def product_get(self, product_id: str) -> Optional[Product]: ...

    @abstractmethod
    async def product_replace(self, product: Product) -> Product: ...

    @abstractmethod
    async def order_upsert(self, order: Order) -> Order: ...

    @abstractmethod
    async def order_get(self, order_id: str) -> Optional[Order]: ...

    @abstractmethod
    async def user_get(self, user_id: str) -> Optional[User]: ...

    async def close(self) -> None:
        return None
