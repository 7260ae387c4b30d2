from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from auction_engine.engine import AuctionEngine
from auction_engine.models.entities import Product, ProductData, User, UserData
from auction_engine.models.store.memory import MemoryAuctionStore
from auction_engine.notifications.base import Notifier

NOW = datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)

PRODUCT_ID = "product-1"
SELLER = "seller"
USERS = ("seller", "alice", "bob", "carol")


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingNotifier(Notifier):
    def __init__(self):
        self.events = []

    async def notify(self, event):
        self.events.append(event)

    def of_type(self, event_type):
        return [e for e in self.events if e.event_type == event_type]


def seed(store: MemoryAuctionStore) -> MemoryAuctionStore:
    store.add_product(Product(id=PRODUCT_ID, data=ProductData(seller_id=SELLER, title="Combed cotton yarn")))
    store.add_product(Product(id="product-2", data=ProductData(seller_id="bob", title="Denim offcuts")))
    for user_id in USERS:
        store.add_user(User(id=user_id, data=UserData(email=f"{user_id}@example.com")))
    return store


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def store():
    return seed(MemoryAuctionStore())


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(store, notifier, clock):
    return AuctionEngine(store, notifier=notifier, clock=clock)


@pytest.fixture
def make_auction(engine, clock):
    """Create an auction for the seller's product, started unless ``active=False``."""

    async def _make(
        starting_price=Decimal("100"),
        reserve_price=None,
        bid_increment=Decimal("0"),
        duration=timedelta(hours=2),
        starts_in=timedelta(0),
        active=True,
    ):
        start_time = clock.now + starts_in
        auction = await engine.create_auction(
            product_id=PRODUCT_ID,
            seller_id=SELLER,
            starting_price=starting_price,
            start_time=start_time,
            end_time=start_time + duration,
            reserve_price=reserve_price,
            bid_increment=bid_increment,
        )
        if active:
            auction = await engine.start(auction.id)
        return auction

    return _make
