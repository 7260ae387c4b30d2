import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from auction_engine.engine import AuctionEngine
from auction_engine.models.operations.auctions import auction_create, auction_start
from auction_engine.models.operations.bids import auction_place_bid, minimum_next_bid, to_amount
from auction_engine.models.operations.errors import (
    AuctionAlreadyEnded,
    AuctionNotActive,
    AuctionNotFound,
    BidTooLow,
    ConcurrentUpdateConflict,
    SelfBidForbidden,
)
from auction_engine.models.store.base import StaleWriteError
from auction_engine.models.store.memory import MemoryAuctionStore

from conftest import SELLER, seed


async def test_first_bid_at_starting_price_is_admitted(engine, make_auction):
    auction = await make_auction(starting_price=Decimal("100"))

    bid = await engine.place_bid(auction.id, "alice", 100)

    assert bid.data.amount == Decimal("100")
    assert bid.data.auction_run == 1
    auction = await engine.get_auction(auction.id)
    assert auction.data.current_bid == Decimal("100")
    assert auction.data.current_high_bidder_id == "alice"
    assert auction.data.current_high_bid_id == bid.id
    assert auction.data.bid_count == 1


async def test_bid_below_starting_price(engine, make_auction):
    auction = await make_auction(starting_price=Decimal("100"))

    with pytest.raises(BidTooLow, match="at least 100"):
        await engine.place_bid(auction.id, "alice", 99)


async def test_seller_cannot_bid_on_own_auction(engine, make_auction):
    auction = await make_auction()

    with pytest.raises(SelfBidForbidden):
        await engine.place_bid(auction.id, SELLER, 500)
    assert (await engine.get_auction(auction.id)).data.bid_count == 0


async def test_bid_must_exceed_current_bid(engine, make_auction):
    auction = await make_auction()
    await engine.place_bid(auction.id, "alice", 150)

    with pytest.raises(BidTooLow, match="higher than current highest bid of 150"):
        await engine.place_bid(auction.id, "bob", 150)


async def test_bid_increment_is_enforced(engine, make_auction):
    auction = await make_auction(bid_increment=Decimal("10"))
    await engine.place_bid(auction.id, "alice", 150)

    with pytest.raises(BidTooLow, match="at least 160"):
        await engine.place_bid(auction.id, "bob", 155)
    bid = await engine.place_bid(auction.id, "bob", 160)
    assert bid.data.amount == Decimal("160")


async def test_minimum_next_bid(engine, make_auction):
    auction = await make_auction(starting_price=Decimal("100"), bid_increment=Decimal("5"))
    assert minimum_next_bid(auction.data) == Decimal("100")

    await engine.place_bid(auction.id, "alice", 120)
    auction = await engine.get_auction(auction.id)
    assert minimum_next_bid(auction.data) == Decimal("125")


async def test_bid_on_scheduled_auction(engine, make_auction):
    auction = await make_auction(active=False)

    with pytest.raises(AuctionNotActive):
        await engine.place_bid(auction.id, "alice", 150)


async def test_bid_on_unknown_auction(engine):
    with pytest.raises(AuctionNotFound):
        await engine.place_bid("missing", "alice", 150)


async def test_bid_after_end_time_is_rejected_while_still_active(engine, make_auction, clock):
    auction = await make_auction()
    clock.now = auction.data.end_time
    clock.advance(seconds=1)

    with pytest.raises(AuctionAlreadyEnded):
        await engine.place_bid(auction.id, "alice", 120)
    auction = await engine.get_auction(auction.id)
    assert auction.data.status == "active"
    assert auction.data.bid_count == 0


async def test_bid_exactly_at_end_time_is_admitted(engine, make_auction, clock):
    auction = await make_auction()
    clock.now = auction.data.end_time

    bid = await engine.place_bid(auction.id, "alice", 120)
    assert bid.data.placed_at == auction.data.end_time


def test_invalid_amounts():
    with pytest.raises(BidTooLow):
        to_amount("twelve")
    with pytest.raises(BidTooLow):
        to_amount(0)
    with pytest.raises(BidTooLow):
        to_amount("NaN")
    assert to_amount(0.1) == Decimal("0.1")


async def test_current_bid_tracks_each_admitted_bid(engine, make_auction, store):
    auction = await make_auction()

    for bidder, amount in [("alice", 110), ("bob", 125), ("alice", 300)]:
        await engine.place_bid(auction.id, bidder, amount)
        current = await engine.get_auction(auction.id)
        ledger = await store.bid_list(auction.id, current.data.run_number)
        assert current.data.current_bid == Decimal(amount)
        assert current.data.current_bid == max(b.data.amount for b in ledger)
        assert current.data.bid_count == len(ledger)


async def test_bids_are_ranked_with_only_the_top_bid_active(engine, make_auction):
    auction = await make_auction()
    await engine.place_bid(auction.id, "alice", 150)
    await engine.place_bid(auction.id, "bob", 200)

    bids = await engine.get_bids(auction.id)

    assert [(b.data.bidder_id, b.data.status) for b in bids] == [("bob", "active"), ("alice", "outbid")]


async def test_bid_placed_event(engine, make_auction, notifier):
    auction = await make_auction()
    await engine.place_bid(auction.id, "alice", 150)
    await engine.drain()

    event = notifier.events[-1]
    assert event.event_type == "bid_placed"
    assert event.current_bid == Decimal("150")
    assert event.bid_count == 1
    assert event.recipient_ids == []


async def test_concurrent_equal_bids_admit_exactly_one(engine, make_auction):
    auction = await make_auction()
    await engine.place_bid(auction.id, "alice", 150)

    results = await asyncio.gather(
        engine.place_bid(auction.id, "bob", 200),
        engine.place_bid(auction.id, "carol", 200),
        return_exceptions=True,
    )

    errors = [r for r in results if isinstance(r, Exception)]
    admitted = [r for r in results if not isinstance(r, Exception)]
    assert len(admitted) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], BidTooLow)
    assert "200" in errors[0].message

    auction = await engine.get_auction(auction.id)
    assert auction.data.current_bid == Decimal("200")
    assert auction.data.bid_count == 2


class RacingStore(MemoryAuctionStore):
    """Runs a hook between the next auction read and its write."""

    def __init__(self):
        super().__init__()
        self.hook = None

    async def auction_get(self, auction_id):
        auction = await super().auction_get(auction_id)
        if self.hook:
            hook, self.hook = self.hook, None
            await hook()
        return auction


async def test_racing_loser_is_rechecked_against_committed_bid(clock):
    store = seed(RacingStore())
    engine = AuctionEngine(store, clock=clock)
    auction = await engine.create_auction(
        "product-1", SELLER, 100, clock.now, clock.now + timedelta(hours=1)
    )
    await engine.start(auction.id)
    await engine.place_bid(auction.id, "alice", 150)

    async def competing_bid():
        await auction_place_bid(store, auction.id, "bob", 200, clock=clock)

    store.hook = competing_bid
    with pytest.raises(BidTooLow, match="higher than current highest bid of 200"):
        await auction_place_bid(store, auction.id, "carol", 200, clock=clock)

    auction = await store.auction_get(auction.id)
    assert auction.data.current_high_bidder_id == "bob"
    assert auction.data.bid_count == 2


class ConflictingStore(MemoryAuctionStore):
    async def auction_replace(self, auction):
        raise StaleWriteError("always stale")


async def test_cas_retries_are_bounded(clock, store):
    auction = await auction_create(store, "product-1", SELLER, 100, clock.now, clock.now + timedelta(hours=1))
    await auction_start(store, auction.id, clock=clock)

    conflicting = ConflictingStore()
    conflicting.auctions = store.auctions
    conflicting.bids = store.bids

    with pytest.raises(ConcurrentUpdateConflict):
        await auction_place_bid(conflicting, auction.id, "alice", 150, clock=clock, max_retries=2)
    assert (await store.auction_get(auction.id)).data.bid_count == 0
    assert await store.bid_list(auction.id, 1) == []


class FailingBidStore(MemoryAuctionStore):
    async def bid_insert(self, bid):
        raise RuntimeError("bid collection unavailable")


async def test_failed_bid_insert_reverts_the_auction(clock):
    store = seed(FailingBidStore())
    engine = AuctionEngine(store, clock=clock)
    auction = await engine.create_auction("product-1", SELLER, 100, clock.now, clock.now + timedelta(hours=1))
    await engine.start(auction.id)

    with pytest.raises(RuntimeError):
        await engine.place_bid(auction.id, "alice", 150)

    auction = await engine.get_auction(auction.id)
    assert auction.data.current_bid is None
    assert auction.data.current_high_bid_id is None
    assert auction.data.bid_count == 0
