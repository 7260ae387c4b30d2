from datetime import timedelta

import pytest

from auction_engine.engine import AuctionEngine
from auction_engine.models.store.base import StaleWriteError
from auction_engine.models.store.memory import MemoryAuctionStore

from conftest import PRODUCT_ID, SELLER, RecordingNotifier, seed


async def test_sweep_starts_due_and_ends_expired_auctions(engine, make_auction, clock, notifier):
    expiring = await make_auction(duration=timedelta(hours=1))
    upcoming = await make_auction(active=False, starts_in=timedelta(minutes=90), duration=timedelta(hours=3))
    await engine.place_bid(expiring.id, "alice", 150)
    clock.advance(hours=2)

    result = await engine.run_sweep()

    assert result.started_count == 1
    assert result.ended_count == 1
    assert result.failed_count == 0
    assert (await engine.get_auction(upcoming.id)).data.status == "active"
    expired = await engine.get_auction(expiring.id)
    assert expired.data.status == "ended"
    assert expired.data.winner_id == "alice"
    await engine.drain()
    assert [e.auction_id for e in notifier.of_type("ended")] == [expiring.id]


async def test_sweep_is_idempotent(engine, make_auction, clock):
    await make_auction(duration=timedelta(hours=1))
    await make_auction(active=False, starts_in=timedelta(minutes=30))
    clock.advance(hours=2)

    first = await engine.run_sweep()
    second = await engine.run_sweep()

    assert (first.started_count, first.ended_count) == (1, 1)
    assert (second.started_count, second.ended_count, second.failed_count, second.reconciled_count) == (0, 0, 0, 0)


async def test_sweep_leaves_future_auctions_alone(engine, make_auction):
    scheduled = await make_auction(active=False, starts_in=timedelta(hours=1))
    active = await make_auction()

    result = await engine.run_sweep()

    assert (result.started_count, result.ended_count) == (0, 0)
    assert (await engine.get_auction(scheduled.id)).data.status == "scheduled"
    assert (await engine.get_auction(active.id)).data.status == "active"


class BrokenAuctionStore(MemoryAuctionStore):
    def __init__(self):
        super().__init__()
        self.broken = set()

    async def auction_replace(self, auction):
        if auction.id in self.broken:
            raise RuntimeError("write failed")
        return await super().auction_replace(auction)


async def test_one_failing_auction_does_not_stop_the_sweep(clock):
    store = seed(BrokenAuctionStore())
    engine = AuctionEngine(store, notifier=RecordingNotifier(), clock=clock)
    good = await engine.create_auction(PRODUCT_ID, SELLER, 100, clock.now, clock.now + timedelta(hours=1))
    bad = await engine.create_auction(PRODUCT_ID, SELLER, 100, clock.now, clock.now + timedelta(hours=1))
    store.broken.add(bad.id)

    result = await engine.run_sweep()

    assert result.started_count == 1
    assert result.failed_count == 1
    assert (await engine.get_auction(good.id)).data.status == "active"
    assert (await engine.get_auction(bad.id)).data.status == "scheduled"


class ContendedAuctionStore(MemoryAuctionStore):
    """Every write to a contended auction loses the CAS race."""

    def __init__(self):
        super().__init__()
        self.contended = set()

    async def auction_replace(self, auction):
        if auction.id in self.contended:
            raise StaleWriteError(f"auctions/{auction.id} changed since it was read")
        return await super().auction_replace(auction)


async def test_exhausted_cas_retries_count_as_failures(clock):
    store = seed(ContendedAuctionStore())
    engine = AuctionEngine(store, clock=clock, max_retries=1)
    contended = await engine.create_auction(PRODUCT_ID, SELLER, 100, clock.now, clock.now + timedelta(hours=1))
    store.contended.add(contended.id)

    result = await engine.run_sweep()

    assert result.started_count == 0
    assert result.failed_count == 1
    assert (await engine.get_auction(contended.id)).data.status == "scheduled"


class StaleCandidatesStore(MemoryAuctionStore):
    """Reports every auction as due to start, whatever its status."""

    async def auctions_due_to_start(self, now):
        return self.auctions.all()


async def test_already_transitioned_candidate_is_skipped(clock):
    store = seed(StaleCandidatesStore())
    engine = AuctionEngine(store, clock=clock)
    auction = await engine.create_auction(PRODUCT_ID, SELLER, 100, clock.now, clock.now + timedelta(hours=1))
    await engine.start(auction.id)

    result = await engine.run_sweep()

    assert result.started_count == 0
    assert result.failed_count == 0


class UnreachableStore(MemoryAuctionStore):
    async def auctions_due_to_start(self, now):
        raise ConnectionError("database unreachable")


async def test_enumeration_failure_fails_the_sweep(clock):
    engine = AuctionEngine(seed(UnreachableStore()), clock=clock)

    with pytest.raises(ConnectionError):
        await engine.run_sweep()


async def test_ending_soon_notifies_distinct_bidders(engine, make_auction, notifier):
    soon = await make_auction(duration=timedelta(minutes=90))
    await make_auction(duration=timedelta(minutes=30))
    await make_auction(duration=timedelta(hours=3))
    await engine.place_bid(soon.id, "alice", 150)
    await engine.place_bid(soon.id, "bob", 200)
    await engine.place_bid(soon.id, "alice", 250)

    notified = await engine.run_ending_soon_sweep()

    assert notified == 1
    await engine.drain()
    events = notifier.of_type("ending_soon")
    assert len(events) == 1
    assert events[0].auction_id == soon.id
    assert events[0].recipient_ids == ["alice", "bob"]
    assert str(events[0].current_bid) == "250"


async def test_ending_soon_window_bounds_are_inclusive(engine, make_auction):
    await make_auction(duration=timedelta(hours=1))
    await make_auction(duration=timedelta(hours=2))

    assert await engine.run_ending_soon_sweep() == 2
