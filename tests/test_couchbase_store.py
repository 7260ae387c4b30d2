from datetime import timedelta
from decimal import Decimal

import pytest
from couchbase.exceptions import CASMismatchException

from auction_engine.clients.couchbase import config as couchbase_config
from auction_engine.clients.couchbase.keyspace import Keyspace
from auction_engine.models.entities import Auction
from auction_engine.models.store.base import StaleWriteError
from auction_engine.models.store.couchbase import CouchbaseAuctionStore

from conftest import NOW, PRODUCT_ID, SELLER


@pytest.fixture(autouse=True)
def couchbase_env(monkeypatch):
    monkeypatch.setenv("COUCHBASE_USERNAME", "engine")
    monkeypatch.setenv("COUCHBASE_PASSWORD", "secret")
    monkeypatch.setenv("COUCHBASE_HOST", "db.internal")
    monkeypatch.setenv("COUCHBASE_BUCKET", "marketplace")
    monkeypatch.setattr(couchbase_config, "_settings", None)


@pytest.fixture
def queries(monkeypatch):
    recorded = []
    rows = []

    async def fake_query(self, query, **params):
        recorded.append((str(self), query, params))
        return rows

    monkeypatch.setattr(Keyspace, "query", fake_query)
    return recorded, rows


def _auction_row(auction_id="a-1", **overrides):
    data = {
        "product_id": PRODUCT_ID,
        "seller_id": SELLER,
        "starting_price": "100",
        "start_time": NOW.isoformat(),
        "end_time": (NOW + timedelta(hours=1)).isoformat(),
        "status": "scheduled",
    }
    data.update(overrides)
    return {"id": auction_id, "auctions": data}


def test_settings_are_validated_lazily(monkeypatch):
    monkeypatch.delenv("COUCHBASE_HOST")

    store = CouchbaseAuctionStore()

    with pytest.raises(ValueError, match="COUCHBASE_HOST"):
        store.auctions.get_keyspace()


async def test_due_to_start_query(queries):
    recorded, rows = queries
    rows.append(_auction_row())

    auctions = await CouchbaseAuctionStore().auctions_due_to_start(NOW)

    keyspace, query, params = recorded[0]
    assert keyspace == "`marketplace`.`_default`.`auctions`"
    assert "status = 'scheduled'" in query
    assert "STR_TO_MILLIS(start_time) <= $now_ms" in query
    assert params == {"now_ms": int(NOW.timestamp() * 1000)}
    assert [a.id for a in auctions] == ["a-1"]
    assert auctions[0].data.starting_price == Decimal("100")


async def test_bid_delete_counts_removed_documents(queries):
    recorded, rows = queries
    rows.extend([{"id": "b-1"}, {"id": "b-2"}])

    deleted = await CouchbaseAuctionStore().bid_delete_before_run("a-1", 3)

    _, query, params = recorded[0]
    assert query.startswith("DELETE FROM `marketplace`.`_default`.`bids`")
    assert params == {"auction_id": "a-1", "auction_run": 3}
    assert deleted == 2


class StaleCollection:
    async def replace(self, key, doc, *args):
        raise CASMismatchException()


async def test_cas_mismatch_becomes_stale_write(monkeypatch):
    async def get_collection(self):
        return StaleCollection()

    monkeypatch.setattr(Keyspace, "get_collection", get_collection)
    row = _auction_row()
    auction = Auction(id=row["id"], data=row["auctions"], cas=42)

    with pytest.raises(StaleWriteError):
        await CouchbaseAuctionStore().auction_replace(auction)
