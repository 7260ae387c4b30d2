import asyncio
import json
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest

from auction_engine.clients.mail import MailClient
from auction_engine.engine import AuctionEngine
from auction_engine.notifications import (
    GLOBAL_CHANNEL,
    AuctionEvent,
    AuctionMailer,
    BroadcastHub,
    FanoutNotifier,
    Notifier,
    ProductSummary,
    WinnerSummary,
    auction_channel,
)
from auction_engine.notifications.email import render

from conftest import NOW, PRODUCT_ID, SELLER, RecordingNotifier


def _event(event_type="started", auction_id="a-1", recipient_ids=None, **kwargs) -> AuctionEvent:
    return AuctionEvent(
        event_type=event_type,
        auction_id=auction_id,
        status="active",
        start_time=NOW,
        end_time=NOW + timedelta(hours=2),
        occurred_at=NOW,
        starting_price=Decimal("100"),
        product=ProductSummary(id=PRODUCT_ID, title="Combed cotton yarn", seller_id=SELLER),
        recipient_ids=recipient_ids or [],
        **kwargs,
    )


class RelayRecorder:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        if payload["to"] in self.fail_for:
            return httpx.Response(500, json={"error": "relay down"})
        self.sent.append((request, payload))
        return httpx.Response(202, json={"queued": True})


def _mailer(store, relay: RelayRecorder) -> AuctionMailer:
    client = MailClient(
        "https://relay.example.com/send",
        "auctions@example.com",
        api_key="relay-key",
        transport=httpx.MockTransport(relay),
    )
    return AuctionMailer(store, client, frontend_url="https://shop.example.com/")


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

def test_sse_payload_never_contains_recipients():
    event = _event(recipient_ids=[SELLER], winner=WinnerSummary(bidder_id="bob", amount=Decimal("550")))

    frame = event.to_sse()

    assert frame.startswith("event: started\ndata: ")
    assert frame.endswith("\n\n")
    payload = json.loads(frame.split("data: ", 1)[1])
    assert "recipient_ids" not in payload
    assert payload["winner"]["bidder_id"] == "bob"
    assert payload["product"]["title"] == "Combed cotton yarn"


# ---------------------------------------------------------------------------
# Hub
# ---------------------------------------------------------------------------

async def test_hub_delivers_to_global_and_auction_channels():
    hub = BroadcastHub()
    everything = hub.subscribe(GLOBAL_CHANNEL)
    mine = hub.subscribe(auction_channel("a-1"))
    other = hub.subscribe(auction_channel("a-2"))

    await hub.notify(_event(auction_id="a-1"))

    assert (await asyncio.wait_for(everything.get(), 1)).auction_id == "a-1"
    assert (await asyncio.wait_for(mine.get(), 1)).auction_id == "a-1"
    assert other.queue.empty()


async def test_hub_unsubscribes_on_exit():
    hub = BroadcastHub()

    async with hub.subscribe(GLOBAL_CHANNEL):
        assert hub.subscriber_count(GLOBAL_CHANNEL) == 1

    assert hub.subscriber_count(GLOBAL_CHANNEL) == 0
    assert hub.publish(GLOBAL_CHANNEL, _event()) == 0


async def test_slow_listener_loses_oldest_events():
    hub = BroadcastHub(maxsize=2)
    sub = hub.subscribe(GLOBAL_CHANNEL)

    for auction_id in ("a-1", "a-2", "a-3"):
        hub.publish(GLOBAL_CHANNEL, _event(auction_id=auction_id))

    assert sub.dropped == 1
    assert [(await sub.get()).auction_id for _ in range(2)] == ["a-2", "a-3"]


# ---------------------------------------------------------------------------
# Fanout
# ---------------------------------------------------------------------------

class ExplodingNotifier(Notifier):
    async def notify(self, event):
        raise RuntimeError("boom")


async def test_fanout_isolates_failures():
    recorder = RecordingNotifier()
    fanout = FanoutNotifier([ExplodingNotifier(), recorder])

    await fanout.notify(_event())

    assert len(recorder.events) == 1


async def test_notifier_failure_never_fails_a_transition(store, clock):
    engine = AuctionEngine(store, notifier=ExplodingNotifier(), clock=clock)
    auction = await engine.create_auction(PRODUCT_ID, SELLER, 100, clock.now, clock.now + timedelta(hours=1))

    auction = await engine.start(auction.id)
    await engine.place_bid(auction.id, "alice", 150)
    auction = await engine.end(auction.id)

    assert auction.data.status == "ended"
    assert auction.data.winner_id == "alice"
    await engine.drain()


class SlowNotifier(Notifier):
    def __init__(self):
        self.release = asyncio.Event()
        self.delivered = []

    async def notify(self, event):
        await self.release.wait()
        self.delivered.append(event.event_type)


async def test_transitions_do_not_wait_for_delivery(store, clock):
    notifier = SlowNotifier()
    engine = AuctionEngine(store, notifier=notifier, clock=clock)
    auction = await engine.create_auction(PRODUCT_ID, SELLER, 100, clock.now, clock.now + timedelta(hours=1))

    await asyncio.wait_for(engine.start(auction.id), 1)
    auction = await asyncio.wait_for(engine.end(auction.id), 1)

    assert auction.data.status == "ended"
    assert notifier.delivered == []

    notifier.release.set()
    await engine.drain()
    assert notifier.delivered == ["started", "ended"]


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------

async def test_mailer_sends_templated_email(store):
    relay = RelayRecorder()
    mailer = _mailer(store, relay)

    sent = await mailer.send(_event("started", recipient_ids=[SELLER]))

    assert sent == 1
    request, payload = relay.sent[0]
    assert request.headers["Authorization"] == "Bearer relay-key"
    assert payload["to"] == "seller@example.com"
    assert payload["from"] == "auctions@example.com"
    assert payload["subject"] == "Auction Started"
    assert "https://shop.example.com/auctions/a-1" in payload["html"]
    assert "Combed cotton yarn" in payload["html"]


async def test_mailer_ended_email_names_winning_bid(store):
    relay = RelayRecorder()
    mailer = _mailer(store, relay)
    event = _event(
        "ended",
        recipient_ids=[SELLER, "bob"],
        winner=WinnerSummary(bidder_id="bob", amount=Decimal("550")),
    )

    assert await mailer.send(event) == 2
    assert {p["to"] for _, p in relay.sent} == {"seller@example.com", "bob@example.com"}
    assert all("Winning bid: $550" in p["html"] for _, p in relay.sent)


def test_email_escapes_product_title():
    event = _event("cancelled")
    event.product.title = "<script>alert(1)</script> & co"

    _, html = render(event, "https://shop.example.com")

    assert "<script>" not in html
    assert "&lt;script&gt;alert(1)&lt;/script&gt; &amp; co" in html


def test_restarted_email_has_one_paragraph_per_line():
    _, html = render(_event("restarted"), "https://shop.example.com")

    assert "<p><p>" not in html
    assert "</p></p>" not in html
    assert "<p><strong>New Start Time:</strong> 2025-03-14 12:00 UTC</p>" in html
    assert "<p><strong>Starting Price:</strong> $100</p>" in html


async def test_mailer_skips_bid_placed(store):
    relay = RelayRecorder()

    assert await _mailer(store, relay).send(_event("bid_placed", recipient_ids=[SELLER])) == 0
    assert relay.sent == []


async def test_mailer_dedupes_and_skips_unknown_users(store):
    relay = RelayRecorder()

    sent = await _mailer(store, relay).send(_event("ending_soon", recipient_ids=["alice", "alice", "ghost"]))

    assert sent == 1
    assert [p["to"] for _, p in relay.sent] == ["alice@example.com"]


async def test_mailer_continues_after_relay_error(store):
    relay = RelayRecorder(fail_for={"alice@example.com"})

    sent = await _mailer(store, relay).send(_event("ending_soon", recipient_ids=["alice", "bob"]))

    assert sent == 1
    assert [p["to"] for _, p in relay.sent] == ["bob@example.com"]


async def test_mail_client_without_relay_only_logs():
    client = MailClient(None, "auctions@example.com")

    assert client.configured is False
    assert await client.send("alice@example.com", "Auction Started", "<p>hi</p>") is False


async def test_mail_client_raises_on_relay_error():
    client = MailClient(
        "https://relay.example.com/send",
        "auctions@example.com",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )

    with pytest.raises(httpx.HTTPStatusError):
        await client.send("alice@example.com", "Auction Started", "<p>hi</p>")
