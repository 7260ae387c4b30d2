"""
In-process broadcast hub.

Listeners subscribe to a channel and receive events on a bounded queue. A
listener that falls behind loses its oldest events; publishing never
blocks. Channels are ``auctions`` for every auction event and
``auction:{id}`` for one auction.
"""

import asyncio
from collections import defaultdict
from typing import Dict, Set

from auction_engine.utils import log

from .base import Notifier
from .events import AuctionEvent

logger = log.get_logger(__name__)

GLOBAL_CHANNEL = "auctions"


def auction_channel(auction_id: str) -> str:
    return f"auction:{auction_id}"


class Subscription:

    def __init__(self, hub: "BroadcastHub", channel: str, maxsize: int):
        self.hub = hub
        self.channel = channel
        self.queue: "asyncio.Queue[AuctionEvent]" = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def deliver(self, event: AuctionEvent) -> None:
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(event)

    async def get(self) -> AuctionEvent:
        return await self.queue.get()

    def close(self) -> None:
        self.hub.unsubscribe(self)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __aiter__(self):
        return self

    async def __anext__(self) -> AuctionEvent:
        return await self.get()


class BroadcastHub(Notifier):

    def __init__(self, maxsize: int = 100):
        self.maxsize = maxsize
        self._channels: Dict[str, Set[Subscription]] = defaultdict(set)

    def subscribe(self, channel: str) -> Subscription:
        sub = Subscription(self, channel, self.maxsize)
        self._channels[channel].add(sub)
        logger.debug(f"Subscribed to {channel} ({len(self._channels[channel])} listeners)")
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        listeners = self._channels.get(sub.channel)
        if listeners is None:
            return
        listeners.discard(sub)
        if not listeners:
            del self._channels[sub.channel]
        if sub.dropped:
            logger.warning(f"Listener on {sub.channel} dropped {sub.dropped} events")

    def subscriber_count(self, channel: str) -> int:
        return len(self._channels.get(channel, ()))

    def publish(self, channel: str, event: AuctionEvent) -> int:
        listeners = list(self._channels.get(channel, ()))
        for sub in listeners:
            sub.deliver(event)
        return len(listeners)

    async def notify(self, event: AuctionEvent) -> None:
        self.publish(GLOBAL_CHANNEL, event)
        self.publish(auction_channel(event.auction_id), event)
