from typing import List

from auction_engine.utils import log

from .base import Notifier
from .events import AuctionEvent

logger = log.get_logger(__name__)


class FanoutNotifier(Notifier):
    """Hands each event to every notifier in turn; one failing does not stop the rest."""

    def __init__(self, notifiers: List[Notifier]):
        self.notifiers = notifiers

    async def notify(self, event: AuctionEvent) -> None:
        for notifier in self.notifiers:
            try:
                await notifier.notify(event)
            except Exception:
                logger.error(
                    f"{type(notifier).__name__} failed on {event.event_type} event for auction {event.auction_id}",
                    exc_info=True,
                )
