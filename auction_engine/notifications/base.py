from abc import ABC, abstractmethod

from .events import AuctionEvent


class Notifier(ABC):
    """Delivers auction events. Implementations may raise; the engine catches."""

    @abstractmethod
    async def notify(self, event: AuctionEvent) -> None: ...


class NullNotifier(Notifier):

    async def notify(self, event: AuctionEvent) -> None:
        return None
