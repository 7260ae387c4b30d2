from .base import AuctionStore, StaleWriteError
from .memory import MemoryAuctionStore
