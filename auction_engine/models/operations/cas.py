"""
CAS-retry helpers for atomic read-modify-write.

The mutator receives the freshly read document data and changes it in
place. It aborts by raising an ``AuctionError``; because it runs again after
every re-read, its preconditions are always checked against the state that
is actually committed. On ``StaleWriteError`` the helper re-reads and retries
with exponential backoff (10 ms, 20 ms, 40 ms, ...).
"""

import asyncio
import logging
from typing import Callable

from auction_engine.models.entities.auctions import Auction, AuctionData
from auction_engine.models.entities.products import Product, ProductData
from auction_engine.models.store.base import AuctionStore, StaleWriteError

from .errors import AuctionNotFound, ConcurrentUpdateConflict, ProductNotFound

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5


async def auction_cas_retry(
    store: AuctionStore,
    auction_id: str,
    mutator: Callable[[AuctionData], None],
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> Auction:
    backoff_ms = 10
    for attempt in range(max_retries + 1):
        auction = await store.auction_get(auction_id)
        if not auction:
            raise AuctionNotFound(f"Auction {auction_id} not found")

        mutator(auction.data)

        try:
            return await store.auction_replace(auction)
        except StaleWriteError:
            if attempt == max_retries:
                break
            logger.debug(f"CAS conflict on auction {auction_id}, retry {attempt + 1}/{max_retries}")
            await asyncio.sleep(backoff_ms / 1000)
            backoff_ms *= 2

    raise ConcurrentUpdateConflict(
        f"Auction {auction_id} is being updated concurrently, please retry"
    )


async def product_cas_retry(
    store: AuctionStore,
    product_id: str,
    mutator: Callable[[ProductData], bool],
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> Product:
    """Like :func:`auction_cas_retry`; the mutator returns False to skip the write."""
    backoff_ms = 10
    for attempt in range(max_retries + 1):
        product = await store.product_get(product_id)
        if not product:
            raise ProductNotFound(f"Product {product_id} not found")

        if not mutator(product.data):
            return product

        try:
            return await store.product_replace(product)
        except StaleWriteError:
            if attempt == max_retries:
                break
            await asyncio.sleep(backoff_ms / 1000)
            backoff_ms *= 2

    raise ConcurrentUpdateConflict(
        f"Product {product_id} is being updated concurrently, please retry"
    )
