import logging

from auction_engine.models.entities.products import Product, ProductData
from auction_engine.models.store.base import AuctionStore

from .cas import DEFAULT_MAX_RETRIES, product_cas_retry

logger = logging.getLogger(__name__)


async def product_set_status(
    store: AuctionStore,
    product_id: str,
    status: str,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> Product:
    """Atomically set a product's sale status (CAS-guarded)."""

    def _mutate(data: ProductData) -> bool:
        if data.status == status:
            return False
        data.status = status
        return True

    product = await product_cas_retry(store, product_id, _mutate, max_retries)
    logger.info(f"Product {product_id} status is now {status}")
    return product
