import logging
from decimal import Decimal

from auction_engine.models.entities.orders import Order, OrderData
from auction_engine.models.store.base import AuctionStore

logger = logging.getLogger(__name__)


def auction_order_key(auction_id: str, run_number: int) -> str:
    """Deterministic order key: one order per auction run, whatever the retries."""
    return f"auction-order::{auction_id}::{run_number}"


async def order_create_for_auction(
    store: AuctionStore,
    auction_id: str,
    run_number: int,
    product_id: str,
    buyer_id: str,
    seller_id: str,
    price: Decimal,
) -> Order:
    """Idempotently create the pending order for a won auction."""
    key = auction_order_key(auction_id, run_number)
    existing = await store.order_get(key)
    if existing:
        return existing

    order = Order(
        id=key,
        data=OrderData(
            product_id=product_id,
            auction_id=auction_id,
            buyer_id=buyer_id,
            seller_id=seller_id,
            price=price,
            quantity=1,
            status="pending",
            origin="auction",
            created_by_user_id=buyer_id,
        ),
    )
    order = await store.order_upsert(order)
    logger.info(f"Order {order.id} created for auction {auction_id}: buyer={buyer_id}, price={price}")
    return order
