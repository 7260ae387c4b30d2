import secrets
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from auction_engine.engine import AuctionEngine
from auction_engine.notifications.hub import BroadcastHub
from auction_engine.utils import log

logger = log.get_logger(__name__)


def get_engine(request: Request) -> AuctionEngine:
    return request.app.state.engine


def get_hub(request: Request) -> BroadcastHub:
    return request.app.state.hub


async def current_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """Caller identity, as asserted by the gateway in front of this service."""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return x_user_id


async def require_internal(
    request: Request,
    x_internal_api_key: Optional[str] = Header(None, alias="X-Internal-API-Key"),
):
    """Guard operator endpoints when an internal API key is configured."""
    expected = request.app.state.internal_api_key
    if not expected:
        return
    if not x_internal_api_key or not secrets.compare_digest(x_internal_api_key, expected):
        logger.warning(f"Rejected operator call to {request.url.path}: bad or missing internal API key")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Internal API key required")
