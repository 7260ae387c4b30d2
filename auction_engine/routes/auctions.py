"""
API endpoints for auctions and bidding.

POST   /auctions/                create auction for a product (seller)
GET    /auctions/                list auctions by status
GET    /auctions/stream          SSE stream of every auction event
POST   /auctions/sweep           run the start/end sweep now (operator)
GET    /auctions/{id}            auction detail
GET    /auctions/{id}/bids       bids of the current run, highest first
GET    /auctions/{id}/stream     SSE stream for one auction
POST   /auctions/{id}/bid        place a bid
POST   /auctions/{id}/start      start a scheduled auction (operator)
POST   /auctions/{id}/end        end an active auction (operator)
POST   /auctions/{id}/restart    restart an ended auction (seller)
POST   /auctions/{id}/cancel     cancel auction (seller, no bids only)
"""

import asyncio
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from auction_engine.engine import AuctionEngine
from auction_engine.models.entities.auctions import AuctionStatus, AuctionType
from auction_engine.models.operations.bids import minimum_next_bid
from auction_engine.models.operations.errors import AuctionError
from auction_engine.notifications.hub import GLOBAL_CHANNEL, BroadcastHub, auction_channel
from auction_engine.utils import log

from .dependencies import current_user_id, get_engine, get_hub, require_internal

logger = log.get_logger(__name__)

router = APIRouter(prefix="/auctions", tags=["auctions"])

SSE_KEEPALIVE_SECONDS = 15.0


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------

class CreateAuctionRequest(BaseModel):
    product_id: str
    starting_price: Decimal = Field(gt=0)
    reserve_price: Optional[Decimal] = Field(default=None, gt=0)
    bid_increment: Decimal = Field(default=Decimal("0"), ge=0)
    auction_type: AuctionType = "english"
    start_time: datetime
    end_time: datetime


class PlaceBidRequest(BaseModel):
    amount: Decimal


class RestartAuctionRequest(BaseModel):
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class BidResponse(BaseModel):
    id: str
    auction_id: str
    bidder_id: str
    amount: Decimal
    placed_at: datetime
    status: str


class AuctionResponse(BaseModel):
    id: str
    product_id: str
    seller_id: str
    auction_type: str
    status: str
    starting_price: Decimal
    reserve_price: Optional[Decimal] = None
    bid_increment: Decimal
    minimum_bid: Decimal
    current_bid: Optional[Decimal] = None
    current_high_bidder_id: Optional[str] = None
    bid_count: int
    start_time: datetime
    end_time: datetime
    run_number: int
    winner_id: Optional[str] = None
    reserve_met: Optional[bool] = None
    order_id: Optional[str] = None
    settlement_status: str
    ended_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None


class SweepResponse(BaseModel):
    started_count: int
    ended_count: int
    failed_count: int
    reconciled_count: int


def _auction_to_response(auction) -> AuctionResponse:
    d = auction.data
    return AuctionResponse(
        id=auction.id,
        product_id=d.product_id,
        seller_id=d.seller_id,
        auction_type=d.auction_type,
        status=d.status,
        starting_price=d.starting_price,
        reserve_price=d.reserve_price,
        bid_increment=d.bid_increment,
        minimum_bid=minimum_next_bid(d),
        current_bid=d.current_bid,
        current_high_bidder_id=d.current_high_bidder_id,
        bid_count=d.bid_count,
        start_time=d.start_time,
        end_time=d.end_time,
        run_number=d.run_number,
        winner_id=d.winner_id,
        reserve_met=d.reserve_met,
        order_id=d.order_id,
        settlement_status=d.settlement_status,
        ended_at=d.ended_at,
        settled_at=d.settled_at,
    )


def _bid_to_response(bid) -> BidResponse:
    d = bid.data
    return BidResponse(
        id=bid.id,
        auction_id=d.auction_id,
        bidder_id=d.bidder_id,
        amount=d.amount,
        placed_at=d.placed_at,
        status=d.status,
    )


def _http_error(e: AuctionError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


# ---------------------------------------------------------------------------
# Collection endpoints
# ---------------------------------------------------------------------------

@router.post("/", response_model=AuctionResponse, status_code=201)
async def route_auction_create(
    body: CreateAuctionRequest,
    user_id: str = Depends(current_user_id),
    engine: AuctionEngine = Depends(get_engine),
):
    """Create a scheduled auction for one of the caller's products."""
    try:
        auction = await engine.create_auction(
            product_id=body.product_id,
            seller_id=user_id,
            starting_price=body.starting_price,
            start_time=body.start_time,
            end_time=body.end_time,
            reserve_price=body.reserve_price,
            bid_increment=body.bid_increment,
            auction_type=body.auction_type,
        )
    except AuctionError as e:
        raise _http_error(e)
    return _auction_to_response(auction)


@router.get("/", response_model=List[AuctionResponse])
async def route_auctions_list(
    status: Optional[AuctionStatus] = "active",
    limit: int = Query(default=50, ge=1, le=100),
    engine: AuctionEngine = Depends(get_engine),
):
    auctions = await engine.list_auctions(status=status, limit=limit)
    return [_auction_to_response(a) for a in auctions]


@router.get("/stream")
async def route_auctions_stream(request: Request, hub: BroadcastHub = Depends(get_hub)):
    """Server-Sent Events stream of every auction event."""
    return _event_stream(request, hub, GLOBAL_CHANNEL)


@router.post("/sweep", response_model=SweepResponse, dependencies=[Depends(require_internal)])
async def route_auctions_sweep(engine: AuctionEngine = Depends(get_engine)):
    """Run the start/end sweep immediately."""
    result = await engine.run_sweep()
    return SweepResponse(
        started_count=result.started_count,
        ended_count=result.ended_count,
        failed_count=result.failed_count,
        reconciled_count=result.reconciled_count,
    )


# ---------------------------------------------------------------------------
# Single auction endpoints
# ---------------------------------------------------------------------------

@router.get("/{auction_id}", response_model=AuctionResponse)
async def route_auction_detail(auction_id: str, engine: AuctionEngine = Depends(get_engine)):
    try:
        auction = await engine.get_auction(auction_id)
    except AuctionError as e:
        raise _http_error(e)
    return _auction_to_response(auction)


@router.get("/{auction_id}/bids", response_model=List[BidResponse])
async def route_auction_bids(auction_id: str, engine: AuctionEngine = Depends(get_engine)):
    """Bids of the current run, ordered by amount descending."""
    try:
        bids = await engine.get_bids(auction_id)
    except AuctionError as e:
        raise _http_error(e)
    return [_bid_to_response(b) for b in bids]


@router.get("/{auction_id}/stream")
async def route_auction_stream(
    auction_id: str,
    request: Request,
    engine: AuctionEngine = Depends(get_engine),
    hub: BroadcastHub = Depends(get_hub),
):
    """Server-Sent Events stream for one auction."""
    try:
        await engine.get_auction(auction_id)
    except AuctionError as e:
        raise _http_error(e)
    return _event_stream(request, hub, auction_channel(auction_id))


@router.post("/{auction_id}/bid", response_model=BidResponse, status_code=201)
async def route_place_bid(
    auction_id: str,
    body: PlaceBidRequest,
    user_id: str = Depends(current_user_id),
    engine: AuctionEngine = Depends(get_engine),
):
    try:
        bid = await engine.place_bid(auction_id, user_id, body.amount)
    except AuctionError as e:
        raise _http_error(e)
    return _bid_to_response(bid)


@router.post(
    "/{auction_id}/start",
    response_model=AuctionResponse,
    dependencies=[Depends(require_internal)],
)
async def route_auction_start(auction_id: str, engine: AuctionEngine = Depends(get_engine)):
    try:
        auction = await engine.start(auction_id)
    except AuctionError as e:
        raise _http_error(e)
    return _auction_to_response(auction)


@router.post(
    "/{auction_id}/end",
    response_model=AuctionResponse,
    dependencies=[Depends(require_internal)],
)
async def route_auction_end(auction_id: str, engine: AuctionEngine = Depends(get_engine)):
    try:
        auction = await engine.end(auction_id)
    except AuctionError as e:
        raise _http_error(e)
    return _auction_to_response(auction)


@router.post("/{auction_id}/restart", response_model=AuctionResponse)
async def route_auction_restart(
    auction_id: str,
    body: Optional[RestartAuctionRequest] = None,
    user_id: str = Depends(current_user_id),
    engine: AuctionEngine = Depends(get_engine),
):
    """Restart an ended auction now, or at the given start and end times."""
    body = body or RestartAuctionRequest()
    try:
        auction = await engine.restart(
            auction_id, user_id, custom_start=body.start_time, custom_end=body.end_time
        )
    except AuctionError as e:
        raise _http_error(e)
    return _auction_to_response(auction)


@router.post("/{auction_id}/cancel", response_model=AuctionResponse)
async def route_auction_cancel(
    auction_id: str,
    user_id: str = Depends(current_user_id),
    engine: AuctionEngine = Depends(get_engine),
):
    """Cancel an auction. Only allowed if no bids have been placed."""
    try:
        auction = await engine.cancel(auction_id, user_id)
    except AuctionError as e:
        raise _http_error(e)
    return _auction_to_response(auction)


# ---------------------------------------------------------------------------
# SSE
# ---------------------------------------------------------------------------

def _event_stream(request: Request, hub: BroadcastHub, channel: str) -> StreamingResponse:
    sub = hub.subscribe(channel)

    async def event_generator():
        try:
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(sub.get(), timeout=SSE_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield event.to_sse()
        finally:
            sub.close()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
