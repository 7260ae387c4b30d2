from .errors import (
    AuctionError,
    AuctionNotFound,
    ProductNotFound,
    AuctionNotScheduled,
    AuctionNotActive,
    AuctionAlreadyEnded,
    AuctionNotEnded,
    AuctionNotCancellable,
    SettlementPending,
    ConcurrentUpdateConflict,
    BidTooLow,
    RestartTimeInvalid,
    InvalidAuctionPrice,
    InvalidAuctionSchedule,
    SelfBidForbidden,
    RestartNotAuthorized,
    AuctionNotAuthorized,
)
from .auctions import (
    auction_create,
    auction_get,
    auction_list,
    auction_start,
    auction_end,
    auction_restart,
    auction_cancel,
    auction_reconcile,
    auction_sync_product_status,
)
from .bids import auction_place_bid, bid_list_for_auction, minimum_next_bid, rank_bids
from .settlement import SettlementDecision, WinningBidMissing, auction_settle, decide_settlement
from .sweep import SweepResult, run_ending_soon_sweep, run_sweep
