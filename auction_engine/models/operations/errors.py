"""Domain errors raised by auction operations.

Each maps to a client-visible HTTP status; none of them indicates corrupted
state, the caller can retry with corrected input.
"""


class AuctionError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuctionNotFound(AuctionError):
    status_code = 404


class ProductNotFound(AuctionError):
    status_code = 404


class AuctionNotScheduled(AuctionError):
    status_code = 409


class AuctionNotActive(AuctionError):
    status_code = 409


class AuctionAlreadyEnded(AuctionError):
    status_code = 409


class AuctionNotEnded(AuctionError):
    status_code = 409


class AuctionNotCancellable(AuctionError):
    status_code = 409


class SettlementPending(AuctionError):
    status_code = 409


class ConcurrentUpdateConflict(AuctionError):
    status_code = 409


class BidTooLow(AuctionError):
    status_code = 400


class RestartTimeInvalid(AuctionError):
    status_code = 400


class InvalidAuctionSchedule(AuctionError):
    status_code = 400


class InvalidAuctionPrice(AuctionError):
    status_code = 400


class SelfBidForbidden(AuctionError):
    status_code = 403


class RestartNotAuthorized(AuctionError):
    status_code = 403


class AuctionNotAuthorized(AuctionError):
    status_code = 403
