"""
Domain errors raised by the auction, bid, offer and notification layers.

Each error carries a reason ``code`` and the HTTP status the API maps it to.
"""


class MarketplaceError(Exception):
    code = "error"
    status_code = 400

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


class NotFound(MarketplaceError):
    """Entity not found"""
    code = "not_found"
    status_code = 404


class Forbidden(MarketplaceError):
    """Actor is not allowed to perform this action"""
    code = "forbidden"
    status_code = 403


class AuthRequired(MarketplaceError):
    """Authentication required"""
    code = "auth_required"
    status_code = 401


class InvalidState(MarketplaceError):
    """Operation not allowed in the current status"""
    code = "invalid_state"
    status_code = 409


class HasBids(InvalidState):
    """Cannot delete auction with existing bids"""
    code = "has_bids"


class Expired(MarketplaceError):
    """Auction has ended"""
    code = "expired"
    status_code = 410


class ValidationFailed(MarketplaceError):
    """Validation failed"""
    code = "validation_failed"
    status_code = 400


class BidTooLow(ValidationFailed):
    """Bid must be higher than current price"""
    code = "bid_too_low"


class BelowReserve(ValidationFailed):
    """Bid is below the reserve price"""
    code = "below_reserve"


class WrongSaleType(ValidationFailed):
    """Offers can only be made on direct sales"""
    code = "wrong_sale_type"


class BelowMinOffer(ValidationFailed):
    """Offer is below the minimum offer"""
    code = "below_min_offer"


class TooHigh(ValidationFailed):
    """Offer must be less than the starting price"""
    code = "too_high"


class DuplicatePending(ValidationFailed):
    """You already have a pending offer on this auction"""
    code = "duplicate_pending"
