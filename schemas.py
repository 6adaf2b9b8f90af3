"""
Database Schemas for the Marketplace API

Each Pydantic model below maps to a MongoDB collection. The collection name is
the lowercase of the class name (e.g., Auction -> "auction"). Auctions, bids
and notifications use sequential integer ids, offers use UUID strings.

Request models validate request bodies before they reach the lifecycle code.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- Enumerations ---

class SaleType(str, Enum):
    AUCTION = "auction"
    DIRECT = "direct"


class AuctionStatus(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"
    SOLD = "sold"


class AuctionCategory(str, Enum):
    MINIATURES = "miniatures"
    BOOKS = "books"
    TERRAIN = "terrain"
    PAINTS = "paints"
    ACCESSORIES = "accessories"


class AuctionCondition(str, Enum):
    MINT = "mint"
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class OfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class NotificationType(str, Enum):
    BID_PLACED = "bid_placed"
    BID_OUTBID = "bid_outbid"
    OFFER_RECEIVED = "offer_received"
    OFFER_ACCEPTED = "offer_accepted"
    OFFER_REJECTED = "offer_rejected"
    OFFER_EXPIRED = "offer_expired"
    AUCTION_WON = "auction_won"
    AUCTION_ENDED = "auction_ended"


class _Document(BaseModel):
    model_config = ConfigDict(use_enum_values=True)


# --- Collections ---

class Auction(_Document):
    """
    Listing sold by bidding or by direct offers
    Collection name: "auction"
    """
    title: str = Field(..., max_length=100, description="Auction title")
    description: str = Field("", max_length=1000, description="Auction description")
    image_url: Optional[str] = Field(None, description="Hero image for auction")
    starting_price: float = Field(..., ge=0, description="Starting (asking) price")
    current_price: float = Field(..., ge=0, description="Highest accepted bid or starting price")
    reserve_price: Optional[float] = Field(None, ge=0, description="Minimum acceptable final price")
    sale_type: SaleType = SaleType.AUCTION
    category: AuctionCategory = AuctionCategory.MINIATURES
    category_group: Optional[str] = None
    condition: AuctionCondition = AuctionCondition.GOOD
    era: Optional[str] = None
    scale: Optional[str] = None
    tags: List[str] = Field(default_factory=list, description="Searchable tags")
    status: AuctionStatus = AuctionStatus.ACTIVE
    end_time: Optional[datetime] = Field(None, description="Required for auction sale type")
    owner_id: int
    min_offer: Optional[float] = Field(None, ge=0, description="Direct sale only")
    offer_expiry_days: Optional[int] = Field(None, ge=1, description="Direct sale only")
    bid_count: int = 0


class Bid(_Document):
    """
    A bid placed on an auction
    Collection name: "bid"
    """
    auction_id: int
    bidder_id: int
    amount: float = Field(..., gt=0, description="Bid amount")
    is_winning_bid: bool = False


class Offer(_Document):
    """
    An offer on a direct sale listing
    Collection name: "offer"
    """
    auction_id: int
    buyer_id: int
    amount: float = Field(..., ge=0)
    message: Optional[str] = Field(None, max_length=500)
    status: OfferStatus = OfferStatus.PENDING
    expires_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None


class Notification(_Document):
    """
    A message to a user about a bid, offer or auction event
    Collection name: "notification"
    """
    recipient_id: int
    sender_id: Optional[int] = None
    type: NotificationType
    title: str
    message: str
    auction_id: Optional[int] = None
    offer_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False


# --- Requests ---

class Actor(BaseModel):
    """The authenticated user making a request"""
    id: int
    name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or f"User {self.id}"


class CreateAuctionRequest(_Document):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=1000)
    image_url: Optional[str] = None
    starting_price: float = Field(..., ge=0)
    reserve_price: Optional[float] = Field(None, ge=0)
    sale_type: SaleType = SaleType.AUCTION
    category: AuctionCategory = AuctionCategory.MINIATURES
    category_group: Optional[str] = None
    condition: AuctionCondition = AuctionCondition.GOOD
    era: Optional[str] = None
    scale: Optional[str] = None
    tags: List[str] = Field(default_factory=list, max_length=20)
    end_time: Optional[datetime] = None
    min_offer: Optional[float] = Field(None, ge=0)
    offer_expiry_days: Optional[int] = Field(None, ge=1)


class UpdateAuctionRequest(_Document):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    image_url: Optional[str] = None
    reserve_price: Optional[float] = Field(None, ge=0)
    category: Optional[AuctionCategory] = None
    category_group: Optional[str] = None
    condition: Optional[AuctionCondition] = None
    era: Optional[str] = None
    scale: Optional[str] = None
    tags: Optional[List[str]] = Field(None, max_length=20)
    end_time: Optional[datetime] = None
    min_offer: Optional[float] = Field(None, ge=0)
    offer_expiry_days: Optional[int] = Field(None, ge=1)

    @field_validator("title", "description", "category", "condition", "tags")
    @classmethod
    def not_null(cls, value):
        # these can be left out of a patch, but not cleared
        if value is None:
            raise ValueError("may not be null")
        return value


class PlaceBidRequest(BaseModel):
    amount: float = Field(..., gt=0)


class CreateOfferRequest(BaseModel):
    amount: float = Field(..., ge=0)
    message: Optional[str] = Field(None, max_length=500)


class RespondOfferRequest(BaseModel):
    response: Literal["accept", "reject"]


class AuctionFilters(_Document):
    """Query parameters for listing auctions"""
    category: Optional[AuctionCategory] = None
    category_group: Optional[str] = None
    scale: Optional[str] = None
    era: Optional[str] = None
    condition: Optional[AuctionCondition] = None
    status: Optional[AuctionStatus] = None
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    search: Optional[str] = None
    show_own: bool = False
    sort: Literal["newest", "oldest", "price_asc", "price_desc"] = "newest"
    page: int = Field(1, ge=1)
    limit: Optional[int] = Field(None, ge=1)


def to_public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Rename Mongo's ``_id`` to ``id`` for API output."""
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = doc.pop("_id")
    doc.pop("sweep_id", None)
    return doc
