import logging
import os
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

import config
from auctions import AuctionStore
from bids import BidLedger
from database import db, ensure_indexes
from errors import AuthRequired, MarketplaceError
from lifecycle import LifecycleCoordinator
from logger import setup_logging
from notifications import NotificationService
from offers import OfferLedger
from schemas import (
    Actor,
    AuctionCategory,
    AuctionCondition,
    AuctionFilters,
    AuctionStatus,
    CreateAuctionRequest,
    CreateOfferRequest,
    PlaceBidRequest,
    RespondOfferRequest,
    UpdateAuctionRequest,
)

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Marketplace Auction API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def build_coordinator(database: Database, clock=None) -> LifecycleCoordinator:
    """Wire the stores, ledgers and notifier around one database."""
    kwargs = {"clock": clock} if clock else {}
    return LifecycleCoordinator(
        auctions=AuctionStore(database, **kwargs),
        bids=BidLedger(database),
        offers=OfferLedger(database, **kwargs),
        notifier=NotificationService(database),
        allow_self_bidding=config.ALLOW_SELF_BIDDING,
        enforce_reserve=config.ENFORCE_RESERVE_PRICE,
        **kwargs,
    )


_coordinator: Optional[LifecycleCoordinator] = None


def get_coordinator() -> LifecycleCoordinator:
    global _coordinator
    if _coordinator is None:
        if db is None:
            raise HTTPException(status_code=503, detail="Database not available")
        ensure_indexes(db)
        _coordinator = build_coordinator(db)
    return _coordinator


def get_actor(
    x_user_id: Annotated[Optional[str], Header()] = None,
    x_user_name: Annotated[Optional[str], Header()] = None,
) -> Optional[Actor]:
    """The user authenticated by the gateway, if any."""
    if not x_user_id:
        return None
    try:
        return Actor(id=int(x_user_id), name=x_user_name)
    except ValueError:
        raise AuthRequired("Invalid user id") from None


def require_actor(actor: Optional[Actor] = Depends(get_actor)) -> Actor:
    if actor is None:
        raise AuthRequired()
    return actor


Coordinator = Annotated[LifecycleCoordinator, Depends(get_coordinator)]
CurrentUser = Annotated[Actor, Depends(require_actor)]
MaybeUser = Annotated[Optional[Actor], Depends(get_actor)]


@app.exception_handler(MarketplaceError)
def marketplace_error_handler(request, exc: MarketplaceError):
    logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


@app.get("/")
def read_root():
    return {"message": "Marketplace Auction API is running"}


# --- auctions ---

@app.get("/auctions")
def list_auctions(filters: Annotated[AuctionFilters, Query()], coordinator: Coordinator, actor: MaybeUser):
    """List auctions with filters, sorting and pagination"""
    return coordinator.auctions.find_with_filters(filters, actor)


@app.get("/auctions/active")
def list_active_auctions(coordinator: Coordinator):
    """Active listings, soonest to end first"""
    return coordinator.auctions.list_active()


@app.get("/auctions/categories")
def get_categories():
    return [c.value for c in AuctionCategory]


@app.get("/auctions/conditions")
def get_conditions():
    return [c.value for c in AuctionCondition]


@app.get("/auctions/statuses")
def get_statuses():
    return [s.value for s in AuctionStatus]


@app.post("/auctions", status_code=201)
def create_auction(payload: CreateAuctionRequest, coordinator: Coordinator, actor: CurrentUser):
    return coordinator.auctions.create(payload, actor)


@app.get("/auctions/{auction_id}")
def get_auction(auction_id: int, coordinator: Coordinator):
    auction = coordinator.auctions.get(auction_id)
    auction["top_bids"] = coordinator.bids.list_for_auction(auction_id)[:10]
    return auction


@app.put("/auctions/{auction_id}")
def update_auction(auction_id: int, payload: UpdateAuctionRequest, coordinator: Coordinator, actor: CurrentUser):
    return coordinator.auctions.update(auction_id, payload, actor)


@app.delete("/auctions/{auction_id}")
def delete_auction(auction_id: int, coordinator: Coordinator, actor: CurrentUser):
    coordinator.auctions.delete(auction_id, actor)
    return {"message": "Auction deleted successfully"}


@app.post("/auctions/{auction_id}/end")
def end_auction(auction_id: int, coordinator: Coordinator, actor: CurrentUser):
    return coordinator.end_auction(auction_id, actor)


@app.post("/auctions/{auction_id}/cancel")
def cancel_auction(auction_id: int, coordinator: Coordinator, actor: CurrentUser):
    return coordinator.auctions.cancel_auction(auction_id, actor)


@app.post("/auctions/{auction_id}/sold")
def mark_sold(auction_id: int, coordinator: Coordinator, actor: CurrentUser):
    return coordinator.auctions.mark_sold(auction_id, actor)


# --- bids ---

@app.get("/auctions/{auction_id}/bids")
def list_bids(auction_id: int, coordinator: Coordinator):
    """Bids ranked highest first"""
    return coordinator.list_bids(auction_id)


@app.get("/auctions/{auction_id}/bids/winning")
def get_winning_bid(auction_id: int, coordinator: Coordinator):
    return coordinator.get_winning_bid(auction_id)


@app.post("/auctions/{auction_id}/bids", status_code=201)
def place_bid(auction_id: int, payload: PlaceBidRequest, coordinator: Coordinator, actor: CurrentUser):
    """Place a bid if the auction is active and the bid beats the current price"""
    return coordinator.place_bid(auction_id, actor, payload.amount)


@app.get("/bids/mine")
def my_bids(coordinator: Coordinator, actor: CurrentUser):
    return coordinator.bids.list_for_bidder(actor.id)


@app.delete("/bids/{bid_id}")
def withdraw_bid(bid_id: int, coordinator: Coordinator, actor: CurrentUser):
    coordinator.withdraw_bid(bid_id, actor)
    return {"message": "Bid withdrawn"}


# --- offers ---

@app.post("/auctions/{auction_id}/offers", status_code=201)
def create_offer(auction_id: int, payload: CreateOfferRequest, coordinator: Coordinator, actor: CurrentUser):
    return coordinator.create_offer(auction_id, actor, payload.amount, payload.message)


@app.get("/auctions/{auction_id}/offers")
def list_auction_offers(auction_id: int, coordinator: Coordinator, actor: CurrentUser):
    return coordinator.list_auction_offers(auction_id, actor)


@app.get("/offers/mine")
def my_offers(coordinator: Coordinator, actor: CurrentUser):
    return coordinator.offers.list_for_buyer(actor.id)


@app.get("/offers/{offer_id}")
def get_offer(offer_id: str, coordinator: Coordinator, actor: CurrentUser):
    return coordinator.get_offer(offer_id, actor)


@app.put("/offers/{offer_id}/respond")
def respond_to_offer(offer_id: str, payload: RespondOfferRequest, coordinator: Coordinator, actor: CurrentUser):
    return coordinator.respond_to_offer(offer_id, actor, payload.response)


# --- notifications ---

@app.get("/notifications")
def list_notifications(
    coordinator: Coordinator,
    actor: CurrentUser,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[Optional[int], Query(ge=1)] = None,
    unread_only: bool = False,
):
    return coordinator.notifier.list_for_user(actor.id, page, limit, unread_only)


@app.get("/notifications/unread-count")
def unread_count(coordinator: Coordinator, actor: CurrentUser):
    return {"count": coordinator.notifier.unread_count(actor.id)}


@app.put("/notifications/read-all")
def mark_all_read(coordinator: Coordinator, actor: CurrentUser):
    return {"success": True, "updated": coordinator.notifier.mark_all_read(actor.id)}


@app.put("/notifications/{notification_id}/read")
def mark_read(notification_id: int, coordinator: Coordinator, actor: CurrentUser):
    coordinator.notifier.mark_read(notification_id, actor.id)
    return {"success": True}


@app.delete("/notifications/{notification_id}")
def delete_notification(notification_id: int, coordinator: Coordinator, actor: CurrentUser):
    coordinator.notifier.delete(notification_id, actor.id)
    return {"success": True}


# --- operations ---

@app.post("/admin/sweep")
def run_sweep(coordinator: Coordinator):
    """End expired auctions and expire stale offers now"""
    return coordinator.run_sweeps()


@app.get("/schema")
def get_schema_info():
    """Expose schema classes for tooling."""
    from schemas import Auction, Bid, Notification, Offer
    return {
        "auction": Auction.model_json_schema(),
        "bid": Bid.model_json_schema(),
        "offer": Offer.model_json_schema(),
        "notification": Notification.model_json_schema(),
    }


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "collections": [],
    }

    if db is not None:
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"

    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"

    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
