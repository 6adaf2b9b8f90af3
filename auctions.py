"""
Auction Store: CRUD, owner transitions, filtered listing and the end-time sweep.

Documents are returned as plain dicts with ``id`` in place of ``_id``.
"""

import logging
import math
import re
import uuid
from typing import Any, Callable, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

import config
from database import as_utc, create_document, utcnow
from errors import AuthRequired, Forbidden, HasBids, InvalidState, NotFound, ValidationFailed
from schemas import (
    Actor,
    Auction,
    AuctionFilters,
    AuctionStatus,
    CreateAuctionRequest,
    SaleType,
    UpdateAuctionRequest,
    to_public,
)

logger = logging.getLogger(__name__)

SORTS = {
    "newest": [("created_at", DESCENDING), ("_id", DESCENDING)],
    "oldest": [("created_at", ASCENDING), ("_id", ASCENDING)],
    "price_asc": [("current_price", ASCENDING), ("created_at", DESCENDING), ("_id", DESCENDING)],
    "price_desc": [("current_price", DESCENDING), ("created_at", DESCENDING), ("_id", DESCENDING)],
}

DIRECT_ONLY_FIELDS = ("min_offer", "offer_expiry_days")


class AuctionStore:
    def __init__(self, db: Database, clock: Callable = utcnow):
        self.db = db
        self.collection = db["auction"]
        self.clock = clock

    # --- reads ---

    def get(self, auction_id: int) -> Dict[str, Any]:
        doc = self.collection.find_one({"_id": auction_id})
        if not doc:
            raise NotFound("Auction not found")
        return to_public(doc)

    def find_with_filters(self, filters: AuctionFilters, actor: Optional[Actor] = None) -> Dict[str, Any]:
        """Return one page of auctions matching ``filters``.

        ``show_own`` restricts the listing to the actor's auctions and so
        requires an authenticated actor.
        """
        query: Dict[str, Any] = {}

        if filters.show_own:
            if actor is None:
                raise AuthRequired("Authentication required to show own auctions")
            query["owner_id"] = actor.id

        for field in ("category", "category_group", "scale", "era", "condition", "status"):
            value = getattr(filters, field)
            if value is not None:
                query[field] = value

        price: Dict[str, float] = {}
        if filters.min_price is not None:
            price["$gte"] = filters.min_price
        if filters.max_price is not None:
            price["$lte"] = filters.max_price
        if price:
            query["current_price"] = price

        if filters.search and filters.search.strip():
            pattern = re.escape(filters.search.strip())
            query["$or"] = [
                {"title": {"$regex": pattern, "$options": "i"}},
                {"description": {"$regex": pattern, "$options": "i"}},
                {"tags": {"$regex": pattern, "$options": "i"}},
            ]

        limit = min(filters.limit or config.DEFAULT_PAGE_SIZE, config.MAX_PAGE_SIZE)
        page = filters.page
        total = self.collection.count_documents(query)
        cursor = (
            self.collection.find(query)
            .sort(SORTS[filters.sort])
            .skip((page - 1) * limit)
            .limit(limit)
        )
        total_pages = math.ceil(total / limit) if total else 0

        return {
            "items": [to_public(doc) for doc in cursor],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        }

    def list_active(self) -> List[Dict[str, Any]]:
        """Every ACTIVE listing, soonest to end first."""
        cursor = self.collection.find({"status": AuctionStatus.ACTIVE.value}).sort(
            [("end_time", ASCENDING), ("_id", ASCENDING)]
        )
        return [to_public(doc) for doc in cursor]

    # --- writes ---

    def create(self, payload: CreateAuctionRequest, owner: Actor) -> Dict[str, Any]:
        data = payload.model_dump()
        data["end_time"] = as_utc(data.get("end_time"))

        if data["sale_type"] == SaleType.AUCTION.value:
            if data["end_time"] is None:
                raise ValidationFailed("End time is required for auctions")
            for field in DIRECT_ONLY_FIELDS:
                if data.get(field) is not None:
                    raise ValidationFailed(f"{field} is only allowed for direct sales")
        if data["end_time"] is not None and data["end_time"] <= self.clock():
            raise ValidationFailed("End time must be in the future")
        if data.get("min_offer") is not None and data["min_offer"] >= data["starting_price"]:
            raise ValidationFailed("Minimum offer must be below the starting price")

        record = Auction(
            **data,
            current_price=data["starting_price"],
            status=AuctionStatus.ACTIVE,
            owner_id=owner.id,
        )
        auction_id = create_document("auction", record, database=self.db)
        logger.info("auction %s created by user %s (%s)", auction_id, owner.id, record.sale_type)
        return self.get(auction_id)

    def update(self, auction_id: int, patch: UpdateAuctionRequest, actor: Actor) -> Dict[str, Any]:
        auction = self._owned(auction_id, actor, "You can only update your own auctions")
        if auction["status"] != AuctionStatus.ACTIVE.value:
            raise InvalidState("Cannot update ended or cancelled auctions")

        changes = patch.model_dump(exclude_unset=True)
        if "end_time" in changes:
            changes["end_time"] = as_utc(changes["end_time"])
            if changes["end_time"] is None and auction["sale_type"] == SaleType.AUCTION.value:
                raise ValidationFailed("End time is required for auctions")
            if changes["end_time"] is not None and changes["end_time"] <= self.clock():
                raise ValidationFailed("End time must be in the future")
        if auction["sale_type"] == SaleType.AUCTION.value:
            for field in DIRECT_ONLY_FIELDS:
                if changes.get(field) is not None:
                    raise ValidationFailed(f"{field} is only allowed for direct sales")
        if changes.get("min_offer") is not None and changes["min_offer"] >= auction["starting_price"]:
            raise ValidationFailed("Minimum offer must be below the starting price")

        changes["updated_at"] = self.clock()
        doc = self.collection.find_one_and_update(
            {"_id": auction_id, "status": AuctionStatus.ACTIVE.value},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise InvalidState("Cannot update ended or cancelled auctions")
        return to_public(doc)

    def delete(self, auction_id: int, actor: Actor) -> None:
        self._owned(auction_id, actor, "You can only delete your own auctions")
        if self.db["bid"].count_documents({"auction_id": auction_id}):
            raise HasBids()

        # bid_count guards against a bid landing between the check and the delete
        result = self.collection.delete_one({"_id": auction_id, "bid_count": 0})
        if result.deleted_count == 0:
            raise HasBids()
        self.db["offer"].delete_many({"auction_id": auction_id})
        logger.info("auction %s deleted by user %s", auction_id, actor.id)

    def end_auction(self, auction_id: int, actor: Actor) -> Dict[str, Any]:
        return self._owner_transition(auction_id, actor, AuctionStatus.ENDED, "end")

    def cancel_auction(self, auction_id: int, actor: Actor) -> Dict[str, Any]:
        return self._owner_transition(auction_id, actor, AuctionStatus.CANCELLED, "cancel")

    def mark_sold(self, auction_id: int, actor: Actor) -> Dict[str, Any]:
        return self._owner_transition(auction_id, actor, AuctionStatus.SOLD, "sell")

    def transition(self, auction_id: int, status: AuctionStatus) -> Optional[Dict[str, Any]]:
        """Move an ACTIVE auction to ``status``; None if it was no longer ACTIVE."""
        doc = self.collection.find_one_and_update(
            {"_id": auction_id, "status": AuctionStatus.ACTIVE.value},
            {"$set": {"status": status.value, "updated_at": self.clock()}},
            return_document=ReturnDocument.AFTER,
        )
        return to_public(doc)

    def raise_price(self, auction_id: int, amount: float) -> Optional[Dict[str, Any]]:
        """Set current_price to ``amount`` if the auction is ACTIVE and below it.

        The check and the write happen in one document update, so of two
        racing bids only the one that still beats the stored price wins.
        """
        doc = self.collection.find_one_and_update(
            {
                "_id": auction_id,
                "status": AuctionStatus.ACTIVE.value,
                "current_price": {"$lt": amount},
            },
            {
                "$set": {"current_price": amount, "updated_at": self.clock()},
                "$inc": {"bid_count": 1},
            },
            return_document=ReturnDocument.AFTER,
        )
        return to_public(doc)

    def revert_price(self, auction_id: int, amount: float, restored_price: float) -> None:
        """Undo a ``raise_price`` whose bid was never recorded.

        The bid count always comes back down. The price only goes back if no
        later bid has moved it on from ``amount``.
        """
        self.collection.update_one({"_id": auction_id}, {"$inc": {"bid_count": -1}})
        self.collection.update_one(
            {"_id": auction_id, "current_price": amount},
            {"$set": {"current_price": restored_price, "updated_at": self.clock()}},
        )

    def sweep_expired(self) -> List[Dict[str, Any]]:
        """End every ACTIVE auction past its end time; returns the auctions ended."""
        now = self.clock()
        sweep_id = uuid.uuid4().hex
        result = self.collection.update_many(
            {"status": AuctionStatus.ACTIVE.value, "end_time": {"$ne": None, "$lte": now}},
            {"$set": {"status": AuctionStatus.ENDED.value, "updated_at": now, "sweep_id": sweep_id}},
        )
        if result.modified_count == 0:
            return []
        ended = [to_public(doc) for doc in self.collection.find({"sweep_id": sweep_id})]
        self.collection.update_many({"sweep_id": sweep_id}, {"$unset": {"sweep_id": ""}})
        logger.info("sweep ended %d auctions", len(ended))
        return ended

    # --- helpers ---

    def _owned(self, auction_id: int, actor: Actor, message: str) -> Dict[str, Any]:
        auction = self.get(auction_id)
        if auction["owner_id"] != actor.id:
            raise Forbidden(message)
        return auction

    def _owner_transition(self, auction_id: int, actor: Actor, status: AuctionStatus, verb: str) -> Dict[str, Any]:
        auction = self._owned(auction_id, actor, f"You can only {verb} your own auctions")
        if auction["status"] != AuctionStatus.ACTIVE.value:
            raise InvalidState(f"Cannot {verb} an auction that is {auction['status']}")

        doc = self.transition(auction_id, status)
        if doc is None:
            raise InvalidState(f"Cannot {verb} an auction that is no longer active")
        logger.info("auction %s -> %s by owner %s", auction_id, status.value, actor.id)
        return doc
