"""
Bid Ledger: persisted bids per auction and the winning-bid flag.
"""

import logging
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from database import create_document, get_documents
from errors import Forbidden, InvalidState, NotFound
from schemas import Actor, Bid, to_public

logger = logging.getLogger(__name__)

# highest first; the earliest bid at an amount wins display priority
RANKING = [("amount", DESCENDING), ("created_at", ASCENDING), ("_id", ASCENDING)]


class BidLedger:
    def __init__(self, db: Database):
        self.db = db
        self.collection = db["bid"]

    def record_winning_bid(self, auction_id: int, bidder_id: int, amount: float) -> Dict[str, Any]:
        """Insert a bid that has already raised the auction price and make it the winner.

        Callers only get here after winning the conditional price update, so
        accepted amounts are strictly increasing per auction. Whatever order
        concurrent calls interleave in, the highest bid is left as the only
        winning one: each call clears lower winners, then steps down itself if
        a higher bid is already recorded.
        """
        bid_id = create_document(
            "bid",
            Bid(auction_id=auction_id, bidder_id=bidder_id, amount=amount, is_winning_bid=True),
            database=self.db,
        )
        self.collection.update_many(
            {"auction_id": auction_id, "is_winning_bid": True, "_id": {"$ne": bid_id}, "amount": {"$lt": amount}},
            {"$set": {"is_winning_bid": False}},
        )
        if self.collection.count_documents({"auction_id": auction_id, "amount": {"$gt": amount}}):
            self.collection.update_one({"_id": bid_id}, {"$set": {"is_winning_bid": False}})
        return self.get(bid_id)

    def get(self, bid_id: int) -> Dict[str, Any]:
        doc = self.collection.find_one({"_id": bid_id})
        if not doc:
            raise NotFound("Bid not found")
        return to_public(doc)

    def get_winning_bid(self, auction_id: int) -> Optional[Dict[str, Any]]:
        return to_public(self.collection.find_one({"auction_id": auction_id, "is_winning_bid": True}))

    def list_for_auction(self, auction_id: int) -> List[Dict[str, Any]]:
        docs = get_documents("bid", {"auction_id": auction_id}, database=self.db, sort=RANKING)
        return [to_public(doc) for doc in docs]

    def list_for_bidder(self, bidder_id: int) -> List[Dict[str, Any]]:
        docs = get_documents(
            "bid", {"bidder_id": bidder_id}, database=self.db, sort=[("created_at", DESCENDING), ("_id", DESCENDING)]
        )
        return [to_public(doc) for doc in docs]

    def highest_amount(self, auction_id: int) -> Optional[float]:
        docs = get_documents("bid", {"auction_id": auction_id}, limit=1, database=self.db, sort=RANKING)
        return docs[0]["amount"] if docs else None

    def has_bid_at(self, auction_id: int, amount: float) -> bool:
        """Accepted amounts are unique per auction, so this identifies one bid."""
        return self.collection.find_one({"auction_id": auction_id, "amount": amount}) is not None

    def withdraw(self, bid_id: int, actor: Actor) -> None:
        bid = self.get(bid_id)
        if bid["bidder_id"] != actor.id:
            raise Forbidden("You can only withdraw your own bids")
        if bid["is_winning_bid"]:
            raise InvalidState("The winning bid cannot be withdrawn")

        result = self.collection.delete_one({"_id": bid_id, "is_winning_bid": False})
        if result.deleted_count == 0:
            raise InvalidState("The winning bid cannot be withdrawn")
        logger.info("bid %s withdrawn by user %s", bid_id, actor.id)
