"""
Offer Ledger: persisted offers on direct-sale listings, their responses and expiry.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_documents, utcnow
from errors import DuplicatePending, NotFound
from schemas import Offer, OfferStatus, to_public

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


class OfferLedger:
    def __init__(self, db: Database, clock=utcnow):
        self.db = db
        self.collection = db["offer"]
        self.clock = clock

    def create(
        self,
        auction_id: int,
        buyer_id: int,
        amount: float,
        message: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        offer = Offer(
            auction_id=auction_id,
            buyer_id=buyer_id,
            amount=amount,
            message=message,
            expires_at=expires_at,
        )
        try:
            offer_id = create_document(
                "offer",
                {**offer.model_dump(), "created_at": self.clock()},
                database=self.db,
                doc_id=str(uuid.uuid4()),
            )
        except DuplicateKeyError:
            # a concurrent offer from the same buyer got in first
            raise DuplicatePending() from None
        return self.get(offer_id)

    def get(self, offer_id: str) -> Dict[str, Any]:
        doc = self.collection.find_one({"_id": offer_id})
        if not doc:
            raise NotFound("Offer not found")
        return to_public(doc)

    def find_pending(self, auction_id: int, buyer_id: int) -> Optional[Dict[str, Any]]:
        return to_public(
            self.collection.find_one(
                {"auction_id": auction_id, "buyer_id": buyer_id, "status": OfferStatus.PENDING.value}
            )
        )

    def list_for_buyer(self, buyer_id: int) -> List[Dict[str, Any]]:
        docs = get_documents("offer", {"buyer_id": buyer_id}, database=self.db, sort=NEWEST_FIRST)
        return [to_public(doc) for doc in docs]

    def list_for_auction(self, auction_id: int) -> List[Dict[str, Any]]:
        docs = get_documents("offer", {"auction_id": auction_id}, database=self.db, sort=NEWEST_FIRST)
        return [to_public(doc) for doc in docs]

    def settle(self, offer_id: str, status: OfferStatus) -> Optional[Dict[str, Any]]:
        """Move a PENDING offer to ``status``; None if it was no longer PENDING."""
        now = self.clock()
        changes = {"status": status.value, "updated_at": now}
        if status == OfferStatus.ACCEPTED:
            changes["accepted_at"] = now
        doc = self.collection.find_one_and_update(
            {"_id": offer_id, "status": OfferStatus.PENDING.value},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        return to_public(doc)

    def reopen(self, offer_id: str) -> None:
        """Return a just-accepted offer to PENDING when the sale could not complete.

        If the buyer has placed a newer pending offer in the meantime, that one
        stands and this one is rejected instead.
        """
        query = {"_id": offer_id, "status": OfferStatus.ACCEPTED.value}
        try:
            self.collection.update_one(
                query,
                {"$set": {"status": OfferStatus.PENDING.value, "accepted_at": None, "updated_at": self.clock()}},
            )
        except DuplicateKeyError:
            self.collection.update_one(
                query,
                {"$set": {"status": OfferStatus.REJECTED.value, "accepted_at": None, "updated_at": self.clock()}},
            )

    def reject_others(self, auction_id: int, accepted_offer_id: str) -> List[Dict[str, Any]]:
        """Reject every other PENDING offer on the auction; returns the offers rejected."""
        return self._bulk_transition(
            {"auction_id": auction_id, "status": OfferStatus.PENDING.value, "_id": {"$ne": accepted_offer_id}},
            OfferStatus.REJECTED,
        )

    def expire_due(self) -> List[Dict[str, Any]]:
        """Expire every PENDING offer whose expiry has passed; returns the offers expired."""
        return self._bulk_transition(
            {"status": OfferStatus.PENDING.value, "expires_at": {"$ne": None, "$lte": self.clock()}},
            OfferStatus.EXPIRED,
        )

    def _bulk_transition(self, query: Dict[str, Any], status: OfferStatus) -> List[Dict[str, Any]]:
        # tag the rows so the exact set changed by this update can be read back
        sweep_id = uuid.uuid4().hex
        result = self.collection.update_many(
            query,
            {"$set": {"status": status.value, "updated_at": self.clock(), "sweep_id": sweep_id}},
        )
        if result.modified_count == 0:
            return []
        changed = [to_public(doc) for doc in self.collection.find({"sweep_id": sweep_id})]
        self.collection.update_many({"sweep_id": sweep_id}, {"$unset": {"sweep_id": ""}})
        logger.info("%d offers -> %s", len(changed), status.value)
        return changed
