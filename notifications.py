"""
Notifications: fixed message templates per lifecycle event and the user inbox.
"""

import logging
from typing import Any, Dict, Optional

from pymongo import DESCENDING
from pymongo.database import Database

import config
from database import create_document
from errors import NotFound
from schemas import Notification, NotificationType, to_public

logger = logging.getLogger(__name__)

TEMPLATES = {
    NotificationType.BID_PLACED: (
        "New Bid Received",
        '{bidder_name} placed a bid of €{amount:.2f} on "{auction_title}"',
    ),
    NotificationType.BID_OUTBID: (
        "You Have Been Outbid",
        'Someone outbid you on "{auction_title}" with €{amount:.2f}',
    ),
    NotificationType.OFFER_RECEIVED: (
        "New Offer Received",
        '{buyer_name} made an offer of €{amount:.2f} on "{auction_title}"',
    ),
    NotificationType.OFFER_ACCEPTED: (
        "Offer Accepted!",
        'Your offer of €{amount:.2f} on "{auction_title}" was accepted!',
    ),
    NotificationType.OFFER_REJECTED: (
        "Offer Rejected",
        'Your offer of €{amount:.2f} on "{auction_title}" was not accepted.',
    ),
    NotificationType.OFFER_EXPIRED: (
        "Offer Expired",
        'Your offer of €{amount:.2f} on "{auction_title}" has expired.',
    ),
    NotificationType.AUCTION_WON: (
        "Congratulations! You Won!",
        'You won the auction "{auction_title}" for €{amount:.2f}',
    ),
    NotificationType.AUCTION_ENDED: (
        "Auction Ended",
        'Your auction "{auction_title}" has ended',
    ),
}


def render(kind: NotificationType, **fields: Any) -> Dict[str, str]:
    """Fill the title and message template for a notification type."""
    title, message = TEMPLATES[kind]
    return {"title": title, "message": message.format(**fields)}


class NotificationService:
    def __init__(self, db: Database):
        self.db = db
        self.collection = db["notification"]

    # --- dispatch ---

    def notify(
        self,
        recipient_id: int,
        kind: NotificationType,
        auction: Dict[str, Any],
        amount: Optional[float] = None,
        sender_id: Optional[int] = None,
        offer_id: Optional[str] = None,
        **fields: Any,
    ) -> int:
        text = render(kind, auction_title=auction["title"], amount=amount or 0, **fields)
        metadata = {"auction_title": auction["title"], **fields}
        if amount is not None:
            metadata["amount"] = amount

        notification = Notification(
            recipient_id=recipient_id,
            sender_id=sender_id,
            type=kind,
            auction_id=auction["id"],
            offer_id=offer_id,
            metadata=metadata,
            **text,
        )
        notification_id = create_document("notification", notification, database=self.db)
        logger.debug("notification %s (%s) -> user %s", notification_id, kind.value, recipient_id)
        return notification_id

    # --- inbox ---

    def list_for_user(
        self, user_id: int, page: int = 1, limit: Optional[int] = None, unread_only: bool = False
    ) -> Dict[str, Any]:
        limit = min(limit or config.DEFAULT_PAGE_SIZE, config.MAX_PAGE_SIZE)
        query: Dict[str, Any] = {"recipient_id": user_id}
        if unread_only:
            query["is_read"] = False

        cursor = (
            self.collection.find(query)
            .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
            .skip((page - 1) * limit)
            .limit(limit)
        )
        return {
            "items": [to_public(doc) for doc in cursor],
            "total": self.collection.count_documents(query),
            "unread_count": self.unread_count(user_id),
        }

    def unread_count(self, user_id: int) -> int:
        return self.collection.count_documents({"recipient_id": user_id, "is_read": False})

    def mark_read(self, notification_id: int, user_id: int) -> None:
        result = self.collection.update_one(
            {"_id": notification_id, "recipient_id": user_id}, {"$set": {"is_read": True}}
        )
        if result.matched_count == 0:
            raise NotFound("Notification not found")

    def mark_all_read(self, user_id: int) -> int:
        result = self.collection.update_many(
            {"recipient_id": user_id, "is_read": False}, {"$set": {"is_read": True}}
        )
        return result.modified_count

    def delete(self, notification_id: int, user_id: int) -> None:
        result = self.collection.delete_one({"_id": notification_id, "recipient_id": user_id})
        if result.deleted_count == 0:
            raise NotFound("Notification not found")
