"""
Lifecycle Coordinator: bid placement, offer negotiation, owner transitions
and the periodic sweeps.

Every rule that spans more than one collection lives here. Notifications are
sent after a transition has been written and never affect its outcome.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from auctions import AuctionStore
from bids import BidLedger
from database import utcnow
from errors import (
    BelowMinOffer,
    BelowReserve,
    BidTooLow,
    DuplicatePending,
    Expired,
    Forbidden,
    InvalidState,
    NotFound,
    TooHigh,
    WrongSaleType,
)
from notifications import NotificationService
from offers import OfferLedger
from schemas import Actor, AuctionStatus, NotificationType, OfferStatus, SaleType

logger = logging.getLogger(__name__)


class LifecycleCoordinator:
    def __init__(
        self,
        auctions: AuctionStore,
        bids: BidLedger,
        offers: OfferLedger,
        notifier: NotificationService,
        allow_self_bidding: bool = True,
        enforce_reserve: bool = False,
        clock=utcnow,
    ):
        self.auctions = auctions
        self.bids = bids
        self.offers = offers
        self.notifier = notifier
        self.allow_self_bidding = allow_self_bidding
        self.enforce_reserve = enforce_reserve
        self.clock = clock

    # --- bidding ---

    def place_bid(self, auction_id: int, bidder: Actor, amount: float) -> Dict[str, Any]:
        auction = self.auctions.get(auction_id)
        self._check_biddable(auction, bidder, amount)

        updated = self.auctions.raise_price(auction_id, amount)
        if updated is None:
            # lost a race: re-validate against the state that beat us
            auction = self.auctions.get(auction_id)
            self._check_biddable(auction, bidder, amount)
            raise BidTooLow(f"Bid must be higher than current price of {auction['current_price']}")

        previous_winner = self.bids.get_winning_bid(auction_id)
        try:
            bid = self.bids.record_winning_bid(auction_id, bidder.id, amount)
        except Exception:
            self._undo_price_raise(auction, amount)
            raise
        bid["reserve_met"] = self._reserve_met(auction, amount)
        logger.info("bid %s of %.2f on auction %s by user %s", bid["id"], amount, auction_id, bidder.id)

        self._notify(
            auction["owner_id"], NotificationType.BID_PLACED, updated,
            amount=amount, sender_id=bidder.id, bidder_name=bidder.display_name,
        )
        # only the bidder who just lost the lead is told; earlier losers already were
        if previous_winner is not None and previous_winner["bidder_id"] != bidder.id:
            self._notify(previous_winner["bidder_id"], NotificationType.BID_OUTBID, updated, amount=amount)
        return bid

    def _undo_price_raise(self, auction: Dict[str, Any], amount: float) -> None:
        try:
            if self.bids.has_bid_at(auction["id"], amount):
                # the bid itself was written before the failure
                return
            highest = self.bids.highest_amount(auction["id"])
            restored = highest if highest is not None else auction["starting_price"]
            self.auctions.revert_price(auction["id"], amount, restored)
            logger.warning(
                "bid of %.2f on auction %s not recorded; reverting price to %.2f", amount, auction["id"], restored
            )
        except Exception:
            logger.exception("could not restore the price of auction %s", auction["id"])

    def get_winning_bid(self, auction_id: int) -> Optional[Dict[str, Any]]:
        self.auctions.get(auction_id)
        return self.bids.get_winning_bid(auction_id)

    def list_bids(self, auction_id: int) -> List[Dict[str, Any]]:
        self.auctions.get(auction_id)
        return self.bids.list_for_auction(auction_id)

    def withdraw_bid(self, bid_id: int, bidder: Actor) -> None:
        bid = self.bids.get(bid_id)
        auction = self.auctions.get(bid["auction_id"])
        if auction["status"] != AuctionStatus.ACTIVE.value:
            raise InvalidState("Bids can only be withdrawn while the auction is active")
        self.bids.withdraw(bid_id, bidder)

    def _check_biddable(self, auction: Dict[str, Any], bidder: Actor, amount: float) -> None:
        if auction["status"] != AuctionStatus.ACTIVE.value:
            raise InvalidState("Auction is not active")
        if auction.get("end_time") is not None and auction["end_time"] <= self.clock():
            raise Expired("Auction has ended")
        if not self.allow_self_bidding and auction["owner_id"] == bidder.id:
            raise Forbidden("You cannot bid on your own auction")
        if amount <= auction["current_price"]:
            raise BidTooLow(f"Bid must be higher than current price of {auction['current_price']}")
        if self.enforce_reserve and not self._reserve_met(auction, amount):
            raise BelowReserve(f"Bid must be at least the reserve price of {auction['reserve_price']}")

    @staticmethod
    def _reserve_met(auction: Dict[str, Any], amount: float) -> bool:
        return auction.get("reserve_price") is None or amount >= auction["reserve_price"]

    # --- direct sale ---

    def create_offer(
        self, auction_id: int, buyer: Actor, amount: float, message: Optional[str] = None
    ) -> Dict[str, Any]:
        auction = self.auctions.get(auction_id)

        if auction["sale_type"] != SaleType.DIRECT.value:
            raise WrongSaleType()
        if auction["status"] != AuctionStatus.ACTIVE.value:
            raise InvalidState("Cannot make offers on inactive auctions")
        if auction["owner_id"] == buyer.id:
            raise Forbidden("Cannot make offers on your own auction")
        if auction.get("min_offer") is not None and amount < auction["min_offer"]:
            raise BelowMinOffer(f"Offer must be at least {auction['min_offer']}")
        if amount >= auction["starting_price"]:
            raise TooHigh()
        if self.offers.find_pending(auction_id, buyer.id):
            raise DuplicatePending()

        expires_at = None
        if auction.get("offer_expiry_days"):
            expires_at = self.clock() + timedelta(days=auction["offer_expiry_days"])

        offer = self.offers.create(auction_id, buyer.id, amount, message, expires_at)
        logger.info("offer %s of %.2f on auction %s by user %s", offer["id"], amount, auction_id, buyer.id)

        self._notify(
            auction["owner_id"], NotificationType.OFFER_RECEIVED, auction,
            amount=amount, sender_id=buyer.id, offer_id=offer["id"], buyer_name=buyer.display_name,
        )
        return offer

    def respond_to_offer(self, offer_id: str, seller: Actor, response: str) -> Dict[str, Any]:
        offer = self.offers.get(offer_id)
        try:
            auction = self.auctions.get(offer["auction_id"])
        except NotFound:
            raise NotFound("Offer not found") from None

        if auction["owner_id"] != seller.id:
            raise Forbidden("Only the auction owner can respond to offers")
        if offer["status"] != OfferStatus.PENDING.value:
            raise InvalidState("Can only respond to pending offers")

        if response == "accept":
            return self._accept_offer(offer, auction, seller)

        rejected = self.offers.settle(offer_id, OfferStatus.REJECTED)
        if rejected is None:
            raise InvalidState("Can only respond to pending offers")
        logger.info("offer %s rejected by user %s", offer_id, seller.id)
        self._notify(
            offer["buyer_id"], NotificationType.OFFER_REJECTED, auction,
            amount=offer["amount"], sender_id=seller.id, offer_id=offer_id,
        )
        return rejected

    def _accept_offer(self, offer: Dict[str, Any], auction: Dict[str, Any], seller: Actor) -> Dict[str, Any]:
        accepted = self.offers.settle(offer["id"], OfferStatus.ACCEPTED)
        if accepted is None:
            raise InvalidState("Can only respond to pending offers")

        sold = self.auctions.transition(auction["id"], AuctionStatus.SOLD)
        if sold is None:
            self.offers.reopen(offer["id"])
            raise InvalidState("Auction is no longer active")

        losers = self.offers.reject_others(auction["id"], offer["id"])
        logger.info(
            "offer %s accepted, auction %s sold, %d other offers rejected", offer["id"], auction["id"], len(losers)
        )

        self._notify(
            offer["buyer_id"], NotificationType.OFFER_ACCEPTED, sold,
            amount=offer["amount"], sender_id=seller.id, offer_id=offer["id"],
        )
        for loser in losers:
            self._notify(
                loser["buyer_id"], NotificationType.OFFER_REJECTED, sold,
                amount=loser["amount"], sender_id=seller.id, offer_id=loser["id"],
            )
        return accepted

    def get_offer(self, offer_id: str, actor: Actor) -> Dict[str, Any]:
        offer = self.offers.get(offer_id)
        if offer["buyer_id"] != actor.id:
            auction = self.auctions.get(offer["auction_id"])
            if auction["owner_id"] != actor.id:
                raise Forbidden("You can only view your own offers")
        return offer

    def list_auction_offers(self, auction_id: int, seller: Actor) -> List[Dict[str, Any]]:
        auction = self.auctions.get(auction_id)
        if auction["owner_id"] != seller.id:
            raise Forbidden("Only the auction owner can view offers")
        return self.offers.list_for_auction(auction_id)

    # --- owner transitions ---

    def end_auction(self, auction_id: int, owner: Actor) -> Dict[str, Any]:
        auction = self.auctions.end_auction(auction_id, owner)
        self._announce_end(auction)
        return auction

    # --- sweeps ---

    def sweep_expired(self) -> int:
        """End auctions past their end time and tell owners and winners."""
        ended = self.auctions.sweep_expired()
        for auction in ended:
            self._announce_end(auction)
        return len(ended)

    def expire_offers(self) -> int:
        """Expire stale pending offers and tell their buyers. Safe to re-run."""
        expired = self.offers.expire_due()
        for offer in expired:
            try:
                auction = self.auctions.get(offer["auction_id"])
            except NotFound:
                continue
            self._notify(
                offer["buyer_id"], NotificationType.OFFER_EXPIRED, auction,
                amount=offer["amount"], offer_id=offer["id"],
            )
        return len(expired)

    def run_sweeps(self) -> Dict[str, Optional[int]]:
        """Run both sweeps; a failure in one is logged and does not stop the other."""
        results: Dict[str, Optional[int]] = {"auctions_ended": None, "offers_expired": None}
        try:
            results["auctions_ended"] = self.sweep_expired()
        except Exception:
            logger.exception("auction end-time sweep failed")
        try:
            results["offers_expired"] = self.expire_offers()
        except Exception:
            logger.exception("offer expiry sweep failed")
        return results

    # --- helpers ---

    def _announce_end(self, auction: Dict[str, Any]) -> None:
        self._notify(auction["owner_id"], NotificationType.AUCTION_ENDED, auction)
        winner = self.bids.get_winning_bid(auction["id"])
        if winner is not None:
            self._notify(
                winner["bidder_id"], NotificationType.AUCTION_WON, auction,
                amount=winner["amount"], sender_id=auction["owner_id"],
                reserve_met=self._reserve_met(auction, winner["amount"]),
            )

    def _notify(self, recipient_id: int, kind: NotificationType, auction: Dict[str, Any], **kwargs: Any) -> None:
        try:
            self.notifier.notify(recipient_id, kind, auction, **kwargs)
        except Exception:
            logger.exception("failed to send %s notification to user %s", kind.value, recipient_id)
