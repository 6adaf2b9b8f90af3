from datetime import timedelta

import pytest

from errors import NotFound
from notifications import TEMPLATES, NotificationService, render
from schemas import NotificationType


@pytest.fixture
def service(db):
    return NotificationService(db)


@pytest.fixture
def auction():
    return {"id": 7, "title": "Gothic Ruins"}


def test_every_event_has_a_template():
    assert set(TEMPLATES) == set(NotificationType)


def test_render_auction_won():
    text = render(NotificationType.AUCTION_WON, auction_title="Gothic Ruins", amount=75)
    assert text == {
        "title": "Congratulations! You Won!",
        "message": 'You won the auction "Gothic Ruins" for €75.00',
    }


def test_notify_stores_metadata(service, db, auction):
    notification_id = service.notify(
        5, NotificationType.BID_PLACED, auction, amount=12.5, sender_id=6, bidder_name="alice"
    )

    doc = db["notification"].find_one({"_id": notification_id})
    assert doc["recipient_id"] == 5
    assert doc["sender_id"] == 6
    assert doc["type"] == "bid_placed"
    assert doc["auction_id"] == 7
    assert doc["is_read"] is False
    assert doc["metadata"] == {"auction_title": "Gothic Ruins", "bidder_name": "alice", "amount": 12.5}
    assert doc["message"] == 'alice placed a bid of €12.50 on "Gothic Ruins"'


class TestInbox:
    @pytest.fixture
    def inbox(self, service, auction):
        for amount in (10, 20, 30):
            service.notify(5, NotificationType.BID_OUTBID, auction, amount=amount)
        service.notify(9, NotificationType.AUCTION_ENDED, auction)
        return service

    def test_list_newest_first(self, inbox):
        page = inbox.list_for_user(5)
        assert [n["metadata"]["amount"] for n in page["items"]] == [30, 20, 10]
        assert page["total"] == 3
        assert page["unread_count"] == 3

    def test_list_paginates(self, inbox):
        page = inbox.list_for_user(5, page=2, limit=2)
        assert [n["metadata"]["amount"] for n in page["items"]] == [10]
        assert page["total"] == 3

    def test_mark_read_and_unread_only(self, inbox):
        newest = inbox.list_for_user(5)["items"][0]
        inbox.mark_read(newest["id"], 5)

        assert inbox.unread_count(5) == 2
        unread = inbox.list_for_user(5, unread_only=True)
        assert newest["id"] not in [n["id"] for n in unread["items"]]
        assert unread["total"] == 2

    def test_mark_read_of_someone_elses_notification(self, inbox):
        other = inbox.list_for_user(9)["items"][0]
        with pytest.raises(NotFound):
            inbox.mark_read(other["id"], 5)

    def test_mark_all_read(self, inbox):
        assert inbox.mark_all_read(5) == 3
        assert inbox.unread_count(5) == 0
        assert inbox.unread_count(9) == 1

    def test_delete(self, inbox):
        target = inbox.list_for_user(5)["items"][0]
        inbox.delete(target["id"], 5)
        assert inbox.list_for_user(5)["total"] == 2
        with pytest.raises(NotFound):
            inbox.delete(target["id"], 5)


class TestAuctionEndAnnouncements:
    def test_owner_end_notifies_owner_and_winner(self, coordinator, make_auction, seller, alice, bob, notifications_for):
        auction = make_auction(starting_price=10)
        coordinator.place_bid(auction["id"], alice, 20)
        coordinator.place_bid(auction["id"], bob, 40)

        ended = coordinator.end_auction(auction["id"], seller)

        assert ended["status"] == "ended"
        assert len(notifications_for(seller.id, NotificationType.AUCTION_ENDED)) == 1
        [won] = notifications_for(bob.id, NotificationType.AUCTION_WON)
        assert won["metadata"]["amount"] == 40
        assert notifications_for(alice.id, NotificationType.AUCTION_WON) == []

    def test_sweep_announces_each_ended_auction(self, coordinator, make_auction, clock, seller, alice, notifications_for):
        with_bids = make_auction(starting_price=10, end_time=clock() + timedelta(hours=1))
        make_auction(starting_price=10, end_time=clock() + timedelta(hours=1))
        coordinator.place_bid(with_bids["id"], alice, 25)

        clock.advance(hours=1)
        assert coordinator.sweep_expired() == 2
        assert coordinator.sweep_expired() == 0

        assert len(notifications_for(seller.id, NotificationType.AUCTION_ENDED)) == 2
        [won] = notifications_for(alice.id, NotificationType.AUCTION_WON)
        assert won["auction_id"] == with_bids["id"]

    def test_run_sweeps_continues_after_a_failure(self, coordinator, make_direct_sale, clock, alice, caplog):
        def broken():
            raise RuntimeError("primary stepped down")

        auction = make_direct_sale(offer_expiry_days=1)
        offer = coordinator.create_offer(auction["id"], alice, 100)
        coordinator.auctions.sweep_expired = broken
        clock.advance(days=2)

        results = coordinator.run_sweeps()

        assert results == {"auctions_ended": None, "offers_expired": 1}
        assert coordinator.offers.get(offer["id"])["status"] == "expired"
        assert "auction end-time sweep failed" in caplog.text
