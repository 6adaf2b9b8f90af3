from datetime import datetime, timedelta

import mongomock
import pytest

from auctions import AuctionStore
from bids import BidLedger
from database import ensure_indexes
from lifecycle import LifecycleCoordinator
from notifications import NotificationService
from offers import OfferLedger
from schemas import Actor, CreateAuctionRequest

START = datetime(2030, 1, 1, 12, 0, 0)


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def db():
    database = mongomock.MongoClient().marketplace
    ensure_indexes(database)
    return database


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def coordinator(db, clock):
    return LifecycleCoordinator(
        auctions=AuctionStore(db, clock=clock),
        bids=BidLedger(db),
        offers=OfferLedger(db, clock=clock),
        notifier=NotificationService(db),
        clock=clock,
    )


@pytest.fixture
def seller():
    return Actor(id=1, name="seller")


@pytest.fixture
def alice():
    return Actor(id=2, name="alice")


@pytest.fixture
def bob():
    return Actor(id=3, name="bob")


@pytest.fixture
def make_auction(coordinator, clock, seller):
    def _make(owner=None, **overrides):
        fields = {
            "title": "Space Marine Captain",
            "description": "Painted, on base",
            "starting_price": 100,
            "end_time": clock() + timedelta(days=3),
        }
        fields.update(overrides)
        return coordinator.auctions.create(CreateAuctionRequest(**fields), owner or seller)

    return _make


@pytest.fixture
def make_direct_sale(make_auction):
    def _make(owner=None, **overrides):
        fields = {
            "title": "Imperial Guard Army",
            "sale_type": "direct",
            "starting_price": 200,
            "end_time": None,
            "min_offer": 50,
            "offer_expiry_days": 1,
        }
        fields.update(overrides)
        return make_auction(owner, **fields)

    return _make


@pytest.fixture
def notifications_for(db):
    def _find(user_id, kind=None):
        query = {"recipient_id": user_id}
        if kind is not None:
            query["type"] = kind.value
        return list(db["notification"].find(query))

    return _find
