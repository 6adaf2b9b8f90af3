from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from main import app, build_coordinator, get_coordinator

SELLER = {"X-User-Id": "1", "X-User-Name": "seller"}
ALICE = {"X-User-Id": "2", "X-User-Name": "alice"}
BOB = {"X-User-Id": "3", "X-User-Name": "bob"}


def in_days(days):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


@pytest.fixture
def client(db):
    coordinator = build_coordinator(db)
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auction(client):
    response = client.post(
        "/auctions",
        json={"title": "Dreadnought", "starting_price": 100, "end_time": in_days(2), "category": "miniatures"},
        headers=SELLER,
    )
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def listing(client):
    response = client.post(
        "/auctions",
        json={
            "title": "Imperial Guard Army",
            "sale_type": "direct",
            "starting_price": 200,
            "min_offer": 50,
            "offer_expiry_days": 3,
        },
        headers=SELLER,
    )
    assert response.status_code == 201
    return response.json()


def test_root(client):
    assert client.get("/").json() == {"message": "Marketplace Auction API is running"}


def test_create_requires_a_user(client):
    response = client.post("/auctions", json={"title": "x", "starting_price": 1, "end_time": in_days(1)})
    assert response.status_code == 401
    assert response.json()["code"] == "auth_required"


def test_malformed_user_header(client):
    headers = {"X-User-Id": "not-a-number"}
    response = client.post("/auctions", json={"title": "x", "starting_price": 1, "end_time": in_days(1)}, headers=headers)
    assert response.status_code == 401


def test_create_without_end_time(client):
    response = client.post("/auctions", json={"title": "x", "starting_price": 1}, headers=SELLER)
    assert response.status_code == 400
    assert response.json()["code"] == "validation_failed"


def test_create_returns_auction(auction):
    assert auction["current_price"] == 100
    assert auction["status"] == "active"
    assert auction["owner_id"] == 1


def test_missing_auction(client):
    response = client.get("/auctions/999")
    assert response.status_code == 404
    assert response.json() == {"detail": "Auction not found", "code": "not_found"}


def test_bidding(client, auction):
    url = f"/auctions/{auction['id']}/bids"

    first = client.post(url, json={"amount": 150}, headers=ALICE)
    assert first.status_code == 201
    assert first.json()["is_winning_bid"] is True

    low = client.post(url, json={"amount": 150}, headers=BOB)
    assert low.status_code == 400
    assert low.json()["code"] == "bid_too_low"

    assert client.post(url, json={"amount": 175}, headers=BOB).status_code == 201

    detail = client.get(f"/auctions/{auction['id']}").json()
    assert detail["current_price"] == 175
    assert [b["amount"] for b in detail["top_bids"]] == [175, 150]
    assert client.get(f"{url}/winning").json()["bidder_id"] == 3
    assert [b["amount"] for b in client.get("/bids/mine", headers=ALICE).json()] == [150]


def test_bid_body_is_validated(client, auction):
    response = client.post(f"/auctions/{auction['id']}/bids", json={"amount": -5}, headers=ALICE)
    assert response.status_code == 422


def test_delete_with_bids_conflicts(client, auction):
    client.post(f"/auctions/{auction['id']}/bids", json={"amount": 150}, headers=ALICE)
    response = client.delete(f"/auctions/{auction['id']}", headers=SELLER)
    assert response.status_code == 409
    assert response.json()["code"] == "has_bids"


def test_owner_transitions(client, auction):
    assert client.post(f"/auctions/{auction['id']}/end", headers=ALICE).status_code == 403
    assert client.post(f"/auctions/{auction['id']}/end", headers=SELLER).json()["status"] == "ended"

    again = client.post(f"/auctions/{auction['id']}/cancel", headers=SELLER)
    assert again.status_code == 409
    assert again.json()["code"] == "invalid_state"


def test_update(client, auction):
    response = client.put(f"/auctions/{auction['id']}", json={"title": "Venerable Dreadnought"}, headers=SELLER)
    assert response.status_code == 200
    assert response.json()["title"] == "Venerable Dreadnought"


def test_update_cannot_null_the_title(client, auction):
    response = client.put(f"/auctions/{auction['id']}", json={"title": None, "description": None}, headers=SELLER)
    assert response.status_code == 422
    assert client.get(f"/auctions/{auction['id']}").json()["title"] == "Dreadnought"


def test_active_auctions_end_soonest_first(client, auction):
    later = client.post(
        "/auctions", json={"title": "Land Raider", "starting_price": 300, "end_time": in_days(5)}, headers=SELLER
    ).json()
    sooner = client.post(
        "/auctions", json={"title": "Rhino", "starting_price": 80, "end_time": in_days(1)}, headers=SELLER
    ).json()
    client.post(f"/auctions/{later['id']}/cancel", headers=SELLER)

    response = client.get("/auctions/active")
    assert response.status_code == 200
    assert [a["id"] for a in response.json()] == [sooner["id"], auction["id"]]


def test_offer_flow(client, listing):
    url = f"/auctions/{listing['id']}/offers"

    too_high = client.post(url, json={"amount": 250}, headers=ALICE)
    assert too_high.status_code == 400
    assert too_high.json()["code"] == "too_high"

    offer = client.post(url, json={"amount": 150, "message": "cash today"}, headers=ALICE).json()
    rival = client.post(url, json={"amount": 120}, headers=BOB).json()
    assert offer["status"] == "pending"

    assert client.put(f"/offers/{offer['id']}/respond", json={"response": "accept"}, headers=BOB).status_code == 403

    accepted = client.put(f"/offers/{offer['id']}/respond", json={"response": "accept"}, headers=SELLER)
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "accepted"

    assert client.get(f"/auctions/{listing['id']}").json()["status"] == "sold"
    assert client.get(f"/offers/{rival['id']}", headers=BOB).json()["status"] == "rejected"
    assert [o["id"] for o in client.get("/offers/mine", headers=ALICE).json()] == [offer["id"]]
    assert len(client.get(url, headers=SELLER).json()) == 2


def test_offer_response_must_be_accept_or_reject(client, listing):
    offer = client.post(f"/auctions/{listing['id']}/offers", json={"amount": 150}, headers=ALICE).json()
    response = client.put(f"/offers/{offer['id']}/respond", json={"response": "maybe"}, headers=SELLER)
    assert response.status_code == 422


def test_offer_on_auction_sale_type(client, auction):
    response = client.post(f"/auctions/{auction['id']}/offers", json={"amount": 50}, headers=ALICE)
    assert response.status_code == 400
    assert response.json()["code"] == "wrong_sale_type"


def test_listing_filters(client, auction, listing):
    page = client.get("/auctions", params={"sort": "price_desc"}).json()
    assert [a["title"] for a in page["items"]] == ["Imperial Guard Army", "Dreadnought"]
    assert page["total"] == 2
    assert page["has_next"] is False

    cheap = client.get("/auctions", params={"max_price": 150}).json()
    assert [a["title"] for a in cheap["items"]] == ["Dreadnought"]


def test_show_own_requires_a_user(client, auction):
    response = client.get("/auctions", params={"show_own": "true"})
    assert response.status_code == 401

    own = client.get("/auctions", params={"show_own": "true"}, headers=ALICE).json()
    assert own["total"] == 0


def test_enum_endpoints(client):
    assert "terrain" in client.get("/auctions/categories").json()
    assert client.get("/auctions/conditions").json()[0] == "mint"
    assert client.get("/auctions/statuses").json() == ["active", "ended", "cancelled", "sold"]


def test_notifications(client, auction):
    client.post(f"/auctions/{auction['id']}/bids", json={"amount": 150}, headers=ALICE)
    client.post(f"/auctions/{auction['id']}/bids", json={"amount": 160}, headers=BOB)

    assert client.get("/notifications/unread-count", headers=SELLER).json() == {"count": 2}
    inbox = client.get("/notifications", headers=ALICE).json()
    assert inbox["unread_count"] == 1
    assert inbox["items"][0]["type"] == "bid_outbid"

    note_id = inbox["items"][0]["id"]
    assert client.put(f"/notifications/{note_id}/read", headers=ALICE).json() == {"success": True}
    assert client.get("/notifications/unread-count", headers=ALICE).json() == {"count": 0}
    assert client.put(f"/notifications/{note_id}/read", headers=BOB).status_code == 404

    assert client.put("/notifications/read-all", headers=SELLER).json()["updated"] == 2
    assert client.delete(f"/notifications/{note_id}", headers=ALICE).json() == {"success": True}
    assert client.get("/notifications", headers=ALICE).json()["total"] == 0


def test_sweep_endpoint(client):
    assert client.post("/admin/sweep").json() == {"auctions_ended": 0, "offers_expired": 0}


def test_schema_endpoint(client):
    schema = client.get("/schema").json()
    assert set(schema) == {"auction", "bid", "offer", "notification"}
