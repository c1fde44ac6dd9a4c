from datetime import date, timedelta

import pytest


@pytest.fixture
def market(client, make_user):
    seller, seller_headers = make_user("Farmer")
    listing = client.post("/api/listings/create", headers=seller_headers, json={
        "title": "Fresh cane",
        "crop_variety": "Co-86032",
        "quantity_in_tons": 10,
        "expected_price_per_ton": 3000,
        "harvest_availability_date": (date.today() + timedelta(days=10)).isoformat(),
        "location": "Satara",
    }).json()["data"]
    return seller, seller_headers, listing


def place(client, headers, listing, quantity, price=3100, **extra):
    return client.post("/api/orders/create", headers=headers, json={
        "listingId": listing["id"],
        "quantityWanted": quantity,
        "proposedPrice": price,
        "deliveryLocation": "Factory gate 2",
        **extra,
    })


def test_factory_places_order(client, make_user, market):
    seller, _, listing = market
    buyer, headers = make_user("Factory")
    res = place(client, headers, listing, 4, urgency="high")
    assert res.status_code == 201
    order = res.json()["data"]
    assert order["status"] == "pending"
    assert order["orderId"] == order["id"]
    assert order["farmerId"] == seller["id"]
    assert order["buyerId"] == buyer["id"]
    assert order["buyerDetails"]["email"] == buyer["email"]
    assert order["orderDetails"]["totalAmount"] == 4 * 3100
    assert order["orderDetails"]["urgency"] == "high"


def test_order_rules(client, make_user, market):
    _, seller_headers, listing = market
    _, buyer_headers = make_user("Farmer")
    _, worker_headers = make_user("Worker")

    assert place(client, seller_headers, listing, 1).status_code == 400
    assert place(client, worker_headers, listing, 1).status_code == 403
    assert place(client, buyer_headers, listing, 0).status_code == 400
    assert place(client, buyer_headers, listing, 1, urgency="yesterday").status_code == 400
    assert place(client, buyer_headers, {"id": "64b000000000000000000000"}, 1).status_code == 404

    assert place(client, buyer_headers, listing, 1).status_code == 201
    assert place(client, buyer_headers, listing, 2).status_code == 409


def test_inactive_listing_takes_no_orders(client, make_user, market):
    _, seller_headers, listing = market
    _, buyer_headers = make_user("Factory")
    client.put(f"/api/listings/{listing['id']}/status", headers=seller_headers, json={"status": "inactive"})
    assert place(client, buyer_headers, listing, 1).status_code == 400


def test_accept_decrements_stock_then_partially_fulfils(client, mock_db, make_user, market):
    _, seller_headers, listing = market
    buyer_a, a_headers = make_user("Factory")
    _, b_headers = make_user("Factory")
    first = place(client, a_headers, listing, 6).json()["data"]
    second = place(client, b_headers, listing, 8, price=3200).json()["data"]

    res = client.put(f"/api/orders/{first['id']}/status", headers=seller_headers, json={"status": "accepted"})
    assert res.status_code == 200
    assert res.json()["remainingQuantity"] == 4
    assert res.json()["data"]["isPartialFulfillment"] is False
    assert mock_db["listing"].find_one({"id": listing["id"]})["quantity_in_tons"] == 4

    res = client.put(f"/api/orders/{second['id']}/status", headers=seller_headers, json={"status": "accepted"})
    assert res.status_code == 200
    order = res.json()["data"]
    assert order["isPartialFulfillment"] is True
    assert order["originalQuantityRequested"] == 8
    assert order["orderDetails"]["quantityWanted"] == 4
    assert order["orderDetails"]["totalAmount"] == 4 * 3200

    stored = mock_db["listing"].find_one({"id": listing["id"]})
    assert stored["quantity_in_tons"] == 0
    assert stored["status"] == "sold"
    assert mock_db["notification"].count_documents({"userId": buyer_a["id"], "type": "order_accepted"}) == 1


def test_accept_without_stock(client, mock_db, make_user, market):
    _, seller_headers, listing = market
    _, buyer_headers = make_user("Factory")
    order = place(client, buyer_headers, listing, 2).json()["data"]
    mock_db["listing"].update_one({"id": listing["id"]}, {"$set": {"quantity_in_tons": 0}})
    res = client.put(f"/api/orders/{order['id']}/status", headers=seller_headers, json={"status": "accepted"})
    assert res.status_code == 400
    assert mock_db["order"].find_one({"id": order["id"]})["status"] == "pending"


def test_reject_keeps_stock(client, mock_db, make_user, market):
    _, seller_headers, listing = market
    _, buyer_headers = make_user("Factory")
    order = place(client, buyer_headers, listing, 2).json()["data"]
    res = client.put(f"/api/orders/{order['id']}/status", headers=seller_headers, json={"status": "rejected"})
    assert res.json()["data"]["status"] == "rejected"
    assert mock_db["listing"].find_one({"id": listing["id"]})["quantity_in_tons"] == 10
    again = client.put(f"/api/orders/{order['id']}/status", headers=seller_headers, json={"status": "accepted"})
    assert again.status_code == 400


def test_only_seller_responds(client, make_user, market):
    _, _, listing = market
    _, buyer_headers = make_user("Farmer")
    order = place(client, buyer_headers, listing, 2).json()["data"]
    res = client.put(f"/api/orders/{order['id']}/status", headers=buyer_headers, json={"status": "accepted"})
    assert res.status_code == 403


def test_received_sent_and_per_listing(client, make_user, market):
    _, seller_headers, listing = market
    _, buyer_headers = make_user("Factory")
    place(client, buyer_headers, listing, 1, urgency="urgent")

    received = client.get("/api/orders/received", headers=seller_headers).json()
    assert received["pagination"]["total"] == 1
    assert received["data"][0]["listing"]["title"] == "Fresh cane"
    filtered = client.get("/api/orders/received", params={"urgency": "normal"}, headers=seller_headers).json()
    assert filtered["data"] == []

    assert client.get("/api/orders/sent", headers=buyer_headers).json()["pagination"]["total"] == 1
    per_listing = client.get(f"/api/orders/listing/{listing['id']}", headers=seller_headers)
    assert per_listing.status_code == 200 and len(per_listing.json()["data"]) == 1

    _, other_farmer = make_user("Farmer")
    assert client.get(f"/api/orders/listing/{listing['id']}", headers=other_farmer).status_code == 403
