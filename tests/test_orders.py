from bson import ObjectId

import orders as order_routes
from lifecycle import authorize_order_update

from conftest import ADDRESS


def order_payload(seller, product, quantity=2):
    return {
        "products": [{"product_id": str(product["_id"]), "quantity": quantity}],
        "seller_id": str(seller["_id"]),
        "shipping_address": ADDRESS,
        "payment_method": "card",
    }


def test_create_order_reserves_stock(client, db, make_user, make_product):
    customer, headers = make_user("vehicle-owner")
    seller, _ = make_user("seller")
    product = make_product(seller, price=50.0, discount_price=45.0, stock=5)

    res = client.post("/orders", json=order_payload(seller, product, 2), headers=headers)
    assert res.status_code == 201
    order = res.json()["order"]
    assert order["order_status"] == "processing"
    assert order["total_amount"] == 90.0
    assert order["customer_id"] == str(customer["_id"])
    assert db["product"].find_one({"_id": product["_id"]})["stock"] == 3


def test_create_order_rejects_insufficient_stock(client, db, make_user, make_product):
    _, headers = make_user("vehicle-owner")
    seller, _ = make_user("seller")
    product = make_product(seller, stock=1)

    res = client.post("/orders", json=order_payload(seller, product, 3), headers=headers)
    assert res.status_code == 400
    assert res.json()["error"].startswith("Not enough stock")
    assert db["product"].find_one({"_id": product["_id"]})["stock"] == 1


def test_create_order_rejects_foreign_product(client, make_user, make_product):
    _, headers = make_user("vehicle-owner")
    seller, _ = make_user("seller")
    other_seller, _ = make_user("seller")
    product = make_product(other_seller)

    res = client.post("/orders", json=order_payload(seller, product), headers=headers)
    assert res.status_code == 400


def test_only_vehicle_owners_order(client, make_user, make_product):
    seller, seller_headers = make_user("seller")
    product = make_product(seller)
    res = client.post("/orders", json=order_payload(seller, product), headers=seller_headers)
    assert res.status_code == 403


def test_customer_cancels_processing_order(client, db, make_user, make_product, make_order):
    customer, headers = make_user("vehicle-owner")
    seller, _ = make_user("seller")
    product = make_product(seller, stock=4)
    order = make_order(customer, seller, product, quantity=2)

    res = client.put(f"/orders/{order['_id']}", json={"order_status": "cancelled"}, headers=headers)
    assert res.status_code == 200
    assert res.json()["order_status"] == "cancelled"
    assert db["product"].find_one({"_id": product["_id"]})["stock"] == 6

    # admin flipping it back and cancelling again does not restock twice
    _, admin_headers = make_user("admin")
    client.put(f"/orders/{order['_id']}", json={"order_status": "processing"}, headers=admin_headers)
    client.put(f"/orders/{order['_id']}", json={"order_status": "cancelled"}, headers=admin_headers)
    assert db["product"].find_one({"_id": product["_id"]})["stock"] == 6


def test_customer_cannot_cancel_shipped_order(client, make_user, make_product, make_order):
    customer, headers = make_user("vehicle-owner")
    seller, seller_headers = make_user("seller")
    order = make_order(customer, seller, make_product(seller))

    res = client.put(f"/orders/{order['_id']}", json={"order_status": "shipped", "tracking_number": "TRK-9"},
                     headers=seller_headers)
    assert res.status_code == 200
    assert res.json()["tracking_number"] == "TRK-9"

    res = client.put(f"/orders/{order['_id']}", json={"order_status": "cancelled"}, headers=headers)
    assert res.status_code == 400
    assert res.json() == {"error": "Orders can only be cancelled while in processing state"}


def test_seller_cannot_touch_payment(client, make_user, make_product, make_order):
    customer, _ = make_user("vehicle-owner")
    seller, seller_headers = make_user("seller")
    order = make_order(customer, seller, make_product(seller))

    for body in ({"payment_status": "completed"}, {"order_status": "shipped", "total_amount": 1}):
        res = client.put(f"/orders/{order['_id']}", json=body, headers=seller_headers)
        assert res.status_code == 403


def test_customer_cannot_mark_delivered(client, make_user, make_product, make_order):
    customer, headers = make_user("vehicle-owner")
    seller, _ = make_user("seller")
    order = make_order(customer, seller, make_product(seller))
    res = client.put(f"/orders/{order['_id']}", json={"order_status": "delivered"}, headers=headers)
    assert res.status_code == 403


def test_list_orders_is_scoped_by_role(client, make_user, make_product, make_order):
    customer, headers = make_user("vehicle-owner")
    other_customer, _ = make_user("vehicle-owner")
    seller, seller_headers = make_user("seller")
    product = make_product(seller)
    make_order(customer, seller, product)
    make_order(other_customer, seller, product, order_status="delivered")

    assert client.get("/orders", headers=headers).json()["pagination"]["total"] == 1
    assert client.get("/orders", headers=seller_headers).json()["pagination"]["total"] == 2
    res = client.get("/orders", params={"order_status": "delivered"}, headers=seller_headers)
    assert [o["customer_id"] for o in res.json()["orders"]] == [str(other_customer["_id"])]


def test_get_order_access(client, make_user, make_product, make_order):
    customer, headers = make_user("vehicle-owner")
    seller, _ = make_user("seller")
    _, stranger_headers = make_user("vehicle-owner")
    order = make_order(customer, seller, make_product(seller))

    assert client.get(f"/orders/{order['_id']}", headers=headers).status_code == 200
    assert client.get(f"/orders/{order['_id']}", headers=stranger_headers).status_code == 403
    assert client.get(f"/orders/{ObjectId()}", headers=headers).status_code == 404
    assert client.get("/orders/not-an-id", headers=headers).status_code == 404


def test_zero_discount_price_is_charged(client, make_user, make_product):
    _, headers = make_user("vehicle-owner")
    seller, _ = make_user("seller")
    product = make_product(seller, price=50.0, discount_price=0.0)

    res = client.post("/orders", json=order_payload(seller, product, 2), headers=headers)
    assert res.status_code == 201
    assert res.json()["order"]["total_amount"] == 0.0


def test_seller_null_payment_key_is_still_forbidden(client, db, make_user, make_product, make_order):
    customer, _ = make_user("vehicle-owner")
    seller, seller_headers = make_user("seller")
    order = make_order(customer, seller, make_product(seller))

    res = client.put(f"/orders/{order['_id']}", json={"order_status": "shipped", "payment_status": None},
                     headers=seller_headers)
    assert res.status_code == 403
    assert db["order"].find_one({"_id": order["_id"]})["order_status"] == "processing"


def test_seller_forbidden_key_checked_before_validation(client, make_user, make_product, make_order):
    customer, _ = make_user("vehicle-owner")
    seller, seller_headers = make_user("seller")
    order = make_order(customer, seller, make_product(seller))

    res = client.put(f"/orders/{order['_id']}", json={"payment_status": "bogus"}, headers=seller_headers)
    assert res.status_code == 403


def test_customer_null_extra_key_is_forbidden(client, db, make_user, make_product, make_order):
    customer, headers = make_user("vehicle-owner")
    seller, _ = make_user("seller")
    order = make_order(customer, seller, make_product(seller))

    res = client.put(f"/orders/{order['_id']}", json={"order_status": "cancelled", "payment_status": None},
                     headers=headers)
    assert res.status_code == 403
    assert db["order"].find_one({"_id": order["_id"]})["order_status"] == "processing"


def test_admin_body_is_still_validated(client, make_user, make_product, make_order):
    customer, _ = make_user("vehicle-owner")
    seller, _ = make_user("seller")
    _, admin_headers = make_user("admin")
    order = make_order(customer, seller, make_product(seller))

    res = client.put(f"/orders/{order['_id']}", json={"payment_status": "bogus"}, headers=admin_headers)
    assert res.status_code == 400
    assert res.json()["errors"][0]["path"] == "payment_status"


def test_status_changed_underneath_is_a_conflict(client, db, monkeypatch, make_user, make_product, make_order):
    customer, headers = make_user("vehicle-owner")
    seller, _ = make_user("seller")
    product = make_product(seller, stock=4)
    order = make_order(customer, seller, product, quantity=2)

    def ship_meanwhile(user, current, changes):
        actor = authorize_order_update(user, current, changes)
        db["order"].update_one({"_id": current["_id"]}, {"$set": {"order_status": "shipped"}})
        return actor

    monkeypatch.setattr(order_routes, "authorize_order_update", ship_meanwhile)
    res = client.put(f"/orders/{order['_id']}", json={"order_status": "cancelled"}, headers=headers)
    assert res.status_code == 409
    assert db["order"].find_one({"_id": order["_id"]})["order_status"] == "shipped"
    assert db["product"].find_one({"_id": product["_id"]})["stock"] == 4
