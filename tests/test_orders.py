import pytest


@pytest.fixture
def sold(store):
    return store.create_product({"name": "Gone Skirt", "price": 200, "status": "Sold"})


def place(client, user, auth, **overrides):
    body = {"shipping_address": "123 Rizal St, Manila", "payment_method": "GCash"}
    body.update(overrides)
    return client.post("/api/orders", headers=auth(user), json=body)


def test_place_order_snapshots_price_and_skips_unavailable(client, store, buyer, product, sold, auth):
    res = place(client, buyer, auth, items=[
        {"product_id": product["id"], "quantity": 2},
        {"product_id": sold["id"], "quantity": 1},
        {"product_id": 9999, "quantity": 1},
    ])
    assert res.status_code == 201
    order = res.get_json()["order"]
    assert order["status"] == "pending"
    assert order["total_amount"] == 700
    assert [(i["product_id"], i["quantity"], i["price_at_time"]) for i in order["items"]] == [(product["id"], 2, 350)]

    store.update_product(product["id"], {"price": 999})
    listed = client.get("/api/orders", headers=auth(buyer)).get_json()["orders"]
    assert listed[0]["items"][0]["price_at_time"] == 350
    assert listed[0]["items"][0]["product_name"] == "Baby Tee"


def test_quantity_is_at_least_one(client, buyer, product, auth):
    res = place(client, buyer, auth, items=[{"product_id": product["id"], "quantity": "zero"}])
    assert res.get_json()["order"]["items"][0]["quantity"] == 1
    res = place(client, buyer, auth, items=[{"product_id": product["id"], "quantity": -4}])
    assert res.get_json()["order"]["total_amount"] == 350


def test_place_order_validation(client, buyer, sold, auth):
    assert place(client, buyer, auth, items=[]).status_code == 400
    assert place(client, buyer, auth, shipping_address="", items=[{"product_id": 1}]).status_code == 400
    res = place(client, buyer, auth, items=[{"product_id": sold["id"]}])
    assert res.status_code == 400
    assert res.get_json()["error"] == "No valid items to order"


def test_cart_flow_and_checkout_from_cart(client, buyer, product, sold, auth):
    res = client.put("/api/cart", headers=auth(buyer), json={"product_id": product["id"], "quantity": 2})
    assert res.status_code == 200
    assert res.get_json()["total"] == 700

    assert client.put("/api/cart", headers=auth(buyer), json={"product_id": sold["id"]}).status_code == 400
    assert client.put("/api/cart", headers=auth(buyer), json={"product_id": 999}).status_code == 404
    assert client.put("/api/cart", headers=auth(buyer), json={"product_id": "x"}).status_code == 400

    res = place(client, buyer, auth, from_cart=True)
    assert res.status_code == 201
    assert res.get_json()["order"]["total_amount"] == 700
    assert client.get("/api/cart", headers=auth(buyer)).get_json() == {"items": [], "total": 0}


def test_cart_remove_and_clear(client, store, buyer, product, auth):
    other = store.create_product({"name": "Bucket Hat", "price": 150})
    client.put("/api/cart", headers=auth(buyer), json={"product_id": product["id"]})
    client.put("/api/cart", headers=auth(buyer), json={"product_id": other["id"], "quantity": 3})

    res = client.delete(f"/api/cart/{product['id']}", headers=auth(buyer))
    assert [i["product_id"] for i in res.get_json()["items"]] == [other["id"]]

    res = client.put("/api/cart", headers=auth(buyer), json={"product_id": other["id"], "quantity": 0})
    assert res.get_json()["items"] == []

    client.put("/api/cart", headers=auth(buyer), json={"product_id": other["id"]})
    assert client.delete("/api/cart", headers=auth(buyer)).get_json()["items"] == []


def test_cancel_own_pending_order(client, store, buyer, make_user, product, auth):
    order = place(client, buyer, auth, items=[{"product_id": product["id"]}]).get_json()["order"]
    stranger = make_user("stranger")

    assert client.patch(f"/api/orders/{order['id']}/cancel", headers=auth(stranger)).status_code == 403
    assert client.patch("/api/orders/999/cancel", headers=auth(buyer)).status_code == 404

    res = client.patch(f"/api/orders/{order['id']}/cancel", headers=auth(buyer))
    assert res.status_code == 200
    assert res.get_json()["order"]["status"] == "cancelled"
    assert res.get_json()["order"]["items"][0]["product_name"] == "Baby Tee"


def test_cannot_cancel_shipped_order(client, store, buyer, product, auth):
    order = place(client, buyer, auth, items=[{"product_id": product["id"]}]).get_json()["order"]
    store.update_order_status(order["id"], "shipped")
    res = client.patch(f"/api/orders/{order['id']}/cancel", headers=auth(buyer))
    assert res.status_code == 400


def test_buyer_sees_only_own_orders(client, buyer, make_user, product, auth):
    other = make_user("other")
    place(client, buyer, auth, items=[{"product_id": product["id"]}])
    place(client, other, auth, items=[{"product_id": product["id"]}])
    orders = client.get("/api/orders", headers=auth(buyer)).get_json()["orders"]
    assert len(orders) == 1
    assert orders[0]["user_id"] == buyer["id"]


def test_staff_lists_and_updates_orders(client, buyer, mod, product, auth):
    order = place(client, buyer, auth, items=[{"product_id": product["id"]}]).get_json()["order"]

    orders = client.get("/api/admin/orders", headers=auth(mod)).get_json()["orders"]
    assert orders[0]["user"]["username"] == "shopper"
    assert orders[0]["items"][0]["product_name"] == "Baby Tee"

    res = client.patch(f"/api/admin/orders/{order['id']}", headers=auth(mod), json={"status": "shipped"})
    assert res.status_code == 200
    assert res.get_json()["order"]["status"] == "shipped"
    assert res.get_json()["order"]["user"]["email"] == "shopper@example.com"

    assert client.patch(f"/api/admin/orders/{order['id']}", headers=auth(mod),
                        json={"status": "lost"}).status_code == 400
    assert client.patch("/api/admin/orders/999", headers=auth(mod), json={"status": "shipped"}).status_code == 404
    assert client.get("/api/admin/orders", headers=auth(buyer)).status_code == 403
