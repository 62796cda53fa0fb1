import pytest

from models.cart import Cart
from models.order import Order, OrderStatus
from models.product import Product
from routes.orders import can_transition, reserve_stock
from conftest import auth_headers

ADDRESS = "House 12, Street 4, Gulberg III, Lahore"


def _fill_cart(client, user, *lines):
    headers = auth_headers(user)
    for product, qty in lines:
        res = client.post("/cart", json={"product_id": product.id, "quantity": qty}, headers=headers)
        assert res.status_code == 201
    return headers


def _place(client, headers, restaurant, **extra):
    payload = {"delivery_address": ADDRESS, "restaurant_id": restaurant.id}
    payload.update(extra)
    return client.post("/orders", json=payload, headers=headers)


def test_place_cash_order(client, db, customer, restaurant, karahi, lassi):
    headers = _fill_cart(client, customer, (karahi, 2), (lassi, 1))
    res = _place(client, headers, restaurant)
    assert res.status_code == 201
    body = res.json()
    assert body["total_price"] == 3150.0
    assert body["status"] == "Pending"

    db.expire_all()
    assert db.get(Product, karahi.id).stock == 8
    assert db.get(Product, lassi.id).stock == 4
    assert db.query(Cart).filter(Cart.user_id == customer.id).one().items == []

    order = db.get(Order, body["order_id"])
    assert order.payment_method == "Cash on Delivery"
    assert {(i.product_name, i.quantity, i.price) for i in order.items} == {
        ("Chicken Karahi", 2, 1450.0), ("Sweet Lassi", 1, 250.0)
    }


def test_order_keeps_price_snapshot(client, db, customer, restaurant, karahi):
    headers = _fill_cart(client, customer, (karahi, 1))
    order_id = _place(client, headers, restaurant).json()["order_id"]

    karahi.price = 2000.0
    db.commit()

    res = client.get(f"/orders/{order_id}", headers=headers)
    assert res.json()["items"][0]["price"] == 1450.0
    assert res.json()["total_price"] == 1450.0


def test_empty_cart_is_rejected(client, customer, restaurant):
    res = _place(client, auth_headers(customer), restaurant)
    assert res.status_code == 400
    assert res.json()["error"] == "EmptyCart"


def test_unknown_restaurant(client, customer, karahi):
    headers = _fill_cart(client, customer, (karahi, 1))
    res = client.post("/orders", json={"delivery_address": ADDRESS, "restaurant_id": 999}, headers=headers)
    assert res.status_code == 404


def test_delivery_unavailable(client, db, customer, restaurant, karahi):
    restaurant.delivery_available = False
    db.commit()
    headers = _fill_cart(client, customer, (karahi, 1))
    res = _place(client, headers, restaurant)
    assert res.status_code == 400
    assert res.json()["error"] == "DeliveryUnavailable"


def test_mixed_restaurants_are_rejected(client, customer, restaurant, karahi, other_product):
    headers = _fill_cart(client, customer, (karahi, 1), (other_product, 1))
    res = _place(client, headers, restaurant)
    assert res.status_code == 400
    assert res.json()["error"] == "ValidationError"


def test_minimum_order_not_met(client, customer, restaurant, lassi):
    headers = _fill_cart(client, customer, (lassi, 1))
    res = _place(client, headers, restaurant)
    assert res.status_code == 400
    assert res.json()["error"] == "MinimumOrderNotMet"


def test_total_equal_to_minimum_is_accepted(client, customer, restaurant, lassi):
    # 2 x 250 == 500 minimum
    headers = _fill_cart(client, customer, (lassi, 2))
    res = _place(client, headers, restaurant)
    assert res.status_code == 201


def test_blank_address_is_rejected(client, customer, restaurant, karahi):
    headers = _fill_cart(client, customer, (karahi, 1))
    res = client.post("/orders", json={"delivery_address": "   ", "restaurant_id": restaurant.id}, headers=headers)
    assert res.status_code == 422


def test_stock_drop_after_carting_is_insufficient(client, db, customer, restaurant, karahi):
    headers = _fill_cart(client, customer, (karahi, 5))
    karahi.stock = 4
    db.commit()

    res = _place(client, headers, restaurant)
    assert res.status_code == 409
    assert res.json()["error"] == "InsufficientStock"


def test_exact_stock_can_be_ordered(client, db, customer, restaurant, karahi):
    headers = _fill_cart(client, customer, (karahi, 10))
    assert _place(client, headers, restaurant).status_code == 201
    db.expire_all()
    assert db.get(Product, karahi.id).stock == 0


def test_failed_reservation_rolls_back_everything(client, db, customer, restaurant, karahi, lassi, monkeypatch):
    headers = _fill_cart(client, customer, (karahi, 2), (lassi, 2))

    import routes.orders as orders_module
    real_reserve = orders_module.reserve_stock

    # Second line loses a race after validation passed
    def flaky_reserve(session, product_id, quantity):
        if product_id == lassi.id:
            return False
        return real_reserve(session, product_id, quantity)

    monkeypatch.setattr(orders_module, "reserve_stock", flaky_reserve)
    res = _place(client, headers, restaurant)
    assert res.status_code == 409
    assert res.json()["error"] == "InsufficientStock"

    db.expire_all()
    assert db.get(Product, karahi.id).stock == 10
    assert db.get(Product, lassi.id).stock == 5
    assert db.query(Order).count() == 0
    assert len(db.query(Cart).filter(Cart.user_id == customer.id).one().items) == 2


def test_reserve_stock_never_goes_negative(db, karahi):
    assert reserve_stock(db, karahi.id, 11) is False
    assert reserve_stock(db, karahi.id, 10) is True
    db.commit()
    db.expire_all()
    assert db.get(Product, karahi.id).stock == 0
    assert reserve_stock(db, karahi.id, 1) is False


def test_online_order_requires_session(client, customer, restaurant, karahi):
    headers = _fill_cart(client, customer, (karahi, 1))
    res = _place(client, headers, restaurant, payment_method="Online")
    assert res.status_code == 400


def test_cash_order_rejects_session(client, customer, restaurant, karahi):
    headers = _fill_cart(client, customer, (karahi, 1))
    res = _place(client, headers, restaurant, stripe_session_id="cs_test_x")
    assert res.status_code == 400


def _open_session(client, headers, restaurant):
    res = client.post(
        "/create-checkout-session", json={"restaurant_id": restaurant.id, "delivery_address": ADDRESS}, headers=headers
    )
    assert res.status_code == 200
    return res.json()["session_id"]


def test_duplicate_session_is_conflict(client, customer, restaurant, karahi):
    headers = _fill_cart(client, customer, (karahi, 1))
    session_id = _open_session(client, headers, restaurant)
    assert _place(client, headers, restaurant, payment_method="Online", stripe_session_id=session_id).status_code == 201

    _fill_cart(client, customer, (karahi, 1))
    res = _place(client, headers, restaurant, payment_method="Online", stripe_session_id=session_id)
    assert res.status_code == 409
    assert res.json()["error"] == "Conflict"


def test_online_order_must_match_its_session(client, db, customer, restaurant, karahi, lassi):
    headers = _fill_cart(client, customer, (lassi, 2))
    session_id = _open_session(client, headers, restaurant)

    # Cart grows after the session was priced
    _fill_cart(client, customer, (karahi, 5))
    res = _place(client, headers, restaurant, payment_method="Online", stripe_session_id=session_id)
    assert res.status_code == 400
    assert res.json()["detail"] == "Checkout session does not match the cart"

    db.expire_all()
    assert db.query(Order).count() == 0
    assert db.get(Product, karahi.id).stock == 10
    assert db.get(Product, lassi.id).stock == 5


def test_online_order_rejects_someone_elses_session(client, customer, other_customer, restaurant, karahi):
    session_id = _open_session(client, _fill_cart(client, other_customer, (karahi, 1)), restaurant)
    headers = _fill_cart(client, customer, (karahi, 1))
    res = _place(client, headers, restaurant, payment_method="Online", stripe_session_id=session_id)
    assert res.status_code == 400


def test_online_order_with_unknown_session(client, db, customer, restaurant, karahi):
    headers = _fill_cart(client, customer, (karahi, 1))
    res = _place(client, headers, restaurant, payment_method="Online", stripe_session_id="cs_made_up")
    assert res.status_code == 404
    assert db.query(Order).count() == 0


def test_list_orders_scoping(client, customer, other_customer, admin, restaurant, karahi):
    headers = _fill_cart(client, customer, (karahi, 1))
    order_id = _place(client, headers, restaurant).json()["order_id"]

    assert [o["id"] for o in client.get("/orders", headers=headers).json()] == [order_id]
    assert client.get("/orders", headers=auth_headers(other_customer)).json() == []
    assert [o["id"] for o in client.get("/orders", headers=auth_headers(admin)).json()] == [order_id]


def test_order_detail_visibility(client, customer, other_customer, admin, other_admin,
                                 restaurant, other_restaurant, karahi):
    headers = _fill_cart(client, customer, (karahi, 1))
    order_id = _place(client, headers, restaurant).json()["order_id"]

    res = client.get(f"/orders/{order_id}", headers=headers)
    assert res.status_code == 200
    assert res.json()["restaurant_name"] == "Lahore Tikka House"
    assert client.get(f"/orders/{order_id}", headers=auth_headers(admin)).status_code == 200
    assert client.get(f"/orders/{order_id}", headers=auth_headers(other_customer)).status_code == 403
    assert client.get(f"/orders/{order_id}", headers=auth_headers(other_admin)).status_code == 403
    assert client.get("/orders/999", headers=headers).status_code == 404


@pytest.mark.parametrize("old,new,allowed", [
    (OrderStatus.PENDING, OrderStatus.CONFIRMED, True),
    (OrderStatus.PENDING, OrderStatus.DELIVERED, True),
    (OrderStatus.PREPARING, OrderStatus.CANCELLED, True),
    (OrderStatus.PREPARING, OrderStatus.PENDING, False),
    (OrderStatus.DELIVERED, OrderStatus.CANCELLED, False),
    (OrderStatus.CANCELLED, OrderStatus.CONFIRMED, False),
    (OrderStatus.CONFIRMED, OrderStatus.CONFIRMED, True),
])
def test_can_transition(old, new, allowed):
    assert can_transition(old, new) is allowed


def test_status_update_flow(client, customer, admin, restaurant, karahi):
    headers = _fill_cart(client, customer, (karahi, 1))
    order_id = _place(client, headers, restaurant).json()["order_id"]
    admin_headers = auth_headers(admin)

    for status in ("Confirmed", "Preparing", "Out for Delivery", "Delivered"):
        res = client.put(f"/orders/{order_id}", json={"status": status}, headers=admin_headers)
        assert res.status_code == 200
        assert res.json()["status"] == status

    res = client.put(f"/orders/{order_id}", json={"status": "Cancelled"}, headers=admin_headers)
    assert res.status_code == 409
    assert res.json()["error"] == "InvalidState"


def test_status_update_rejects_unknown_status(client, customer, admin, restaurant, karahi):
    headers = _fill_cart(client, customer, (karahi, 1))
    order_id = _place(client, headers, restaurant).json()["order_id"]
    res = client.put(f"/orders/{order_id}", json={"status": "Teleported"}, headers=auth_headers(admin))
    assert res.status_code == 400
    assert res.json()["error"] == "ValidationError"


def test_status_update_requires_owning_admin(client, customer, other_admin, restaurant, other_restaurant, karahi):
    headers = _fill_cart(client, customer, (karahi, 1))
    order_id = _place(client, headers, restaurant).json()["order_id"]

    assert client.put(f"/orders/{order_id}", json={"status": "Confirmed"}, headers=headers).status_code == 403
    res = client.put(f"/orders/{order_id}", json={"status": "Confirmed"}, headers=auth_headers(other_admin))
    assert res.status_code == 403
