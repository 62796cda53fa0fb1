import pytest

from models.order import Order, OrderItem
from models.restaurant import Restaurant
from conftest import auth_headers


def _order(db, user, restaurant, product, status="Delivered"):
    order = Order(
        user_id=user.id,
        restaurant_id=restaurant.id,
        status=status,
        total_price=product.price,
        delivery_address="Street 1, Lahore",
        payment_method="Cash on Delivery",
    )
    order.items.append(OrderItem(product_id=product.id, product_name=product.name, quantity=1, price=product.price))
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


def _review(client, user, order, rating=4, comment="Great karahi"):
    return client.post(
        "/reviews", json={"order_id": order.id, "rating": rating, "comment": comment}, headers=auth_headers(user)
    )


@pytest.fixture
def delivered(db, customer, restaurant, karahi):
    return _order(db, customer, restaurant, karahi)


def test_review_delivered_order_updates_rating(client, db, customer, restaurant, delivered):
    res = _review(client, customer, delivered, rating=4)
    assert res.status_code == 201
    body = res.json()
    assert body["status"] == "approved"
    assert body["restaurant_id"] == restaurant.id
    assert body["user_name"] == customer.name

    db.expire_all()
    rating = db.get(Restaurant, restaurant.id).rating
    assert rating["average"] == 4.0
    assert rating["total"] == 1
    assert rating["distribution"]["4"] == 1


def test_undelivered_order_cannot_be_reviewed(client, db, customer, restaurant, karahi):
    order = _order(db, customer, restaurant, karahi, status="Preparing")
    res = _review(client, customer, order)
    assert res.status_code == 409
    assert res.json()["error"] == "InvalidState"


def test_second_review_is_conflict(client, customer, delivered):
    assert _review(client, customer, delivered).status_code == 201
    res = _review(client, customer, delivered, rating=1)
    assert res.status_code == 409
    assert res.json()["error"] == "Conflict"


def test_cannot_review_someone_elses_order(client, other_customer, delivered):
    assert _review(client, other_customer, delivered).status_code == 404


@pytest.mark.parametrize("rating,comment", [(0, "ok"), (6, "ok"), (3, "   "), (3, "x" * 501)])
def test_review_payload_validation(client, customer, delivered, rating, comment):
    res = _review(client, customer, delivered, rating=rating, comment=comment)
    assert res.status_code == 422


def test_rating_average_over_several_orders(client, db, customer, restaurant, karahi):
    for rating in (5, 4, 2):
        order = _order(db, customer, restaurant, karahi)
        assert _review(client, customer, order, rating=rating).status_code == 201

    res = client.get(f"/reviews/restaurant/{restaurant.id}")
    assert res.status_code == 200
    body = res.json()
    assert body["total"] == 3
    assert body["stats"]["average"] == 3.67
    assert body["stats"]["distribution"] == {"1": 0, "2": 1, "3": 0, "4": 1, "5": 1}


def test_restaurant_reviews_are_paginated(client, db, customer, restaurant, karahi):
    for _ in range(3):
        _review(client, customer, _order(db, customer, restaurant, karahi))
    res = client.get(f"/reviews/restaurant/{restaurant.id}", params={"page": 2, "limit": 2})
    body = res.json()
    assert body["total"] == 3
    assert len(body["reviews"]) == 1
    assert body["page"] == 2


def test_update_review_goes_back_to_moderation(client, db, customer, restaurant, delivered):
    review_id = _review(client, customer, delivered, rating=5).json()["id"]
    res = client.put(f"/reviews/{review_id}", json={"rating": 2}, headers=auth_headers(customer))
    assert res.status_code == 200
    assert res.json()["status"] == "pending"
    assert res.json()["rating"] == 2

    # Pending reviews still count toward the aggregate but are not listed publicly
    db.expire_all()
    assert db.get(Restaurant, restaurant.id).rating["average"] == 2.0
    assert client.get(f"/reviews/restaurant/{restaurant.id}").json()["total"] == 0


def test_only_author_can_edit_or_delete(client, customer, other_customer, delivered):
    review_id = _review(client, customer, delivered).json()["id"]
    assert client.put(f"/reviews/{review_id}", json={"rating": 1}, headers=auth_headers(other_customer)).status_code == 404
    assert client.delete(f"/reviews/{review_id}", headers=auth_headers(other_customer)).status_code == 404


def test_delete_review_recomputes_rating(client, db, customer, restaurant, delivered):
    review_id = _review(client, customer, delivered, rating=5).json()["id"]
    assert client.delete(f"/reviews/{review_id}", headers=auth_headers(customer)).status_code == 200

    db.expire_all()
    rating = db.get(Restaurant, restaurant.id).rating
    assert rating["total"] == 0
    assert rating["average"] == 0.0
    assert client.get(f"/reviews/check/{delivered.id}", headers=auth_headers(customer)).json() == {
        "has_review": False, "review_id": None
    }


def test_moderation_rejects_review(client, db, customer, admin, restaurant, delivered):
    review_id = _review(client, customer, delivered, rating=1).json()["id"]
    res = client.patch(f"/reviews/{review_id}/moderate", json={"status": "rejected"}, headers=auth_headers(admin))
    assert res.status_code == 200
    assert res.json()["status"] == "rejected"

    db.expire_all()
    assert db.get(Restaurant, restaurant.id).rating["total"] == 0


def test_moderation_is_restaurant_scoped(client, customer, other_admin, other_restaurant, delivered):
    review_id = _review(client, customer, delivered).json()["id"]
    res = client.patch(f"/reviews/{review_id}/moderate", json={"status": "approved"},
                       headers=auth_headers(other_admin))
    assert res.status_code == 403


def test_moderation_requires_admin(client, customer, delivered):
    review_id = _review(client, customer, delivered).json()["id"]
    res = client.patch(f"/reviews/{review_id}/moderate", json={"status": "approved"}, headers=auth_headers(customer))
    assert res.status_code == 403


def test_order_review_lookup(client, customer, other_customer, admin, delivered):
    review_id = _review(client, customer, delivered).json()["id"]
    assert client.get(f"/reviews/order/{delivered.id}", headers=auth_headers(customer)).json()["id"] == review_id
    assert client.get(f"/reviews/order/{delivered.id}", headers=auth_headers(admin)).status_code == 200
    assert client.get(f"/reviews/order/{delivered.id}", headers=auth_headers(other_customer)).status_code == 404


def test_my_reviews_and_check(client, customer, delivered):
    headers = auth_headers(customer)
    assert client.get(f"/reviews/check/{delivered.id}", headers=headers).json()["has_review"] is False
    review_id = _review(client, customer, delivered).json()["id"]
    assert client.get(f"/reviews/check/{delivered.id}", headers=headers).json() == {
        "has_review": True, "review_id": review_id
    }
    assert [r["id"] for r in client.get("/reviews/user", headers=headers).json()] == [review_id]


def test_featured_reviews_rank_by_rating(client, db, customer, admin, restaurant, karahi, other_restaurant, other_product):
    ids = {}
    for rating in (3, 5, 4, 2, 5, 1):
        ids.setdefault(rating, []).append(_review(client, customer, _order(db, customer, restaurant, karahi), rating=rating).json()["id"])
    broast = _review(client, customer, _order(db, customer, other_restaurant, other_product), rating=4).json()["id"]
    client.patch(f"/reviews/{ids[5][0]}/moderate", json={"status": "rejected"}, headers=auth_headers(admin))

    res = client.get("/reviews/featured")
    assert res.status_code == 200
    body = res.json()
    assert [r["rating"] for r in body] == [5, 4, 4, 3, 2]
    assert body[0]["id"] == ids[5][1]
    assert body[0]["restaurant_name"] == restaurant.name
    # Equal ratings: newest first
    assert [r["id"] for r in body[1:3]] == [broast, ids[4][0]]


def test_featured_reviews_empty(client):
    assert client.get("/reviews/featured").json() == []


def test_helpful_votes_accumulate(client, customer, other_customer, delivered):
    review_id = _review(client, customer, delivered).json()["id"]
    assert client.post(f"/reviews/{review_id}/vote", headers=auth_headers(other_customer)).json()["helpful_votes"] == 1
    res = client.post(f"/reviews/{review_id}/vote", headers=auth_headers(customer))
    assert res.status_code == 200
    assert res.json()["helpful_votes"] == 2


def test_vote_needs_existing_review_and_login(client, customer, delivered):
    review_id = _review(client, customer, delivered).json()["id"]
    assert client.post("/reviews/999/vote", headers=auth_headers(customer)).status_code == 404
    assert client.post(f"/reviews/{review_id}/vote").status_code in (401, 403)


def test_reports_reject_review_and_recompute_rating(client, db, customer, other_customer, restaurant, karahi, delivered):
    keep = _review(client, customer, _order(db, customer, restaurant, karahi), rating=4).json()["id"]
    review_id = _review(client, customer, delivered, rating=1).json()["id"]
    headers = auth_headers(other_customer)

    for _ in range(4):
        res = client.post(f"/reviews/{review_id}/report", json={"reason": "spam"}, headers=headers)
        assert res.status_code == 200
    db.expire_all()
    assert db.get(Restaurant, restaurant.id).rating["total"] == 2

    # Fifth report takes it down
    assert client.post(f"/reviews/{review_id}/report", headers=headers).status_code == 200
    db.expire_all()
    rating = db.get(Restaurant, restaurant.id).rating
    assert rating["total"] == 1
    assert rating["average"] == 4.0
    listed = client.get(f"/reviews/restaurant/{restaurant.id}").json()["reviews"]
    assert [r["id"] for r in listed] == [keep]

    mine = {r["id"]: r for r in client.get("/reviews/user", headers=auth_headers(customer)).json()}
    assert mine[review_id]["status"] == "rejected"
    assert mine[review_id]["report_count"] == 5


def test_owner_responds_to_review(client, customer, admin, delivered):
    review_id = _review(client, customer, delivered).json()["id"]
    res = client.post(f"/reviews/{review_id}/respond", json={"response": "  Thanks, come again!  "},
                      headers=auth_headers(admin))
    assert res.status_code == 200
    body = res.json()
    assert body["owner_response"] == "Thanks, come again!"
    assert body["response_at"] is not None

    public = client.get(f"/reviews/order/{delivered.id}", headers=auth_headers(customer)).json()
    assert public["owner_response"] == "Thanks, come again!"


def test_only_own_restaurant_admin_responds(client, customer, other_admin, other_restaurant, delivered):
    review_id = _review(client, customer, delivered).json()["id"]
    body = {"response": "Not my place to say"}
    assert client.post(f"/reviews/{review_id}/respond", json=body, headers=auth_headers(other_admin)).status_code == 403
    assert client.post(f"/reviews/{review_id}/respond", json=body, headers=auth_headers(customer)).status_code == 403
    res = client.post(f"/reviews/{review_id}/respond", json={"response": "  "}, headers=auth_headers(other_admin))
    assert res.status_code == 422
