"""Tests for the cart endpoints."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm.exc import StaleDataError

from database import SessionLocal
from models.cart import Cart
from models.product import Product
from services import cart as cart_service


def add(client, headers, product_id, quantity=1, **variant):
    return client.post("/cart", json={"product_id": product_id, "quantity": quantity, **variant}, headers=headers)


class TestReadCart:
    def test_requires_authentication(self, client):
        response = client.get("/cart")
        assert response.status_code in (401, 403)

    def test_user_without_cart_gets_empty_cart(self, client, customer):
        _, headers = customer
        response = client.get("/cart", headers=headers)
        assert response.status_code == 200
        data = response.json()
        assert data["id"] is None
        assert data["items"] == []
        assert data["subtotal"] == 0
        assert data["estimated_total"] == 10.0  # shipping only

    def test_populates_product_summary(self, client, customer, make_product):
        _, headers = customer
        pid = make_product(name="Galaxy S24", price=80.0)
        add(client, headers, pid, 2)

        item = client.get("/cart", headers=headers).json()["items"][0]
        assert item["product"]["name"] == "Galaxy S24"
        assert item["product"]["stock"] == 5
        assert item["line_total"] == 160.0

    def test_prunes_inactive_products_and_persists(self, client, customer, make_product, db, fetch):
        user_id, headers = customer
        keep = make_product(name="Keep")
        drop = make_product(name="Drop")
        add(client, headers, keep)
        add(client, headers, drop)

        fetch(Product, drop).active = False
        db.commit()

        first = client.get("/cart", headers=headers).json()
        assert [it["product_id"] for it in first["items"]] == [keep]
        second = client.get("/cart", headers=headers).json()
        assert second["items"] == first["items"]

        db.expire_all()
        cart = db.query(Cart).filter(Cart.user_id == user_id).one()
        assert [it.product_id for it in cart.items] == [keep]


class TestAddItem:
    def test_creates_cart_lazily(self, client, customer, make_product):
        _, headers = customer
        pid = make_product(price=100.0)
        response = add(client, headers, pid, 3)
        assert response.status_code == 200
        data = response.json()
        assert data["id"] is not None
        assert data["total_items"] == 3
        assert data["subtotal"] == 300.0
        assert data["estimated_tax"] == 24.0
        assert data["estimated_shipping"] == 0.0
        assert data["estimated_total"] == 324.0

    def test_same_variant_merges_into_one_line(self, client, customer, make_product):
        _, headers = customer
        pid = make_product(stock=10)
        add(client, headers, pid, 2, color="black", storage="128GB")
        data = add(client, headers, pid, 3, color="black", storage="128GB").json()
        assert len(data["items"]) == 1
        assert data["items"][0]["quantity"] == 5

    def test_different_variant_gets_own_line(self, client, customer, make_product):
        _, headers = customer
        pid = make_product(stock=10)
        add(client, headers, pid, 1, color="black")
        data = add(client, headers, pid, 1, color="white").json()
        assert len(data["items"]) == 2

    def test_snapshot_uses_discount_price(self, client, customer, make_product):
        _, headers = customer
        pid = make_product(price=100.0, discount_price=80.0)
        data = add(client, headers, pid, 1).json()
        assert data["items"][0]["price"] == 100.0
        assert data["items"][0]["discount_price"] == 80.0
        assert data["subtotal"] == 80.0

    def test_merged_quantity_checked_against_stock(self, client, customer, make_product):
        _, headers = customer
        pid = make_product(name="Pixel 9", stock=5)
        add(client, headers, pid, 3)
        response = add(client, headers, pid, 3)
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "InsufficientStock"
        assert body["context"]["available"] == 5
        assert body["context"]["required"] == 6
        assert "Pixel 9" in body["detail"]

    def test_unknown_product(self, client, customer):
        _, headers = customer
        response = add(client, headers, 999)
        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    def test_inactive_product(self, client, customer, make_product):
        _, headers = customer
        pid = make_product(active=False)
        response = add(client, headers, pid)
        assert response.status_code == 400
        assert response.json()["error"] == "ProductUnavailable"

    def test_zero_quantity(self, client, customer, make_product):
        _, headers = customer
        pid = make_product()
        response = add(client, headers, pid, 0)
        assert response.status_code == 400
        assert response.json()["error"] == "InvalidQuantity"


class TestUpdateAndRemove:
    def test_update_quantity(self, client, customer, make_product):
        _, headers = customer
        pid = make_product(stock=5)
        item_id = add(client, headers, pid, 1).json()["items"][0]["id"]
        response = client.put(f"/cart/items/{item_id}", json={"quantity": 4}, headers=headers)
        assert response.status_code == 200
        assert response.json()["items"][0]["quantity"] == 4

    def test_update_rejects_quantity_below_one(self, client, customer, make_product):
        _, headers = customer
        pid = make_product()
        item_id = add(client, headers, pid).json()["items"][0]["id"]
        response = client.put(f"/cart/items/{item_id}", json={"quantity": 0}, headers=headers)
        assert response.status_code == 400
        assert response.json()["error"] == "InvalidQuantity"

    def test_update_above_live_stock(self, client, customer, make_product):
        _, headers = customer
        pid = make_product(stock=2)
        item_id = add(client, headers, pid).json()["items"][0]["id"]
        response = client.put(f"/cart/items/{item_id}", json={"quantity": 3}, headers=headers)
        assert response.status_code == 400
        assert response.json()["context"]["available"] == 2

    def test_update_unknown_item(self, client, customer, make_product):
        _, headers = customer
        add(client, headers, make_product())
        response = client.put("/cart/items/999", json={"quantity": 1}, headers=headers)
        assert response.status_code == 404

    def test_update_evicts_line_of_deactivated_product(self, client, customer, make_product, db, fetch):
        _, headers = customer
        pid = make_product()
        item_id = add(client, headers, pid).json()["items"][0]["id"]
        fetch(Product, pid).active = False
        db.commit()

        response = client.put(f"/cart/items/{item_id}", json={"quantity": 2}, headers=headers)
        assert response.status_code == 400
        assert response.json()["error"] == "ProductUnavailable"
        assert client.get("/cart", headers=headers).json()["items"] == []

    def test_remove_item(self, client, customer, make_product):
        _, headers = customer
        a = make_product(name="A")
        b = make_product(name="B")
        add(client, headers, a)
        item_id = add(client, headers, b).json()["items"][1]["id"]
        data = client.delete(f"/cart/items/{item_id}", headers=headers).json()
        assert [it["product_id"] for it in data["items"]] == [a]

    def test_remove_unknown_item(self, client, customer, make_product):
        _, headers = customer
        add(client, headers, make_product())
        assert client.delete("/cart/items/999", headers=headers).status_code == 404

    def test_clear_cart_drops_items_and_coupon(self, client, customer, make_product):
        _, headers = customer
        add(client, headers, make_product(price=60.0))
        client.post("/cart/coupon", json={"code": "WELCOME10"}, headers=headers)
        data = client.delete("/cart", headers=headers).json()
        assert data["items"] == []
        assert data["coupon"] is None


class TestCoupons:
    def test_apply_coupon(self, client, customer, make_product):
        _, headers = customer
        add(client, headers, make_product(price=60.0))
        response = client.post("/cart/coupon", json={"code": "welcome10"}, headers=headers)
        assert response.status_code == 200
        data = response.json()
        assert data["coupon"]["code"] == "WELCOME10"
        assert data["coupon"]["valid"] is True
        assert data["discount_amount"] == 6.0
        assert data["total_after_discount"] == 54.0
        assert data["estimated_tax"] == 4.32
        assert data["estimated_shipping"] == 10.0
        assert data["estimated_total"] == 68.32

    def test_coupon_expires_after_thirty_days(self, client, customer, make_product):
        _, headers = customer
        add(client, headers, make_product(price=60.0))
        before = datetime.now(timezone.utc)
        data = client.post("/cart/coupon", json={"code": "WELCOME10"}, headers=headers).json()
        expires_at = datetime.fromisoformat(data["coupon"]["expires_at"])
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        assert timedelta(days=29, hours=23) < expires_at - before < timedelta(days=30, minutes=1)

    def test_unknown_coupon(self, client, customer, make_product):
        _, headers = customer
        add(client, headers, make_product())
        response = client.post("/cart/coupon", json={"code": "BOGUS"}, headers=headers)
        assert response.status_code == 400
        assert response.json()["error"] == "InvalidCoupon"

    def test_minimum_purchase_not_met(self, client, customer, make_product):
        _, headers = customer
        add(client, headers, make_product(price=40.0))
        response = client.post("/cart/coupon", json={"code": "WELCOME10"}, headers=headers)
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "MinimumPurchaseNotMet"
        assert body["context"] == {"min_purchase": 50.0, "subtotal": 40.0}

    def test_coupon_inert_when_subtotal_drops_below_minimum(self, client, customer, make_product):
        _, headers = customer
        a = make_product(name="A", price=40.0)
        b = make_product(name="B", price=20.0)
        add(client, headers, a)
        item_id = add(client, headers, b).json()["items"][1]["id"]
        client.post("/cart/coupon", json={"code": "WELCOME10"}, headers=headers)

        data = client.delete(f"/cart/items/{item_id}", headers=headers).json()
        assert data["coupon"]["code"] == "WELCOME10"
        assert data["coupon"]["valid"] is False
        assert data["discount_amount"] == 0.0

    def test_expired_coupon_is_inert(self, client, customer, make_product, db):
        user_id, headers = customer
        add(client, headers, make_product(price=60.0))
        client.post("/cart/coupon", json={"code": "WELCOME10"}, headers=headers)

        db.expire_all()
        cart = db.query(Cart).filter(Cart.user_id == user_id).one()
        cart.coupon_expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        db.commit()

        data = client.get("/cart", headers=headers).json()
        assert data["coupon"]["valid"] is False
        assert data["discount_amount"] == 0.0
        assert data["estimated_total"] == 74.8

    def test_remove_coupon(self, client, customer, make_product):
        _, headers = customer
        add(client, headers, make_product(price=60.0))
        client.post("/cart/coupon", json={"code": "WELCOME10"}, headers=headers)
        data = client.delete("/cart/coupon", headers=headers).json()
        assert data["coupon"] is None
        assert data["discount_amount"] == 0.0

    def test_remove_coupon_when_none_applied(self, client, customer, make_product):
        _, headers = customer
        add(client, headers, make_product())
        response = client.delete("/cart/coupon", headers=headers)
        assert response.status_code == 400
        assert response.json()["error"] == "NoCouponApplied"


class TestMergeGuestCart:
    def test_merge(self, client, customer, make_product):
        _, headers = customer
        owned = make_product(name="Owned", stock=4)
        fresh = make_product(name="Fresh", stock=10)
        inactive = make_product(name="Gone", active=False)
        sold_out = make_product(name="Sold out", stock=0)
        add(client, headers, owned, 2)

        response = client.post("/cart/merge", json={"guest_items": [
            {"product_id": owned, "quantity": 5},
            {"product_id": fresh, "quantity": 1, "color": "blue"},
            {"product_id": inactive, "quantity": 1},
            {"product_id": sold_out, "quantity": 1},
            {"product_id": 999, "quantity": 1},
        ]}, headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["merged"] == 2
        quantities = {it["product_id"]: it["quantity"] for it in data["cart"]["items"]}
        assert quantities == {owned: 4, fresh: 1}

    def test_merge_caps_new_line_at_stock(self, client, customer, make_product):
        _, headers = customer
        pid = make_product(stock=3)
        data = client.post("/cart/merge", json={"guest_items": [{"product_id": pid, "quantity": 7}]},
                           headers=headers).json()
        assert data["cart"]["items"][0]["quantity"] == 3


class TestConcurrentEdits:
    def test_stale_cart_write_is_rejected(self, client, customer, make_product, db):
        user_id, headers = customer
        add(client, headers, make_product())
        mine = db.query(Cart).filter(Cart.user_id == user_id).one()

        other = SessionLocal()
        try:
            theirs = other.query(Cart).filter(Cart.user_id == user_id).one()
            theirs.notes = "gift wrap"
            other.commit()
        finally:
            other.close()

        mine.notes = "leave at the door"
        with pytest.raises(StaleDataError):
            db.commit()
        db.rollback()

    def test_conflict_is_reported_as_409(self, client, customer, make_product, monkeypatch):
        _, headers = customer
        pid = make_product()

        def conflict(*args, **kwargs):
            raise StaleDataError("UPDATE statement on table 'carts' expected to update 1 row(s); 0 were matched.")

        monkeypatch.setattr(cart_service, "add_item", conflict)
        response = client.post("/cart", json={"product_id": pid, "quantity": 1}, headers=headers)
        assert response.status_code == 409
        assert response.json()["error"] == "ConcurrentModification"
