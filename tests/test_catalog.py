"""Tests for product and category endpoints and the stock primitives."""

import pytest

from models.product import Product
from services.catalog import adjust_stock


class TestAdjustStock:
    def test_decrement_within_stock(self, db, make_product, fetch):
        pid = make_product(stock=5)
        assert adjust_stock(db, pid, -3, 3) is True
        db.commit()
        product = fetch(Product, pid)
        assert product.stock == 2
        assert product.sold == 3

    def test_decrement_beyond_stock_is_refused(self, db, make_product, fetch):
        pid = make_product(stock=2)
        assert adjust_stock(db, pid, -3, 3) is False
        db.commit()
        assert fetch(Product, pid).stock == 2

    def test_decrement_of_inactive_product_is_refused(self, db, make_product):
        pid = make_product(stock=5, active=False)
        assert adjust_stock(db, pid, -1, 1) is False

    def test_sold_never_goes_negative(self, db, make_product, fetch):
        pid = make_product(stock=0)
        assert adjust_stock(db, pid, 2, -2) is True
        db.commit()
        product = fetch(Product, pid)
        assert product.stock == 2
        assert product.sold == 0


class TestProducts:
    def test_public_listing_shows_active_only(self, client, make_product):
        make_product(name="Pixel 9")
        make_product(name="Retired", active=False)
        data = client.get("/products").json()
        assert data["total"] == 1
        assert data["items"][0]["name"] == "Pixel 9"
        assert data["items"][0]["effective_price"] == 100.0

    def test_search_and_category_filter(self, client, make_product, make_category):
        phones = make_category()
        make_product(name="Galaxy S24", category=phones)
        make_product(name="Charger")
        assert client.get("/products", params={"search": "galaxy"}).json()["total"] == 1
        assert client.get("/products", params={"category": "smartphones"}).json()["total"] == 1
        assert client.get("/products", params={"category": str(phones.id)}).json()["total"] == 1

    def test_price_sorting(self, client, make_product):
        make_product(name="Cheap", price=10.0)
        make_product(name="Dear", price=900.0)
        names = [p["name"] for p in client.get("/products", params={"sort_by": "price", "order": "asc"}).json()["items"]]
        assert names == ["Cheap", "Dear"]

    def test_get_inactive_product_is_404(self, client, make_product):
        pid = make_product(active=False)
        assert client.get(f"/products/{pid}").status_code == 404

    def test_admin_creates_product(self, client, admin):
        _, headers = admin
        response = client.post("/products", json={
            "name": "iPhone 16", "sku": " ip16-128 ", "brand": "Apple",
            "price": 999.0, "discount_price": 949.0, "stock": 7,
        }, headers=headers)
        assert response.status_code == 201
        data = response.json()
        assert data["sku"] == "IP16-128"
        assert data["effective_price"] == 949.0
        assert data["sold"] == 0

    def test_duplicate_sku(self, client, admin):
        _, headers = admin
        body = {"name": "A", "sku": "DUP", "price": 1.0}
        client.post("/products", json=body, headers=headers)
        assert client.post("/products", json=body, headers=headers).status_code == 409

    def test_discount_above_price_rejected(self, client, admin):
        _, headers = admin
        response = client.post("/products", json={"name": "A", "sku": "A1", "price": 10.0, "discount_price": 12.0},
                               headers=headers)
        assert response.status_code == 422

    def test_customer_cannot_create(self, client, customer):
        _, headers = customer
        assert client.post("/products", json={"name": "A", "sku": "A1", "price": 1.0}, headers=headers).status_code == 403

    def test_patch_product(self, client, admin, make_product):
        _, headers = admin
        pid = make_product(price=100.0, stock=1)
        response = client.patch(f"/products/{pid}", json={"stock": 12, "discount_price": 80.0}, headers=headers)
        assert response.status_code == 200
        assert response.json()["stock"] == 12
        assert response.json()["effective_price"] == 80.0

    def test_patch_checks_discount_against_stored_price(self, client, admin, make_product):
        _, headers = admin
        pid = make_product(price=100.0)
        response = client.patch(f"/products/{pid}", json={"discount_price": 120.0}, headers=headers)
        assert response.status_code == 400

    def test_patch_null_price_rejected(self, client, admin, make_product, fetch):
        _, headers = admin
        pid = make_product(price=100.0)
        response = client.patch(f"/products/{pid}", json={"price": None, "discount_price": 5.0}, headers=headers)
        assert response.status_code == 422
        assert fetch(Product, pid).price == 100.0

    def test_patch_null_name_rejected(self, client, admin, make_product, fetch):
        _, headers = admin
        pid = make_product(name="Pixel 9")
        response = client.patch(f"/products/{pid}", json={"name": None}, headers=headers)
        assert response.status_code == 422
        assert fetch(Product, pid).name == "Pixel 9"

    def test_patch_null_clears_discount(self, client, admin, make_product):
        _, headers = admin
        pid = make_product(price=100.0, discount_price=80.0)
        response = client.patch(f"/products/{pid}", json={"discount_price": None}, headers=headers)
        assert response.status_code == 200
        assert response.json()["effective_price"] == 100.0


class TestShelves:
    def test_best_sellers_ordered_by_sold(self, client, db, make_product):
        low = make_product(name="Low")
        high = make_product(name="High")
        make_product(name="Unsold")
        make_product(name="Retired", active=False)
        db.get(Product, low).sold = 2
        db.get(Product, high).sold = 9
        db.commit()

        names = [p["name"] for p in client.get("/products/best-sellers").json()]
        assert names == ["High", "Low"]

    def test_new_arrivals_newest_first(self, client, make_product):
        make_product(name="Older")
        make_product(name="Newer")
        make_product(name="Hidden", active=False)
        names = [p["name"] for p in client.get("/products/new-arrivals", params={"limit": 5}).json()]
        assert names == ["Newer", "Older"]

    def test_related_share_category(self, client, make_product, make_category):
        phones = make_category()
        pid = make_product(name="Galaxy S24", category=phones)
        make_product(name="Galaxy A55", category=phones)
        make_product(name="Galaxy Old", category=phones, active=False)
        names = [p["name"] for p in client.get(f"/products/{pid}/related").json()]
        assert "Galaxy A55" in names
        assert "Galaxy S24" not in names
        assert "Galaxy Old" not in names

    def test_related_of_missing_product(self, client):
        assert client.get("/products/999/related").status_code == 404


class TestStockUpdate:
    def test_set_add_subtract(self, client, admin, make_product, fetch):
        _, headers = admin
        pid = make_product(stock=5)
        url = f"/products/{pid}/stock"
        assert client.put(url, json={"quantity": 12}, headers=headers).json()["stock"] == 12
        assert client.put(url, json={"quantity": 3, "operation": "add"}, headers=headers).json()["stock"] == 15
        response = client.put(url, json={"quantity": 4, "operation": "subtract", "reason": "damaged"}, headers=headers)
        assert response.status_code == 200
        assert response.json()["stock"] == 11
        assert fetch(Product, pid).sold == 0

    def test_subtract_beyond_stock_refused(self, client, admin, make_product, fetch):
        _, headers = admin
        pid = make_product(stock=2)
        response = client.put(f"/products/{pid}/stock", json={"quantity": 3, "operation": "subtract"},
                              headers=headers)
        assert response.status_code == 400
        assert response.json()["error"] == "InsufficientStock"
        assert fetch(Product, pid).stock == 2

    def test_negative_quantity_rejected(self, client, admin, make_product):
        _, headers = admin
        pid = make_product()
        assert client.put(f"/products/{pid}/stock", json={"quantity": -1}, headers=headers).status_code == 422

    def test_customer_cannot_update_stock(self, client, customer, make_product):
        _, headers = customer
        pid = make_product()
        assert client.put(f"/products/{pid}/stock", json={"quantity": 1}, headers=headers).status_code == 403


class TestCategories:
    def test_create_and_list(self, client, admin):
        _, headers = admin
        response = client.post("/categories", json={"name": "Smart Watches"}, headers=headers)
        assert response.status_code == 201
        assert response.json()["slug"] == "smart-watches"
        assert [c["name"] for c in client.get("/categories").json()] == ["Smart Watches"]

    def test_duplicate_category(self, client, admin):
        _, headers = admin
        client.post("/categories", json={"name": "Tablets"}, headers=headers)
        assert client.post("/categories", json={"name": "Tablets"}, headers=headers).status_code == 409
