import pytest
from fastapi.testclient import TestClient

import auth
import main


@pytest.fixture
def client(db, blobs, bus, monkeypatch):
    monkeypatch.setattr(auth, "ADMIN_USER", "admin")
    monkeypatch.setattr(auth, "ADMIN_PASS", "s3cret")
    main.app.dependency_overrides[main.get_db] = lambda: db
    main.app.dependency_overrides[main.get_blob_store] = lambda: blobs
    main.app.dependency_overrides[main.get_bus] = lambda: bus
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def headers(client):
    res = client.post("/admin/login", json={"username": "admin", "password": "s3cret"})
    assert res.status_code == 200
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


def test_login_rejects_bad_credentials(client):
    res = client.post("/admin/login", json={"username": "admin", "password": "nope"})

    assert res.status_code == 401


def test_admin_routes_need_a_token(client):
    assert client.get("/admin/categories").status_code == 401
    assert client.get("/admin/categories", headers={"Authorization": "Bearer bogus"}).status_code == 401


def test_logout_ends_session(client, headers):
    assert client.get("/me", headers=headers).json() == {"username": "admin"}

    client.post("/admin/logout", headers=headers)

    assert client.get("/me", headers=headers).status_code == 401


def test_category_lifecycle(client, headers):
    res = client.post("/admin/categories", json={"name": "Shoes"}, headers=headers)
    assert res.status_code == 200
    category_id = res.json()["id"]

    dup = client.post("/admin/categories", json={"name": "Shoes"}, headers=headers)
    assert dup.status_code == 400
    assert dup.json()["detail"] == "Category name already exists"

    listing = client.get("/admin/categories", params={"q": "sho"}, headers=headers).json()
    assert listing["ok"] is True
    assert listing["categories"][0]["product_count"] == 0

    res = client.post("/admin/products", data={"name": "Sneaker", "price": "50", "category_id": category_id},
                      headers=headers)
    assert res.status_code == 200

    blocked = client.delete(f"/admin/categories/{category_id}", headers=headers)
    assert blocked.status_code == 400
    assert blocked.json()["detail"] == "Cannot delete category with existing products"

    assert client.get("/admin/categories/64b7f0c2a1b2c3d4e5f60718", headers=headers).status_code == 404


def test_product_upload_and_listing(client, headers, blobs):
    files = [("images", (f"{i}.png", b"img", "image/png")) for i in range(6)]
    details = '[{"type": "checkbox", "label": "Gift wrap"}]'

    res = client.post(
        "/admin/products",
        data={"name": "Lamp", "price": "20", "quantity": "3", "quantity_type": "unlimited", "details": details},
        files=files,
        headers=headers,
    )
    assert res.status_code == 200
    product_id = res.json()["id"]

    page = client.get("/admin/products", params={"page": 1, "page_size": 5}, headers=headers).json()
    assert page["total_count"] == 1
    assert page["total_pages"] == 1
    row = page["products"][0]
    assert row["id"] == product_id
    assert row["quantity_type"] == "unlimited"
    assert row["quantity"] == 3
    assert len(row["images"]) == 5
    assert row["details"][0]["label"] == "Gift wrap"

    url = row["images"][0]
    res = client.delete(f"/admin/products/{product_id}/images", params={"url": url}, headers=headers)
    assert res.status_code == 200
    assert len(client.get(f"/admin/products/{product_id}", headers=headers).json()["images"]) == 4


def test_product_validation_maps_to_400(client, headers):
    res = client.post("/admin/products", data={"name": "Lamp"}, headers=headers)

    assert res.status_code == 400
    assert res.json()["detail"] == "Name and price are required"


def test_order_routes(client, headers, db):
    db["user"].insert_one({"_id": "auth|alice", "number": "+1555", "address": "Main St"})
    product_id = client.post("/admin/products", data={"name": "Mug", "price": "4"}, headers=headers).json()["id"]

    res = client.post(
        "/admin/orders",
        json={"user_id": "auth|alice", "product_id": product_id, "quantity": 2, "price": "8"},
        headers=headers,
    )
    assert res.status_code == 200
    order_id = res.json()["order"]["id"]

    res = client.patch(f"/admin/orders/{order_id}", json={"status": "shipped"}, headers=headers)
    assert res.json()["order"]["status"] == "shipped"

    page = client.get("/admin/orders", params={"search": "ship", "user_id": "auth|alice"}, headers=headers).json()
    assert [o["id"] for o in page["orders"]] == [order_id]
    assert page["orders"][0]["product"]["name"] == "Mug"

    users = client.get("/admin/users", headers=headers).json()["users"]
    assert users[0]["order_count"] == 1

    assert client.delete(f"/admin/orders/{order_id}", headers=headers).status_code == 200
    assert client.get(f"/admin/orders/{order_id}", headers=headers).status_code == 404


def test_revalidations_are_exposed(client, headers):
    client.post("/admin/categories", json={"name": "Hats"}, headers=headers)

    paths = [r["path"] for r in client.get("/admin/revalidations", headers=headers).json()]

    assert paths == ["/admin/categories"]


def test_status_options(client, headers):
    res = client.get("/admin/orders/options/statuses", headers=headers)

    assert res.json()[0] == "checking order"
    assert "shipped" in res.json()


def test_startup_creates_indexes(db, monkeypatch):
    fresh = db.client["shop_admin_startup"]
    monkeypatch.setattr(main.database, "db", fresh)

    with TestClient(main.app):
        pass

    assert fresh["category"].index_information()["name_1"]["unique"] is True
