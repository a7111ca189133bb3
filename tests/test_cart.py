import pytest

ITEMS = [
    {"productId": "p1", "name": "Dupatta", "price": 49.99, "quantity": 1},
    {"productId": "p2", "name": "Kurta", "price": 20, "quantity": 3},
]


def test_get_cart_requires_user_id(client):
    response = client.get("/api/cart")
    assert response.status_code == 400
    assert response.json() == {"error": "Missing userId"}


def test_get_cart_for_new_user_is_empty_and_not_persisted(client, db):
    response = client.get("/api/cart", params={"userId": "u1"})
    assert response.status_code == 200
    assert response.json() == {"userId": "u1", "items": []}
    assert db["carts"].count_documents({}) == 0


def test_saved_items_are_returned(client):
    response = client.post("/api/cart", json={"userId": "u1", "items": ITEMS})
    assert response.status_code == 200
    assert response.json()["items"] == ITEMS
    assert client.get("/api/cart", params={"userId": "u1"}).json()["items"] == ITEMS


def test_post_replaces_items(client, db):
    client.post("/api/cart", json={"userId": "u1", "items": ITEMS})
    replacement = [{"productId": "p3", "name": "Shawl", "price": 15.5, "quantity": 2}]
    client.post("/api/cart", json={"userId": "u1", "items": replacement})
    assert client.get("/api/cart", params={"userId": "u1"}).json()["items"] == replacement
    assert db["carts"].count_documents({"userId": "u1"}) == 1


def test_post_empty_items_clears_cart(client):
    client.post("/api/cart", json={"userId": "u1", "items": ITEMS})
    response = client.post("/api/cart", json={"userId": "u1", "items": []})
    assert response.status_code == 200
    assert client.get("/api/cart", params={"userId": "u1"}).json()["items"] == []


def test_carts_are_kept_per_user(client):
    client.post("/api/cart", json={"userId": "u1", "items": ITEMS})
    assert client.get("/api/cart", params={"userId": "u2"}).json()["items"] == []


def test_post_refreshes_updated_at(client, db):
    client.post("/api/cart", json={"userId": "u1", "items": ITEMS})
    first = db["carts"].find_one({"userId": "u1"})["updatedAt"]
    client.post("/api/cart", json={"userId": "u1", "items": ITEMS[:1]})
    assert db["carts"].find_one({"userId": "u1"})["updatedAt"] >= first


def test_item_missing_quantity_leaves_cart_unchanged(client, db):
    client.post("/api/cart", json={"userId": "u1", "items": ITEMS})
    before = db["carts"].find_one({"userId": "u1"})
    bad = ITEMS + [{"productId": "p3", "name": "Shawl", "price": 15.5}]
    response = client.post("/api/cart", json={"userId": "u1", "items": bad})
    assert response.status_code == 400
    assert "error" in response.json()
    assert db["carts"].find_one({"userId": "u1"}) == before


@pytest.mark.parametrize("item", [
    {"productId": "p1", "name": "Dupatta", "price": 49.99, "quantity": "2"},
    {"productId": "p1", "name": "Dupatta", "price": 49.99, "quantity": 1.5},
    {"productId": "p1", "name": "Dupatta", "price": 49.99, "quantity": 0},
    {"productId": "p1", "name": "Dupatta", "price": "49.99", "quantity": 1},
    {"productId": 1, "name": "Dupatta", "price": 49.99, "quantity": 1},
    {"productId": "p1", "price": 49.99, "quantity": 1},
])
def test_malformed_item_is_rejected(client, db, item):
    response = client.post("/api/cart", json={"userId": "u1", "items": [item]})
    assert response.status_code == 400
    assert db["carts"].count_documents({}) == 0


def test_post_requires_user_id(client, db):
    response = client.post("/api/cart", json={"items": ITEMS})
    assert response.status_code == 400
    assert db["carts"].count_documents({}) == 0


@pytest.mark.parametrize("price", ["NaN", "Infinity", "-Infinity"])
def test_non_finite_price_is_rejected(client, db, price):
    body = '{"userId": "u1", "items": [{"productId": "p1", "name": "Dupatta", "price": %s, "quantity": 1}]}' % price
    response = client.post("/api/cart", content=body, headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert db["carts"].count_documents({}) == 0
    assert client.get("/api/cart", params={"userId": "u1"}).json() == {"userId": "u1", "items": []}
