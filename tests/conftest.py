import mongomock
import pytest
from fastapi.testclient import TestClient

from database import Database
from main import create_access_token, create_app, hash_password


@pytest.fixture
def mongo_client():
    return mongomock.MongoClient()


@pytest.fixture
def database(mongo_client):
    return Database(url="mongodb://testserver", name="storefront_test", client_factory=lambda url: mongo_client)


@pytest.fixture
def db(database):
    return database.connect()


@pytest.fixture
def client(database):
    with TestClient(create_app(database)) as c:
        yield c


@pytest.fixture
def admin_user(db):
    user = {
        "uid": "admin-1",
        "email": "admin@example.com",
        "displayName": "Admin",
        "role": "admin",
        "password": hash_password("s3cret"),
    }
    db["users"].insert_one(user)
    return user


@pytest.fixture
def admin_token():
    return create_access_token({"sub": "admin-1", "role": "admin"})


@pytest.fixture
def product_payload():
    return {
        "name": "Phulkari Dupatta",
        "description": "Hand embroidered",
        "price": "49.99",
        "defaultImage": {"url": "https://img.example.com/a.jpg", "publicId": "a"},
        "imagesByColor": {"red": [{"url": "https://img.example.com/r.jpg", "publicId": "r"}]},
        "colors": ["red", "green"],
        "sizes": ["S", {"label": "M", "badge": "popular"}],
        "badge": "new",
    }
