import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from uploads import LocalImageStorage, get_storage


@pytest.fixture
def db(monkeypatch):
    """A clean in-memory database installed as the process-wide one."""
    client = mongomock.MongoClient()
    mdb = client["catalog_test"]
    monkeypatch.setattr(database, "client", client)
    monkeypatch.setattr(database, "db", mdb)
    database.ensure_indexes(mdb)
    return mdb


@pytest.fixture
def storage(tmp_path):
    return LocalImageStorage(root=str(tmp_path / "uploads"))


@pytest.fixture
def client(db, storage):
    from main import app

    app.dependency_overrides[get_storage] = lambda: storage
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _signup(client, name, email, role="user"):
    response = client.post(
        "/api/auth/signup",
        json={"name": name, "email": email, "password": "secret123", "role": role},
    )
    assert response.status_code == 201, response.text
    return {"Authorization": f"Bearer {response.json()['data']['token']}"}


@pytest.fixture
def admin_headers(client):
    return _signup(client, "Admin", "admin@example.com", role="admin")


@pytest.fixture
def user_headers(client):
    return _signup(client, "Alice", "alice@example.com")


@pytest.fixture
def other_user_headers(client):
    return _signup(client, "Bob", "bob@example.com")


@pytest.fixture
def make_category(client, admin_headers):
    def _make(name, parent=None, **fields):
        body = {"name": name, **fields}
        if parent:
            body["parent_category"] = parent
        response = client.post("/api/categories", json=body, headers=admin_headers)
        assert response.status_code == 201, response.text
        return response.json()["data"]

    return _make


@pytest.fixture
def make_product(client, admin_headers):
    def _make(category_id, name="Laptop Pro", price=999.0, **fields):
        body = {
            "name": name,
            "description": "A product used in tests.",
            "price": price,
            "category": category_id,
            "stock": 10,
            **fields,
        }
        response = client.post("/api/products", json=body, headers=admin_headers)
        assert response.status_code == 201, response.text
        return response.json()["data"]

    return _make
