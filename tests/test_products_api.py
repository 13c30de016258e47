import os

from bson import ObjectId


def test_create_product_requires_admin(client, user_headers, make_category):
    category = make_category("Electronics")
    body = {"name": "Laptop", "description": "A very good laptop", "price": 10, "category": category["id"], "stock": 1}

    assert client.post("/api/products", json=body).status_code == 401
    response = client.post("/api/products", json=body, headers=user_headers)
    assert response.status_code == 403
    assert response.json()["success"] is False


def test_create_product(client, make_category, make_product):
    category = make_category("Electronics")
    product = make_product(category["id"], price=200.0, discount={"percentage": 25}, sku="LP-1")

    assert product["rating"] == 0
    assert product["num_reviews"] == 0
    assert product["category"] == {"id": category["id"], "name": "Electronics", "slug": "electronics"}
    assert product["discount"]["discounted_price"] == 150.0
    assert product["final_price"] == 150.0


def test_final_price_matches_rounded_discounted_price(client, make_category, make_product):
    category = make_category("Electronics")
    product = make_product(category["id"], price=99.99, discount={"percentage": 15})

    assert product["discount"]["discounted_price"] == 84.99
    assert product["final_price"] == 84.99


def test_create_product_ignores_rating_in_payload(client, make_category, make_product):
    category = make_category("Electronics")
    product = make_product(category["id"], rating=5, num_reviews=40)
    assert (product["rating"], product["num_reviews"]) == (0, 0)


def test_create_product_with_unknown_category(client, admin_headers):
    body = {"name": "Laptop", "description": "A very good laptop", "price": 10, "category": str(ObjectId()), "stock": 1}
    response = client.post("/api/products", json=body, headers=admin_headers)
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Category not found"}


def test_create_product_validation_error(client, admin_headers, make_category):
    category = make_category("Electronics")
    body = {"name": "Laptop", "description": "short", "price": -1, "category": category["id"]}
    response = client.post("/api/products", json=body, headers=admin_headers)
    assert response.status_code == 400
    assert "price" in response.json()["error"]


def test_duplicate_sku(client, admin_headers, make_category, make_product):
    category = make_category("Electronics")
    make_product(category["id"], sku="DUP")
    body = {"name": "Other", "description": "Another product", "price": 1, "category": category["id"], "sku": "DUP"}
    response = client.post("/api/products", json=body, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "Duplicate field value entered"


def test_get_product_includes_reviews(client, user_headers, make_category, make_product):
    category = make_category("Electronics")
    product = make_product(category["id"])
    client.post(
        f"/api/reviews/product/{product['id']}",
        json={"rating": 4, "comment": "Works as advertised."},
        headers=user_headers,
    )

    response = client.get(f"/api/products/{product['id']}")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["rating"] == 4.0
    assert data["reviews"][0]["user"]["name"] == "Alice"


def test_get_missing_product(client):
    assert client.get(f"/api/products/{ObjectId()}").status_code == 404
    assert client.get("/api/products/not-an-id").status_code == 404


def test_list_products_filter_sort_paginate(client, db, make_category):
    category = make_category("Electronics")
    cid = ObjectId(category["id"])
    docs = [{"name": f"Item {i}", "description": "x" * 10, "price": float(i * 40), "category": cid}
            for i in range(1, 31)]
    db["product"].insert_many(docs)

    response = client.get("/api/products", params={"price[lt]": "1000", "sort": "-price", "page": "2", "limit": "10"})
    assert response.status_code == 200
    body = response.json()

    # prices 40..960 are below 1000: 24 matches
    assert body["count"] == 10
    prices = [p["price"] for p in body["data"]]
    assert prices == sorted(prices, reverse=True)
    assert prices[0] == 560.0
    assert body["pagination"]["prev"] == {"page": 1, "limit": 10}
    assert body["pagination"]["next"] == {"page": 3, "limit": 10}
    assert body["data"][0]["category"]["name"] == "Electronics"


def test_list_products_no_next_page_at_exactly_twenty(client, db):
    db["product"].insert_many([{"name": f"P{i}", "price": float(i)} for i in range(20)])
    body = client.get("/api/products", params={"page": "2", "limit": "10"}).json()
    assert body["count"] == 10
    assert "next" not in body["pagination"]


def test_list_products_unknown_filter(client):
    response = client.get("/api/products", params={"secret": "1"})
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_update_product_recomputes_discount(client, admin_headers, make_category, make_product):
    category = make_category("Electronics")
    product = make_product(category["id"], price=100.0, discount={"percentage": 10})

    response = client.put(f"/api/products/{product['id']}", json={"price": 50}, headers=admin_headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["price"] == 50
    assert data["discount"]["discounted_price"] == 45.0


def test_update_product_soft_deactivate(client, admin_headers, make_category, make_product):
    category = make_category("Electronics")
    product = make_product(category["id"])
    response = client.put(f"/api/products/{product['id']}", json={"is_active": False}, headers=admin_headers)
    assert response.json()["data"]["is_active"] is False


def test_stock_operations(client, admin_headers, make_category, make_product):
    category = make_category("Electronics")
    product = make_product(category["id"], stock=5)
    url = f"/api/products/{product['id']}/stock"

    assert client.put(url, json={"quantity": 3, "operation": "add"}, headers=admin_headers).json()["data"]["stock"] == 8
    assert client.put(url, json={"quantity": 20, "operation": "subtract"}, headers=admin_headers).json()["data"]["stock"] == 0
    assert client.put(url, json={"quantity": 7, "operation": "set"}, headers=admin_headers).json()["data"]["stock"] == 7

    response = client.put(url, json={"quantity": 1, "operation": "multiply"}, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "Operation must be add, subtract, or set"


def test_upload_images_and_delete_cleans_files(client, admin_headers, storage, make_category, make_product):
    category = make_category("Electronics")
    product = make_product(category["id"])

    response = client.put(
        f"/api/products/{product['id']}/images",
        files=[("images", ("front.png", b"png-bytes", "image/png")), ("images", ("back.png", b"png", "image/png"))],
        headers=admin_headers,
    )
    assert response.status_code == 200
    uploaded = response.json()["data"]
    assert len(uploaded) == 2
    assert uploaded[0]["url"].startswith("/uploads/products/")
    assert uploaded[0]["alt"] == "Laptop Pro"

    paths = [storage._path_for(image["provider_id"]) for image in uploaded]
    assert all(os.path.isfile(path) for path in paths)

    response = client.delete(f"/api/products/{product['id']}", headers=admin_headers)
    assert response.json() == {"success": True, "data": {}}
    assert not any(os.path.exists(path) for path in paths)


def test_upload_images_requires_files(client, admin_headers, make_category, make_product):
    category = make_category("Electronics")
    product = make_product(category["id"])
    response = client.put(f"/api/products/{product['id']}/images", headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "Please upload at least one image"


def test_delete_product_keeps_reviews(client, db, admin_headers, user_headers, make_category, make_product):
    category = make_category("Electronics")
    product = make_product(category["id"])
    client.post(
        f"/api/reviews/product/{product['id']}",
        json={"rating": 5, "comment": "Excellent product overall."},
        headers=user_headers,
    )

    client.delete(f"/api/products/{product['id']}", headers=admin_headers)

    assert db["product"].count_documents({}) == 0
    assert db["review"].count_documents({"product": ObjectId(product["id"])}) == 1
