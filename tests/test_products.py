from conftest import product_payload


def test_create_product_computes_profit_and_margin(client, admin_headers):
    res = client.post("/api/products", json=product_payload(), headers=admin_headers)
    assert res.status_code == 201
    body = res.json()
    assert body["success"] is True
    product = body["product"]
    assert product["id"]
    assert product["profit"] == 1400
    assert product["margin"] == 40.0
    assert product["collection"] == "Banarasi"
    assert product["hasSKU"] is False
    assert product["salesChannels"] == {"onlineStore": True, "pos": False}


def test_create_product_accepts_collection_alias(client, admin_headers):
    payload = product_payload()
    payload["collection"] = payload.pop("productCollection")
    res = client.post("/api/products", json=payload, headers=admin_headers)
    assert res.status_code == 201
    assert res.json()["product"]["productCollection"] == "Banarasi"


def test_create_product_requires_admin(client, customer_headers):
    assert client.post("/api/products", json=product_payload()).status_code == 401
    res = client.post("/api/products", json=product_payload(), headers=customer_headers)
    assert res.status_code == 403
    assert res.json() == {"success": False, "error": "Forbidden"}


def test_create_product_missing_fields(client, admin_headers):
    payload = product_payload()
    del payload["description"]
    res = client.post("/api/products", json=payload, headers=admin_headers)
    assert res.status_code == 400
    assert res.json()["error"].startswith("Missing required fields")


def test_create_product_rejects_zero_price(client, admin_headers):
    res = client.post("/api/products", json=product_payload(price=0), headers=admin_headers)
    assert res.status_code == 400
    assert res.json()["error"] == "Price must be greater than 0"


def test_create_product_accepts_numeric_string_price(client, admin_headers):
    res = client.post("/api/products", json=product_payload(price="3500"), headers=admin_headers)
    assert res.status_code == 201
    assert res.json()["product"]["price"] == 3500

    res = client.post("/api/products", json=product_payload(price="free"), headers=admin_headers)
    assert res.status_code == 400
    assert res.json()["error"] == "Price must be greater than 0"


def test_create_product_rejects_bad_category_and_image(client, admin_headers):
    res = client.post("/api/products", json=product_payload(category="kids"), headers=admin_headers)
    assert res.status_code == 400
    assert res.json()["error"] == "Validation error"

    res = client.post("/api/products", json=product_payload(images=["ftp://x/y.bmp"]), headers=admin_headers)
    assert res.status_code == 400
    assert any("Invalid image format" in d for d in res.json()["details"])


def test_create_product_accepts_data_url_image(client, admin_headers):
    images = ["data:image/png;base64,iVBORw0KGgo="]
    res = client.post("/api/products", json=product_payload(images=images), headers=admin_headers)
    assert res.status_code == 201


def test_get_product_not_found_and_invalid_id(client):
    assert client.get("/api/products/64b7f0c2a1b2c3d4e5f60718").status_code == 404
    res = client.get("/api/products/not-an-id")
    assert res.status_code == 400
    assert res.json()["error"] == "Invalid id"


def test_list_products_filters_and_paginates(client, make_product):
    for i in range(3):
        make_product(title=f"Silk Saree {i}")
    make_product(title="Cotton Kurta", category="men", productCollection="Khadi")
    make_product(title="Jute Rug", category="living", productCollection="Home", status="draft")

    res = client.get("/api/products", params={"limit": 2})
    body = res.json()
    assert len(body["products"]) == 2
    assert body["pagination"] == {
        "currentPage": 1, "totalPages": 3, "totalProducts": 5, "hasNext": True, "hasPrev": False,
    }

    res = client.get("/api/products", params={"category": "women"})
    assert res.json()["pagination"]["totalProducts"] == 3

    res = client.get("/api/products", params={"collection": "Khadi"})
    assert [p["title"] for p in res.json()["products"]] == ["Cotton Kurta"]

    res = client.get("/api/products", params={"status": "draft"})
    assert [p["title"] for p in res.json()["products"]] == ["Jute Rug"]


def test_list_products_search_and_sort(client, make_product):
    make_product(title="Chanderi Dupatta", price=850)
    make_product(title="Ikat Bedsheet", category="living", price=1200, description="Double bed ikat")
    make_product(title="Kanjeevaram Saree", price=9000)

    res = client.get("/api/products", params={"search": "IKAT"})
    assert [p["title"] for p in res.json()["products"]] == ["Ikat Bedsheet"]

    res = client.get("/api/products", params={"sortBy": "price", "sortOrder": "asc"})
    assert [p["price"] for p in res.json()["products"]] == [850, 1200, 9000]


def test_list_products_rejects_bad_page(client):
    res = client.get("/api/products", params={"page": 0})
    assert res.status_code == 400
    assert res.json()["error"] == "Validation error"


def test_categories_are_distinct(client, make_product):
    make_product()
    make_product(category="men")
    make_product(category="men")
    res = client.get("/api/products/categories")
    assert res.status_code == 200
    assert res.json()["categories"] == ["men", "women"]


def test_update_product_revalidates(client, admin_headers, make_product):
    product = make_product()
    res = client.put(f"/api/products/{product['id']}", json={"price": 4000, "quantity": 4}, headers=admin_headers)
    assert res.status_code == 200
    updated = res.json()["product"]
    assert updated["price"] == 4000
    assert updated["quantity"] == 4
    assert updated["profit"] == 1900
    assert updated["title"] == product["title"]

    res = client.put(f"/api/products/{product['id']}", json={"costPerItem": -5}, headers=admin_headers)
    assert res.status_code == 400


def test_update_missing_product(client, admin_headers):
    res = client.put("/api/products/64b7f0c2a1b2c3d4e5f60718", json={"price": 10}, headers=admin_headers)
    assert res.status_code == 404
    assert res.json()["error"] == "Product not found"


def test_delete_product(client, admin_headers, make_product):
    product = make_product()
    res = client.delete(f"/api/products/{product['id']}", headers=admin_headers)
    assert res.status_code == 200
    assert client.get(f"/api/products/{product['id']}").status_code == 404
    assert client.delete(f"/api/products/{product['id']}", headers=admin_headers).status_code == 404
