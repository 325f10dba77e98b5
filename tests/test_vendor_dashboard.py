import pytest

NEW_PRODUCT = {
    "name": "Brown Eggs",
    "description": "Farm eggs",
    "price": 84,
    "mrp": 90,
    "category": "dairy",
    "unit": "6 pcs",
    "stock": 12,
    "pincodes": ["110001"],
}


@pytest.fixture
def logged_in(client, make_vendor, vendor_login):
    vendor_id = make_vendor(pincodes=["110001", "110002"])
    vendor_login(vendor_id)
    return vendor_id


# ----------------------- products -----------------------
def test_create_product_is_visible_in_catalog(client, logged_in):
    res = client.post("/vendor/products", json=NEW_PRODUCT)

    assert res.status_code == 201
    product_id = res.json()["id"]
    listed = client.get("/api/products", params={"pincode": "110001"}).json()["products"]
    assert [p["id"] for p in listed] == [product_id]
    assert listed[0]["vendor_id"] == logged_in


@pytest.mark.parametrize("pincodes", [[], ["11001"], ["110009"]])
def test_create_product_rejects_bad_pincodes(client, logged_in, pincodes):
    res = client.post("/vendor/products", json={**NEW_PRODUCT, "pincodes": pincodes})

    assert res.status_code == 400


def test_update_product_with_stale_version(client, logged_in):
    product_id = client.post("/vendor/products", json=NEW_PRODUCT).json()["id"]

    first = client.put(f"/vendor/products/{product_id}", json={"price": 80, "version": 1})
    second = client.put(f"/vendor/products/{product_id}", json={"price": 70, "version": 1})

    assert first.status_code == 200
    assert first.json()["price"] == 80
    assert first.json()["version"] == 2
    assert second.status_code == 409
    assert client.get(f"/api/products/{product_id}").json()["price"] == 80


def test_out_of_stock_hides_product(client, logged_in):
    product_id = client.post("/vendor/products", json=NEW_PRODUCT).json()["id"]

    client.put(f"/vendor/products/{product_id}", json={"status": "out_of_stock", "version": 1})

    assert client.get("/api/products", params={"pincode": "110001"}).json()["products"] == []


def test_soft_delete(client, logged_in, store):
    product_id = client.post("/vendor/products", json=NEW_PRODUCT).json()["id"]

    res = client.delete(f"/vendor/products/{product_id}")

    assert res.json() == {"ok": True, "orphaned_images": []}
    assert store.find_by_id("product", product_id)["status"] == "deleted"
    assert client.get("/vendor/products").json() == []
    assert len(client.get("/vendor/products", params={"include_deleted": True}).json()) == 1
    assert client.delete(f"/vendor/products/{product_id}").status_code == 404


def test_vendor_cannot_touch_foreign_product(client, logged_in, make_vendor, make_product):
    foreign = make_product(make_vendor())

    assert client.put(f"/vendor/products/{foreign}", json={"price": 1, "version": 1}).status_code == 404
    assert client.delete(f"/vendor/products/{foreign}").status_code == 404


# ----------------------- profile -----------------------
def test_profile_update_is_versioned(client, logged_in):
    res = client.put("/vendor/profile", json={"phone": "9000000000", "version": 1})

    assert res.json()["phone"] == "9000000000"
    assert client.put("/vendor/profile", json={"phone": "9111111111", "version": 1}).status_code == 409


def test_closing_shop_blocks_checkout(client, logged_in, make_product, make_user):
    product_id = make_product(logged_in)
    _, headers = make_user()

    res = client.put("/vendor/open", json={"is_open": False, "version": 1})

    assert res.json()["is_open"] is False
    checkout = client.post("/api/checkout", headers=headers, follow_redirects=False, json={
        "items": [{"product_id": product_id, "quantity": 1}],
        "address": {"name": "A", "phone": "1", "address": "x", "pincode": "110001", "city": "Delhi"},
    })
    assert checkout.status_code == 400


def test_pincodes_limited_to_service_areas(client, logged_in, make_user):
    _, admin = make_user(role="admin")
    client.post("/admin/pincodes", json={"pincode": "110001", "label": "CP"}, headers=admin)
    client.post("/admin/pincodes", json={"pincode": "110005", "label": "Babar Road"}, headers=admin)

    rejected = client.put("/vendor/profile/pincodes", json={"pincodes": ["110001", "110002"], "version": 1})
    accepted = client.put("/vendor/profile/pincodes", json={"pincodes": ["110001", "110005", "110001"], "version": 1})

    assert rejected.status_code == 400
    assert accepted.json()["pincodes"] == ["110001", "110005"]


def test_dashboard_summary(client, logged_in, make_product):
    make_product(logged_in)
    make_product(logged_in, status="out_of_stock", name="Curd")

    body = client.get("/vendor").json()

    assert body["vendor"]["id"] == logged_in
    assert body["products"] == {"active": 1, "out_of_stock": 1, "deleted": 0}
    assert body["orders"] == {}
    assert body["revenue"] == 0


def test_status_view_for_active_vendor_redirects_to_dashboard(client, logged_in):
    res = client.get("/vendor/status", follow_redirects=False)

    assert res.status_code == 303
    assert res.headers["location"] == "/vendor"


# ----------------------- admin -----------------------
def test_admin_requires_admin_role(client, make_user):
    _, customer = make_user()

    assert client.get("/admin/stats", headers=customer).status_code == 403


def test_admin_stats(client, make_user, make_vendor, make_product):
    _, admin = make_user(role="admin")
    make_product(make_vendor())
    make_vendor(status="pending")

    stats = client.get("/admin/stats", headers=admin).json()

    assert stats["vendors"] == {"active": 1, "pending": 1, "blocked": 0}
    assert stats["products"] == 1
    assert stats["users"] == 1


def test_admin_vendor_listing_hides_password(client, make_user, make_vendor):
    _, admin = make_user(role="admin")
    pending = make_vendor(status="pending")
    make_vendor()

    listed = client.get("/admin/vendors", params={"status": "pending"}, headers=admin).json()

    assert [v["id"] for v in listed] == [pending]
    assert "password_hash" not in listed[0]


@pytest.mark.parametrize("start,target,code", [
    ("pending", "active", 200),
    ("pending", "blocked", 200),
    ("active", "blocked", 200),
    ("blocked", "active", 200),
    ("active", "pending", 400),
    ("blocked", "pending", 400),
])
def test_admin_vendor_status_transitions(client, make_user, make_vendor, start, target, code):
    _, admin = make_user(role="admin")
    vendor_id = make_vendor(status=start)

    res = client.put(f"/admin/vendors/{vendor_id}/status", json={"status": target}, headers=admin)

    assert res.status_code == code
    if code == 200:
        assert res.json()["status"] == target


def test_admin_created_vendor_can_log_in(client, make_user):
    _, admin = make_user(role="admin")

    res = client.post("/admin/vendors", headers=admin, json={
        "name": "Corner Store",
        "email": "corner@example.com",
        "phone": "9000000001",
        "address": "1 Main Road",
        "password": "corner123",
        "pincodes": ["110001"],
    })

    assert res.status_code == 201
    assert res.json()["status"] == "active"
    login = client.post("/vendor/login", json={"email": "corner@example.com", "password": "corner123"})
    assert login.status_code == 200


def test_duplicate_service_area(client, make_user):
    _, admin = make_user(role="admin")

    assert client.post("/admin/pincodes", json={"pincode": "110001"}, headers=admin).status_code == 201
    assert client.post("/admin/pincodes", json={"pincode": "110001"}, headers=admin).status_code == 400
    assert client.post("/admin/pincodes", json={"pincode": "1100"}, headers=admin).status_code == 422
    assert client.get("/admin/pincodes", headers=admin).json() == ["110001"]


# ----------------------- seed -----------------------
def test_seed_is_idempotent(client):
    first = client.post("/seed").json()
    second = client.post("/seed").json()

    assert first["seeded"] is True
    assert first["products"] == 5
    assert second["seeded"] is False
    assert client.get("/api/categories", params={"pincode": "110001"}).json()["categories"] == [
        "dairy", "fruits-vegetables",
    ]


def test_seeded_accounts_work(client):
    client.post("/seed")

    assert client.post("/auth/login", json={"email": "admin@shop.com", "password": "admin123"}).status_code == 200
    pending = client.post("/vendor/login", json={"email": "support@spiceworld.com", "password": "vendor123"})
    assert pending.json()["kind"] == "pending"


def test_malformed_product_is_skipped_in_vendor_listing(client, logged_in, store, make_product):
    good = make_product(logged_in)
    store.db["product"].insert_one({"vendor_id": logged_in, "name": "No price", "status": "active"})

    res = client.get("/vendor/products")

    assert res.status_code == 200
    assert [p["id"] for p in res.json()] == [good]


def test_malformed_vendor_is_skipped_in_admin_listing(client, store, make_user, make_vendor):
    _, admin = make_user(role="admin")
    good = make_vendor(status="pending")
    broken = store.db["vendor"].insert_one({"name": "No email", "status": "pending"}).inserted_id

    res = client.get("/admin/vendors", headers=admin)

    assert res.status_code == 200
    assert [v["id"] for v in res.json()] == [good]
    status = client.put(f"/admin/vendors/{broken}/status", json={"status": "active"}, headers=admin)
    assert status.status_code == 404


def test_new_primary_image_replaces_old_one(client, image_client, logged_in, make_product, catalog_product):
    product_id = make_product(logged_in, image="https://cdn/old.jpg", image_public_id="products/v/old")

    res = client.post(f"/vendor/products/{product_id}/images", files={"file": ("new.jpg", b"\xff\xd8" * 10, "image/jpeg")})

    assert res.status_code == 200
    assert res.json()["orphaned_images"] == []
    assert image_client.destroy_calls == ["products/v/old"]
    assert catalog_product(product_id).image_public_id == res.json()["public_id"]


def test_replaced_image_deletion_failure_is_reported(client, image_client, logged_in, make_product, provider_down):
    image_client.destroy_outcomes = [provider_down] * 3
    product_id = make_product(logged_in, image="https://cdn/old.jpg", image_public_id="products/v/old")

    res = client.post(f"/vendor/products/{product_id}/images", files={"file": ("new.jpg", b"\xff\xd8" * 10, "image/jpeg")})

    assert res.status_code == 200
    assert res.json()["orphaned_images"] == ["products/v/old"]


def test_additional_image_keeps_primary(client, image_client, logged_in, make_product, catalog_product):
    product_id = make_product(logged_in, image="https://cdn/old.jpg", image_public_id="products/v/old")

    res = client.post(f"/vendor/products/{product_id}/images", params={"primary": False},
                      files={"file": ("side.jpg", b"\xff\xd8" * 10, "image/jpeg")})

    assert res.status_code == 200
    assert image_client.destroy_calls == []
    product = catalog_product(product_id)
    assert product.image_public_id == "products/v/old"
    assert [i.public_id for i in product.additional_images] == [res.json()["public_id"]]
