import pytest
from fastapi.testclient import TestClient

import main
from database import create_document


@pytest.fixture
def client(db):
    main.app.dependency_overrides[main.get_db] = lambda: db
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def admin(db, client, monkeypatch):
    monkeypatch.setenv("ADMIN_EMAIL", "admin@gifting.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "s3cret-admin")
    main.ensure_admin(db)
    return login(client, "/auth/login", "admin@gifting.com", "s3cret-admin")


def login(client, path, email, password):
    res = client.post(path, json={"email": email, "password": password})
    assert res.status_code == 200, res.text
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


def register_company(client, slug="acme"):
    res = client.post("/corporate/register", json={
        "name": slug.title(), "slug": slug, "email": f"hr@{slug}.com", "password": "hr-password",
    })
    assert res.status_code == 200, res.text
    return res.json()["id"], login(client, "/auth/login", f"hr@{slug}.com", "hr-password")


def test_health(client):
    assert client.get("/").status_code == 200
    countries = client.get("/reference/countries").json()
    assert {"name": "India", "code": "IN", "phone_code": "+91"} in countries


def test_requires_auth(client):
    assert client.get("/me").status_code == 401
    assert client.get("/me", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_admin_seed_is_idempotent(db, admin):
    main.ensure_admin(db)
    assert db["user"].count_documents({"role": "admin"}) == 1


def test_roles_are_enforced(client, admin):
    _, hr = register_company(client)
    assert client.post("/admin/products", json={"name": "Mug", "point_cost": 10}, headers=hr).status_code == 403
    assert client.get("/corporate/tenant", headers=admin).status_code == 403


def test_company_approval(client, admin):
    tenant_id, hr = register_company(client)

    assert client.get("/company/acme").status_code == 404
    assert client.get("/corporate/tenant", headers=hr).json()["status"] == "pending"
    assert client.put("/corporate/products", json={"product_ids": []}, headers=hr).status_code == 403
    assert [t["slug"] for t in client.get("/admin/tenants?status=pending", headers=admin).json()] == ["acme"]

    res = client.post(f"/admin/tenants/{tenant_id}/approve", headers=admin)
    assert res.status_code == 200
    assert res.json()["status"] == "approved"
    res = client.post(f"/admin/tenants/{tenant_id}/reject", headers=admin)
    assert res.status_code == 409
    assert res.json()["code"] == "conflict"

    assert client.get("/company/acme").json()["products"] == []
    res = client.patch("/corporate/tenant", json={"slug": "acme-2"}, headers=hr)
    assert res.status_code == 409


def test_slug_must_be_unique(client):
    register_company(client)
    res = client.post("/corporate/register", json={
        "name": "Other", "slug": "acme", "email": "x@other.com", "password": "password",
    })
    assert res.status_code == 400


def test_bulk_import(client, admin):
    tenant_id, hr = register_company(client)
    client.post(f"/admin/tenants/{tenant_id}/approve", headers=admin)

    res = client.post("/corporate/employees/import", headers=hr, json={
        "csv": "jane@acme.com,Jane Doe,150\nnot-an-email,Bob\n\njohn@acme.com, John Roe\njane@acme.com,Jane again\nlonely",
    })
    body = res.json()
    assert body["created"] == 2
    assert [s["email"] for s in body["skipped"]] == ["jane@acme.com"]
    assert [e["line"] for e in body["errors"]] == [2, 6]

    employees = {e["email"]: e for e in client.get("/corporate/employees", headers=hr).json()}
    assert employees["jane@acme.com"]["points"] == 150
    assert employees["john@acme.com"]["points"] == 100


def test_employee_storefront_flow(db, client, admin):
    tenant_id, hr = register_company(client)
    client.post(f"/admin/tenants/{tenant_id}/approve", headers=admin)

    mug = client.post("/admin/products", headers=admin, json={"name": "Mug", "point_cost": 30, "stock": 5}).json()
    old = client.post("/admin/products", headers=admin, json={"name": "Old", "point_cost": 5, "active": False}).json()
    res = client.put("/corporate/products", headers=hr, json={"product_ids": [mug["id"], old["id"]]})
    assert res.json()["selected_product_ids"] == [mug["id"], old["id"]]

    page = client.get("/company/acme").json()
    assert [p["id"] for p in page["products"]] == [mug["id"]]

    emp = client.post("/corporate/employees", headers=hr, json={"email": "jane@acme.com", "name": "Jane"}).json()
    assert emp["points"] == 100

    res = client.post("/company/acme/register", json={"email": "stranger@acme.com", "password": "pw-123456"})
    assert res.status_code == 403
    client.post("/company/acme/register", json={"email": "jane@acme.com", "password": "pw-123456"})
    jane = login(client, "/company/acme/login", "jane@acme.com", "pw-123456")
    assert client.get("/company/acme/me", headers=jane).json()["points"] == 100

    cart = {"items": [{"product_id": mug["id"], "quantity": 2}]}
    res = client.post("/company/acme/checkout", headers=jane, json=cart)
    assert res.status_code == 400
    assert res.json()["code"] == "incomplete_address"

    address = {"full_name": "Jane Doe", "address_line1": "1 Main St", "city": "Springfield"}
    assert client.put("/company/acme/address", headers=jane, json=address).status_code == 200
    assert client.get("/company/acme/address", headers=jane).json()["city"] == "Springfield"

    keyed = {**jane, "Idempotency-Key": "k-1"}
    first = client.post("/company/acme/checkout", headers=keyed, json=cart)
    assert first.status_code == 200, first.text
    assert first.json()["total_points"] == 60
    replay = client.post("/company/acme/checkout", headers=keyed, json=cart)
    assert replay.json()["id"] == first.json()["id"]
    assert client.get("/company/acme/me", headers=jane).json()["points"] == 40

    res = client.post("/company/acme/checkout", headers=jane, json=cart)
    assert res.status_code == 409
    assert res.json()["code"] == "insufficient_funds"

    res = client.post("/company/acme/checkout", headers=jane, json={"items": [{"product_id": old["id"], "quantity": 1}]})
    assert res.json()["code"] == "catalog_mismatch"
    res = client.post("/company/acme/checkout", headers=jane, json={"items": []})
    assert res.json()["code"] == "empty_cart"

    assert len(client.get("/company/acme/orders", headers=jane).json()) == 1
    assert len(client.get("/corporate/orders", headers=hr).json()) == 1

    order_id = first.json()["id"]
    res = client.patch(f"/admin/orders/{order_id}/status", headers=admin, json={"status": "shipped"})
    assert res.json()["code"] == "invalid_transition"
    res = client.patch(f"/admin/orders/{order_id}/status", headers=admin, json={"status": "processing"})
    assert res.json()["status"] == "processing"
    assert len(client.get("/admin/orders?status=processing", headers=admin).json()) == 1

    res = client.post(f"/corporate/employees/{emp['id']}/points", headers=hr, json={"amount": 50})
    assert res.json()["points"] == 90
    assert client.post(f"/corporate/employees/{emp['id']}/points", headers=hr, json={"amount": 0}).status_code == 422


def test_employee_of_other_company_is_rejected(db, client, admin):
    acme_id, _ = register_company(client, "acme")
    globex_id, _ = register_company(client, "globex")
    for tid in (acme_id, globex_id):
        client.post(f"/admin/tenants/{tid}/approve", headers=admin)
    eid = create_document("employee", {"tenant_id": acme_id, "email": "jane@acme.com", "name": "Jane", "points": 10}, database=db)
    assert eid
    client.post("/company/acme/register", json={"email": "jane@acme.com", "password": "pw-123456"})
    jane = login(client, "/company/acme/login", "jane@acme.com", "pw-123456")
    assert client.get("/company/globex/me", headers=jane).status_code == 403


def test_concurrent_employee_registration_is_rejected(db, client, admin, monkeypatch):
    tenant_id, _ = register_company(client)
    client.post(f"/admin/tenants/{tenant_id}/approve", headers=admin)
    create_document("employee", {"tenant_id": tenant_id, "email": "jane@acme.com", "name": "Jane", "points": 10}, database=db)

    def register_twice(collection_name, data, database=None):
        # the other request inserts the same account after the existence check
        create_document(collection_name, data, database=database)
        return create_document(collection_name, data, database=database)

    monkeypatch.setattr(main, "create_document", register_twice)
    res = client.post("/company/acme/register", json={"email": "jane@acme.com", "password": "pw-123456"})
    assert res.status_code == 400
    assert res.json()["detail"] == "Account already exists, please log in"
    assert db["user"].count_documents({"email": "jane@acme.com", "role": "employee"}) == 1


def test_deleting_a_product_removes_it_from_selections(db, client, admin):
    tenant_id, hr = register_company(client)
    client.post(f"/admin/tenants/{tenant_id}/approve", headers=admin)
    mug = client.post("/admin/products", headers=admin, json={"name": "Mug", "point_cost": 30}).json()
    client.put("/corporate/products", headers=hr, json={"product_ids": [mug["id"]]})

    assert client.delete(f"/admin/products/{mug['id']}", headers=admin).json() == {"ok": True}
    assert client.get("/corporate/tenant", headers=hr).json()["selected_product_ids"] == []


def test_store_not_configured(client, monkeypatch):
    main.app.dependency_overrides.clear()
    monkeypatch.setattr(main.database, "db", None)
    res = client.get("/company/acme")
    assert res.status_code == 503
    assert res.json()["code"] == "store_unavailable"
