"""
Activity log listing and caller identity
"""
from app.core.security import create_access_token
from tests.conftest import API, ADMIN_HEADERS


async def test_listing_requires_admin(client):
    response = await client.get(f"{API}/activity-logs")
    assert response.status_code == 403

    response = await client.get(
        f"{API}/activity-logs",
        headers={**ADMIN_HEADERS, "X-User-Role": "staff"}
    )
    assert response.status_code == 403


async def test_writes_are_logged(client, make_item):
    await client.post(
        f"{API}/inventory/suppliers",
        json={"supplier_name": "Logged Supplies"},
        headers={"X-User-Id": "5", "X-User-Username": "stockroom"}
    )
    await make_item()

    response = await client.get(f"{API}/activity-logs", headers=ADMIN_HEADERS)
    assert response.status_code == 200
    rows = response.json()["data"]
    assert len(rows) == 2
    assert {r["module"] for r in rows} == {"inventory"}
    assert {r["action"] for r in rows} == {"create"}

    response = await client.get(
        f"{API}/activity-logs", params={"username": "stock"}, headers=ADMIN_HEADERS
    )
    rows = response.json()["data"]
    assert len(rows) == 1
    assert rows[0]["details"]["endpoint"] == f"{API}/inventory/suppliers"


async def test_module_filter(client, make_invoice):
    invoice = await make_invoice(500)
    await client.post(f"{API}/billing/payments", json={
        "invoice_id": invoice["invoice_id"], "amount_paid": 100, "method": "Cash"
    })

    response = await client.get(
        f"{API}/activity-logs", params={"module": "payments"}, headers=ADMIN_HEADERS
    )
    rows = response.json()["data"]
    assert len(rows) == 1
    assert rows[0]["details"]["invoice_id"] == invoice["invoice_id"]


async def test_bearer_token_identifies_caller(client):
    token = create_access_token({"sub": "42", "role": "admin", "username": "owner"})
    response = await client.get(
        f"{API}/activity-logs", headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 200


async def test_invalid_bearer_token(client):
    response = await client.get(
        f"{API}/activity-logs", headers={"Authorization": "Bearer not-a-token"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid authentication credentials"
