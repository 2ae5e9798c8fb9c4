from tests.conftest import API


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_request_id_is_echoed(client):
    response = await client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


async def test_errors_carry_request_id(client):
    response = await client.get(f"{API}/inventory/items/999")
    body = response.json()
    assert response.status_code == 404
    assert body["request_id"] == response.headers["X-Request-ID"]


async def test_validation_errors(client):
    response = await client.post(f"{API}/inventory/items", json={"item_code": ""})
    assert response.status_code == 422
    assert response.json()["detail"] == "Validation error"
