"""
Shared fixtures: a fresh SQLite database per test, an ASGI client bound to
it, entity factories that go through the API, and a fake PayMongo gateway.
"""
import os

os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["PAYMONGO_SECRET_KEY"] = ""
os.environ["PAYMONGO_WEBHOOK_SECRET"] = ""
os.environ["SMTP_HOST"] = ""

import itertools
import json
from datetime import date, timedelta
from typing import Any, Dict

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import app.models  # noqa: F401
from app.core.config import get_settings
from app.db.base import Base
from app.db.dependencies import get_db
from app.db.session import enable_sqlite_savepoints
from app.services.billing.paymongo_client import (
    PaymongoClient, PaymongoConfig, get_paymongo_client, get_optional_paymongo_client
)
from main import app

API = "/api/v1"

ADMIN_HEADERS = {
    "X-User-Id": "1",
    "X-User-Role": "admin",
    "X-User-Email": "admin@clinic.example.com",
    "X-User-Username": "admin",
}


# ============================================
# Database and client
# ============================================

@pytest.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    enable_sqlite_savepoints(test_engine)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def settings():
    return get_settings()


# ============================================
# Factories
# ============================================

_seq = itertools.count(1)


@pytest.fixture
def make_supplier(client):
    async def _make(**overrides) -> Dict[str, Any]:
        payload = {
            "supplier_name": f"Supplier {next(_seq)}",
            "contact_person": "Dana Cruz",
            "phone": "0917-000-0000",
            "email": "orders@supplier.example.com",
        }
        payload.update(overrides)
        response = await client.post(f"{API}/inventory/suppliers", json=payload)
        assert response.status_code == 201, response.text
        return response.json()["data"]
    return _make


@pytest.fixture
def make_item(client):
    async def _make(**overrides) -> Dict[str, Any]:
        n = next(_seq)
        payload = {
            "item_code": f"ITM-{n:04d}",
            "item_name": f"Item {n}",
            "unit_of_measure": "pcs",
            "reorder_level": 5,
        }
        payload.update(overrides)
        response = await client.post(f"{API}/inventory/items", json=payload)
        assert response.status_code == 201, response.text
        return response.json()["data"]
    return _make


@pytest.fixture
def make_batch(client):
    async def _make(item_id: int, qty: int = 10, **overrides) -> Dict[str, Any]:
        payload = {
            "item_id": item_id,
            "batch_no": f"B-{next(_seq)}",
            "qty_available": qty,
            "unit_cost": 12.5,
            "expiry_date": (date.today() + timedelta(days=365)).isoformat(),
        }
        payload.update(overrides)
        response = await client.post(f"{API}/inventory/batches", json=payload)
        assert response.status_code == 201, response.text
        return response.json()["data"]
    return _make


@pytest.fixture
def make_patient(client):
    async def _make(**overrides) -> Dict[str, Any]:
        payload = {
            "first_name": "Maria",
            "last_name": f"Santos {next(_seq)}",
            "mobile_number": "09170000000",
            "email": "maria@patient.example.com",
        }
        payload.update(overrides)
        response = await client.post(f"{API}/billing/patients", json=payload)
        assert response.status_code == 201, response.text
        return response.json()["data"]
    return _make


@pytest.fixture
def make_service(client):
    async def _make(**overrides) -> Dict[str, Any]:
        payload = {"service_name": f"Service {next(_seq)}", "fixed_price": 1000}
        payload.update(overrides)
        response = await client.post(f"{API}/billing/services", json=payload)
        assert response.status_code == 201, response.text
        return response.json()["data"]
    return _make


@pytest.fixture
def make_invoice(client, make_patient, make_service):
    """Invoice for a new patient with one charge per price given"""
    async def _make(*prices, **overrides) -> Dict[str, Any]:
        prices = prices or (1000,)
        patient = await make_patient()
        charges = []
        for price in prices:
            service = await make_service(fixed_price=price)
            charges.append({"service_id": service["service_id"]})
        payload = {"patient_id": patient["patient_id"], "charges": charges}
        payload.update(overrides)
        response = await client.post(f"{API}/billing/invoices", json=payload)
        assert response.status_code == 201, response.text
        return response.json()["data"]
    return _make


# ============================================
# Fake PayMongo
# ============================================

class FakePaymongo:
    """In-memory links API served through httpx.MockTransport"""

    def __init__(self):
        self.links: Dict[str, Dict[str, Any]] = {}
        self.requests = []
        self._ids = itertools.count(1)

    def resource(self, link_id: str) -> Dict[str, Any]:
        return {"id": link_id, "type": "link", "attributes": self.links[link_id]}

    def mark_paid(self, link_id: str) -> None:
        self.links[link_id]["status"] = "paid"

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.method == "POST" and request.url.path.endswith("/links"):
            attributes = json.loads(request.content)["data"]["attributes"]
            n = next(self._ids)
            link_id = f"link_test{n}"
            self.links[link_id] = {
                "amount": attributes["amount"],
                "description": attributes.get("description"),
                "remarks": attributes.get("remarks"),
                "metadata": attributes.get("metadata") or {},
                "reference_number": f"REF{n:05d}",
                "checkout_url": f"https://pm.link/test/REF{n:05d}",
                "status": "unpaid",
                "payments": [],
            }
            return httpx.Response(200, json={"data": self.resource(link_id)})

        if request.method == "GET" and "/links/" in request.url.path:
            link_id = request.url.path.rsplit("/", 1)[-1]
            if link_id not in self.links:
                return httpx.Response(404, json={"errors": [{"detail": "Link not found"}]})
            return httpx.Response(200, json={"data": self.resource(link_id)})

        return httpx.Response(404, json={"errors": [{"detail": "Unknown endpoint"}]})

    def paid_event(self, link_id: str) -> Dict[str, Any]:
        """link.payment.paid webhook body for a stored link"""
        return {
            "data": {
                "id": f"evt_{link_id}",
                "type": "event",
                "attributes": {
                    "type": "link.payment.paid",
                    "livemode": False,
                    "data": self.resource(link_id),
                },
            }
        }


@pytest.fixture
def paymongo(settings, monkeypatch):
    fake = FakePaymongo()
    monkeypatch.setattr(settings, "PAYMONGO_SECRET_KEY", "sk_test_fake")

    def _client() -> PaymongoClient:
        return PaymongoClient(
            PaymongoConfig(secret_key="sk_test_fake", base_url="https://api.paymongo.test/v1"),
            transport=httpx.MockTransport(fake.handler),
        )

    app.dependency_overrides[get_paymongo_client] = _client
    app.dependency_overrides[get_optional_paymongo_client] = _client
    yield fake
    app.dependency_overrides.pop(get_paymongo_client, None)
    app.dependency_overrides.pop(get_optional_paymongo_client, None)
