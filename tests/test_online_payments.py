"""
PayMongo links, QR codes, status polling and the webhook
"""
import base64
import json
import time
from datetime import date, timedelta
from typing import Union

import pytest

from app.core.security import SecurityUtils
from tests.conftest import API

WEBHOOK_SECRET = "whsec_test_secret"


async def _link(client, invoice_id, amount, **extra):
    return await client.post(f"{API}/billing/online-payments/generate-link", json={
        "invoice_id": invoice_id, "amount": amount, **extra
    })


async def _webhook(client, payload, headers=None):
    return await client.post(
        f"{API}/billing/webhooks/paymongo",
        content=json.dumps(payload),
        headers={"Content-Type": "application/json", **(headers or {})}
    )


def _signature(body: Union[str, bytes], timestamp: int, key: str = "te") -> str:
    if isinstance(body, str):
        body = body.encode("utf-8")
    digest = SecurityUtils.compute_signature(WEBHOOK_SECRET, f"{timestamp}.".encode("utf-8") + body)
    return f"t={timestamp},{key}={digest}"


@pytest.fixture
def webhook_secret(settings, monkeypatch):
    monkeypatch.setattr(settings, "PAYMONGO_WEBHOOK_SECRET", WEBHOOK_SECRET)
    return WEBHOOK_SECRET


# ============================================
# Links and QR codes
# ============================================

async def test_generate_link_adds_fee(client, make_invoice, paymongo):
    invoice = await make_invoice(1000)

    response = await _link(client, invoice["invoice_id"], 1000)
    assert response.status_code == 200, response.text
    link = response.json()["data"]
    assert link["amount"] == 1000.0
    assert link["convenience_fee"] == 20.0
    assert link["total_amount"] == 1020.0
    assert link["checkout_url"].startswith("https://pm.link/test/")

    sent = json.loads(paymongo.requests[0].content)["data"]["attributes"]
    assert sent["amount"] == 102000
    assert sent["metadata"] == {"invoice_id": str(invoice["invoice_id"])}
    assert sent["description"] == f"Invoice #{invoice['invoice_id']}"

    response = await client.get(f"{API}/billing/invoices/{invoice['invoice_id']}")
    stored = response.json()["data"]
    assert stored["paymongo_link_id"] == link["link_id"]
    assert stored["paymongo_status"] == "active"


async def test_second_link_conflicts(client, make_invoice, paymongo):
    invoice = await make_invoice(1000)
    await _link(client, invoice["invoice_id"], 1000)

    response = await _link(client, invoice["invoice_id"], 1000)
    assert response.status_code == 409
    assert response.json()["detail"] == "An active payment link already exists for this invoice"


async def test_link_rejects_bad_amounts(client, make_invoice, paymongo):
    invoice = await make_invoice(1000)

    response = await _link(client, invoice["invoice_id"], 1000.01)
    assert response.status_code == 400

    await client.post(f"{API}/billing/payments", json={
        "invoice_id": invoice["invoice_id"], "amount_paid": 1000, "method": "Cash"
    })
    response = await _link(client, invoice["invoice_id"], 10)
    assert response.status_code == 400
    assert response.json()["detail"] == "Invoice is already paid"


async def test_generate_link_unconfigured(client, make_invoice):
    invoice = await make_invoice(1000)
    response = await _link(client, invoice["invoice_id"], 1000)
    assert response.status_code == 503


async def test_installment_link_description(client, make_invoice, paymongo):
    invoice = await make_invoice(1000)
    installment = (await client.post(
        f"{API}/billing/invoices/{invoice['invoice_id']}/installments",
        json={"due_date": (date.today() + timedelta(days=30)).isoformat(), "amount_due": 500}
    )).json()["data"]

    response = await _link(
        client, invoice["invoice_id"], 600, installment_id=installment["installment_id"]
    )
    assert response.status_code == 400

    response = await _link(
        client, invoice["invoice_id"], 500, installment_id=installment["installment_id"]
    )
    assert response.status_code == 200, response.text
    sent = json.loads(paymongo.requests[-1].content)["data"]["attributes"]
    assert sent["description"].startswith(f"Installment #{installment['installment_id']} - ")
    assert sent["metadata"]["installment_id"] == str(installment["installment_id"])


async def test_qr_reuses_unpaid_link(client, make_invoice, paymongo):
    invoice = await make_invoice(1000)

    first = await client.post(f"{API}/billing/online-payments/generate-qr", json={
        "invoice_id": invoice["invoice_id"], "amount": 1000
    })
    assert first.status_code == 200, first.text
    first = first.json()["data"]
    assert first["reused"] is False
    assert first["qr_code"].startswith("data:image/svg+xml;base64,")

    second = (await client.post(f"{API}/billing/online-payments/generate-qr", json={
        "invoice_id": invoice["invoice_id"], "amount": 1000
    })).json()["data"]
    assert second["reused"] is True
    assert second["link_id"] == first["link_id"]
    assert second["amount"] == 1000.0
    assert second["convenience_fee"] == 20.0
    assert len(paymongo.links) == 1


async def test_qr_on_paid_invoice(client, make_invoice, paymongo):
    invoice = await make_invoice(1000)
    qr_url = f"{API}/billing/online-payments/generate-qr"
    await client.post(qr_url, json={"invoice_id": invoice["invoice_id"], "amount": 1000})

    await client.post(f"{API}/billing/payments", json={
        "invoice_id": invoice["invoice_id"], "amount_paid": 1000, "method": "Cash"
    })

    response = await client.post(qr_url, json={"invoice_id": invoice["invoice_id"], "amount": 1000})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invoice is already paid"


async def test_qr_does_not_reuse_link_for_other_amount(client, make_invoice, paymongo):
    invoice = await make_invoice(1000)
    qr_url = f"{API}/billing/online-payments/generate-qr"
    await client.post(qr_url, json={"invoice_id": invoice["invoice_id"], "amount": 1000})

    response = await client.post(qr_url, json={"invoice_id": invoice["invoice_id"], "amount": 400})
    assert response.status_code == 409
    assert len(paymongo.links) == 1


async def test_gateway_uses_basic_auth(client, make_invoice, paymongo):
    invoice = await make_invoice(1000)
    await _link(client, invoice["invoice_id"], 1000)

    token = base64.b64encode(b"sk_test_fake:").decode("ascii")
    assert paymongo.requests[0].headers["Authorization"] == f"Basic {token}"


# ============================================
# Status polling
# ============================================

async def test_status_ignores_payments_before_link(client, make_invoice, paymongo):
    invoice = await make_invoice(1000)
    await client.post(f"{API}/billing/payments", json={
        "invoice_id": invoice["invoice_id"], "amount_paid": 200, "method": "Cash"
    })
    await _link(client, invoice["invoice_id"], 800)

    response = await client.get(f"{API}/billing/online-payments/status/{invoice['invoice_id']}")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["paymongo_status"] == "active"
    assert data["payment_completed"] is False
    assert data["total_payments"] == 0

    await client.post(f"{API}/billing/payments", json={
        "invoice_id": invoice["invoice_id"], "amount_paid": 100, "method": "Cash"
    })
    response = await client.get(f"{API}/billing/online-payments/status/{invoice['invoice_id']}")
    assert response.json()["data"]["total_payments"] == 1

    # A payment since the link frees the invoice for a new one
    response = await _link(client, invoice["invoice_id"], 700)
    assert response.status_code == 200


async def test_status_refresh_records_paid_link(client, make_invoice, paymongo):
    invoice = await make_invoice(1000)
    link = (await _link(client, invoice["invoice_id"], 1000)).json()["data"]
    paymongo.mark_paid(link["link_id"])

    response = await client.get(
        f"{API}/billing/online-payments/status/{invoice['invoice_id']}",
        params={"refresh": "true"}
    )
    data = response.json()["data"]
    assert data["paymongo_status"] == "paid"
    assert data["payment_completed"] is True
    assert data["invoice_status"] == "paid"
    assert data["recent_payments"][0]["convenience_fee"] == 20.0
    assert data["recent_payments"][0]["transaction_ref"] == link["reference_number"]


async def test_status_refresh_without_gateway(client, make_invoice):
    invoice = await make_invoice(1000)

    response = await client.get(f"{API}/billing/online-payments/status/{invoice['invoice_id']}")
    assert response.status_code == 200
    assert response.json()["data"]["paymongo_status"] is None

    response = await client.get(
        f"{API}/billing/online-payments/status/{invoice['invoice_id']}",
        params={"refresh": "true"}
    )
    assert response.status_code == 503


async def test_fix_status_resets_stale_link(client, make_invoice, paymongo):
    invoice = await make_invoice(1000)
    await _link(client, invoice["invoice_id"], 1000)

    response = await client.put(f"{API}/billing/online-payments/fix-status/{invoice['invoice_id']}")
    data = response.json()["data"]
    assert data["previous_status"] == "active"
    assert data["paymongo_status"] == "pending"
    assert data["changed"] is True

    response = await _link(client, invoice["invoice_id"], 1000)
    assert response.status_code == 200


async def test_fix_status_marks_paid(client, make_invoice, paymongo):
    invoice = await make_invoice(1000)
    await _link(client, invoice["invoice_id"], 1000)
    await client.post(f"{API}/billing/payments", json={
        "invoice_id": invoice["invoice_id"], "amount_paid": 1000, "method": "Bank Transfer"
    })

    response = await client.put(f"{API}/billing/online-payments/fix-status/{invoice['invoice_id']}")
    data = response.json()["data"]
    assert data["paymongo_status"] == "paid"
    assert data["payments_since_link"] == 1


# ============================================
# Webhook
# ============================================

async def test_webhook_records_payment_once(client, make_invoice, paymongo):
    invoice = await make_invoice(1000)
    link = (await _link(client, invoice["invoice_id"], 1000)).json()["data"]
    paymongo.mark_paid(link["link_id"])
    event = paymongo.paid_event(link["link_id"])

    response = await _webhook(client, event)
    assert response.status_code == 200, response.text
    ack = response.json()
    assert ack["status"] == "processed"
    assert ack["invoice_id"] == invoice["invoice_id"]

    response = await client.get(f"{API}/billing/invoices/{invoice['invoice_id']}")
    stored = response.json()["data"]
    assert stored["status"] == "paid"
    assert stored["total_paid"] == 1000.0
    assert stored["paymongo_status"] == "paid"
    payment = stored["payments"][0]
    assert payment["method"] == "QR/Online"
    assert payment["convenience_fee"] == 20.0
    assert payment["recorded_by"] == "paymongo"

    response = await _webhook(client, event)
    assert response.json()["status"] == "duplicate"

    response = await client.get(f"{API}/billing/invoices/{invoice['invoice_id']}/payments")
    assert len(response.json()["data"]) == 1


async def test_webhook_pays_installment(client, make_invoice, paymongo):
    invoice = await make_invoice(1000)
    installment = (await client.post(
        f"{API}/billing/invoices/{invoice['invoice_id']}/installments",
        json={"due_date": (date.today() + timedelta(days=30)).isoformat(), "amount_due": 500}
    )).json()["data"]
    link = (await _link(
        client, invoice["invoice_id"], 500, installment_id=installment["installment_id"]
    )).json()["data"]

    response = await _webhook(client, paymongo.paid_event(link["link_id"]))
    assert response.json()["status"] == "processed"

    response = await client.get(f"{API}/billing/invoices/{invoice['invoice_id']}/installments")
    schedule = response.json()["data"]
    assert schedule[0]["status"] == "paid"
    assert schedule[0]["amount_paid"] == 500.0

    response = await client.get(f"{API}/billing/invoices/{invoice['invoice_id']}")
    assert response.json()["data"]["status"] == "partial"


async def test_webhook_ignores_other_events(client):
    response = await _webhook(client, {
        "data": {"id": "evt_1", "attributes": {"type": "payment.failed", "data": {}}}
    })
    assert response.status_code == 200
    assert response.json()["status"] == "ignored"


async def test_webhook_unknown_link_ignored(client, paymongo):
    response = await _webhook(client, {
        "data": {
            "id": "evt_2",
            "attributes": {
                "type": "link.payment.paid",
                "data": {"id": "link_missing", "attributes": {"amount": 1000, "description": "Walk-in"}},
            },
        }
    })
    assert response.json()["status"] == "ignored"


async def test_webhook_bad_json(client):
    response = await client.post(
        f"{API}/billing/webhooks/paymongo",
        content=b"not json",
        headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid webhook payload"


async def test_webhook_signature_checks(client, webhook_secret):
    body = json.dumps({"data": {"id": "evt_3", "attributes": {"type": "payment.failed", "data": {}}}})
    url = f"{API}/billing/webhooks/paymongo"
    now = int(time.time())

    response = await client.post(url, content=body)
    assert response.status_code == 401
    assert response.json()["detail"] == "Missing webhook signature"

    response = await client.post(url, content=body, headers={"Paymongo-Signature": _signature(body, now)})
    assert response.status_code == 200

    response = await client.post(url, content=body, headers={"Paymongo-Signature": _signature(body, now, "li")})
    assert response.status_code == 200

    tampered = body.replace("evt_3", "evt_4")
    response = await client.post(url, content=tampered, headers={"Paymongo-Signature": _signature(body, now)})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid webhook signature"

    stale = now - 3600
    response = await client.post(url, content=body, headers={"Paymongo-Signature": _signature(body, stale)})
    assert response.status_code == 401
    assert response.json()["detail"] == "Webhook signature has expired"


async def test_webhook_checks_signature_before_parsing(client, webhook_secret):
    url = f"{API}/billing/webhooks/paymongo"
    now = int(time.time())
    garbage = b"\xff\xfe not json"

    response = await client.post(
        url, content=garbage, headers={"Paymongo-Signature": _signature(b"{}", now)}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid webhook signature"

    response = await client.post(
        url, content=garbage, headers={"Paymongo-Signature": _signature(garbage, now)}
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid webhook payload"
