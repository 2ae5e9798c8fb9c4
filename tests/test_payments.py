"""
Direct payments and installment schedules
"""
from datetime import date, timedelta

from tests.conftest import API


def _due(days):
    return (date.today() + timedelta(days=days)).isoformat()


# ============================================
# Direct payments
# ============================================

async def test_cash_payment_with_change(client, make_invoice):
    invoice = await make_invoice(750)

    response = await client.post(f"{API}/billing/payments", json={
        "invoice_id": invoice["invoice_id"],
        "amount_paid": 750,
        "received_amount": 1000,
        "method": "Cash",
    })
    assert response.status_code == 201, response.text
    result = response.json()["data"]
    assert result["payment"]["change_amount"] == 250.0
    assert result["payment"]["recorded_by"] == "unknown"
    assert result["invoice_update"] == {"net_amount_due": 0.0, "status": "paid", "total_paid": 750.0}


async def test_payment_over_balance(client, make_invoice):
    invoice = await make_invoice(500)

    response = await client.post(f"{API}/billing/payments", json={
        "invoice_id": invoice["invoice_id"], "amount_paid": 500.01, "method": "Cash"
    })
    assert response.status_code == 400
    assert response.json()["detail"] == (
        "Payment amount (500.01) cannot exceed remaining balance (500.00)"
    )


async def test_tender_below_amount_is_invalid(client, make_invoice):
    invoice = await make_invoice(500)

    response = await client.post(f"{API}/billing/payments", json={
        "invoice_id": invoice["invoice_id"], "amount_paid": 500, "received_amount": 200, "method": "Cash"
    })
    assert response.status_code == 422


async def test_payment_records_user_from_headers(client, make_invoice):
    invoice = await make_invoice(500)

    response = await client.post(
        f"{API}/billing/payments",
        json={"invoice_id": invoice["invoice_id"], "amount_paid": 200, "method": "Bank Transfer",
              "transaction_ref": "BT-1"},
        headers={"X-User-Id": "7", "X-User-Username": "cashier"}
    )
    assert response.status_code == 201, response.text
    assert response.json()["data"]["payment"]["recorded_by"] == "cashier"
    assert response.json()["data"]["invoice_update"]["status"] == "partial"


async def test_payment_proof(client, make_invoice):
    invoice = await make_invoice(500)
    payment = (await client.post(f"{API}/billing/payments", json={
        "invoice_id": invoice["invoice_id"], "amount_paid": 100, "method": "Bank Transfer"
    })).json()["data"]["payment"]

    response = await client.post(
        f"{API}/billing/payments/{payment['payment_id']}/proof",
        json={"proof_of_payment": "receipts/bt-1.png"}
    )
    assert response.status_code == 200
    assert response.json()["data"]["proof_of_payment"] == "receipts/bt-1.png"


async def test_list_payments_filters(client, make_invoice):
    first = await make_invoice(500)
    second = await make_invoice(500)
    await client.post(f"{API}/billing/payments", json={
        "invoice_id": first["invoice_id"], "amount_paid": 100, "method": "Cash"
    })
    await client.post(f"{API}/billing/payments", json={
        "invoice_id": second["invoice_id"], "amount_paid": 100, "method": "Bank Transfer"
    })

    response = await client.get(f"{API}/billing/payments", params={"method": "Cash"})
    rows = response.json()["data"]
    assert [r["invoice_id"] for r in rows] == [first["invoice_id"]]


async def test_list_payments_pages_across_both_ledgers(client, make_invoice):
    direct = await make_invoice(1000)
    scheduled = await make_invoice(1000)
    installment = (await client.post(
        f"{API}/billing/invoices/{scheduled['invoice_id']}/installments",
        json={"due_date": _due(30), "amount_due": 500}
    )).json()["data"]

    await client.post(f"{API}/billing/payments", json={
        "invoice_id": direct["invoice_id"], "amount_paid": 100, "method": "Cash"
    })
    await client.post(
        f"{API}/billing/installments/{installment['installment_id']}/payments",
        json={"amount": 50, "method": "Cash"}
    )
    await client.post(f"{API}/billing/payments", json={
        "invoice_id": direct["invoice_id"], "amount_paid": 200, "method": "Cash"
    })

    response = await client.get(f"{API}/billing/payments", params={"limit": 2})
    body = response.json()
    assert body["pagination"]["total"] == 3
    assert body["pagination"]["pages"] == 2
    assert [(r["payment_type"], r["amount_paid"]) for r in body["data"]] == [
        ("direct", 200.0), ("installment", 50.0)
    ]
    assert body["data"][1]["installment_id"] == installment["installment_id"]
    assert body["data"][1]["change_amount"] == 0.0

    response = await client.get(f"{API}/billing/payments", params={"limit": 2, "page": 2})
    rows = response.json()["data"]
    assert [(r["payment_type"], r["amount_paid"]) for r in rows] == [("direct", 100.0)]
    assert rows[0]["patient_name"].startswith("Maria Santos")


# ============================================
# Installments
# ============================================

async def test_installments_are_numbered_and_capped(client, make_invoice):
    invoice = await make_invoice(1000)

    response = await client.post(f"{API}/billing/installments", json={
        "invoice_id": invoice["invoice_id"],
        "installments": [
            {"due_date": _due(30), "amount_due": 400},
            {"due_date": _due(60), "amount_due": 400},
        ],
    })
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["message"] == "2 installment(s) added successfully"
    assert [i["installment_number"] for i in body["data"]] == [1, 2]

    response = await client.post(
        f"{API}/billing/invoices/{invoice['invoice_id']}/installments",
        json={"due_date": _due(90), "amount_due": 300}
    )
    assert response.status_code == 400
    assert "cannot exceed invoice final amount" in response.json()["detail"]

    response = await client.post(
        f"{API}/billing/invoices/{invoice['invoice_id']}/installments",
        json={"due_date": _due(90), "amount_due": 200}
    )
    assert response.status_code == 201
    assert response.json()["data"]["installment_number"] == 3

    response = await client.get(f"{API}/billing/invoices/{invoice['invoice_id']}")
    assert response.json()["data"]["plan_mode"] == "installment"


async def test_pay_installment(client, make_invoice):
    invoice = await make_invoice(1000)
    installment = (await client.post(
        f"{API}/billing/invoices/{invoice['invoice_id']}/installments",
        json={"due_date": _due(30), "amount_due": 600}
    )).json()["data"]
    url = f"{API}/billing/installments/{installment['installment_id']}/payments"

    response = await client.post(url, json={"amount": 200, "method": "Cash"})
    assert response.status_code == 201, response.text
    result = response.json()["data"]
    assert result["installment"]["status"] == "pending"
    assert result["installment"]["remaining"] == 400.0
    assert result["invoice_update"]["net_amount_due"] == 800.0

    response = await client.post(url, json={"amount": 400.01, "method": "Cash"})
    assert response.status_code == 400

    response = await client.post(url, json={"amount": 400, "method": "QR", "transaction_ref": "QR-1"})
    result = response.json()["data"]
    assert result["installment"]["status"] == "paid"
    assert result["invoice_update"]["status"] == "partial"

    response = await client.get(url)
    assert len(response.json()["data"]) == 2

    response = await client.get(f"{API}/billing/invoices/{invoice['invoice_id']}/payments")
    assert {e["payment_type"] for e in response.json()["data"]} == {"installment"}


async def test_overdue_installment_status(client, make_invoice):
    invoice = await make_invoice(1000)
    installment = (await client.post(
        f"{API}/billing/invoices/{invoice['invoice_id']}/installments",
        json={"due_date": _due(-5), "amount_due": 500}
    )).json()["data"]

    response = await client.post(
        f"{API}/billing/installments/{installment['installment_id']}/payments",
        json={"amount": 100, "method": "Cash"}
    )
    assert response.json()["data"]["installment"]["status"] == "overdue"


async def test_installment_with_payments_cannot_be_deleted(client, make_invoice):
    invoice = await make_invoice(1000)
    paid, unpaid = (await client.post(f"{API}/billing/installments", json={
        "invoice_id": invoice["invoice_id"],
        "installments": [
            {"due_date": _due(30), "amount_due": 500},
            {"due_date": _due(60), "amount_due": 500},
        ],
    })).json()["data"]
    await client.post(
        f"{API}/billing/installments/{paid['installment_id']}/payments",
        json={"amount": 50, "method": "Cash"}
    )

    response = await client.delete(f"{API}/billing/installments/{paid['installment_id']}")
    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot delete an installment that has payments"

    response = await client.delete(f"{API}/billing/installments/{unpaid['installment_id']}")
    assert response.status_code == 200
    assert response.json()["message"] == "Installment deleted successfully"


async def test_update_installment_rules(client, make_invoice):
    invoice = await make_invoice(1000)
    installment = (await client.post(
        f"{API}/billing/invoices/{invoice['invoice_id']}/installments",
        json={"due_date": _due(30), "amount_due": 500}
    )).json()["data"]
    url = f"{API}/billing/installments/{installment['installment_id']}"
    await client.post(f"{url}/payments", json={"amount": 300, "method": "Cash"})

    response = await client.put(url, json={"amount_due": 200})
    assert response.status_code == 400
    assert response.json()["detail"] == "Amount due cannot be less than the amount already paid"

    response = await client.put(url, json={"amount_due": 1200})
    assert response.status_code == 400

    response = await client.put(url, json={})
    assert response.status_code == 400

    response = await client.put(url, json={"amount_due": 800, "notes": "Rescheduled"})
    assert response.status_code == 200
    assert response.json()["data"]["remaining"] == 500.0


async def test_installment_for_unknown_invoice(client):
    response = await client.post(f"{API}/billing/installments", json={
        "invoice_id": 9999, "installments": [{"due_date": _due(30), "amount_due": 100}]
    })
    assert response.status_code == 404
