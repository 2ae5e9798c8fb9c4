"""
Invoices, treatment plans and adjustments
"""
from tests.conftest import API


async def _pay(client, invoice_id, amount, **extra):
    return await client.post(f"{API}/billing/payments", json={
        "invoice_id": invoice_id, "amount_paid": amount, "method": "Cash", **extra
    })


# ============================================
# Creation and listing
# ============================================

async def test_create_invoice_totals(client, make_invoice):
    invoice = await make_invoice(1000, 500)

    assert invoice["invoice_code"].startswith("INV")
    assert invoice["status"] == "unpaid"
    assert invoice["total_amount_estimated"] == 1500.0
    assert invoice["final_amount"] == 1500.0
    assert invoice["net_amount_due"] == 1500.0


async def test_patient_contact_details_are_kept(client, make_patient):
    patient = await make_patient(first_name="Ana", last_name="Reyes", email="ana.reyes@patient.example.com")
    assert patient["email"] == "ana.reyes@patient.example.com"
    assert patient["full_name"] == "Ana Reyes"

    response = await client.get(f"{API}/billing/patients/{patient['patient_id']}")
    assert response.json()["data"]["email"] == "ana.reyes@patient.example.com"

    response = await client.post(f"{API}/billing/patients", json={
        "first_name": "No", "last_name": "Mail", "email": "not-an-address"
    })
    assert response.status_code == 422


async def test_charge_amount_overrides(client, make_patient, make_service):
    patient = await make_patient()
    service = await make_service(fixed_price=None, min_price=400, max_price=600)

    response = await client.post(f"{API}/billing/invoices", json={
        "patient_id": patient["patient_id"],
        "charges": [
            {"service_id": service["service_id"]},
            {"service_id": service["service_id"], "final_amount": 450},
        ],
    })
    assert response.status_code == 201, response.text
    assert response.json()["data"]["total_amount_estimated"] == 950.0


async def test_invoice_unknown_patient(client, make_service):
    service = await make_service()
    response = await client.post(f"{API}/billing/invoices", json={
        "patient_id": 9999, "charges": [{"service_id": service["service_id"]}]
    })
    assert response.status_code == 404
    assert response.json()["detail"] == "Patient not found"


async def test_invoice_requires_charges(client, make_patient):
    patient = await make_patient()
    response = await client.post(f"{API}/billing/invoices", json={
        "patient_id": patient["patient_id"], "charges": []
    })
    assert response.status_code == 422


async def test_list_invoices_by_status(client, make_invoice):
    paid = await make_invoice(300)
    await make_invoice(700)
    await _pay(client, paid["invoice_id"], 300)

    response = await client.get(f"{API}/billing/invoices", params={"status": "paid"})
    rows = response.json()["data"]
    assert [r["invoice_id"] for r in rows] == [paid["invoice_id"]]
    assert len(rows[0]["treatments"]) == 1

    response = await client.get(f"{API}/billing/invoices", params={"status": "all"})
    assert response.json()["pagination"]["total"] == 2


async def test_invoice_detail(client, make_invoice):
    invoice = await make_invoice(1000)
    await _pay(client, invoice["invoice_id"], 400)

    response = await client.get(f"{API}/billing/invoices/{invoice['invoice_id']}")
    assert response.status_code == 200
    detail = response.json()["data"]
    assert detail["status"] == "partial"
    assert detail["summary"]["balance_due"] == 600.0
    assert len(detail["treatments"]) == 1
    assert detail["payments"][0]["payment_type"] == "direct"


# ============================================
# Treatment plans
# ============================================

async def test_plan_entries_invoiced_complete_the_plan(client, make_patient, make_service):
    patient = await make_patient()
    service = await make_service(fixed_price=800)

    response = await client.post(f"{API}/billing/treatment-plans", json={
        "patient_id": patient["patient_id"],
        "dentist_name": "Dr. Reyes",
        "charges": [{"service_id": service["service_id"], "tooth_number": "11"}],
    })
    assert response.status_code == 201, response.text
    plan = response.json()["data"]
    entry = plan["charges"][0]
    assert entry["status"] == "pending"
    assert entry["estimated_amount"] == 800.0

    response = await client.post(f"{API}/billing/invoices", json={
        "patient_id": patient["patient_id"],
        "plan_id": plan["plan_id"],
        "charges": [{"service_id": service["service_id"], "entry_id": entry["charge_id"]}],
    })
    assert response.status_code == 201, response.text
    invoice = response.json()["data"]
    assert invoice["final_amount"] == 800.0

    response = await client.get(f"{API}/billing/treatment-plans/{plan['plan_id']}")
    plan = response.json()["data"]
    assert plan["status"] == "completed"
    assert plan["charges"][0]["invoice_id"] == invoice["invoice_id"]

    response = await client.post(
        f"{API}/billing/treatment-plans/{plan['plan_id']}/charges",
        json={"service_id": service["service_id"]}
    )
    assert response.status_code == 400


async def test_plan_of_other_patient_rejected(client, make_patient, make_service):
    owner = await make_patient()
    other = await make_patient()
    service = await make_service()
    plan = (await client.post(f"{API}/billing/treatment-plans", json={
        "patient_id": owner["patient_id"], "charges": []
    })).json()["data"]

    response = await client.post(f"{API}/billing/invoices", json={
        "patient_id": other["patient_id"],
        "plan_id": plan["plan_id"],
        "charges": [{"service_id": service["service_id"]}],
    })
    assert response.status_code == 400
    assert response.json()["detail"] == "Treatment plan belongs to a different patient"


# ============================================
# Updates
# ============================================

async def test_update_replaces_charges(client, make_invoice, make_service):
    invoice = await make_invoice(1000)
    service = await make_service(fixed_price=250)

    response = await client.put(f"{API}/billing/invoices/{invoice['invoice_id']}", json={
        "charges": [{"service_id": service["service_id"]}, {"service_id": service["service_id"]}],
    })
    assert response.status_code == 200, response.text
    assert response.json()["data"]["final_amount"] == 500.0


async def test_update_blocked_after_payment(client, make_invoice, make_service):
    invoice = await make_invoice(1000)
    service = await make_service()
    await _pay(client, invoice["invoice_id"], 100)

    response = await client.put(f"{API}/billing/invoices/{invoice['invoice_id']}", json={
        "charges": [{"service_id": service["service_id"]}],
    })
    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot modify an invoice that already has payments"


# ============================================
# Adjustments
# ============================================

async def test_discount_reduces_balance(client, make_invoice):
    invoice = await make_invoice(1000)

    response = await client.post(
        f"{API}/billing/invoices/{invoice['invoice_id']}/adjustments",
        json={"type": "discount", "amount": 150, "reason": "Senior citizen"}
    )
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["message"] == "Discount applied successfully"
    adjustment = body["data"]["adjustment"]
    assert adjustment["previous_balance"] == 1000.0
    assert adjustment["new_balance"] == 850.0
    assert body["data"]["invoice"]["net_amount_due"] == 850.0

    response = await client.get(f"{API}/billing/invoices/{invoice['invoice_id']}/summary")
    summary = response.json()["data"]
    assert summary["discounts"] == 150.0
    assert summary["balance_due"] == 850.0


async def test_adjustment_over_balance(client, make_invoice):
    invoice = await make_invoice(1000)

    response = await client.post(
        f"{API}/billing/invoices/{invoice['invoice_id']}/adjustments",
        json={"type": "write-off", "amount": 1000.01}
    )
    assert response.status_code == 400
    assert "cannot exceed balance due" in response.json()["detail"]


async def test_write_off_settles_invoice(client, make_invoice):
    invoice = await make_invoice(1000)
    await _pay(client, invoice["invoice_id"], 900)

    response = await client.post(
        f"{API}/billing/invoices/{invoice['invoice_id']}/adjustments",
        json={"type": "write-off", "amount": 100}
    )
    assert response.json()["data"]["invoice"]["status"] == "paid"

    response = await client.get(f"{API}/billing/invoices/{invoice['invoice_id']}/adjustments")
    assert [a["type"] for a in response.json()["data"]] == ["write-off"]


async def test_invoice_pdf(client, make_invoice):
    invoice = await make_invoice(1000)
    response = await client.get(f"{API}/billing/invoices/{invoice['invoice_id']}/pdf")
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")


async def test_invoice_email_needs_smtp(client, make_invoice):
    invoice = await make_invoice(1000)
    response = await client.post(f"{API}/billing/invoices/{invoice['invoice_id']}/email", json={})
    assert response.status_code == 503
