from datetime import date, timedelta

from app.services.billing.billing_report_service import growth_percentage, window_start
from tests.conftest import API


def _range():
    today = date.today()
    return {
        "start_date": (today - timedelta(days=1)).isoformat(),
        "end_date": (today + timedelta(days=1)).isoformat(),
    }


async def _paid_invoices(client, make_invoice):
    first = await make_invoice(1000)
    second = await make_invoice(500)
    await client.post(f"{API}/billing/payments", json={
        "invoice_id": first["invoice_id"], "amount_paid": 1000, "method": "Cash"
    })
    await client.post(f"{API}/billing/payments", json={
        "invoice_id": second["invoice_id"], "amount_paid": 200, "method": "Bank Transfer"
    })


async def test_revenue_report(client, make_invoice):
    await _paid_invoices(client, make_invoice)

    response = await client.get(
        f"{API}/billing/reports/revenue", params={**_range(), "group_by": "year"}
    )
    assert response.status_code == 200, response.text
    report = response.json()["data"]
    assert report["summary"]["invoice_count"] == 2
    assert report["summary"]["total_billed"] == 1500.0
    assert report["summary"]["total_revenue"] == 1200.0
    assert report["summary"]["total_outstanding"] == 300.0
    assert sum(p["payment_count"] for p in report["periods"]) == 2


async def test_payment_method_report(client, make_invoice):
    await _paid_invoices(client, make_invoice)

    response = await client.get(f"{API}/billing/reports/payment-methods", params=_range())
    rows = response.json()["data"]
    assert [(r["method"], r["total"]) for r in rows] == [("Cash", 1000.0), ("Bank Transfer", 200.0)]


async def test_patient_stats(client, make_invoice):
    await make_invoice(100)
    response = await client.get(f"{API}/billing/reports/patient-stats", params=_range())
    assert response.json()["data"] == {"active_patients": 1, "new_patients": 1, "invoice_count": 1}


async def test_report_range_order(client):
    response = await client.get(f"{API}/billing/reports/revenue", params={
        "start_date": "2024-02-01", "end_date": "2024-01-01"
    })
    assert response.status_code == 400


async def test_growth_rate_endpoint(client):
    response = await client.get(f"{API}/billing/reports/growth-rate", params={"period": "quarter"})
    assert response.status_code == 200
    assert response.json()["data"]["growth_rate"] == 0.0


def test_growth_percentage():
    assert growth_percentage(150, 100) == 50.0
    assert growth_percentage(5, 0) == 100.0
    assert growth_percentage(0, 0) == 0.0


def test_window_start():
    assert window_start('month', date(2024, 3, 15)) == (date(2024, 3, 1), date(2024, 2, 1))
    assert window_start('quarter', date(2024, 2, 10)) == (date(2024, 1, 1), date(2023, 10, 1))
    assert window_start('week', date(2024, 3, 14)) == (date(2024, 3, 11), date(2024, 3, 4))
    assert window_start('year', date(2024, 6, 1)) == (date(2024, 1, 1), date(2023, 1, 1))
