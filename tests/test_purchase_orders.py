from datetime import date

from tests.conftest import API


async def _po_payload(make_supplier, make_item, **overrides):
    supplier = await make_supplier()
    first = await make_item()
    second = await make_item()
    payload = {
        "supplier_id": supplier["supplier_id"],
        "created_by": "Office",
        "items": [
            {"item_id": first["item_id"], "quantity_ordered": 10, "unit_cost": 12.5},
            {"item_id": second["item_id"], "quantity_ordered": 3, "unit_cost": 100},
        ],
    }
    payload.update(overrides)
    return payload


async def test_po_numbers_run_per_day(client, make_supplier, make_item):
    payload = await _po_payload(make_supplier, make_item)
    stamp = date.today().strftime('%Y%m%d')

    first = await client.post(f"{API}/inventory/purchase-orders", json=payload)
    second = await client.post(f"{API}/inventory/purchase-orders", json=payload)

    assert first.status_code == 201, first.text
    assert first.json()["data"]["po_number"] == f"PO-{stamp}-001"
    assert second.json()["data"]["po_number"] == f"PO-{stamp}-002"


async def test_po_total_and_lines(client, make_supplier, make_item):
    payload = await _po_payload(make_supplier, make_item)
    created = (await client.post(f"{API}/inventory/purchase-orders", json=payload)).json()["data"]

    response = await client.get(f"{API}/inventory/purchase-orders/{created['po_id']}")
    po = response.json()["data"]
    assert po["status"] == "Pending"
    assert po["total_amount"] == 425.0
    assert [line["subtotal"] for line in po["items"]] == [125.0, 300.0]


async def test_po_unknown_supplier_or_item(client, make_supplier, make_item):
    payload = await _po_payload(make_supplier, make_item)

    response = await client.post(f"{API}/inventory/purchase-orders", json={**payload, "supplier_id": 9999})
    assert response.status_code == 404

    bad_items = [{"item_id": 9999, "quantity_ordered": 1, "unit_cost": 1}]
    response = await client.post(f"{API}/inventory/purchase-orders", json={**payload, "items": bad_items})
    assert response.status_code == 404


async def test_po_update_replaces_lines(client, make_supplier, make_item):
    payload = await _po_payload(make_supplier, make_item)
    created = (await client.post(f"{API}/inventory/purchase-orders", json=payload)).json()["data"]
    item_id = payload["items"][0]["item_id"]

    response = await client.put(f"{API}/inventory/purchase-orders/{created['po_id']}", json={
        "status": "Ordered",
        "items": [{"item_id": item_id, "quantity_ordered": 2, "unit_cost": 40}],
    })
    assert response.status_code == 200, response.text
    po = response.json()["data"]
    assert po["status"] == "Ordered"
    assert po["total_amount"] == 80.0
    assert len(po["items"]) == 1


async def test_po_status_filter(client, make_supplier, make_item):
    payload = await _po_payload(make_supplier, make_item)
    await client.post(f"{API}/inventory/purchase-orders", json=payload)
    await client.post(f"{API}/inventory/purchase-orders", json={**payload, "status": "Ordered"})

    response = await client.get(f"{API}/inventory/purchase-orders", params={"status": "Ordered"})
    rows = response.json()["data"]
    assert len(rows) == 1
    assert rows[0]["items_count"] == 2


async def test_received_po_is_locked(client, make_supplier, make_item):
    payload = await _po_payload(make_supplier, make_item)
    created = (await client.post(f"{API}/inventory/purchase-orders", json=payload)).json()["data"]
    po_id = created["po_id"]

    await client.put(f"{API}/inventory/purchase-orders/{po_id}", json={"status": "Received"})

    response = await client.put(f"{API}/inventory/purchase-orders/{po_id}", json={"remarks": "late"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot modify a Received or Cancelled purchase order"

    response = await client.delete(f"{API}/inventory/purchase-orders/{po_id}")
    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot delete a Received purchase order"


async def test_delete_pending_po(client, make_supplier, make_item):
    payload = await _po_payload(make_supplier, make_item)
    created = (await client.post(f"{API}/inventory/purchase-orders", json=payload)).json()["data"]

    response = await client.delete(f"{API}/inventory/purchase-orders/{created['po_id']}")
    assert response.status_code == 200

    response = await client.get(f"{API}/inventory/purchase-orders/{created['po_id']}")
    assert response.status_code == 404


async def test_po_number_clash_gives_up_after_retries(client, make_supplier, make_item, monkeypatch):
    payload = await _po_payload(make_supplier, make_item)
    existing = (await client.post(f"{API}/inventory/purchase-orders", json=payload)).json()["data"]

    calls = []

    async def taken_number(db, today=None):
        calls.append(today)
        return existing["po_number"]

    monkeypatch.setattr(
        "app.services.inventory.purchase_order_service.generate_po_number", taken_number
    )

    response = await client.post(f"{API}/inventory/purchase-orders", json=payload)
    assert response.status_code == 409
    assert response.json()["detail"] == "Duplicate purchase order number. Please try again."
    assert len(calls) == 3

    response = await client.get(f"{API}/inventory/purchase-orders")
    assert response.json()["pagination"]["total"] == 1
