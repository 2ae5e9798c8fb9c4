"""
Deliveries, stock-in and stock-out
"""
from datetime import date

from tests.conftest import API


async def _create_po(client, supplier_id, item_id, qty=10, unit_cost=25):
    response = await client.post(f"{API}/inventory/purchase-orders", json={
        "supplier_id": supplier_id,
        "created_by": "Office",
        "items": [{"item_id": item_id, "quantity_ordered": qty, "unit_cost": unit_cost}],
    })
    assert response.status_code == 201, response.text
    return response.json()["data"]


async def _batch(client, batch_id):
    response = await client.get(f"{API}/inventory/batches/{batch_id}")
    return response.json()["data"]


# ============================================
# Receive delivery
# ============================================

async def test_receive_delivery_against_po(client, make_supplier, make_item, make_batch):
    supplier = await make_supplier()
    item = await make_item(supplier_id=supplier["supplier_id"])
    existing = await make_batch(item["item_id"], qty=5, batch_no="LOT-A")
    po = await _create_po(client, supplier["supplier_id"], item["item_id"])

    response = await client.post(f"{API}/inventory/receive-delivery", json={
        "po_id": po["po_id"],
        "supplier_id": supplier["supplier_id"],
        "date_received": date.today().isoformat(),
        "received_by": "Front desk",
        "items": [
            {"item_id": item["item_id"], "batch_no": "LOT-A", "qty_received": 10, "unit_cost": 25},
            {"item_id": item["item_id"], "batch_no": "LOT-B", "qty_received": 4, "unit_cost": 30},
        ],
    })
    assert response.status_code == 201, response.text
    result = response.json()["data"]
    assert result["stock_in_no"] == f"SI-{date.today():%Y%m%d}-001"
    assert result["total_items"] == 2
    assert result["total_amount"] == 370.0

    assert (await _batch(client, existing["batch_id"]))["qty_available"] == 15

    response = await client.get(f"{API}/inventory/purchase-orders/{po['po_id']}")
    assert response.json()["data"]["status"] == "Received"

    response = await client.get(f"{API}/inventory/receive-delivery/{result['stock_in_id']}")
    detail = response.json()["data"]
    assert detail["po_number"] == po["po_number"]
    assert [line["batch_no"] for line in detail["items"]] == ["LOT-A", "LOT-B"]


async def test_receive_delivery_numbers_increment(client, make_item):
    item = await make_item()
    payload = {
        "date_received": date.today().isoformat(),
        "received_by": "Front desk",
        "items": [{"item_id": item["item_id"], "batch_no": "LOT-1", "qty_received": 1}],
    }
    first = (await client.post(f"{API}/inventory/receive-delivery", json=payload)).json()["data"]
    second = (await client.post(f"{API}/inventory/receive-delivery", json=payload)).json()["data"]
    assert first["stock_in_no"].endswith("-001")
    assert second["stock_in_no"].endswith("-002")


async def test_receive_delivery_unknown_item_rolls_back(client, make_item):
    item = await make_item()
    response = await client.post(f"{API}/inventory/receive-delivery", json={
        "date_received": date.today().isoformat(),
        "received_by": "Front desk",
        "items": [
            {"item_id": item["item_id"], "batch_no": "LOT-1", "qty_received": 3},
            {"item_id": 9999, "batch_no": "LOT-1", "qty_received": 3},
        ],
    })
    assert response.status_code == 404

    response = await client.get(f"{API}/inventory/receive-delivery")
    assert response.json()["pagination"]["total"] == 0
    response = await client.get(f"{API}/inventory/batches", params={"item_id": item["item_id"]})
    assert response.json()["data"] == []


async def test_single_stock_in_defaults_lot_number(client, make_item):
    item = await make_item()
    today = date.today()
    response = await client.post(f"{API}/inventory/stock-in", json={
        "item_id": item["item_id"],
        "qty_added": 6,
        "date_in": today.isoformat(),
    })
    assert response.status_code == 201, response.text
    assert response.json()["data"]["batch_no"] == f"LOT-{today:%Y%m%d}"


async def test_unknown_supplier_is_rejected(client, make_item):
    item = await make_item()
    today = date.today().isoformat()

    response = await client.post(f"{API}/inventory/stock-in", json={
        "item_id": item["item_id"],
        "qty_added": 2,
        "supplier_id": 8888,
        "date_in": today,
    })
    assert response.status_code == 404
    assert response.json()["detail"] == "Supplier not found"

    response = await client.post(f"{API}/inventory/receive-delivery", json={
        "supplier_id": 8888,
        "date_received": today,
        "received_by": "Front desk",
        "items": [{"item_id": item["item_id"], "batch_no": "NOPE-1", "qty_received": 2}],
    })
    assert response.status_code == 404
    assert response.json()["detail"] == "Supplier not found"

    response = await client.get(f"{API}/inventory/receive-delivery")
    assert response.json()["pagination"]["total"] == 0


# ============================================
# Stock-out
# ============================================

async def test_stock_out_transaction(client, make_item, make_batch):
    item = await make_item()
    first = await make_batch(item["item_id"], qty=10)
    second = await make_batch(item["item_id"], qty=4)

    response = await client.post(f"{API}/inventory/stock-out-transaction", json={
        "released_to": "Dr. Reyes",
        "created_by": "Front desk",
        "items": [
            {"item_id": item["item_id"], "batch_id": first["batch_id"], "qty_released": 3},
            {"item_id": item["item_id"], "batch_id": second["batch_id"], "qty_released": 4},
        ],
    })
    assert response.status_code == 201, response.text
    body = response.json()
    result = body["data"]
    assert result["reference_no"] == f"SO-{date.today():%Y%m%d}-001"
    assert result["total_items"] == 7
    assert result["items_count"] == 2
    assert result["reference_no"] in body["message"]

    assert (await _batch(client, first["batch_id"]))["qty_available"] == 7
    assert (await _batch(client, second["batch_id"]))["qty_available"] == 0

    response = await client.get(f"{API}/inventory/stock-out-transactions/{result['stock_out_id']}")
    detail = response.json()["data"]
    assert detail["total_qty_released"] == 7
    assert {line["usage_type"] for line in detail["items"]} == {"general"}


async def test_stock_out_short_batch_releases_nothing(client, make_item, make_batch):
    item = await make_item()
    plenty = await make_batch(item["item_id"], qty=10)
    short = await make_batch(item["item_id"], qty=2)

    response = await client.post(f"{API}/inventory/stock-out-transaction", json={
        "released_to": "Dr. Reyes",
        "created_by": "Front desk",
        "items": [
            {"item_id": item["item_id"], "batch_id": plenty["batch_id"], "qty_released": 5},
            {"item_id": item["item_id"], "batch_id": short["batch_id"], "qty_released": 3},
        ],
    })
    assert response.status_code == 400
    assert response.json()["detail"] == (
        f"Insufficient quantity for batch {short['batch_id']}. Available: 2, Requested: 3"
    )

    assert (await _batch(client, plenty["batch_id"]))["qty_available"] == 10
    response = await client.get(f"{API}/inventory/stock-out-transactions")
    assert response.json()["pagination"]["total"] == 0


async def test_treatment_usage_recorded(client, make_item, make_batch):
    item = await make_item()
    batch = await make_batch(item["item_id"], qty=10)

    response = await client.post(f"{API}/inventory/stock-out-transaction", json={
        "released_to": "Dr. Reyes",
        "created_by": "Front desk",
        "is_treatment_usage": True,
        "patient_name": "Maria Santos",
        "treatment_type": "Filling",
        "items": [{"item_id": item["item_id"], "batch_id": batch["batch_id"], "qty_released": 2}],
    })
    assert response.status_code == 201, response.text

    response = await client.get(f"{API}/inventory/treatment-stock-usage")
    rows = response.json()["data"]
    assert len(rows) == 1
    assert rows[0]["qty_used"] == 2
    assert rows[0]["patient_name"] == "Maria Santos"


async def test_legacy_stock_out(client, make_item, make_batch):
    item = await make_item()
    batch = await make_batch(item["item_id"], qty=3)
    payload = {
        "item_id": item["item_id"],
        "batch_id": batch["batch_id"],
        "qty_released": 2,
        "date_out": date.today().isoformat(),
    }

    response = await client.post(f"{API}/inventory/stock-out", json=payload)
    assert response.status_code == 201, response.text
    assert response.json()["data"]["reference_no"].startswith("SO-")

    response = await client.post(f"{API}/inventory/stock-out", json=payload)
    assert response.status_code == 400
    assert response.json()["detail"] == "Insufficient quantity in batch"

    response = await client.post(f"{API}/inventory/stock-out", json={**payload, "batch_id": 9999})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid batch_id: batch does not exist"
