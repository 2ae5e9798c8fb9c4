"""
Items, categories, suppliers, batches, adjustments and the spreadsheet upload
"""
from datetime import date, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from app.models.inventory.inventory_model import Item
from tests.conftest import API


# ============================================
# Items
# ============================================

async def test_create_item_and_duplicate_code(client, make_item):
    item = await make_item(item_code="GLV-001", item_name="Nitrile gloves")
    assert item["item_code"] == "GLV-001"

    response = await client.post(f"{API}/inventory/items", json={
        "item_code": "GLV-001",
        "item_name": "Other gloves",
        "unit_of_measure": "box",
    })
    assert response.status_code == 400
    assert "already exists" in response.json()["detail"]


async def test_get_missing_item(client):
    response = await client.get(f"{API}/inventory/items/999")
    assert response.status_code == 404
    assert response.json()["detail"] == "Inventory item not found"


async def test_update_item(client, make_item):
    item = await make_item()
    response = await client.put(
        f"{API}/inventory/items/{item['item_id']}",
        json={"item_name": "Renamed", "reorder_level": 20}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Inventory item updated successfully"
    assert body["data"]["item_name"] == "Renamed"
    assert body["data"]["reorder_level"] == 20


async def test_list_items_low_stock_filter(client, make_item, make_batch):
    stocked = await make_item(reorder_level=5)
    await make_batch(stocked["item_id"], qty=50)
    short = await make_item(reorder_level=5)
    await make_batch(short["item_id"], qty=3)

    response = await client.get(f"{API}/inventory/items", params={"low_stock": "true"})
    assert response.status_code == 200
    codes = [row["item_code"] for row in response.json()["data"]]
    assert short["item_code"] in codes
    assert stocked["item_code"] not in codes


async def test_list_items_pagination_meta(client, make_item):
    for _ in range(3):
        await make_item()

    response = await client.get(f"{API}/inventory/items", params={"page": 1, "limit": 2})
    body = response.json()
    assert len(body["data"]) == 2
    assert body["pagination"]["total"] == 3
    assert body["pagination"]["pages"] == 2


async def test_categories(client):
    response = await client.post(f"{API}/inventory/categories", json={"category_name": "Consumables"})
    assert response.status_code == 201

    response = await client.get(f"{API}/inventory/categories")
    assert [c["category_name"] for c in response.json()["data"]] == ["Consumables"]


# ============================================
# Suppliers
# ============================================

async def test_supplier_name_is_unique(client, make_supplier):
    await make_supplier(supplier_name="Dental Depot")

    response = await client.post(f"{API}/inventory/suppliers", json={"supplier_name": "dental depot"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Supplier with this name already exists"


async def test_supplier_in_use_cannot_be_deleted(client, make_supplier, make_item):
    supplier = await make_supplier()
    await make_item(supplier_id=supplier["supplier_id"])

    response = await client.delete(f"{API}/inventory/suppliers/{supplier['supplier_id']}")
    assert response.status_code == 400
    assert response.json()["detail"] == (
        "Cannot delete supplier that is being used in inventory or stock records"
    )


async def test_delete_unused_supplier(client, make_supplier):
    supplier = await make_supplier()

    response = await client.delete(f"{API}/inventory/suppliers/{supplier['supplier_id']}")
    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Supplier deleted successfully"}

    response = await client.get(f"{API}/inventory/suppliers/{supplier['supplier_id']}")
    assert response.status_code == 404


async def test_supplier_blank_email_is_accepted(client):
    response = await client.post(f"{API}/inventory/suppliers", json={
        "supplier_name": "No Email Supplies", "email": ""
    })
    assert response.status_code == 201
    assert response.json()["data"]["email"] is None


# ============================================
# Batches and adjustments
# ============================================

async def test_duplicate_batch_for_item(client, make_item, make_batch):
    item = await make_item()
    await make_batch(item["item_id"], batch_no="LOT-1")

    response = await client.post(f"{API}/inventory/batches", json={
        "item_id": item["item_id"], "batch_no": "LOT-1", "qty_available": 1
    })
    assert response.status_code == 400
    assert response.json()["detail"] == "Batch already exists for this item"


async def test_batch_quantity_update_writes_correction(client, make_item, make_batch):
    item = await make_item()
    batch = await make_batch(item["item_id"], qty=10)

    response = await client.put(f"{API}/inventory/batches/{batch['batch_id']}", json={"qty_available": 7})
    assert response.status_code == 200
    assert response.json()["data"]["qty_available"] == 7

    response = await client.get(f"{API}/inventory/stock-adjustments", params={"batch_id": batch["batch_id"]})
    rows = response.json()["data"]
    assert len(rows) == 1
    assert rows[0]["adjustment_type"] == "Correction"
    assert rows[0]["reason"] == "Batch quantity update"
    assert rows[0]["old_qty"] == 10
    assert rows[0]["new_qty"] == 7
    assert rows[0]["qty_change"] == -3


async def test_batch_with_stock_cannot_be_deleted(client, make_item, make_batch):
    item = await make_item()
    batch = await make_batch(item["item_id"], qty=2)

    response = await client.delete(f"{API}/inventory/batches/{batch['batch_id']}")
    assert response.status_code == 400

    await client.put(f"{API}/inventory/batches/{batch['batch_id']}", json={"qty_available": 0})
    response = await client.delete(f"{API}/inventory/batches/{batch['batch_id']}")
    assert response.status_code == 200


async def test_stock_adjustment_sets_absolute_quantity(client, make_item, make_batch):
    item = await make_item()
    batch = await make_batch(item["item_id"], qty=10)

    response = await client.post(f"{API}/inventory/stock-adjustments", json={
        "batch_id": batch["batch_id"],
        "new_qty": 4,
        "adjustment_type": "Damage",
        "reason": "Water damage",
    })
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["adjustment"]["old_qty"] == 10
    assert data["adjustment"]["new_qty"] == 4
    assert data["updated_batch"]["qty_available"] == 4


async def test_stock_adjustment_rejects_negative(client, make_item, make_batch):
    item = await make_item()
    batch = await make_batch(item["item_id"])

    response = await client.post(f"{API}/inventory/stock-adjustments", json={
        "batch_id": batch["batch_id"], "new_qty": -1
    })
    assert response.status_code == 400
    assert response.json()["detail"] == "New quantity cannot be negative"


async def test_expiry_filter(client, make_item, make_batch):
    item = await make_item()
    today = date.today()
    expired = await make_batch(item["item_id"], expiry_date=(today - timedelta(days=1)).isoformat())
    soon = await make_batch(item["item_id"], expiry_date=(today + timedelta(days=10)).isoformat())
    good = await make_batch(item["item_id"], expiry_date=(today + timedelta(days=90)).isoformat())

    async def ids(flt):
        response = await client.get(f"{API}/inventory/batches", params={"expiry_filter": flt})
        return {row["batch_id"] for row in response.json()["data"]}

    assert await ids("expired") == {expired["batch_id"]}
    assert await ids("expiring-soon") == {soon["batch_id"]}
    assert await ids("good") == {good["batch_id"]}


async def test_available_batches_skip_empty(client, make_item, make_batch):
    item = await make_item()
    full = await make_batch(item["item_id"], qty=5)
    await make_batch(item["item_id"], qty=0)

    response = await client.get(f"{API}/inventory/available-batches", params={"item_id": item["item_id"]})
    assert [b["batch_id"] for b in response.json()["data"]] == [full["batch_id"]]


# ============================================
# Spreadsheet upload
# ============================================

async def test_batch_upload_reports_failed_rows(client, make_supplier):
    supplier = await make_supplier()
    category = (await client.post(
        f"{API}/inventory/categories", json={"category_name": "Upload"}
    )).json()["data"]

    row = {
        "item_code": "UP-1",
        "item_name": "Uploaded item",
        "category_id": category["category_id"],
        "supplier_id": supplier["supplier_id"],
        "unit_of_measure": "pcs",
        "batch_no": "UPL-1",
        "qty_available": 12,
    }
    response = await client.post(f"{API}/inventory/batch-upload", json={
        "items": [row, {"item_code": "UP-2"}]
    })
    assert response.status_code == 200
    body = response.json()
    assert body["success"] == 1
    assert body["failed"] == 1
    assert body["errors"][0]["row"] == 3
    assert body["errors"][0]["item_code"] == "UP-2"

    # A second upload of the same batch adds quantity
    await client.post(f"{API}/inventory/batch-upload", json={"items": [row]})
    response = await client.get(f"{API}/inventory/items", params={"search": "Uploaded"})
    assert response.json()["data"][0]["total_available"] == 24


async def test_dashboard_stats_shape(client, make_item):
    await make_item()
    response = await client.get(f"{API}/inventory/dashboard/stats")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["totalItems"] == 1
    assert set(data) >= {"lowStockItems", "totalSuppliers", "pendingOrders", "recentActivities"}


# ============================================
# Item references
# ============================================

async def test_item_category_and_supplier_must_exist(client, make_item):
    base = {"item_code": "REF-1", "item_name": "Referenced", "unit_of_measure": "pcs"}

    response = await client.post(f"{API}/inventory/items", json={**base, "category_id": 9999})
    assert response.status_code == 404
    assert response.json()["detail"] == "Category not found"

    response = await client.post(f"{API}/inventory/items", json={**base, "supplier_id": 8888})
    assert response.status_code == 404
    assert response.json()["detail"] == "Supplier not found"

    item = await make_item()
    response = await client.put(f"{API}/inventory/items/{item['item_id']}", json={"supplier_id": 8888})
    assert response.status_code == 404

    response = await client.get(f"{API}/inventory/items", params={"search": "Referenced"})
    assert response.json()["pagination"]["total"] == 0


async def test_batch_upload_row_with_unknown_category(client, make_supplier):
    supplier = await make_supplier()
    response = await client.post(f"{API}/inventory/batch-upload", json={"items": [{
        "item_code": "UP-9",
        "item_name": "Orphan",
        "category_id": 9999,
        "supplier_id": supplier["supplier_id"],
        "unit_of_measure": "pcs",
    }]})
    body = response.json()
    assert body["failed"] == 1
    assert body["errors"][0]["error"] == "Category not found"


async def test_sqlite_enforces_foreign_keys(db_session):
    db_session.add(Item(item_code="FK-1", item_name="Orphan", unit_of_measure="pcs", category_id=9999))
    with pytest.raises(IntegrityError):
        await db_session.flush()
    await db_session.rollback()


# ============================================
# Catalogue
# ============================================

async def test_item_catalog_search_and_order(client, make_item):
    category = (await client.post(
        f"{API}/inventory/categories", json={"category_name": "Restoratives"}
    )).json()["data"]
    await make_item(item_code="ZNC-1", item_name="Zinc cement")
    await make_item(item_code="CMP-1", item_name="Alpha composite", category_id=category["category_id"])

    response = await client.get(f"{API}/inventory/item-catalog")
    assert [r["item_name"] for r in response.json()["data"]] == ["Alpha composite", "Zinc cement"]

    response = await client.get(f"{API}/inventory/item-catalog", params={"search": "cmp"})
    rows = response.json()["data"]
    assert [r["item_code"] for r in rows] == ["CMP-1"]
    assert rows[0]["category_name"] == "Restoratives"

    response = await client.get(
        f"{API}/inventory/item-catalog", params={"category_id": category["category_id"]}
    )
    assert response.json()["pagination"]["total"] == 1


# ============================================
# Alerts and reports
# ============================================

async def _expiry_batches(make_item, make_batch):
    item = await make_item(item_name="Lidocaine")
    today = date.today()
    for batch_no, days, qty in [
        ("FAR", 200, 5),
        ("SOON", 10, 5),
        ("LATER", 45, 5),
        ("OLD", -3, 5),
        ("OLD-EMPTY", -8, 0),
    ]:
        await make_batch(
            item["item_id"], qty=qty, batch_no=batch_no,
            expiry_date=(today + timedelta(days=days)).isoformat()
        )
    return item


async def test_batch_alerts_by_severity(client, make_item, make_batch):
    await _expiry_batches(make_item, make_batch)

    response = await client.get(f"{API}/inventory/dashboard/batch-alerts")
    assert response.status_code == 200
    alerts = response.json()["data"]
    assert [a["batch_no"] for a in alerts] == ["OLD", "SOON", "LATER"]
    assert [a["status"] for a in alerts] == ["expired", "expiring-soon", "good"]
    assert [a["days_left"] for a in alerts] == [-3, 10, 45]


async def test_expiry_report_window(client, make_item, make_batch):
    await _expiry_batches(make_item, make_batch)

    response = await client.get(f"{API}/inventory/reports/expiry")
    rows = response.json()["data"]
    assert [r["batch_no"] for r in rows] == ["OLD", "SOON"]
    assert [r["days_until_expiry"] for r in rows] == [-3, 10]

    response = await client.get(f"{API}/inventory/reports/expiry", params={"days": 60})
    assert [r["batch_no"] for r in response.json()["data"]] == ["OLD", "SOON", "LATER"]


async def test_low_stock_report_by_shortfall(client, make_item, make_batch):
    short = await make_item(item_name="Short", reorder_level=10)
    await make_batch(short["item_id"], qty=2)
    await make_item(item_name="Empty", reorder_level=5)
    stocked = await make_item(item_name="Stocked", reorder_level=1)
    await make_batch(stocked["item_id"], qty=50)

    response = await client.get(f"{API}/inventory/reports/low-stock")
    rows = response.json()["data"]
    assert [r["item_name"] for r in rows] == ["Short", "Empty"]
    assert [r["shortfall"] for r in rows] == [8, 5]
    assert rows[0]["current_stock"] == 2
    assert rows[0]["minimum_stock"] == 10


async def test_purchase_history_receiving_status(client, make_supplier, make_item):
    supplier = await make_supplier()
    full, partial, pending = await make_item(), await make_item(), await make_item()

    po = (await client.post(f"{API}/inventory/purchase-orders", json={
        "supplier_id": supplier["supplier_id"],
        "created_by": "Office",
        "items": [
            {"item_id": full["item_id"], "quantity_ordered": 10, "unit_cost": 5},
            {"item_id": partial["item_id"], "quantity_ordered": 4, "unit_cost": 20},
            {"item_id": pending["item_id"], "quantity_ordered": 6, "unit_cost": 1},
        ],
    })).json()["data"]

    response = await client.post(f"{API}/inventory/receive-delivery", json={
        "po_id": po["po_id"],
        "supplier_id": supplier["supplier_id"],
        "date_received": date.today().isoformat(),
        "received_by": "Front desk",
        "items": [
            {"item_id": full["item_id"], "batch_no": "PH-1", "qty_received": 10, "unit_cost": 5},
            {"item_id": partial["item_id"], "batch_no": "PH-2", "qty_received": 1, "unit_cost": 20},
        ],
    })
    assert response.status_code == 201, response.text

    response = await client.get(f"{API}/inventory/reports/purchase-history")
    rows = {r["item_code"]: r for r in response.json()["data"]}

    assert rows[full["item_code"]]["receiving_status"] == "Completed"
    assert rows[partial["item_code"]]["receiving_status"] == "Partially Received"
    assert rows[partial["item_code"]]["quantity_received"] == 1
    assert rows[partial["item_code"]]["ordered_total"] == 80.0
    assert rows[partial["item_code"]]["received_total"] == 20.0
    assert rows[pending["item_code"]]["receiving_status"] == "Pending"
    assert rows[pending["item_code"]]["status"] == "Received"


async def test_item_list_pdf(client, make_item):
    await make_item()
    response = await client.get(f"{API}/inventory/reports/items.pdf")
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")
