"""
Inventory Routes
Items, categories, spreadsheet upload, dashboard and inventory reports
"""
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from app.core.deps import RequestContext, get_request_context
from app.db.dependencies import get_db
from app.schemas.base_schemas import APIResponse
from app.schemas.inventory_schemas import (
    CategoryCreate, CategoryResponse,
    ItemCreate, ItemUpdate, ItemResponse, ItemListEntry, ItemDetail, ItemOption,
    BatchUploadRequest, BatchUploadResult,
    BatchAlert, ExpiryReportRow, LowStockReportRow, PurchaseHistoryRow
)
from app.services.inventory.item_service import ItemService
from app.services.inventory.report_service import InventoryReportService
from app.services.system.activity_service import log_request_activity
from app.utils.pagination import PaginatedResponse, PaginationParams, pagination_params
from app.utils.pdf_reports import render_item_list_pdf


router = APIRouter(prefix="/inventory", tags=["Inventory"])

MODULE = "inventory"


# ============================================
# Items
# ============================================

@router.get("/items", response_model=PaginatedResponse[ItemListEntry])
async def list_items(
    search: Optional[str] = Query(None, description="Item name or description"),
    category_id: Optional[int] = Query(None),
    low_stock: bool = Query(False, description="Only items at or below reorder level"),
    pagination: PaginationParams = Depends(pagination_params()),
    db: AsyncSession = Depends(get_db)
):
    """
    List inventory items with category, supplier and stock on hand

    **Query Parameters**:
    - search: case-insensitive match on name or description
    - category_id: filter by category
    - low_stock: total available <= reorder level
    """
    return await ItemService.list_items(db, pagination, search, category_id, low_stock)


@router.get("/items/{item_id}", response_model=APIResponse[ItemDetail])
async def get_item(item_id: int, db: AsyncSession = Depends(get_db)):
    return APIResponse(data=await ItemService.get_item_detail(db, item_id))


@router.post("/items", response_model=APIResponse[ItemResponse], status_code=status.HTTP_201_CREATED)
async def create_item(
    item_data: ItemCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    """
    Create an inventory item

    **Errors**:
    - 400: item_code already exists
    """
    item = await ItemService.create_item(db, item_data)
    await log_request_activity(db, ctx, "create", MODULE, {
        "item_id": item.item_id, "item_code": item.item_code, "item_name": item.item_name
    })
    return APIResponse(
        data=ItemResponse.model_validate(item),
        message="Inventory item created successfully"
    )


@router.put("/items/{item_id}", response_model=APIResponse[ItemResponse])
async def update_item(
    item_id: int,
    item_data: ItemUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    item = await ItemService.update_item(db, item_id, item_data)
    await log_request_activity(db, ctx, "update", MODULE, {
        "item_id": item_id, "fields": sorted(item_data.model_dump(exclude_unset=True))
    })
    return APIResponse(
        data=ItemResponse.model_validate(item),
        message="Inventory item updated successfully"
    )


@router.get("/item-catalog", response_model=PaginatedResponse[ItemListEntry])
async def item_catalog(
    search: Optional[str] = Query(None, description="Item name or code"),
    category_id: Optional[int] = Query(None),
    pagination: PaginationParams = Depends(pagination_params()),
    db: AsyncSession = Depends(get_db)
):
    return await ItemService.list_catalog(db, pagination, search, category_id)


@router.get("/item-options", response_model=APIResponse[List[ItemOption]])
async def item_options(db: AsyncSession = Depends(get_db)):
    """Lightweight item list for dropdowns"""
    return APIResponse(data=await ItemService.list_options(db))


# ============================================
# Categories
# ============================================

@router.get("/categories", response_model=APIResponse[List[CategoryResponse]])
async def list_categories(db: AsyncSession = Depends(get_db)):
    categories = await ItemService.list_categories(db)
    return APIResponse(data=[CategoryResponse.model_validate(c) for c in categories])


@router.post("/categories", response_model=APIResponse[CategoryResponse], status_code=status.HTTP_201_CREATED)
async def create_category(
    data: CategoryCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    category = await ItemService.create_category(db, data)
    await log_request_activity(db, ctx, "create", MODULE, {
        "category_id": category.category_id, "category_name": category.category_name
    })
    return APIResponse(
        data=CategoryResponse.model_validate(category),
        message="Category created successfully"
    )


# ============================================
# Spreadsheet upload
# ============================================

@router.post("/batch-upload", response_model=BatchUploadResult)
async def batch_upload(
    payload: BatchUploadRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    """
    Upsert items (and their batches) from spreadsheet rows

    Failing rows are reported with their spreadsheet row number
    and do not stop the rest of the upload.
    """
    result = await ItemService.batch_upload(db, payload.items)
    await log_request_activity(db, ctx, "create", MODULE, {
        "batch_upload": True, "success": result.success, "failed": result.failed
    })
    return result


# ============================================
# Dashboard
# ============================================

@router.get("/dashboard/stats")
async def dashboard_stats(db: AsyncSession = Depends(get_db)):
    """totalItems, lowStockItems, totalSuppliers, pendingOrders and recentActivities"""
    return {"success": True, "data": await InventoryReportService.dashboard_stats(db)}


@router.get("/dashboard/batch-alerts", response_model=APIResponse[List[BatchAlert]])
async def batch_alerts(db: AsyncSession = Depends(get_db)):
    return APIResponse(data=await InventoryReportService.batch_alerts(db))


# ============================================
# Reports
# ============================================

@router.get("/reports/expiry", response_model=APIResponse[List[ExpiryReportRow]])
async def expiry_report(
    days: int = Query(30, ge=1, le=3650),
    db: AsyncSession = Depends(get_db)
):
    return APIResponse(data=await InventoryReportService.expiry_report(db, days))


@router.get("/reports/low-stock", response_model=APIResponse[List[LowStockReportRow]])
async def low_stock_report(db: AsyncSession = Depends(get_db)):
    return APIResponse(data=await InventoryReportService.low_stock_report(db))


@router.get("/reports/purchase-history", response_model=APIResponse[List[PurchaseHistoryRow]])
async def purchase_history(
    days: int = Query(30, ge=1, le=3650),
    db: AsyncSession = Depends(get_db)
):
    return APIResponse(data=await InventoryReportService.purchase_history(db, days))


@router.get("/reports/items.pdf")
async def item_list_pdf(db: AsyncSession = Depends(get_db)):
    rows = await InventoryReportService.item_stock_rows(db)
    return Response(
        content=render_item_list_pdf(rows),
        media_type="application/pdf",
        headers={"Content-Disposition": 'inline; filename="inventory-items.pdf"'}
    )
