"""
Purchase Order API Routes
FastAPI endpoints for purchase orders
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.deps import RequestContext, get_request_context
from app.db.dependencies import get_db
from app.schemas.base_schemas import APIResponse, MessageResponse
from app.schemas.purchase_order_schemas import (
    POStatus,
    PurchaseOrderCreate, PurchaseOrderUpdate, PurchaseOrderCreated,
    PurchaseOrderSummary, PurchaseOrderDetail
)
from app.services.inventory.purchase_order_service import PurchaseOrderService
from app.services.system.activity_service import log_request_activity
from app.utils.pagination import PaginatedResponse, PaginationParams, pagination_params

router = APIRouter(prefix="/inventory/purchase-orders", tags=["Purchase Orders"])

MODULE = "inventory"


@router.post(
    "",
    response_model=APIResponse[PurchaseOrderCreated],
    status_code=status.HTTP_201_CREATED
)
async def create_purchase_order(
    po_data: PurchaseOrderCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a purchase order with its items

    The PO number is generated as PO-YYYYMMDD-NNN, counting the
    orders already placed that day.

    **Errors**:
    - 404: unknown supplier or item
    """
    created = await PurchaseOrderService.create_purchase_order(db, po_data)
    await log_request_activity(db, ctx, "create", MODULE, {
        "po_id": created.po_id,
        "po_number": created.po_number,
        "supplier_id": po_data.supplier_id,
        "items": len(po_data.items),
    })
    return APIResponse(data=created, message="Purchase order created successfully")


@router.get("", response_model=PaginatedResponse[PurchaseOrderSummary])
async def list_purchase_orders(
    search: Optional[str] = Query(None, description="PO number or supplier name"),
    supplier_id: Optional[int] = Query(None),
    po_status: Optional[POStatus] = Query(None, alias="status"),
    pagination: PaginationParams = Depends(pagination_params()),
    db: AsyncSession = Depends(get_db)
):
    return await PurchaseOrderService.list_purchase_orders(db, pagination, search, supplier_id, po_status)


@router.get("/{po_id}", response_model=APIResponse[PurchaseOrderDetail])
async def get_purchase_order(po_id: int, db: AsyncSession = Depends(get_db)):
    return APIResponse(data=await PurchaseOrderService.get_purchase_order_detail(db, po_id))


@router.put("/{po_id}", response_model=APIResponse[PurchaseOrderDetail])
async def update_purchase_order(
    po_id: int,
    po_data: PurchaseOrderUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    """Update header fields; a supplied item list replaces the existing items"""
    detail = await PurchaseOrderService.update_purchase_order(db, po_id, po_data)
    await log_request_activity(db, ctx, "update", MODULE, {
        "po_id": po_id,
        "po_number": detail.po_number,
        "fields": sorted(po_data.model_dump(exclude_unset=True)),
    })
    return APIResponse(data=detail, message="Purchase order updated successfully")


@router.delete("/{po_id}", response_model=MessageResponse)
async def delete_purchase_order(
    po_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    po = await PurchaseOrderService.delete_purchase_order(db, po_id)
    await log_request_activity(db, ctx, "delete", MODULE, {
        "po_id": po_id, "po_number": po.po_number
    })
    return MessageResponse(message="Purchase order deleted successfully")
