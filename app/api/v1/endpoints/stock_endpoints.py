"""
Stock Routes
Batches, stock adjustments, stock-in, receive-delivery and stock-out
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Literal, Optional

from app.core.deps import RequestContext, get_request_context
from app.db.dependencies import get_db
from app.schemas.base_schemas import APIResponse, MessageResponse
from app.schemas.stock_schemas import (
    StockBatchCreate, StockBatchUpdate, StockBatchResponse, StockBatchDetail, AvailableBatch,
    StockAdjustmentCreate, StockAdjustmentResponse, StockAdjustmentResult,
    StockInCreate, StockInResponse,
    ReceiveDeliveryCreate, ReceiveDeliveryResult, ReceiveDeliveryHeader, ReceiveDeliveryDetail,
    StockOutTransactionCreate, StockOutTransactionResult, StockOutTransactionSummary,
    StockOutTransactionDetail, LegacyStockOutCreate, StockOutRecord, TreatmentStockUsageResponse
)
from app.services.inventory.batch_service import BatchService
from app.services.inventory.stock_service import StockService
from app.services.system.activity_service import log_request_activity
from app.utils.pagination import PaginatedResponse, PaginationParams, pagination_params


router = APIRouter(prefix="/inventory", tags=["Stock"])

MODULE = "inventory"


# ============================================
# Batches
# ============================================

@router.get("/batches", response_model=PaginatedResponse[StockBatchDetail])
async def list_batches(
    item_id: Optional[int] = Query(None),
    batch_no: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Item name, item code or batch number"),
    category_id: Optional[int] = Query(None),
    expiry_filter: Optional[Literal['expired', 'expiring-soon', 'good']] = Query(None),
    pagination: PaginationParams = Depends(pagination_params(50)),
    db: AsyncSession = Depends(get_db)
):
    """
    List stock batches

    **expiry_filter**:
    - expired: expiry before today
    - expiring-soon: expiry within the warning window
    - good: no expiry or beyond the window
    """
    return await BatchService.list_batches(
        db, pagination, item_id, batch_no, search, category_id, expiry_filter
    )


@router.get("/available-batches", response_model=APIResponse[List[AvailableBatch]])
async def available_batches(
    item_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """Batches with stock, earliest expiry first within each item"""
    return APIResponse(data=await BatchService.list_available(db, item_id))


@router.get("/batches/{batch_id}", response_model=APIResponse[StockBatchDetail])
async def get_batch(batch_id: int, db: AsyncSession = Depends(get_db)):
    return APIResponse(data=await BatchService.get_batch_detail(db, batch_id))


@router.post("/batches", response_model=APIResponse[StockBatchResponse], status_code=status.HTTP_201_CREATED)
async def create_batch(
    data: StockBatchCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    batch = await BatchService.create_batch(db, data)
    await log_request_activity(db, ctx, "create", MODULE, {
        "batch_id": batch.batch_id, "item_id": batch.item_id, "batch_no": batch.batch_no
    })
    return APIResponse(
        data=StockBatchResponse.model_validate(batch),
        message="Stock batch created successfully"
    )


@router.put("/batches/{batch_id}", response_model=APIResponse[StockBatchResponse])
async def update_batch(
    batch_id: int,
    data: StockBatchUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    batch = await BatchService.update_batch(db, batch_id, data, ctx.username)
    await log_request_activity(db, ctx, "update", MODULE, {
        "batch_id": batch_id, "fields": sorted(data.model_dump(exclude_unset=True))
    })
    return APIResponse(
        data=StockBatchResponse.model_validate(batch),
        message="Stock batch updated successfully"
    )


@router.delete("/batches/{batch_id}", response_model=MessageResponse)
async def delete_batch(
    batch_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    batch = await BatchService.delete_batch(db, batch_id)
    await log_request_activity(db, ctx, "delete", MODULE, {
        "batch_id": batch_id, "batch_no": batch.batch_no
    })
    return MessageResponse(message="Stock batch deleted successfully")


# ============================================
# Stock adjustments
# ============================================

@router.post(
    "/stock-adjustments",
    response_model=APIResponse[StockAdjustmentResult],
    status_code=status.HTTP_201_CREATED
)
async def create_stock_adjustment(
    data: StockAdjustmentCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    """
    Set a batch quantity and record the adjustment

    **Errors**:
    - 400: new quantity is negative
    - 404: batch not found
    """
    result = await BatchService.create_adjustment(db, data, ctx.username)
    await log_request_activity(db, ctx, "create", MODULE, {
        "adjustment_id": result.adjustment.adjustment_id,
        "batch_id": data.batch_id,
        "old_qty": result.adjustment.old_qty,
        "new_qty": result.adjustment.new_qty,
    })
    return APIResponse(data=result, message="Stock adjustment recorded successfully")


@router.get("/stock-adjustments", response_model=PaginatedResponse[StockAdjustmentResponse])
async def list_stock_adjustments(
    batch_id: Optional[int] = Query(None),
    item_id: Optional[int] = Query(None),
    adjusted_by: Optional[str] = Query(None),
    days: Optional[int] = Query(30, ge=1, le=3650),
    pagination: PaginationParams = Depends(pagination_params(50)),
    db: AsyncSession = Depends(get_db)
):
    return await BatchService.list_adjustments(db, pagination, batch_id, item_id, adjusted_by, days)


@router.get("/stock-adjustments/{adjustment_id}", response_model=APIResponse[StockAdjustmentResponse])
async def get_stock_adjustment(adjustment_id: int, db: AsyncSession = Depends(get_db)):
    return APIResponse(data=await BatchService.get_adjustment(db, adjustment_id))


# ============================================
# Stock-in
# ============================================

@router.get("/stock-in", response_model=PaginatedResponse[StockInResponse])
async def list_stock_in(
    search: Optional[str] = Query(None, description="Item, batch or supplier"),
    supplier_id: Optional[int] = Query(None),
    pagination: PaginationParams = Depends(pagination_params()),
    db: AsyncSession = Depends(get_db)
):
    return await StockService.list_stock_in(db, pagination, search, supplier_id)


@router.get("/stock-in/{stock_in_id}", response_model=APIResponse[StockInResponse])
async def get_stock_in(stock_in_id: int, db: AsyncSession = Depends(get_db)):
    return APIResponse(data=await StockService.get_stock_in(db, stock_in_id))


@router.post("/stock-in", response_model=APIResponse[StockInResponse], status_code=status.HTTP_201_CREATED)
async def create_stock_in(
    data: StockInCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    record = await StockService.create_stock_in(db, data)
    await log_request_activity(db, ctx, "create", MODULE, {
        "stock_in_id": record.stock_in_id, "item_id": data.item_id, "qty_added": data.qty_added
    })
    return APIResponse(data=record, message="Stock in recorded successfully")


# ============================================
# Receive delivery
# ============================================

@router.post(
    "/receive-delivery",
    response_model=APIResponse[ReceiveDeliveryResult],
    status_code=status.HTTP_201_CREATED
)
async def receive_delivery(
    data: ReceiveDeliveryCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    """
    Receive a delivery in one transaction

    Creates the header, increments or creates each batch, writes the
    stock-in lines and marks the linked purchase order Received.
    Any failing line rolls back the whole delivery.
    """
    result = await StockService.receive_delivery(db, data)
    await log_request_activity(db, ctx, "create", MODULE, {
        "stock_in_id": result.stock_in_id,
        "stock_in_no": result.stock_in_no,
        "po_id": data.po_id,
        "total_items": result.total_items,
    })
    return APIResponse(data=result, message="Delivery received successfully")


@router.get("/receive-delivery", response_model=PaginatedResponse[ReceiveDeliveryHeader])
async def list_deliveries(
    search: Optional[str] = Query(None, description="Stock-in number, supplier or receiver"),
    supplier_id: Optional[int] = Query(None),
    po_id: Optional[int] = Query(None),
    pagination: PaginationParams = Depends(pagination_params()),
    db: AsyncSession = Depends(get_db)
):
    return await StockService.list_deliveries(db, pagination, search, supplier_id, po_id)


@router.get("/receive-delivery/{stock_in_id}", response_model=APIResponse[ReceiveDeliveryDetail])
async def get_delivery(stock_in_id: int, db: AsyncSession = Depends(get_db)):
    return APIResponse(data=await StockService.get_delivery(db, stock_in_id))


# ============================================
# Stock-out transactions
# ============================================

@router.post(
    "/stock-out-transaction",
    response_model=APIResponse[StockOutTransactionResult],
    status_code=status.HTTP_201_CREATED
)
async def create_stock_out_transaction(
    data: StockOutTransactionCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    """
    Release stock from one or more batches in one transaction

    **Errors**:
    - 404: batch not found
    - 400: insufficient quantity in a batch (nothing is released)
    """
    result = await StockService.create_stock_out_transaction(db, data)
    await log_request_activity(db, ctx, "create", MODULE, {
        "stock_out_id": result.stock_out_id,
        "reference_no": result.reference_no,
        "total_items": result.total_items,
        "is_treatment_usage": result.is_treatment_usage,
    })
    return APIResponse(
        data=result,
        message=f"Stock-out transaction created successfully. Reference: {result.reference_no}"
    )


@router.get("/stock-out-transactions", response_model=PaginatedResponse[StockOutTransactionSummary])
async def list_stock_out_transactions(
    search: Optional[str] = Query(None, description="Reference or recipient"),
    released_to: Optional[str] = Query(None),
    pagination: PaginationParams = Depends(pagination_params()),
    db: AsyncSession = Depends(get_db)
):
    return await StockService.list_stock_out_transactions(db, pagination, search, released_to)


@router.get("/stock-out-transactions/{stock_out_id}", response_model=APIResponse[StockOutTransactionDetail])
async def get_stock_out_transaction(stock_out_id: int, db: AsyncSession = Depends(get_db)):
    return APIResponse(data=await StockService.get_stock_out_transaction(db, stock_out_id))


@router.get("/treatment-stock-usage", response_model=PaginatedResponse[TreatmentStockUsageResponse])
async def list_treatment_usage(
    charge_id: Optional[int] = Query(None),
    patient_name: Optional[str] = Query(None),
    dentist_name: Optional[str] = Query(None),
    days: Optional[int] = Query(30, ge=1, le=3650),
    pagination: PaginationParams = Depends(pagination_params()),
    db: AsyncSession = Depends(get_db)
):
    return await StockService.list_treatment_usage(
        db, pagination, charge_id, patient_name, dentist_name, days
    )


# ============================================
# Stock-out lines (single-line form)
# ============================================

@router.get("/stock-out", response_model=PaginatedResponse[StockOutRecord])
async def list_stock_out(
    search: Optional[str] = Query(None),
    item_id: Optional[int] = Query(None),
    usage_type: Optional[str] = Query(None),
    pagination: PaginationParams = Depends(pagination_params()),
    db: AsyncSession = Depends(get_db)
):
    return await StockService.list_stock_out(db, pagination, search, item_id, usage_type)


@router.get("/stock-out/{line_id}", response_model=APIResponse[StockOutRecord])
async def get_stock_out(line_id: int, db: AsyncSession = Depends(get_db)):
    return APIResponse(data=await StockService.get_stock_out(db, line_id))


@router.post("/stock-out", response_model=APIResponse[StockOutRecord], status_code=status.HTTP_201_CREATED)
async def create_stock_out(
    data: LegacyStockOutCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    record = await StockService.create_legacy_stock_out(db, data, ctx.username)
    await log_request_activity(db, ctx, "create", MODULE, {
        "stock_out_line_id": record.id, "batch_id": data.batch_id, "qty_released": data.qty_released
    })
    return APIResponse(data=record, message="Stock out recorded successfully")
