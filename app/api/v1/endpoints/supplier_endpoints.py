"""
Supplier Routes
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from app.core.deps import RequestContext, get_request_context
from app.db.dependencies import get_db
from app.schemas.base_schemas import APIResponse, MessageResponse
from app.schemas.inventory_schemas import SupplierCreate, SupplierUpdate, SupplierResponse, SupplierOption
from app.services.inventory.supplier_service import SupplierService
from app.services.system.activity_service import log_request_activity
from app.utils.pagination import PaginatedResponse, PaginationParams, pagination_params


router = APIRouter(prefix="/inventory", tags=["Suppliers"])

MODULE = "inventory"


@router.get("/suppliers", response_model=PaginatedResponse[SupplierResponse])
async def list_suppliers(
    search: Optional[str] = Query(None, description="Name, contact person or email"),
    pagination: PaginationParams = Depends(pagination_params()),
    db: AsyncSession = Depends(get_db)
):
    return await SupplierService.list_suppliers(db, pagination, search)


@router.get("/supplier-options", response_model=APIResponse[List[SupplierOption]])
async def supplier_options(db: AsyncSession = Depends(get_db)):
    return APIResponse(data=await SupplierService.list_options(db))


@router.get("/suppliers/{supplier_id}", response_model=APIResponse[SupplierResponse])
async def get_supplier(supplier_id: int, db: AsyncSession = Depends(get_db)):
    supplier = await SupplierService.get_supplier(db, supplier_id)
    return APIResponse(data=SupplierResponse.model_validate(supplier))


@router.post("/suppliers", response_model=APIResponse[SupplierResponse], status_code=status.HTTP_201_CREATED)
async def create_supplier(
    supplier_data: SupplierCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a new supplier

    **Errors**:
    - 400: a supplier with this name already exists
    """
    supplier = await SupplierService.create_supplier(db, supplier_data)
    await log_request_activity(db, ctx, "create", MODULE, {
        "supplier_id": supplier.supplier_id, "supplier_name": supplier.supplier_name
    })
    return APIResponse(
        data=SupplierResponse.model_validate(supplier),
        message="Supplier created successfully"
    )


@router.put("/suppliers/{supplier_id}", response_model=APIResponse[SupplierResponse])
async def update_supplier(
    supplier_id: int,
    supplier_data: SupplierUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    supplier = await SupplierService.update_supplier(db, supplier_id, supplier_data)
    await log_request_activity(db, ctx, "update", MODULE, {
        "supplier_id": supplier_id, "supplier_name": supplier.supplier_name
    })
    return APIResponse(
        data=SupplierResponse.model_validate(supplier),
        message="Supplier updated successfully"
    )


@router.delete("/suppliers/{supplier_id}", response_model=MessageResponse)
async def delete_supplier(
    supplier_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    supplier = await SupplierService.delete_supplier(db, supplier_id)
    await log_request_activity(db, ctx, "delete", MODULE, {
        "supplier_id": supplier_id, "supplier_name": supplier.supplier_name
    })
    return MessageResponse(message="Supplier deleted successfully")
