"""
Supplier Service
"""
import logging
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.inventory.inventory_model import Supplier, Item
from app.models.inventory.stock_model import StockIn
from app.schemas.inventory_schemas import (
    SupplierCreate, SupplierUpdate, SupplierResponse, SupplierOption
)
from app.utils.pagination import Paginator, PaginationParams, PaginatedResponse

logger = logging.getLogger(__name__)


class SupplierService:
    """Service for supplier management"""

    @staticmethod
    async def list_suppliers(
        db: AsyncSession,
        pagination: PaginationParams,
        search: Optional[str] = None
    ) -> PaginatedResponse[SupplierResponse]:
        query = select(Supplier)

        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    Supplier.supplier_name.ilike(pattern),
                    Supplier.contact_person.ilike(pattern),
                    Supplier.email.ilike(pattern)
                )
            )

        query = query.order_by(Supplier.supplier_name)
        return await Paginator(db).paginate(query, pagination, SupplierResponse)

    @staticmethod
    async def list_options(db: AsyncSession) -> List[SupplierOption]:
        result = await db.execute(
            select(Supplier.supplier_id, Supplier.supplier_name).order_by(Supplier.supplier_name)
        )
        return [SupplierOption.model_validate(dict(row._mapping)) for row in result.all()]

    @staticmethod
    async def get_supplier(db: AsyncSession, supplier_id: int) -> Supplier:
        """Get supplier by ID"""
        result = await db.execute(select(Supplier).where(Supplier.supplier_id == supplier_id))
        supplier = result.scalar_one_or_none()

        if not supplier:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Supplier not found"
            )
        return supplier

    @staticmethod
    async def _name_taken(db: AsyncSession, name: str, exclude_id: Optional[int] = None) -> bool:
        query = select(Supplier.supplier_id).where(
            func.lower(Supplier.supplier_name) == name.lower()
        )
        if exclude_id:
            query = query.where(Supplier.supplier_id != exclude_id)
        return (await db.execute(query)).first() is not None

    @staticmethod
    async def create_supplier(db: AsyncSession, data: SupplierCreate) -> Supplier:
        if await SupplierService._name_taken(db, data.supplier_name):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Supplier with this name already exists"
            )

        supplier = Supplier(**data.model_dump())
        async with db.begin_nested():
            db.add(supplier)
        await db.commit()
        await db.refresh(supplier)

        logger.info(f"Supplier '{supplier.supplier_name}' created (id={supplier.supplier_id})")
        return supplier

    @staticmethod
    async def update_supplier(db: AsyncSession, supplier_id: int, data: SupplierUpdate) -> Supplier:
        supplier = await SupplierService.get_supplier(db, supplier_id)

        if await SupplierService._name_taken(db, data.supplier_name, exclude_id=supplier_id):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Another supplier with this name already exists"
            )

        async with db.begin_nested():
            for field, value in data.model_dump().items():
                setattr(supplier, field, value)
        await db.commit()
        await db.refresh(supplier)
        return supplier

    @staticmethod
    async def delete_supplier(db: AsyncSession, supplier_id: int) -> Supplier:
        """Suppliers referenced by items or stock-in rows cannot be deleted"""
        supplier = await SupplierService.get_supplier(db, supplier_id)

        item_refs = (await db.execute(
            select(func.count(Item.item_id)).where(Item.supplier_id == supplier_id)
        )).scalar() or 0
        stock_refs = (await db.execute(
            select(func.count(StockIn.stock_in_id)).where(StockIn.supplier_id == supplier_id)
        )).scalar() or 0

        if item_refs or stock_refs:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot delete supplier that is being used in inventory or stock records"
            )

        async with db.begin_nested():
            await db.delete(supplier)
        await db.commit()

        logger.info(f"Supplier {supplier_id} deleted")
        return supplier
