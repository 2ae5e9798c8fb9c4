"""
Purchase Order Service
Business logic for purchase orders and their line items
"""
import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.inventory.inventory_model import Item, Supplier
from app.models.purchasing.purchase_order_model import PurchaseOrder, PurchaseOrderItem
from app.schemas.purchase_order_schemas import (
    PurchaseOrderCreate, PurchaseOrderUpdate, PurchaseOrderItemCreate,
    PurchaseOrderCreated, PurchaseOrderSummary, PurchaseOrderDetail, PurchaseOrderItemDetail
)
from app.utils.pagination import Paginator, PaginationParams, PaginatedResponse
from app.utils.reference_numbers import generate_po_number

logger = logging.getLogger(__name__)

PO_INSERT_ATTEMPTS = 3


class PurchaseOrderService:
    """Service for purchase order management"""

    @staticmethod
    async def _validate_items(db: AsyncSession, items: List[PurchaseOrderItemCreate]) -> None:
        item_ids = {i.item_id for i in items}
        result = await db.execute(select(Item.item_id).where(Item.item_id.in_(item_ids)))
        found = set(result.scalars().all())

        if len(found) != len(item_ids):
            missing = sorted(item_ids - found)
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Some items not found: {missing}"
            )

    @staticmethod
    def _build_lines(items: List[PurchaseOrderItemCreate]) -> tuple:
        """Line rows and their total (Σ qty × cost)"""
        lines = []
        total = Decimal("0")
        for item in items:
            subtotal = Decimal(str(item.unit_cost)) * item.quantity_ordered
            total += subtotal
            lines.append(PurchaseOrderItem(
                item_id=item.item_id,
                quantity_ordered=item.quantity_ordered,
                unit_cost=item.unit_cost,
                subtotal=subtotal,
                remarks=item.remarks,
            ))
        return lines, total

    # ============================================
    # Purchase Order CRUD
    # ============================================

    @staticmethod
    async def create_purchase_order(db: AsyncSession, po_data: PurchaseOrderCreate) -> PurchaseOrderCreated:
        """
        Create a purchase order with its line items

        The PO number is generated per attempt; a unique-constraint
        clash from a concurrent insert is retried a few times before
        giving up with 409.
        """
        supplier = (await db.execute(
            select(Supplier).where(Supplier.supplier_id == po_data.supplier_id)
        )).scalar_one_or_none()
        if not supplier:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Supplier not found"
            )

        await PurchaseOrderService._validate_items(db, po_data.items)

        today = date.today()

        for attempt in range(1, PO_INSERT_ATTEMPTS + 1):
            po_number = await generate_po_number(db, today)
            lines, total = PurchaseOrderService._build_lines(po_data.items)

            po = PurchaseOrder(
                po_number=po_number,
                supplier_id=po_data.supplier_id,
                order_date=today,
                expected_delivery_date=po_data.expected_delivery_date,
                status=po_data.status,
                total_amount=total,
                remarks=po_data.remarks,
                created_by=po_data.created_by,
                items=lines,
            )

            try:
                async with db.begin_nested():
                    db.add(po)
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                logger.warning(f"PO number {po_number} clashed (attempt {attempt}): {str(e.orig)}")
                continue

            logger.info(f"Purchase order {po.po_number} created (id={po.po_id}, total={total})")
            return PurchaseOrderCreated(po_id=po.po_id, po_number=po.po_number)

        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Duplicate purchase order number. Please try again."
        )

    @staticmethod
    async def get_purchase_order(db: AsyncSession, po_id: int, lock: bool = False) -> PurchaseOrder:
        query = (
            select(PurchaseOrder)
            .options(
                selectinload(PurchaseOrder.items).selectinload(PurchaseOrderItem.item),
                selectinload(PurchaseOrder.supplier)
            )
            .where(PurchaseOrder.po_id == po_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update()

        po = (await db.execute(query)).scalar_one_or_none()
        if not po:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Purchase order not found"
            )
        return po

    @staticmethod
    def build_detail(po: PurchaseOrder) -> PurchaseOrderDetail:
        return PurchaseOrderDetail(
            po_id=po.po_id,
            po_number=po.po_number,
            supplier_id=po.supplier_id,
            supplier_name=po.supplier.supplier_name if po.supplier else None,
            order_date=po.order_date,
            expected_delivery_date=po.expected_delivery_date,
            status=po.status,
            total_amount=po.total_amount,
            remarks=po.remarks,
            created_by=po.created_by,
            created_at=po.created_at,
            updated_at=po.updated_at,
            items=[
                PurchaseOrderItemDetail(
                    poi_id=line.poi_id,
                    item_id=line.item_id,
                    item_code=line.item.item_code if line.item else None,
                    item_name=line.item.item_name if line.item else None,
                    quantity_ordered=line.quantity_ordered,
                    unit_cost=line.unit_cost,
                    subtotal=line.subtotal,
                    remarks=line.remarks,
                )
                for line in po.items
            ],
        )

    @staticmethod
    async def get_purchase_order_detail(db: AsyncSession, po_id: int) -> PurchaseOrderDetail:
        po = await PurchaseOrderService.get_purchase_order(db, po_id)
        return PurchaseOrderService.build_detail(po)

    @staticmethod
    async def list_purchase_orders(
        db: AsyncSession,
        pagination: PaginationParams,
        search: Optional[str] = None,
        supplier_id: Optional[int] = None,
        po_status: Optional[str] = None
    ) -> PaginatedResponse[PurchaseOrderSummary]:
        counts = (
            select(
                PurchaseOrderItem.po_id.label("po_id"),
                func.count(PurchaseOrderItem.poi_id).label("items_count")
            )
            .group_by(PurchaseOrderItem.po_id)
            .subquery()
        )

        query = (
            select(PurchaseOrder, Supplier.supplier_name, counts.c.items_count)
            .outerjoin(Supplier, PurchaseOrder.supplier_id == Supplier.supplier_id)
            .outerjoin(counts, counts.c.po_id == PurchaseOrder.po_id)
        )

        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    PurchaseOrder.po_number.ilike(pattern),
                    Supplier.supplier_name.ilike(pattern)
                )
            )
        if supplier_id:
            query = query.where(PurchaseOrder.supplier_id == supplier_id)
        if po_status:
            query = query.where(PurchaseOrder.status == po_status)

        query = query.order_by(PurchaseOrder.order_date.desc(), PurchaseOrder.po_id.desc())

        def to_summary(row) -> PurchaseOrderSummary:
            po, supplier_name, items_count = row
            return PurchaseOrderSummary(
                po_id=po.po_id,
                po_number=po.po_number,
                supplier_id=po.supplier_id,
                supplier_name=supplier_name,
                order_date=po.order_date,
                expected_delivery_date=po.expected_delivery_date,
                status=po.status,
                total_amount=po.total_amount,
                items_count=int(items_count or 0),
                created_at=po.created_at,
                updated_at=po.updated_at,
            )

        return await Paginator(db).paginate(query, pagination, transform=to_summary)

    @staticmethod
    async def update_purchase_order(
        db: AsyncSession,
        po_id: int,
        po_data: PurchaseOrderUpdate
    ) -> PurchaseOrderDetail:
        """Header update; sent items replace the existing lines"""
        po = await PurchaseOrderService.get_purchase_order(db, po_id, lock=True)

        if po.is_locked:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot modify a Received or Cancelled purchase order"
            )

        changes = po_data.model_dump(exclude_unset=True, exclude={'items'})

        if 'supplier_id' in changes and changes['supplier_id'] is not None:
            supplier = (await db.execute(
                select(Supplier.supplier_id).where(Supplier.supplier_id == changes['supplier_id'])
            )).first()
            if not supplier:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Supplier not found"
                )

        if po_data.items is not None:
            await PurchaseOrderService._validate_items(db, po_data.items)

        async with db.begin_nested():
            for field, value in changes.items():
                setattr(po, field, value)

            if po_data.items is not None:
                # delete-orphan cascade removes the old lines
                po.items.clear()
                await db.flush()
                lines, total = PurchaseOrderService._build_lines(po_data.items)
                po.items.extend(lines)
                po.total_amount = total

            await db.flush()

        await db.commit()
        logger.info(f"Purchase order {po.po_number} updated")
        return await PurchaseOrderService.get_purchase_order_detail(db, po_id)

    @staticmethod
    async def delete_purchase_order(db: AsyncSession, po_id: int) -> PurchaseOrder:
        po = await PurchaseOrderService.get_purchase_order(db, po_id)

        if po.status == 'Received':
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot delete a Received purchase order"
            )

        async with db.begin_nested():
            await db.delete(po)
        await db.commit()

        logger.info(f"Purchase order {po.po_number} deleted")
        return po
