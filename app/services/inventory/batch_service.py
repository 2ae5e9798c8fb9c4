"""
Batch Service
Stock batches, expiry classification and stock adjustments
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy import select, or_, and_, case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.models.inventory.inventory_model import Item, Category
from app.models.inventory.stock_model import StockBatch, StockAdjustment
from app.schemas.stock_schemas import (
    StockBatchCreate, StockBatchUpdate, StockBatchResponse, StockBatchDetail,
    StockAdjustmentCreate, StockAdjustmentResponse, StockAdjustmentResult, AvailableBatch
)
from app.utils.pagination import Paginator, PaginationParams, PaginatedResponse

logger = logging.getLogger(__name__)
settings = get_settings()


def expiry_status(expiry_date: Optional[date], today: Optional[date] = None) -> str:
    """expired, expiring-soon (within the warning window) or good"""
    today = today or date.today()
    if expiry_date is None:
        return 'good'
    if expiry_date < today:
        return 'expired'
    if expiry_date <= today + timedelta(days=settings.EXPIRY_WARNING_DAYS):
        return 'expiring-soon'
    return 'good'


class BatchService:
    """Service for stock batches and quantity adjustments"""

    # ============================================
    # Batches
    # ============================================

    @staticmethod
    def _detail(batch: StockBatch, item: Item, category_name: Optional[str]) -> StockBatchDetail:
        detail = StockBatchDetail.model_validate(batch)
        detail.item_code = item.item_code
        detail.item_name = item.item_name
        detail.unit_of_measure = item.unit_of_measure
        detail.category_name = category_name
        detail.expiry_status = expiry_status(batch.expiry_date)
        return detail

    @staticmethod
    async def list_batches(
        db: AsyncSession,
        pagination: PaginationParams,
        item_id: Optional[int] = None,
        batch_no: Optional[str] = None,
        search: Optional[str] = None,
        category_id: Optional[int] = None,
        expiry_filter: Optional[str] = None
    ) -> PaginatedResponse[StockBatchDetail]:
        """
        Args:
            expiry_filter: 'expired' (before today), 'expiring-soon'
                (today through the warning window) or 'good'
                (no expiry, or beyond the window)
        """
        today = date.today()
        warn_until = today + timedelta(days=settings.EXPIRY_WARNING_DAYS)

        query = (
            select(StockBatch, Item, Category.category_name)
            .join(Item, StockBatch.item_id == Item.item_id)
            .outerjoin(Category, Item.category_id == Category.category_id)
        )

        if item_id:
            query = query.where(StockBatch.item_id == item_id)
        if batch_no:
            query = query.where(StockBatch.batch_no.ilike(f"%{batch_no}%"))
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    StockBatch.batch_no.ilike(pattern),
                    Item.item_name.ilike(pattern),
                    Item.item_code.ilike(pattern)
                )
            )
        if category_id:
            query = query.where(Item.category_id == category_id)

        if expiry_filter == 'expired':
            query = query.where(StockBatch.expiry_date < today)
        elif expiry_filter == 'expiring-soon':
            query = query.where(
                and_(StockBatch.expiry_date >= today, StockBatch.expiry_date <= warn_until)
            )
        elif expiry_filter == 'good':
            query = query.where(
                or_(StockBatch.expiry_date.is_(None), StockBatch.expiry_date > warn_until)
            )

        query = query.order_by(StockBatch.created_at.desc(), StockBatch.batch_id.desc())

        return await Paginator(db).paginate(
            query,
            pagination,
            transform=lambda row: BatchService._detail(row[0], row[1], row[2])
        )

    @staticmethod
    async def get_batch(db: AsyncSession, batch_id: int, lock: bool = False) -> StockBatch:
        query = select(StockBatch).where(StockBatch.batch_id == batch_id)
        if lock:
            query = query.with_for_update()
        batch = (await db.execute(query)).scalar_one_or_none()

        if not batch:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Stock batch not found"
            )
        return batch

    @staticmethod
    async def get_batch_detail(db: AsyncSession, batch_id: int) -> StockBatchDetail:
        result = await db.execute(
            select(StockBatch, Item, Category.category_name)
            .join(Item, StockBatch.item_id == Item.item_id)
            .outerjoin(Category, Item.category_id == Category.category_id)
            .where(StockBatch.batch_id == batch_id)
        )
        row = result.first()
        if not row:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Stock batch not found"
            )
        return BatchService._detail(row[0], row[1], row[2])

    @staticmethod
    async def _ensure_unique(db: AsyncSession, item_id: int, batch_no: str, exclude_id: Optional[int] = None):
        query = select(StockBatch.batch_id).where(
            StockBatch.item_id == item_id,
            StockBatch.batch_no == batch_no
        )
        if exclude_id:
            query = query.where(StockBatch.batch_id != exclude_id)
        if (await db.execute(query)).first():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Batch already exists for this item"
            )

    @staticmethod
    async def create_batch(db: AsyncSession, data: StockBatchCreate) -> StockBatch:
        item = (await db.execute(select(Item).where(Item.item_id == data.item_id))).scalar_one_or_none()
        if not item:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Inventory item not found"
            )

        await BatchService._ensure_unique(db, data.item_id, data.batch_no)

        batch = StockBatch(
            item_id=data.item_id,
            batch_no=data.batch_no,
            expiry_date=data.expiry_date,
            qty_received=data.qty_available,
            qty_available=data.qty_available,
            unit_cost=data.unit_cost,
        )

        try:
            async with db.begin_nested():
                db.add(batch)
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Batch already exists for this item"
            )

        await db.refresh(batch)
        return batch

    @staticmethod
    async def update_batch(
        db: AsyncSession,
        batch_id: int,
        data: StockBatchUpdate,
        username: Optional[str] = None
    ) -> StockBatch:
        """
        Partial update. A quantity change also writes a Correction
        adjustment in the same transaction.
        """
        changes = data.model_dump(exclude_unset=True, exclude={'reason', 'adjusted_by'})

        if changes.get('qty_available') is not None and changes['qty_available'] < 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Quantity cannot be negative"
            )

        async with db.begin_nested():
            batch = await BatchService.get_batch(db, batch_id, lock=True)

            if changes.get('batch_no') and changes['batch_no'] != batch.batch_no:
                await BatchService._ensure_unique(db, batch.item_id, changes['batch_no'], exclude_id=batch_id)

            new_qty = changes.pop('qty_available', None)
            if new_qty is not None and new_qty != batch.qty_available:
                db.add(StockAdjustment(
                    batch_id=batch.batch_id,
                    old_qty=batch.qty_available,
                    new_qty=new_qty,
                    reason=data.reason or "Batch quantity update",
                    adjustment_type='Correction',
                    adjusted_by=data.adjusted_by or username,
                    adjusted_at=datetime.now(timezone.utc),
                ))
                batch.qty_available = new_qty

            for field, value in changes.items():
                setattr(batch, field, value)

        await db.commit()
        await db.refresh(batch)
        return batch

    @staticmethod
    async def delete_batch(db: AsyncSession, batch_id: int) -> StockBatch:
        batch = await BatchService.get_batch(db, batch_id)

        if batch.qty_available > 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot delete batch with remaining quantity. Set quantity to 0 first."
            )

        async with db.begin_nested():
            await db.delete(batch)
        await db.commit()
        return batch

    @staticmethod
    async def list_available(db: AsyncSession, item_id: Optional[int] = None) -> List[AvailableBatch]:
        """Batches with stock, earliest expiry first within each item"""
        query = (
            select(
                StockBatch.batch_id, StockBatch.item_id, Item.item_code, Item.item_name,
                StockBatch.batch_no, StockBatch.expiry_date, StockBatch.qty_available,
                Item.unit_of_measure
            )
            .join(Item, StockBatch.item_id == Item.item_id)
            .where(StockBatch.qty_available > 0)
        )
        if item_id:
            query = query.where(StockBatch.item_id == item_id)

        query = query.order_by(
            Item.item_name,
            case((StockBatch.expiry_date.is_(None), 1), else_=0),
            StockBatch.expiry_date.asc(),
            StockBatch.batch_no
        )

        result = await db.execute(query)
        return [AvailableBatch.model_validate(dict(row._mapping)) for row in result.all()]

    # ============================================
    # Stock Adjustments
    # ============================================

    @staticmethod
    def _adjustment_response(adj: StockAdjustment, batch: StockBatch, item_name: Optional[str]) -> StockAdjustmentResponse:
        return StockAdjustmentResponse(
            adjustment_id=adj.adjustment_id,
            batch_id=adj.batch_id,
            old_qty=adj.old_qty,
            new_qty=adj.new_qty,
            qty_change=adj.qty_change,
            reason=adj.reason,
            adjustment_type=adj.adjustment_type,
            adjusted_by=adj.adjusted_by,
            adjusted_at=adj.adjusted_at,
            batch_no=batch.batch_no,
            item_id=batch.item_id,
            item_name=item_name,
        )

    @staticmethod
    async def create_adjustment(
        db: AsyncSession,
        data: StockAdjustmentCreate,
        username: Optional[str] = None
    ) -> StockAdjustmentResult:
        """Set a batch to an absolute quantity and record the change"""
        if data.new_qty < 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="New quantity cannot be negative"
            )

        async with db.begin_nested():
            batch = await BatchService.get_batch(db, data.batch_id, lock=True)

            adjustment = StockAdjustment(
                batch_id=batch.batch_id,
                old_qty=batch.qty_available,
                new_qty=data.new_qty,
                reason=data.reason,
                adjustment_type=data.adjustment_type,
                adjusted_by=data.adjusted_by or username,
                adjusted_at=datetime.now(timezone.utc),
            )
            db.add(adjustment)
            batch.qty_available = data.new_qty

        await db.commit()
        await db.refresh(batch)

        item_name = (await db.execute(
            select(Item.item_name).where(Item.item_id == batch.item_id)
        )).scalar()

        logger.info(
            f"Batch {batch.batch_id} adjusted {adjustment.old_qty} -> {adjustment.new_qty} "
            f"({adjustment.adjustment_type})"
        )

        return StockAdjustmentResult(
            adjustment=BatchService._adjustment_response(adjustment, batch, item_name),
            updated_batch=StockBatchResponse.model_validate(batch),
        )

    @staticmethod
    async def list_adjustments(
        db: AsyncSession,
        pagination: PaginationParams,
        batch_id: Optional[int] = None,
        item_id: Optional[int] = None,
        adjusted_by: Optional[str] = None,
        days: Optional[int] = 30
    ) -> PaginatedResponse[StockAdjustmentResponse]:
        query = (
            select(StockAdjustment, StockBatch, Item.item_name)
            .join(StockBatch, StockAdjustment.batch_id == StockBatch.batch_id)
            .join(Item, StockBatch.item_id == Item.item_id)
        )

        if batch_id:
            query = query.where(StockAdjustment.batch_id == batch_id)
        if item_id:
            query = query.where(StockBatch.item_id == item_id)
        if adjusted_by:
            query = query.where(StockAdjustment.adjusted_by.ilike(f"%{adjusted_by}%"))
        if days:
            since = datetime.now(timezone.utc) - timedelta(days=days)
            query = query.where(StockAdjustment.adjusted_at >= since)

        query = query.order_by(StockAdjustment.adjusted_at.desc(), StockAdjustment.adjustment_id.desc())

        return await Paginator(db).paginate(
            query,
            pagination,
            transform=lambda row: BatchService._adjustment_response(row[0], row[1], row[2])
        )

    @staticmethod
    async def get_adjustment(db: AsyncSession, adjustment_id: int) -> StockAdjustmentResponse:
        result = await db.execute(
            select(StockAdjustment, StockBatch, Item.item_name)
            .join(StockBatch, StockAdjustment.batch_id == StockBatch.batch_id)
            .join(Item, StockBatch.item_id == Item.item_id)
            .where(StockAdjustment.adjustment_id == adjustment_id)
        )
        row = result.first()
        if not row:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Stock adjustment not found"
            )
        return BatchService._adjustment_response(row[0], row[1], row[2])
