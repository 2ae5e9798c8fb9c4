"""
Item Service
Item catalogue, categories and spreadsheet batch upload
"""
import logging
from datetime import date
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.inventory.inventory_model import Item, Category, Supplier
from app.models.inventory.stock_model import StockBatch, StockIn
from app.schemas.inventory_schemas import (
    ItemCreate, ItemUpdate, ItemListEntry, ItemDetail, ItemOption,
    CategoryCreate, BatchUploadRow, BatchUploadResult, BatchUploadError
)
from app.services.inventory.supplier_service import SupplierService
from app.utils.pagination import Paginator, PaginationParams, PaginatedResponse

logger = logging.getLogger(__name__)

BATCH_UPLOAD_REQUIRED = ('item_code', 'item_name', 'category_id', 'unit_of_measure', 'supplier_id')


def stock_totals_subquery():
    """item_id -> total qty_available across batches"""
    return (
        select(
            StockBatch.item_id.label("item_id"),
            func.coalesce(func.sum(StockBatch.qty_available), 0).label("total_available")
        )
        .group_by(StockBatch.item_id)
        .subquery()
    )


class ItemService:
    """Service for the item catalogue"""

    # ============================================
    # Item Listing
    # ============================================

    @staticmethod
    async def list_items(
        db: AsyncSession,
        pagination: PaginationParams,
        search: Optional[str] = None,
        category_id: Optional[int] = None,
        low_stock: bool = False
    ) -> PaginatedResponse[ItemListEntry]:
        """
        Items with category, supplier and stock on hand

        Args:
            search: Matches item_name or description (case-insensitive)
            category_id: Restrict to one category
            low_stock: Only items whose total stock is at or below reorder_level
        """
        totals = stock_totals_subquery()
        total_available = func.coalesce(totals.c.total_available, 0)

        query = (
            select(
                Item,
                Category.category_name,
                Supplier.supplier_name,
                total_available.label("total_available")
            )
            .outerjoin(Category, Item.category_id == Category.category_id)
            .outerjoin(Supplier, Item.supplier_id == Supplier.supplier_id)
            .outerjoin(totals, totals.c.item_id == Item.item_id)
        )

        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    Item.item_name.ilike(pattern),
                    Item.description.ilike(pattern)
                )
            )

        if category_id:
            query = query.where(Item.category_id == category_id)

        if low_stock:
            query = query.where(total_available <= Item.reorder_level)

        query = query.order_by(Item.created_at.desc(), Item.item_id.desc())

        def to_entry(row) -> ItemListEntry:
            item, category_name, supplier_name, available = row
            entry = ItemListEntry.model_validate(item)
            entry.category_name = category_name
            entry.supplier_name = supplier_name
            entry.total_available = int(available or 0)
            return entry

        return await Paginator(db).paginate(query, pagination, transform=to_entry)

    @staticmethod
    async def get_item(db: AsyncSession, item_id: int) -> Item:
        result = await db.execute(select(Item).where(Item.item_id == item_id))
        item = result.scalar_one_or_none()

        if not item:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Inventory item not found"
            )
        return item

    @staticmethod
    async def get_item_detail(db: AsyncSession, item_id: int) -> ItemDetail:
        """Item with supplier contact fields and stock on hand"""
        totals = stock_totals_subquery()
        result = await db.execute(
            select(
                Item,
                Category.category_name,
                Supplier.supplier_name,
                Supplier.contact_person,
                Supplier.phone,
                func.coalesce(totals.c.total_available, 0)
            )
            .outerjoin(Category, Item.category_id == Category.category_id)
            .outerjoin(Supplier, Item.supplier_id == Supplier.supplier_id)
            .outerjoin(totals, totals.c.item_id == Item.item_id)
            .where(Item.item_id == item_id)
        )
        row = result.first()

        if not row:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Inventory item not found"
            )

        item, category_name, supplier_name, contact_person, phone, available = row
        detail = ItemDetail.model_validate(item)
        detail.category_name = category_name
        detail.supplier_name = supplier_name
        detail.contact_person = contact_person
        detail.supplier_phone = phone
        detail.total_available = int(available or 0)
        return detail

    # ============================================
    # Item CRUD
    # ============================================

    @staticmethod
    async def _ensure_code_free(db: AsyncSession, item_code: str, exclude_id: Optional[int] = None):
        query = select(Item.item_id).where(Item.item_code == item_code)
        if exclude_id:
            query = query.where(Item.item_id != exclude_id)
        if (await db.execute(query)).first():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Item code '{item_code}' already exists"
            )

    @staticmethod
    async def _ensure_references(
        db: AsyncSession,
        category_id: Optional[int],
        supplier_id: Optional[int]
    ) -> None:
        """404 when the category or supplier an item points at does not exist"""
        if category_id is not None:
            found = (await db.execute(
                select(Category.category_id).where(Category.category_id == category_id)
            )).first()
            if not found:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Category not found"
                )
        if supplier_id is not None:
            await SupplierService.get_supplier(db, supplier_id)

    @staticmethod
    async def create_item(db: AsyncSession, item_data: ItemCreate) -> Item:
        await ItemService._ensure_code_free(db, item_data.item_code)
        await ItemService._ensure_references(db, item_data.category_id, item_data.supplier_id)

        item = Item(**item_data.model_dump())

        try:
            async with db.begin_nested():
                db.add(item)
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.warning(f"Item insert rejected: {str(e.orig)}")
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Item code '{item_data.item_code}' already exists"
            )

        await db.refresh(item)
        logger.info(f"Item {item.item_code} created (id={item.item_id})")
        return item

    @staticmethod
    async def update_item(db: AsyncSession, item_id: int, item_data: ItemUpdate) -> Item:
        item = await ItemService.get_item(db, item_id)
        changes = item_data.model_dump(exclude_unset=True)

        if 'item_code' in changes and changes['item_code'] != item.item_code:
            await ItemService._ensure_code_free(db, changes['item_code'], exclude_id=item_id)
        await ItemService._ensure_references(db, changes.get('category_id'), changes.get('supplier_id'))

        async with db.begin_nested():
            for field, value in changes.items():
                setattr(item, field, value)
        await db.commit()
        await db.refresh(item)
        return item

    # ============================================
    # Catalogue and Options
    # ============================================

    @staticmethod
    async def list_catalog(
        db: AsyncSession,
        pagination: PaginationParams,
        search: Optional[str] = None,
        category_id: Optional[int] = None
    ) -> PaginatedResponse[ItemListEntry]:
        """Catalogue view: search by name or code, ordered by name"""
        totals = stock_totals_subquery()
        query = (
            select(
                Item,
                Category.category_name,
                Supplier.supplier_name,
                func.coalesce(totals.c.total_available, 0)
            )
            .outerjoin(Category, Item.category_id == Category.category_id)
            .outerjoin(Supplier, Item.supplier_id == Supplier.supplier_id)
            .outerjoin(totals, totals.c.item_id == Item.item_id)
        )

        if search:
            pattern = f"%{search}%"
            query = query.where(or_(Item.item_name.ilike(pattern), Item.item_code.ilike(pattern)))
        if category_id:
            query = query.where(Item.category_id == category_id)

        query = query.order_by(Item.item_name)

        def to_entry(row) -> ItemListEntry:
            item, category_name, supplier_name, available = row
            entry = ItemListEntry.model_validate(item)
            entry.category_name = category_name
            entry.supplier_name = supplier_name
            entry.total_available = int(available or 0)
            return entry

        return await Paginator(db).paginate(query, pagination, transform=to_entry)

    @staticmethod
    async def list_options(db: AsyncSession) -> List[ItemOption]:
        result = await db.execute(
            select(
                Item.item_id, Item.item_code, Item.item_name,
                Item.category_id, Category.category_name
            )
            .outerjoin(Category, Item.category_id == Category.category_id)
            .order_by(Item.item_name)
        )
        return [ItemOption.model_validate(dict(row._mapping)) for row in result.all()]

    # ============================================
    # Categories
    # ============================================

    @staticmethod
    async def list_categories(db: AsyncSession) -> List[Category]:
        result = await db.execute(select(Category).order_by(Category.category_name))
        return list(result.scalars().all())

    @staticmethod
    async def create_category(db: AsyncSession, data: CategoryCreate) -> Category:
        existing = await db.execute(
            select(Category).where(func.lower(Category.category_name) == data.category_name.lower())
        )
        if existing.scalar_one_or_none():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Category already exists"
            )

        category = Category(category_name=data.category_name)
        async with db.begin_nested():
            db.add(category)
        await db.commit()
        await db.refresh(category)
        return category

    # ============================================
    # Batch Upload
    # ============================================

    @staticmethod
    async def _upload_row(db: AsyncSession, row: BatchUploadRow, today: date) -> None:
        """Upsert one spreadsheet row: item, then batch and stock-in when stock is given"""
        await ItemService._ensure_references(db, row.category_id, row.supplier_id)

        result = await db.execute(
            select(Item).where(Item.item_code == row.item_code).with_for_update()
        )
        item = result.scalar_one_or_none()

        item_fields = {
            'item_name': row.item_name,
            'category_id': row.category_id,
            'supplier_id': row.supplier_id,
            'unit_of_measure': row.unit_of_measure,
            'reorder_level': row.reorder_level or 0,
            'storage_location': row.storage_location,
        }

        if item:
            for field, value in item_fields.items():
                setattr(item, field, value)
        else:
            item = Item(item_code=row.item_code, **item_fields)
            db.add(item)
        await db.flush()

        if not row.batch_no or not row.qty_available or row.qty_available <= 0:
            return

        result = await db.execute(
            select(StockBatch)
            .where(StockBatch.item_id == item.item_id, StockBatch.batch_no == row.batch_no)
            .with_for_update()
        )
        batch = result.scalar_one_or_none()

        if batch:
            batch.qty_available += row.qty_available
            batch.qty_received += row.qty_available
            if row.expiry_date:
                batch.expiry_date = row.expiry_date
            if row.unit_cost is not None:
                batch.unit_cost = row.unit_cost
        else:
            batch = StockBatch(
                item_id=item.item_id,
                batch_no=row.batch_no,
                expiry_date=row.expiry_date,
                qty_received=row.qty_available,
                qty_available=row.qty_available,
                unit_cost=row.unit_cost or 0,
            )
            db.add(batch)
        await db.flush()

        db.add(StockIn(
            item_id=item.item_id,
            batch_id=batch.batch_id,
            supplier_id=row.supplier_id,
            qty_added=row.qty_available,
            date_in=today,
            remarks="Batch Upload",
        ))
        await db.flush()

    @staticmethod
    async def batch_upload(db: AsyncSession, rows: List[BatchUploadRow]) -> BatchUploadResult:
        """
        Import spreadsheet rows in one transaction.

        Each row runs in its own savepoint; a failing row is reported
        with its spreadsheet row number (index + 2, after the header)
        and does not undo the rows around it.
        """
        result = BatchUploadResult()
        today = date.today()

        for index, row in enumerate(rows):
            row_no = index + 2
            missing = [f for f in BATCH_UPLOAD_REQUIRED if getattr(row, f) in (None, "")]
            if missing:
                result.failed += 1
                result.errors.append(BatchUploadError(
                    row=row_no,
                    item_code=row.item_code or "",
                    error="Missing required fields"
                ))
                continue

            try:
                async with db.begin_nested():
                    await ItemService._upload_row(db, row, today)
                result.success += 1
            except (IntegrityError, HTTPException, ValueError) as e:
                message = str(e.orig) if isinstance(e, IntegrityError) else str(getattr(e, 'detail', e))
                logger.warning(f"Batch upload row {row_no} ({row.item_code}) failed: {message}")
                result.failed += 1
                result.errors.append(BatchUploadError(
                    row=row_no,
                    item_code=row.item_code or "",
                    error=message
                ))

        await db.commit()
        logger.info(f"Batch upload finished: {result.success} ok, {result.failed} failed")
        return result
