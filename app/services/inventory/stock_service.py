"""
Stock Movement Service
Stock-in receipts, delivery receiving and stock-out transactions.

Receiving and releasing stock touch several tables; each operation runs
in a single savepoint and one commit, so a failing line leaves no trace.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.inventory.inventory_model import Item, Supplier
from app.models.inventory.stock_model import (
    StockBatch, StockIn, StockInHeader, StockOut, StockOutHeader, TreatmentStockUsage
)
from app.models.purchasing.purchase_order_model import PurchaseOrder
from app.schemas.stock_schemas import (
    StockInCreate, StockInResponse,
    ReceiveDeliveryCreate, ReceiveDeliveryResult, ReceiveDeliveryHeader,
    ReceiveDeliveryDetail, ReceiveDeliveryLine,
    StockOutTransactionCreate, StockOutTransactionResult, StockOutTransactionSummary,
    StockOutTransactionDetail, StockOutItemDetail,
    LegacyStockOutCreate, StockOutRecord, TreatmentStockUsageResponse
)
from app.services.inventory.supplier_service import SupplierService
from app.utils.pagination import Paginator, PaginationParams, PaginatedResponse
from app.utils.reference_numbers import generate_stock_in_number, generate_stock_out_reference

logger = logging.getLogger(__name__)


class StockService:
    """Service for stock receipts and releases"""

    # ============================================
    # Stock-In (single line)
    # ============================================

    @staticmethod
    def _stock_in_response(row) -> StockInResponse:
        stock_in, item_code, item_name, batch_no, expiry_date, supplier_name = row
        response = StockInResponse.model_validate(stock_in)
        response.item_code = item_code
        response.item_name = item_name
        response.batch_no = batch_no
        response.expiry_date = expiry_date
        response.supplier_name = supplier_name
        return response

    @staticmethod
    def _stock_in_query():
        return (
            select(
                StockIn, Item.item_code, Item.item_name,
                StockBatch.batch_no, StockBatch.expiry_date, Supplier.supplier_name
            )
            .join(Item, StockIn.item_id == Item.item_id)
            .outerjoin(StockBatch, StockIn.batch_id == StockBatch.batch_id)
            .outerjoin(Supplier, StockIn.supplier_id == Supplier.supplier_id)
        )

    @staticmethod
    async def list_stock_in(
        db: AsyncSession,
        pagination: PaginationParams,
        search: Optional[str] = None,
        supplier_id: Optional[int] = None
    ) -> PaginatedResponse[StockInResponse]:
        query = StockService._stock_in_query()

        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    Item.item_name.ilike(pattern),
                    Item.item_code.ilike(pattern),
                    StockBatch.batch_no.ilike(pattern),
                    Supplier.supplier_name.ilike(pattern)
                )
            )
        if supplier_id:
            query = query.where(StockIn.supplier_id == supplier_id)

        query = query.order_by(StockIn.date_in.desc(), StockIn.stock_in_id.desc())
        return await Paginator(db).paginate(query, pagination, transform=StockService._stock_in_response)

    @staticmethod
    async def get_stock_in(db: AsyncSession, stock_in_id: int) -> StockInResponse:
        result = await db.execute(
            StockService._stock_in_query().where(StockIn.stock_in_id == stock_in_id)
        )
        row = result.first()
        if not row:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Stock in record not found"
            )
        return StockService._stock_in_response(row)

    @staticmethod
    async def _receive_into_batch(
        db: AsyncSession,
        item_id: int,
        batch_no: str,
        qty: int,
        expiry_date: Optional[date],
        unit_cost: Decimal,
        header_id: Optional[int] = None
    ) -> StockBatch:
        """Increment the (item, batch_no) batch, creating it when missing"""
        result = await db.execute(
            select(StockBatch)
            .where(StockBatch.item_id == item_id, StockBatch.batch_no == batch_no)
            .with_for_update()
        )
        batch = result.scalar_one_or_none()

        if batch:
            batch.qty_available += qty
            batch.qty_received += qty
            if expiry_date and not batch.expiry_date:
                batch.expiry_date = expiry_date
        else:
            batch = StockBatch(
                item_id=item_id,
                stock_in_header_id=header_id,
                batch_no=batch_no,
                expiry_date=expiry_date,
                qty_received=qty,
                qty_available=qty,
                unit_cost=unit_cost or 0,
            )
            db.add(batch)

        await db.flush()
        return batch

    @staticmethod
    async def _require_item(db: AsyncSession, item_id: int) -> Item:
        item = (await db.execute(select(Item).where(Item.item_id == item_id))).scalar_one_or_none()
        if not item:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Inventory item {item_id} not found"
            )
        return item

    @staticmethod
    async def create_stock_in(db: AsyncSession, data: StockInCreate) -> StockInResponse:
        """Single-line receipt; the batch defaults to a dated lot number"""
        batch_no = data.batch_no or f"LOT-{data.date_in.strftime('%Y%m%d')}"

        async with db.begin_nested():
            await StockService._require_item(db, data.item_id)
            if data.supplier_id:
                await SupplierService.get_supplier(db, data.supplier_id)

            batch = await StockService._receive_into_batch(
                db, data.item_id, batch_no, data.qty_added, data.expiry_date, data.unit_cost
            )

            stock_in = StockIn(
                item_id=data.item_id,
                batch_id=batch.batch_id,
                supplier_id=data.supplier_id,
                qty_added=data.qty_added,
                date_in=data.date_in,
                remarks=data.remarks,
            )
            db.add(stock_in)
            await db.flush()

        await db.commit()
        logger.info(f"Stock in {stock_in.stock_in_id}: +{data.qty_added} on batch {batch.batch_id}")
        return await StockService.get_stock_in(db, stock_in.stock_in_id)

    # ============================================
    # Receive Delivery (multi-line)
    # ============================================

    @staticmethod
    async def receive_delivery(db: AsyncSession, data: ReceiveDeliveryCreate) -> ReceiveDeliveryResult:
        """
        Header, batches, stock-in lines and the PO status in one transaction.

        Workflow:
        1. Insert the header with the line count and Σ unit_cost × qty
        2. Increment or create each (item, batch_no) batch
        3. Insert one stock_in line per item
        4. Mark the purchase order Received
        """
        total_amount = sum(
            (Decimal(str(i.unit_cost)) * i.qty_received for i in data.items),
            Decimal("0")
        )

        try:
            async with db.begin_nested():
                stock_in_no = data.stock_in_no or await generate_stock_in_number(db, data.date_received)

                if data.supplier_id:
                    await SupplierService.get_supplier(db, data.supplier_id)

                po = None
                if data.po_id:
                    po = (await db.execute(
                        select(PurchaseOrder).where(PurchaseOrder.po_id == data.po_id).with_for_update()
                    )).scalar_one_or_none()
                    if not po:
                        raise HTTPException(
                            status_code=status.HTTP_404_NOT_FOUND,
                            detail="Purchase order not found"
                        )

                header = StockInHeader(
                    stock_in_no=stock_in_no,
                    po_id=data.po_id,
                    supplier_id=data.supplier_id,
                    date_received=data.date_received,
                    received_by=data.received_by,
                    remarks=data.remarks,
                    total_items=len(data.items),
                    total_amount=total_amount,
                )
                db.add(header)
                await db.flush()

                for line in data.items:
                    await StockService._require_item(db, line.item_id)

                    batch = await StockService._receive_into_batch(
                        db,
                        line.item_id,
                        line.batch_no,
                        line.qty_received,
                        line.expiry_date,
                        line.unit_cost,
                        header_id=header.stock_in_header_id
                    )

                    db.add(StockIn(
                        stock_in_header_id=header.stock_in_header_id,
                        item_id=line.item_id,
                        batch_id=batch.batch_id,
                        supplier_id=data.supplier_id,
                        qty_added=line.qty_received,
                        date_in=data.date_received,
                        remarks=line.remarks,
                    ))

                if po:
                    po.status = 'Received'

                await db.flush()
        except IntegrityError as e:
            await db.rollback()
            logger.warning(f"Receive delivery rejected: {str(e.orig)}")
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Stock in number already exists"
            )

        await db.commit()

        logger.info(
            f"Delivery {header.stock_in_no} received: {header.total_items} lines, total {total_amount}"
        )

        return ReceiveDeliveryResult(
            stock_in_id=header.stock_in_header_id,
            stock_in_no=header.stock_in_no,
            total_items=header.total_items,
            total_amount=total_amount,
        )

    @staticmethod
    def _delivery_query():
        return (
            select(StockInHeader, Supplier.supplier_name, PurchaseOrder.po_number)
            .outerjoin(Supplier, StockInHeader.supplier_id == Supplier.supplier_id)
            .outerjoin(PurchaseOrder, StockInHeader.po_id == PurchaseOrder.po_id)
        )

    @staticmethod
    def _delivery_header(header: StockInHeader, supplier_name, po_number) -> dict:
        return {
            "stock_in_id": header.stock_in_header_id,
            "stock_in_no": header.stock_in_no,
            "po_id": header.po_id,
            "po_number": po_number,
            "supplier_id": header.supplier_id,
            "supplier_name": supplier_name,
            "date_received": header.date_received,
            "received_by": header.received_by,
            "remarks": header.remarks,
            "total_items": header.total_items,
            "total_amount": header.total_amount,
            "created_at": header.created_at,
        }

    @staticmethod
    async def list_deliveries(
        db: AsyncSession,
        pagination: PaginationParams,
        search: Optional[str] = None,
        supplier_id: Optional[int] = None,
        po_id: Optional[int] = None
    ) -> PaginatedResponse[ReceiveDeliveryHeader]:
        query = StockService._delivery_query()

        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    StockInHeader.stock_in_no.ilike(pattern),
                    Supplier.supplier_name.ilike(pattern),
                    StockInHeader.received_by.ilike(pattern)
                )
            )
        if supplier_id:
            query = query.where(StockInHeader.supplier_id == supplier_id)
        if po_id:
            query = query.where(StockInHeader.po_id == po_id)

        query = query.order_by(StockInHeader.date_received.desc(), StockInHeader.stock_in_header_id.desc())

        return await Paginator(db).paginate(
            query,
            pagination,
            transform=lambda row: ReceiveDeliveryHeader(**StockService._delivery_header(*row))
        )

    @staticmethod
    async def get_delivery(db: AsyncSession, stock_in_id: int) -> ReceiveDeliveryDetail:
        result = await db.execute(
            StockService._delivery_query().where(StockInHeader.stock_in_header_id == stock_in_id)
        )
        row = result.first()
        if not row:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Receive delivery record not found"
            )

        lines = await db.execute(
            select(
                StockIn, Item.item_code, Item.item_name,
                StockBatch.batch_no, StockBatch.expiry_date, StockBatch.unit_cost
            )
            .join(Item, StockIn.item_id == Item.item_id)
            .outerjoin(StockBatch, StockIn.batch_id == StockBatch.batch_id)
            .where(StockIn.stock_in_header_id == stock_in_id)
            .order_by(StockIn.stock_in_id)
        )

        items = [
            ReceiveDeliveryLine(
                stock_in_id=line.stock_in_id,
                item_id=line.item_id,
                item_code=item_code,
                item_name=item_name,
                batch_id=line.batch_id,
                batch_no=batch_no,
                expiry_date=expiry_date,
                unit_cost=unit_cost,
                qty_added=line.qty_added,
                remarks=line.remarks,
            )
            for line, item_code, item_name, batch_no, expiry_date, unit_cost in lines.all()
        ]

        return ReceiveDeliveryDetail(**StockService._delivery_header(*row), items=items)

    # ============================================
    # Stock-Out Transaction (multi-line)
    # ============================================

    @staticmethod
    async def _release_from_batch(db: AsyncSession, batch_id: int, qty: int) -> StockBatch:
        batch = (await db.execute(
            select(StockBatch).where(StockBatch.batch_id == batch_id).with_for_update()
        )).scalar_one_or_none()

        if not batch:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Batch ID {batch_id} not found"
            )

        if batch.qty_available < qty:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=(
                    f"Insufficient quantity for batch {batch_id}. "
                    f"Available: {batch.qty_available}, Requested: {qty}"
                )
            )

        batch.qty_available -= qty
        return batch

    @staticmethod
    async def create_stock_out_transaction(
        db: AsyncSession,
        data: StockOutTransactionCreate
    ) -> StockOutTransactionResult:
        """
        Header, lines and batch decrements in one transaction.
        Any short or missing batch aborts the whole release.
        """
        treatment = data.is_treatment_usage
        today = date.today()

        async with db.begin_nested():
            reference_no = await generate_stock_out_reference(db, today)

            header = StockOutHeader(
                reference_no=reference_no,
                stock_out_date=datetime.now(timezone.utc),
                released_to=data.released_to,
                purpose=data.purpose,
                created_by=data.created_by,
                charge_id=data.charge_id if treatment else None,
                invoice_id=data.invoice_id if treatment else None,
            )
            db.add(header)
            await db.flush()

            usage_type = 'treatment' if treatment else 'general'

            for line in data.items:
                batch = await StockService._release_from_batch(db, line.batch_id, line.qty_released)

                if batch.item_id != line.item_id:
                    raise HTTPException(
                        status_code=status.HTTP_400_BAD_REQUEST,
                        detail=f"Batch ID {line.batch_id} does not belong to item {line.item_id}"
                    )

                db.add(StockOut(
                    stock_out_id=header.stock_out_id,
                    item_id=line.item_id,
                    batch_id=line.batch_id,
                    qty_released=line.qty_released,
                    usage_type=usage_type,
                    date_out=today,
                    remarks=line.remarks,
                ))

                if treatment:
                    db.add(TreatmentStockUsage(
                        stock_out_id=header.stock_out_id,
                        item_id=line.item_id,
                        qty_used=line.qty_released,
                        charge_id=data.charge_id,
                        invoice_id=data.invoice_id,
                        patient_name=data.patient_name,
                        dentist_name=data.dentist_name,
                        treatment_type=data.treatment_type,
                        remarks=line.remarks,
                        created_at=datetime.now(timezone.utc),
                    ))

            await db.flush()

        await db.commit()

        total_qty = sum(line.qty_released for line in data.items)
        logger.info(f"Stock-out {reference_no}: {len(data.items)} lines, {total_qty} units")

        return StockOutTransactionResult(
            stock_out_id=header.stock_out_id,
            reference_no=reference_no,
            total_items=total_qty,
            items_count=len(data.items),
            is_treatment_usage=treatment,
        )

    @staticmethod
    def _line_totals_subquery():
        return (
            select(
                StockOut.stock_out_id.label("stock_out_id"),
                func.count(StockOut.id).label("items_count"),
                func.coalesce(func.sum(StockOut.qty_released), 0).label("total_qty_released")
            )
            .group_by(StockOut.stock_out_id)
            .subquery()
        )

    @staticmethod
    def _summary(header: StockOutHeader, items_count, total_qty) -> dict:
        return {
            "stock_out_id": header.stock_out_id,
            "reference_no": header.reference_no,
            "stock_out_date": header.stock_out_date,
            "released_to": header.released_to,
            "purpose": header.purpose,
            "created_by": header.created_by,
            "charge_id": header.charge_id,
            "invoice_id": header.invoice_id,
            "items_count": int(items_count or 0),
            "total_qty_released": int(total_qty or 0),
        }

    @staticmethod
    async def list_stock_out_transactions(
        db: AsyncSession,
        pagination: PaginationParams,
        search: Optional[str] = None,
        released_to: Optional[str] = None
    ) -> PaginatedResponse[StockOutTransactionSummary]:
        totals = StockService._line_totals_subquery()
        query = (
            select(StockOutHeader, totals.c.items_count, totals.c.total_qty_released)
            .outerjoin(totals, totals.c.stock_out_id == StockOutHeader.stock_out_id)
        )

        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    StockOutHeader.reference_no.ilike(pattern),
                    StockOutHeader.released_to.ilike(pattern)
                )
            )
        if released_to:
            query = query.where(StockOutHeader.released_to.ilike(f"%{released_to}%"))

        query = query.order_by(StockOutHeader.stock_out_date.desc(), StockOutHeader.stock_out_id.desc())

        return await Paginator(db).paginate(
            query,
            pagination,
            transform=lambda row: StockOutTransactionSummary(**StockService._summary(*row))
        )

    @staticmethod
    async def get_stock_out_transaction(db: AsyncSession, stock_out_id: int) -> StockOutTransactionDetail:
        header = (await db.execute(
            select(StockOutHeader).where(StockOutHeader.stock_out_id == stock_out_id)
        )).scalar_one_or_none()

        if not header:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Stock-out transaction not found"
            )

        result = await db.execute(
            select(StockOut, Item.item_code, Item.item_name, StockBatch.batch_no, StockBatch.expiry_date)
            .join(Item, StockOut.item_id == Item.item_id)
            .outerjoin(StockBatch, StockOut.batch_id == StockBatch.batch_id)
            .where(StockOut.stock_out_id == stock_out_id)
            .order_by(StockOut.id)
        )

        items = [
            StockOutItemDetail(
                id=line.id,
                item_id=line.item_id,
                item_code=item_code,
                item_name=item_name,
                batch_id=line.batch_id,
                batch_no=batch_no,
                expiry_date=expiry_date,
                qty_released=line.qty_released,
                usage_type=line.usage_type,
                remarks=line.remarks,
            )
            for line, item_code, item_name, batch_no, expiry_date in result.all()
        ]

        return StockOutTransactionDetail(
            **StockService._summary(header, len(items), sum(i.qty_released for i in items)),
            items=items
        )

    # ============================================
    # Legacy line-level stock-out
    # ============================================

    @staticmethod
    def _stock_out_query():
        return (
            select(
                StockOut, StockOutHeader.reference_no, StockOutHeader.released_to,
                Item.item_code, Item.item_name, StockBatch.batch_no
            )
            .join(StockOutHeader, StockOut.stock_out_id == StockOutHeader.stock_out_id)
            .join(Item, StockOut.item_id == Item.item_id)
            .outerjoin(StockBatch, StockOut.batch_id == StockBatch.batch_id)
        )

    @staticmethod
    def _stock_out_record(row) -> StockOutRecord:
        line, reference_no, released_to, item_code, item_name, batch_no = row
        return StockOutRecord(
            id=line.id,
            stock_out_id=line.stock_out_id,
            reference_no=reference_no,
            item_id=line.item_id,
            item_code=item_code,
            item_name=item_name,
            batch_id=line.batch_id,
            batch_no=batch_no,
            qty_released=line.qty_released,
            usage_type=line.usage_type,
            date_out=line.date_out,
            remarks=line.remarks,
            released_to=released_to,
        )

    @staticmethod
    async def list_stock_out(
        db: AsyncSession,
        pagination: PaginationParams,
        search: Optional[str] = None,
        item_id: Optional[int] = None,
        usage_type: Optional[str] = None
    ) -> PaginatedResponse[StockOutRecord]:
        query = StockService._stock_out_query()

        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    Item.item_name.ilike(pattern),
                    Item.item_code.ilike(pattern),
                    StockBatch.batch_no.ilike(pattern),
                    StockOutHeader.reference_no.ilike(pattern)
                )
            )
        if item_id:
            query = query.where(StockOut.item_id == item_id)
        if usage_type:
            query = query.where(StockOut.usage_type == usage_type)

        query = query.order_by(StockOut.date_out.desc(), StockOut.id.desc())
        return await Paginator(db).paginate(query, pagination, transform=StockService._stock_out_record)

    @staticmethod
    async def get_stock_out(db: AsyncSession, line_id: int) -> StockOutRecord:
        row = (await db.execute(StockService._stock_out_query().where(StockOut.id == line_id))).first()
        if not row:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Stock out record not found"
            )
        return StockService._stock_out_record(row)

    @staticmethod
    async def create_legacy_stock_out(
        db: AsyncSession,
        data: LegacyStockOutCreate,
        username: Optional[str] = None
    ) -> StockOutRecord:
        """Single-line release; wrapped in its own header"""
        if not data.batch_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid batch_id: batch does not exist"
            )

        async with db.begin_nested():
            batch = (await db.execute(
                select(StockBatch).where(StockBatch.batch_id == data.batch_id).with_for_update()
            )).scalar_one_or_none()

            if not batch or batch.item_id != data.item_id:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Invalid batch_id: batch does not exist"
                )
            if batch.qty_available < data.qty_released:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Insufficient quantity in batch"
                )

            reference_no = await generate_stock_out_reference(db, data.date_out)
            header = StockOutHeader(
                reference_no=reference_no,
                stock_out_date=datetime.now(timezone.utc),
                released_to=username or "unknown",
                purpose=data.remarks,
                created_by=username or "unknown",
            )
            db.add(header)
            await db.flush()

            line = StockOut(
                stock_out_id=header.stock_out_id,
                item_id=data.item_id,
                batch_id=data.batch_id,
                qty_released=data.qty_released,
                usage_type=data.usage_type,
                date_out=data.date_out,
                remarks=data.remarks,
            )
            db.add(line)
            batch.qty_available -= data.qty_released
            await db.flush()

        await db.commit()
        return await StockService.get_stock_out(db, line.id)

    # ============================================
    # Treatment Usage
    # ============================================

    @staticmethod
    async def list_treatment_usage(
        db: AsyncSession,
        pagination: PaginationParams,
        charge_id: Optional[int] = None,
        patient_name: Optional[str] = None,
        dentist_name: Optional[str] = None,
        days: Optional[int] = 30
    ) -> PaginatedResponse[TreatmentStockUsageResponse]:
        query = (
            select(TreatmentStockUsage, StockOutHeader.reference_no, Item.item_name)
            .join(StockOutHeader, TreatmentStockUsage.stock_out_id == StockOutHeader.stock_out_id)
            .join(Item, TreatmentStockUsage.item_id == Item.item_id)
        )

        if charge_id:
            query = query.where(TreatmentStockUsage.charge_id == charge_id)
        if patient_name:
            query = query.where(TreatmentStockUsage.patient_name.ilike(f"%{patient_name}%"))
        if dentist_name:
            query = query.where(TreatmentStockUsage.dentist_name.ilike(f"%{dentist_name}%"))
        if days:
            since = datetime.now(timezone.utc) - timedelta(days=days)
            query = query.where(TreatmentStockUsage.created_at >= since)

        query = query.order_by(TreatmentStockUsage.created_at.desc(), TreatmentStockUsage.id.desc())

        def to_response(row) -> TreatmentStockUsageResponse:
            usage, reference_no, item_name = row
            response = TreatmentStockUsageResponse.model_validate(usage)
            response.reference_no = reference_no
            response.item_name = item_name
            return response

        return await Paginator(db).paginate(query, pagination, transform=to_response)
