"""
Inventory Report Service
Dashboard figures, expiry and stock alerts, purchase history
"""
import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import List

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.models.inventory.inventory_model import Item, Category, Supplier
from app.models.inventory.stock_model import StockBatch, StockIn, StockInHeader, StockOut, StockOutHeader
from app.models.purchasing.purchase_order_model import PurchaseOrder, PurchaseOrderItem
from app.schemas.inventory_schemas import (
    RecentActivity, BatchAlert, ExpiryReportRow, LowStockReportRow, PurchaseHistoryRow
)
from app.services.inventory.batch_service import expiry_status
from app.services.inventory.item_service import stock_totals_subquery

logger = logging.getLogger(__name__)
settings = get_settings()

REPORT_LIMIT = 10
SEVERITY = {'expired': 0, 'expiring-soon': 1, 'good': 2}


class InventoryReportService:
    """Read-only aggregates for the admin dashboard and reports"""

    # ============================================
    # Dashboard
    # ============================================

    @staticmethod
    async def dashboard_stats(db: AsyncSession) -> dict:
        totals = stock_totals_subquery()

        total_items = (await db.execute(select(func.count(Item.item_id)))).scalar() or 0

        low_stock_items = (await db.execute(
            select(func.count(Item.item_id))
            .select_from(Item)
            .outerjoin(totals, totals.c.item_id == Item.item_id)
            .where(func.coalesce(totals.c.total_available, 0) <= Item.reorder_level)
        )).scalar() or 0

        total_suppliers = (await db.execute(select(func.count(Supplier.supplier_id)))).scalar() or 0

        pending_orders = (await db.execute(
            select(func.count(PurchaseOrder.po_id)).where(PurchaseOrder.status == 'Pending')
        )).scalar() or 0

        return {
            "totalItems": total_items,
            "lowStockItems": low_stock_items,
            "totalSuppliers": total_suppliers,
            "pendingOrders": pending_orders,
            "recentActivities": [
                a.model_dump() for a in await InventoryReportService.recent_activities(db)
            ],
        }

    @staticmethod
    async def recent_activities(db: AsyncSession, days: int = 7) -> List[RecentActivity]:
        """Last stock-in and stock-out events, newest first"""
        since_date = date.today() - timedelta(days=days)
        since = datetime.now(timezone.utc) - timedelta(days=days)

        stock_ins = await db.execute(
            select(StockIn.qty_added, Item.item_name, StockIn.date_in, StockIn.created_at)
            .join(Item, StockIn.item_id == Item.item_id)
            .where(StockIn.date_in >= since_date)
            .order_by(StockIn.created_at.desc())
            .limit(REPORT_LIMIT)
        )
        stock_outs = await db.execute(
            select(StockOut.qty_released, Item.item_name, StockOutHeader.stock_out_date, StockOutHeader.released_to)
            .join(StockOutHeader, StockOut.stock_out_id == StockOutHeader.stock_out_id)
            .join(Item, StockOut.item_id == Item.item_id)
            .where(StockOutHeader.stock_out_date >= since)
            .order_by(StockOutHeader.stock_out_date.desc())
            .limit(REPORT_LIMIT)
        )

        events = [
            RecentActivity(
                type="stock_in",
                message=f"Received {qty} x {name}",
                time=created_at or datetime.combine(date_in, datetime.min.time())
            )
            for qty, name, date_in, created_at in stock_ins.all()
        ]
        events.extend(
            RecentActivity(
                type="stock_out",
                message=f"Released {qty} x {name} to {released_to}",
                time=when
            )
            for qty, name, when, released_to in stock_outs.all()
        )

        def sort_key(event: RecentActivity):
            when = event.time
            if when is not None and when.tzinfo is not None:
                when = when.replace(tzinfo=None)
            return when or datetime.min

        events.sort(key=sort_key, reverse=True)
        return events[:REPORT_LIMIT]

    @staticmethod
    async def batch_alerts(db: AsyncSession) -> List[BatchAlert]:
        """Stocked batches expiring within the alert window, most urgent first"""
        today = date.today()
        window_end = today + timedelta(days=settings.EXPIRY_ALERT_WINDOW_DAYS)

        result = await db.execute(
            select(StockBatch, Item.item_name)
            .join(Item, StockBatch.item_id == Item.item_id)
            .where(
                StockBatch.qty_available > 0,
                StockBatch.expiry_date.is_not(None),
                StockBatch.expiry_date <= window_end
            )
            .order_by(StockBatch.expiry_date.asc())
        )

        alerts = [
            BatchAlert(
                batch_id=batch.batch_id,
                batch_no=batch.batch_no,
                item_name=item_name,
                expiry_date=batch.expiry_date,
                qty_available=batch.qty_available,
                status=expiry_status(batch.expiry_date, today),
                days_left=(batch.expiry_date - today).days,
            )
            for batch, item_name in result.all()
        ]
        alerts.sort(key=lambda a: (SEVERITY[a.status], a.expiry_date))
        return alerts[:REPORT_LIMIT]

    # ============================================
    # Reports
    # ============================================

    @staticmethod
    async def expiry_report(db: AsyncSession, days: int = 30) -> List[ExpiryReportRow]:
        today = date.today()
        result = await db.execute(
            select(StockBatch, Item.item_code, Item.item_name)
            .join(Item, StockBatch.item_id == Item.item_id)
            .where(
                StockBatch.qty_available > 0,
                StockBatch.expiry_date.is_not(None),
                StockBatch.expiry_date <= today + timedelta(days=days)
            )
            .order_by(StockBatch.expiry_date.asc())
            .limit(REPORT_LIMIT)
        )
        return [
            ExpiryReportRow(
                batch_id=batch.batch_id,
                batch_no=batch.batch_no,
                item_code=item_code,
                item_name=item_name,
                expiry_date=batch.expiry_date,
                qty_available=batch.qty_available,
                days_until_expiry=(batch.expiry_date - today).days,
            )
            for batch, item_code, item_name in result.all()
        ]

    @staticmethod
    async def low_stock_report(db: AsyncSession) -> List[LowStockReportRow]:
        totals = stock_totals_subquery()
        current = func.coalesce(totals.c.total_available, 0)
        shortfall = Item.reorder_level - current

        result = await db.execute(
            select(
                Item.item_id, Item.item_code, Item.item_name, Category.category_name,
                current.label("current_stock"),
                Item.reorder_level.label("minimum_stock"),
                shortfall.label("shortfall")
            )
            .outerjoin(Category, Item.category_id == Category.category_id)
            .outerjoin(totals, totals.c.item_id == Item.item_id)
            .where(current <= Item.reorder_level)
            .order_by(shortfall.desc(), Item.item_name)
            .limit(REPORT_LIMIT)
        )
        return [LowStockReportRow.model_validate(dict(row._mapping)) for row in result.all()]

    @staticmethod
    async def purchase_history(db: AsyncSession, days: int = 30) -> List[PurchaseHistoryRow]:
        """
        One row per PO line with the quantity received against it.
        Received quantities come from stock-in lines under headers linked to the PO.
        """
        since = date.today() - timedelta(days=days)

        received = (
            select(
                StockInHeader.po_id.label("po_id"),
                StockIn.item_id.label("item_id"),
                func.coalesce(func.sum(StockIn.qty_added), 0).label("qty")
            )
            .join(StockIn, StockIn.stock_in_header_id == StockInHeader.stock_in_header_id)
            .where(StockInHeader.po_id.is_not(None))
            .group_by(StockInHeader.po_id, StockIn.item_id)
            .subquery()
        )

        result = await db.execute(
            select(
                PurchaseOrder, Supplier.supplier_name, PurchaseOrderItem,
                Item.item_code, Item.item_name,
                func.coalesce(received.c.qty, 0)
            )
            .join(PurchaseOrderItem, PurchaseOrderItem.po_id == PurchaseOrder.po_id)
            .join(Item, PurchaseOrderItem.item_id == Item.item_id)
            .outerjoin(Supplier, PurchaseOrder.supplier_id == Supplier.supplier_id)
            .outerjoin(
                received,
                (received.c.po_id == PurchaseOrder.po_id) & (received.c.item_id == PurchaseOrderItem.item_id)
            )
            .where(PurchaseOrder.order_date >= since)
            .order_by(PurchaseOrder.order_date.desc(), PurchaseOrder.po_id.desc(), PurchaseOrderItem.poi_id)
        )

        rows = []
        for po, supplier_name, line, item_code, item_name, qty_received in result.all():
            qty_received = int(qty_received or 0)
            if qty_received <= 0:
                receiving = 'Pending'
            elif qty_received < line.quantity_ordered:
                receiving = 'Partially Received'
            else:
                receiving = 'Completed'

            unit_cost = Decimal(str(line.unit_cost))
            rows.append(PurchaseHistoryRow(
                po_id=po.po_id,
                po_number=po.po_number,
                order_date=po.order_date,
                supplier_name=supplier_name,
                status=po.status,
                item_code=item_code,
                item_name=item_name,
                quantity_ordered=line.quantity_ordered,
                quantity_received=qty_received,
                unit_cost=unit_cost,
                ordered_total=unit_cost * line.quantity_ordered,
                received_total=unit_cost * qty_received,
                receiving_status=receiving,
            ))
        return rows

    @staticmethod
    async def item_stock_rows(db: AsyncSession) -> List[dict]:
        """Every item with stock on hand, for the printable item list"""
        totals = stock_totals_subquery()
        current = func.coalesce(totals.c.total_available, 0)

        result = await db.execute(
            select(
                Item.item_code, Item.item_name, Category.category_name,
                Item.unit_of_measure, Item.reorder_level,
                current.label("total_available"),
                case((current <= Item.reorder_level, True), else_=False).label("low_stock")
            )
            .outerjoin(Category, Item.category_id == Category.category_id)
            .outerjoin(totals, totals.c.item_id == Item.item_id)
            .order_by(Item.item_name)
        )
        return [dict(row._mapping) for row in result.all()]
