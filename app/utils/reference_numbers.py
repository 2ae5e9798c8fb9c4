"""
Human-readable document numbers.

PO-YYYYMMDD-NNN   purchase orders
SI-YYYYMMDD-NNN   delivery receipts (stock-in headers)
SO-YYYYMMDD-NNN   stock-out transactions
INVYYYY-MMDD-HHMMSS[-n]   invoices
"""
import logging
import time
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.purchasing.purchase_order_model import PurchaseOrder
from app.models.inventory.stock_model import StockInHeader, StockOutHeader
from app.models.billing.billing_model import Invoice

logger = logging.getLogger(__name__)

PO_MAX_ATTEMPTS = 10


async def _exists(db: AsyncSession, column, value: str) -> bool:
    result = await db.execute(select(func.count()).where(column == value))
    return (result.scalar() or 0) > 0


async def _next_daily_number(
    db: AsyncSession,
    prefix: str,
    column,
    today: Optional[date] = None
) -> str:
    """Count today's numbers with this prefix and take the next free one"""
    stamp = (today or date.today()).strftime('%Y%m%d')
    day_prefix = f"{prefix}-{stamp}-"

    result = await db.execute(
        select(func.count()).where(column.like(f"{day_prefix}%"))
    )
    seq = (result.scalar() or 0) + 1

    candidate = f"{day_prefix}{str(seq).zfill(3)}"
    while await _exists(db, column, candidate):
        seq += 1
        candidate = f"{day_prefix}{str(seq).zfill(3)}"
    return candidate


async def generate_po_number(db: AsyncSession, today: Optional[date] = None) -> str:
    """
    PO-YYYYMMDD-NNN where NNN is today's PO count plus the attempt number.
    Falls back to the last 6 digits of the epoch in milliseconds.
    """
    today = today or date.today()
    stamp = today.strftime('%Y%m%d')

    result = await db.execute(
        select(func.count(PurchaseOrder.po_id)).where(PurchaseOrder.order_date == today)
    )
    base_count = result.scalar() or 0

    for attempt in range(1, PO_MAX_ATTEMPTS + 1):
        candidate = f"PO-{stamp}-{str(base_count + attempt).zfill(3)}"
        if not await _exists(db, PurchaseOrder.po_number, candidate):
            return candidate

    fallback = f"PO-{stamp}-{str(int(time.time() * 1000))[-6:]}"
    logger.warning(f"PO number sequence exhausted for {stamp}, using {fallback}")
    return fallback


async def generate_stock_in_number(db: AsyncSession, today: Optional[date] = None) -> str:
    return await _next_daily_number(db, "SI", StockInHeader.stock_in_no, today)


async def generate_stock_out_reference(db: AsyncSession, today: Optional[date] = None) -> str:
    return await _next_daily_number(db, "SO", StockOutHeader.reference_no, today)


async def generate_invoice_code(db: AsyncSession, now: Optional[datetime] = None) -> str:
    """INV{YYYY}-{MMDD}-{HHMMSS}; a numeric suffix resolves same-second collisions"""
    now = now or datetime.now()
    base = f"INV{now.strftime('%Y')}-{now.strftime('%m%d')}-{now.strftime('%H%M%S')}"

    candidate = base
    suffix = 1
    while await _exists(db, Invoice.invoice_code, candidate):
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate
