"""
Invoice arithmetic.

Every figure the API reports about an invoice (subtotal, adjustments,
payments, balance, status) is computed here and stored on the invoice
row by recalculate_invoice. Views, PDFs and e-mails read the stored values.
"""
import logging
from dataclasses import dataclass, asdict
from datetime import date
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable, Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.models.billing.billing_model import (
    Invoice, TreatmentCharge, AdjustmentLog, Payment, InstallmentPayment, Installment
)

logger = logging.getLogger(__name__)
settings = get_settings()

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Decimal rounded half-up to centavos"""
    try:
        return Decimal(str(value if value is not None else "0")).quantize(TWOPLACES, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValueError(f"Invalid money amount: {value!r}") from exc


def to_centavos(amount) -> int:
    """PHP amount to integer centavos, as the gateway expects"""
    centavos = (to_money(amount) * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(centavos)


def from_centavos(centavos: int) -> Decimal:
    return to_money(Decimal(int(centavos)) / Decimal("100"))


# ============================================
# Pure computations
# ============================================

@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    discounts: Decimal
    write_offs: Decimal
    refunds: Decimal
    final_amount: Decimal
    total_paid: Decimal
    balance_due: Decimal
    status: str

    def as_dict(self) -> dict:
        return asdict(self)


def _charge_amount(charge) -> Decimal:
    if getattr(charge, "final_amount", None) is not None:
        return to_money(charge.final_amount)
    return to_money(getattr(charge, "estimated_amount", None) or 0)


def compute_invoice_totals(
    charges: Iterable,
    adjustments: Iterable,
    payments: Iterable,
) -> InvoiceTotals:
    """
    Args:
        charges: objects with final_amount / estimated_amount
        adjustments: objects with type ('discount', 'write-off', 'refund') and amount
        payments: payment amounts, direct and installment alike

    balance_due = subtotal - discounts - write_offs - refunds - total_paid,
    reported no lower than zero.
    """
    subtotal = sum((_charge_amount(c) for c in charges), ZERO)

    by_type = {'discount': ZERO, 'write-off': ZERO, 'refund': ZERO}
    for adj in adjustments:
        if adj.type not in by_type:
            raise ValueError(f"Unknown adjustment type: {adj.type}")
        by_type[adj.type] += to_money(adj.amount)

    total_paid = sum((to_money(p) for p in payments), ZERO)

    final_amount = subtotal - by_type['discount'] - by_type['write-off'] - by_type['refund']
    raw_balance = final_amount - total_paid

    if raw_balance <= 0:
        invoice_status = 'paid'
    elif total_paid > 0:
        invoice_status = 'partial'
    else:
        invoice_status = 'unpaid'

    return InvoiceTotals(
        subtotal=subtotal,
        discounts=by_type['discount'],
        write_offs=by_type['write-off'],
        refunds=by_type['refund'],
        final_amount=final_amount,
        total_paid=total_paid,
        balance_due=max(raw_balance, ZERO),
        status=invoice_status,
    )


def apply_cash_tender(amount_due, tendered) -> Tuple[Decimal, Decimal]:
    """Returns (amount_paid, change) for a cash tender against amount_due"""
    due = to_money(amount_due)
    given = to_money(tendered)
    return min(due, given), max(ZERO, given - due)


def add_convenience_fee(base, rate: Optional[Decimal] = None) -> Tuple[Decimal, Decimal]:
    """Returns (fee, total) for an online payment of `base`"""
    rate = settings.CONVENIENCE_FEE_RATE if rate is None else Decimal(str(rate))
    base = to_money(base)
    fee = to_money(base * rate)
    return fee, base + fee


def split_convenience_fee(total, rate: Optional[Decimal] = None) -> Tuple[Decimal, Decimal]:
    """Inverse of add_convenience_fee: returns (base, fee) from a gateway total"""
    rate = settings.CONVENIENCE_FEE_RATE if rate is None else Decimal(str(rate))
    total = to_money(total)
    fee = to_money(total / (Decimal("1") + rate) * rate)
    return total - fee, fee


def installment_status(amount_due, amount_paid, due_date: date, today: Optional[date] = None) -> str:
    if to_money(amount_paid) >= to_money(amount_due):
        return 'paid'
    if due_date < (today or date.today()):
        return 'overdue'
    return 'pending'


# ============================================
# Persistence
# ============================================

async def load_invoice_totals(db: AsyncSession, invoice_id: int) -> InvoiceTotals:
    """Compute totals from the current rows without touching the invoice"""
    charges = (await db.execute(
        select(TreatmentCharge).where(TreatmentCharge.invoice_id == invoice_id)
    )).scalars().all()

    adjustments = (await db.execute(
        select(AdjustmentLog).where(AdjustmentLog.invoice_id == invoice_id)
    )).scalars().all()

    direct = (await db.execute(
        select(Payment.amount_paid).where(Payment.invoice_id == invoice_id)
    )).scalars().all()

    installment = (await db.execute(
        select(InstallmentPayment.amount).where(InstallmentPayment.invoice_id == invoice_id)
    )).scalars().all()

    return compute_invoice_totals(charges, adjustments, list(direct) + list(installment))


async def recalculate_invoice(
    db: AsyncSession,
    invoice_id: int,
    updated_by: Optional[str] = None
) -> Invoice:
    """
    Store freshly computed totals on the invoice row.
    Runs inside the caller's transaction; the caller commits.
    """
    await db.flush()

    result = await db.execute(
        select(Invoice).where(Invoice.invoice_id == invoice_id).with_for_update()
    )
    invoice = result.scalar_one_or_none()
    if not invoice:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invoice not found"
        )

    totals = await load_invoice_totals(db, invoice_id)

    invoice.total_amount_estimated = totals.subtotal
    invoice.discount_amount = totals.discounts
    invoice.writeoff_amount = totals.write_offs
    invoice.refund_amount = totals.refunds
    invoice.final_amount = totals.final_amount
    invoice.total_paid = totals.total_paid
    invoice.net_amount_due = totals.balance_due
    invoice.status = totals.status
    if updated_by:
        invoice.updated_by = updated_by

    await db.flush()

    logger.debug(
        f"Invoice {invoice_id} recalculated: balance={totals.balance_due} status={totals.status}"
    )
    return invoice


def summary_from_invoice(invoice: Invoice) -> dict:
    """Stored totals in summary form"""
    return {
        "subtotal": invoice.total_amount_estimated,
        "discounts": invoice.discount_amount,
        "write_offs": invoice.writeoff_amount,
        "refunds": invoice.refund_amount,
        "final_amount": invoice.final_amount,
        "total_paid": invoice.total_paid,
        "balance_due": invoice.net_amount_due,
        "status": invoice.status,
    }


async def installment_remaining(db: AsyncSession, installment: Installment) -> Decimal:
    paid = (await db.execute(
        select(func.coalesce(func.sum(InstallmentPayment.amount), 0))
        .where(InstallmentPayment.installment_id == installment.installment_id)
    )).scalar()
    return to_money(installment.amount_due) - to_money(paid)
