"""
Payment ledger queries shared by the invoice and payment services
"""
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from sqlalchemy import Integer, Numeric, String, Text, Select, select, func, literal, null, cast, union_all
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.billing.billing_model import Invoice, Payment, Installment, InstallmentPayment
from app.models.patient.patient_model import Patient
from app.schemas.billing_schemas import PaymentLedgerEntry, InstallmentResponse
from app.utils.pagination import Paginator, PaginationParams, PaginatedResponse


def ledger_query(
    invoice_id: Optional[int] = None,
    method: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None
) -> Select:
    """
    Direct and installment payments as one UNION ALL, newest first.
    Installment rows report their amount as amount_paid and received_amount.
    """
    direct = (
        select(
            literal('direct', String).label('payment_type'),
            Payment.payment_id.label('payment_id'),
            Payment.invoice_id.label('invoice_id'),
            Invoice.invoice_code.label('invoice_code'),
            Patient.first_name.label('first_name'),
            Patient.last_name.label('last_name'),
            cast(null(), Integer).label('installment_id'),
            Payment.amount_paid.label('amount_paid'),
            func.coalesce(Payment.received_amount, Payment.amount_paid).label('received_amount'),
            Payment.change_amount.label('change_amount'),
            Payment.convenience_fee.label('convenience_fee'),
            Payment.method.label('method'),
            Payment.transaction_ref.label('transaction_ref'),
            Payment.proof_of_payment.label('proof_of_payment'),
            Payment.payment_date.label('payment_date'),
            Payment.recorded_by.label('recorded_by'),
        )
        .join(Invoice, Payment.invoice_id == Invoice.invoice_id)
        .join(Patient, Invoice.patient_id == Patient.patient_id)
    )
    installment = (
        select(
            literal('installment', String).label('payment_type'),
            InstallmentPayment.id.label('payment_id'),
            InstallmentPayment.invoice_id.label('invoice_id'),
            Invoice.invoice_code.label('invoice_code'),
            Patient.first_name.label('first_name'),
            Patient.last_name.label('last_name'),
            InstallmentPayment.installment_id.label('installment_id'),
            InstallmentPayment.amount.label('amount_paid'),
            InstallmentPayment.amount.label('received_amount'),
            literal(0, Numeric(12, 2)).label('change_amount'),
            InstallmentPayment.convenience_fee.label('convenience_fee'),
            InstallmentPayment.method.label('method'),
            InstallmentPayment.transaction_ref.label('transaction_ref'),
            cast(null(), Text).label('proof_of_payment'),
            InstallmentPayment.payment_date.label('payment_date'),
            InstallmentPayment.recorded_by.label('recorded_by'),
        )
        .join(Invoice, InstallmentPayment.invoice_id == Invoice.invoice_id)
        .join(Patient, Invoice.patient_id == Patient.patient_id)
    )

    if invoice_id:
        direct = direct.where(Payment.invoice_id == invoice_id)
        installment = installment.where(InstallmentPayment.invoice_id == invoice_id)
    if method:
        direct = direct.where(Payment.method == method)
        installment = installment.where(InstallmentPayment.method == method)
    if start_date:
        since = datetime.combine(start_date, time.min)
        direct = direct.where(Payment.payment_date >= since)
        installment = installment.where(InstallmentPayment.payment_date >= since)
    if end_date:
        until = datetime.combine(end_date + timedelta(days=1), time.min)
        direct = direct.where(Payment.payment_date < until)
        installment = installment.where(InstallmentPayment.payment_date < until)

    ledger = union_all(direct, installment).subquery('ledger')
    return select(ledger).order_by(ledger.c.payment_date.desc(), ledger.c.payment_id.desc())


def to_ledger_entry(row) -> PaymentLedgerEntry:
    data = dict(row._mapping)
    first = data.pop('first_name') or ''
    last = data.pop('last_name') or ''
    data['patient_name'] = f"{first} {last}".strip()
    return PaymentLedgerEntry.model_validate(data)


async def payment_ledger(db: AsyncSession, invoice_id: Optional[int] = None) -> List[PaymentLedgerEntry]:
    """Every payment on an invoice, newest first"""
    result = await db.execute(ledger_query(invoice_id=invoice_id))
    return [to_ledger_entry(row) for row in result.all()]


async def paginated_ledger(
    db: AsyncSession,
    pagination: PaginationParams,
    invoice_id: Optional[int] = None,
    method: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None
) -> PaginatedResponse[PaymentLedgerEntry]:
    query = ledger_query(invoice_id, method, start_date, end_date)
    return await Paginator(db).paginate(query, pagination, transform=to_ledger_entry)


async def installment_schedule(db: AsyncSession, invoice_id: int) -> List[InstallmentResponse]:
    result = await db.execute(
        select(Installment)
        .where(Installment.invoice_id == invoice_id)
        .order_by(Installment.due_date, Installment.installment_number)
    )
    return [InstallmentResponse.model_validate(i) for i in result.scalars().all()]
