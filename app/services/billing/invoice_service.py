"""
Invoice Service
Invoices, their treatment charges and manual adjustments
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Set

from fastapi import HTTPException, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.billing.billing_model import (
    Invoice, TreatmentCharge, TreatmentPlan, Service, AdjustmentLog, Payment, InstallmentPayment
)
from app.models.patient.patient_model import Patient
from app.schemas.billing_schemas import (
    InvoiceCreate, InvoiceUpdate, InvoiceChargeCreate, InvoiceResponse, InvoiceListEntry,
    InvoiceDetail, InvoiceSummary, InvoiceTreatment,
    AdjustmentCreate, AdjustmentResponse, AdjustmentResult
)
from app.services.billing.financials import (
    recalculate_invoice, summary_from_invoice, to_money, ZERO
)
from app.services.billing.ledger import payment_ledger, installment_schedule
from app.services.billing.patient_service import PatientService
from app.services.billing.service_catalog_service import ServiceCatalogService
from app.services.billing.treatment_plan_service import TreatmentPlanService, resolve_charge_amount
from app.services.system.activity_service import create_audit_log
from app.utils.pagination import Paginator, PaginationParams, PaginatedResponse
from app.utils.reference_numbers import generate_invoice_code

logger = logging.getLogger(__name__)


class InvoiceService:

    # ============================================
    # Reads
    # ============================================

    @staticmethod
    async def get_invoice(db: AsyncSession, invoice_id: int) -> Invoice:
        invoice = (await db.execute(
            select(Invoice)
            .options(selectinload(Invoice.patient))
            .where(Invoice.invoice_id == invoice_id)
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()

        if not invoice:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Invoice not found"
            )
        return invoice

    @staticmethod
    async def list_invoices(
        db: AsyncSession,
        pagination: PaginationParams,
        invoice_status: Optional[str] = None,
        patient_id: Optional[int] = None
    ) -> PaginatedResponse[InvoiceListEntry]:
        query = select(Invoice, Patient).join(Patient, Invoice.patient_id == Patient.patient_id)

        if invoice_status and invoice_status != 'all':
            query = query.where(Invoice.status == invoice_status)
        if patient_id:
            query = query.where(Invoice.patient_id == patient_id)

        query = query.order_by(Invoice.created_at.desc(), Invoice.invoice_id.desc())

        def to_entry(row) -> InvoiceListEntry:
            invoice, patient = row
            return InvoiceListEntry(
                invoice_id=invoice.invoice_id,
                invoice_code=invoice.invoice_code,
                patient_id=patient.patient_id,
                patient_name=patient.full_name,
                dentist_name=invoice.dentist_name,
                amount=invoice.net_amount_due,
                status=invoice.status,
                plan_mode=invoice.plan_mode,
                mobile_number=patient.mobile_number,
                email=patient.email,
                created_at=invoice.created_at,
                updated_at=invoice.updated_at,
            )

        page = await Paginator(db).paginate(query, pagination, transform=to_entry)

        ids = [entry.invoice_id for entry in page.data]
        if ids:
            names = await db.execute(
                select(TreatmentCharge.invoice_id, Service.service_name)
                .join(Service, TreatmentCharge.service_id == Service.service_id)
                .where(TreatmentCharge.invoice_id.in_(ids))
                .order_by(TreatmentCharge.charge_id)
            )
            by_invoice = {}
            for invoice_id, service_name in names.all():
                by_invoice.setdefault(invoice_id, []).append(service_name)
            for entry in page.data:
                entry.treatments = by_invoice.get(entry.invoice_id, [])

        return page

    @staticmethod
    async def list_treatments(db: AsyncSession, invoice_id: int) -> List[InvoiceTreatment]:
        result = await db.execute(
            select(TreatmentCharge, Service.service_name)
            .join(Service, TreatmentCharge.service_id == Service.service_id)
            .where(TreatmentCharge.invoice_id == invoice_id)
            .order_by(TreatmentCharge.charge_id)
        )
        treatments = []
        for charge, service_name in result.all():
            treatment = InvoiceTreatment.model_validate(charge)
            treatment.service_name = service_name
            treatments.append(treatment)
        return treatments

    @staticmethod
    async def get_invoice_detail(db: AsyncSession, invoice_id: int) -> InvoiceDetail:
        """Invoice with treatments, adjustments, payments, installments and summary"""
        invoice = await InvoiceService.get_invoice(db, invoice_id)
        patient = invoice.patient

        return InvoiceDetail(
            **InvoiceResponse.model_validate(invoice).model_dump(),
            patient_name=patient.full_name,
            mobile_number=patient.mobile_number,
            email=patient.email,
            treatments=await InvoiceService.list_treatments(db, invoice_id),
            adjustments=await InvoiceService.list_adjustments(db, invoice_id),
            payments=await payment_ledger(db, invoice_id=invoice_id),
            installments=await installment_schedule(db, invoice_id),
            summary=InvoiceSummary(**summary_from_invoice(invoice)),
        )

    @staticmethod
    async def get_summary(db: AsyncSession, invoice_id: int) -> InvoiceSummary:
        invoice = await InvoiceService.get_invoice(db, invoice_id)
        return InvoiceSummary(**summary_from_invoice(invoice))

    # ============================================
    # Charges
    # ============================================

    @staticmethod
    async def _attach_charges(
        db: AsyncSession,
        invoice: Invoice,
        charges: List[InvoiceChargeCreate]
    ) -> Set[int]:
        """
        Add the charges to the invoice.
        Returns the ids of treatment plans whose entries were invoiced.
        """
        touched_plans: Set[int] = set()

        for data in charges:
            service = await ServiceCatalogService.get_service(db, data.service_id)

            if data.entry_id:
                entry = (await db.execute(
                    select(TreatmentCharge)
                    .where(TreatmentCharge.charge_id == data.entry_id)
                    .with_for_update()
                )).scalar_one_or_none()

                if not entry or entry.plan_id is None:
                    raise HTTPException(
                        status_code=status.HTTP_404_NOT_FOUND,
                        detail=f"Treatment plan entry {data.entry_id} not found"
                    )
                if entry.invoice_id is not None and entry.invoice_id != invoice.invoice_id:
                    raise HTTPException(
                        status_code=status.HTTP_400_BAD_REQUEST,
                        detail=f"Treatment plan entry {data.entry_id} is already invoiced"
                    )

                entry.invoice_id = invoice.invoice_id
                entry.status = 'invoiced'
                entry.service_id = service.service_id
                if data.estimated_amount is not None:
                    entry.estimated_amount = data.estimated_amount
                if data.final_amount is not None:
                    entry.final_amount = data.final_amount
                if data.tooth_number:
                    entry.tooth_number = data.tooth_number
                if data.notes:
                    entry.notes = data.notes
                touched_plans.add(entry.plan_id)
                continue

            db.add(TreatmentCharge(
                invoice_id=invoice.invoice_id,
                service_id=service.service_id,
                tooth_number=data.tooth_number,
                estimated_amount=resolve_charge_amount(data.estimated_amount, service),
                final_amount=data.final_amount,
                status='invoiced',
                notes=data.notes,
            ))

        await db.flush()
        return touched_plans

    @staticmethod
    async def _sync_plan_status(db: AsyncSession, plan_ids: Set[int]) -> None:
        """A plan whose entries are all invoiced becomes completed"""
        for plan_id in plan_ids:
            outstanding = (await db.execute(
                select(func.count(TreatmentCharge.charge_id))
                .where(
                    TreatmentCharge.plan_id == plan_id,
                    TreatmentCharge.status != 'invoiced'
                )
            )).scalar() or 0

            plan = (await db.execute(
                select(TreatmentPlan).where(TreatmentPlan.plan_id == plan_id)
            )).scalar_one()
            plan.status = 'completed' if outstanding == 0 else 'in_progress'
            logger.info(f"Treatment plan {plan_id} is now {plan.status}")

    @staticmethod
    def _charges_subtotal(charges: List[InvoiceChargeCreate], services: dict) -> Decimal:
        subtotal = ZERO
        for data in charges:
            if data.final_amount is not None:
                subtotal += to_money(data.final_amount)
            else:
                subtotal += to_money(resolve_charge_amount(data.estimated_amount, services[data.service_id]))
        return subtotal

    # ============================================
    # Writes
    # ============================================

    @staticmethod
    async def create_invoice(db: AsyncSession, data: InvoiceCreate, username: str) -> Invoice:
        await PatientService.get_patient(db, data.patient_id)

        if data.plan_id:
            plan = await TreatmentPlanService.get_plan(db, data.plan_id)
            if plan.patient_id != data.patient_id:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Treatment plan belongs to a different patient"
                )

        async with db.begin_nested():
            invoice = Invoice(
                invoice_code=await generate_invoice_code(db),
                patient_id=data.patient_id,
                plan_id=data.plan_id,
                dentist_name=data.dentist_name,
                plan_mode=data.plan_mode,
                status='unpaid',
                updated_by=username,
            )
            db.add(invoice)
            await db.flush()

            touched_plans = await InvoiceService._attach_charges(db, invoice, data.charges)
            await InvoiceService._sync_plan_status(db, touched_plans)
            await recalculate_invoice(db, invoice.invoice_id, username)

        await db.commit()
        logger.info(f"Invoice {invoice.invoice_code} created for patient {data.patient_id}")

        return await InvoiceService.get_invoice(db, invoice.invoice_id)

    @staticmethod
    async def update_invoice(
        db: AsyncSession,
        invoice_id: int,
        data: InvoiceUpdate,
        username: str
    ) -> Invoice:
        invoice = await InvoiceService.get_invoice(db, invoice_id)

        direct = (await db.execute(
            select(func.count(Payment.payment_id)).where(Payment.invoice_id == invoice_id)
        )).scalar() or 0
        installment = (await db.execute(
            select(func.count(InstallmentPayment.id)).where(InstallmentPayment.invoice_id == invoice_id)
        )).scalar() or 0
        if direct or installment:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot modify an invoice that already has payments"
            )

        services = {}
        for charge in data.charges:
            if charge.service_id not in services:
                services[charge.service_id] = await ServiceCatalogService.get_service(db, charge.service_id)

        adjusted = to_money(invoice.discount_amount) + to_money(invoice.writeoff_amount) + to_money(invoice.refund_amount)
        if InvoiceService._charges_subtotal(data.charges, services) < adjusted:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="New subtotal cannot be less than the adjustments already applied"
            )

        async with db.begin_nested():
            existing = (await db.execute(
                select(TreatmentCharge).where(TreatmentCharge.invoice_id == invoice_id)
            )).scalars().all()

            released_plans: Set[int] = set()
            for charge in existing:
                if charge.plan_id is not None:
                    # Plan entries go back to their plan
                    charge.invoice_id = None
                    charge.status = 'pending'
                    released_plans.add(charge.plan_id)
                else:
                    await db.delete(charge)
            await db.flush()

            if data.dentist_name is not None:
                invoice.dentist_name = data.dentist_name
            if data.plan_mode is not None:
                invoice.plan_mode = data.plan_mode

            touched_plans = await InvoiceService._attach_charges(db, invoice, data.charges)
            await InvoiceService._sync_plan_status(db, released_plans | touched_plans)
            await recalculate_invoice(db, invoice_id, username)

        await db.commit()
        logger.info(f"Invoice {invoice.invoice_code} charges replaced by {username}")

        return await InvoiceService.get_invoice(db, invoice_id)

    # ============================================
    # Adjustments
    # ============================================

    @staticmethod
    async def list_adjustments(db: AsyncSession, invoice_id: int) -> List[AdjustmentResponse]:
        result = await db.execute(
            select(AdjustmentLog)
            .where(AdjustmentLog.invoice_id == invoice_id)
            .order_by(AdjustmentLog.created_at.desc(), AdjustmentLog.adjustment_id.desc())
        )
        return [AdjustmentResponse.model_validate(a) for a in result.scalars().all()]

    @staticmethod
    async def add_adjustment(
        db: AsyncSession,
        invoice_id: int,
        data: AdjustmentCreate,
        username: str,
        user_id: Optional[str] = None
    ) -> AdjustmentResult:
        """
        Apply a discount, write-off or refund.
        The amount is checked against the freshly recalculated balance.
        """
        amount = to_money(data.amount)

        async with db.begin_nested():
            invoice = await recalculate_invoice(db, invoice_id)
            previous_balance = to_money(invoice.net_amount_due)

            if amount > previous_balance:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Adjustment amount ({amount}) cannot exceed balance due ({previous_balance})"
                )

            adjustment = AdjustmentLog(
                invoice_id=invoice_id,
                type=data.type,
                amount=amount,
                reason=data.reason,
                previous_balance=previous_balance,
                new_balance=previous_balance - amount,
                created_by=username,
                created_at=datetime.now(timezone.utc),
            )
            db.add(adjustment)
            await db.flush()

            invoice = await recalculate_invoice(db, invoice_id, username)

            create_audit_log(
                db,
                entity_type='invoice',
                entity_id=invoice_id,
                action=f"adjustment_{data.type}",
                user_id=user_id or username,
                changes={
                    "adjustment_id": adjustment.adjustment_id,
                    "amount": str(amount),
                    "reason": data.reason,
                    "previous_balance": str(previous_balance),
                    "new_balance": str(invoice.net_amount_due),
                },
            )

        await db.commit()
        logger.info(f"{data.type} of {amount} applied to invoice {invoice_id} by {username}")

        invoice = await InvoiceService.get_invoice(db, invoice_id)
        return AdjustmentResult(
            adjustment=AdjustmentResponse.model_validate(adjustment),
            invoice=InvoiceResponse.model_validate(invoice),
        )
