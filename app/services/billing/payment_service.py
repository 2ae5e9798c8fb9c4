"""
Payment Service
Direct payments, installment schedules and installment payments
"""
import logging
from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.billing.billing_model import Invoice, Payment, Installment, InstallmentPayment
from app.schemas.billing_schemas import (
    PaymentCreate, PaymentResponse, PaymentResult, InvoiceBalanceUpdate, PaymentLedgerEntry,
    InstallmentCreate, InstallmentBulkCreate, InstallmentUpdate, InstallmentResponse,
    InstallmentPaymentCreate, InstallmentPaymentResponse, InstallmentPaymentResult
)
from app.services.billing.financials import (
    recalculate_invoice, apply_cash_tender, installment_status, to_money, ZERO
)
from app.services.billing.ledger import payment_ledger, paginated_ledger, installment_schedule
from app.services.system.activity_service import create_audit_log
from app.utils.pagination import PaginationParams, PaginatedResponse

logger = logging.getLogger(__name__)


def balance_update(invoice: Invoice) -> InvoiceBalanceUpdate:
    return InvoiceBalanceUpdate(
        net_amount_due=invoice.net_amount_due,
        status=invoice.status,
        total_paid=invoice.total_paid,
    )


class PaymentService:

    # ============================================
    # Direct payments
    # ============================================

    @staticmethod
    async def list_payments(
        db: AsyncSession,
        pagination: PaginationParams,
        invoice_id: Optional[int] = None,
        method: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> PaginatedResponse[PaymentLedgerEntry]:
        return await paginated_ledger(
            db,
            pagination,
            invoice_id=invoice_id,
            method=method,
            start_date=start_date,
            end_date=end_date
        )

    @staticmethod
    async def list_invoice_payments(db: AsyncSession, invoice_id: int) -> List[PaymentLedgerEntry]:
        await PaymentService._require_invoice(db, invoice_id)
        return await payment_ledger(db, invoice_id=invoice_id)

    @staticmethod
    async def _require_invoice(db: AsyncSession, invoice_id: int) -> Invoice:
        invoice = (await db.execute(
            select(Invoice).where(Invoice.invoice_id == invoice_id)
        )).scalar_one_or_none()
        if not invoice:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Invoice not found"
            )
        return invoice

    @staticmethod
    async def record_payment(
        db: AsyncSession,
        data: PaymentCreate,
        username: str,
        user_id: Optional[str] = None
    ) -> PaymentResult:
        """
        Record a cash or bank-transfer payment.

        The invoice is locked and recalculated first so the balance check
        runs against current figures.
        """
        amount = to_money(data.amount_paid)

        async with db.begin_nested():
            invoice = await recalculate_invoice(db, data.invoice_id)
            remaining = to_money(invoice.net_amount_due)

            if amount > remaining:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Payment amount ({amount}) cannot exceed remaining balance ({remaining})"
                )

            change = ZERO
            received = None
            if data.received_amount is not None:
                received = to_money(data.received_amount)
                _, change = apply_cash_tender(amount, received)

            payment = Payment(
                invoice_id=data.invoice_id,
                amount_paid=amount,
                received_amount=received,
                change_amount=change,
                convenience_fee=ZERO,
                method=data.method,
                transaction_ref=data.transaction_ref,
                proof_of_payment=data.proof_of_payment,
                payment_date=datetime.now(timezone.utc),
                recorded_by=username,
            )
            db.add(payment)
            await db.flush()

            invoice = await recalculate_invoice(db, data.invoice_id, username)

            create_audit_log(
                db,
                entity_type='payment',
                entity_id=payment.payment_id,
                action='payment_recorded',
                user_id=user_id or username,
                changes={
                    "invoice_id": data.invoice_id,
                    "amount_paid": str(amount),
                    "method": data.method,
                    "change_amount": str(change),
                    "balance_after": str(invoice.net_amount_due),
                },
            )

        await db.commit()
        logger.info(f"Payment {payment.payment_id} of {amount} recorded on invoice {data.invoice_id}")

        return PaymentResult(
            payment=PaymentResponse.model_validate(payment),
            invoice_update=balance_update(invoice),
        )

    @staticmethod
    async def set_proof(db: AsyncSession, payment_id: int, proof_of_payment: str) -> Payment:
        payment = (await db.execute(
            select(Payment).where(Payment.payment_id == payment_id)
        )).scalar_one_or_none()
        if not payment:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Payment not found"
            )

        async with db.begin_nested():
            payment.proof_of_payment = proof_of_payment
        await db.commit()
        return payment

    # ============================================
    # Installments
    # ============================================

    @staticmethod
    async def get_installment(db: AsyncSession, installment_id: int, lock: bool = False) -> Installment:
        query = (
            select(Installment)
            .where(Installment.installment_id == installment_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update()

        installment = (await db.execute(query)).scalar_one_or_none()
        if not installment:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Installment not found"
            )
        return installment

    @staticmethod
    async def list_installments(db: AsyncSession, invoice_id: int) -> List[InstallmentResponse]:
        await PaymentService._require_invoice(db, invoice_id)
        return await installment_schedule(db, invoice_id)

    @staticmethod
    async def _scheduled_total(db: AsyncSession, invoice_id: int, exclude_id: Optional[int] = None):
        query = select(func.coalesce(func.sum(Installment.amount_due), 0)).where(
            Installment.invoice_id == invoice_id
        )
        if exclude_id:
            query = query.where(Installment.installment_id != exclude_id)
        return to_money((await db.execute(query)).scalar())

    @staticmethod
    async def add_installments(
        db: AsyncSession,
        invoice_id: int,
        items: List[InstallmentCreate]
    ) -> List[InstallmentResponse]:
        """
        Schedule installments in one transaction.
        The scheduled total may not exceed the invoice's final amount.
        """
        async with db.begin_nested():
            invoice = (await db.execute(
                select(Invoice).where(Invoice.invoice_id == invoice_id).with_for_update()
            )).scalar_one_or_none()
            if not invoice:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Invoice not found"
                )

            scheduled = await PaymentService._scheduled_total(db, invoice_id)
            requested = sum((to_money(i.amount_due) for i in items), ZERO)
            final_amount = to_money(invoice.final_amount)

            if scheduled + requested > final_amount:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=(
                        f"Total installment amount ({scheduled + requested}) "
                        f"cannot exceed invoice final amount ({final_amount})"
                    )
                )

            next_number = (await db.execute(
                select(func.coalesce(func.max(Installment.installment_number), 0))
                .where(Installment.invoice_id == invoice_id)
            )).scalar() + 1

            created = []
            for offset, item in enumerate(items):
                installment = Installment(
                    invoice_id=invoice_id,
                    installment_number=next_number + offset,
                    due_date=item.due_date,
                    amount_due=to_money(item.amount_due),
                    amount_paid=ZERO,
                    status='pending',
                    notes=item.notes,
                )
                db.add(installment)
                created.append(installment)

            invoice.plan_mode = 'installment'
            await db.flush()

            await recalculate_invoice(db, invoice_id)

        await db.commit()
        logger.info(f"{len(created)} installment(s) scheduled on invoice {invoice_id}")

        return [InstallmentResponse.model_validate(i) for i in created]

    @staticmethod
    async def add_installment(db: AsyncSession, invoice_id: int, data: InstallmentCreate) -> InstallmentResponse:
        return (await PaymentService.add_installments(db, invoice_id, [data]))[0]

    @staticmethod
    async def bulk_add_installments(db: AsyncSession, data: InstallmentBulkCreate) -> List[InstallmentResponse]:
        return await PaymentService.add_installments(db, data.invoice_id, data.installments)

    @staticmethod
    async def update_installment(
        db: AsyncSession,
        installment_id: int,
        data: InstallmentUpdate
    ) -> InstallmentResponse:
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="No fields to update"
            )

        installment = await PaymentService.get_installment(db, installment_id)

        if changes.get('amount_due') is not None:
            amount_due = to_money(changes['amount_due'])
            if amount_due < to_money(installment.amount_paid):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Amount due cannot be less than the amount already paid"
                )

            invoice = await PaymentService._require_invoice(db, installment.invoice_id)
            others = await PaymentService._scheduled_total(db, installment.invoice_id, exclude_id=installment_id)
            if others + amount_due > to_money(invoice.final_amount):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=(
                        f"Total installment amount ({others + amount_due}) "
                        f"cannot exceed invoice final amount ({to_money(invoice.final_amount)})"
                    )
                )
            changes['amount_due'] = amount_due

        async with db.begin_nested():
            for field, value in changes.items():
                setattr(installment, field, value)
            await db.flush()

        await db.commit()
        return InstallmentResponse.model_validate(installment)

    @staticmethod
    async def delete_installment(db: AsyncSession, installment_id: int) -> Installment:
        installment = await PaymentService.get_installment(db, installment_id)

        paid = (await db.execute(
            select(func.count(InstallmentPayment.id))
            .where(InstallmentPayment.installment_id == installment_id)
        )).scalar() or 0
        if paid:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot delete an installment that has payments"
            )

        async with db.begin_nested():
            await db.delete(installment)
        await db.commit()

        logger.info(f"Installment {installment_id} deleted from invoice {installment.invoice_id}")
        return installment

    # ============================================
    # Installment payments
    # ============================================

    @staticmethod
    async def list_installment_payments(db: AsyncSession, installment_id: int) -> List[InstallmentPaymentResponse]:
        await PaymentService.get_installment(db, installment_id)
        result = await db.execute(
            select(InstallmentPayment)
            .where(InstallmentPayment.installment_id == installment_id)
            .order_by(InstallmentPayment.payment_date.desc(), InstallmentPayment.id.desc())
        )
        return [InstallmentPaymentResponse.model_validate(p) for p in result.scalars().all()]

    @staticmethod
    async def apply_installment_payment(
        db: AsyncSession,
        installment: Installment,
        amount,
        method: str,
        transaction_ref: Optional[str],
        recorded_by: Optional[str],
        convenience_fee=ZERO,
        enforce_remaining: bool = True
    ) -> InstallmentPayment:
        """
        Stage a payment against a locked installment and refresh its status.
        Runs inside the caller's transaction; the caller recalculates the invoice.
        """
        amount = to_money(amount)
        remaining = to_money(installment.amount_due) - to_money(installment.amount_paid)

        if enforce_remaining and amount > remaining:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Payment amount ({amount}) cannot exceed remaining installment balance ({remaining})"
            )

        payment = InstallmentPayment(
            installment_id=installment.installment_id,
            invoice_id=installment.invoice_id,
            amount=amount,
            convenience_fee=to_money(convenience_fee),
            method=method,
            transaction_ref=transaction_ref,
            payment_date=datetime.now(timezone.utc),
            recorded_by=recorded_by,
        )
        db.add(payment)

        installment.amount_paid = to_money(installment.amount_paid) + amount
        installment.status = installment_status(
            installment.amount_due, installment.amount_paid, installment.due_date
        )
        await db.flush()
        return payment

    @staticmethod
    async def pay_installment(
        db: AsyncSession,
        installment_id: int,
        data: InstallmentPaymentCreate,
        username: str,
        user_id: Optional[str] = None
    ) -> InstallmentPaymentResult:
        async with db.begin_nested():
            installment = await PaymentService.get_installment(db, installment_id, lock=True)

            payment = await PaymentService.apply_installment_payment(
                db,
                installment,
                amount=data.amount,
                method=data.method,
                transaction_ref=data.transaction_ref,
                recorded_by=username,
            )

            invoice = await recalculate_invoice(db, installment.invoice_id, username)

            create_audit_log(
                db,
                entity_type='installment',
                entity_id=installment_id,
                action='installment_payment_recorded',
                user_id=user_id or username,
                changes={
                    "invoice_id": installment.invoice_id,
                    "amount": str(payment.amount),
                    "method": data.method,
                    "installment_status": installment.status,
                },
            )

        await db.commit()
        logger.info(
            f"Installment {installment_id} paid {payment.amount}; status {installment.status}"
        )

        return InstallmentPaymentResult(
            payment=InstallmentPaymentResponse.model_validate(payment),
            installment=InstallmentResponse.model_validate(installment),
            invoice_update=balance_update(invoice),
        )
