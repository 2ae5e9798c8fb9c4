"""
Payment Routes
Direct payments, installment schedules and installment payments
"""
from datetime import date
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from app.core.deps import RequestContext, get_request_context
from app.db.dependencies import get_db
from app.schemas.base_schemas import APIResponse, MessageResponse
from app.schemas.billing_schemas import (
    PaymentCreate, PaymentResult, PaymentResponse, PaymentProofUpdate, PaymentLedgerEntry,
    InstallmentBulkCreate, InstallmentUpdate, InstallmentResponse,
    InstallmentPaymentCreate, InstallmentPaymentResponse, InstallmentPaymentResult
)
from app.services.billing.payment_service import PaymentService
from app.services.system.activity_service import log_request_activity
from app.utils.pagination import PaginatedResponse, PaginationParams, pagination_params


router = APIRouter(prefix="/billing", tags=["Payments"])

MODULE = "payments"


# ============================================
# Direct payments
# ============================================

@router.get("/payments", response_model=PaginatedResponse[PaymentLedgerEntry])
async def list_payments(
    invoice_id: Optional[int] = Query(None),
    method: Optional[str] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    pagination: PaginationParams = Depends(pagination_params()),
    db: AsyncSession = Depends(get_db)
):
    """Direct and installment payments, newest first"""
    return await PaymentService.list_payments(db, pagination, invoice_id, method, start_date, end_date)


@router.post("/payments", response_model=APIResponse[PaymentResult], status_code=status.HTTP_201_CREATED)
async def record_payment(
    data: PaymentCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a cash or bank-transfer payment

    When received_amount is given, the change returned to the patient
    is recorded as change_amount.

    **Errors**:
    - 404: invoice not found
    - 400: amount exceeds the remaining balance
    """
    result = await PaymentService.record_payment(db, data, ctx.username, ctx.user.user_id)
    await log_request_activity(db, ctx, "create", MODULE, {
        "payment_id": result.payment.payment_id,
        "invoice_id": data.invoice_id,
        "amount_paid": float(data.amount_paid),
        "method": data.method,
    })
    return APIResponse(data=result, message="Payment recorded successfully")


@router.post("/payments/{payment_id}/proof", response_model=APIResponse[PaymentResponse])
async def set_payment_proof(
    payment_id: int,
    data: PaymentProofUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    payment = await PaymentService.set_proof(db, payment_id, data.proof_of_payment)
    await log_request_activity(db, ctx, "update", MODULE, {"payment_id": payment_id, "proof": True})
    return APIResponse(
        data=PaymentResponse.model_validate(payment),
        message="Proof of payment saved"
    )


# ============================================
# Installments
# ============================================

@router.post(
    "/installments",
    response_model=APIResponse[List[InstallmentResponse]],
    status_code=status.HTTP_201_CREATED
)
async def bulk_add_installments(
    data: InstallmentBulkCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    """Schedule several installments for one invoice in one transaction"""
    installments = await PaymentService.bulk_add_installments(db, data)
    await log_request_activity(db, ctx, "create", MODULE, {
        "invoice_id": data.invoice_id,
        "installment_ids": [i.installment_id for i in installments],
    })
    return APIResponse(
        data=installments,
        message=f"{len(installments)} installment(s) added successfully"
    )


@router.put("/installments/{installment_id}", response_model=APIResponse[InstallmentResponse])
async def update_installment(
    installment_id: int,
    data: InstallmentUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    installment = await PaymentService.update_installment(db, installment_id, data)
    await log_request_activity(db, ctx, "update", MODULE, {
        "installment_id": installment_id,
        "fields": sorted(data.model_dump(exclude_unset=True)),
    })
    return APIResponse(data=installment, message="Installment updated successfully")


@router.delete("/installments/{installment_id}", response_model=MessageResponse)
async def delete_installment(
    installment_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    installment = await PaymentService.delete_installment(db, installment_id)
    await log_request_activity(db, ctx, "delete", MODULE, {
        "installment_id": installment_id, "invoice_id": installment.invoice_id
    })
    return MessageResponse(message="Installment deleted successfully")


# ============================================
# Installment payments
# ============================================

@router.get(
    "/installments/{installment_id}/payments",
    response_model=APIResponse[List[InstallmentPaymentResponse]]
)
async def list_installment_payments(installment_id: int, db: AsyncSession = Depends(get_db)):
    return APIResponse(data=await PaymentService.list_installment_payments(db, installment_id))


@router.post(
    "/installments/{installment_id}/payments",
    response_model=APIResponse[InstallmentPaymentResult],
    status_code=status.HTTP_201_CREATED
)
async def pay_installment(
    installment_id: int,
    data: InstallmentPaymentCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    """
    Pay toward one installment

    **Errors**:
    - 404: installment not found
    - 400: amount exceeds the installment's remaining balance
    """
    result = await PaymentService.pay_installment(db, installment_id, data, ctx.username, ctx.user.user_id)
    await log_request_activity(db, ctx, "create", MODULE, {
        "installment_id": installment_id,
        "installment_payment_id": result.payment.id,
        "amount": float(data.amount),
        "method": data.method,
    })
    return APIResponse(data=result, message="Installment payment recorded successfully")
