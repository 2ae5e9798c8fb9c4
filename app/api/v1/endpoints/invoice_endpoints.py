"""
Invoice Routes
Invoices, adjustments, documents and per-invoice payment views
"""
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Literal, Optional

from app.core.deps import RequestContext, get_request_context
from app.db.dependencies import get_db
from app.schemas.base_schemas import APIResponse, MessageResponse
from app.schemas.billing_schemas import (
    InvoiceCreate, InvoiceUpdate, InvoiceResponse, InvoiceListEntry, InvoiceDetail, InvoiceSummary,
    InvoiceEmailRequest,
    AdjustmentCreate, AdjustmentResponse, AdjustmentResult,
    PaymentLedgerEntry, InstallmentCreate, InstallmentResponse
)
from app.services.billing.invoice_documents import invoice_pdf, email_invoice
from app.services.billing.invoice_service import InvoiceService
from app.services.billing.payment_service import PaymentService
from app.services.system.activity_service import log_request_activity
from app.utils.notifications import EmailNotifier, get_email_notifier
from app.utils.pagination import PaginatedResponse, PaginationParams, pagination_params


router = APIRouter(prefix="/billing", tags=["Invoices"])

MODULE = "invoice"

InvoiceStatusFilter = Literal['all', 'unpaid', 'partial', 'paid']


# ============================================
# Invoices
# ============================================

@router.get("/invoices", response_model=PaginatedResponse[InvoiceListEntry])
async def list_invoices(
    invoice_status: Optional[InvoiceStatusFilter] = Query(None, alias="status"),
    patient_id: Optional[int] = Query(None),
    pagination: PaginationParams = Depends(pagination_params()),
    db: AsyncSession = Depends(get_db)
):
    """
    List invoices, newest first

    **Query Parameters**:
    - status: filter by invoice status; `all` disables the filter
    - patient_id: only this patient's invoices
    """
    if invoice_status == 'all':
        invoice_status = None
    return await InvoiceService.list_invoices(db, pagination, invoice_status, patient_id)


@router.get("/invoices/{invoice_id}", response_model=APIResponse[InvoiceDetail])
async def get_invoice(invoice_id: int, db: AsyncSession = Depends(get_db)):
    """Invoice with treatments, adjustments, payments, installments and summary"""
    return APIResponse(data=await InvoiceService.get_invoice_detail(db, invoice_id))


@router.get("/invoices/{invoice_id}/summary", response_model=APIResponse[InvoiceSummary])
async def get_invoice_summary(invoice_id: int, db: AsyncSession = Depends(get_db)):
    return APIResponse(data=await InvoiceService.get_summary(db, invoice_id))


@router.post("/invoices", response_model=APIResponse[InvoiceResponse], status_code=status.HTTP_201_CREATED)
async def create_invoice(
    data: InvoiceCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    """
    Create an invoice from charges

    Charges with an entry_id invoice an existing treatment-plan charge.
    Others are created on the invoice with the service price (or the
    given estimate) as amount.

    **Errors**:
    - 404: patient, service or plan entry not found
    - 400: plan entry already invoiced, or plan belongs to another patient
    """
    invoice = await InvoiceService.create_invoice(db, data, ctx.username)
    await log_request_activity(db, ctx, "create", MODULE, {
        "invoice_id": invoice.invoice_id,
        "invoice_code": invoice.invoice_code,
        "patient_id": invoice.patient_id,
        "final_amount": float(invoice.final_amount),
    })
    return APIResponse(
        data=InvoiceResponse.model_validate(invoice),
        message="Invoice created successfully"
    )


@router.put("/invoices/{invoice_id}", response_model=APIResponse[InvoiceResponse])
async def update_invoice(
    invoice_id: int,
    data: InvoiceUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    invoice = await InvoiceService.update_invoice(db, invoice_id, data, ctx.username)
    await log_request_activity(db, ctx, "update", MODULE, {
        "invoice_id": invoice_id,
        "charges": len(data.charges),
        "final_amount": float(invoice.final_amount),
    })
    return APIResponse(
        data=InvoiceResponse.model_validate(invoice),
        message="Invoice updated successfully"
    )


@router.get("/invoices/{invoice_id}/pdf")
async def get_invoice_pdf(invoice_id: int, db: AsyncSession = Depends(get_db)):
    filename, content = await invoice_pdf(db, invoice_id)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{filename}"'}
    )


@router.post("/invoices/{invoice_id}/email", response_model=MessageResponse)
async def send_invoice_email(
    invoice_id: int,
    request: InvoiceEmailRequest,
    ctx: RequestContext = Depends(get_request_context),
    notifier: EmailNotifier = Depends(get_email_notifier),
    db: AsyncSession = Depends(get_db)
):
    recipient = await email_invoice(db, invoice_id, request, notifier)
    await log_request_activity(db, ctx, "generate", MODULE, {
        "invoice_id": invoice_id, "emailed_to": recipient
    })
    return MessageResponse(message=f"Invoice sent to {recipient}")


# ============================================
# Adjustments
# ============================================

@router.get("/invoices/{invoice_id}/adjustments", response_model=APIResponse[List[AdjustmentResponse]])
async def list_adjustments(invoice_id: int, db: AsyncSession = Depends(get_db)):
    return APIResponse(data=await InvoiceService.list_adjustments(db, invoice_id))


@router.post(
    "/invoices/{invoice_id}/adjustments",
    response_model=APIResponse[AdjustmentResult],
    status_code=status.HTTP_201_CREATED
)
async def add_adjustment(
    invoice_id: int,
    data: AdjustmentCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    """
    Apply a discount, write-off or refund

    **Errors**:
    - 400: amount exceeds the current balance due
    """
    result = await InvoiceService.add_adjustment(db, invoice_id, data, ctx.username, ctx.user.user_id)
    await log_request_activity(db, ctx, "create", MODULE, {
        "invoice_id": invoice_id,
        "adjustment_id": result.adjustment.adjustment_id,
        "type": data.type,
        "amount": float(data.amount),
    })
    return APIResponse(data=result, message=f"{data.type.capitalize()} applied successfully")


# ============================================
# Per-invoice payments and installments
# ============================================

@router.get("/invoices/{invoice_id}/payments", response_model=APIResponse[List[PaymentLedgerEntry]])
async def list_invoice_payments(invoice_id: int, db: AsyncSession = Depends(get_db)):
    """Direct and installment payments for one invoice, newest first"""
    return APIResponse(data=await PaymentService.list_invoice_payments(db, invoice_id))


@router.get("/invoices/{invoice_id}/installments", response_model=APIResponse[List[InstallmentResponse]])
async def list_invoice_installments(invoice_id: int, db: AsyncSession = Depends(get_db)):
    return APIResponse(data=await PaymentService.list_installments(db, invoice_id))


@router.post(
    "/invoices/{invoice_id}/installments",
    response_model=APIResponse[InstallmentResponse],
    status_code=status.HTTP_201_CREATED
)
async def add_invoice_installment(
    invoice_id: int,
    data: InstallmentCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    """
    Schedule an installment; switches the invoice to installment mode

    **Errors**:
    - 400: scheduled total would exceed the invoice final amount
    """
    installment = await PaymentService.add_installment(db, invoice_id, data)
    await log_request_activity(db, ctx, "create", "payments", {
        "invoice_id": invoice_id,
        "installment_id": installment.installment_id,
        "amount_due": float(installment.amount_due),
    })
    return APIResponse(data=installment, message="Installment added successfully")
