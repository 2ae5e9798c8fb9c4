"""
Online Payment Routes
PayMongo payment links, QR codes, status polling and the payment webhook
"""
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.deps import RequestContext, get_request_context, get_client_ip
from app.db.dependencies import get_db
from app.schemas.base_schemas import APIResponse
from app.schemas.payment_schemas import (
    PaymentLinkRequest, PaymentLinkResponse, PaymentQRResponse,
    PaymentStatusResponse, FixStatusResponse, WebhookAck
)
from app.services.billing.online_payment_service import (
    OnlinePaymentService, verify_webhook_signature, GATEWAY_USER
)
from app.services.billing.paymongo_client import (
    PaymongoClient, get_paymongo_client, get_optional_paymongo_client
)
from app.services.system.activity_service import log_activity, log_request_activity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Online Payments"])

MODULE = "payments"


# ============================================
# Payment links
# ============================================

@router.post("/online-payments/generate-link", response_model=APIResponse[PaymentLinkResponse])
async def generate_payment_link(
    data: PaymentLinkRequest,
    ctx: RequestContext = Depends(get_request_context),
    client: PaymongoClient = Depends(get_paymongo_client),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a PayMongo payment link for an invoice (or one installment)

    The 2% convenience fee is added to the requested amount.

    **Errors**:
    - 503: online payments not configured
    - 404: invoice not found
    - 400: invoice already paid, or amount over the balance
    - 409: an active link already exists and has not been paid
    """
    link = await OnlinePaymentService.generate_link(db, data, client)
    await log_request_activity(db, ctx, "generate", MODULE, {
        "invoice_id": data.invoice_id,
        "installment_id": data.installment_id,
        "link_id": link.link_id,
        "total_amount": float(link.total_amount),
    })
    return APIResponse(data=link, message="Payment link generated successfully")


@router.post("/online-payments/generate-qr", response_model=APIResponse[PaymentQRResponse])
async def generate_payment_qr(
    data: PaymentLinkRequest,
    ctx: RequestContext = Depends(get_request_context),
    client: PaymongoClient = Depends(get_paymongo_client),
    db: AsyncSession = Depends(get_db)
):
    """Payment link plus an SVG QR code of its checkout URL; an unpaid active link is reused"""
    qr = await OnlinePaymentService.generate_qr(db, data, client)
    await log_request_activity(db, ctx, "generate", MODULE, {
        "invoice_id": data.invoice_id,
        "link_id": qr.link_id,
        "qr": True,
        "reused": qr.reused,
    })
    return APIResponse(data=qr, message="Payment QR code generated successfully")


@router.get("/online-payments/status/{invoice_id}", response_model=APIResponse[PaymentStatusResponse])
async def payment_status(
    invoice_id: int,
    refresh: bool = Query(False, description="Fetch the link from PayMongo before answering"),
    client: Optional[PaymongoClient] = Depends(get_optional_paymongo_client),
    db: AsyncSession = Depends(get_db)
):
    if refresh and client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Online payments are not configured"
        )
    return APIResponse(data=await OnlinePaymentService.payment_status(db, invoice_id, client, refresh))


@router.put("/online-payments/fix-status/{invoice_id}", response_model=APIResponse[FixStatusResponse])
async def fix_payment_status(
    invoice_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    """Reconcile paymongo_status with the payments received since the link was created"""
    result = await OnlinePaymentService.fix_status(db, invoice_id)
    if result.changed:
        await log_request_activity(db, ctx, "update", MODULE, {
            "invoice_id": invoice_id,
            "previous_status": result.previous_status,
            "paymongo_status": result.paymongo_status,
        })
    return APIResponse(data=result, message="Payment status reconciled")


# ============================================
# Webhook
# ============================================

@router.post("/webhooks/paymongo", response_model=WebhookAck)
async def paymongo_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """
    PayMongo event receiver

    The signature is checked against the raw body before it is parsed.
    Replays of an already recorded payment are acknowledged as duplicates.
    """
    raw_body = await request.body()
    verify_webhook_signature(raw_body, request.headers.get("Paymongo-Signature"))

    try:
        payload = json.loads(raw_body)
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook payload"
        )

    ack = await OnlinePaymentService.process_webhook(db, payload)

    if ack.status == 'processed':
        await log_activity(
            db,
            action="create",
            module=MODULE,
            username=GATEWAY_USER,
            ip_address=get_client_ip(request),
            details={
                "endpoint": request.url.path,
                "invoice_id": ack.invoice_id,
                "payment_id": ack.payment_id,
                "source": "webhook",
            }
        )
    return ack
