"""
Invoice PDF and e-mail delivery
"""
import logging
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.schemas.billing_schemas import InvoiceEmailRequest
from app.services.billing.invoice_service import InvoiceService
from app.utils.notifications import EmailNotifier
from app.utils.pdf_reports import render_invoice_pdf

logger = logging.getLogger(__name__)
settings = get_settings()


async def invoice_pdf(db: AsyncSession, invoice_id: int) -> tuple[str, bytes]:
    """Returns (filename, pdf bytes)"""
    detail = await InvoiceService.get_invoice_detail(db, invoice_id)
    return f"{detail.invoice_code}.pdf", render_invoice_pdf(detail)


async def email_invoice(
    db: AsyncSession,
    invoice_id: int,
    request: InvoiceEmailRequest,
    notifier: EmailNotifier
) -> str:
    """Send the invoice to the patient (or the override address). Returns the recipient."""
    detail = await InvoiceService.get_invoice_detail(db, invoice_id)

    recipient: Optional[str] = request.to or detail.email
    if not recipient:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Patient has no email address; provide a recipient"
        )

    checkout_url = detail.paymongo_checkout_url if detail.paymongo_status == 'active' else None

    sent = await notifier.send_template_email(
        to=recipient,
        subject=f"{settings.CLINIC_NAME} invoice {detail.invoice_code}",
        template_name="invoice_email.html",
        context={
            "clinic_name": settings.CLINIC_NAME,
            "invoice": detail,
            "summary": detail.summary,
            "message": request.message,
            "checkout_url": checkout_url,
        },
        attachments=[(f"{detail.invoice_code}.pdf", render_invoice_pdf(detail), "pdf")],
    )
    if not sent:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to send invoice email"
        )

    logger.info(f"Invoice {detail.invoice_code} emailed to {recipient}")
    return recipient
