"""
Online Payment Service
PayMongo payment links, QR codes, status polling and the payment webhook
"""
import logging
import re
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.security import SecurityUtils
from app.models.billing.billing_model import Invoice, Installment, Payment, InstallmentPayment
from app.schemas.payment_schemas import (
    PaymentLinkRequest, PaymentLinkResponse, PaymentQRResponse, RecentOnlinePayment,
    PaymentStatusResponse, FixStatusResponse, WebhookAck
)
from app.services.billing.financials import (
    add_convenience_fee, split_convenience_fee, from_centavos, recalculate_invoice, to_money, ZERO
)
from app.services.billing.paymongo_client import PaymongoClient, PaymentLink
from app.services.billing.payment_service import PaymentService
from app.services.system.activity_service import create_audit_log
from app.utils.pdf_reports import qr_svg_data_uri

logger = logging.getLogger(__name__)
settings = get_settings()

ONLINE_METHOD = 'QR/Online'
GATEWAY_USER = 'paymongo'
PAID_EVENT = 'link.payment.paid'

INVOICE_PATTERN = re.compile(r'Invoice #(\d+)')
INSTALLMENT_PATTERN = re.compile(r'Installment #(\d+)')


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def parse_signature_header(header: str) -> Dict[str, str]:
    """'t=1700000000,te=abc,li=def' -> {'t': ..., 'te': ..., 'li': ...}"""
    parts = {}
    for chunk in header.split(','):
        key, sep, value = chunk.strip().partition('=')
        if sep:
            parts[key] = value
    return parts


def verify_webhook_signature(raw_body: bytes, header: Optional[str], now: Optional[int] = None) -> None:
    """
    Check the Paymongo-Signature header against the raw request body.
    Raises 401 when the signature is missing, wrong or older than the tolerance.
    """
    secret = settings.PAYMONGO_WEBHOOK_SECRET
    if not secret:
        if settings.is_production:
            logger.error("Webhook received but PAYMONGO_WEBHOOK_SECRET is not set")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Webhook signature cannot be verified"
            )
        logger.warning("PAYMONGO_WEBHOOK_SECRET not set; skipping webhook signature check")
        return

    if not header:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing webhook signature"
        )

    parts = parse_signature_header(header)
    timestamp = _int_or_none(parts.get('t'))
    if timestamp is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature"
        )

    now = int(time.time()) if now is None else now
    if now - timestamp > settings.WEBHOOK_TOLERANCE_SECONDS:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Webhook signature has expired"
        )

    expected = SecurityUtils.compute_signature(secret, f"{timestamp}.".encode('utf-8') + raw_body)
    live = parts.get('li')
    test = parts.get('te')

    if not (SecurityUtils.signatures_match(expected, live) or SecurityUtils.signatures_match(expected, test)):
        logger.warning("Rejected webhook with invalid signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature"
        )


class OnlinePaymentService:

    # ============================================
    # Payment links
    # ============================================

    @staticmethod
    async def _get_invoice(db: AsyncSession, invoice_id: int) -> Invoice:
        invoice = (await db.execute(
            select(Invoice)
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
    async def _check_payable(db: AsyncSession, invoice: Invoice, data: PaymentLinkRequest) -> Optional[Installment]:
        """400 when the invoice is settled or the amount exceeds what is owed"""
        if invoice.status == 'paid' or to_money(invoice.net_amount_due) <= 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invoice is already paid"
            )

        amount = to_money(data.amount)

        if data.installment_id:
            installment = await PaymentService.get_installment(db, data.installment_id)
            if installment.invoice_id != invoice.invoice_id:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Installment does not belong to this invoice"
                )
            remaining = to_money(installment.amount_due) - to_money(installment.amount_paid)
            if amount > remaining:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Amount ({amount}) exceeds remaining installment balance ({remaining})"
                )
            return installment

        balance = to_money(invoice.net_amount_due)
        if amount > balance:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Amount ({amount}) exceeds balance due ({balance})"
            )
        return None

    @staticmethod
    async def _payments_since_link(db: AsyncSession, invoice: Invoice) -> List[RecentOnlinePayment]:
        """Payments dated after the current link was created; older ones never count"""
        if not invoice.payment_link_created_at:
            return []

        since = invoice.payment_link_created_at
        direct = await db.execute(
            select(Payment)
            .where(Payment.invoice_id == invoice.invoice_id, Payment.payment_date > since)
        )
        installment = await db.execute(
            select(InstallmentPayment)
            .where(InstallmentPayment.invoice_id == invoice.invoice_id, InstallmentPayment.payment_date > since)
        )

        recent = [
            RecentOnlinePayment(
                payment_type='direct',
                payment_id=p.payment_id,
                amount=p.amount_paid,
                convenience_fee=p.convenience_fee,
                method=p.method,
                transaction_ref=p.transaction_ref,
                payment_date=p.payment_date,
            )
            for p in direct.scalars().all()
        ]
        recent.extend(
            RecentOnlinePayment(
                payment_type='installment',
                payment_id=p.id,
                amount=p.amount,
                convenience_fee=p.convenience_fee,
                method=p.method,
                transaction_ref=p.transaction_ref,
                payment_date=p.payment_date,
            )
            for p in installment.scalars().all()
        )
        recent.sort(key=lambda p: p.payment_date.replace(tzinfo=None), reverse=True)
        return recent

    @staticmethod
    def _description(invoice: Invoice, data: PaymentLinkRequest) -> str:
        if data.installment_id:
            suffix = data.description or f"Invoice #{invoice.invoice_id}"
            return f"Installment #{data.installment_id} - {suffix}"
        return data.description or f"Invoice #{invoice.invoice_id}"

    @staticmethod
    async def generate_link(
        db: AsyncSession,
        data: PaymentLinkRequest,
        client: PaymongoClient
    ) -> PaymentLinkResponse:
        invoice = await OnlinePaymentService._get_invoice(db, data.invoice_id)
        await OnlinePaymentService._check_payable(db, invoice, data)

        if invoice.paymongo_status == 'active' and invoice.paymongo_link_id:
            if not await OnlinePaymentService._payments_since_link(db, invoice):
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="An active payment link already exists for this invoice"
                )

        base = to_money(data.amount)
        fee, total = add_convenience_fee(base)

        metadata = {"invoice_id": str(invoice.invoice_id)}
        if data.installment_id:
            metadata["installment_id"] = str(data.installment_id)

        link = await client.create_link(
            total,
            OnlinePaymentService._description(invoice, data),
            metadata=metadata,
            remarks=invoice.invoice_code,
        )

        async with db.begin_nested():
            invoice.paymongo_link_id = link.link_id
            invoice.paymongo_reference_number = link.reference_number
            invoice.paymongo_checkout_url = link.checkout_url
            invoice.paymongo_status = 'active'
            invoice.payment_link_created_at = datetime.now(timezone.utc)
        await db.commit()

        logger.info(f"Payment link {link.link_id} stored on invoice {invoice.invoice_id} ({total})")

        return PaymentLinkResponse(
            link_id=link.link_id,
            reference_number=link.reference_number,
            checkout_url=link.checkout_url,
            amount=base,
            convenience_fee=fee,
            total_amount=total,
            status='active',
        )

    @staticmethod
    async def generate_qr(
        db: AsyncSession,
        data: PaymentLinkRequest,
        client: PaymongoClient
    ) -> PaymentQRResponse:
        """QR of the checkout URL; an unpaid active link for the same amount is reused"""
        invoice = await OnlinePaymentService._get_invoice(db, data.invoice_id)
        await OnlinePaymentService._check_payable(db, invoice, data)

        if invoice.paymongo_status == 'active' and invoice.paymongo_link_id:
            link = await client.get_link(invoice.paymongo_link_id)
            base, fee = split_convenience_fee(link.amount)
            if link.status == 'unpaid' and base == to_money(data.amount):
                return PaymentQRResponse(
                    link_id=link.link_id,
                    reference_number=link.reference_number,
                    checkout_url=link.checkout_url,
                    amount=base,
                    convenience_fee=fee,
                    total_amount=link.amount,
                    status='active',
                    qr_code=qr_svg_data_uri(link.checkout_url),
                    reused=True,
                )

        created = await OnlinePaymentService.generate_link(db, data, client)
        return PaymentQRResponse(
            **created.model_dump(),
            qr_code=qr_svg_data_uri(created.checkout_url),
        )

    # ============================================
    # Status polling
    # ============================================

    @staticmethod
    async def payment_status(
        db: AsyncSession,
        invoice_id: int,
        client: Optional[PaymongoClient] = None,
        refresh: bool = False
    ) -> PaymentStatusResponse:
        invoice = await OnlinePaymentService._get_invoice(db, invoice_id)

        if refresh and client and invoice.paymongo_link_id and invoice.paymongo_status != 'paid':
            link = await client.get_link(invoice.paymongo_link_id)
            if link.status == 'paid':
                await OnlinePaymentService._record_from_link(db, invoice, link)
                invoice = await OnlinePaymentService._get_invoice(db, invoice_id)

        recent = await OnlinePaymentService._payments_since_link(db, invoice)
        reference = invoice.paymongo_reference_number
        completed = invoice.paymongo_status == 'paid' or any(
            reference and p.transaction_ref == reference for p in recent
        )

        return PaymentStatusResponse(
            invoice_id=invoice.invoice_id,
            paymongo_status=invoice.paymongo_status,
            payment_completed=bool(completed),
            total_payments=len(recent),
            total_amount_paid=sum((to_money(p.amount) for p in recent), ZERO),
            recent_payments=recent,
            link_id=invoice.paymongo_link_id,
            reference_number=reference,
            checkout_url=invoice.paymongo_checkout_url,
            invoice_status=invoice.status,
            net_amount_due=invoice.net_amount_due,
        )

    @staticmethod
    async def _record_from_link(db: AsyncSession, invoice: Invoice, link: PaymentLink) -> WebhookAck:
        metadata = dict(link.metadata or {})
        if link.payments:
            payment_attrs = (link.payments[0].get('data') or {}).get('attributes') or {}
            metadata.update(payment_attrs.get('metadata') or {})

        installment_id = _int_or_none(metadata.get('installment_id'))
        if installment_id is None and link.description:
            match = INSTALLMENT_PATTERN.search(link.description)
            installment_id = int(match.group(1)) if match else None

        return await OnlinePaymentService.record_online_payment(
            db,
            invoice_id=invoice.invoice_id,
            installment_id=installment_id,
            total=link.amount,
            reference=link.reference_number,
        )

    @staticmethod
    async def fix_status(db: AsyncSession, invoice_id: int) -> FixStatusResponse:
        """
        Reconcile paymongo_status with the local payments.
        No payments since the link resets it to pending so a new link can be generated.
        """
        invoice = await OnlinePaymentService._get_invoice(db, invoice_id)
        previous = invoice.paymongo_status
        recent = await OnlinePaymentService._payments_since_link(db, invoice)

        async with db.begin_nested():
            if recent and previous != 'paid':
                invoice.paymongo_status = 'paid'
                invoice.payment_completed_at = datetime.now(timezone.utc)
            elif not recent:
                invoice.paymongo_status = 'pending'
        await db.commit()

        if previous != invoice.paymongo_status:
            logger.info(f"Invoice {invoice_id} paymongo_status {previous} -> {invoice.paymongo_status}")

        return FixStatusResponse(
            invoice_id=invoice_id,
            previous_status=previous,
            paymongo_status=invoice.paymongo_status,
            payments_since_link=len(recent),
            changed=previous != invoice.paymongo_status,
        )

    # ============================================
    # Recording gateway payments
    # ============================================

    @staticmethod
    async def record_online_payment(
        db: AsyncSession,
        invoice_id: int,
        installment_id: Optional[int],
        total: Decimal,
        reference: Optional[str]
    ) -> WebhookAck:
        """
        Record a gateway payment once per reference number.
        The convenience fee is split off; only the base reduces the balance.
        """
        if reference:
            seen = (await db.execute(
                select(Payment.payment_id).where(Payment.transaction_ref == reference)
            )).first() or (await db.execute(
                select(InstallmentPayment.id).where(InstallmentPayment.transaction_ref == reference)
            )).first()
            if seen:
                logger.info(f"Duplicate gateway payment {reference} for invoice {invoice_id}")
                return WebhookAck(status='duplicate', invoice_id=invoice_id)

        base, fee = split_convenience_fee(total)
        now = datetime.now(timezone.utc)

        async with db.begin_nested():
            invoice = await recalculate_invoice(db, invoice_id)

            installment = None
            if installment_id:
                installment = (await db.execute(
                    select(Installment)
                    .where(
                        Installment.installment_id == installment_id,
                        Installment.invoice_id == invoice_id
                    )
                    .with_for_update()
                )).scalar_one_or_none()
                if installment is None:
                    logger.warning(
                        f"Installment {installment_id} not on invoice {invoice_id}; recording as direct payment"
                    )

            if installment is not None:
                payment = await PaymentService.apply_installment_payment(
                    db,
                    installment,
                    amount=base,
                    method=ONLINE_METHOD,
                    transaction_ref=reference,
                    recorded_by=GATEWAY_USER,
                    convenience_fee=fee,
                    enforce_remaining=False,
                )
                payment_id = payment.id
            else:
                payment = Payment(
                    invoice_id=invoice_id,
                    amount_paid=base,
                    received_amount=base,
                    change_amount=ZERO,
                    convenience_fee=fee,
                    method=ONLINE_METHOD,
                    transaction_ref=reference,
                    payment_date=now,
                    recorded_by=GATEWAY_USER,
                )
                db.add(payment)
                await db.flush()
                payment_id = payment.payment_id

            invoice = await recalculate_invoice(db, invoice_id, GATEWAY_USER)
            invoice.paymongo_status = 'paid'
            invoice.payment_completed_at = now

            create_audit_log(
                db,
                entity_type='payment',
                entity_id=payment_id,
                action='online_payment_received',
                user_id=GATEWAY_USER,
                changes={
                    "invoice_id": invoice_id,
                    "installment_id": installment.installment_id if installment is not None else None,
                    "amount": str(base),
                    "convenience_fee": str(fee),
                    "reference_number": reference,
                },
            )

        await db.commit()
        logger.info(f"Online payment {reference} of {base} (+{fee} fee) recorded on invoice {invoice_id}")
        return WebhookAck(status='processed', payment_id=payment_id, invoice_id=invoice_id)

    # ============================================
    # Webhook
    # ============================================

    @staticmethod
    async def _resolve_invoice(
        db: AsyncSession,
        link_id: Optional[str],
        metadata: Dict[str, Any],
        description: str
    ) -> Optional[int]:
        """Link id first, then metadata, then 'Invoice #N' in the description"""
        if link_id:
            found = (await db.execute(
                select(Invoice.invoice_id).where(Invoice.paymongo_link_id == link_id)
            )).scalar_one_or_none()
            if found:
                return found

        candidates = [_int_or_none(metadata.get('invoice_id'))]
        match = INVOICE_PATTERN.search(description or '')
        if match:
            candidates.append(int(match.group(1)))

        for candidate in candidates:
            if candidate is None:
                continue
            found = (await db.execute(
                select(Invoice.invoice_id).where(Invoice.invoice_id == candidate)
            )).scalar_one_or_none()
            if found:
                return found
        return None

    @staticmethod
    def _event_parts(payload: Dict[str, Any]) -> Tuple[Optional[str], Optional[str], Dict[str, Any]]:
        """(event type, link id, resource attributes) from a webhook body"""
        event = payload.get('data') or {}
        attributes = event.get('attributes') or {}
        resource = attributes.get('data') or {}

        resource_id = resource.get('id') or ''
        link_id = resource_id if resource_id.startswith('link_') else event.get('id')
        return attributes.get('type'), link_id, resource.get('attributes') or {}

    @staticmethod
    async def process_webhook(db: AsyncSession, payload: Dict[str, Any]) -> WebhookAck:
        event_type, link_id, resource = OnlinePaymentService._event_parts(payload)

        if event_type != PAID_EVENT:
            logger.info(f"Ignoring PayMongo event {event_type}")
            return WebhookAck(status='ignored')

        description = resource.get('description') or ''
        metadata = dict(resource.get('metadata') or {})
        payments = resource.get('payments') or []
        if payments:
            payment_attrs = (payments[0].get('data') or {}).get('attributes') or {}
            metadata.update(payment_attrs.get('metadata') or {})

        invoice_id = await OnlinePaymentService._resolve_invoice(db, link_id, metadata, description)
        if invoice_id is None:
            logger.warning(f"PayMongo payment for link {link_id} matches no invoice")
            return WebhookAck(status='ignored')

        installment_id = _int_or_none(metadata.get('installment_id'))
        if installment_id is None:
            match = INSTALLMENT_PATTERN.search(description)
            installment_id = int(match.group(1)) if match else None

        return await OnlinePaymentService.record_online_payment(
            db,
            invoice_id=invoice_id,
            installment_id=installment_id,
            total=from_centavos(resource.get('amount') or 0),
            reference=resource.get('reference_number'),
        )
