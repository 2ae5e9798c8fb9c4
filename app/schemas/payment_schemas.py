"""
Online Payment Schemas
PayMongo payment links, QR codes, status polling and webhook acknowledgements
"""
from pydantic import Field
from typing import Optional, List, Literal
from datetime import datetime

from app.schemas.base_schemas import BaseSchema, PositiveMoney, Amount


class PaymentLinkRequest(BaseSchema):
    """amount is the base amount; the convenience fee is added on top"""
    invoice_id: int
    amount: PositiveMoney
    description: Optional[str] = Field(None, max_length=255)
    installment_id: Optional[int] = None


class PaymentLinkResponse(BaseSchema):
    link_id: str
    reference_number: Optional[str] = None
    checkout_url: str
    amount: Amount
    convenience_fee: Amount
    total_amount: Amount
    status: str


class PaymentQRResponse(PaymentLinkResponse):
    qr_code: str = Field(..., description="data:image/svg+xml;base64,...")
    reused: bool = False


class RecentOnlinePayment(BaseSchema):
    payment_type: Literal['direct', 'installment']
    payment_id: int
    amount: Amount
    convenience_fee: Amount
    method: str
    transaction_ref: Optional[str] = None
    payment_date: datetime


class PaymentStatusResponse(BaseSchema):
    invoice_id: int
    paymongo_status: Optional[str] = None
    payment_completed: bool
    total_payments: int
    total_amount_paid: Amount
    recent_payments: List[RecentOnlinePayment] = Field(default_factory=list)
    link_id: Optional[str] = None
    reference_number: Optional[str] = None
    checkout_url: Optional[str] = None
    invoice_status: str
    net_amount_due: Amount


class FixStatusResponse(BaseSchema):
    invoice_id: int
    previous_status: Optional[str] = None
    paymongo_status: Optional[str] = None
    payments_since_link: int
    changed: bool


class WebhookAck(BaseSchema):
    received: bool = True
    status: str = Field(..., description="processed, duplicate, ignored")
    payment_id: Optional[int] = None
    invoice_id: Optional[int] = None
