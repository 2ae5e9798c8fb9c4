"""
Billing Schemas
Patients, services, treatment plans, invoices, adjustments,
payments and installments
"""
from pydantic import Field, EmailStr, AliasChoices, field_validator, model_validator
from typing import Optional, List, Literal
from datetime import datetime, date
from decimal import Decimal

from app.schemas.base_schemas import BaseSchema, Money, PositiveMoney, Amount, TimestampSchema


AdjustmentKind = Literal['discount', 'write-off', 'refund']
DirectPaymentMethod = Literal['Cash', 'Bank Transfer']
InstallmentPaymentMethod = Literal['Cash', 'Bank Transfer', 'QR']
InstallmentStatus = Literal['pending', 'paid', 'overdue']


# ============================================
# Patient Schemas
# ============================================

class PatientCreate(BaseSchema):
    first_name: str = Field(..., min_length=1, max_length=255)
    last_name: str = Field(..., min_length=1, max_length=255)
    mobile_number: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None


class PatientResponse(BaseSchema):
    patient_id: int
    first_name: str
    last_name: str
    full_name: str
    mobile_number: Optional[str] = None
    email: Optional[str] = None
    created_at: Optional[datetime] = None


# ============================================
# Service Schemas
# ============================================

class ServiceBase(BaseSchema):
    service_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    fixed_price: Optional[Money] = None
    min_price: Optional[Money] = None
    max_price: Optional[Money] = None
    tooth_options: Optional[List[str]] = None


class ServiceCreate(ServiceBase):
    """Either fixed_price or a complete min/max range"""
    pass


class ServiceUpdate(BaseSchema):
    service_name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    fixed_price: Optional[Money] = None
    min_price: Optional[Money] = None
    max_price: Optional[Money] = None
    tooth_options: Optional[List[str]] = None


class ServiceResponse(TimestampSchema):
    service_id: int
    service_name: str
    description: Optional[str] = None
    fixed_price: Optional[Amount] = None
    min_price: Optional[Amount] = None
    max_price: Optional[Amount] = None
    tooth_options: Optional[List[str]] = None


# ============================================
# Treatment Plan Schemas
# ============================================

class PlanChargeCreate(BaseSchema):
    service_id: int
    tooth_number: Optional[str] = Field(None, max_length=50)
    estimated_amount: Optional[Money] = None
    notes: Optional[str] = None


class TreatmentPlanCreate(BaseSchema):
    patient_id: int
    dentist_name: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    charges: List[PlanChargeCreate] = Field(default_factory=list)


class TreatmentChargeResponse(BaseSchema):
    charge_id: int
    invoice_id: Optional[int] = None
    plan_id: Optional[int] = None
    service_id: int
    service_name: Optional[str] = None
    tooth_number: Optional[str] = None
    estimated_amount: Amount
    final_amount: Optional[Amount] = None
    status: str
    notes: Optional[str] = None


class TreatmentPlanResponse(TimestampSchema):
    plan_id: int
    patient_id: int
    patient_name: Optional[str] = None
    dentist_name: Optional[str] = None
    status: str
    notes: Optional[str] = None
    charges: List[TreatmentChargeResponse] = Field(default_factory=list)


# ============================================
# Invoice Schemas
# ============================================

class InvoiceChargeCreate(BaseSchema):
    """
    One line of a new invoice.
    entry_id points at an existing treatment-plan charge to invoice.
    """
    service_id: int
    entry_id: Optional[int] = None
    tooth_number: Optional[str] = Field(None, max_length=50)
    estimated_amount: Optional[Money] = None
    final_amount: Optional[Money] = None
    notes: Optional[str] = None


class InvoiceCreate(BaseSchema):
    patient_id: int
    plan_id: Optional[int] = None
    dentist_name: Optional[str] = Field(None, max_length=255)
    plan_mode: Literal['full', 'installment'] = 'full'
    charges: List[InvoiceChargeCreate] = Field(..., min_length=1)


class InvoiceUpdate(BaseSchema):
    """Replaces all charges; only allowed before any payment"""
    dentist_name: Optional[str] = Field(None, max_length=255)
    plan_mode: Optional[Literal['full', 'installment']] = None
    charges: List[InvoiceChargeCreate] = Field(..., min_length=1)


class InvoiceSummary(BaseSchema):
    """Financial summary; always the stored result of the last recalculation"""
    subtotal: Amount
    discounts: Amount
    write_offs: Amount
    refunds: Amount
    final_amount: Amount
    total_paid: Amount
    balance_due: Amount
    status: str


class InvoiceResponse(TimestampSchema):
    invoice_id: int
    invoice_code: str
    patient_id: int
    plan_id: Optional[int] = None
    dentist_name: Optional[str] = None
    plan_mode: str
    status: str
    total_amount_estimated: Amount
    discount_amount: Amount
    writeoff_amount: Amount
    refund_amount: Amount
    final_amount: Amount
    total_paid: Amount
    net_amount_due: Amount
    paymongo_link_id: Optional[str] = None
    paymongo_reference_number: Optional[str] = None
    paymongo_checkout_url: Optional[str] = None
    paymongo_status: Optional[str] = None
    payment_link_created_at: Optional[datetime] = None
    payment_completed_at: Optional[datetime] = None
    updated_by: Optional[str] = None


class InvoiceTreatment(BaseSchema):
    charge_id: int
    plan_id: Optional[int] = None
    service_id: int
    service_name: Optional[str] = None
    tooth_number: Optional[str] = None
    estimated_amount: Amount
    final_amount: Optional[Amount] = None
    status: str
    notes: Optional[str] = None


class InvoiceListEntry(BaseSchema):
    invoice_id: int
    invoice_code: str
    patient_id: int
    patient_name: str
    dentist_name: Optional[str] = None
    amount: Amount
    status: str
    plan_mode: str
    treatments: List[str] = Field(default_factory=list)
    mobile_number: Optional[str] = None
    email: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ============================================
# Adjustment Schemas
# ============================================

class AdjustmentCreate(BaseSchema):
    type: AdjustmentKind
    amount: PositiveMoney
    reason: Optional[str] = Field(
        None,
        validation_alias=AliasChoices('reason', 'note')
    )


class AdjustmentResponse(BaseSchema):
    adjustment_id: int
    invoice_id: int
    type: str
    amount: Amount
    reason: Optional[str] = None
    previous_balance: Amount
    new_balance: Amount
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class AdjustmentResult(BaseSchema):
    adjustment: AdjustmentResponse
    invoice: InvoiceResponse


# ============================================
# Payment Schemas
# ============================================

class PaymentCreate(BaseSchema):
    invoice_id: int
    amount_paid: PositiveMoney
    received_amount: Optional[Money] = None
    method: DirectPaymentMethod
    transaction_ref: Optional[str] = Field(None, max_length=100)
    proof_of_payment: Optional[str] = None

    @model_validator(mode='after')
    def check_tender(self):
        if self.received_amount is not None and self.received_amount < self.amount_paid:
            raise ValueError('received_amount cannot be less than amount_paid')
        return self


class PaymentResponse(BaseSchema):
    payment_id: int
    invoice_id: int
    amount_paid: Amount
    received_amount: Optional[Amount] = None
    change_amount: Amount
    convenience_fee: Amount
    method: str
    transaction_ref: Optional[str] = None
    proof_of_payment: Optional[str] = None
    payment_date: datetime
    recorded_by: Optional[str] = None


class InvoiceBalanceUpdate(BaseSchema):
    net_amount_due: Amount
    status: str
    total_paid: Amount


class PaymentResult(BaseSchema):
    payment: PaymentResponse
    invoice_update: InvoiceBalanceUpdate


class PaymentProofUpdate(BaseSchema):
    proof_of_payment: str = Field(..., min_length=1)


class PaymentLedgerEntry(BaseSchema):
    """Direct and installment payments in one listing"""
    payment_type: Literal['direct', 'installment']
    payment_id: int
    invoice_id: int
    invoice_code: Optional[str] = None
    patient_name: Optional[str] = None
    installment_id: Optional[int] = None
    amount_paid: Amount
    received_amount: Optional[Amount] = None
    change_amount: Amount = Decimal("0")
    convenience_fee: Amount = Decimal("0")
    method: str
    transaction_ref: Optional[str] = None
    proof_of_payment: Optional[str] = None
    payment_date: datetime
    recorded_by: Optional[str] = None


# ============================================
# Installment Schemas
# ============================================

class InstallmentCreate(BaseSchema):
    due_date: date
    amount_due: PositiveMoney
    notes: Optional[str] = None


class InstallmentBulkCreate(BaseSchema):
    invoice_id: int
    installments: List[InstallmentCreate] = Field(..., min_length=1)


class InstallmentUpdate(BaseSchema):
    due_date: Optional[date] = None
    amount_due: Optional[PositiveMoney] = None
    status: Optional[InstallmentStatus] = None
    notes: Optional[str] = None


class InstallmentResponse(BaseSchema):
    installment_id: int
    invoice_id: int
    installment_number: int
    due_date: date
    amount_due: Amount
    amount_paid: Amount
    remaining: Amount
    status: str
    notes: Optional[str] = None


class InstallmentPaymentCreate(BaseSchema):
    amount: PositiveMoney
    method: InstallmentPaymentMethod
    transaction_ref: Optional[str] = Field(None, max_length=100)


class InstallmentPaymentResponse(BaseSchema):
    id: int
    installment_id: int
    invoice_id: int
    amount: Amount
    convenience_fee: Amount
    method: str
    transaction_ref: Optional[str] = None
    payment_date: datetime
    recorded_by: Optional[str] = None


class InstallmentPaymentResult(BaseSchema):
    payment: InstallmentPaymentResponse
    installment: InstallmentResponse
    invoice_update: InvoiceBalanceUpdate


# ============================================
# Invoice Detail (composed)
# ============================================

class InvoiceDetail(InvoiceResponse):
    patient_name: str
    mobile_number: Optional[str] = None
    email: Optional[str] = None
    treatments: List[InvoiceTreatment] = Field(default_factory=list)
    adjustments: List[AdjustmentResponse] = Field(default_factory=list)
    payments: List[PaymentLedgerEntry] = Field(default_factory=list)
    installments: List[InstallmentResponse] = Field(default_factory=list)
    summary: InvoiceSummary


class InvoiceEmailRequest(BaseSchema):
    to: Optional[EmailStr] = None
    message: Optional[str] = Field(None, max_length=2000)


# ============================================
# Report Schemas
# ============================================

class RevenuePeriod(BaseSchema):
    period: str
    revenue: Amount
    payment_count: int


class RevenueSummary(BaseSchema):
    invoice_count: int
    total_billed: Amount
    total_revenue: Amount
    total_outstanding: Amount


class RevenueReport(BaseSchema):
    group_by: str
    periods: List[RevenuePeriod]
    summary: RevenueSummary


class PaymentMethodStat(BaseSchema):
    method: str
    count: int
    total: Amount


class PatientStats(BaseSchema):
    active_patients: int
    new_patients: int
    invoice_count: int


class GrowthRate(BaseSchema):
    period: str
    current_revenue: Amount
    previous_revenue: Amount
    growth_rate: float
    current_start: date
    previous_start: date


class ReportRange(BaseSchema):
    start_date: date
    end_date: date

    @field_validator('end_date')
    @classmethod
    def end_after_start(cls, v: date, info) -> date:
        start = info.data.get('start_date')
        if start and v < start:
            raise ValueError('end_date must not be before start_date')
        return v
