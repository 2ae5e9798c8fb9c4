from app.db.base import Base
from sqlalchemy import (
    String, Integer, Numeric, Text, Date, DateTime,
    ForeignKey, CheckConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from typing import Optional, List, TYPE_CHECKING
from datetime import date, datetime
from decimal import Decimal

from app.models.core.mixins import TimestampMixin, CreatedAtMixin
from app.models.db_types import JSONB
if TYPE_CHECKING:
    from app.models.patient.patient_model import Patient


INVOICE_STATUSES = ('unpaid', 'partial', 'paid')
ADJUSTMENT_TYPES = ('discount', 'write-off', 'refund')
INSTALLMENT_STATUSES = ('pending', 'paid', 'overdue')


# ============================================
# Catalogue and treatment plans
# ============================================

class Service(Base, TimestampMixin):
    """
    Billable dental service.
    Priced either with a fixed price or a min/max range, never both.
    """
    __tablename__ = 'services'

    service_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    service_name: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True
    )

    description: Mapped[Optional[str]] = mapped_column(Text)

    fixed_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    min_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    max_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))

    tooth_options: Mapped[Optional[list]] = mapped_column(
        JSONB,
        comment="Selectable tooth numbers/areas for the service"
    )

    __table_args__ = (
        CheckConstraint(
            "fixed_price IS NULL OR (min_price IS NULL AND max_price IS NULL)",
            name='check_service_single_pricing'
        ),
        CheckConstraint(
            "min_price IS NULL OR max_price IS NULL OR min_price <= max_price",
            name='check_service_price_range'
        ),
    )

    @property
    def default_price(self) -> Decimal:
        """Price used when a charge arrives without an estimate"""
        if self.fixed_price is not None:
            return Decimal(self.fixed_price)
        if self.min_price is not None and self.max_price is not None:
            return (Decimal(self.min_price) + Decimal(self.max_price)) / 2
        return Decimal("0")


class TreatmentPlan(Base, TimestampMixin):
    """Planned treatments for a patient, invoiced over one or more visits"""
    __tablename__ = 'treatment_plans'

    plan_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    patient_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('patients.patient_id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    dentist_name: Mapped[Optional[str]] = mapped_column(String(255))

    status: Mapped[str] = mapped_column(
        String(20),
        default='planned',
        nullable=False,
        comment="planned, in_progress, completed"
    )

    notes: Mapped[Optional[str]] = mapped_column(Text)

    patient: Mapped["Patient"] = relationship()
    charges: Mapped[List["TreatmentCharge"]] = relationship(
        back_populates="plan",
        order_by="TreatmentCharge.charge_id"
    )


class TreatmentCharge(Base):
    """
    Single treatment line.
    Plan entries carry plan_id; invoiced charges carry invoice_id.
    """
    __tablename__ = 'treatment_charge'

    charge_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    invoice_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey('invoice.invoice_id', ondelete='CASCADE'),
        nullable=True,
        index=True
    )

    plan_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey('treatment_plans.plan_id', ondelete='SET NULL'),
        nullable=True,
        index=True
    )

    service_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('services.service_id', ondelete='RESTRICT'),
        nullable=False,
        index=True
    )

    tooth_number: Mapped[Optional[str]] = mapped_column(String(50))
    estimated_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    final_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))

    status: Mapped[str] = mapped_column(
        String(20),
        default='pending',
        nullable=False,
        comment="pending, invoiced, completed"
    )

    notes: Mapped[Optional[str]] = mapped_column(Text)

    service: Mapped["Service"] = relationship()
    plan: Mapped[Optional["TreatmentPlan"]] = relationship(back_populates="charges")
    invoice: Mapped[Optional["Invoice"]] = relationship(back_populates="charges")

    @property
    def amount(self) -> Decimal:
        if self.final_amount is not None:
            return Decimal(self.final_amount)
        return Decimal(self.estimated_amount or 0)


# ============================================
# Invoices
# ============================================

class Invoice(Base, TimestampMixin):
    """
    Patient invoice.
    The totals below are written only by financials.recalculate_invoice.
    """
    __tablename__ = 'invoice'

    invoice_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    invoice_code: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="INV{YYYY}-{MMDD}-{HHMMSS}"
    )

    patient_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('patients.patient_id', ondelete='RESTRICT'),
        nullable=False,
        index=True
    )

    plan_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey('treatment_plans.plan_id', ondelete='SET NULL'),
        nullable=True
    )

    dentist_name: Mapped[Optional[str]] = mapped_column(String(255))

    plan_mode: Mapped[str] = mapped_column(
        String(20),
        default='full',
        nullable=False,
        comment="full, installment"
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default='unpaid',
        nullable=False,
        index=True,
        comment="unpaid, partial, paid"
    )

    # Stored totals
    total_amount_estimated: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    writeoff_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    refund_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    final_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    total_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    net_amount_due: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    # PayMongo payment link
    paymongo_link_id: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    paymongo_reference_number: Mapped[Optional[str]] = mapped_column(String(100))
    paymongo_checkout_url: Mapped[Optional[str]] = mapped_column(Text)
    paymongo_status: Mapped[Optional[str]] = mapped_column(
        String(20),
        comment="active, pending, paid"
    )
    payment_link_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    payment_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    updated_by: Mapped[Optional[str]] = mapped_column(String(255))

    # Relationships
    patient: Mapped["Patient"] = relationship()
    plan: Mapped[Optional["TreatmentPlan"]] = relationship()
    charges: Mapped[List["TreatmentCharge"]] = relationship(
        back_populates="invoice",
        order_by="TreatmentCharge.charge_id"
    )
    payments: Mapped[List["Payment"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="Payment.payment_id"
    )
    installments: Mapped[List["Installment"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="Installment.installment_number"
    )
    installment_payments: Mapped[List["InstallmentPayment"]] = relationship(
        back_populates="invoice",
        order_by="InstallmentPayment.id"
    )
    adjustments: Mapped[List["AdjustmentLog"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="AdjustmentLog.adjustment_id"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('unpaid', 'partial', 'paid')",
            name='check_invoice_status'
        ),
        CheckConstraint(
            "plan_mode IN ('full', 'installment')",
            name='check_invoice_plan_mode'
        ),
        Index('idx_invoice_patient_status', 'patient_id', 'status'),
    )


class Payment(Base):
    """Direct payment against an invoice"""
    __tablename__ = 'payment'

    payment_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    invoice_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('invoice.invoice_id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    received_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    change_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    convenience_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    method: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        index=True,
        comment="Cash, Bank Transfer, QR, QR/Online"
    )

    transaction_ref: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    proof_of_payment: Mapped[Optional[str]] = mapped_column(Text)

    payment_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )

    recorded_by: Mapped[Optional[str]] = mapped_column(String(255))

    invoice: Mapped["Invoice"] = relationship(back_populates="payments")

    __table_args__ = (
        CheckConstraint("amount_paid > 0", name='check_payment_amount_positive'),
    )


class Installment(Base):
    """Scheduled part-payment of an invoice"""
    __tablename__ = 'installment'

    installment_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    invoice_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('invoice.invoice_id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    amount_due: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default='pending',
        nullable=False,
        comment="pending, paid, overdue"
    )

    notes: Mapped[Optional[str]] = mapped_column(Text)

    invoice: Mapped["Invoice"] = relationship(back_populates="installments")
    payments: Mapped[List["InstallmentPayment"]] = relationship(
        back_populates="installment",
        order_by="InstallmentPayment.id"
    )

    __table_args__ = (
        CheckConstraint("amount_due > 0", name='check_installment_amount_due'),
        CheckConstraint(
            "status IN ('pending', 'paid', 'overdue')",
            name='check_installment_status'
        ),
    )

    @property
    def remaining(self) -> Decimal:
        return Decimal(self.amount_due) - Decimal(self.amount_paid or 0)


class InstallmentPayment(Base):
    """Payment made against a single installment"""
    __tablename__ = 'installment_payment'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    installment_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('installment.installment_id', ondelete='RESTRICT'),
        nullable=False,
        index=True
    )

    invoice_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('invoice.invoice_id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    convenience_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    method: Mapped[str] = mapped_column(String(30), nullable=False)
    transaction_ref: Mapped[Optional[str]] = mapped_column(String(100), index=True)

    payment_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )

    recorded_by: Mapped[Optional[str]] = mapped_column(String(255))

    installment: Mapped["Installment"] = relationship(back_populates="payments")
    invoice: Mapped["Invoice"] = relationship(back_populates="installment_payments")

    __table_args__ = (
        CheckConstraint("amount > 0", name='check_installment_payment_amount'),
    )


class AdjustmentLog(Base, CreatedAtMixin):
    """
    Discount, write-off or refund applied to an invoice.
    Immutable; keeps the balance before and after.
    """
    __tablename__ = 'adjustment_log'

    adjustment_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    invoice_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('invoice.invoice_id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="discount, write-off, refund"
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text)
    previous_balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    new_balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(255))

    invoice: Mapped["Invoice"] = relationship(back_populates="adjustments")

    __table_args__ = (
        CheckConstraint("amount > 0", name='check_adjustment_amount_positive'),
        CheckConstraint(
            "type IN ('discount', 'write-off', 'refund')",
            name='check_adjustment_type'
        ),
    )
