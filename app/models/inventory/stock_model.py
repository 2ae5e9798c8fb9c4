from app.db.base import Base
from sqlalchemy import (
    String, Integer, Numeric, Text, Date, DateTime,
    ForeignKey, CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from typing import Optional, List, TYPE_CHECKING
from datetime import date, datetime
from decimal import Decimal

from app.models.core.mixins import TimestampMixin, CreatedAtMixin
if TYPE_CHECKING:
    from app.models.inventory.inventory_model import Item, Supplier
    from app.models.purchasing.purchase_order_model import PurchaseOrder


class StockBatch(Base, TimestampMixin):
    """
    A received lot of an item, tracked with quantity and optional expiry.
    qty_available is the only place stock is held and never drops below zero.
    """
    __tablename__ = 'stock_batches'

    batch_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    item_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('items.item_id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    stock_in_header_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey('stock_in_headers.stock_in_header_id', ondelete='SET NULL'),
        nullable=True,
        comment="Delivery that created the batch"
    )

    batch_no: Mapped[str] = mapped_column(String(100), nullable=False)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, index=True)

    qty_received: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    qty_available: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    item: Mapped["Item"] = relationship(back_populates="batches")
    stock_in_header: Mapped[Optional["StockInHeader"]] = relationship()

    __table_args__ = (
        UniqueConstraint('item_id', 'batch_no', name='uq_batch_item_batch_no'),
        CheckConstraint('qty_available >= 0', name='check_batch_qty_non_negative'),
        CheckConstraint('unit_cost >= 0', name='check_batch_unit_cost'),
    )

    def __repr__(self):
        return f"<StockBatch(id={self.batch_id}, item={self.item_id}, batch='{self.batch_no}', qty={self.qty_available})>"


class StockInHeader(Base, CreatedAtMixin):
    """One delivery received from a supplier, possibly against a purchase order"""
    __tablename__ = 'stock_in_headers'

    stock_in_header_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    stock_in_no: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True
    )

    po_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey('purchase_order.po_id', ondelete='SET NULL'),
        nullable=True,
        index=True
    )

    supplier_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey('suppliers.supplier_id', ondelete='SET NULL'),
        nullable=True,
        index=True
    )

    date_received: Mapped[date] = mapped_column(Date, nullable=False)
    received_by: Mapped[str] = mapped_column(String(255), nullable=False)
    remarks: Mapped[Optional[str]] = mapped_column(Text)

    total_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    supplier: Mapped[Optional["Supplier"]] = relationship()
    purchase_order: Mapped[Optional["PurchaseOrder"]] = relationship()
    lines: Mapped[List["StockIn"]] = relationship(
        back_populates="header",
        order_by="StockIn.stock_in_id"
    )


class StockIn(Base, CreatedAtMixin):
    """Single received line; belongs to a delivery header unless entered directly"""
    __tablename__ = 'stock_in'

    stock_in_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    stock_in_header_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey('stock_in_headers.stock_in_header_id', ondelete='CASCADE'),
        nullable=True,
        index=True
    )

    item_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('items.item_id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    batch_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey('stock_batches.batch_id', ondelete='SET NULL'),
        nullable=True
    )

    supplier_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey('suppliers.supplier_id', ondelete='SET NULL'),
        nullable=True,
        index=True
    )

    qty_added: Mapped[int] = mapped_column(Integer, nullable=False)
    date_in: Mapped[date] = mapped_column(Date, nullable=False)
    remarks: Mapped[Optional[str]] = mapped_column(Text)

    header: Mapped[Optional["StockInHeader"]] = relationship(back_populates="lines")
    item: Mapped["Item"] = relationship()
    batch: Mapped[Optional["StockBatch"]] = relationship()
    supplier: Mapped[Optional["Supplier"]] = relationship()

    __table_args__ = (
        CheckConstraint('qty_added > 0', name='check_stock_in_qty_positive'),
    )


class StockOutHeader(Base, CreatedAtMixin):
    """Release of stock to a person/room, optionally tied to a treatment charge"""
    __tablename__ = 'stock_out_headers'

    stock_out_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    reference_no: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="SO-YYYYMMDD-NNN"
    )

    stock_out_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    released_to: Mapped[str] = mapped_column(String(255), nullable=False)
    purpose: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)

    # Set only for treatment usage
    charge_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    invoice_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    lines: Mapped[List["StockOut"]] = relationship(
        back_populates="header",
        order_by="StockOut.id",
        cascade="all, delete-orphan"
    )


class StockOut(Base):
    """Single released line"""
    __tablename__ = 'stock_out'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    stock_out_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('stock_out_headers.stock_out_id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    item_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('items.item_id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    batch_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey('stock_batches.batch_id', ondelete='SET NULL'),
        nullable=True
    )

    qty_released: Mapped[int] = mapped_column(Integer, nullable=False)
    usage_type: Mapped[str] = mapped_column(String(50), default='treatment', nullable=False)
    date_out: Mapped[Optional[date]] = mapped_column(Date)
    remarks: Mapped[Optional[str]] = mapped_column(Text)

    header: Mapped["StockOutHeader"] = relationship(back_populates="lines")
    item: Mapped["Item"] = relationship()
    batch: Mapped[Optional["StockBatch"]] = relationship()

    __table_args__ = (
        CheckConstraint('qty_released > 0', name='check_stock_out_qty_positive'),
    )


class TreatmentStockUsage(Base, CreatedAtMixin):
    """Consumables used during a treatment, recorded from treatment stock-outs"""
    __tablename__ = 'treatment_stock_usage'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    stock_out_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('stock_out_headers.stock_out_id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    item_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('items.item_id', ondelete='CASCADE'),
        nullable=False
    )

    qty_used: Mapped[int] = mapped_column(Integer, nullable=False)
    charge_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    invoice_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    patient_name: Mapped[Optional[str]] = mapped_column(String(255))
    dentist_name: Mapped[Optional[str]] = mapped_column(String(255))
    treatment_type: Mapped[Optional[str]] = mapped_column(String(255))
    remarks: Mapped[Optional[str]] = mapped_column(Text)

    header: Mapped["StockOutHeader"] = relationship()
    item: Mapped["Item"] = relationship()


class StockAdjustment(Base):
    """
    Manual correction of a batch quantity.
    Immutable audit trail: old and new quantity are both kept.
    """
    __tablename__ = 'stock_adjustments'

    adjustment_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    batch_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('stock_batches.batch_id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    old_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    new_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text)

    adjustment_type: Mapped[str] = mapped_column(
        String(50),
        default='Correction',
        nullable=False,
        comment="Correction, Damage, Expired, Loss, Found, Count"
    )

    adjusted_by: Mapped[Optional[str]] = mapped_column(String(255), index=True)

    adjusted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )

    batch: Mapped["StockBatch"] = relationship()

    __table_args__ = (
        CheckConstraint('new_qty >= 0', name='check_adjustment_new_qty'),
        Index('idx_adjustment_batch_date', 'batch_id', 'adjusted_at'),
    )

    @property
    def qty_change(self) -> int:
        return self.new_qty - self.old_qty
