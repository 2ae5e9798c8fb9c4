from app.db.base import Base
from sqlalchemy import (
    String, Integer, Numeric, Text, Date,
    ForeignKey, CheckConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from typing import Optional, List, TYPE_CHECKING
from datetime import date
from decimal import Decimal

from app.models.core.mixins import TimestampMixin
if TYPE_CHECKING:
    from app.models.inventory.inventory_model import Item, Supplier


PO_STATUSES = ('Pending', 'Ordered', 'Received', 'Cancelled')


class PurchaseOrder(Base, TimestampMixin):
    """Purchase orders for inventory replenishment"""
    __tablename__ = 'purchase_order'

    po_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    po_number: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="PO-YYYYMMDD-NNN"
    )

    supplier_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey('suppliers.supplier_id', ondelete='SET NULL'),
        nullable=True,
        index=True
    )

    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_delivery_date: Mapped[Optional[date]] = mapped_column(Date, index=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default='Pending',
        nullable=False,
        index=True,
        comment="Pending, Ordered, Received, Cancelled"
    )

    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    remarks: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)

    # Relationships
    supplier: Mapped[Optional["Supplier"]] = relationship()
    items: Mapped[List["PurchaseOrderItem"]] = relationship(
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.poi_id"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('Pending', 'Ordered', 'Received', 'Cancelled')",
            name='check_po_status'
        ),
        Index('idx_po_status_date', 'status', 'order_date'),
    )

    @property
    def is_locked(self) -> bool:
        return self.status in ('Received', 'Cancelled')


class PurchaseOrderItem(Base):
    """Line items in purchase orders"""
    __tablename__ = 'purchase_order_items'

    poi_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    po_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('purchase_order.po_id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    item_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('items.item_id', ondelete='RESTRICT'),
        nullable=False,
        index=True
    )

    quantity_ordered: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    remarks: Mapped[Optional[str]] = mapped_column(Text)

    # Relationships
    purchase_order: Mapped["PurchaseOrder"] = relationship(back_populates="items")
    item: Mapped["Item"] = relationship()

    __table_args__ = (
        CheckConstraint("quantity_ordered > 0", name='check_po_item_quantity'),
        CheckConstraint("unit_cost >= 0", name='check_po_item_unit_cost'),
    )
