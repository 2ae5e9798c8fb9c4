from app.db.base import Base
from sqlalchemy import (
    String, Integer, Text, ForeignKey, CheckConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from typing import Optional, List, TYPE_CHECKING

from app.models.core.mixins import TimestampMixin
if TYPE_CHECKING:
    from app.models.inventory.stock_model import StockBatch


class Category(Base):
    """Item categories (consumables, instruments, medicines, ...)"""
    __tablename__ = 'categories'

    category_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    category_name: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False
    )

    items: Mapped[List["Item"]] = relationship(back_populates="category")

    def __repr__(self):
        return f"<Category(id={self.category_id}, name='{self.category_name}')>"


class Supplier(Base, TimestampMixin):
    """Vendors that deliver stock and receive purchase orders"""
    __tablename__ = 'suppliers'

    supplier_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    supplier_name: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True
    )

    contact_person: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    address: Mapped[Optional[str]] = mapped_column(Text)

    items: Mapped[List["Item"]] = relationship(back_populates="supplier")

    def __repr__(self):
        return f"<Supplier(id={self.supplier_id}, name='{self.supplier_name}')>"


class Item(Base, TimestampMixin):
    """
    Catalogue entry for a stocked item.
    On-hand quantity is never stored here; it is the sum of
    qty_available over the item's stock batches.
    """
    __tablename__ = 'items'

    item_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    item_code: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True
    )

    item_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text)

    category_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey('categories.category_id', ondelete='SET NULL'),
        nullable=True,
        index=True
    )

    supplier_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey('suppliers.supplier_id', ondelete='SET NULL'),
        nullable=True,
        index=True
    )

    unit_of_measure: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="pcs, box, pack, ml, ..."
    )

    reorder_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    storage_location: Mapped[Optional[str]] = mapped_column(String(100))

    # Relationships
    category: Mapped[Optional["Category"]] = relationship(back_populates="items")
    supplier: Mapped[Optional["Supplier"]] = relationship(back_populates="items")
    batches: Mapped[List["StockBatch"]] = relationship(back_populates="item")

    __table_args__ = (
        CheckConstraint('reorder_level >= 0', name='check_item_reorder_level'),
    )

    def __repr__(self):
        return f"<Item(id={self.item_id}, code='{self.item_code}', name='{self.item_name}')>"
