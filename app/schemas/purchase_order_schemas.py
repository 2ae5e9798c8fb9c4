"""
Purchase Order Schemas
Schemas for purchase orders and their line items
"""
from pydantic import Field
from typing import Optional, List, Literal
from datetime import datetime, date

from app.schemas.base_schemas import BaseSchema, Money, Amount


POStatus = Literal['Pending', 'Ordered', 'Received', 'Cancelled']


# ============================================
# Purchase Order Item Schemas
# ============================================

class PurchaseOrderItemCreate(BaseSchema):
    """Line item as submitted"""
    item_id: int
    quantity_ordered: int = Field(..., gt=0, description="Quantity to order")
    unit_cost: Money = Field(..., description="Cost per unit")
    remarks: Optional[str] = None


class PurchaseOrderItemDetail(BaseSchema):
    """Line item with item details"""
    poi_id: int
    item_id: int
    item_code: Optional[str] = None
    item_name: Optional[str] = None
    quantity_ordered: int
    unit_cost: Amount
    subtotal: Amount
    remarks: Optional[str] = None


# ============================================
# Purchase Order Schemas
# ============================================

class PurchaseOrderCreate(BaseSchema):
    """Schema for creating a purchase order"""
    supplier_id: int
    expected_delivery_date: Optional[date] = None
    remarks: Optional[str] = None
    status: POStatus = 'Pending'
    created_by: str = Field(..., min_length=1, max_length=255)
    items: List[PurchaseOrderItemCreate] = Field(..., min_length=1, description="PO items")


class PurchaseOrderUpdate(BaseSchema):
    """
    Header update. When items are sent they replace the existing lines
    and the total is recomputed.
    """
    supplier_id: Optional[int] = None
    expected_delivery_date: Optional[date] = None
    status: Optional[POStatus] = None
    remarks: Optional[str] = None
    items: Optional[List[PurchaseOrderItemCreate]] = Field(None, min_length=1)


class PurchaseOrderCreated(BaseSchema):
    po_id: int
    po_number: str


class PurchaseOrderSummary(BaseSchema):
    """Row of the purchase order listing"""
    po_id: int
    po_number: str
    supplier_id: Optional[int] = None
    supplier_name: Optional[str] = None
    order_date: date
    expected_delivery_date: Optional[date] = None
    status: str
    total_amount: Amount
    items_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PurchaseOrderDetail(BaseSchema):
    """Purchase order with its line items"""
    po_id: int
    po_number: str
    supplier_id: Optional[int] = None
    supplier_name: Optional[str] = None
    order_date: date
    expected_delivery_date: Optional[date] = None
    status: str
    total_amount: Amount
    remarks: Optional[str] = None
    created_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[PurchaseOrderItemDetail] = Field(default_factory=list)
