"""
Inventory Schemas
Schemas for the item catalogue, categories, suppliers and dashboard
"""
from pydantic import Field, EmailStr, field_validator
from typing import Optional, List
from datetime import datetime, date

from app.schemas.base_schemas import BaseSchema, Money, Amount, TimestampSchema


# ============================================
# Category Schemas
# ============================================

class CategoryCreate(BaseSchema):
    category_name: str = Field(..., min_length=1, max_length=100)


class CategoryResponse(BaseSchema):
    category_id: int
    category_name: str


# ============================================
# Item Schemas
# ============================================

class ItemBase(BaseSchema):
    """Base item fields"""
    item_code: str = Field(..., min_length=1, max_length=50)
    item_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category_id: Optional[int] = None
    supplier_id: Optional[int] = None
    unit_of_measure: str = Field(..., min_length=1, max_length=50, description="pcs, box, pack, ml, ...")
    reorder_level: int = Field(default=0, ge=0)
    storage_location: Optional[str] = Field(None, max_length=100)


class ItemCreate(ItemBase):
    """Schema for creating an item"""
    pass


class ItemUpdate(BaseSchema):
    """Schema for updating an item (all fields optional)"""
    item_code: Optional[str] = Field(None, min_length=1, max_length=50)
    item_name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category_id: Optional[int] = None
    supplier_id: Optional[int] = None
    unit_of_measure: Optional[str] = Field(None, min_length=1, max_length=50)
    reorder_level: Optional[int] = Field(None, ge=0)
    storage_location: Optional[str] = Field(None, max_length=100)


class ItemResponse(ItemBase, TimestampSchema):
    """Schema for item API responses"""
    item_id: int


class ItemListEntry(BaseSchema):
    """Row of the item listing with joined names and stock on hand"""
    item_id: int
    item_code: str
    item_name: str
    description: Optional[str] = None
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    supplier_id: Optional[int] = None
    supplier_name: Optional[str] = None
    unit_of_measure: str
    reorder_level: int
    storage_location: Optional[str] = None
    total_available: int = 0
    created_at: Optional[datetime] = None


class ItemDetail(ItemResponse):
    """Single item with supplier contact details"""
    category_name: Optional[str] = None
    supplier_name: Optional[str] = None
    contact_person: Optional[str] = None
    supplier_phone: Optional[str] = None
    total_available: int = 0


class ItemOption(BaseSchema):
    item_id: int
    item_code: str
    item_name: str
    category_id: Optional[int] = None
    category_name: Optional[str] = None


# ============================================
# Batch Upload Schemas
# ============================================

class BatchUploadRow(BaseSchema):
    """
    One spreadsheet row.
    Fields are loose on purpose: a bad row is reported back, not rejected with 422.
    """
    item_code: Optional[str] = None
    item_name: Optional[str] = None
    category_id: Optional[int] = None
    supplier_id: Optional[int] = None
    unit_of_measure: Optional[str] = None
    reorder_level: Optional[int] = None
    storage_location: Optional[str] = None
    batch_no: Optional[str] = None
    expiry_date: Optional[date] = None
    qty_available: Optional[int] = None
    unit_cost: Optional[Money] = None


class BatchUploadRequest(BaseSchema):
    items: List[BatchUploadRow]


class BatchUploadError(BaseSchema):
    row: int
    item_code: str
    error: str


class BatchUploadResult(BaseSchema):
    success: int = 0
    failed: int = 0
    errors: List[BatchUploadError] = Field(default_factory=list)


# ============================================
# Supplier Schemas
# ============================================

class SupplierBase(BaseSchema):
    """Base supplier fields"""
    supplier_name: str = Field(..., min_length=1, max_length=255)
    contact_person: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    email: Optional[EmailStr] = None
    address: Optional[str] = None

    @field_validator('email', mode='before')
    @classmethod
    def blank_email_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class SupplierCreate(SupplierBase):
    """Schema for creating a supplier"""
    pass


class SupplierUpdate(SupplierBase):
    """Suppliers are replaced as a whole on update"""
    pass


class SupplierResponse(SupplierBase, TimestampSchema):
    """Schema for supplier API responses"""
    supplier_id: int


class SupplierOption(BaseSchema):
    supplier_id: int
    supplier_name: str


# ============================================
# Dashboard Schemas
# ============================================

class RecentActivity(BaseSchema):
    type: str
    message: str
    time: Optional[datetime] = None


class BatchAlert(BaseSchema):
    batch_id: int
    batch_no: str
    item_name: str
    expiry_date: date
    qty_available: int
    status: str = Field(..., description="expired, expiring-soon, good")
    days_left: int


class ExpiryReportRow(BaseSchema):
    batch_id: int
    batch_no: str
    item_code: str
    item_name: str
    expiry_date: date
    qty_available: int
    days_until_expiry: int


class LowStockReportRow(BaseSchema):
    item_id: int
    item_code: str
    item_name: str
    category_name: Optional[str] = None
    current_stock: int
    minimum_stock: int
    shortfall: int


class PurchaseHistoryRow(BaseSchema):
    po_id: int
    po_number: str
    order_date: date
    supplier_name: Optional[str] = None
    status: str
    item_code: str
    item_name: str
    quantity_ordered: int
    quantity_received: int
    unit_cost: Amount
    ordered_total: Amount
    received_total: Amount
    receiving_status: str = Field(..., description="Pending, Partially Received, Completed")
