"""
Stock Schemas
Batches, adjustments, stock-in deliveries and stock-out transactions
"""
from pydantic import Field
from typing import Optional, List, Literal
from datetime import datetime, date

from app.schemas.base_schemas import BaseSchema, Money, Amount


AdjustmentType = Literal['Correction', 'Damage', 'Expired', 'Loss', 'Found', 'Count']


# ============================================
# Stock Batch Schemas
# ============================================

class StockBatchCreate(BaseSchema):
    item_id: int
    batch_no: str = Field(..., min_length=1, max_length=100)
    expiry_date: Optional[date] = None
    qty_available: int = Field(default=0, ge=0)
    unit_cost: Money = Field(default=0)


class StockBatchUpdate(BaseSchema):
    """Partial update; a quantity change is recorded as a Correction"""
    batch_no: Optional[str] = Field(None, min_length=1, max_length=100)
    expiry_date: Optional[date] = None
    qty_available: Optional[int] = None
    reason: Optional[str] = None
    adjusted_by: Optional[str] = None


class StockBatchResponse(BaseSchema):
    batch_id: int
    item_id: int
    batch_no: str
    expiry_date: Optional[date] = None
    qty_received: int
    qty_available: int
    unit_cost: Amount
    stock_in_header_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StockBatchDetail(StockBatchResponse):
    item_code: Optional[str] = None
    item_name: Optional[str] = None
    category_name: Optional[str] = None
    unit_of_measure: Optional[str] = None
    expiry_status: Optional[str] = Field(None, description="expired, expiring-soon, good")


# ============================================
# Stock Adjustment Schemas
# ============================================

class StockAdjustmentCreate(BaseSchema):
    batch_id: int
    # Negative values reach the service so the 400 message is the one clients expect
    new_qty: int
    reason: Optional[str] = None
    adjustment_type: AdjustmentType = 'Correction'
    adjusted_by: Optional[str] = None


class StockAdjustmentResponse(BaseSchema):
    adjustment_id: int
    batch_id: int
    old_qty: int
    new_qty: int
    qty_change: int
    reason: Optional[str] = None
    adjustment_type: str
    adjusted_by: Optional[str] = None
    adjusted_at: Optional[datetime] = None
    batch_no: Optional[str] = None
    item_id: Optional[int] = None
    item_name: Optional[str] = None


class StockAdjustmentResult(BaseSchema):
    adjustment: StockAdjustmentResponse
    updated_batch: StockBatchResponse


# ============================================
# Stock-In Schemas
# ============================================

class StockInCreate(BaseSchema):
    """Single-line receipt"""
    item_id: int
    batch_no: Optional[str] = Field(None, max_length=100)
    qty_added: int = Field(..., gt=0)
    supplier_id: Optional[int] = None
    date_in: date
    expiry_date: Optional[date] = None
    unit_cost: Money = Field(default=0)
    remarks: Optional[str] = None


class StockInResponse(BaseSchema):
    stock_in_id: int
    stock_in_header_id: Optional[int] = None
    item_id: int
    batch_id: Optional[int] = None
    supplier_id: Optional[int] = None
    qty_added: int
    date_in: date
    remarks: Optional[str] = None
    created_at: Optional[datetime] = None
    item_code: Optional[str] = None
    item_name: Optional[str] = None
    batch_no: Optional[str] = None
    expiry_date: Optional[date] = None
    supplier_name: Optional[str] = None


class ReceiveDeliveryItem(BaseSchema):
    item_id: int
    batch_no: str = Field(..., min_length=1, max_length=100)
    qty_received: int = Field(..., gt=0)
    expiry_date: Optional[date] = None
    unit_cost: Money = Field(default=0)
    remarks: Optional[str] = None


class ReceiveDeliveryCreate(BaseSchema):
    """
    One delivery, possibly against a purchase order.
    stock_in_no is generated (SI-YYYYMMDD-NNN) when omitted.
    """
    stock_in_no: Optional[str] = Field(None, max_length=50)
    po_id: Optional[int] = None
    supplier_id: Optional[int] = None
    date_received: date
    received_by: str = Field(..., min_length=1, max_length=255)
    remarks: Optional[str] = None
    items: List[ReceiveDeliveryItem] = Field(..., min_length=1)


class ReceiveDeliveryResult(BaseSchema):
    stock_in_id: int
    stock_in_no: str
    total_items: int
    total_amount: Amount


class ReceiveDeliveryLine(BaseSchema):
    stock_in_id: int
    item_id: int
    item_code: Optional[str] = None
    item_name: Optional[str] = None
    batch_id: Optional[int] = None
    batch_no: Optional[str] = None
    expiry_date: Optional[date] = None
    unit_cost: Optional[Amount] = None
    qty_added: int
    remarks: Optional[str] = None


class ReceiveDeliveryHeader(BaseSchema):
    stock_in_id: int
    stock_in_no: str
    po_id: Optional[int] = None
    po_number: Optional[str] = None
    supplier_id: Optional[int] = None
    supplier_name: Optional[str] = None
    date_received: date
    received_by: str
    remarks: Optional[str] = None
    total_items: int
    total_amount: Amount
    created_at: Optional[datetime] = None


class ReceiveDeliveryDetail(ReceiveDeliveryHeader):
    items: List[ReceiveDeliveryLine] = Field(default_factory=list)


# ============================================
# Stock-Out Schemas
# ============================================

class StockOutLine(BaseSchema):
    item_id: int
    batch_id: int
    qty_released: int = Field(..., gt=0)
    remarks: Optional[str] = None


class StockOutTransactionCreate(BaseSchema):
    """Multi-line release; treatment usage also records consumption against a charge"""
    released_to: str = Field(..., min_length=1, max_length=255)
    purpose: Optional[str] = None
    created_by: str = Field(..., min_length=1, max_length=255)
    items: List[StockOutLine] = Field(..., min_length=1)
    is_treatment_usage: bool = False
    charge_id: Optional[int] = None
    invoice_id: Optional[int] = None
    patient_name: Optional[str] = None
    dentist_name: Optional[str] = None
    treatment_type: Optional[str] = None


class StockOutTransactionResult(BaseSchema):
    stock_out_id: int
    reference_no: str
    total_items: int
    items_count: int
    is_treatment_usage: bool


class StockOutTransactionSummary(BaseSchema):
    stock_out_id: int
    reference_no: str
    stock_out_date: datetime
    released_to: str
    purpose: Optional[str] = None
    created_by: str
    charge_id: Optional[int] = None
    invoice_id: Optional[int] = None
    items_count: int = 0
    total_qty_released: int = 0


class StockOutItemDetail(BaseSchema):
    id: int
    item_id: int
    item_code: Optional[str] = None
    item_name: Optional[str] = None
    batch_id: Optional[int] = None
    batch_no: Optional[str] = None
    expiry_date: Optional[date] = None
    qty_released: int
    usage_type: str
    remarks: Optional[str] = None


class StockOutTransactionDetail(StockOutTransactionSummary):
    items: List[StockOutItemDetail] = Field(default_factory=list)


class LegacyStockOutCreate(BaseSchema):
    item_id: int
    batch_id: Optional[int] = None
    qty_released: int = Field(..., gt=0)
    usage_type: str = Field(default='treatment', max_length=50)
    date_out: date
    remarks: Optional[str] = None


class StockOutRecord(BaseSchema):
    """Line-level stock-out view"""
    id: int
    stock_out_id: int
    reference_no: Optional[str] = None
    item_id: int
    item_code: Optional[str] = None
    item_name: Optional[str] = None
    batch_id: Optional[int] = None
    batch_no: Optional[str] = None
    qty_released: int
    usage_type: str
    date_out: Optional[date] = None
    remarks: Optional[str] = None
    released_to: Optional[str] = None


class TreatmentStockUsageResponse(BaseSchema):
    id: int
    stock_out_id: int
    reference_no: Optional[str] = None
    item_id: int
    item_name: Optional[str] = None
    qty_used: int
    charge_id: Optional[int] = None
    invoice_id: Optional[int] = None
    patient_name: Optional[str] = None
    dentist_name: Optional[str] = None
    treatment_type: Optional[str] = None
    remarks: Optional[str] = None
    created_at: Optional[datetime] = None


class AvailableBatch(BaseSchema):
    batch_id: int
    item_id: int
    item_code: str
    item_name: str
    batch_no: str
    expiry_date: Optional[date] = None
    qty_available: int
    unit_of_measure: Optional[str] = None
