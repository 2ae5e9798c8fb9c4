from app.models.core.mixins import (
    TimestampMixin,
    CreatedAtMixin,
)

# 1. Catalogue
from app.models.inventory.inventory_model import Category, Supplier, Item

# 2. Purchasing
from app.models.purchasing.purchase_order_model import (
    PurchaseOrder,
    PurchaseOrderItem
)

# 3. Stock
from app.models.inventory.stock_model import (
    StockBatch,
    StockInHeader,
    StockIn,
    StockOutHeader,
    StockOut,
    TreatmentStockUsage,
    StockAdjustment
)

# 4. Patients
from app.models.patient.patient_model import Patient

# 5. Billing
from app.models.billing.billing_model import (
    Service,
    TreatmentPlan,
    TreatmentCharge,
    Invoice,
    Payment,
    Installment,
    InstallmentPayment,
    AdjustmentLog
)

# 6. System models
from app.models.system_md.sys_models import (
    ActivityLog,
    AuditLog
)

__all__ = [
    # Mixins
    'TimestampMixin',
    'CreatedAtMixin',

    # Catalogue
    'Category',
    'Supplier',
    'Item',

    # Purchasing
    'PurchaseOrder',
    'PurchaseOrderItem',

    # Stock
    'StockBatch',
    'StockInHeader',
    'StockIn',
    'StockOutHeader',
    'StockOut',
    'TreatmentStockUsage',
    'StockAdjustment',

    # Patients
    'Patient',

    # Billing
    'Service',
    'TreatmentPlan',
    'TreatmentCharge',
    'Invoice',
    'Payment',
    'Installment',
    'InstallmentPayment',
    'AdjustmentLog',

    # System
    'ActivityLog',
    'AuditLog',
]
