"""
API v1 router configuration.

This module consolidates all API endpoints for version 1.
"""

from fastapi import APIRouter

router = APIRouter()

from .endpoints.inventory_endpoints import router as inventory_router
from .endpoints.supplier_endpoints import router as supplier_router
from .endpoints.stock_endpoints import router as stock_router
from .endpoints.purchase_order_endpoints import router as purchase_order_router
from .endpoints.billing_endpoints import router as billing_router
from .endpoints.invoice_endpoints import router as invoice_router
from .endpoints.payment_endpoints import router as payment_router
from .endpoints.billing_report_endpoints import router as billing_report_router
from .endpoints.online_payment_endpoints import router as online_payment_router
from .endpoints.activity_log_endpoints import router as activity_log_router


router.include_router(inventory_router)
router.include_router(supplier_router)
router.include_router(stock_router)
router.include_router(purchase_order_router)
router.include_router(billing_router)
router.include_router(invoice_router)
router.include_router(payment_router)
router.include_router(billing_report_router)
router.include_router(online_payment_router)
router.include_router(activity_log_router)

__all__ = ["router"]
