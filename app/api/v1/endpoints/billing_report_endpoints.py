"""
Billing Report Routes
"""
from datetime import date
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Literal

from app.db.dependencies import get_db
from app.schemas.base_schemas import APIResponse
from app.schemas.billing_schemas import (
    RevenueReport, PaymentMethodStat, PatientStats, GrowthRate, ReportRange
)
from app.services.billing.billing_report_service import BillingReportService


router = APIRouter(prefix="/billing/reports", tags=["Billing Reports"])


def report_range(
    start_date: date = Query(..., description="First day, inclusive"),
    end_date: date = Query(..., description="Last day, inclusive")
) -> ReportRange:
    if end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end_date must not be before start_date"
        )
    return ReportRange(start_date=start_date, end_date=end_date)


@router.get("/revenue", response_model=APIResponse[RevenueReport])
async def revenue_report(
    group_by: Literal['day', 'month', 'year'] = Query('month'),
    period: ReportRange = Depends(report_range),
    db: AsyncSession = Depends(get_db)
):
    """
    Revenue per period from direct and installment payments

    The summary covers invoices created in the range: count, billed,
    collected and outstanding.
    """
    report = await BillingReportService.revenue(db, period.start_date, period.end_date, group_by)
    return APIResponse(data=report)


@router.get("/payment-methods", response_model=APIResponse[List[PaymentMethodStat]])
async def payment_method_report(
    period: ReportRange = Depends(report_range),
    db: AsyncSession = Depends(get_db)
):
    stats = await BillingReportService.payment_methods(db, period.start_date, period.end_date)
    return APIResponse(data=stats)


@router.get("/patient-stats", response_model=APIResponse[PatientStats])
async def patient_stats(
    period: ReportRange = Depends(report_range),
    db: AsyncSession = Depends(get_db)
):
    stats = await BillingReportService.patient_stats(db, period.start_date, period.end_date)
    return APIResponse(data=stats)


@router.get("/growth-rate", response_model=APIResponse[GrowthRate])
async def growth_rate(
    period: Literal['week', 'month', 'quarter', 'year'] = Query('month'),
    db: AsyncSession = Depends(get_db)
):
    """Revenue of the current window against the previous one"""
    return APIResponse(data=await BillingReportService.growth_rate(db, period))
