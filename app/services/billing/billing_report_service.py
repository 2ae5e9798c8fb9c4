"""
Billing Report Service
Revenue, payment-method, patient and growth figures
"""
import logging
from collections import OrderedDict
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import List, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.billing.billing_model import Invoice, Payment, InstallmentPayment
from app.models.patient.patient_model import Patient
from app.schemas.billing_schemas import (
    RevenuePeriod, RevenueSummary, RevenueReport, PaymentMethodStat, PatientStats, GrowthRate
)
from app.services.billing.financials import to_money, ZERO

logger = logging.getLogger(__name__)

PERIOD_FORMATS = {
    'day': '%Y-%m-%d',
    'month': '%Y-%m',
    'year': '%Y',
}


def _bounds(start_date: date, end_date: date) -> Tuple[datetime, datetime]:
    return datetime.combine(start_date, time.min), datetime.combine(end_date + timedelta(days=1), time.min)


def growth_percentage(current: Decimal, previous: Decimal) -> float:
    """(cur - prev) / prev * 100; 100 when there was nothing before"""
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round(float((current - previous) / previous * 100), 2)


def window_start(period: str, today: date) -> Tuple[date, date]:
    """Start of the current window and of the one before it"""
    if period == 'week':
        current = today - timedelta(days=today.weekday())
        return current, current - timedelta(days=7)
    if period == 'month':
        current = today.replace(day=1)
        previous = (current - timedelta(days=1)).replace(day=1)
        return current, previous
    if period == 'quarter':
        first_month = 3 * ((today.month - 1) // 3) + 1
        current = date(today.year, first_month, 1)
        if first_month == 1:
            return current, date(today.year - 1, 10, 1)
        return current, date(today.year, first_month - 3, 1)
    if period == 'year':
        return date(today.year, 1, 1), date(today.year - 1, 1, 1)
    raise ValueError(f"Unsupported period: {period}")


class BillingReportService:

    @staticmethod
    async def _payments_between(db: AsyncSession, since: datetime, until: datetime) -> List[Tuple]:
        """(payment_date, method, amount) for direct and installment payments"""
        direct = await db.execute(
            select(Payment.payment_date, Payment.method, Payment.amount_paid)
            .where(Payment.payment_date >= since, Payment.payment_date < until)
        )
        installment = await db.execute(
            select(InstallmentPayment.payment_date, InstallmentPayment.method, InstallmentPayment.amount)
            .where(InstallmentPayment.payment_date >= since, InstallmentPayment.payment_date < until)
        )
        return list(direct.all()) + list(installment.all())

    @staticmethod
    async def revenue(
        db: AsyncSession,
        start_date: date,
        end_date: date,
        group_by: str = 'month'
    ) -> RevenueReport:
        since, until = _bounds(start_date, end_date)
        fmt = PERIOD_FORMATS[group_by]

        periods: "OrderedDict[str, list]" = OrderedDict()
        for paid_at, _method, amount in sorted(
            await BillingReportService._payments_between(db, since, until),
            key=lambda row: row[0].replace(tzinfo=None)
        ):
            bucket = periods.setdefault(paid_at.strftime(fmt), [ZERO, 0])
            bucket[0] += to_money(amount)
            bucket[1] += 1

        invoices = (await db.execute(
            select(
                func.count(Invoice.invoice_id),
                func.coalesce(func.sum(Invoice.final_amount), 0),
                func.coalesce(func.sum(Invoice.net_amount_due), 0)
            )
            .where(Invoice.created_at >= since, Invoice.created_at < until)
        )).one()

        total_revenue = sum((b[0] for b in periods.values()), ZERO)

        return RevenueReport(
            group_by=group_by,
            periods=[
                RevenuePeriod(period=key, revenue=revenue, payment_count=count)
                for key, (revenue, count) in periods.items()
            ],
            summary=RevenueSummary(
                invoice_count=invoices[0] or 0,
                total_billed=to_money(invoices[1]),
                total_revenue=total_revenue,
                total_outstanding=to_money(invoices[2]),
            ),
        )

    @staticmethod
    async def payment_methods(db: AsyncSession, start_date: date, end_date: date) -> List[PaymentMethodStat]:
        since, until = _bounds(start_date, end_date)

        stats = {}
        for _paid_at, method, amount in await BillingReportService._payments_between(db, since, until):
            entry = stats.setdefault(method, [0, ZERO])
            entry[0] += 1
            entry[1] += to_money(amount)

        rows = [PaymentMethodStat(method=m, count=c, total=t) for m, (c, t) in stats.items()]
        rows.sort(key=lambda r: r.total, reverse=True)
        return rows

    @staticmethod
    async def patient_stats(db: AsyncSession, start_date: date, end_date: date) -> PatientStats:
        since, until = _bounds(start_date, end_date)

        active = (await db.execute(
            select(func.count(func.distinct(Invoice.patient_id)))
            .where(Invoice.created_at >= since, Invoice.created_at < until)
        )).scalar() or 0

        new = (await db.execute(
            select(func.count(Patient.patient_id))
            .where(Patient.created_at >= since, Patient.created_at < until)
        )).scalar() or 0

        invoice_count = (await db.execute(
            select(func.count(Invoice.invoice_id))
            .where(Invoice.created_at >= since, Invoice.created_at < until)
        )).scalar() or 0

        return PatientStats(active_patients=active, new_patients=new, invoice_count=invoice_count)

    @staticmethod
    async def growth_rate(db: AsyncSession, period: str = 'month', today: date = None) -> GrowthRate:
        today = today or date.today()
        current_start, previous_start = window_start(period, today)

        async def revenue_between(start: date, end: date) -> Decimal:
            since = datetime.combine(start, time.min)
            until = datetime.combine(end, time.min)
            rows = await BillingReportService._payments_between(db, since, until)
            return sum((to_money(amount) for _, _, amount in rows), ZERO)

        current = await revenue_between(current_start, today + timedelta(days=1))
        previous = await revenue_between(previous_start, current_start)

        return GrowthRate(
            period=period,
            current_revenue=current,
            previous_revenue=previous,
            growth_rate=growth_percentage(current, previous),
            current_start=current_start,
            previous_start=previous_start,
        )
