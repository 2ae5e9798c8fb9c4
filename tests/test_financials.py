from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.services.billing.financials import (
    compute_invoice_totals, apply_cash_tender, add_convenience_fee,
    split_convenience_fee, installment_status, to_money, to_centavos, from_centavos
)


def charge(final=None, estimated=None):
    return SimpleNamespace(final_amount=final, estimated_amount=estimated)


def adjustment(kind, amount):
    return SimpleNamespace(type=kind, amount=amount)


class TestMoney:
    def test_rounds_half_up(self):
        assert to_money("10.005") == Decimal("10.01")
        assert to_money(None) == Decimal("0.00")

    def test_rejects_garbage(self):
        with pytest.raises(ValueError):
            to_money("ten")

    def test_centavos(self):
        assert to_centavos("1020.00") == 102000
        assert to_centavos(0.1) == 10
        assert from_centavos(102050) == Decimal("1020.50")


class TestInvoiceTotals:
    def test_final_amount_preferred_over_estimate(self):
        totals = compute_invoice_totals(
            [charge(final=800, estimated=1000), charge(estimated=500)], [], []
        )
        assert totals.subtotal == Decimal("1300.00")
        assert totals.status == 'unpaid'

    def test_adjustments_and_partial_payment(self):
        totals = compute_invoice_totals(
            [charge(final=1000)],
            [adjustment('discount', 100), adjustment('write-off', 50)],
            [200],
        )
        assert totals.final_amount == Decimal("850.00")
        assert totals.balance_due == Decimal("650.00")
        assert totals.status == 'partial'

    def test_overpaid_balance_floors_at_zero(self):
        totals = compute_invoice_totals([charge(final=500)], [adjustment('refund', 100)], [450])
        assert totals.balance_due == Decimal("0.00")
        assert totals.status == 'paid'

    def test_unknown_adjustment_type(self):
        with pytest.raises(ValueError):
            compute_invoice_totals([charge(final=1)], [adjustment('bonus', 1)], [])


class TestCashAndFees:
    def test_cash_tender_with_change(self):
        assert apply_cash_tender(750, 1000) == (Decimal("750.00"), Decimal("250.00"))

    def test_cash_tender_short(self):
        assert apply_cash_tender(750, 500) == (Decimal("500.00"), Decimal("0.00"))

    def test_convenience_fee(self):
        assert add_convenience_fee(1000) == (Decimal("20.00"), Decimal("1020.00"))
        assert add_convenience_fee(1000, rate="0.03") == (Decimal("30.00"), Decimal("1030.00"))

    def test_fee_split_inverts_fee(self):
        assert split_convenience_fee(1020) == (Decimal("1000.00"), Decimal("20.00"))
        fee, total = add_convenience_fee("333.33")
        assert split_convenience_fee(total) == (Decimal("333.33"), fee)


class TestInstallmentStatus:
    def test_paid(self):
        assert installment_status(500, 500, date.today() - timedelta(days=10)) == 'paid'

    def test_overdue(self):
        assert installment_status(500, 100, date.today() - timedelta(days=1)) == 'overdue'

    def test_pending(self):
        today = date(2024, 1, 10)
        assert installment_status(500, 0, today, today=today) == 'pending'
