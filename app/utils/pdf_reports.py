"""
Printable documents rendered with reportlab: invoice PDF, inventory item
list and the checkout QR code.
"""
import base64
from datetime import datetime
from decimal import Decimal
from io import BytesIO
from typing import Any, List, Optional

from reportlab.graphics import renderSVG
from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from app.core.config import get_settings

settings = get_settings()

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 18 * mm
BOTTOM = 20 * mm


# -------------------------------
# Helpers
# -------------------------------
def _safe(v: Any) -> str:
    return "" if v is None else str(v)


def _peso(v: Any) -> str:
    return f"PHP {Decimal(str(v or 0)):,.2f}"


def _fmt_date(v: Any) -> str:
    if isinstance(v, datetime):
        return v.strftime("%d %b %Y")
    return _safe(v)


def _header(c: canvas.Canvas, title: str, subtitle: Optional[str] = None) -> float:
    y = PAGE_HEIGHT - MARGIN
    c.setFont("Helvetica-Bold", 15)
    c.drawString(MARGIN, y, settings.CLINIC_NAME)
    c.setFont("Helvetica", 10)
    c.drawRightString(PAGE_WIDTH - MARGIN, y, title)
    if subtitle:
        c.drawRightString(PAGE_WIDTH - MARGIN, y - 13, subtitle)
    y -= 22
    c.setStrokeColor(colors.grey)
    c.line(MARGIN, y, PAGE_WIDTH - MARGIN, y)
    return y - 18


def _new_page(c: canvas.Canvas, title: str) -> float:
    c.showPage()
    return _header(c, title)


# -------------------------------
# Invoice
# -------------------------------
def render_invoice_pdf(invoice: Any) -> bytes:
    """
    Invoice PDF from an InvoiceDetail.
    Every amount comes from the stored summary.
    """
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    title = f"Invoice {invoice.invoice_code}"
    c.setTitle(title)

    y = _header(c, "INVOICE", invoice.invoice_code)

    c.setFont("Helvetica-Bold", 10)
    c.drawString(MARGIN, y, "Billed to")
    c.drawString(PAGE_WIDTH / 2, y, "Details")
    c.setFont("Helvetica", 10)
    y -= 14
    c.drawString(MARGIN, y, _safe(invoice.patient_name))
    c.drawString(PAGE_WIDTH / 2, y, f"Date: {_fmt_date(invoice.created_at)}")
    y -= 13
    c.drawString(MARGIN, y, _safe(invoice.mobile_number))
    c.drawString(PAGE_WIDTH / 2, y, f"Dentist: {_safe(invoice.dentist_name) or '-'}")
    y -= 13
    c.drawString(MARGIN, y, _safe(invoice.email))
    c.drawString(PAGE_WIDTH / 2, y, f"Status: {invoice.summary.status.upper()}")
    y -= 26

    # Treatments
    c.setFont("Helvetica-Bold", 10)
    c.drawString(MARGIN, y, "Treatment")
    c.drawString(MARGIN + 95 * mm, y, "Tooth")
    c.drawRightString(PAGE_WIDTH - MARGIN, y, "Amount")
    y -= 4
    c.line(MARGIN, y, PAGE_WIDTH - MARGIN, y)
    y -= 13
    c.setFont("Helvetica", 10)

    for t in invoice.treatments:
        if y < BOTTOM + 120:
            y = _new_page(c, title)
            c.setFont("Helvetica", 10)
        amount = t.final_amount if t.final_amount is not None else t.estimated_amount
        c.drawString(MARGIN, y, _safe(t.service_name)[:60])
        c.drawString(MARGIN + 95 * mm, y, _safe(t.tooth_number) or "-")
        c.drawRightString(PAGE_WIDTH - MARGIN, y, _peso(amount))
        y -= 14

    y -= 6
    c.line(PAGE_WIDTH / 2, y, PAGE_WIDTH - MARGIN, y)
    y -= 14

    summary = invoice.summary
    lines = [
        ("Subtotal", summary.subtotal),
        ("Discounts", -summary.discounts),
        ("Write-offs", -summary.write_offs),
        ("Refunds", -summary.refunds),
        ("Total", summary.final_amount),
        ("Paid", -summary.total_paid),
    ]
    for label, value in lines:
        c.drawString(PAGE_WIDTH / 2, y, label)
        c.drawRightString(PAGE_WIDTH - MARGIN, y, _peso(value))
        y -= 13

    c.setFont("Helvetica-Bold", 11)
    c.drawString(PAGE_WIDTH / 2, y - 2, "Balance due")
    c.drawRightString(PAGE_WIDTH - MARGIN, y - 2, _peso(summary.balance_due))
    y -= 28

    if invoice.installments:
        c.setFont("Helvetica-Bold", 10)
        c.drawString(MARGIN, y, "Installment schedule")
        y -= 14
        c.setFont("Helvetica", 9)
        for inst in invoice.installments:
            if y < BOTTOM:
                y = _new_page(c, title)
                c.setFont("Helvetica", 9)
            c.drawString(MARGIN, y, f"#{inst.installment_number}  due {inst.due_date.isoformat()}")
            c.drawString(MARGIN + 70 * mm, y, inst.status)
            c.drawRightString(PAGE_WIDTH - MARGIN, y, f"{_peso(inst.amount_paid)} / {_peso(inst.amount_due)}")
            y -= 12

    c.setFont("Helvetica-Oblique", 8)
    c.drawString(MARGIN, BOTTOM - 8, f"Generated {datetime.now().strftime('%Y-%m-%d %H:%M')}")
    c.save()
    return buf.getvalue()


# -------------------------------
# Inventory item list
# -------------------------------
def render_item_list_pdf(rows: List[dict]) -> bytes:
    """Item list with stock on hand; low-stock rows are marked"""
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    title = "Inventory Item List"
    c.setTitle(title)

    columns = [
        ("Code", MARGIN),
        ("Item", MARGIN + 28 * mm),
        ("Category", MARGIN + 95 * mm),
        ("Unit", MARGIN + 135 * mm),
    ]

    def table_header(y: float) -> float:
        c.setFont("Helvetica-Bold", 9)
        for label, x in columns:
            c.drawString(x, y, label)
        c.drawRightString(PAGE_WIDTH - MARGIN, y, "On hand")
        y -= 4
        c.line(MARGIN, y, PAGE_WIDTH - MARGIN, y)
        c.setFont("Helvetica", 9)
        return y - 12

    y = table_header(_header(c, title, f"{len(rows)} items"))

    for row in rows:
        if y < BOTTOM:
            y = table_header(_new_page(c, title))
        if row.get("low_stock"):
            c.setFillColor(colors.red)
        c.drawString(columns[0][1], y, _safe(row.get("item_code"))[:14])
        c.drawString(columns[1][1], y, _safe(row.get("item_name"))[:38])
        c.drawString(columns[2][1], y, _safe(row.get("category_name"))[:22])
        c.drawString(columns[3][1], y, _safe(row.get("unit_of_measure"))[:10])
        c.drawRightString(PAGE_WIDTH - MARGIN, y, _safe(row.get("total_available")))
        c.setFillColor(colors.black)
        y -= 12

    c.save()
    return buf.getvalue()


# -------------------------------
# QR code
# -------------------------------
def qr_svg_data_uri(value: str, size: float = 220) -> str:
    """QR of value as a data:image/svg+xml;base64 URI"""
    widget = QrCodeWidget(value)
    x1, y1, x2, y2 = widget.getBounds()
    width, height = x2 - x1, y2 - y1

    drawing = Drawing(size, size, transform=[size / width, 0, 0, size / height, 0, 0])
    drawing.add(widget)

    svg = renderSVG.drawToString(drawing)
    if isinstance(svg, str):
        svg = svg.encode("utf-8")
    return "data:image/svg+xml;base64," + base64.b64encode(svg).decode("ascii")
