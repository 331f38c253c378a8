"""Printable order receipts (A5 landscape PDF)."""

from __future__ import annotations
import io
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, BinaryIO, Iterator

from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A5, landscape
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from config import settings

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = landscape(A5)
MARGIN = 30
ROW_HEIGHT = 15
ACCENT = HexColor("#6366f1")
HEADING = HexColor("#9c1f2e")
RULE = HexColor("#f43f5e")
BODY = HexColor("#333333")
FOOTER = HexColor("#444444")


@dataclass(frozen=True)
class ReceiptTotals:
    subtotal: float
    delivery: float
    total: float


def compute_totals(order: dict[str, Any]) -> ReceiptTotals:
    """Subtotal is recomputed from the items; the total is the stored amount as-is."""
    subtotal = sum(float(item["price"]) * float(item["quantity"]) for item in order.get("cartItems", []))
    delivery = float(settings.DELIVERY_CHARGE) if subtotal > 0 else 0.0
    return ReceiptTotals(subtotal=subtotal, delivery=delivery, total=float(order.get("totalAmount") or 0))


def item_label(item: dict[str, Any]) -> str:
    label = str(item.get("name", ""))
    if item.get("selectedSize"):
        label += f" ({item['selectedSize']})"
    if item.get("selectedColor"):
        label += f" ({item['selectedColor']})"
    return label


def money(amount: float) -> str:
    return f"{settings.CURRENCY_LABEL} {amount:.2f}"


def format_date(value: Any) -> str:
    if isinstance(value, datetime):
        return f"{value.month}/{value.day}/{value.year}"
    return str(value or "N/A")


class _Page:
    """Top-left based drawing helpers over a reportlab canvas."""

    def __init__(self, c: canvas.Canvas):
        self.c = c

    def text(self, x: float, y: float, value: Any, font: str = "Helvetica", size: float = 10, color: HexColor = BODY) -> None:
        self.c.setFont(font, size)
        self.c.setFillColor(color)
        self.c.drawString(x, PAGE_HEIGHT - y - size, str(value))

    def wrapped(self, x: float, y: float, value: str, width: float, size: float = 10) -> int:
        self.c.setFont("Helvetica", size)
        self.c.setFillColor(BODY)
        lines = simpleSplit(value, "Helvetica", size, width)
        for i, line in enumerate(lines):
            self.c.drawString(x, PAGE_HEIGHT - y - size - i * (size + 2), line)
        return len(lines)

    def centred(self, y: float, value: str, size: float, color: HexColor) -> None:
        self.c.setFont("Helvetica", size)
        self.c.setFillColor(color)
        self.c.drawCentredString(PAGE_WIDTH / 2, PAGE_HEIGHT - y - size, value)

    def rule(self, y: float, x1: float = MARGIN, x2: float = 330) -> None:
        self.c.setStrokeColor(RULE)
        self.c.line(x1, PAGE_HEIGHT - y, x2, PAGE_HEIGHT - y)


def render_receipt(order: dict[str, Any], out: BinaryIO) -> ReceiptTotals:
    order_id = str(order.get("_id", ""))
    c = canvas.Canvas(out, pagesize=(PAGE_WIDTH, PAGE_HEIGHT))
    c.setTitle(f"Receipt {order_id}")
    page = _Page(c)

    # order details, left column
    page.text(MARGIN, 30, settings.STORE_NAME, "Helvetica-Bold", 20, ACCENT)
    page.text(MARGIN, 60, "Order Details:", "Helvetica-Bold", 14, HEADING)
    page.text(MARGIN, 80, f"Order ID: {order_id}")

    for x, label in ((30, "S.No"), (60, "Item Name"), (230, "Quantity"), (280, "Amount")):
        page.text(x, 100, label, "Helvetica-Bold", 10, ACCENT)
    page.rule(115)

    y = 125
    for index, item in enumerate(order.get("cartItems", []), start=1):
        line_total = float(item["price"]) * float(item["quantity"])
        page.text(30, y, index, size=9)
        lines = page.wrapped(60, y, item_label(item), 160, 9)
        page.text(230, y, item["quantity"], size=9)
        page.text(280, y, money(line_total), size=9)
        y += ROW_HEIGHT + max(lines - 1, 0) * 11

    totals = compute_totals(order)
    page.rule(y)
    y += 10
    page.text(230, y, "Sub Total:")
    page.text(280, y, money(totals.subtotal))
    y += ROW_HEIGHT
    page.text(192, y, "Delivery Charges:")
    page.text(280, y, money(totals.delivery))
    y += ROW_HEIGHT
    page.text(205, y, "Total Amount:", "Helvetica-Bold")
    page.text(280, y, money(totals.total), "Helvetica-Bold")

    # customer details, right column
    address = f"{order.get('houseNo') or ''}, {order.get('Block') or ''}, {order.get('Area') or ''}"
    page.text(350, 60, "Customer Details:", "Helvetica-Bold", 14, HEADING)
    page.text(350, 80, f"Name: {order.get('name') or 'N/A'}")
    page.text(350, 95, f"Contact: {order.get('contact') or 'N/A'}")
    page.wrapped(350, 110, f"Shipping Address: {address}", 200)
    page.text(350, 140, f"City: {order.get('city') or 'N/A'}")
    page.text(350, 155, f"Date of Order: {format_date(order.get('createdAt'))}")
    page.text(350, 170, f"Order ID: {order_id}")
    page.text(350, 185, f"Payment Method: {order.get('paymentMethod') or 'N/A'}")

    store = settings.STORE_NAME
    page.centred(280, f"Thank you for shopping with {store}!", 8, FOOTER)
    page.centred(290, f"© {datetime.now().year} {store}. All rights reserved.", 8, FOOTER)

    c.showPage()
    c.save()
    return totals


def iter_receipt(order: dict[str, Any], chunk_size: int = 64 * 1024) -> Iterator[bytes]:
    """Compose the receipt when the response body is first pulled, then emit it in chunks."""
    buf = io.BytesIO()
    render_receipt(order, buf)
    logger.info("Generated receipt for order %s", order.get("_id"))
    data = buf.getvalue()
    for start in range(0, len(data), chunk_size):
        yield data[start:start + chunk_size]
