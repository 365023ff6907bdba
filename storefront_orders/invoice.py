"""PDF invoice rendering."""

from io import BytesIO
from typing import Protocol
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .hashing import format_amount
from .schemas import Order, User


class InvoiceRenderer(Protocol):
    """Renders an order into a downloadable document."""

    def render(self, order: Order, product_names: dict[str, str], user: User | None = None) -> bytes: ...


class ReportLabInvoiceRenderer:
    """Builds an A4 PDF invoice in memory with ReportLab."""

    def __init__(self, store_name: str, currency: str = "LKR"):
        self.store_name = store_name
        self.currency = currency

    def render(self, order: Order, product_names: dict[str, str], user: User | None = None) -> bytes:
        """Render the invoice.

        Args:
            order: The order to render.
            product_names: Product id to display name map.
            user: Customer shown in the bill-to block, if known.

        Returns:
            bytes: The PDF document.
        """
        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            title=f"Invoice {order.order_id}",
            leftMargin=18 * mm,
            rightMargin=18 * mm,
            topMargin=18 * mm,
            bottomMargin=18 * mm,
        )
        styles = getSampleStyleSheet()

        story = [
            Paragraph(escape(self.store_name), styles["Title"]),
            Paragraph(f"Invoice for order #{order.order_id}", styles["Heading2"]),
            Paragraph(f"Date: {order.created_at:%Y-%m-%d %H:%M} UTC", styles["Normal"]),
            Paragraph(f"Status: {order.status.value}", styles["Normal"]),
        ]
        if order.payment_id:
            story.append(Paragraph(f"Payment reference: {escape(order.payment_id)}", styles["Normal"]))
        if user is not None:
            story.append(Spacer(1, 4 * mm))
            story.append(Paragraph(f"Bill to: {escape(user.full_name)}", styles["Normal"]))
            if user.email:
                story.append(Paragraph(escape(str(user.email)), styles["Normal"]))
        story.append(Spacer(1, 8 * mm))

        rows = [["Product", "Size", "Qty", f"Unit ({self.currency})", f"Total ({self.currency})"]]
        for item in order.items:
            name = product_names.get(item.product_id) or item.product_name or "Unknown Product"
            rows.append(
                [
                    name,
                    item.size,
                    str(item.quantity),
                    format_amount(item.price),
                    format_amount(item.price * item.quantity),
                ]
            )
        rows.append(["", "", "", "Order total", format_amount(order.total_amount)])

        table = Table(rows, colWidths=[70 * mm, 18 * mm, 14 * mm, 36 * mm, 36 * mm])
        table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#222222")),
                    ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                    ("ALIGN", (2, 0), (-1, -1), "RIGHT"),
                    ("GRID", (0, 0), (-1, -2), 0.5, colors.grey),
                    ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
                    ("LINEABOVE", (3, -1), (-1, -1), 1, colors.black),
                ]
            )
        )
        story.append(table)
        story.append(Spacer(1, 10 * mm))
        story.append(Paragraph(f"Thank you for shopping with {escape(self.store_name)}!", styles["Italic"]))

        doc.build(story)
        return buffer.getvalue()
