# Overview: Invoice document rendering (PDF + XML). No DB access.

"""
Renderers receive only computed values (InvoiceFields), never ORM objects,
so they can run anywhere and be swapped independently of numbering.

The XML is a minimal electronic-invoice envelope (infoTributaria with the
access key, infoFactura with totals). It is not a full schema rendition.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from xml.etree import ElementTree as ET

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.platypus import Table, TableStyle


@dataclass(frozen=True)
class InvoiceFields:
    invoice_number: str
    access_key: str
    issue_date: date
    environment: str
    document_type: str
    emission_type: str
    issuer_name: str
    issuer_address: str
    issuer_tax_id: str
    client_name: str
    client_id_number: str | None
    client_email: str | None
    order_tag: str
    description: str
    subtotal: Decimal
    tax: Decimal
    tax_rate: Decimal
    total: Decimal


def _money(v: Decimal) -> str:
    return f"{v:,.2f}"


def render_invoice_pdf(fields: InvoiceFields) -> bytes:
    """Render the invoice PDF. Returns PDF bytes."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    width, height = A4

    DARK = colors.HexColor("#111827")
    GRAY = colors.HexColor("#6b7280")
    BAND = colors.HexColor("#1e3a5f")

    # --- Header bar ---
    c.setFillColor(BAND)
    c.rect(0, height - 28 * mm, width, 28 * mm, stroke=0, fill=1)

    c.setFillColor(colors.white)
    c.setFont("Helvetica-Bold", 16)
    c.drawString(18 * mm, height - 16 * mm, fields.issuer_name)
    c.setFont("Helvetica", 9)
    c.drawString(18 * mm, height - 22 * mm, f"RUC {fields.issuer_tax_id} - {fields.issuer_address}")

    c.setFont("Helvetica-Bold", 12)
    c.drawRightString(width - 18 * mm, height - 14 * mm, f"FACTURA {fields.invoice_number}")
    c.setFont("Helvetica", 9)
    c.drawRightString(width - 18 * mm, height - 20 * mm, f"Issue: {fields.issue_date.isoformat()}")

    # --- Access key ---
    y = height - 38 * mm
    c.setFillColor(DARK)
    c.setFont("Helvetica-Bold", 10)
    c.drawString(18 * mm, y, "Access key")
    c.setFont("Courier", 9)
    c.drawString(18 * mm, y - 5 * mm, fields.access_key)

    # --- Client ---
    y -= 16 * mm
    c.setFont("Helvetica-Bold", 10)
    c.drawString(18 * mm, y, "Billed To")
    c.setFont("Helvetica", 9)
    c.drawString(18 * mm, y - 5 * mm, fields.client_name)
    line_y = y - 10 * mm
    if fields.client_id_number:
        c.drawString(18 * mm, line_y, f"ID {fields.client_id_number}")
        line_y -= 5 * mm
    if fields.client_email:
        c.setFillColor(GRAY)
        c.drawString(18 * mm, line_y, fields.client_email)
        c.setFillColor(DARK)

    # --- Lines ---
    y -= 28 * mm
    data = [
        ["Order", "Description", "Amount"],
        [fields.order_tag, fields.description[:70], _money(fields.subtotal)],
        ["", "Subtotal", _money(fields.subtotal)],
        ["", f"Tax ({fields.tax_rate * 100:.0f}%)", _money(fields.tax)],
        ["", "Total", _money(fields.total)],
    ]
    table = Table(data, colWidths=[40 * mm, 100 * mm, 34 * mm], hAlign="LEFT")
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#f3f4f6")),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTNAME", (1, -1), (-1, -1), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("ALIGN", (2, 0), (2, -1), "RIGHT"),
        ("GRID", (0, 0), (-1, 1), 0.5, colors.HexColor("#e5e7eb")),
        ("PADDING", (0, 0), (-1, -1), 6),
    ]))
    tw, th = table.wrapOn(c, width - 36 * mm, height)
    table.drawOn(c, 18 * mm, y - th)

    c.showPage()
    c.save()
    return buf.getvalue()


def render_invoice_xml(fields: InvoiceFields) -> bytes:
    """Render the minimal invoice XML. Returns UTF-8 bytes with declaration."""
    establishment, emission_point, sequence = fields.invoice_number.split("-")

    root = ET.Element("factura", {"id": "comprobante", "version": "1.0.0"})

    info_trib = ET.SubElement(root, "infoTributaria")
    for tag, value in (
        ("ambiente", fields.environment),
        ("tipoEmision", fields.emission_type),
        ("razonSocial", fields.issuer_name),
        ("ruc", fields.issuer_tax_id),
        ("claveAcceso", fields.access_key),
        ("codDoc", fields.document_type),
        ("estab", establishment),
        ("ptoEmi", emission_point),
        ("secuencial", sequence),
        ("dirMatriz", fields.issuer_address),
    ):
        ET.SubElement(info_trib, tag).text = value

    info_fact = ET.SubElement(root, "infoFactura")
    for tag, value in (
        ("fechaEmision", fields.issue_date.strftime("%d/%m/%Y")),
        ("razonSocialComprador", fields.client_name),
        ("identificacionComprador", fields.client_id_number or ""),
        ("totalSinImpuestos", f"{fields.subtotal:.2f}"),
        ("totalImpuesto", f"{fields.tax:.2f}"),
        ("importeTotal", f"{fields.total:.2f}"),
        ("moneda", "DOLAR"),
    ):
        ET.SubElement(info_fact, tag).text = value

    detalles = ET.SubElement(root, "detalles")
    detalle = ET.SubElement(detalles, "detalle")
    ET.SubElement(detalle, "codigoPrincipal").text = fields.order_tag
    ET.SubElement(detalle, "descripcion").text = fields.description
    ET.SubElement(detalle, "cantidad").text = "1"
    ET.SubElement(detalle, "precioTotalSinImpuesto").text = f"{fields.subtotal:.2f}"

    return ET.tostring(root, encoding="utf-8", xml_declaration=True)
