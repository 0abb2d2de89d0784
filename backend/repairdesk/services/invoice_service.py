# Overview: Service-layer operations for invoices; encapsulates business logic and database work.

"""
Invoice Generation

generate_invoice() runs as the side effect of the COMPLETED -> INVOICED
transition, inside the same transaction:
1. lifecycle_service locks the order and checks the billing guard
   (COMPLETED with an approved proforma)
2. allocate the invoice number, build the access key
3. split the tax-inclusive total into subtotal and tax
4. render PDF and XML, insert the Invoice row
5. commit (status change, history row, invoice, sequence together)
6. write the PDF/XML artifacts; nothing is written for a rolled-back attempt

A SequenceConflict during allocation rolls everything back and the whole
step is retried.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from ..errors import DeliveryFailed, NotFoundError, PreconditionFailed
from ..extensions import db
from ..models import (
    INVOICE_STATUS_SENT,
    Invoice,
    OrderState,
    ServiceOrder,
)
from . import identifier_service, lifecycle_service
from .invoice_documents import InvoiceFields, render_invoice_pdf, render_invoice_xml
from .lifecycle_service import Actor, SYSTEM
from .notification_service import get_notifier
from repairdesk.time_utils import utcnow


logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class InvoiceResult:
    invoice: Invoice
    invoice_number: str
    access_key: str
    pdf_bytes: bytes
    xml_bytes: bytes


def tax_rate() -> Decimal:
    return Decimal(str(current_app.config["INVOICE_TAX_RATE"]))


def split_total(total: Decimal, rate: Decimal) -> tuple[Decimal, Decimal]:
    """
    Split a tax-inclusive total into (subtotal, tax), HALF_UP to cents.

    subtotal + tax == total always holds.
    """
    total = Decimal(total).quantize(CENTS, rounding=ROUND_HALF_UP)
    subtotal = (total / (Decimal("1") + rate)).quantize(CENTS, rounding=ROUND_HALF_UP)
    return subtotal, total - subtotal


def _fields_for(order: ServiceOrder, *, invoice_number, key, issue_date, subtotal, tax, total) -> InvoiceFields:
    cfg = current_app.config
    client = order.client
    return InvoiceFields(
        invoice_number=invoice_number,
        access_key=key,
        issue_date=issue_date,
        environment=cfg["INVOICE_ENVIRONMENT"],
        document_type=cfg["INVOICE_DOCUMENT_TYPE"],
        emission_type=cfg["INVOICE_EMISSION_TYPE"],
        issuer_name=cfg["ISSUER_NAME"],
        issuer_address=cfg["ISSUER_ADDRESS"],
        issuer_tax_id=cfg["INVOICE_ISSUER_TAX_ID"],
        client_name=client.display_name,
        client_id_number=client.id_number,
        client_email=client.email,
        order_tag=order.identity_tag,
        description=order.parts or "Repair service",
        subtotal=subtotal,
        tax=tax,
        tax_rate=tax_rate(),
        total=total,
    )


def _storage_dir() -> str | None:
    directory = current_app.config.get("INVOICE_STORAGE_DIR")
    if not directory:
        return None
    os.makedirs(directory, exist_ok=True)
    return directory


def _artifact_paths(invoice_number: str) -> tuple[str | None, str | None]:
    directory = _storage_dir()
    if directory is None:
        return None, None
    stem = f"factura_{invoice_number}"
    return os.path.join(directory, f"{stem}.pdf"), os.path.join(directory, f"{stem}.xml")


def _store_artifacts(invoice: Invoice, pdf_bytes: bytes, xml_bytes: bytes) -> None:
    """Write the artifacts of a committed invoice. Missing files are re-rendered on read."""
    try:
        for path, content in ((invoice.pdf_path, pdf_bytes), (invoice.xml_path, xml_bytes)):
            if path:
                with open(path, "wb") as fh:
                    fh.write(content)
    except OSError:
        logger.exception("Could not store artifacts for invoice %s", invoice.invoice_number)


def generate_invoice(order_id: int, *, actor: Actor = SYSTEM, issue_date: date | None = None) -> InvoiceResult:
    """
    Issue the invoice for a completed, approved order and move it to INVOICED.

    Raises:
        NotFoundError: no such order
        PreconditionFailed: not COMPLETED, proforma not approved, or
            already invoiced
    """
    existing = db.session.query(Invoice.id).filter_by(order_id=order_id).first()
    if existing:
        raise PreconditionFailed("An invoice was already generated for this order")

    issued: dict = {}

    def _issue(order: ServiceOrder) -> None:
        when = issue_date or utcnow().date()
        number = identifier_service.next_invoice_number()
        key = identifier_service.access_key(number, when)
        total = Decimal(order.total_price)
        subtotal, tax = split_total(total, tax_rate())

        fields = _fields_for(
            order, invoice_number=number, key=key, issue_date=when,
            subtotal=subtotal, tax=tax, total=total,
        )
        pdf_bytes = render_invoice_pdf(fields)
        xml_bytes = render_invoice_xml(fields)
        pdf_path, xml_path = _artifact_paths(number)

        invoice = Invoice(
            order_id=order.id,
            invoice_number=number,
            access_key=key,
            issue_date=when,
            subtotal=subtotal,
            tax=tax,
            total_amount=total,
            pdf_path=pdf_path,
            xml_path=xml_path,
            issued_by_user_id=actor.user_id,
        )
        db.session.add(invoice)
        db.session.flush()
        issued.update(invoice=invoice, pdf_bytes=pdf_bytes, xml_bytes=xml_bytes)

    lifecycle_service.transition(order_id, OrderState.INVOICED, actor=actor, on_accept=_issue)

    invoice = issued["invoice"]
    _store_artifacts(invoice, issued["pdf_bytes"], issued["xml_bytes"])
    logger.info("Invoice %s issued for order %s (key %s)", invoice.invoice_number, order_id, invoice.access_key)
    return InvoiceResult(
        invoice=invoice,
        invoice_number=invoice.invoice_number,
        access_key=invoice.access_key,
        pdf_bytes=issued["pdf_bytes"],
        xml_bytes=issued["xml_bytes"],
    )


def get_invoice_for_order(order_id: int) -> Invoice:
    invoice = db.session.query(Invoice).filter_by(order_id=order_id).first()
    if invoice is None:
        raise NotFoundError("Invoice not found for this order")
    return invoice


def _read_or_render(invoice: Invoice) -> tuple[bytes, bytes]:
    if invoice.pdf_path and invoice.xml_path and os.path.exists(invoice.pdf_path) and os.path.exists(invoice.xml_path):
        with open(invoice.pdf_path, "rb") as fh:
            pdf_bytes = fh.read()
        with open(invoice.xml_path, "rb") as fh:
            xml_bytes = fh.read()
        return pdf_bytes, xml_bytes

    fields = _fields_for(
        invoice.order,
        invoice_number=invoice.invoice_number,
        key=invoice.access_key,
        issue_date=invoice.issue_date,
        subtotal=Decimal(invoice.subtotal),
        tax=Decimal(invoice.tax),
        total=Decimal(invoice.total_amount),
    )
    return render_invoice_pdf(fields), render_invoice_xml(fields)


def invoice_pdf(order_id: int) -> tuple[Invoice, bytes]:
    invoice = get_invoice_for_order(order_id)
    pdf_bytes, _ = _read_or_render(invoice)
    return invoice, pdf_bytes


def send_invoice(order_id: int) -> Invoice:
    """
    Email the invoice artifacts to the client and mark the invoice sent.

    Raises DeliveryFailed (invoice stays unsent) if delivery fails.
    """
    invoice = get_invoice_for_order(order_id)
    pdf_bytes, xml_bytes = _read_or_render(invoice)
    try:
        get_notifier().send_invoice(
            email=invoice.order.client.email,
            invoice_number=invoice.invoice_number,
            access_key=invoice.access_key,
            pdf_bytes=pdf_bytes,
            xml_bytes=xml_bytes,
        )
    except Exception as exc:
        logger.exception("Invoice %s delivery failed", invoice.invoice_number)
        raise DeliveryFailed(f"Invoice could not be delivered: {exc}")

    invoice.status = INVOICE_STATUS_SENT
    invoice.sent_at = utcnow()
    db.session.commit()
    logger.info("Invoice %s sent", invoice.invoice_number)
    return invoice


def list_invoices(*, page: int = 1, limit: int = 50) -> tuple[list[Invoice], int]:
    q = db.session.query(Invoice)
    total = q.count()
    items = (
        q.order_by(Invoice.invoice_number.desc())
        .offset((max(page, 1) - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total
