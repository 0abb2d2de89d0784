"""
End-to-end repair workflow and invoicing tests.

Verifies:
- The full path from intake to delivery, with attributable history
- Invoicing is refused before the proforma is approved
- The issued invoice carries a valid access key, a tax split that adds up,
  and PDF/XML artifacts
- Delivery failures on the proforma roll the transition back; failures on
  informational notices do not
- A retried commit does not send the proforma twice
- A failed invoice issue writes no artifacts
"""

import os
import xml.etree.ElementTree as ET
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.orm.exc import StaleDataError

from repairdesk.errors import DeliveryFailed, NotFoundError, PreconditionFailed, TransitionRejected
from repairdesk.extensions import db
from repairdesk.models import INVOICE_STATUS_GENERATED, INVOICE_STATUS_SENT, OrderState, ProformaStatus
from repairdesk.services import invoice_service, lifecycle_service, order_service
from repairdesk.services.identifier_service import mod11_check_digit, validate_access_key
from repairdesk.services.invoice_service import split_total
from repairdesk.services.lifecycle_service import Actor, history_for, verify_history

from conftest import walk_to_completed


# =============================================================================
# TAX SPLIT
# =============================================================================


class TestSplitTotal:

    @pytest.mark.parametrize(
        "total,rate,subtotal,tax",
        [
            ("112.00", "0.12", "100.00", "12.00"),
            ("100.00", "0.12", "89.29", "10.71"),
            ("0.01", "0.12", "0.01", "0.00"),
            ("50.00", "0", "50.00", "0.00"),
            ("115.00", "0.15", "100.00", "15.00"),
        ],
    )
    def test_split(self, total, rate, subtotal, tax):
        assert split_total(Decimal(total), Decimal(rate)) == (Decimal(subtotal), Decimal(tax))

    @pytest.mark.parametrize("total", ["0.05", "19.99", "123.45", "999.99"])
    def test_parts_add_up(self, total):
        subtotal, tax = split_total(Decimal(total), Decimal("0.12"))
        assert subtotal + tax == Decimal(total)


# =============================================================================
# END TO END
# =============================================================================


class TestEndToEnd:

    def test_intake_to_delivery(self, order, receptionist, technician, sales, customer, notifier):
        tech = Actor(user_id=technician.id)
        seller = Actor(user_id=sales.id)

        assert order.current_state == OrderState.RECEIVED

        order_service.set_diagnosis(order.id, "Failed power rail", actor=tech)

        with pytest.raises(PreconditionFailed):
            invoice_service.generate_invoice(order.id, actor=seller)
        assert order_service.get_order(order.id).current_state == OrderState.DIAGNOSED

        order_service.set_proforma(order.id, "Power IC, labour", "112.00")
        order_service.send_proforma(order.id, actor=seller)
        approved = order_service.respond_to_proforma(order.id, customer.id, True)
        assert approved.proforma_status == ProformaStatus.APPROVED.value

        order_service.start_service(order.id, actor=tech)
        order_service.finish_service(order.id, actor=tech, final_notes="Board reworked")

        result = invoice_service.generate_invoice(order.id, actor=seller, issue_date=date(2024, 3, 15))
        assert len(result.access_key) == 44
        assert int(result.access_key[-1]) == mod11_check_digit(result.access_key[:43])
        assert result.invoice_number == "001-001-000000001"
        assert order_service.get_order(order.id).current_state == OrderState.INVOICED

        delivered = order_service.deliver_order(
            order.id, actor=Actor(user_id=receptionist.id), received_by_name="Maria Perez",
        )
        assert delivered.current_state == OrderState.DELIVERED
        assert delivered.received_by_name == "Maria Perez"
        assert delivered.delivered_at is not None

        entries = history_for(order.id)
        assert [e.status.code for e in entries] == [
            "RECEIVED", "DIAGNOSED", "PROFORMA_SENT", "PROFORMA_APPROVED",
            "IN_PROGRESS", "COMPLETED", "INVOICED", "DELIVERED",
        ]
        assert [e.changed_by_user_id for e in entries] == [
            receptionist.id, technician.id, sales.id, None,
            technician.id, technician.id, sales.id, receptionist.id,
        ]
        assert entries[3].changed_by_client_id == customer.id
        assert verify_history(delivered)

        assert notifier.names() == ["send_proforma", "send_proforma_decision"]

    def test_delivered_is_terminal(self, order, technician, sales, customer):
        walk_to_completed(order.id, technician=technician, sales=sales, client_id=customer.id)
        invoice_service.generate_invoice(order.id)
        order_service.deliver_order(order.id)
        for target in OrderState:
            with pytest.raises(TransitionRejected):
                lifecycle_service.transition(order.id, target)


# =============================================================================
# INVOICES
# =============================================================================


class TestInvoices:

    @pytest.fixture
    def completed(self, order, technician, sales, customer):
        walk_to_completed(order.id, technician=technician, sales=sales, client_id=customer.id)
        return order

    def test_amounts(self, completed, sales):
        invoice = invoice_service.generate_invoice(completed.id, actor=Actor(user_id=sales.id)).invoice
        assert invoice.total_amount == Decimal("112.00")
        assert invoice.subtotal == Decimal("100.00")
        assert invoice.tax == Decimal("12.00")
        assert invoice.status == INVOICE_STATUS_GENERATED
        assert invoice.issued_by_user_id == sales.id
        assert validate_access_key(invoice.access_key)

    def test_artifacts(self, completed):
        result = invoice_service.generate_invoice(completed.id, issue_date=date(2024, 3, 15))
        assert result.pdf_bytes.startswith(b"%PDF")

        root = ET.fromstring(result.xml_bytes)
        assert root.tag == "factura"
        assert root.findtext("infoTributaria/claveAcceso") == result.access_key
        assert root.findtext("infoTributaria/secuencial") == "000000001"
        assert root.findtext("infoFactura/fechaEmision") == "15/03/2024"
        assert root.findtext("infoFactura/importeTotal") == "112.00"
        assert root.findtext("infoFactura/totalSinImpuestos") == "100.00"
        assert root.findtext("infoFactura/razonSocialComprador") == "Maria Perez"

        invoice = result.invoice
        assert os.path.basename(invoice.pdf_path) == f"factura_{invoice.invoice_number}.pdf"
        assert os.path.exists(invoice.pdf_path)
        assert os.path.exists(invoice.xml_path)

    def test_pdf_download(self, completed):
        issued = invoice_service.generate_invoice(completed.id)
        invoice, pdf_bytes = invoice_service.invoice_pdf(completed.id)
        assert invoice.id == issued.invoice.id
        assert pdf_bytes == issued.pdf_bytes

    def test_pdf_rerendered_when_file_missing(self, completed):
        issued = invoice_service.generate_invoice(completed.id)
        os.remove(issued.invoice.pdf_path)
        _, pdf_bytes = invoice_service.invoice_pdf(completed.id)
        assert pdf_bytes.startswith(b"%PDF")

    def test_failed_issue_leaves_no_artifacts(self, app, monkeypatch, tmp_path, completed):
        storage = tmp_path / "invoices"
        monkeypatch.setitem(app.config, "INVOICE_STORAGE_DIR", str(storage))

        real_commit = db.session.commit
        failures = [RuntimeError("database went away")]

        def flaky_commit():
            if failures:
                raise failures.pop()
            real_commit()

        monkeypatch.setattr(db.session, "commit", flaky_commit)
        with pytest.raises(RuntimeError):
            invoice_service.generate_invoice(completed.id)

        assert not storage.exists() or list(storage.iterdir()) == []
        assert order_service.get_order(completed.id).current_state == OrderState.COMPLETED
        with pytest.raises(NotFoundError):
            invoice_service.get_invoice_for_order(completed.id)

        issued = invoice_service.generate_invoice(completed.id)
        assert sorted(p.name for p in storage.iterdir()) == [
            f"factura_{issued.invoice_number}.pdf",
            f"factura_{issued.invoice_number}.xml",
        ]

    def test_at_most_one_invoice_per_order(self, completed):
        invoice_service.generate_invoice(completed.id)
        with pytest.raises(PreconditionFailed):
            invoice_service.generate_invoice(completed.id)

    def test_numbers_increase_across_orders(self, completed, customer, equipment, receptionist, technician, sales):
        second = order_service.create_order(
            client_id=customer.id, equipment_id=equipment.id, receptionist_id=receptionist.id,
        )
        walk_to_completed(second.id, technician=technician, sales=sales, client_id=customer.id, price="56.00")

        first_number = invoice_service.generate_invoice(completed.id).invoice_number
        second_number = invoice_service.generate_invoice(second.id).invoice_number
        assert first_number == "001-001-000000001"
        assert second_number == "001-001-000000002"

        items, total = invoice_service.list_invoices()
        assert total == 2
        assert [i.invoice_number for i in items] == [second_number, first_number]

    def test_no_invoice_yet(self, completed):
        with pytest.raises(NotFoundError):
            invoice_service.get_invoice_for_order(completed.id)

    def test_send_invoice(self, completed, notifier):
        invoice_service.generate_invoice(completed.id)
        invoice = invoice_service.send_invoice(completed.id)
        assert invoice.status == INVOICE_STATUS_SENT
        assert invoice.sent_at is not None

        name, kwargs = notifier.calls[-1]
        assert name == "send_invoice"
        assert kwargs["email"] == "maria@example.com"
        assert kwargs["pdf_bytes"].startswith(b"%PDF")

    def test_send_invoice_failure_keeps_it_unsent(self, completed, notifier):
        invoice_service.generate_invoice(completed.id)
        notifier.fail.add("send_invoice")
        with pytest.raises(DeliveryFailed):
            invoice_service.send_invoice(completed.id)
        assert invoice_service.get_invoice_for_order(completed.id).status == INVOICE_STATUS_GENERATED


# =============================================================================
# NOTIFICATION FAILURES
# =============================================================================


class TestDeliveryFailures:

    def test_proforma_delivery_failure_rolls_back(self, order, technician, sales, notifier):
        order_service.set_diagnosis(order.id, "Worn keyboard", actor=Actor(user_id=technician.id))
        order_service.set_proforma(order.id, "Keyboard", "40.00")
        notifier.fail.add("send_proforma")

        with pytest.raises(DeliveryFailed):
            order_service.send_proforma(order.id, actor=Actor(user_id=sales.id))

        current = order_service.get_order(order.id)
        assert current.current_state == OrderState.DIAGNOSED
        assert current.proforma_status == ProformaStatus.GENERATED.value
        assert len(history_for(order.id)) == 2

        notifier.fail.clear()
        assert order_service.send_proforma(order.id, actor=Actor(user_id=sales.id)).current_state == OrderState.PROFORMA_SENT

    def test_retried_commit_sends_one_proforma(self, monkeypatch, order, technician, sales, notifier):
        order_service.set_diagnosis(order.id, "Worn keyboard", actor=Actor(user_id=technician.id))
        order_service.set_proforma(order.id, "Keyboard", "40.00")

        real_commit = db.session.commit
        conflicts = [StaleDataError("order row changed underneath")]

        def flaky_commit():
            if conflicts:
                raise conflicts.pop()
            real_commit()

        monkeypatch.setattr(db.session, "commit", flaky_commit)
        sent = order_service.send_proforma(order.id, actor=Actor(user_id=sales.id))

        assert sent.current_state == OrderState.PROFORMA_SENT
        assert notifier.names() == ["send_proforma"]
        assert len(history_for(order.id)) == 3

    def test_decision_notice_failure_keeps_decision(self, order, technician, sales, customer, notifier):
        order_service.set_diagnosis(order.id, "Worn keyboard", actor=Actor(user_id=technician.id))
        order_service.set_proforma(order.id, "Keyboard", "40.00")
        order_service.send_proforma(order.id, actor=Actor(user_id=sales.id))
        notifier.fail.add("send_proforma_decision")

        updated = order_service.respond_to_proforma(order.id, customer.id, False)
        assert updated.current_state == OrderState.PROFORMA_REJECTED
