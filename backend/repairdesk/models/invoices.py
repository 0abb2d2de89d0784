from __future__ import annotations

from ..extensions import db
from repairdesk.time_utils import to_utc_z, to_date_str


INVOICE_STATUS_GENERATED = "generated"
INVOICE_STATUS_SENT = "sent"


class InvoiceSequence(db.Model):
    """
    Last issued invoice sequence per (establishment, emission point).

    WHY: Invoice numbers must be strictly increasing. Allocation is a single
    UPDATE ... SET last_sequence = last_sequence + 1 on this row, so
    concurrent invoice generation serializes on the row lock.
    """
    __tablename__ = "invoice_sequences"
    __table_args__ = (
        db.UniqueConstraint("establishment", "emission_point", name="uq_invoice_sequences_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    establishment = db.Column(db.String(3), nullable=False)
    emission_point = db.Column(db.String(3), nullable=False)
    last_sequence = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "establishment": self.establishment,
            "emission_point": self.emission_point,
            "last_sequence": self.last_sequence,
            "updated_at": to_utc_z(self.updated_at),
        }


class Invoice(db.Model):
    """
    Electronic invoice issued for a service order (at most one per order).

    invoice_number is unique at the store level as a backstop to the
    sequence lock; access_key carries a mod-11 check digit.
    """
    __tablename__ = "invoices"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("service_orders.id"), nullable=False, unique=True)

    invoice_number = db.Column(db.String(17), nullable=False, unique=True, index=True)
    access_key = db.Column(db.String(44), nullable=False, unique=True)

    issue_date = db.Column(db.Date, nullable=False)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    tax = db.Column(db.Numeric(12, 2), nullable=False)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=INVOICE_STATUS_GENERATED)

    pdf_path = db.Column(db.String(512), nullable=True)
    xml_path = db.Column(db.String(512), nullable=True)

    issued_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    order = db.relationship("ServiceOrder", backref=db.backref("invoice", uselist=False, lazy=True))
    issued_by = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "invoice_number": self.invoice_number,
            "access_key": self.access_key,
            "issue_date": to_date_str(self.issue_date),
            "subtotal": str(self.subtotal),
            "tax": str(self.tax),
            "total_amount": str(self.total_amount),
            "status": self.status,
            "issued_by_user_id": self.issued_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "sent_at": to_utc_z(self.sent_at),
        }
