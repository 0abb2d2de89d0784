from __future__ import annotations

import enum

from ..extensions import db
from repairdesk.time_utils import to_utc_z, to_date_str


class OrderState(str, enum.Enum):
    """Service order states. Codes are what order_statuses.code stores."""
    RECEIVED = "RECEIVED"
    DIAGNOSED = "DIAGNOSED"
    PROFORMA_SENT = "PROFORMA_SENT"
    PROFORMA_APPROVED = "PROFORMA_APPROVED"
    PROFORMA_REJECTED = "PROFORMA_REJECTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    INVOICED = "INVOICED"
    DELIVERED = "DELIVERED"


STATE_NAMES = {
    OrderState.RECEIVED: "Received",
    OrderState.DIAGNOSED: "Diagnosed",
    OrderState.PROFORMA_SENT: "Proforma sent",
    OrderState.PROFORMA_APPROVED: "Proforma approved",
    OrderState.PROFORMA_REJECTED: "Proforma rejected",
    OrderState.IN_PROGRESS: "In progress",
    OrderState.COMPLETED: "Completed",
    OrderState.INVOICED: "Invoiced",
    OrderState.DELIVERED: "Delivered",
}


class ProformaStatus(str, enum.Enum):
    NONE = "none"
    GENERATED = "generated"
    SENT = "sent"
    APPROVED = "approved"
    REJECTED = "rejected"


class OrderStatus(db.Model):
    """Reference table of order states (seeded by `flask system init`)."""
    __tablename__ = "order_statuses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    name = db.Column(db.String(64), nullable=False)

    def to_dict(self) -> dict:
        return {"id": self.id, "code": self.code, "name": self.name}


class Equipment(db.Model):
    """A client's device brought in for repair."""
    __tablename__ = "equipment"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    equipment_type = db.Column(db.String(64), nullable=False)
    brand = db.Column(db.String(64), nullable=True)
    model = db.Column(db.String(64), nullable=True)
    serial_number = db.Column(db.String(128), nullable=True, index=True)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    client = db.relationship("Client", backref=db.backref("equipment", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "equipment_type": self.equipment_type,
            "brand": self.brand,
            "model": self.model,
            "serial_number": self.serial_number,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


class ServiceOrder(db.Model):
    """
    The unit of workflow.

    STATE MACHINE: see services/lifecycle_service.py. status_id only ever
    changes through lifecycle_service so every change lands in
    order_status_history in the same transaction.

    CONCURRENCY: `version` is an optimistic lock. A transition computed from a
    stale read fails with StaleDataError instead of silently overwriting.
    """
    __tablename__ = "service_orders"
    __table_args__ = (
        db.Index("ix_service_orders_status", "status_id"),
        db.Index("ix_service_orders_client", "client_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    identity_tag = db.Column(db.String(32), nullable=False, unique=True)

    status_id = db.Column(db.Integer, db.ForeignKey("order_statuses.id"), nullable=False)
    proforma_status = db.Column(db.String(16), nullable=False, default=ProformaStatus.NONE.value)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False)
    equipment_id = db.Column(db.Integer, db.ForeignKey("equipment.id"), nullable=False)
    receptionist_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    technician_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    diagnosis = db.Column(db.Text, nullable=True)
    parts = db.Column(db.Text, nullable=True)
    total_price = db.Column(db.Numeric(12, 2), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    intake_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    estimated_delivery_date = db.Column(db.Date, nullable=True)
    proforma_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    proforma_decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    service_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    service_ended_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_by_name = db.Column(db.String(160), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    status = db.relationship("OrderStatus")
    client = db.relationship("Client", backref=db.backref("orders", lazy=True))
    equipment = db.relationship("Equipment", backref=db.backref("orders", lazy=True))
    receptionist = db.relationship("User", foreign_keys=[receptionist_id])
    technician = db.relationship("User", foreign_keys=[technician_id])

    @property
    def current_state(self) -> OrderState:
        return OrderState(self.status.code)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "identity_tag": self.identity_tag,
            "status": self.status.code if self.status else None,
            "status_name": self.status.name if self.status else None,
            "proforma_status": self.proforma_status,
            "client_id": self.client_id,
            "equipment_id": self.equipment_id,
            "receptionist_id": self.receptionist_id,
            "technician_id": self.technician_id,
            "diagnosis": self.diagnosis,
            "parts": self.parts,
            "total_price": str(self.total_price) if self.total_price is not None else None,
            "notes": self.notes,
            "intake_date": to_utc_z(self.intake_date),
            "estimated_delivery_date": to_date_str(self.estimated_delivery_date),
            "proforma_sent_at": to_utc_z(self.proforma_sent_at),
            "proforma_decided_at": to_utc_z(self.proforma_decided_at),
            "service_started_at": to_utc_z(self.service_started_at),
            "service_ended_at": to_utc_z(self.service_ended_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "received_by_name": self.received_by_name,
        }


class OrderStatusHistory(db.Model):
    """
    Append-only ledger of accepted transitions.

    IMMUTABLE: Never update or delete. Exactly one row per accepted
    transition; (order_id, sequence) orders the rows of one order.
    changed_by_user_id is NULL for client- or system-driven changes.
    """
    __tablename__ = "order_status_history"
    __table_args__ = (
        db.UniqueConstraint("order_id", "sequence", name="uq_order_status_history_seq"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("service_orders.id"), nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False)
    status_id = db.Column(db.Integer, db.ForeignKey("order_statuses.id"), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    changed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    changed_by_client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=True)

    changed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship(
        "ServiceOrder",
        backref=db.backref("history", lazy=True, order_by="OrderStatusHistory.sequence"),
    )
    status = db.relationship("OrderStatus")
    changed_by = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "sequence": self.sequence,
            "status": self.status.code if self.status else None,
            "status_name": self.status.name if self.status else None,
            "notes": self.notes,
            "changed_by_user_id": self.changed_by_user_id,
            "changed_by_client_id": self.changed_by_client_id,
            "changed_by": self.changed_by.username if self.changed_by else None,
            "changed_at": to_utc_z(self.changed_at),
        }
