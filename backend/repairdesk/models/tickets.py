from __future__ import annotations

from ..extensions import db
from repairdesk.time_utils import to_utc_z


TICKET_PRIORITIES = ("low", "normal", "high", "urgent")
TICKET_STATUSES = ("open", "assigned", "in_progress", "resolved", "closed")


class Ticket(db.Model):
    """
    Client support ticket, optionally about one of the client's orders.

    Status flow: open -> assigned -> in_progress -> resolved -> closed.
    A closed ticket accepts no further status change.
    """
    __tablename__ = "tickets"
    __table_args__ = (
        db.Index("ix_tickets_status_priority", "status", "priority"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    ticket_number = db.Column(db.String(32), nullable=False, unique=True)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("service_orders.id"), nullable=True, index=True)

    subject = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    priority = db.Column(db.String(16), nullable=False, default="normal")
    status = db.Column(db.String(16), nullable=False, default="open")

    assigned_to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    client = db.relationship("Client", backref=db.backref("tickets", lazy=True))
    order = db.relationship("ServiceOrder", backref=db.backref("tickets", lazy=True))
    assigned_to = db.relationship("User")

    def to_dict(self, *, include_responses: bool = False, include_internal: bool = False) -> dict:
        data = {
            "id": self.id,
            "ticket_number": self.ticket_number,
            "client_id": self.client_id,
            "order_id": self.order_id,
            "subject": self.subject,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "assigned_to_user_id": self.assigned_to_user_id,
            "assigned_to": self.assigned_to.username if self.assigned_to else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "resolved_at": to_utc_z(self.resolved_at),
            "closed_at": to_utc_z(self.closed_at),
        }
        if include_responses:
            data["responses"] = [
                r.to_dict() for r in self.responses
                if include_internal or not r.is_internal
            ]
        return data


class TicketResponse(db.Model):
    """A message on a ticket; internal responses are hidden from the client."""
    __tablename__ = "ticket_responses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id"), nullable=False, index=True)

    message = db.Column(db.Text, nullable=False)
    is_internal = db.Column(db.Boolean, nullable=False, default=False)

    # Exactly one of these is set
    responded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    responded_by_client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    ticket = db.relationship(
        "Ticket",
        backref=db.backref("responses", lazy=True, order_by="TicketResponse.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "message": self.message,
            "is_internal": self.is_internal,
            "responded_by_user_id": self.responded_by_user_id,
            "responded_by_client_id": self.responded_by_client_id,
            "created_at": to_utc_z(self.created_at),
        }
