# Overview: Service-layer operations for support tickets; encapsulates business logic and database work.

"""
Support Tickets

Clients open tickets (optionally about one of their own orders); staff
assign, respond, and resolve them; an administrator closes them.

STATUS FLOW: open -> assigned -> in_progress -> resolved -> closed
A closed ticket rejects every status change except staying closed.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import NotFoundError, PreconditionFailed, SequenceConflict
from ..extensions import db
from ..models import (
    TICKET_PRIORITIES,
    TICKET_STATUSES,
    Client,
    ServiceOrder,
    Ticket,
    TicketResponse,
    User,
)
from ..validation import ValidationError
from .concurrency import lock_for_update, run_with_retry
from .lifecycle_service import Actor, SYSTEM
from .notification_service import notify_safely
from repairdesk.time_utils import utcnow


logger = logging.getLogger(__name__)

CLOSED = "closed"
RESOLVED = "resolved"


def _ticket_prefix(today: date) -> str:
    return f"TCK-{today:%Y%m%d}-"


def _next_ticket_number(today: date) -> str:
    prefix = _ticket_prefix(today)
    count = (
        db.session.query(func.count(Ticket.id))
        .filter(Ticket.ticket_number.like(f"{prefix}%"))
        .scalar()
    )
    return f"{prefix}{(count or 0) + 1:04d}"


def _validate_priority(priority: str) -> str:
    priority = (priority or "normal").strip().lower()
    if priority not in TICKET_PRIORITIES:
        raise ValidationError(f"priority must be one of {', '.join(TICKET_PRIORITIES)}")
    return priority


def _validate_status(status: str) -> str:
    status = (status or "").strip().lower()
    if status not in TICKET_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(TICKET_STATUSES)}")
    return status


def create_ticket(
    client_id: int,
    subject: str,
    description: str,
    *,
    priority: str = "normal",
    order_id: int | None = None,
) -> Ticket:
    """Open a ticket for a client. A referenced order must belong to that client."""
    subject = (subject or "").strip()
    description = (description or "").strip()
    if not subject:
        raise ValidationError("subject is required")
    if not description:
        raise ValidationError("description is required")
    priority = _validate_priority(priority)

    if db.session.get(Client, client_id) is None:
        raise NotFoundError("Client not found")
    if order_id is not None:
        order = db.session.get(ServiceOrder, order_id)
        if order is None or order.client_id != client_id:
            raise NotFoundError("Service order not found")

    def _op() -> Ticket:
        ticket = Ticket(
            ticket_number=_next_ticket_number(utcnow().date()),
            client_id=client_id,
            order_id=order_id,
            subject=subject,
            description=description,
            priority=priority,
            status="open",
        )
        db.session.add(ticket)
        try:
            db.session.flush()
        except IntegrityError:
            raise SequenceConflict("Ticket number was allocated concurrently")
        db.session.commit()
        return ticket

    ticket = run_with_retry(_op)
    logger.info("Ticket %s opened by client %s", ticket.ticket_number, client_id)
    return ticket


def get_ticket(ticket_id: int) -> Ticket:
    ticket = db.session.get(Ticket, ticket_id)
    if ticket is None:
        raise NotFoundError(f"Ticket {ticket_id} not found")
    return ticket


def ticket_owner(ticket_id: int) -> int:
    return get_ticket(ticket_id).client_id


def list_client_tickets(client_id: int) -> list[Ticket]:
    return (
        db.session.query(Ticket)
        .filter(Ticket.client_id == client_id)
        .order_by(Ticket.created_at.desc(), Ticket.id.desc())
        .all()
    )


def list_tickets(
    *,
    status: str | None = None,
    priority: str | None = None,
    assigned_to_user_id: int | None = None,
    client_id: int | None = None,
) -> list[Ticket]:
    q = db.session.query(Ticket)
    if status:
        q = q.filter(Ticket.status == _validate_status(status))
    if priority:
        q = q.filter(Ticket.priority == _validate_priority(priority))
    if assigned_to_user_id is not None:
        q = q.filter(Ticket.assigned_to_user_id == assigned_to_user_id)
    if client_id is not None:
        q = q.filter(Ticket.client_id == client_id)
    return q.order_by(Ticket.created_at.desc(), Ticket.id.desc()).all()


def _load_ticket_for_update(ticket_id: int) -> Ticket:
    ticket = lock_for_update(db.session.query(Ticket).filter(Ticket.id == ticket_id)).first()
    if ticket is None:
        raise NotFoundError(f"Ticket {ticket_id} not found")
    return ticket


def _apply_status(ticket: Ticket, status: str) -> bool:
    """Set a ticket status in the current transaction. Returns False for a no-op."""
    if ticket.status == CLOSED:
        if status == CLOSED:
            return False
        raise PreconditionFailed(
            f"Ticket {ticket.ticket_number} is closed",
            details={"status": ticket.status},
        )
    if ticket.status == status:
        return False

    now = utcnow()
    ticket.status = status
    ticket.updated_at = now
    if status == RESOLVED:
        ticket.resolved_at = now
    elif status == CLOSED:
        ticket.closed_at = now
        if ticket.resolved_at is None:
            ticket.resolved_at = now
    return True


def _notify_status(ticket: Ticket, message: str | None = None) -> None:
    notify_safely(
        "send_ticket_update",
        email=ticket.client.email,
        ticket_number=ticket.ticket_number,
        status=ticket.status,
        message=message,
    )


def assign_ticket(ticket_id: int, user_id: int, *, actor: Actor = SYSTEM) -> Ticket:
    assignee = db.session.get(User, user_id)
    if assignee is None or not assignee.is_active:
        raise ValidationError("Assignee must be an active staff user")

    def _op() -> Ticket:
        ticket = _load_ticket_for_update(ticket_id)
        if ticket.status == CLOSED:
            raise PreconditionFailed(f"Ticket {ticket.ticket_number} is closed")
        ticket.assigned_to_user_id = user_id
        if ticket.status == "open":
            _apply_status(ticket, "assigned")
        ticket.updated_at = utcnow()
        db.session.commit()
        return ticket

    ticket = run_with_retry(_op)
    logger.info("Ticket %s assigned to user %s by %s", ticket.ticket_number, user_id, actor)
    _notify_status(ticket)
    return ticket


def update_ticket_status(ticket_id: int, status: str, *, actor: Actor = SYSTEM) -> Ticket:
    status = _validate_status(status)

    def _op() -> tuple[Ticket, bool]:
        ticket = _load_ticket_for_update(ticket_id)
        changed = _apply_status(ticket, status)
        db.session.commit()
        return ticket, changed

    ticket, changed = run_with_retry(_op)
    if changed:
        logger.info("Ticket %s moved to %s by %s", ticket.ticket_number, status, actor)
        _notify_status(ticket)
    return ticket


def add_response(ticket_id: int, message: str, *, actor: Actor, is_internal: bool = False) -> TicketResponse:
    """Append a message. Clients cannot post internal notes; nobody can post on a closed ticket."""
    message = (message or "").strip()
    if not message:
        raise ValidationError("message is required")
    if actor.client_id is not None and is_internal:
        raise ValidationError("Clients cannot post internal responses")

    ticket = get_ticket(ticket_id)
    if ticket.status == CLOSED:
        raise PreconditionFailed(f"Ticket {ticket.ticket_number} is closed")

    response = TicketResponse(
        ticket_id=ticket.id,
        message=message,
        is_internal=is_internal,
        responded_by_user_id=actor.user_id,
        responded_by_client_id=actor.client_id,
    )
    db.session.add(response)
    ticket.updated_at = utcnow()
    db.session.commit()

    if not is_internal and actor.user_id is not None:
        _notify_status(ticket, message)
    return response


def close_ticket(ticket_id: int, *, actor: Actor = SYSTEM, resolution: str | None = None) -> Ticket:
    """Close a ticket, optionally recording a final staff response."""

    def _op() -> tuple[Ticket, bool]:
        ticket = _load_ticket_for_update(ticket_id)
        changed = _apply_status(ticket, CLOSED)
        if changed and resolution:
            db.session.add(TicketResponse(
                ticket_id=ticket.id,
                message=resolution.strip(),
                responded_by_user_id=actor.user_id,
            ))
        db.session.commit()
        return ticket, changed

    ticket, changed = run_with_retry(_op)
    if changed:
        logger.info("Ticket %s closed by %s", ticket.ticket_number, actor)
        _notify_status(ticket, resolution)
    return ticket


def bulk_close(ticket_ids, *, actor: Actor = SYSTEM) -> list[Ticket]:
    """
    Close several tickets in one transaction.

    All ids must exist; if any is missing nothing is closed. Tickets that
    are already closed are left as they are.
    """
    ids = sorted({int(t) for t in ticket_ids})
    if not ids:
        raise ValidationError("ticket_ids must not be empty")

    def _op() -> list[Ticket]:
        tickets = (
            lock_for_update(db.session.query(Ticket).filter(Ticket.id.in_(ids)))
            .order_by(Ticket.id)
            .all()
        )
        missing = set(ids) - {t.id for t in tickets}
        if missing:
            raise NotFoundError(
                "Tickets not found",
                details={"missing": sorted(missing)},
            )
        closed = [t for t in tickets if _apply_status(t, CLOSED)]
        db.session.commit()
        return closed

    closed = run_with_retry(_op)
    logger.info("Bulk-closed %s ticket(s) by %s", len(closed), actor)
    for ticket in closed:
        _notify_status(ticket)
    return closed


def modify_order_from_ticket(
    ticket_id: int,
    *,
    actor: Actor,
    notes: str | None = None,
    estimated_delivery_date: date | None = None,
    technician_id: int | None = None,
) -> ServiceOrder:
    """
    Apply an administrator's correction to the order a ticket refers to.

    Only business fields change; the order status and its history are left
    alone. The change is logged as an internal response and the ticket is
    resolved.
    """
    if notes is None and estimated_delivery_date is None and technician_id is None:
        raise ValidationError("Nothing to modify")
    if technician_id is not None:
        technician = db.session.get(User, technician_id)
        if technician is None or not technician.is_active:
            raise ValidationError("technician must be an active staff user")

    def _op() -> ServiceOrder:
        ticket = _load_ticket_for_update(ticket_id)
        if ticket.order_id is None:
            raise PreconditionFailed("Ticket is not linked to an order")
        if ticket.status == CLOSED:
            raise PreconditionFailed(f"Ticket {ticket.ticket_number} is closed")

        order = lock_for_update(
            db.session.query(ServiceOrder).filter(ServiceOrder.id == ticket.order_id)
        ).first()
        if order is None:
            raise NotFoundError("Service order not found")

        changed = []
        if notes is not None:
            order.notes = notes
            changed.append("notes")
        if estimated_delivery_date is not None:
            order.estimated_delivery_date = estimated_delivery_date
            changed.append("estimated_delivery_date")
        if technician_id is not None:
            order.technician_id = technician_id
            changed.append("technician_id")

        db.session.add(TicketResponse(
            ticket_id=ticket.id,
            message=f"Order {order.identity_tag} updated: {', '.join(changed)}",
            is_internal=True,
            responded_by_user_id=actor.user_id,
        ))
        _apply_status(ticket, RESOLVED)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info("Order %s modified through ticket %s by %s", order.identity_tag, ticket_id, actor)
    return order


def ticket_statistics() -> dict:
    """Counts by status and priority."""
    by_status = dict(
        db.session.query(Ticket.status, func.count(Ticket.id)).group_by(Ticket.status).all()
    )
    by_priority = dict(
        db.session.query(Ticket.priority, func.count(Ticket.id)).group_by(Ticket.priority).all()
    )
    return {
        "total": sum(by_status.values()),
        "by_status": {s: by_status.get(s, 0) for s in TICKET_STATUSES},
        "by_priority": {p: by_priority.get(p, 0) for p in TICKET_PRIORITIES},
    }
