# Overview: Service-layer operations for service orders; encapsulates business logic and database work.

"""
Service Order Orchestration

Business operations over service orders. Every state change goes through
lifecycle_service (one transaction per change, one history row per
accepted transition). Access control is the caller's job; functions here
take an Actor only for attribution.
"""

from __future__ import annotations

import logging
import secrets
from datetime import date, timedelta

from ..errors import NotFoundError, PreconditionFailed, DeliveryFailed
from ..extensions import db
from ..models import (
    Client,
    Equipment,
    OrderState,
    OrderStatus,
    ProformaStatus,
    ServiceOrder,
    User,
)
from ..validation import ValidationError, parse_price
from . import auth_service, lifecycle_service
from .concurrency import lock_for_update, run_with_retry
from .lifecycle_service import Actor, SYSTEM
from .notification_service import get_notifier, notify_safely
from repairdesk.time_utils import utcnow


logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


# -- Reception --

def register_client(display_name: str, **fields) -> Client:
    """Register a client at the counter (password optional)."""
    return auth_service.create_client(display_name, **fields)


def register_equipment(
    client_id: int,
    equipment_type: str,
    *,
    brand: str | None = None,
    model: str | None = None,
    serial_number: str | None = None,
    description: str | None = None,
) -> Equipment:
    if db.session.get(Client, client_id) is None:
        raise NotFoundError("Client not found")
    equipment_type = (equipment_type or "").strip()
    if not equipment_type:
        raise ValidationError("equipment_type is required")

    equipment = Equipment(
        client_id=client_id,
        equipment_type=equipment_type,
        brand=brand,
        model=model,
        serial_number=serial_number,
        description=description,
    )
    db.session.add(equipment)
    db.session.commit()
    return equipment


def generate_identity_tag(today: date | None = None) -> str:
    """ORD-YYYYMMDD-<8 hex>, unique among existing orders."""
    today = today or utcnow().date()
    for _ in range(5):
        tag = f"ORD-{today:%Y%m%d}-{secrets.token_hex(4).upper()}"
        if not db.session.query(ServiceOrder.id).filter_by(identity_tag=tag).first():
            return tag
    raise ValidationError("Could not allocate a unique order tag")


def _active_user(user_id: int, label: str) -> User:
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise ValidationError(f"{label} must be an active staff user")
    return user


def create_order(
    *,
    client_id: int,
    equipment_id: int,
    receptionist_id: int,
    technician_id: int | None = None,
    notes: str | None = None,
    estimated_delivery_date: date | None = None,
    actor: Actor | None = None,
) -> ServiceOrder:
    """Open an order in RECEIVED with its first history row."""
    if db.session.get(Client, client_id) is None:
        raise NotFoundError("Client not found")
    equipment = db.session.get(Equipment, equipment_id)
    if equipment is None:
        raise NotFoundError("Equipment not found")
    if equipment.client_id != client_id:
        raise ValidationError("Equipment does not belong to this client")
    _active_user(receptionist_id, "receptionist")
    if technician_id is not None:
        _active_user(technician_id, "technician")

    def _op() -> ServiceOrder:
        order = ServiceOrder(
            identity_tag=generate_identity_tag(),
            client_id=client_id,
            equipment_id=equipment_id,
            receptionist_id=receptionist_id,
            technician_id=technician_id,
            notes=notes,
            estimated_delivery_date=estimated_delivery_date,
        )
        lifecycle_service.open_order(
            order,
            actor=actor or Actor(user_id=receptionist_id),
        )
        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info("Order %s created for client %s", order.identity_tag, client_id)
    return order


def get_order(order_id: int) -> ServiceOrder:
    order = db.session.get(ServiceOrder, order_id)
    if order is None:
        raise NotFoundError(f"Service order {order_id} not found")
    return order


def order_owner(order_id: int) -> int:
    """Client id that owns the order (ownership checks)."""
    return get_order(order_id).client_id


# -- Workshop --

def set_diagnosis(order_id: int, diagnosis: str, *, actor: Actor = SYSTEM, notes: str | None = None) -> ServiceOrder:
    return lifecycle_service.transition(
        order_id,
        OrderState.DIAGNOSED,
        actor=actor,
        notes=notes,
        changes={"diagnosis": (diagnosis or "").strip()},
    )


def start_service(order_id: int, *, actor: Actor = SYSTEM, notes: str | None = None) -> ServiceOrder:
    return lifecycle_service.transition(order_id, OrderState.IN_PROGRESS, actor=actor, notes=notes)


def finish_service(order_id: int, *, actor: Actor = SYSTEM, final_notes: str | None = None) -> ServiceOrder:
    changes = {"notes": final_notes} if final_notes else None
    return lifecycle_service.transition(order_id, OrderState.COMPLETED, actor=actor, changes=changes)


# -- Sales --

def set_proforma(order_id: int, parts: str, total_price) -> ServiceOrder:
    """
    Record the quote (parts + price) on a diagnosed order.

    Not a transition: the status stays DIAGNOSED and no history row is
    written. The quote can be revised until it is sent.
    """
    parts = (parts or "").strip()
    if not parts:
        raise ValidationError("parts is required")
    price = parse_price(total_price, "total_price")

    def _op() -> ServiceOrder:
        order = lock_for_update(
            db.session.query(ServiceOrder).filter(ServiceOrder.id == order_id)
        ).first()
        if order is None:
            raise NotFoundError(f"Service order {order_id} not found")
        if order.current_state != OrderState.DIAGNOSED:
            raise PreconditionFailed(
                "A proforma can only be prepared for a diagnosed order",
                details={"status": order.current_state.value},
            )
        if order.proforma_status not in (ProformaStatus.NONE.value, ProformaStatus.GENERATED.value):
            raise PreconditionFailed("The proforma has already been sent")

        order.parts = parts
        order.total_price = price
        order.proforma_status = ProformaStatus.GENERATED.value
        db.session.commit()
        return order

    return run_with_retry(_op)


def send_proforma(order_id: int, *, actor: Actor = SYSTEM, notes: str | None = None) -> ServiceOrder:
    """
    DIAGNOSED -> PROFORMA_SENT. The proforma email is part of the change:
    if delivery fails, nothing is applied.

    When the commit is retried after a concurrency conflict, a proforma
    identical to one already delivered is not sent again.
    """
    delivered: list[dict] = []

    def _deliver(order: ServiceOrder) -> None:
        proforma = {
            "email": order.client.email,
            "identity_tag": order.identity_tag,
            "parts": order.parts,
            "total_price": order.total_price,
        }
        if proforma in delivered:
            return
        try:
            get_notifier().send_proforma(**proforma)
        except Exception as exc:
            raise DeliveryFailed(f"Proforma could not be delivered: {exc}")
        delivered.append(proforma)

    return lifecycle_service.transition(
        order_id, OrderState.PROFORMA_SENT, actor=actor, notes=notes, on_accept=_deliver,
    )


def requote(order_id: int, *, actor: Actor = SYSTEM, notes: str | None = None) -> ServiceOrder:
    """PROFORMA_REJECTED -> DIAGNOSED through the explicit re-quote action."""
    return lifecycle_service.apply_event(order_id, "requote", actor=actor, notes=notes)


# -- Client decisions --

def respond_to_proforma(order_id: int, client_id: int, approve: bool, *, notes: str | None = None) -> ServiceOrder:
    """
    The owning client approves or rejects the proforma. History records the
    client id and a null staff id.
    """
    order = lifecycle_service.apply_event(
        order_id,
        "approve_proforma" if approve else "reject_proforma",
        actor=Actor(client_id=client_id),
        notes=notes,
    )
    notify_safely(
        "send_proforma_decision",
        identity_tag=order.identity_tag,
        approved=approve,
        client_name=order.client.display_name,
    )
    return order


# -- Reception (exit) --

def deliver_order(
    order_id: int,
    *,
    actor: Actor = SYSTEM,
    received_by_name: str | None = None,
    notes: str | None = None,
) -> ServiceOrder:
    changes = {"received_by_name": received_by_name.strip()} if received_by_name else None
    return lifecycle_service.transition(
        order_id, OrderState.DELIVERED, actor=actor, notes=notes, changes=changes,
    )


# -- Queries --

def get_order_tracking(order_id: int) -> dict:
    """Order summary plus its status timeline in chronological order."""
    order = get_order(order_id)
    timeline = [entry.to_dict() for entry in lifecycle_service.history_for(order.id)]
    return {
        "order": order.to_dict(),
        "current_status": order.current_state.value,
        "allowed_events": lifecycle_service.allowed_events(order.current_state),
        "timeline": timeline,
    }


def list_orders(
    *,
    status: str | None = None,
    client_id: int | None = None,
    technician_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[ServiceOrder], int]:
    """Filtered, paginated order list. Returns (items, total)."""
    if page < 1:
        raise ValidationError("page must be >= 1")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

    q = db.session.query(ServiceOrder)
    if status:
        state = lifecycle_service.parse_state(status)
        q = q.join(OrderStatus, ServiceOrder.status_id == OrderStatus.id).filter(OrderStatus.code == state.value)
    if client_id is not None:
        q = q.filter(ServiceOrder.client_id == client_id)
    if technician_id is not None:
        q = q.filter(ServiceOrder.technician_id == technician_id)
    if start_date is not None:
        q = q.filter(ServiceOrder.intake_date >= start_date)
    if end_date is not None:
        q = q.filter(ServiceOrder.intake_date < end_date + timedelta(days=1))

    total = q.count()
    items = (
        q.order_by(ServiceOrder.intake_date.desc(), ServiceOrder.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total


def list_client_orders(client_id: int) -> list[ServiceOrder]:
    return (
        db.session.query(ServiceOrder)
        .filter(ServiceOrder.client_id == client_id)
        .order_by(ServiceOrder.intake_date.desc(), ServiceOrder.id.desc())
        .all()
    )


def list_technician_orders(user_id: int) -> list[ServiceOrder]:
    return (
        db.session.query(ServiceOrder)
        .filter(ServiceOrder.technician_id == user_id)
        .order_by(ServiceOrder.intake_date.desc(), ServiceOrder.id.desc())
        .all()
    )
