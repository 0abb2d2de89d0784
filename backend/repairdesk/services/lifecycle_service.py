# Overview: Service-layer operations for lifecycle; encapsulates business logic and database work.

"""
Service Order Lifecycle

================================================================================
PURPOSE: Enforce the repair workflow and keep an attributable history
================================================================================

STATE MACHINE:
    RECEIVED -> DIAGNOSED -> PROFORMA_SENT -> PROFORMA_APPROVED -> IN_PROGRESS
             -> COMPLETED -> INVOICED -> DELIVERED (terminal)
                             PROFORMA_SENT -> PROFORMA_REJECTED
                             PROFORMA_REJECTED -(requote)-> DIAGNOSED

The graph is an explicit table from (state, event) to Edge(target, guard,
effect). PROFORMA_REJECTED is a dead end for bare transitions; re-quoting
is the action-only `requote` event.

RULES (NON-NEGOTIABLE):
1. A bare transition must follow an edge out of the current state
   (IllegalTransition otherwise).
2. Guards must hold (PreconditionFailed otherwise). Entering INVOICED
   requires COMPLETED with an approved proforma; this entry guard is
   checked before adjacency.
3. Every accepted transition appends exactly one order_status_history row
   in the same transaction as the status change.
4. The order row is locked (and optimistically versioned) for the whole
   read-validate-write sequence; a loser of a race re-reads and is
   re-validated against the winner's state.

This module does not authorize. Callers enforce access before invoking it.
================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Callable, Iterable

from sqlalchemy import func

from ..errors import IllegalTransition, NotFoundError, PreconditionFailed
from ..extensions import db
from ..models import (
    OrderState,
    OrderStatus,
    OrderStatusHistory,
    ProformaStatus,
    STATE_NAMES,
    ServiceOrder,
)
from ..permissions import Principal
from ..validation import ValidationError
from .concurrency import lock_for_update, run_with_retry
from repairdesk.time_utils import utcnow


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """Who caused a change. Both ids None means a system-driven change."""
    user_id: int | None = None
    client_id: int | None = None

    @classmethod
    def from_principal(cls, principal: Principal | None) -> "Actor":
        if principal is None:
            return SYSTEM
        if principal.is_staff:
            return cls(user_id=principal.id)
        return cls(client_id=principal.id)


SYSTEM = Actor()


# -- Guards: return a failure reason, or None when the guard holds --

def _has_diagnosis(order: ServiceOrder) -> str | None:
    if not (order.diagnosis or "").strip():
        return "A diagnosis is required"
    return None


def _proforma_ready(order: ServiceOrder) -> str | None:
    if not (order.parts or "").strip() or order.total_price is None:
        return "Parts and total price must be set before sending the proforma"
    if order.proforma_status != ProformaStatus.GENERATED.value:
        return "The proforma has not been generated"
    return None


def _proforma_sent(order: ServiceOrder) -> str | None:
    if order.proforma_status != ProformaStatus.SENT.value:
        return "The proforma has not been sent to the client"
    return None


def _proforma_approved(order: ServiceOrder) -> str | None:
    if order.proforma_status != ProformaStatus.APPROVED.value:
        return "The proforma must be approved"
    return None


def _billable(order: ServiceOrder) -> str | None:
    if order.proforma_status != ProformaStatus.APPROVED.value:
        return "The proforma must be approved before invoicing"
    if order.current_state != OrderState.COMPLETED:
        return "The order must be completed before invoicing"
    return None


# -- Effects: applied to the order once the guard holds --

def _mark_proforma_sent(order: ServiceOrder, now: datetime) -> None:
    order.proforma_status = ProformaStatus.SENT.value
    order.proforma_sent_at = now


def _mark_approved(order: ServiceOrder, now: datetime) -> None:
    order.proforma_status = ProformaStatus.APPROVED.value
    order.proforma_decided_at = now


def _mark_rejected(order: ServiceOrder, now: datetime) -> None:
    order.proforma_status = ProformaStatus.REJECTED.value
    order.proforma_decided_at = now


def _clear_quote(order: ServiceOrder, now: datetime) -> None:
    order.parts = None
    order.total_price = None
    order.proforma_status = ProformaStatus.NONE.value
    order.proforma_sent_at = None
    order.proforma_decided_at = None


def _mark_started(order: ServiceOrder, now: datetime) -> None:
    order.service_started_at = now


def _mark_finished(order: ServiceOrder, now: datetime) -> None:
    order.service_ended_at = now


def _mark_delivered(order: ServiceOrder, now: datetime) -> None:
    order.delivered_at = now


@dataclass(frozen=True)
class Edge:
    source: OrderState
    event: str
    target: OrderState
    guard: Callable[[ServiceOrder], str | None] | None = None
    effect: Callable[[ServiceOrder, datetime], None] | None = None
    action_only: bool = False
    default_note: str = ""


_S = OrderState

EDGES = (
    Edge(_S.RECEIVED, "diagnose", _S.DIAGNOSED, _has_diagnosis,
         default_note="Diagnosis recorded"),
    Edge(_S.DIAGNOSED, "send_proforma", _S.PROFORMA_SENT, _proforma_ready, _mark_proforma_sent,
         default_note="Proforma sent to client"),
    Edge(_S.PROFORMA_SENT, "approve_proforma", _S.PROFORMA_APPROVED, _proforma_sent, _mark_approved,
         default_note="Proforma approved by client"),
    Edge(_S.PROFORMA_SENT, "reject_proforma", _S.PROFORMA_REJECTED, _proforma_sent, _mark_rejected,
         default_note="Proforma rejected by client"),
    Edge(_S.PROFORMA_REJECTED, "requote", _S.DIAGNOSED, None, _clear_quote, action_only=True,
         default_note="Re-quote requested"),
    Edge(_S.PROFORMA_APPROVED, "start_service", _S.IN_PROGRESS, _proforma_approved, _mark_started,
         default_note="Service started"),
    Edge(_S.IN_PROGRESS, "finish_service", _S.COMPLETED, None, _mark_finished,
         default_note="Service completed"),
    Edge(_S.COMPLETED, "invoice", _S.INVOICED, _billable,
         default_note="Invoice issued"),
    Edge(_S.INVOICED, "deliver", _S.DELIVERED, None, _mark_delivered,
         default_note="Equipment delivered"),
)

TRANSITIONS = MappingProxyType({(e.source, e.event): e for e in EDGES})
EVENT_TARGETS = MappingProxyType({e.event: e.target for e in EDGES})
ENTRY_GUARDS = MappingProxyType({OrderState.INVOICED: _billable})
TERMINAL_STATES = frozenset({OrderState.DELIVERED})

# Business fields a transition may write alongside the status change
TRANSITION_FIELDS = frozenset({"diagnosis", "notes", "received_by_name", "technician_id"})

INITIAL_NOTE = "Order created and equipment received"


def parse_state(value) -> OrderState:
    if isinstance(value, OrderState):
        return value
    try:
        return OrderState(str(value).strip().upper())
    except ValueError:
        raise ValidationError(f"Unknown order state: {value}")


def successors(state: OrderState) -> set[OrderState]:
    """Targets reachable from `state` with a bare transition."""
    return {e.target for e in EDGES if e.source == state and not e.action_only}


def allowed_events(state: OrderState) -> list[str]:
    return [e.event for e in EDGES if e.source == state]


def is_valid_walk(states: Iterable[OrderState]) -> bool:
    """
    True if `states` starts at RECEIVED and every consecutive pair is an
    edge of the graph (action-only edges included).
    """
    states = list(states)
    if not states or states[0] != OrderState.RECEIVED:
        return False
    edges = {(e.source, e.target) for e in EDGES}
    return all((a, b) in edges for a, b in zip(states, states[1:]))


# -- Persistence helpers --

def ensure_order_statuses() -> int:
    """Seed order_statuses from OrderState (idempotent). Returns rows added."""
    existing = {code for (code,) in db.session.query(OrderStatus.code).all()}
    added = 0
    for state in OrderState:
        if state.value not in existing:
            db.session.add(OrderStatus(code=state.value, name=STATE_NAMES[state]))
            added += 1
    db.session.flush()
    return added


def status_row(state: OrderState) -> OrderStatus:
    row = db.session.query(OrderStatus).filter_by(code=state.value).first()
    if row is None:
        ensure_order_statuses()
        row = db.session.query(OrderStatus).filter_by(code=state.value).one()
    return row


def _next_history_sequence(order_id: int) -> int:
    current = (
        db.session.query(func.max(OrderStatusHistory.sequence))
        .filter(OrderStatusHistory.order_id == order_id)
        .scalar()
    )
    return (current or 0) + 1


def _append_history(order: ServiceOrder, state: OrderState, actor: Actor, notes: str | None, now: datetime):
    entry = OrderStatusHistory(
        order_id=order.id,
        sequence=_next_history_sequence(order.id),
        status_id=status_row(state).id,
        notes=notes,
        changed_by_user_id=actor.user_id,
        changed_by_client_id=actor.client_id,
        changed_at=now,
    )
    db.session.add(entry)
    return entry


def _load_for_update(order_id: int) -> ServiceOrder:
    order = lock_for_update(
        db.session.query(ServiceOrder).filter(ServiceOrder.id == order_id)
    ).first()
    if order is None:
        raise NotFoundError(f"Service order {order_id} not found")
    return order


def open_order(order: ServiceOrder, *, actor: Actor = SYSTEM, notes: str | None = None) -> ServiceOrder:
    """
    Put a new order in RECEIVED and write its first history row.

    Does not commit; the caller owns the transaction.
    """
    order.status = status_row(OrderState.RECEIVED)
    order.proforma_status = ProformaStatus.NONE.value
    db.session.add(order)
    db.session.flush()
    _append_history(order, OrderState.RECEIVED, actor, notes or INITIAL_NOTE, utcnow())
    return order


# -- Transitions --

def _check_entry(order: ServiceOrder, target: OrderState) -> None:
    guard = ENTRY_GUARDS.get(target)
    if guard is not None:
        reason = guard(order)
        if reason:
            raise PreconditionFailed(reason, details={"from": order.current_state.value, "to": target.value})


def _edge_for_target(order: ServiceOrder, target: OrderState) -> Edge:
    current = order.current_state
    _check_entry(order, target)
    for edge in EDGES:
        if edge.source == current and edge.target == target and not edge.action_only:
            return edge
    raise IllegalTransition(
        f"Cannot move order from {current.value} to {target.value}",
        details={"from": current.value, "to": target.value},
    )


def _edge_for_event(order: ServiceOrder, event: str) -> Edge:
    current = order.current_state
    target = EVENT_TARGETS.get(event)
    if target is None:
        raise IllegalTransition(f"Unknown order event: {event}")
    _check_entry(order, target)
    edge = TRANSITIONS.get((current, event))
    if edge is None:
        raise IllegalTransition(
            f"Event {event} is not allowed from {current.value}",
            details={"from": current.value, "event": event},
        )
    return edge


def _run(order_id, pick_edge, *, actor, notes, changes, on_accept) -> ServiceOrder:
    if changes:
        unknown = set(changes) - TRANSITION_FIELDS
        if unknown:
            raise ValidationError(f"Fields not writable during a transition: {', '.join(sorted(unknown))}")

    accepted: dict = {}

    def _op() -> ServiceOrder:
        order = _load_for_update(order_id)
        edge = pick_edge(order)

        for key, value in (changes or {}).items():
            setattr(order, key, value)

        if edge.guard is not None:
            reason = edge.guard(order)
            if reason:
                raise PreconditionFailed(
                    reason,
                    details={"from": edge.source.value, "to": edge.target.value},
                )

        now = utcnow()
        if edge.effect is not None:
            edge.effect(order, now)
        order.status = status_row(edge.target)
        _append_history(order, edge.target, actor, notes or edge.default_note, now)

        if on_accept is not None:
            on_accept(order)

        db.session.commit()
        accepted["edge"] = edge
        return order

    order = run_with_retry(_op)
    edge = accepted["edge"]
    logger.info(
        "Order %s: %s -> %s (%s) by user=%s client=%s",
        order.identity_tag, edge.source.value, edge.target.value, edge.event,
        actor.user_id, actor.client_id,
    )
    return order


def transition(
    order_id: int,
    target,
    *,
    actor: Actor = SYSTEM,
    notes: str | None = None,
    changes: dict | None = None,
    on_accept: Callable[[ServiceOrder], None] | None = None,
) -> ServiceOrder:
    """
    Move an order to `target` along a bare edge of the graph.

    Raises:
        NotFoundError: no such order
        IllegalTransition: target is not a direct successor (or is only
            reachable through an explicit action such as requote)
        PreconditionFailed: a guard does not hold
    """
    target = parse_state(target)
    return _run(
        order_id,
        lambda order: _edge_for_target(order, target),
        actor=actor, notes=notes, changes=changes, on_accept=on_accept,
    )


def apply_event(
    order_id: int,
    event: str,
    *,
    actor: Actor = SYSTEM,
    notes: str | None = None,
    changes: dict | None = None,
    on_accept: Callable[[ServiceOrder], None] | None = None,
) -> ServiceOrder:
    """Fire a named event (including action-only events such as requote)."""
    return _run(
        order_id,
        lambda order: _edge_for_event(order, event),
        actor=actor, notes=notes, changes=changes, on_accept=on_accept,
    )


def history_for(order_id: int) -> list[OrderStatusHistory]:
    return (
        db.session.query(OrderStatusHistory)
        .filter(OrderStatusHistory.order_id == order_id)
        .order_by(OrderStatusHistory.sequence.asc())
        .all()
    )


def verify_history(order: ServiceOrder) -> bool:
    """
    History is a valid walk of the graph and its last entry matches the
    order's current state.
    """
    entries = history_for(order.id)
    if not entries:
        return False
    states = [OrderState(e.status.code) for e in entries]
    return is_valid_walk(states) and states[-1] == order.current_state
