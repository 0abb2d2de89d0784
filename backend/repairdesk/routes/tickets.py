# Overview: Flask API routes for support tickets; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import error_response, require_access, require_principal
from ..errors import RepairDeskError
from ..models import ServiceOrder
from ..permissions import requirements
from ..services import ticket_service
from ..services.lifecycle_service import Actor
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    parse_bool,
    parse_int,
    require_fields,
    validate_payload,
)


tickets_bp = Blueprint("tickets", __name__, url_prefix="/api/tickets")

ORDER_FROM_TICKET_POLICY = ModelValidationPolicy(
    writable_fields={"notes", "estimated_delivery_date", "technician_id"},
)


def _owner_of_ticket(ticket_id: int, **_) -> int:
    return ticket_service.ticket_owner(ticket_id)


def _actor() -> Actor:
    return Actor.from_principal(g.principal)


# -- Client portal --

@tickets_bp.post("")
@require_principal
@require_access(requirements.CREATE_TICKET)
def create_ticket_route():
    """Request: {"subject", "description", "priority"?, "order_id"?}"""
    try:
        data = require_fields(request.get_json(silent=True), "subject", "description")
        order_id = data.get("order_id")
        ticket = ticket_service.create_ticket(
            g.principal.id,
            data["subject"],
            data["description"],
            priority=data.get("priority") or "normal",
            order_id=parse_int(order_id, "order_id") if order_id is not None else None,
        )
        return jsonify({"ticket": ticket.to_dict()}), 201

    except RepairDeskError as e:
        return error_response(e)


@tickets_bp.get("/mine")
@require_principal
@require_access(requirements.LIST_OWN_TICKETS)
def list_own_tickets_route():
    tickets = ticket_service.list_client_tickets(g.principal.id)
    return jsonify({"tickets": [t.to_dict() for t in tickets]}), 200


@tickets_bp.get("/mine/<int:ticket_id>")
@require_principal
@require_access(requirements.VIEW_OWN_TICKET, owner_of=_owner_of_ticket)
def view_own_ticket_route(ticket_id: int):
    try:
        ticket = ticket_service.get_ticket(ticket_id)
        return jsonify({"ticket": ticket.to_dict(include_responses=True)}), 200

    except RepairDeskError as e:
        return error_response(e)


@tickets_bp.post("/mine/<int:ticket_id>/responses")
@require_principal
@require_access(requirements.VIEW_OWN_TICKET, owner_of=_owner_of_ticket)
def client_respond_ticket_route(ticket_id: int):
    try:
        data = require_fields(request.get_json(silent=True), "message")
        response = ticket_service.add_response(ticket_id, data["message"], actor=_actor())
        return jsonify({"response": response.to_dict()}), 201

    except RepairDeskError as e:
        return error_response(e)


# -- Ticket desk --

@tickets_bp.get("")
@require_principal
@require_access(requirements.LIST_TICKETS)
def list_tickets_route():
    """Query params: status, priority, assigned_to, client_id"""
    try:
        args = request.args
        tickets = ticket_service.list_tickets(
            status=args.get("status"),
            priority=args.get("priority"),
            assigned_to_user_id=parse_int(args["assigned_to"], "assigned_to") if "assigned_to" in args else None,
            client_id=parse_int(args["client_id"], "client_id") if "client_id" in args else None,
        )
        return jsonify({"tickets": [t.to_dict() for t in tickets]}), 200

    except RepairDeskError as e:
        return error_response(e)


@tickets_bp.get("/stats")
@require_principal
@require_access(requirements.LIST_TICKETS)
def ticket_stats_route():
    return jsonify(ticket_service.ticket_statistics()), 200


@tickets_bp.get("/<int:ticket_id>")
@require_principal
@require_access(requirements.VIEW_TICKET)
def view_ticket_route(ticket_id: int):
    try:
        ticket = ticket_service.get_ticket(ticket_id)
        return jsonify({"ticket": ticket.to_dict(include_responses=True, include_internal=True)}), 200

    except RepairDeskError as e:
        return error_response(e)


@tickets_bp.patch("/<int:ticket_id>/status")
@require_principal
@require_access(requirements.UPDATE_TICKET)
def update_ticket_status_route(ticket_id: int):
    try:
        data = require_fields(request.get_json(silent=True), "status")
        ticket = ticket_service.update_ticket_status(ticket_id, data["status"], actor=_actor())
        return jsonify({"ticket": ticket.to_dict()}), 200

    except RepairDeskError as e:
        return error_response(e)


@tickets_bp.post("/<int:ticket_id>/responses")
@require_principal
@require_access(requirements.RESPOND_TICKET)
def respond_ticket_route(ticket_id: int):
    """Request: {"message": "...", "is_internal": false}"""
    try:
        data = require_fields(request.get_json(silent=True), "message")
        is_internal = parse_bool(data.get("is_internal", False), "is_internal")
        response = ticket_service.add_response(
            ticket_id, data["message"], actor=_actor(), is_internal=is_internal,
        )
        return jsonify({"response": response.to_dict()}), 201

    except RepairDeskError as e:
        return error_response(e)


# -- Administration --

@tickets_bp.post("/<int:ticket_id>/assign")
@require_principal
@require_access(requirements.ASSIGN_TICKET)
def assign_ticket_route(ticket_id: int):
    try:
        data = require_fields(request.get_json(silent=True), "user_id")
        ticket = ticket_service.assign_ticket(
            ticket_id, parse_int(data["user_id"], "user_id"), actor=_actor(),
        )
        return jsonify({"ticket": ticket.to_dict()}), 200

    except RepairDeskError as e:
        return error_response(e)


@tickets_bp.post("/<int:ticket_id>/close")
@require_principal
@require_access(requirements.CLOSE_TICKET)
def close_ticket_route(ticket_id: int):
    try:
        data = request.get_json(silent=True) or {}
        ticket = ticket_service.close_ticket(ticket_id, actor=_actor(), resolution=data.get("resolution"))
        return jsonify({"ticket": ticket.to_dict()}), 200

    except RepairDeskError as e:
        return error_response(e)


@tickets_bp.post("/bulk-close")
@require_principal
@require_access(requirements.BULK_CLOSE_TICKETS)
def bulk_close_tickets_route():
    """Request: {"ticket_ids": [1, 2, 3]}"""
    try:
        data = require_fields(request.get_json(silent=True), "ticket_ids")
        ids = data["ticket_ids"]
        if not isinstance(ids, list):
            raise ValidationError("ticket_ids must be a list")
        closed = ticket_service.bulk_close(
            [parse_int(t, "ticket_ids") for t in ids], actor=_actor(),
        )
        return jsonify({"closed": [t.to_dict() for t in closed]}), 200

    except RepairDeskError as e:
        return error_response(e)


@tickets_bp.post("/<int:ticket_id>/modify-order")
@require_principal
@require_access(requirements.MODIFY_ORDER_FROM_TICKET)
def modify_order_from_ticket_route(ticket_id: int):
    """Request: any of {"notes", "estimated_delivery_date", "technician_id"}"""
    try:
        patch = validate_payload(
            model=ServiceOrder,
            payload=request.get_json(silent=True),
            policy=ORDER_FROM_TICKET_POLICY,
            partial=True,
        )
        order = ticket_service.modify_order_from_ticket(ticket_id, actor=_actor(), **patch)
        return jsonify({"order": order.to_dict()}), 200

    except RepairDeskError as e:
        return error_response(e)
