# Overview: Flask API routes for service orders and invoices; parses input and returns JSON responses.

"""
Service Order API Routes

Reception:  POST /api/orders, POST /api/orders/:id/deliver
Workshop:   POST /api/orders/:id/diagnosis, /start, /finish
Sales:      PUT /api/orders/:id/proforma, POST /api/orders/:id/proforma/send,
            POST /api/orders/:id/requote, POST /api/orders/:id/invoice,
            POST /api/orders/:id/invoice/send
Client:     POST /api/orders/:id/proforma/respond, GET /api/orders/mine
Shared:     GET /api/orders/:id, /tracking, /invoice/pdf (owning client or staff)

SECURITY: Actor ids for history rows always come from g.principal, never
from the request body.
"""

import io

from flask import Blueprint, g, jsonify, request, send_file

from ..decorators import error_response, require_access, require_principal
from ..errors import RepairDeskError
from ..permissions import requirements
from ..services import invoice_service, order_service
from ..services.lifecycle_service import Actor
from ..validation import parse_bool, parse_date, parse_int, require_fields


orders_bp = Blueprint("orders", __name__, url_prefix="/api")


def _owner_of_order(order_id: int, **_) -> int:
    return order_service.order_owner(order_id)


def _actor() -> Actor:
    return Actor.from_principal(g.principal)


def _page_args() -> tuple[int, int]:
    page = parse_int(request.args.get("page", "1"), "page")
    limit = parse_int(request.args.get("limit", "50"), "limit")
    return page, limit


# -- Reception --

@orders_bp.post("/orders")
@require_principal
@require_access(requirements.CREATE_ORDER)
def create_order_route():
    """
    Open a service order for a client's equipment.

    Request:
        {
            "client_id": 1,
            "equipment_id": 3,
            "technician_id": 2,                // optional
            "notes": "Screen cracked",         // optional
            "estimated_delivery_date": "2026-05-01"  // optional
        }
    """
    try:
        data = require_fields(request.get_json(silent=True), "client_id", "equipment_id")
        technician_id = data.get("technician_id")

        order = order_service.create_order(
            client_id=parse_int(data["client_id"], "client_id"),
            equipment_id=parse_int(data["equipment_id"], "equipment_id"),
            receptionist_id=g.principal.id,
            technician_id=parse_int(technician_id, "technician_id") if technician_id is not None else None,
            notes=data.get("notes"),
            estimated_delivery_date=parse_date(data.get("estimated_delivery_date"), "estimated_delivery_date"),
            actor=_actor(),
        )
        return jsonify({"order": order.to_dict()}), 201

    except RepairDeskError as e:
        return error_response(e)


@orders_bp.post("/orders/<int:order_id>/deliver")
@require_principal
@require_access(requirements.DELIVER_ORDER)
def deliver_order_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.deliver_order(
            order_id,
            actor=_actor(),
            received_by_name=data.get("received_by_name"),
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict()}), 200

    except RepairDeskError as e:
        return error_response(e)


@orders_bp.get("/orders")
@require_principal
@require_access(requirements.LIST_ORDERS)
def list_orders_route():
    """
    List orders with optional filters.

    Query params: status, client_id, technician_id, start_date, end_date, page, limit
    """
    try:
        page, limit = _page_args()
        args = request.args
        items, total = order_service.list_orders(
            status=args.get("status"),
            client_id=parse_int(args["client_id"], "client_id") if "client_id" in args else None,
            technician_id=parse_int(args["technician_id"], "technician_id") if "technician_id" in args else None,
            start_date=parse_date(args.get("start_date"), "start_date"),
            end_date=parse_date(args.get("end_date"), "end_date"),
            page=page,
            limit=limit,
        )
        return jsonify({
            "orders": [o.to_dict() for o in items],
            "total": total,
            "page": page,
            "limit": limit,
        }), 200

    except RepairDeskError as e:
        return error_response(e)


# -- Workshop --

@orders_bp.get("/orders/assigned")
@require_principal
@require_access(requirements.LIST_ASSIGNED_ORDERS)
def list_assigned_orders_route():
    orders = order_service.list_technician_orders(g.principal.id)
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


@orders_bp.post("/orders/<int:order_id>/diagnosis")
@require_principal
@require_access(requirements.DIAGNOSE_ORDER)
def diagnose_order_route(order_id: int):
    try:
        data = require_fields(request.get_json(silent=True), "diagnosis")
        order = order_service.set_diagnosis(
            order_id, data["diagnosis"], actor=_actor(), notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict()}), 200

    except RepairDeskError as e:
        return error_response(e)


@orders_bp.post("/orders/<int:order_id>/start")
@require_principal
@require_access(requirements.START_SERVICE)
def start_service_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.start_service(order_id, actor=_actor(), notes=data.get("notes"))
        return jsonify({"order": order.to_dict()}), 200

    except RepairDeskError as e:
        return error_response(e)


@orders_bp.post("/orders/<int:order_id>/finish")
@require_principal
@require_access(requirements.FINISH_SERVICE)
def finish_service_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.finish_service(order_id, actor=_actor(), final_notes=data.get("final_notes"))
        return jsonify({"order": order.to_dict()}), 200

    except RepairDeskError as e:
        return error_response(e)


# -- Sales --

@orders_bp.put("/orders/<int:order_id>/proforma")
@require_principal
@require_access(requirements.SET_PROFORMA)
def set_proforma_route(order_id: int):
    """Request: {"parts": "Screen, battery", "total_price": "120.00"}"""
    try:
        data = require_fields(request.get_json(silent=True), "parts", "total_price")
        order = order_service.set_proforma(order_id, data["parts"], data["total_price"])
        return jsonify({"order": order.to_dict()}), 200

    except RepairDeskError as e:
        return error_response(e)


@orders_bp.post("/orders/<int:order_id>/proforma/send")
@require_principal
@require_access(requirements.SEND_PROFORMA)
def send_proforma_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.send_proforma(order_id, actor=_actor(), notes=data.get("notes"))
        return jsonify({"order": order.to_dict()}), 200

    except RepairDeskError as e:
        return error_response(e)


@orders_bp.post("/orders/<int:order_id>/requote")
@require_principal
@require_access(requirements.REQUOTE_ORDER)
def requote_order_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.requote(order_id, actor=_actor(), notes=data.get("notes"))
        return jsonify({"order": order.to_dict()}), 200

    except RepairDeskError as e:
        return error_response(e)


@orders_bp.post("/orders/<int:order_id>/invoice")
@require_principal
@require_access(requirements.GENERATE_INVOICE)
def generate_invoice_route(order_id: int):
    try:
        result = invoice_service.generate_invoice(order_id, actor=_actor())
        return jsonify({
            "invoice": result.invoice.to_dict(),
            "order": result.invoice.order.to_dict(),
        }), 201

    except RepairDeskError as e:
        return error_response(e)


@orders_bp.post("/orders/<int:order_id>/invoice/send")
@require_principal
@require_access(requirements.SEND_INVOICE)
def send_invoice_route(order_id: int):
    try:
        invoice = invoice_service.send_invoice(order_id)
        return jsonify({"invoice": invoice.to_dict()}), 200

    except RepairDeskError as e:
        return error_response(e)


@orders_bp.get("/invoices")
@require_principal
@require_access(requirements.LIST_INVOICES)
def list_invoices_route():
    try:
        page, limit = _page_args()
        items, total = invoice_service.list_invoices(page=page, limit=limit)
        return jsonify({
            "invoices": [i.to_dict() for i in items],
            "total": total,
            "page": page,
            "limit": limit,
        }), 200

    except RepairDeskError as e:
        return error_response(e)


# -- Client portal --

@orders_bp.get("/orders/mine")
@require_principal
@require_access(requirements.LIST_OWN_ORDERS)
def list_own_orders_route():
    orders = order_service.list_client_orders(g.principal.id)
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


@orders_bp.post("/orders/<int:order_id>/proforma/respond")
@require_principal
@require_access(requirements.RESPOND_PROFORMA, owner_of=_owner_of_order)
def respond_proforma_route(order_id: int):
    """Request: {"approve": true, "notes": "..."}"""
    try:
        data = require_fields(request.get_json(silent=True), "approve")
        order = order_service.respond_to_proforma(
            order_id,
            g.principal.id,
            parse_bool(data["approve"], "approve"),
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict()}), 200

    except RepairDeskError as e:
        return error_response(e)


# -- Shared --

@orders_bp.get("/orders/<int:order_id>")
@require_principal
@require_access(requirements.VIEW_ORDER, owner_of=_owner_of_order)
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        return jsonify({"order": order.to_dict()}), 200

    except RepairDeskError as e:
        return error_response(e)


@orders_bp.get("/orders/<int:order_id>/tracking")
@require_principal
@require_access(requirements.VIEW_TRACKING, owner_of=_owner_of_order)
def order_tracking_route(order_id: int):
    try:
        return jsonify(order_service.get_order_tracking(order_id)), 200

    except RepairDeskError as e:
        return error_response(e)


@orders_bp.get("/orders/<int:order_id>/invoice/pdf")
@require_principal
@require_access(requirements.DOWNLOAD_INVOICE, owner_of=_owner_of_order)
def download_invoice_route(order_id: int):
    try:
        invoice, pdf_bytes = invoice_service.invoice_pdf(order_id)
        return send_file(
            io.BytesIO(pdf_bytes),
            mimetype="application/pdf",
            as_attachment=True,
            download_name=f"factura_{invoice.invoice_number}.pdf",
        )

    except RepairDeskError as e:
        return error_response(e)
