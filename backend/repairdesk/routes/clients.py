# Overview: Flask API routes for client and equipment registration; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..decorators import error_response, require_access, require_principal
from ..errors import RepairDeskError
from ..models import Equipment
from ..permissions import requirements
from ..services import order_service
from ..validation import ModelValidationPolicy, require_fields, validate_payload


clients_bp = Blueprint("clients", __name__, url_prefix="/api/clients")

EQUIPMENT_POLICY = ModelValidationPolicy(
    writable_fields={"equipment_type", "brand", "model", "serial_number", "description"},
    required_on_create={"equipment_type"},
)


@clients_bp.post("")
@require_principal
@require_access(requirements.REGISTER_CLIENT)
def register_client_route():
    """
    Register a client at the counter.

    Request: {"display_name", "email"?, "password"?, "id_number"?, "phone"?, "address"?}
    """
    try:
        data = require_fields(request.get_json(silent=True), "display_name")
        client = order_service.register_client(
            data["display_name"],
            email=data.get("email"),
            password=data.get("password"),
            id_number=data.get("id_number"),
            phone=data.get("phone"),
            address=data.get("address"),
        )
        return jsonify({"client": client.to_dict()}), 201

    except RepairDeskError as e:
        return error_response(e)


@clients_bp.post("/<int:client_id>/equipment")
@require_principal
@require_access(requirements.REGISTER_CLIENT)
def register_equipment_route(client_id: int):
    try:
        patch = validate_payload(
            model=Equipment,
            payload=request.get_json(silent=True),
            policy=EQUIPMENT_POLICY,
            partial=False,
        )
        equipment = order_service.register_equipment(client_id, patch.pop("equipment_type"), **patch)
        return jsonify({"equipment": equipment.to_dict()}), 201

    except RepairDeskError as e:
        return error_response(e)
