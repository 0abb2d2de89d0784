# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- Staff (desktop app): POST /api/auth/staff/login returns a signed bearer
  token carrying the user's role snapshot.
- Clients (web portal): POST /api/auth/client/login sets an HttpOnly
  session cookie; POST /api/auth/client/logout revokes it.
- GET /api/auth/me returns the resolved principal for either kind.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_access, require_principal
from ..errors import InsufficientRole, RepairDeskError
from ..permissions import PrincipalKind, requirements
from ..services import auth_service, permission_service, session_service, token_service
from ..validation import ValidationError, require_fields


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _text_field(data: dict, field: str, strip: bool = True) -> str | None:
    value = data.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    if strip:
        value = value.strip()
    return value or None


def _log_login(kind: str, principal_id, success: bool, reason: str | None = None) -> None:
    permission_service.log_security_event(
        principal_kind=kind,
        principal_id=principal_id,
        event_type="LOGIN_SUCCESS" if success else "LOGIN_FAILED",
        success=success,
        resource=request.path,
        action=request.method,
        reason=reason,
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )


@auth_bp.post("/staff/login")
def staff_login_route():
    """
    Authenticate a staff user and issue a bearer token.

    Request: {"username": "...", "password": "..."} (email accepted as username)
    Response: {"token": "...", "user": {...}}
    """
    try:
        data = require_fields(request.get_json(silent=True), "password")
        identifier = _text_field(data, "username") or _text_field(data, "email")
        password = _text_field(data, "password", strip=False)
        if not identifier:
            raise ValidationError("username or email is required")

        user = auth_service.authenticate_staff(identifier, password)
        if not user:
            current_app.logger.warning("Staff login failed for %s", identifier)
            _log_login(PrincipalKind.STAFF.value, None, False, "Invalid credentials")
            return jsonify({"error": "Invalid credentials", "code": "INVALID_CREDENTIALS"}), 401

        if not user.role_names:
            current_app.logger.warning("Staff login refused for %s: no role assigned", user.username)
            _log_login(PrincipalKind.STAFF.value, user.id, False, "No staff role")
            return error_response(InsufficientRole("Account has no staff role"))

        token = token_service.issue_staff_token(user)
        _log_login(PrincipalKind.STAFF.value, user.id, True)
        current_app.logger.info("Staff user %s logged in", user.username)

        return jsonify({"token": token, "user": user.to_dict()}), 200

    except RepairDeskError as e:
        return error_response(e)


@auth_bp.post("/client/login")
def client_login_route():
    """
    Authenticate a client and open a portal session.

    The session token travels only in an HttpOnly cookie.
    """
    try:
        data = require_fields(request.get_json(silent=True), "email", "password")
        email = _text_field(data, "email")
        password = _text_field(data, "password", strip=False)

        client = auth_service.authenticate_client(email, password)
        if not client:
            current_app.logger.warning("Client login failed for %s", email)
            _log_login(PrincipalKind.CLIENT.value, None, False, "Invalid credentials")
            return jsonify({"error": "Invalid credentials", "code": "INVALID_CREDENTIALS"}), 401

        session, token = session_service.create_client_session(
            client.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        _log_login(PrincipalKind.CLIENT.value, client.id, True)

        cfg = current_app.config
        response = jsonify({
            "client": client.to_dict(),
            "expires_at": session.to_dict()["expires_at"],
        })
        response.set_cookie(
            cfg["CLIENT_SESSION_COOKIE"],
            token,
            max_age=cfg["CLIENT_SESSION_HOURS"] * 3600,
            httponly=True,
            secure=cfg["CLIENT_SESSION_COOKIE_SECURE"],
            samesite="Lax",
        )
        return response, 200

    except RepairDeskError as e:
        return error_response(e)


@auth_bp.post("/client/logout")
def client_logout_route():
    cookie = current_app.config["CLIENT_SESSION_COOKIE"]
    token = request.cookies.get(cookie)
    revoked = session_service.invalidate_client_session(token, reason="Logout") if token else False

    response = jsonify({"logged_out": revoked})
    response.delete_cookie(cookie)
    return response, 200


@auth_bp.get("/me")
@require_principal
@require_access(requirements.VIEW_SELF)
def me_route():
    """Return the authenticated principal (staff or client)."""
    return jsonify({"principal": g.principal.to_dict()}), 200
