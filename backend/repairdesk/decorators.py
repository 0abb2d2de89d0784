# Overview: Request and access decorators for API routes.

from functools import wraps
from flask import current_app, g, jsonify, request

from .errors import AuthFailure, NotFoundError, RepairDeskError
from .permissions import AccessRequirement, PrincipalKind
from .services import permission_service, principal_service, session_service
from .services.principal_service import Credentials


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def request_credentials() -> Credentials:
    """Pull the opaque credential strings off the current request."""
    return Credentials(
        bearer_token=_bearer_token(),
        session_token=request.cookies.get(current_app.config["CLIENT_SESSION_COOKIE"]),
    )


def error_response(exc: RepairDeskError):
    return jsonify(exc.to_dict()), exc.http_status


def require_principal(f):
    """
    Require an authenticated principal.

    Sets g.principal (Principal). Staff authenticate with
    `Authorization: Bearer <jwt>`, clients with the session cookie.

    SECURITY: Returns 401 with the precise failure code if:
    - No credentials
    - Token expired or invalid
    - Principal deactivated
    - Session revoked, expired, idle, or pointing to a deleted client
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        credentials = request_credentials()
        try:
            principal = principal_service.resolve(
                credentials,
                on_invalid_session=session_service.invalidate_client_session,
                on_session_resolved=session_service.touch_client_session,
            )
        except AuthFailure as e:
            current_app.logger.warning("Authentication failed: %s on %s %s", e.code, request.method, request.path)
            if not credentials.is_empty:
                permission_service.log_security_event(
                    principal_kind=(PrincipalKind.STAFF if credentials.bearer_token else PrincipalKind.CLIENT).value,
                    principal_id=None,
                    event_type="AUTH_FAILED",
                    success=False,
                    resource=request.path,
                    action=request.method,
                    reason=e.code,
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                )
            return error_response(e)

        g.principal = principal
        return f(*args, **kwargs)

    return decorated_function


def require_access(requirement: AccessRequirement, owner_of=None):
    """
    Require g.principal to satisfy `requirement`.

    `owner_of(**view_args)` returns the owning client id of the addressed
    resource; it is only consulted for client principals on requirements
    with an ownership check.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            principal = getattr(g, "principal", None)
            if principal is None:
                return jsonify({"error": "Authentication required", "code": "UNAUTHENTICATED"}), 401

            effective = requirement
            if owner_of is not None and requirement.ownership_check and principal.is_client:
                try:
                    effective = requirement.for_owner(owner_of(**kwargs))
                except NotFoundError as e:
                    return error_response(e)

            try:
                permission_service.enforce(
                    principal,
                    effective,
                    resource=request.path,
                    action=request.method,
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                )
            except RepairDeskError as e:
                return error_response(e)

            return f(*args, **kwargs)

        return decorated_function
    return decorator
