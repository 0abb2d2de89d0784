# Overview: Flask API routes for system health and the security audit log.

"""
System health and audit endpoints.

GET /health reports database, session and reference-data status.
GET /api/system/security-events lists recent security events (administrator).
"""

import time
from flask import Blueprint, current_app, jsonify, request

from ..decorators import error_response, require_access, require_principal
from ..errors import RepairDeskError
from ..extensions import db
from ..models import ClientSession, OrderState, OrderStatus, Role, ServiceOrder, User
from ..permissions import STAFF_ROLES, requirements
from ..services import permission_service
from ..validation import parse_int
from repairdesk.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def _elapsed_ms(start_time: float) -> float:
    return round((time.time() - start_time) * 1000, 2)


def check_database_health() -> dict:
    """Check database connectivity with a few cheap counts."""
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        order_count = db.session.query(ServiceOrder).count()
        return {
            "status": "healthy",
            "latency_ms": _elapsed_ms(start_time),
            "details": {"users": user_count, "orders": order_count},
        }
    except Exception:
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": _elapsed_ms(start_time),
            "error": "Database error",
        }


def check_session_health() -> dict:
    """Count live and expired-but-unrevoked client sessions."""
    start_time = time.time()
    try:
        now = utcnow()
        active = db.session.query(ClientSession).filter_by(is_revoked=False).count()
        expired = db.session.query(ClientSession).filter(
            ClientSession.expires_at < now,
            ClientSession.is_revoked.is_(False),
        ).count()
        return {
            "status": "healthy",
            "latency_ms": _elapsed_ms(start_time),
            "details": {"active_sessions": active, "expired_pending_cleanup": expired},
        }
    except Exception:
        current_app.logger.exception("Session health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": _elapsed_ms(start_time),
            "error": "Session service error",
        }


def check_reference_data() -> dict:
    """Roles and order statuses must be seeded (flask system init)."""
    start_time = time.time()
    try:
        roles = {r.name for r in db.session.query(Role).all()}
        statuses = {s.code for s in db.session.query(OrderStatus).all()}
        missing_roles = sorted(STAFF_ROLES - roles)
        missing_statuses = sorted(s.value for s in OrderState if s.value not in statuses)

        if missing_roles or missing_statuses:
            return {
                "status": "degraded",
                "latency_ms": _elapsed_ms(start_time),
                "warning": "Reference data incomplete; run `flask system init`",
                "details": {"missing_roles": missing_roles, "missing_statuses": missing_statuses},
            }
        return {"status": "healthy", "latency_ms": _elapsed_ms(start_time)}
    except Exception:
        current_app.logger.exception("Reference data check failed")
        return {
            "status": "unhealthy",
            "latency_ms": _elapsed_ms(start_time),
            "error": "Reference data error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: a dependency is unhealthy
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "sessions": check_session_health(),
        "reference_data": check_reference_data(),
    }
    states = [c["status"] for c in checks.values()]

    if "unhealthy" in states:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in states:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": _elapsed_ms(start_time),
        "checks": checks,
    }, http_status


@system_bp.get("/api/system/security-events")
@require_principal
@require_access(requirements.VIEW_SECURITY_EVENTS)
def security_events_route():
    """Query params: event_type, limit (default 100)"""
    try:
        limit = parse_int(request.args.get("limit", "100"), "limit")
        events = permission_service.list_security_events(
            event_type=request.args.get("event_type"),
            limit=max(1, min(limit, 1000)),
        )
        return jsonify({"events": [e.to_dict() for e in events]}), 200

    except RepairDeskError as e:
        return error_response(e)
