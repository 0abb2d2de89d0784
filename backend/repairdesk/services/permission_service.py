# Overview: Service-layer operations for permission; encapsulates business logic and database work.

"""
Access Enforcement and Security Event Logging

WHY: The policy engine only decides. This module turns a denial into an
audit record, a log line and a typed AccessDenied error, so every route
reports the precise denial kind.

DESIGN PRINCIPLES:
- Fail closed: anything not explicitly allowed is denied
- Log denials only: grants are not logged
- Audit rows are append-only
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import SecurityEvent
from ..permissions import AccessRequirement, Principal
from . import policy_service
from repairdesk.time_utils import utcnow


logger = logging.getLogger(__name__)


def log_security_event(
    principal_kind: str | None,
    principal_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SecurityEvent:
    """
    Log security event to audit trail.

    event_type examples:
    - ACCESS_DENIED
    - AUTH_FAILED
    - LOGIN_SUCCESS / LOGIN_FAILED (principal_kind tells staff from client)
    """
    event = SecurityEvent(
        principal_kind=principal_kind,
        principal_id=principal_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
        occurred_at=utcnow(),
    )

    db.session.add(event)
    db.session.commit()

    return event


def enforce(
    principal: Principal,
    requirement: AccessRequirement,
    *,
    resource: str | None = None,
    action: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    """
    Require `principal` to satisfy `requirement`.

    Raises the AccessDenied subclass matching the denial reason
    (WrongPrincipalKind, InsufficientRole, NotOwner) after logging it.
    """
    decision = policy_service.authorize(principal, requirement)
    if decision.allowed:
        return

    logger.warning(
        "Access denied: %s %s id=%s roles=%s requirement=%s",
        decision.reason,
        principal.kind.value,
        principal.id,
        ",".join(sorted(principal.roles)),
        requirement.name,
    )
    log_security_event(
        principal_kind=principal.kind.value,
        principal_id=principal.id,
        event_type="ACCESS_DENIED",
        success=False,
        resource=resource,
        action=action or requirement.name,
        reason=decision.reason,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    raise decision.error_class(decision.message, details={"requirement": requirement.name})


def list_security_events(*, event_type: str | None = None, limit: int = 100) -> list[SecurityEvent]:
    q = db.session.query(SecurityEvent)
    if event_type:
        q = q.filter(SecurityEvent.event_type == event_type)
    return q.order_by(SecurityEvent.occurred_at.desc(), SecurityEvent.id.desc()).limit(limit).all()
