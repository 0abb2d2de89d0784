# Overview: Pure authorization decisions; no I/O, no logging.

"""
Authorization Policy Engine

authorize(principal, requirement) is a pure function of its two inputs.
Enforcement (audit logging, raising) lives in permission_service so the
decision itself stays independently testable.

DECISION ORDER:
1. Kind: a principal of the wrong kind is denied immediately.
2. Roles: a staff principal is expanded through the role hierarchy and
   must intersect the required role set (empty set = any staff role).
3. Ownership: a client principal must own the resource when the
   requirement carries an ownership check. Administrators are exempt.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import AccessDenied, InsufficientRole, NotOwner, WrongPrincipalKind
from ..permissions import AccessRequirement, Principal, PrincipalKind, RequirementKind, expand_roles


ALLOW_REASON = "ALLOWED"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ALLOW_REASON
    message: str | None = None

    @property
    def error_class(self) -> type[AccessDenied] | None:
        return DENIAL_ERRORS.get(self.reason)


DENIAL_ERRORS = {
    WrongPrincipalKind.code: WrongPrincipalKind,
    InsufficientRole.code: InsufficientRole,
    NotOwner.code: NotOwner,
}


def _allow() -> Decision:
    return Decision(True)


def _deny(error: type[AccessDenied], message: str) -> Decision:
    return Decision(False, error.code, message)


def kind_matches(principal_kind: PrincipalKind, required: RequirementKind) -> bool:
    if required == RequirementKind.ANY:
        return True
    return principal_kind.value == required.value


def authorize(principal: Principal, requirement: AccessRequirement) -> Decision:
    if not kind_matches(principal.kind, requirement.kind):
        return _deny(
            WrongPrincipalKind,
            f"{requirement.name} requires a {requirement.kind.value.lower()} principal",
        )

    if principal.kind == PrincipalKind.STAFF:
        if requirement.roles and not (expand_roles(principal.roles) & requirement.roles):
            return _deny(
                InsufficientRole,
                f"{requirement.name} requires one of: {', '.join(sorted(requirement.roles))}",
            )
        # Ownership predicates constrain clients only
        return _allow()

    if requirement.ownership_check:
        if principal.is_administrator:
            return _allow()
        if requirement.owner_id is None or requirement.owner_id != principal.id:
            return _deny(NotOwner, f"{requirement.name}: resource belongs to another client")

    return _allow()
