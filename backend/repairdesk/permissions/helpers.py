# Overview: Utility functions for requirement lookups and role validation.

from .requirements import REQUIREMENTS
from .roles import ROLE_HIERARCHY, STAFF_ROLES


def get_requirement(name):
    """Get a requirement by name, or None."""
    return REQUIREMENTS.get(name)


def get_requirement_definition(name):
    """Get a serializable description of a requirement."""
    req = REQUIREMENTS.get(name)
    if req is None:
        return None
    return {
        "name": req.name,
        "kind": req.kind.value,
        "roles": sorted(req.roles),
        "ownership_check": req.ownership_check,
        "description": req.description,
    }


def requirements_satisfied_by(role):
    """Names of staff requirements a role satisfies through the hierarchy."""
    subsumed = ROLE_HIERARCHY.get(role, frozenset({role}))
    return sorted(
        req.name for req in REQUIREMENTS.values()
        if req.roles and req.roles & subsumed
    )


def validate_staff_role(name):
    """Check if a role name is an assignable staff role."""
    return name in STAFF_ROLES
