# Overview: Authorization vocabulary package.
# Re-exports the principal model, role hierarchy and requirement catalogue.

from .kinds import PrincipalKind, RequirementKind, AuthMethod
from .principal import Principal
from .roles import (
    ADMINISTRATOR,
    RECEPTIONIST,
    TECHNICIAN,
    SALES,
    CLIENT,
    STAFF_ROLES,
    CLIENT_ROLES,
    ROLE_DESCRIPTIONS,
    ROLE_HIERARCHY,
    expand_role,
    expand_roles,
)
from .requirements import AccessRequirement, REQUIREMENTS
from .helpers import (
    get_requirement,
    get_requirement_definition,
    requirements_satisfied_by,
    validate_staff_role,
)

__all__ = [
    "PrincipalKind",
    "RequirementKind",
    "AuthMethod",
    "Principal",
    "ADMINISTRATOR",
    "RECEPTIONIST",
    "TECHNICIAN",
    "SALES",
    "CLIENT",
    "STAFF_ROLES",
    "CLIENT_ROLES",
    "ROLE_DESCRIPTIONS",
    "ROLE_HIERARCHY",
    "expand_role",
    "expand_roles",
    "AccessRequirement",
    "REQUIREMENTS",
    "get_requirement",
    "get_requirement_definition",
    "requirements_satisfied_by",
    "validate_staff_role",
]
