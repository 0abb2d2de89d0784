# Overview: Compiled-in role hierarchy.
# A role subsumes itself plus every role listed for it. Changing the
# hierarchy is a deployment, never a runtime mutation.

from types import MappingProxyType


ADMINISTRATOR = "Administrator"
RECEPTIONIST = "Receptionist"
TECHNICIAN = "Technician"
SALES = "Sales"
CLIENT = "Client"

STAFF_ROLES = frozenset({ADMINISTRATOR, RECEPTIONIST, TECHNICIAN, SALES})
CLIENT_ROLES = frozenset({CLIENT})

ROLE_DESCRIPTIONS = MappingProxyType({
    ADMINISTRATOR: "Full access; inherits every staff role",
    RECEPTIONIST: "Registers clients and equipment, opens and delivers orders",
    TECHNICIAN: "Diagnoses equipment and performs the repair",
    SALES: "Prepares proformas and issues invoices",
})

ROLE_HIERARCHY = MappingProxyType({
    ADMINISTRATOR: frozenset({ADMINISTRATOR, RECEPTIONIST, TECHNICIAN, SALES}),
    RECEPTIONIST: frozenset({RECEPTIONIST}),
    TECHNICIAN: frozenset({TECHNICIAN}),
    SALES: frozenset({SALES}),
    CLIENT: frozenset({CLIENT}),
})


def expand_role(role: str) -> frozenset[str]:
    """Roles subsumed by `role`. Unknown roles subsume only themselves."""
    return ROLE_HIERARCHY.get(role, frozenset({role}))


def expand_roles(roles) -> frozenset[str]:
    """
    Transitive closure of `roles` through the hierarchy.

    Idempotent: expand_roles(expand_roles(r)) == expand_roles(r).
    """
    result = set(roles)
    pending = list(result)
    while pending:
        for subsumed in expand_role(pending.pop()):
            if subsumed not in result:
                result.add(subsumed)
                pending.append(subsumed)
    return frozenset(result)
