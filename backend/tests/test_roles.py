"""
Role hierarchy and requirement catalogue tests.

Verifies:
- Every role subsumes itself
- Administrator subsumes every staff role, never Client
- Expansion is idempotent
- Catalogue helpers describe requirements consistently
"""

import pytest

from repairdesk.permissions import (
    ADMINISTRATOR,
    CLIENT,
    RECEPTIONIST,
    REQUIREMENTS,
    ROLE_HIERARCHY,
    SALES,
    STAFF_ROLES,
    TECHNICIAN,
    RequirementKind,
    expand_role,
    expand_roles,
    get_requirement,
    get_requirement_definition,
    requirements_satisfied_by,
    validate_staff_role,
)
from repairdesk.permissions import requirements


# =============================================================================
# HIERARCHY
# =============================================================================


class TestHierarchy:

    @pytest.mark.parametrize("role", sorted(ROLE_HIERARCHY))
    def test_role_subsumes_itself(self, role):
        assert role in expand_role(role)

    def test_administrator_subsumes_all_staff_roles(self):
        assert STAFF_ROLES <= expand_role(ADMINISTRATOR)

    def test_administrator_does_not_subsume_client(self):
        assert CLIENT not in expand_role(ADMINISTRATOR)

    @pytest.mark.parametrize("role", [RECEPTIONIST, TECHNICIAN, SALES])
    def test_operational_roles_are_flat(self, role):
        assert expand_role(role) == frozenset({role})

    def test_unknown_role_subsumes_only_itself(self):
        assert expand_role("Auditor") == frozenset({"Auditor"})


class TestExpandRoles:

    @pytest.mark.parametrize(
        "roles",
        [
            [],
            [ADMINISTRATOR],
            [TECHNICIAN, SALES],
            [CLIENT],
            [RECEPTIONIST, ADMINISTRATOR],
            ["Auditor", TECHNICIAN],
        ],
    )
    def test_idempotent(self, roles):
        once = expand_roles(roles)
        assert expand_roles(once) == once

    def test_expansion_is_a_superset(self):
        roles = {TECHNICIAN, SALES}
        assert roles <= expand_roles(roles)

    def test_administrator_expansion(self):
        assert expand_roles([ADMINISTRATOR]) == STAFF_ROLES

    def test_empty(self):
        assert expand_roles([]) == frozenset()


# =============================================================================
# REQUIREMENT CATALOGUE
# =============================================================================


class TestRequirementCatalogue:

    def test_names_are_unique_keys(self):
        for name, req in REQUIREMENTS.items():
            assert req.name == name

    def test_staff_requirements_name_known_roles(self):
        for req in REQUIREMENTS.values():
            if req.kind == RequirementKind.STAFF:
                assert req.roles <= STAFF_ROLES, req.name

    def test_client_and_shared_requirements_carry_no_roles(self):
        for req in REQUIREMENTS.values():
            if req.kind != RequirementKind.STAFF:
                assert req.roles == frozenset(), req.name

    def test_ownership_only_on_client_facing_requirements(self):
        for req in REQUIREMENTS.values():
            if req.ownership_check:
                assert req.kind in (RequirementKind.CLIENT, RequirementKind.ANY), req.name

    def test_for_owner_binds_without_mutating(self):
        bound = requirements.VIEW_ORDER.for_owner(7)
        assert bound.owner_id == 7
        assert requirements.VIEW_ORDER.owner_id is None
        assert bound.name == requirements.VIEW_ORDER.name

    def test_get_requirement(self):
        assert get_requirement("CREATE_ORDER") is requirements.CREATE_ORDER
        assert get_requirement("NOPE") is None

    def test_definition_is_serializable(self):
        definition = get_requirement_definition("RESPOND_PROFORMA")
        assert definition == {
            "name": "RESPOND_PROFORMA",
            "kind": "CLIENT",
            "roles": [],
            "ownership_check": True,
            "description": "Approve or reject a proforma",
        }
        assert get_requirement_definition("NOPE") is None

    def test_administrator_satisfies_every_staff_requirement(self):
        staff_with_roles = sorted(
            r.name for r in REQUIREMENTS.values() if r.kind == RequirementKind.STAFF and r.roles
        )
        assert requirements_satisfied_by(ADMINISTRATOR) == staff_with_roles

    def test_technician_cannot_invoice(self):
        satisfied = requirements_satisfied_by(TECHNICIAN)
        assert "DIAGNOSE_ORDER" in satisfied
        assert "GENERATE_INVOICE" not in satisfied

    def test_validate_staff_role(self):
        assert validate_staff_role(SALES)
        assert not validate_staff_role(CLIENT)
        assert not validate_staff_role("Auditor")
