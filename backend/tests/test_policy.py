"""
Authorization policy tests.

authorize() is pure, so these run without an app or database.

Verifies:
- Wrong principal kind is denied first
- Staff roles are expanded through the hierarchy
- Clients must own resources behind an ownership check
- Administrators are exempt from ownership
- Denial reasons map to typed errors
"""

import pytest

from repairdesk.errors import InsufficientRole, NotOwner, WrongPrincipalKind
from repairdesk.permissions import (
    ADMINISTRATOR,
    RECEPTIONIST,
    SALES,
    TECHNICIAN,
    AccessRequirement,
    Principal,
    PrincipalKind,
    RequirementKind,
)
from repairdesk.permissions import requirements
from repairdesk.services.policy_service import ALLOW_REASON, authorize, kind_matches


def staff(*roles, user_id=1):
    return Principal.staff(user_id, roles)


def client(client_id=10):
    return Principal.client(client_id)


# =============================================================================
# KIND
# =============================================================================


class TestKind:

    def test_client_denied_staff_operation(self):
        decision = authorize(client(), requirements.CREATE_ORDER)
        assert not decision.allowed
        assert decision.reason == WrongPrincipalKind.code
        assert decision.error_class is WrongPrincipalKind

    def test_staff_denied_client_operation(self):
        decision = authorize(staff(ADMINISTRATOR), requirements.RESPOND_PROFORMA.for_owner(10))
        assert not decision.allowed
        assert decision.reason == WrongPrincipalKind.code

    def test_kind_checked_before_roles(self):
        # A client lacks roles too, but the kind mismatch is what gets reported
        decision = authorize(client(), requirements.GENERATE_INVOICE)
        assert decision.reason == WrongPrincipalKind.code

    @pytest.mark.parametrize(
        "kind,required,expected",
        [
            (PrincipalKind.STAFF, RequirementKind.STAFF, True),
            (PrincipalKind.CLIENT, RequirementKind.CLIENT, True),
            (PrincipalKind.STAFF, RequirementKind.ANY, True),
            (PrincipalKind.CLIENT, RequirementKind.ANY, True),
            (PrincipalKind.STAFF, RequirementKind.CLIENT, False),
            (PrincipalKind.CLIENT, RequirementKind.STAFF, False),
        ],
    )
    def test_kind_matches(self, kind, required, expected):
        assert kind_matches(kind, required) is expected


# =============================================================================
# ROLES
# =============================================================================


class TestRoles:

    @pytest.mark.parametrize(
        "requirement,role",
        [
            (requirements.CREATE_ORDER, RECEPTIONIST),
            (requirements.DIAGNOSE_ORDER, TECHNICIAN),
            (requirements.GENERATE_INVOICE, SALES),
            (requirements.CLOSE_TICKET, ADMINISTRATOR),
        ],
    )
    def test_matching_role_allowed(self, requirement, role):
        decision = authorize(staff(role), requirement)
        assert decision.allowed
        assert decision.reason == ALLOW_REASON

    @pytest.mark.parametrize(
        "requirement,role",
        [
            (requirements.CREATE_ORDER, TECHNICIAN),
            (requirements.GENERATE_INVOICE, TECHNICIAN),
            (requirements.DIAGNOSE_ORDER, SALES),
            (requirements.CLOSE_TICKET, RECEPTIONIST),
        ],
    )
    def test_other_role_denied(self, requirement, role):
        decision = authorize(staff(role), requirement)
        assert not decision.allowed
        assert decision.reason == InsufficientRole.code
        assert decision.error_class is InsufficientRole
        assert requirement.name in decision.message

    @pytest.mark.parametrize("requirement", [r for r in requirements.REQUIREMENTS.values() if r.kind == RequirementKind.STAFF])
    def test_administrator_inherits_every_staff_requirement(self, requirement):
        assert authorize(staff(ADMINISTRATOR), requirement).allowed

    def test_any_of_several_roles(self):
        assert authorize(staff(TECHNICIAN, SALES), requirements.GENERATE_INVOICE).allowed

    def test_empty_role_set_admits_any_staff(self):
        open_to_staff = AccessRequirement("STAFF_ONLY", RequirementKind.STAFF)
        assert authorize(staff(TECHNICIAN), open_to_staff).allowed

    def test_staff_with_no_roles_denied_role_requirement(self):
        assert not authorize(staff(), requirements.LIST_ORDERS).allowed


# =============================================================================
# OWNERSHIP
# =============================================================================


class TestOwnership:

    def test_owner_allowed(self):
        decision = authorize(client(10), requirements.VIEW_ORDER.for_owner(10))
        assert decision.allowed

    def test_non_owner_denied(self):
        decision = authorize(client(10), requirements.VIEW_ORDER.for_owner(11))
        assert not decision.allowed
        assert decision.reason == NotOwner.code
        assert decision.error_class is NotOwner

    def test_unbound_owner_denied(self):
        assert not authorize(client(10), requirements.RESPOND_PROFORMA).allowed

    def test_staff_ignores_ownership(self):
        decision = authorize(staff(TECHNICIAN), requirements.VIEW_ORDER.for_owner(99))
        assert decision.allowed

    def test_administrator_exempt_from_ownership(self):
        decision = authorize(staff(ADMINISTRATOR), requirements.DOWNLOAD_INVOICE.for_owner(99))
        assert decision.allowed

    def test_requirement_without_ownership_ignores_owner(self):
        assert authorize(client(10), requirements.LIST_OWN_TICKETS).allowed


class TestDecisionShape:

    def test_allow_has_no_error_class(self):
        decision = authorize(client(10), requirements.VIEW_SELF)
        assert decision.allowed
        assert decision.error_class is None
        assert decision.message is None

    def test_authorize_is_deterministic(self):
        principal = staff(SALES)
        first = authorize(principal, requirements.SEND_PROFORMA)
        second = authorize(principal, requirements.SEND_PROFORMA)
        assert first == second
