# Overview: Static access requirement per operation.
# Each requirement declares the admitted principal kind, the staff roles
# that satisfy it (empty = any role of that kind) and whether the client
# must own the resource.

from __future__ import annotations

from dataclasses import dataclass, field, replace

from .kinds import RequirementKind
from .roles import ADMINISTRATOR, RECEPTIONIST, SALES, TECHNICIAN


@dataclass(frozen=True)
class AccessRequirement:
    name: str
    kind: RequirementKind
    roles: frozenset = field(default_factory=frozenset)
    ownership_check: bool = False
    owner_id: int | None = None
    description: str = ""

    def for_owner(self, owner_id: int | None) -> "AccessRequirement":
        """Bind the resource owner for one request."""
        return replace(self, owner_id=owner_id)


def _staff(name, *roles, description=""):
    return AccessRequirement(name, RequirementKind.STAFF, frozenset(roles), description=description)


def _client(name, *, owned=False, description=""):
    return AccessRequirement(name, RequirementKind.CLIENT, ownership_check=owned, description=description)


def _any(name, *, owned=False, description=""):
    return AccessRequirement(name, RequirementKind.ANY, ownership_check=owned, description=description)


# -- Reception --

CREATE_ORDER = _staff("CREATE_ORDER", RECEPTIONIST, description="Open a service order")
REGISTER_CLIENT = _staff("REGISTER_CLIENT", RECEPTIONIST, description="Register clients and equipment")
DELIVER_ORDER = _staff("DELIVER_ORDER", RECEPTIONIST, description="Hand equipment back to the client")

# -- Workshop --

DIAGNOSE_ORDER = _staff("DIAGNOSE_ORDER", TECHNICIAN, description="Record a diagnosis")
START_SERVICE = _staff("START_SERVICE", TECHNICIAN, description="Start the repair")
FINISH_SERVICE = _staff("FINISH_SERVICE", TECHNICIAN, description="Finish the repair")
LIST_ASSIGNED_ORDERS = _staff("LIST_ASSIGNED_ORDERS", TECHNICIAN, description="List orders assigned to me")

# -- Sales --

SET_PROFORMA = _staff("SET_PROFORMA", SALES, description="Quote parts and price")
SEND_PROFORMA = _staff("SEND_PROFORMA", SALES, description="Send the proforma to the client")
REQUOTE_ORDER = _staff("REQUOTE_ORDER", SALES, description="Re-quote a rejected proforma")
GENERATE_INVOICE = _staff("GENERATE_INVOICE", SALES, description="Issue the electronic invoice")
SEND_INVOICE = _staff("SEND_INVOICE", SALES, description="Email the invoice to the client")

LIST_ORDERS = _staff("LIST_ORDERS", RECEPTIONIST, SALES, description="List all orders")
LIST_INVOICES = _staff("LIST_INVOICES", RECEPTIONIST, SALES, description="List all invoices")

# -- Shared (staff or owning client) --

VIEW_ORDER = _any("VIEW_ORDER", owned=True, description="View one order")
VIEW_TRACKING = _any("VIEW_TRACKING", owned=True, description="View an order timeline")
DOWNLOAD_INVOICE = _any("DOWNLOAD_INVOICE", owned=True, description="Download the invoice PDF")
VIEW_SELF = _any("VIEW_SELF", description="Any authenticated caller")

# -- Client portal --

RESPOND_PROFORMA = _client("RESPOND_PROFORMA", owned=True, description="Approve or reject a proforma")
LIST_OWN_ORDERS = _client("LIST_OWN_ORDERS", description="List my orders")
CREATE_TICKET = _client("CREATE_TICKET", description="Open a support ticket")
LIST_OWN_TICKETS = _client("LIST_OWN_TICKETS", description="List my tickets")
VIEW_OWN_TICKET = _client("VIEW_OWN_TICKET", owned=True, description="View one of my tickets")

# -- Ticket desk --

LIST_TICKETS = _staff("LIST_TICKETS", RECEPTIONIST, description="List all tickets")
VIEW_TICKET = _staff("VIEW_TICKET", RECEPTIONIST, TECHNICIAN, SALES, description="View a ticket")
UPDATE_TICKET = _staff("UPDATE_TICKET", RECEPTIONIST, TECHNICIAN, SALES, description="Change ticket status")
RESPOND_TICKET = _staff("RESPOND_TICKET", RECEPTIONIST, TECHNICIAN, SALES, description="Respond to a ticket")

# -- Administration --

ASSIGN_TICKET = _staff("ASSIGN_TICKET", ADMINISTRATOR, description="Assign a ticket")
CLOSE_TICKET = _staff("CLOSE_TICKET", ADMINISTRATOR, description="Close a ticket")
BULK_CLOSE_TICKETS = _staff("BULK_CLOSE_TICKETS", ADMINISTRATOR, description="Close many tickets")
MODIFY_ORDER_FROM_TICKET = _staff("MODIFY_ORDER_FROM_TICKET", ADMINISTRATOR, description="Edit an order from a ticket")
VIEW_SECURITY_EVENTS = _staff("VIEW_SECURITY_EVENTS", ADMINISTRATOR, description="Read the security audit log")


REQUIREMENTS = {
    req.name: req
    for req in (
        CREATE_ORDER, REGISTER_CLIENT, DELIVER_ORDER,
        DIAGNOSE_ORDER, START_SERVICE, FINISH_SERVICE, LIST_ASSIGNED_ORDERS,
        SET_PROFORMA, SEND_PROFORMA, REQUOTE_ORDER, GENERATE_INVOICE, SEND_INVOICE,
        LIST_ORDERS, LIST_INVOICES,
        VIEW_ORDER, VIEW_TRACKING, DOWNLOAD_INVOICE, VIEW_SELF,
        RESPOND_PROFORMA, LIST_OWN_ORDERS, CREATE_TICKET, LIST_OWN_TICKETS, VIEW_OWN_TICKET,
        LIST_TICKETS, VIEW_TICKET, UPDATE_TICKET, RESPOND_TICKET,
        ASSIGN_TICKET, CLOSE_TICKET, BULK_CLOSE_TICKETS, MODIFY_ORDER_FROM_TICKET,
        VIEW_SECURITY_EVENTS,
    )
}
