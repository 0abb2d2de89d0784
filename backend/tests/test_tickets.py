"""
Support ticket tests.

Verifies:
- Ticket numbering per day
- Clients can only reference their own orders
- Status flow, and closed tickets rejecting further changes
- Internal responses are staff-only
- Bulk close is all-or-nothing on missing ids
- Order corrections through a ticket leave the order's history alone
"""

from datetime import date

import pytest

from repairdesk.errors import NotFoundError, PreconditionFailed
from repairdesk.extensions import db
from repairdesk.services import order_service, ticket_service
from repairdesk.services.lifecycle_service import Actor, history_for
from repairdesk.time_utils import utcnow
from repairdesk.validation import ValidationError


@pytest.fixture
def ticket(customer):
    return ticket_service.create_ticket(customer.id, "Screen flicker", "Started after the repair")


@pytest.fixture
def admin_actor(admin):
    return Actor(user_id=admin.id)


# =============================================================================
# CREATION
# =============================================================================


class TestCreateTicket:

    def test_numbering(self, customer):
        today = utcnow().date()
        first = ticket_service.create_ticket(customer.id, "A", "first")
        second = ticket_service.create_ticket(customer.id, "B", "second")
        assert first.ticket_number == f"TCK-{today:%Y%m%d}-0001"
        assert second.ticket_number == f"TCK-{today:%Y%m%d}-0002"

    def test_defaults(self, ticket):
        assert ticket.status == "open"
        assert ticket.priority == "normal"
        assert ticket.assigned_to_user_id is None

    def test_linked_to_own_order(self, customer, order):
        linked = ticket_service.create_ticket(customer.id, "Status?", "When is it ready", order_id=order.id)
        assert linked.order_id == order.id

    def test_cannot_reference_another_clients_order(self, other_customer, order):
        with pytest.raises(NotFoundError):
            ticket_service.create_ticket(other_customer.id, "Hi", "Not mine", order_id=order.id)

    @pytest.mark.parametrize(
        "subject,description,priority",
        [
            ("", "body", "normal"),
            ("subject", "  ", "normal"),
            ("subject", "body", "critical"),
        ],
    )
    def test_validation(self, customer, subject, description, priority):
        with pytest.raises(ValidationError):
            ticket_service.create_ticket(customer.id, subject, description, priority=priority)

    def test_client_listing(self, customer, other_customer, ticket):
        ticket_service.create_ticket(other_customer.id, "Other", "someone else")
        assert [t.id for t in ticket_service.list_client_tickets(customer.id)] == [ticket.id]
        assert ticket_service.ticket_owner(ticket.id) == customer.id


# =============================================================================
# STATUS FLOW
# =============================================================================


class TestStatusFlow:

    def test_assign_moves_open_to_assigned(self, ticket, technician, admin_actor, notifier):
        assigned = ticket_service.assign_ticket(ticket.id, technician.id, actor=admin_actor)
        assert assigned.status == "assigned"
        assert assigned.assigned_to_user_id == technician.id
        assert notifier.names() == ["send_ticket_update"]

    def test_assign_to_inactive_user(self, ticket, technician, admin_actor):
        technician.is_active = False
        db.session.commit()
        with pytest.raises(ValidationError):
            ticket_service.assign_ticket(ticket.id, technician.id, actor=admin_actor)

    def test_resolve_sets_timestamp(self, ticket):
        resolved = ticket_service.update_ticket_status(ticket.id, "resolved")
        assert resolved.status == "resolved"
        assert resolved.resolved_at is not None

    def test_same_status_is_a_no_op(self, ticket, notifier):
        ticket_service.update_ticket_status(ticket.id, "open")
        assert notifier.calls == []

    def test_unknown_status(self, ticket):
        with pytest.raises(ValidationError):
            ticket_service.update_ticket_status(ticket.id, "snoozed")

    def test_close_records_resolution(self, ticket, admin_actor):
        closed = ticket_service.close_ticket(ticket.id, actor=admin_actor, resolution="Replaced cable")
        assert closed.status == "closed"
        assert closed.closed_at is not None
        assert closed.resolved_at is not None
        assert [r.message for r in closed.responses] == ["Replaced cable"]

    def test_closed_ticket_rejects_changes(self, ticket, technician, admin_actor):
        ticket_service.close_ticket(ticket.id, actor=admin_actor)

        with pytest.raises(PreconditionFailed):
            ticket_service.update_ticket_status(ticket.id, "open")
        with pytest.raises(PreconditionFailed):
            ticket_service.assign_ticket(ticket.id, technician.id, actor=admin_actor)
        with pytest.raises(PreconditionFailed):
            ticket_service.add_response(ticket.id, "Any news?", actor=admin_actor)

    def test_closing_twice_is_a_no_op(self, ticket, admin_actor, notifier):
        ticket_service.close_ticket(ticket.id, actor=admin_actor)
        ticket_service.close_ticket(ticket.id, actor=admin_actor, resolution="again")
        assert notifier.names() == ["send_ticket_update"]
        assert ticket_service.get_ticket(ticket.id).responses == []


# =============================================================================
# RESPONSES
# =============================================================================


class TestResponses:

    def test_client_response(self, ticket, customer, notifier):
        response = ticket_service.add_response(ticket.id, "Still flickering", actor=Actor(client_id=customer.id))
        assert response.responded_by_client_id == customer.id
        assert response.responded_by_user_id is None
        assert notifier.calls == []

    def test_client_cannot_post_internal(self, ticket, customer):
        with pytest.raises(ValidationError):
            ticket_service.add_response(ticket.id, "psst", actor=Actor(client_id=customer.id), is_internal=True)

    def test_internal_notes_hidden_from_client_view(self, ticket, technician, notifier):
        staff = Actor(user_id=technician.id)
        ticket_service.add_response(ticket.id, "Cable is loose", actor=staff, is_internal=True)
        ticket_service.add_response(ticket.id, "We will call you", actor=staff)

        loaded = ticket_service.get_ticket(ticket.id)
        client_view = loaded.to_dict(include_responses=True)
        staff_view = loaded.to_dict(include_responses=True, include_internal=True)
        assert [r["message"] for r in client_view["responses"]] == ["We will call you"]
        assert len(staff_view["responses"]) == 2

        # Only the public staff reply notifies the client
        assert notifier.names() == ["send_ticket_update"]

    def test_empty_message(self, ticket, technician):
        with pytest.raises(ValidationError):
            ticket_service.add_response(ticket.id, " ", actor=Actor(user_id=technician.id))


# =============================================================================
# BULK CLOSE
# =============================================================================


class TestBulkClose:

    def test_closes_all(self, customer, admin_actor):
        ids = [ticket_service.create_ticket(customer.id, f"T{i}", "body").id for i in range(3)]
        closed = ticket_service.bulk_close(ids, actor=admin_actor)
        assert sorted(t.id for t in closed) == ids
        assert all(ticket_service.get_ticket(i).status == "closed" for i in ids)

    def test_missing_id_closes_nothing(self, ticket, admin_actor):
        with pytest.raises(NotFoundError) as exc:
            ticket_service.bulk_close([ticket.id, 9999], actor=admin_actor)
        assert exc.value.details == {"missing": [9999]}
        assert ticket_service.get_ticket(ticket.id).status == "open"

    def test_skips_already_closed(self, customer, admin_actor):
        first = ticket_service.create_ticket(customer.id, "A", "a")
        second = ticket_service.create_ticket(customer.id, "B", "b")
        ticket_service.close_ticket(first.id, actor=admin_actor)

        closed = ticket_service.bulk_close([first.id, second.id], actor=admin_actor)
        assert [t.id for t in closed] == [second.id]

    def test_empty(self, admin_actor):
        with pytest.raises(ValidationError):
            ticket_service.bulk_close([], actor=admin_actor)


# =============================================================================
# ORDER CORRECTIONS
# =============================================================================


class TestModifyOrder:

    @pytest.fixture
    def order_ticket(self, customer, order):
        return ticket_service.create_ticket(customer.id, "Wrong date", "Please fix the ETA", order_id=order.id)

    def test_updates_fields_without_history(self, order_ticket, order, admin, admin_actor):
        before = len(history_for(order.id))
        updated = ticket_service.modify_order_from_ticket(
            order_ticket.id,
            actor=admin_actor,
            notes="Customer will pick up Friday",
            estimated_delivery_date=date(2030, 1, 10),
        )
        assert updated.notes == "Customer will pick up Friday"
        assert updated.estimated_delivery_date == date(2030, 1, 10)
        assert len(history_for(order.id)) == before
        assert order_service.get_order(order.id).current_state.value == "RECEIVED"

        ticket = ticket_service.get_ticket(order_ticket.id)
        assert ticket.status == "resolved"
        note = ticket.responses[-1]
        assert note.is_internal
        assert note.responded_by_user_id == admin.id
        assert note.message == f"Order {order.identity_tag} updated: notes, estimated_delivery_date"

    def test_reassign_technician(self, order_ticket, order, sales, admin_actor):
        updated = ticket_service.modify_order_from_ticket(order_ticket.id, actor=admin_actor, technician_id=sales.id)
        assert updated.technician_id == sales.id

    def test_nothing_to_modify(self, order_ticket, admin_actor):
        with pytest.raises(ValidationError):
            ticket_service.modify_order_from_ticket(order_ticket.id, actor=admin_actor)

    def test_ticket_without_order(self, ticket, admin_actor):
        with pytest.raises(PreconditionFailed):
            ticket_service.modify_order_from_ticket(ticket.id, actor=admin_actor, notes="x")

    def test_closed_ticket(self, order_ticket, admin_actor):
        ticket_service.close_ticket(order_ticket.id, actor=admin_actor)
        with pytest.raises(PreconditionFailed):
            ticket_service.modify_order_from_ticket(order_ticket.id, actor=admin_actor, notes="x")


# =============================================================================
# LISTING AND STATISTICS
# =============================================================================


class TestListing:

    def test_filters(self, customer, technician, admin_actor):
        urgent = ticket_service.create_ticket(customer.id, "Urgent", "now", priority="urgent")
        ticket_service.create_ticket(customer.id, "Later", "whenever", priority="low")
        ticket_service.assign_ticket(urgent.id, technician.id, actor=admin_actor)

        assert [t.id for t in ticket_service.list_tickets(priority="urgent")] == [urgent.id]
        assert [t.id for t in ticket_service.list_tickets(status="assigned")] == [urgent.id]
        assert [t.id for t in ticket_service.list_tickets(assigned_to_user_id=technician.id)] == [urgent.id]
        assert len(ticket_service.list_tickets(client_id=customer.id)) == 2

    def test_statistics(self, customer, admin_actor):
        first = ticket_service.create_ticket(customer.id, "A", "a", priority="high")
        ticket_service.create_ticket(customer.id, "B", "b")
        ticket_service.close_ticket(first.id, actor=admin_actor)

        stats = ticket_service.ticket_statistics()
        assert stats["total"] == 2
        assert stats["by_status"]["closed"] == 1
        assert stats["by_status"]["open"] == 1
        assert stats["by_status"]["assigned"] == 0
        assert stats["by_priority"] == {"low": 0, "normal": 1, "high": 1, "urgent": 0}
