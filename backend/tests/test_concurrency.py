"""
Concurrency tests for the order lifecycle.

Runs competing operations in separate threads against a file-backed SQLite
database so each thread has its own connection and session.

Verifies:
- Two racing transitions from the same state: exactly one wins, the loser
  is re-validated against the winner's state and rejected
- History stays a valid walk with one row per accepted transition
- Concurrent invoicing allocates distinct, contiguous numbers
"""

import threading
from types import SimpleNamespace

from repairdesk.errors import TransitionRejected
from repairdesk.models import OrderState
from repairdesk.permissions import RECEPTIONIST, SALES, TECHNICIAN
from repairdesk.services import invoice_service, lifecycle_service, order_service
from repairdesk.services.auth_service import create_client, create_user
from repairdesk.services.lifecycle_service import Actor, history_for, verify_history

from conftest import PASSWORD, walk_to_completed


def run_concurrently(app, *operations):
    """
    Start every operation at the same time, each in its own app context.

    Returns one entry per operation: its return value or the exception it raised.
    """
    barrier = threading.Barrier(len(operations))
    outcomes = [None] * len(operations)

    def worker(index, operation):
        with app.app_context():
            barrier.wait()
            try:
                outcomes[index] = operation()
            except Exception as exc:
                outcomes[index] = exc

    threads = [threading.Thread(target=worker, args=(i, op)) for i, op in enumerate(operations)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


def seed(app):
    """Staff, a client with equipment, and one fresh order. Returns plain ids."""
    with app.app_context():
        reception = create_user("reception", "reception@repairdesk.test", PASSWORD, roles=[RECEPTIONIST])
        tech = create_user("tech", "tech@repairdesk.test", PASSWORD, roles=[TECHNICIAN])
        seller = create_user("sales", "sales@repairdesk.test", PASSWORD, roles=[SALES])
        customer = create_client("Maria Perez", email="maria@example.com", password=PASSWORD)
        equipment = order_service.register_equipment(customer.id, "Phone")
        order = order_service.create_order(
            client_id=customer.id, equipment_id=equipment.id, receptionist_id=reception.id,
        )
        return {
            "reception": reception.id,
            "tech": tech.id,
            "sales": seller.id,
            "client": customer.id,
            "equipment": equipment.id,
            "order": order.id,
        }


def split(outcomes):
    failures = [o for o in outcomes if isinstance(o, Exception)]
    successes = [o for o in outcomes if not isinstance(o, Exception)]
    return successes, failures


def assert_history(app, order_id, expected_states):
    with app.app_context():
        order = order_service.get_order(order_id)
        assert [e.status.code for e in history_for(order_id)] == expected_states
        assert verify_history(order)


# =============================================================================
# RACING TRANSITIONS
# =============================================================================


def test_racing_diagnoses_single_winner(file_app):
    ids = seed(file_app)
    order_id = ids["order"]

    outcomes = run_concurrently(
        file_app,
        lambda: order_service.set_diagnosis(order_id, "Battery swollen", actor=Actor(user_id=ids["tech"])).id,
        lambda: order_service.set_diagnosis(order_id, "Charging port", actor=Actor(user_id=ids["tech"])).id,
    )

    successes, failures = split(outcomes)
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], TransitionRejected)

    assert_history(file_app, order_id, ["RECEIVED", "DIAGNOSED"])


def test_approve_and_reject_race(file_app):
    ids = seed(file_app)
    order_id = ids["order"]
    with file_app.app_context():
        order_service.set_diagnosis(order_id, "Battery swollen", actor=Actor(user_id=ids["tech"]))
        order_service.set_proforma(order_id, "Battery", "45.00")
        order_service.send_proforma(order_id, actor=Actor(user_id=ids["sales"]))

    def respond(approve):
        return lambda: order_service.respond_to_proforma(order_id, ids["client"], approve).current_state

    outcomes = run_concurrently(file_app, respond(True), respond(False))

    successes, failures = split(outcomes)
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], TransitionRejected)

    winner = successes[0]
    assert winner in (OrderState.PROFORMA_APPROVED, OrderState.PROFORMA_REJECTED)
    with file_app.app_context():
        assert order_service.get_order(order_id).current_state == winner
    assert_history(file_app, order_id, ["RECEIVED", "DIAGNOSED", "PROFORMA_SENT", winner.value])


def test_legal_and_illegal_transition_race(file_app):
    ids = seed(file_app)
    order_id = ids["order"]

    outcomes = run_concurrently(
        file_app,
        lambda: order_service.set_diagnosis(order_id, "Cracked screen", actor=Actor(user_id=ids["tech"])).id,
        lambda: lifecycle_service.transition(order_id, OrderState.COMPLETED).id,
    )

    assert outcomes[0] == order_id
    assert isinstance(outcomes[1], TransitionRejected)
    assert_history(file_app, order_id, ["RECEIVED", "DIAGNOSED"])


# =============================================================================
# INVOICE NUMBERS
# =============================================================================


def test_concurrent_invoices_get_distinct_numbers(file_app):
    ids = seed(file_app)

    with file_app.app_context():
        second = order_service.create_order(
            client_id=ids["client"], equipment_id=ids["equipment"], receptionist_id=ids["reception"],
        )
        order_ids = [ids["order"], second.id]
        for order_id in order_ids:
            walk_to_completed(order_id, technician=SimpleNamespace(id=ids["tech"]), sales=SimpleNamespace(id=ids["sales"]), client_id=ids["client"])

    outcomes = run_concurrently(
        file_app,
        *[(lambda oid=oid: invoice_service.generate_invoice(oid).invoice_number) for oid in order_ids],
    )

    successes, failures = split(outcomes)
    assert failures == []
    assert sorted(successes) == ["001-001-000000001", "001-001-000000002"]

    for order_id in order_ids:
        with file_app.app_context():
            assert order_service.get_order(order_id).current_state == OrderState.INVOICED
