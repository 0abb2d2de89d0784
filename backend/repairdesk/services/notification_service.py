# Overview: Outbound notification boundary (email delivery is an external collaborator).

"""
Notifications

The business layer hands computed fields to a Notifier; delivery and
templating live outside this package. The default LoggingNotifier only
logs. An app can install another notifier with set_notifier().

Delivery failures are logged and never roll back the business transaction
that triggered them.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Protocol

from flask import current_app


logger = logging.getLogger(__name__)

EXTENSION_KEY = "repairdesk.notifier"


class Notifier(Protocol):
    def send_proforma(self, *, email: str | None, identity_tag: str, parts: str, total_price: Decimal) -> None: ...

    def send_proforma_decision(self, *, identity_tag: str, approved: bool, client_name: str) -> None: ...

    def send_invoice(self, *, email: str | None, invoice_number: str, access_key: str,
                     pdf_bytes: bytes, xml_bytes: bytes) -> None: ...

    def send_ticket_update(self, *, email: str | None, ticket_number: str, status: str, message: str | None) -> None: ...


class LoggingNotifier:
    """Notifier that records what would have been sent."""

    def send_proforma(self, *, email, identity_tag, parts, total_price):
        logger.info("Proforma for %s (%s) to %s", identity_tag, total_price, email)

    def send_proforma_decision(self, *, identity_tag, approved, client_name):
        logger.info("Proforma %s by %s for %s", "approved" if approved else "rejected", client_name, identity_tag)

    def send_invoice(self, *, email, invoice_number, access_key, pdf_bytes, xml_bytes):
        logger.info("Invoice %s (%s bytes pdf) to %s", invoice_number, len(pdf_bytes), email)

    def send_ticket_update(self, *, email, ticket_number, status, message):
        logger.info("Ticket %s is now %s, notifying %s", ticket_number, status, email)


def get_notifier() -> Notifier:
    notifier = current_app.extensions.get(EXTENSION_KEY)
    if notifier is None:
        notifier = LoggingNotifier()
        current_app.extensions[EXTENSION_KEY] = notifier
    return notifier


def set_notifier(app, notifier: Notifier) -> None:
    app.extensions[EXTENSION_KEY] = notifier


def notify_safely(method: str, **kwargs) -> bool:
    """
    Call a notifier method after the business change has committed.

    Returns False (and logs) if delivery failed.
    """
    try:
        getattr(get_notifier(), method)(**kwargs)
        return True
    except Exception:
        logger.exception("Notification %s failed", method)
        return False
