# Overview: Service-layer operations for identifier; encapsulates business logic and database work.

"""
Invoice Identifier Service

WHY: Electronic invoices carry two identifiers that downstream verifiers
check without contacting us: a strictly increasing invoice number and a
44-digit access key whose last digit is a mod-11 check digit.

INVOICE NUMBER: EEE-PPP-SSSSSSSSS (establishment, emission point, 9-digit
sequence). The first ever number is 001-001-000000001.

ACCESS KEY (44 digits):
    [0:8]   issue date YYYYMMDD
    [8:10]  document type
    [10:23] issuer tax id
    [23]    environment
    [24:27] establishment
    [27:30] emission point
    [30:39] sequence
    [39:42] random filler
    [42]    emission type
    [43]    mod-11 check digit over the first 43 digits

CONCURRENCY: allocation is an atomic UPDATE on the invoice_sequences row
of the (establishment, emission point) scope. The unique constraint on
invoices.invoice_number is a backstop only.
"""

from __future__ import annotations

import re
import secrets
from datetime import date

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import SequenceConflict
from ..extensions import db
from ..models import Invoice, InvoiceSequence
from ..validation import ValidationError


INVOICE_NUMBER_RE = re.compile(r"^(\d{3})-(\d{3})-(\d{9})$")
MAX_SEQUENCE = 999_999_999

ACCESS_KEY_LENGTH = 44
ACCESS_KEY_BASE_LENGTH = 43

# Fixed-width components; the filler takes whatever the 43-digit base leaves
_FIXED_COMPONENTS = (
    ("issue_date", 8),
    ("document_type", 2),
    ("issuer_tax_id", 13),
    ("environment", 1),
    ("establishment", 3),
    ("emission_point", 3),
    ("sequence", 9),
    ("emission_type", 1),
)
FILLER_WIDTH = ACCESS_KEY_BASE_LENGTH - sum(width for _, width in _FIXED_COMPONENTS)

ACCESS_KEY_LAYOUT = (
    ("issue_date", 8),
    ("document_type", 2),
    ("issuer_tax_id", 13),
    ("environment", 1),
    ("establishment", 3),
    ("emission_point", 3),
    ("sequence", 9),
    ("filler", FILLER_WIDTH),
    ("emission_type", 1),
    ("check_digit", 1),
)


# -- Invoice numbers --

def format_invoice_number(establishment: str, emission_point: str, sequence: int) -> str:
    if not 1 <= sequence <= MAX_SEQUENCE:
        raise ValidationError(f"Invoice sequence out of range: {sequence}")
    return f"{establishment}-{emission_point}-{sequence:09d}"


def parse_invoice_number(number: str) -> tuple[str, str, int]:
    """Split EEE-PPP-SSSSSSSSS into (establishment, emission_point, sequence)."""
    match = INVOICE_NUMBER_RE.match((number or "").strip())
    if not match:
        raise ValidationError(f"Malformed invoice number: {number}")
    return match.group(1), match.group(2), int(match.group(3))


def _scope(establishment: str | None, emission_point: str | None) -> tuple[str, str]:
    cfg = current_app.config
    est = establishment or cfg["INVOICE_ESTABLISHMENT"]
    pe = emission_point or cfg["INVOICE_EMISSION_POINT"]
    for label, value in (("establishment", est), ("emission_point", pe)):
        if not (len(value) == 3 and value.isdigit()):
            raise ValidationError(f"{label} must be 3 digits")
    return est, pe


def last_issued_sequence(establishment: str, emission_point: str) -> int:
    """Highest sequence already used by an invoice in this scope, 0 if none."""
    last = (
        db.session.query(Invoice.invoice_number)
        .filter(Invoice.invoice_number.like(f"{establishment}-{emission_point}-%"))
        .order_by(Invoice.invoice_number.desc())
        .first()
    )
    if last is None:
        return 0
    return parse_invoice_number(last[0])[2]


def next_invoice_number(establishment: str | None = None, emission_point: str | None = None) -> str:
    """
    Allocate the next invoice number for a scope.

    Runs inside the caller's transaction and does not commit: the number
    is only consumed if the invoice that uses it commits.

    Raises SequenceConflict when two callers seed the same scope at once;
    the caller retries the whole operation.
    """
    est, pe = _scope(establishment, emission_point)

    stmt = (
        update(InvoiceSequence)
        .where(
            InvoiceSequence.establishment == est,
            InvoiceSequence.emission_point == pe,
        )
        .values(last_sequence=InvoiceSequence.last_sequence + 1)
    )
    result = db.session.execute(stmt)

    if result.rowcount:
        sequence = (
            db.session.query(InvoiceSequence.last_sequence)
            .filter_by(establishment=est, emission_point=pe)
            .scalar()
        )
    else:
        sequence = last_issued_sequence(est, pe) + 1
        db.session.add(InvoiceSequence(establishment=est, emission_point=pe, last_sequence=sequence))
        try:
            db.session.flush()
        except IntegrityError:
            raise SequenceConflict(f"Invoice sequence {est}-{pe} was seeded concurrently")

    return format_invoice_number(est, pe, sequence)


# -- Access keys --

def mod11_check_digit(base: str) -> int:
    """
    Modulo-11 check digit.

    Weights 2..7 repeat from the least significant digit. remainder 0 -> 0,
    remainder 1 -> 1, otherwise 11 - remainder.
    """
    if not base or not base.isdigit():
        raise ValidationError("Check digit base must be numeric")
    total = 0
    weight = 2
    for ch in reversed(base):
        total += int(ch) * weight
        weight = 2 if weight == 7 else weight + 1
    remainder = total % 11
    if remainder in (0, 1):
        return remainder
    return 11 - remainder


def _digits(value, width: int, label: str) -> str:
    text = str(value)
    if not text.isdigit() or len(text) != width:
        raise ValidationError(f"{label} must be exactly {width} digits")
    return text


def random_filler() -> str:
    return f"{secrets.randbelow(10 ** FILLER_WIDTH):0{FILLER_WIDTH}d}"


def build_access_key(
    *,
    issue_date: date,
    document_type: str,
    issuer_tax_id: str,
    environment: str,
    establishment: str,
    emission_point: str,
    sequence: int,
    emission_type: str,
    filler: str | None = None,
) -> str:
    """Assemble the 43-digit base and append its check digit."""
    parts = [
        issue_date.strftime("%Y%m%d"),
        _digits(document_type, 2, "document_type"),
        _digits(issuer_tax_id, 13, "issuer_tax_id"),
        _digits(environment, 1, "environment"),
        _digits(establishment, 3, "establishment"),
        _digits(emission_point, 3, "emission_point"),
        f"{sequence:09d}",
        _digits(filler if filler is not None else random_filler(), FILLER_WIDTH, "filler"),
        _digits(emission_type, 1, "emission_type"),
    ]
    base = "".join(parts)
    if len(base) != ACCESS_KEY_BASE_LENGTH:
        raise ValidationError("Access key base must be 43 digits")
    return base + str(mod11_check_digit(base))


def access_key(invoice_number: str, issue_date: date, *, filler: str | None = None) -> str:
    """Access key for an invoice number using the configured issuer data."""
    cfg = current_app.config
    establishment, emission_point, sequence = parse_invoice_number(invoice_number)
    return build_access_key(
        issue_date=issue_date,
        document_type=cfg["INVOICE_DOCUMENT_TYPE"],
        issuer_tax_id=cfg["INVOICE_ISSUER_TAX_ID"],
        environment=cfg["INVOICE_ENVIRONMENT"],
        establishment=establishment,
        emission_point=emission_point,
        sequence=sequence,
        emission_type=cfg["INVOICE_EMISSION_TYPE"],
        filler=filler,
    )


def validate_access_key(key: str) -> bool:
    """True if `key` is 44 digits and its last digit is the base's check digit."""
    if not isinstance(key, str) or len(key) != ACCESS_KEY_LENGTH or not key.isdigit():
        return False
    return mod11_check_digit(key[:ACCESS_KEY_BASE_LENGTH]) == int(key[-1])


def decode_access_key(key: str) -> dict:
    """Split a 44-digit key into its named components."""
    if not isinstance(key, str) or len(key) != ACCESS_KEY_LENGTH or not key.isdigit():
        raise ValidationError("Access key must be 44 digits")
    result = {}
    pos = 0
    for name, width in ACCESS_KEY_LAYOUT:
        result[name] = key[pos:pos + width]
        pos += width
    result["valid"] = validate_access_key(key)
    return result
