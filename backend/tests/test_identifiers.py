"""
Invoice identifier tests.

Verifies:
- Modulo-11 check digit against hand-computed values
- Access keys are 44 digits, self-validating, and laid out field by field
- Different fillers give different keys that both validate
- Invoice numbers are allocated contiguously per scope
"""

from datetime import date

import pytest

from repairdesk.extensions import db
from repairdesk.services import identifier_service
from repairdesk.services.identifier_service import (
    ACCESS_KEY_LENGTH,
    FILLER_WIDTH,
    access_key,
    build_access_key,
    decode_access_key,
    format_invoice_number,
    mod11_check_digit,
    next_invoice_number,
    parse_invoice_number,
    validate_access_key,
)
from repairdesk.validation import ValidationError


ISSUE_DATE = date(2024, 3, 15)


# =============================================================================
# MOD 11
# =============================================================================


class TestMod11:

    @pytest.mark.parametrize(
        "base,expected",
        [
            ("0", 0),        # sum 0, remainder 0
            ("6", 1),        # sum 12, remainder 1
            ("1", 9),        # sum 2
            ("2", 7),        # sum 4
            ("123456", 0),   # 12+15+16+15+12+7 = 77
            ("1234567", 4),  # weights wrap back to 2 on the seventh digit: 106
        ],
    )
    def test_known_values(self, base, expected):
        assert mod11_check_digit(base) == expected

    def test_result_is_single_digit(self):
        for n in range(0, 2000, 7):
            assert 0 <= mod11_check_digit(str(n)) <= 9

    @pytest.mark.parametrize("base", ["", "12a4", None])
    def test_rejects_non_numeric(self, base):
        with pytest.raises(ValidationError):
            mod11_check_digit(base)


# =============================================================================
# ACCESS KEYS
# =============================================================================


class TestAccessKey:

    def test_layout(self, app):
        key = access_key("001-001-000000001", ISSUE_DATE, filler="0" * FILLER_WIDTH)
        assert len(key) == ACCESS_KEY_LENGTH
        assert key.isdigit()
        assert validate_access_key(key)

        parts = decode_access_key(key)
        assert parts["issue_date"] == "20240315"
        assert parts["document_type"] == app.config["INVOICE_DOCUMENT_TYPE"]
        assert parts["issuer_tax_id"] == app.config["INVOICE_ISSUER_TAX_ID"]
        assert parts["environment"] == app.config["INVOICE_ENVIRONMENT"]
        assert parts["establishment"] == "001"
        assert parts["emission_point"] == "001"
        assert parts["sequence"] == "000000001"
        assert parts["filler"] == "0" * FILLER_WIDTH
        assert parts["emission_type"] == app.config["INVOICE_EMISSION_TYPE"]
        assert parts["check_digit"] == key[-1]
        assert parts["valid"] is True

    def test_check_digit_is_mod11_of_base(self, app):
        key = access_key("001-002-000000042", ISSUE_DATE)
        assert int(key[-1]) == mod11_check_digit(key[:43])

    def test_deterministic_for_same_filler(self, app):
        first = access_key("001-001-000000007", ISSUE_DATE, filler="123")
        second = access_key("001-001-000000007", ISSUE_DATE, filler="123")
        assert first == second

    def test_different_fillers_give_different_valid_keys(self, app):
        first = access_key("001-001-000000007", ISSUE_DATE, filler="123")
        second = access_key("001-001-000000007", ISSUE_DATE, filler="456")
        assert first != second
        assert validate_access_key(first)
        assert validate_access_key(second)

    def test_tampered_key_fails(self, app):
        key = access_key("001-001-000000001", ISSUE_DATE, filler="000")
        wrong = (int(key[-1]) + 1) % 10
        assert not validate_access_key(key[:-1] + str(wrong))

    @pytest.mark.parametrize("key", ["", "123", "x" * 44, "1" * 45, None])
    def test_malformed_keys_do_not_validate(self, key):
        assert not validate_access_key(key)

    def test_decode_rejects_short_key(self):
        with pytest.raises(ValidationError):
            decode_access_key("1234")

    def test_build_rejects_bad_component(self):
        with pytest.raises(ValidationError):
            build_access_key(
                issue_date=ISSUE_DATE,
                document_type="1",
                issuer_tax_id="1790012345001",
                environment="1",
                establishment="001",
                emission_point="001",
                sequence=1,
                emission_type="1",
                filler="000",
            )


# =============================================================================
# INVOICE NUMBERS
# =============================================================================


class TestInvoiceNumbers:

    def test_format_and_parse(self):
        number = format_invoice_number("001", "002", 42)
        assert number == "001-002-000000042"
        assert parse_invoice_number(number) == ("001", "002", 42)

    @pytest.mark.parametrize("sequence", [0, 1_000_000_000])
    def test_sequence_out_of_range(self, sequence):
        with pytest.raises(ValidationError):
            format_invoice_number("001", "001", sequence)

    def test_parse_rejects_malformed(self):
        with pytest.raises(ValidationError):
            parse_invoice_number("1-1-1")

    def test_sequential_and_contiguous(self, db_session):
        numbers = [next_invoice_number() for _ in range(5)]
        db.session.commit()
        assert numbers == [f"001-001-{n:09d}" for n in range(1, 6)]

    def test_scopes_are_independent(self, db_session):
        assert next_invoice_number("001", "001") == "001-001-000000001"
        assert next_invoice_number("002", "001") == "002-001-000000001"
        assert next_invoice_number("001", "001") == "001-001-000000002"
        db.session.commit()

    def test_uncommitted_number_is_reused(self, db_session):
        assert next_invoice_number() == "001-001-000000001"
        db.session.rollback()
        assert next_invoice_number() == "001-001-000000001"
        db.session.commit()

    def test_scope_must_be_three_digits(self, db_session):
        with pytest.raises(ValidationError):
            identifier_service.next_invoice_number("1", "001")
