"""Tests for domain.rules: business key, status decisions and expiry urgency."""

from datetime import date

import pytest

from domain.errors import InvoiceParseError
from domain.models import (
    InvoiceStatus,
    LineStatus,
    MatchProposal,
    MatchSource,
    ParsedInvoice,
    SupplierInfo,
    Urgency,
)
from domain.rules import (
    business_key_for,
    classify_urgency,
    days_until,
    format_lot_code,
    invoice_status_for,
    line_status_for,
    make_business_key,
)


class TestBusinessKey:
    def test_format(self):
        assert make_business_key("IT12345678901", "FT-100", 2025) == "IT12345678901_FT-100_2025"

    def test_keeps_slashes_strips_spaces(self):
        assert make_business_key("IT1", " 12 / A ", 2024) == "IT1_12/A_2024"

    def test_missing_tax_id_is_parse_error(self):
        with pytest.raises(InvoiceParseError):
            make_business_key(None, "FT-1", 2025)

    def test_missing_number_is_parse_error(self):
        with pytest.raises(InvoiceParseError):
            make_business_key("IT1", "  ", 2025)

    def test_from_parsed_invoice_uses_document_year(self):
        invoice = ParsedInvoice(
            supplier=SupplierInfo(tax_id="IT12345678901"),
            document_type="TD01",
            number="FT-100",
            date=date(2025, 12, 31),
        )
        assert business_key_for(invoice) == "IT12345678901_FT-100_2025"


class TestLineStatus:
    def _proposal(self, source, ingredient_id=1):
        return MatchProposal(ingredient_id=ingredient_id, ingredient_name="Farina 00", score=80, source=source)

    def test_no_ingredient_is_ignored(self):
        assert line_status_for(self._proposal(MatchSource.NAME_SIMILARITY), None) is LineStatus.IGNORED

    def test_accepted_existing_mapping(self):
        proposal = self._proposal(MatchSource.EXISTING_MAPPING)
        assert line_status_for(proposal, 1) is LineStatus.MATCHED_EXISTING_MAPPING

    def test_accepted_suggestion(self):
        for source in (MatchSource.SIMILAR_MAPPING, MatchSource.NAME_SIMILARITY):
            assert line_status_for(self._proposal(source), 1) is LineStatus.MATCHED_SUGGESTED

    def test_different_choice_is_manual(self):
        proposal = self._proposal(MatchSource.EXISTING_MAPPING)
        assert line_status_for(proposal, 2) is LineStatus.MATCHED_MANUAL

    def test_choice_without_proposal_is_manual(self):
        assert line_status_for(None, 5) is LineStatus.MATCHED_MANUAL

    def test_matched_flag(self):
        assert LineStatus.MATCHED_MANUAL.is_matched
        assert not LineStatus.IGNORED.is_matched


class TestInvoiceStatus:
    @pytest.mark.parametrize(
        "imported, errored, expected",
        [
            (3, 0, InvoiceStatus.COMMITTED),
            (0, 0, InvoiceStatus.COMMITTED),
            (2, 1, InvoiceStatus.PARTIALLY_COMMITTED),
            (0, 2, InvoiceStatus.ERROR),
        ],
    )
    def test_from_counters(self, imported, errored, expected):
        assert invoice_status_for(imported, errored) is expected


class TestUrgency:
    @pytest.mark.parametrize(
        "days, expected",
        [
            (-4, Urgency.EXPIRED),
            (0, Urgency.EXPIRED),
            (1, Urgency.CRITICAL),
            (3, Urgency.CRITICAL),
            (4, Urgency.URGENT),
            (7, Urgency.URGENT),
            (8, Urgency.ATTENTION),
            (30, Urgency.ATTENTION),
        ],
    )
    def test_bands(self, days, expected):
        assert classify_urgency(days) is expected

    def test_custom_bands(self):
        assert classify_urgency(5, critical_days=5, urgent_days=10) is Urgency.CRITICAL

    def test_days_until(self):
        assert days_until(date(2025, 3, 15), date(2025, 3, 10)) == 5
        assert days_until(date(2025, 3, 5), date(2025, 3, 10)) == -5


def test_format_lot_code():
    assert format_lot_code("FARINA00", 2025, 7) == "FARINA00-2025-007"
