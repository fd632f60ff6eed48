"""Tests for domain.models: value objects and their derived properties."""

from datetime import date

from domain.models import (
    Address,
    CONSUMABLE_LOT_STATUSES,
    LotStatus,
    ParsedInvoice,
    ShipmentRef,
    SupplierInfo,
    UploadedDocument,
)


class TestSupplierInfo:
    def test_display_name_prefers_company(self):
        info = SupplierInfo(tax_id="IT1", company_name="Molino Rossi", first_name="Mario", last_name="Rossi")
        assert info.display_name == "Molino Rossi"

    def test_display_name_person(self):
        info = SupplierInfo(tax_id="IT1", first_name="Mario", last_name="Rossi")
        assert info.display_name == "Mario Rossi"

    def test_display_name_falls_back_to_tax_id(self):
        assert SupplierInfo(tax_id="IT1").display_name == "IT1"

    def test_display_name_empty(self):
        assert SupplierInfo(tax_id=None).display_name == ""


class TestAddress:
    def test_as_text(self):
        address = Address(street="Via Roma 1", postal_code="09100", city="Cagliari", province="CA")
        assert address.as_text() == "Via Roma 1 09100 Cagliari (CA)"

    def test_empty(self):
        assert Address().as_text() is None


class TestParsedInvoice:
    def _invoice(self, shipments):
        return ParsedInvoice(
            supplier=SupplierInfo(tax_id="IT1"),
            document_type="TD01",
            number="1",
            date=date(2025, 3, 10),
            shipments=shipments,
        )

    def test_arrival_date_from_first_dated_shipment(self):
        invoice = self._invoice([ShipmentRef("A"), ShipmentRef("B", date(2025, 3, 7))])
        assert invoice.arrival_date == date(2025, 3, 7)

    def test_arrival_date_defaults_to_document_date(self):
        assert self._invoice([]).arrival_date == date(2025, 3, 10)


class TestUploadedDocument:
    def test_byte_size_from_content(self):
        assert UploadedDocument("a.xml", b"12345").byte_size == 5

    def test_byte_size_declared(self):
        assert UploadedDocument("a.xml", b"12345", size=99).byte_size == 99


def test_consumable_statuses():
    assert set(CONSUMABLE_LOT_STATUSES) == {LotStatus.AVAILABLE, LotStatus.IN_USE}
