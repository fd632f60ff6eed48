"""Tests for domain.errors: codes and structured data."""

import pytest

from domain.errors import (
    AlreadyCancelledError,
    AmbiguousLotCodeError,
    ConsumptionError,
    ImportConflictError,
    InsufficientLotQuantityError,
    InvoiceParseError,
    LotUnavailableError,
    ResolutionError,
    TraceabilityError,
)


@pytest.mark.parametrize(
    "error, code",
    [
        (InvoiceParseError("x"), "PARSE_ERROR"),
        (ImportConflictError("IT1_1_2025", 4), "IMPORT_CONFLICT"),
        (ResolutionError(1, 2, "x"), "RESOLUTION_FAILED"),
        (AlreadyCancelledError(3), "ALREADY_CANCELLED"),
        (InsufficientLotQuantityError("L1", 5, 2), "INSUFFICIENT_QUANTITY"),
        (LotUnavailableError("L1", "recalled"), "LOT_UNAVAILABLE"),
        (AmbiguousLotCodeError("L1", [1, 2]), "AMBIGUOUS_LOT_CODE"),
    ],
)
def test_codes_and_base_class(error, code):
    assert error.code == code
    assert isinstance(error, TraceabilityError)


def test_consumption_errors_share_base():
    assert issubclass(InsufficientLotQuantityError, ConsumptionError)
    assert issubclass(LotUnavailableError, ConsumptionError)


def test_insufficient_quantity_carries_amounts():
    err = InsufficientLotQuantityError("FARINA00-2025-001", 12.0, 10.0)
    assert (err.requested, err.available) == (12.0, 10.0)
    assert "FARINA00-2025-001" in str(err)


def test_conflict_carries_key():
    err = ImportConflictError("IT1_FT-1_2025", existing_id=9)
    assert err.business_key == "IT1_FT-1_2025"
    assert err.existing_id == 9
