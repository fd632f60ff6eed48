"""Typed errors for reconciliation and traceability: pure Python.

Each class carries a machine-readable ``code`` so callers can branch on the
type rather than on the message text. Duplicates are not errors: they are
reported as an ingestion outcome.
"""

from __future__ import annotations


class TraceabilityError(Exception):
    """Base class for every error raised by this package."""

    code: str = "TRACEABILITY_ERROR"


class InvalidRequestError(TraceabilityError):
    """A caller supplied an argument that can never succeed."""

    code: str = "INVALID_REQUEST"


# ── Ingestion ───────────────────────────────────────────────────────────


class InvoiceParseError(TraceabilityError):
    """The document is malformed or lacks what is needed to identify it."""

    code: str = "PARSE_ERROR"

    def __init__(self, reason: str, filename: str | None = None):
        self.reason = reason
        self.filename = filename
        super().__init__(reason)


class ImportConflictError(TraceabilityError):
    """Someone else imported the same invoice between analysis and commit."""

    code: str = "IMPORT_CONFLICT"

    def __init__(self, business_key: str, existing_id: int | None = None):
        self.business_key = business_key
        self.existing_id = existing_id
        super().__init__(
            f"Fattura {business_key} importata nel frattempo da un'altra operazione"
        )


class ResolutionError(TraceabilityError):
    """A line's chosen ingredient is missing or inactive at commit time."""

    code: str = "RESOLUTION_FAILED"

    def __init__(self, line_number: int, ingredient_id: int | None, reason: str):
        self.line_number = line_number
        self.ingredient_id = ingredient_id
        super().__init__(reason)


# ── Workflow ────────────────────────────────────────────────────────────


class InvoiceNotFoundError(TraceabilityError):
    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: int):
        self.invoice_id = invoice_id
        super().__init__(f"Importazione {invoice_id} non trovata")


class AlreadyCancelledError(TraceabilityError):
    """Cancelling an invoice twice is a user error."""

    code: str = "ALREADY_CANCELLED"

    def __init__(self, invoice_id: int):
        self.invoice_id = invoice_id
        super().__init__(f"Importazione {invoice_id} già annullata")


class MappingNotFoundError(TraceabilityError):
    code: str = "MAPPING_NOT_FOUND"

    def __init__(self, mapping_id: int):
        self.mapping_id = mapping_id
        super().__init__(f"Mapping {mapping_id} non trovato")


class IngredientNotFoundError(TraceabilityError):
    code: str = "INGREDIENT_NOT_FOUND"

    def __init__(self, ingredient_id: int):
        self.ingredient_id = ingredient_id
        super().__init__(f"Ingrediente {ingredient_id} non trovato")


# ── Ledger ──────────────────────────────────────────────────────────────


class LotNotFoundError(TraceabilityError):
    code: str = "LOT_NOT_FOUND"

    def __init__(self, lot_ref):
        self.lot_ref = lot_ref
        super().__init__(f"Lotto {lot_ref} non trovato")


class AmbiguousLotCodeError(TraceabilityError):
    """A lot code matches lots of several ingredients."""

    code: str = "AMBIGUOUS_LOT_CODE"

    def __init__(self, lot_code: str, ingredient_ids: list[int]):
        self.lot_code = lot_code
        self.ingredient_ids = ingredient_ids
        super().__init__(
            f"Codice lotto {lot_code} presente per più ingredienti: {ingredient_ids}"
        )


class ConsumptionError(TraceabilityError):
    """Base class for failures raised by lot consumption."""

    code: str = "CONSUMPTION_ERROR"


class InsufficientLotQuantityError(ConsumptionError):
    """Requested quantity exceeds what is left in the lot."""

    code: str = "INSUFFICIENT_QUANTITY"

    def __init__(self, lot_ref, requested: float, available: float):
        self.lot_ref = lot_ref
        self.requested = requested
        self.available = available
        super().__init__(
            f"Quantità insufficiente nel lotto {lot_ref}: "
            f"richiesti {requested}, disponibili {available}"
        )


class LotUnavailableError(ConsumptionError):
    """The lot exists but its status forbids drawing from it."""

    code: str = "LOT_UNAVAILABLE"

    def __init__(self, lot_ref, status: str):
        self.lot_ref = lot_ref
        self.status = status
        super().__init__(f"Lotto {lot_ref} non utilizzabile (stato: {status})")
