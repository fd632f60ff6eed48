"""Domain models: pure Python, zero external dependencies.

Only stdlib imports allowed: dataclasses, datetime, enum.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


class InvoiceStatus(Enum):
    """Lifecycle status of an imported supplier invoice."""

    ANALYZED = "analyzed"
    COMMITTED = "committed"
    PARTIALLY_COMMITTED = "partially-committed"
    CANCELLED = "cancelled"
    ERROR = "error"
    DUPLICATE = "duplicate"


class LineStatus(Enum):
    """Resolution status of a single invoice line."""

    UNMATCHED = "unmatched"
    MATCHED_EXISTING_MAPPING = "matched-existing-mapping"
    MATCHED_SUGGESTED = "matched-suggested"
    MATCHED_MANUAL = "matched-manual"
    IGNORED = "ignored"
    ERROR = "error"

    @property
    def is_matched(self) -> bool:
        return self.value.startswith("matched-")


class LotStatus(Enum):
    """Status of an inventory lot."""

    AVAILABLE = "available"
    IN_USE = "in-use"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"
    RECALLED = "recalled"
    QUARANTINED = "quarantined"


# Lots in these states may still be drawn from.
CONSUMABLE_LOT_STATUSES = (LotStatus.AVAILABLE, LotStatus.IN_USE)


class MovementKind(Enum):
    """Kind of stock movement."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"
    REVERSAL = "reversal"


class DedupVerdict(Enum):
    """Outcome of the deduplication gate."""

    NEW = "new"
    DUPLICATE_BY_HASH = "duplicate-by-hash"
    DUPLICATE_BY_BUSINESS_KEY = "duplicate-by-business-key"


class OutcomeKind(Enum):
    """Per-document outcome of an ingestion call."""

    ANALYZED = "analyzed"
    DUPLICATE = "duplicate"
    PARSE_ERROR = "parse_error"


class MatchSource(Enum):
    """Where a line resolution proposal came from."""

    EXISTING_MAPPING = "existing-mapping"
    SIMILAR_MAPPING = "similar-mapping"
    NAME_SIMILARITY = "name-similarity"


class Urgency(Enum):
    """Expiry urgency tag for a lot."""

    EXPIRED = "expired"
    CRITICAL = "critical"
    URGENT = "urgent"
    ATTENTION = "attention"


# ── Value Objects ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Address:
    street: str | None = None
    postal_code: str | None = None
    city: str | None = None
    province: str | None = None

    def as_text(self) -> str | None:
        parts = [
            self.street,
            " ".join(p for p in (self.postal_code, self.city) if p) or None,
            f"({self.province})" if self.province else None,
        ]
        text = " ".join(p for p in parts if p)
        return text or None


@dataclass(frozen=True)
class SupplierInfo:
    """Supplier identity as printed on the invoice header."""

    tax_id: str | None
    fiscal_code: str | None = None
    company_name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    address: Address = field(default_factory=Address)

    @property
    def display_name(self) -> str:
        """Company name, else "first last", else the tax id."""
        if self.company_name:
            return self.company_name
        person = " ".join(p for p in (self.first_name, self.last_name) if p)
        return person or (self.tax_id or "")


@dataclass(frozen=True)
class ShipmentRef:
    """A delivery note (DDT) referenced by the invoice."""

    number: str
    date: date | None = None


@dataclass(frozen=True)
class InvoiceLineData:
    """One parsed line item, before any resolution."""

    line_number: int
    description: str
    quantity: float = 0.0
    unit: str = "PZ"
    unit_price: float = 0.0
    total_price: float = 0.0
    vat_rate: float = 0.0
    article_code: str | None = None
    supplier_lot_code: str | None = None
    expiry_date: date | None = None


@dataclass(frozen=True)
class ParsedInvoice:
    """Canonical invoice produced by the parser."""

    supplier: SupplierInfo
    document_type: str
    number: str | None
    date: date
    currency: str = "EUR"
    taxable_amount: float = 0.0
    tax_amount: float = 0.0
    total_amount: float = 0.0
    shipments: list[ShipmentRef] = field(default_factory=list)
    lines: list[InvoiceLineData] = field(default_factory=list)

    @property
    def arrival_date(self) -> date:
        """First shipment date, else the document date."""
        for shipment in self.shipments:
            if shipment.date is not None:
                return shipment.date
        return self.date


@dataclass(frozen=True)
class IngredientRef:
    """An active ingredient from the external directory."""

    id: int
    name: str
    category: str | None = None
    unit: str | None = None
    active: bool = True


@dataclass(frozen=True)
class SupplierRef:
    """An internal supplier record found by tax id."""

    id: int
    name: str
    tax_id: str | None = None


# ── Entities ────────────────────────────────────────────────────────────


@dataclass
class SupplierMapping:
    """A learned (supplier, description) → ingredient association."""

    supplier_tax_id: str
    description: str
    ingredient_id: int
    ingredient_name: str | None = None
    ingredient_category: str | None = None
    original_description: str | None = None
    supplier_unit: str | None = None
    internal_unit: str | None = None
    conversion_factor: float = 1.0
    usage_count: int = 1
    last_used_at: datetime | None = None
    confirmed_manually: bool = False
    similarity_score: float | None = None
    active: bool = True
    id: int | None = None


@dataclass(frozen=True)
class SimilarMapping:
    """An existing mapping of the same supplier scored against a new description."""

    mapping: SupplierMapping
    score: int


@dataclass(frozen=True)
class MatchProposal:
    """The resolution proposed for a line at analysis time."""

    ingredient_id: int
    ingredient_name: str
    score: int
    source: MatchSource
    mapping_id: int | None = None
    conversion_factor: float = 1.0


@dataclass
class AnalyzedLine:
    """A parsed line with its resolution metadata."""

    data: InvoiceLineData
    status: LineStatus = LineStatus.UNMATCHED
    proposal: MatchProposal | None = None
    similar_mappings: list[SimilarMapping] = field(default_factory=list)


@dataclass(frozen=True)
class DuplicateRef:
    """Reference to the prior invoice that made a document a duplicate."""

    invoice_id: int
    verdict: DedupVerdict
    status: InvoiceStatus
    imported_at: datetime | None
    number: str | None
    document_date: date | None
    supplier_name: str | None


@dataclass(frozen=True)
class UploadedDocument:
    """A raw document as received at the ingestion boundary."""

    filename: str
    content: bytes
    size: int | None = None

    @property
    def byte_size(self) -> int:
        return self.size if self.size is not None else len(self.content)


@dataclass
class InvoiceDraft:
    """An analyzed, not yet committed invoice."""

    filename: str
    size: int
    content_hash: str
    business_key: str
    invoice: ParsedInvoice
    lines: list[AnalyzedLine]
    existing_supplier: SupplierRef | None = None
    ingredients: list[IngredientRef] = field(default_factory=list)
    status: InvoiceStatus = InvoiceStatus.ANALYZED


@dataclass(frozen=True)
class IngestionOutcome:
    """Per-document result of an ingestion call."""

    filename: str
    kind: OutcomeKind
    draft: InvoiceDraft | None = None
    duplicate: DuplicateRef | None = None
    error: str | None = None


@dataclass(frozen=True)
class LineDecision:
    """The confirmer's final choice for one line.

    ``ingredient_id`` None means the line is ignored.
    """

    line_number: int
    ingredient_id: int | None = None
    lot_code: str | None = None
    expiry_date: date | None = None
    mapping_id: int | None = None


@dataclass(frozen=True)
class CommitResult:
    invoice_id: int
    status: InvoiceStatus
    lines_imported: int
    lines_ignored: int
    lines_errored: int
    lines_manual: int
    movements_created: int
    errors: dict[int, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CancellationResult:
    invoice_id: int
    status: InvoiceStatus
    movements_reversed: int
    lots_reversed: int
    warnings: list[str] = field(default_factory=list)
