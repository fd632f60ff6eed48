"""Deduplication gate for incoming invoices.

Two identities, both ignoring cancelled imports: the SHA-256 of the raw
bytes, which catches byte-identical re-uploads under any filename, and the
business key ``taxId_number_year``, which catches the same invoice exported
twice with different bytes.
"""

from __future__ import annotations

import hashlib

from sqlalchemy import select
from sqlalchemy.orm import Session

from domain.models import DedupVerdict, DuplicateRef, InvoiceStatus
from tracciabilita.data.models import Invoice


def compute_content_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def _live(stmt):
    return stmt.where(Invoice.status != InvoiceStatus.CANCELLED.value).order_by(Invoice.id)


def find_by_hash(session: Session, content_hash: str) -> Invoice | None:
    """Non-cancelled invoice with this content hash, if any."""
    return session.scalars(_live(select(Invoice).where(Invoice.content_hash == content_hash))).first()


def find_by_business_key(session: Session, business_key: str) -> Invoice | None:
    """Non-cancelled invoice with this business key, if any."""
    return session.scalars(_live(select(Invoice).where(Invoice.business_key == business_key))).first()


def to_duplicate_ref(invoice: Invoice, verdict: DedupVerdict) -> DuplicateRef:
    return DuplicateRef(
        invoice_id=invoice.id,
        verdict=verdict,
        status=InvoiceStatus(invoice.status),
        imported_at=invoice.imported_at,
        number=invoice.number,
        document_date=invoice.document_date,
        supplier_name=invoice.supplier_name,
    )


def check_duplicate(
    session: Session,
    content_hash: str,
    business_key: str | None = None,
) -> tuple[DedupVerdict, DuplicateRef | None]:
    """Classify a document as new or duplicate; read-only.

    The hash is checked first; the business key only when given.
    """
    prior = find_by_hash(session, content_hash)
    if prior is not None:
        return DedupVerdict.DUPLICATE_BY_HASH, to_duplicate_ref(prior, DedupVerdict.DUPLICATE_BY_HASH)
    if business_key:
        prior = find_by_business_key(session, business_key)
        if prior is not None:
            verdict = DedupVerdict.DUPLICATE_BY_BUSINESS_KEY
            return verdict, to_duplicate_ref(prior, verdict)
    return DedupVerdict.NEW, None
