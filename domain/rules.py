"""Reconciliation rules: pure Python, zero external dependencies.

Business-key construction, line/invoice status decisions and expiry
urgency. Only stdlib and domain imports allowed.
"""

from __future__ import annotations

from datetime import date

from domain.errors import InvoiceParseError
from domain.models import (
    InvoiceStatus,
    LineStatus,
    MatchProposal,
    MatchSource,
    ParsedInvoice,
    Urgency,
)


def make_business_key(tax_id: str | None, number: str | None, year: int) -> str:
    """``taxId_number_year``; a missing tax id or number is a parse error."""
    tax_id = "".join((tax_id or "").split())
    number = "".join((number or "").split())
    if not tax_id:
        raise InvoiceParseError("Partita IVA del fornitore mancante")
    if not number:
        raise InvoiceParseError("Numero documento mancante")
    return f"{tax_id}_{number}_{year}"


def business_key_for(invoice: ParsedInvoice) -> str:
    return make_business_key(invoice.supplier.tax_id, invoice.number, invoice.date.year)


def line_status_for(proposal: MatchProposal | None, ingredient_id: int | None) -> LineStatus:
    """Status a committed line takes given the confirmer's choice."""
    if ingredient_id is None:
        return LineStatus.IGNORED
    if proposal is None or proposal.ingredient_id != ingredient_id:
        return LineStatus.MATCHED_MANUAL
    if proposal.source is MatchSource.EXISTING_MAPPING:
        return LineStatus.MATCHED_EXISTING_MAPPING
    return LineStatus.MATCHED_SUGGESTED


def invoice_status_for(imported: int, errored: int) -> InvoiceStatus:
    """Final invoice status from per-line counters."""
    if errored and not imported:
        return InvoiceStatus.ERROR
    if errored:
        return InvoiceStatus.PARTIALLY_COMMITTED
    return InvoiceStatus.COMMITTED


def days_until(expiry: date, today: date) -> int:
    return (expiry - today).days


def classify_urgency(
    days_left: int,
    critical_days: int = 3,
    urgent_days: int = 7,
) -> Urgency:
    """expired ≤ 0 < critical ≤ 3 < urgent ≤ 7 < attention."""
    if days_left <= 0:
        return Urgency.EXPIRED
    if days_left <= critical_days:
        return Urgency.CRITICAL
    if days_left <= urgent_days:
        return Urgency.URGENT
    return Urgency.ATTENTION


def format_lot_code(prefix: str, year: int, progressive: int) -> str:
    return f"{prefix}-{year}-{progressive:03d}"
