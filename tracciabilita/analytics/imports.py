"""Import listing and statistics.

Listings hide cancelled imports unless a status filter asks for them.
"""

from __future__ import annotations

import math
from datetime import date, datetime, time

import pandas as pd
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from domain.models import InvoiceStatus
from tracciabilita.data.models import Invoice, StockMovement


def list_imports(
    session: Session,
    page: int = 1,
    per_page: int = 20,
    status: str | None = None,
    supplier: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> dict:
    """Paginated imports, newest first.

    *supplier* matches a name substring or the exact tax id; the date range
    applies to the document date. Returns ``{"items", "total", "page", "pages"}``
    where items is a DataFrame.
    """
    page = max(page, 1)
    stmt = select(Invoice)
    if status:
        stmt = stmt.where(Invoice.status == InvoiceStatus(status).value)
    else:
        stmt = stmt.where(Invoice.status != InvoiceStatus.CANCELLED.value)
    if supplier:
        stmt = stmt.where(
            func.lower(Invoice.supplier_name).contains(supplier.lower())
            | (Invoice.supplier_tax_id == supplier)
        )
    if date_from:
        stmt = stmt.where(Invoice.document_date >= date_from)
    if date_to:
        stmt = stmt.where(Invoice.document_date <= date_to)

    total = session.scalar(select(func.count()).select_from(stmt.subquery()))
    invoices = session.scalars(
        stmt.order_by(Invoice.imported_at.desc(), Invoice.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    ).all()
    items = pd.DataFrame(
        [
            {
                "id": inv.id,
                "business_key": inv.business_key,
                "filename": inv.filename,
                "number": inv.number,
                "document_date": inv.document_date,
                "supplier": inv.supplier_name,
                "supplier_tax_id": inv.supplier_tax_id,
                "total_amount": inv.total_amount,
                "status": inv.status,
                "lines_total": inv.lines_total,
                "lines_imported": inv.lines_imported,
                "lines_ignored": inv.lines_ignored,
                "lines_errored": inv.lines_errored,
                "imported_at": inv.imported_at,
            }
            for inv in invoices
        ],
        columns=[
            "id", "business_key", "filename", "number", "document_date", "supplier",
            "supplier_tax_id", "total_amount", "status", "lines_total",
            "lines_imported", "lines_ignored", "lines_errored", "imported_at",
        ],
    )
    return {
        "items": items,
        "total": total,
        "page": page,
        "pages": math.ceil(total / per_page) if per_page else 1,
    }


def import_statistics(
    session: Session,
    date_from: date | None = None,
    date_to: date | None = None,
    top_suppliers: int = 10,
) -> dict:
    """Aggregates over imports in an optional import-date range.

    ``by_status``: status → {count, total}. ``by_supplier``: DataFrame of the
    suppliers with most non-cancelled imports (count, total, last import).
    ``movements``: inbound movements created from invoices.
    """
    filters = []
    if date_from:
        filters.append(Invoice.imported_at >= datetime.combine(date_from, time.min))
    if date_to:
        filters.append(Invoice.imported_at <= datetime.combine(date_to, time.max))

    status_stmt = select(
        Invoice.status,
        func.count(Invoice.id).label("count"),
        func.sum(Invoice.total_amount).label("total"),
    ).group_by(Invoice.status)
    for condition in filters:
        status_stmt = status_stmt.where(condition)
    by_status = {
        row.status: {"count": row.count, "total": round(row.total or 0.0, 2)}
        for row in session.execute(status_stmt)
    }

    supplier_rows = session.execute(
        select(
            Invoice.supplier_tax_id,
            func.max(Invoice.supplier_name).label("supplier"),
            func.count(Invoice.id).label("count"),
            func.sum(Invoice.total_amount).label("total"),
            func.max(Invoice.imported_at).label("last_import"),
        )
        .where(Invoice.status != InvoiceStatus.CANCELLED.value, *filters)
        .group_by(Invoice.supplier_tax_id)
        .order_by(func.count(Invoice.id).desc(), func.sum(Invoice.total_amount).desc())
        .limit(top_suppliers)
    ).all()
    by_supplier = pd.DataFrame(
        supplier_rows,
        columns=["supplier_tax_id", "supplier", "count", "total", "last_import"],
    )

    movements = session.scalar(
        select(func.count(StockMovement.id))
        .where(StockMovement.document_type == "invoice")
        .where(StockMovement.kind == "inbound")
    )

    return {
        "by_status": by_status,
        "by_supplier": by_supplier,
        "movements": movements,
    }
