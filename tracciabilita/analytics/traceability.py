"""Traceability queries over lots, consumptions and originating invoices.

All functions are read-only. Row-oriented results are returned as pandas
DataFrames; single-object lookups as plain dicts.
"""

from __future__ import annotations

from datetime import date, timedelta

import pandas as pd
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from domain.errors import AmbiguousLotCodeError, InvalidRequestError, LotNotFoundError
from domain.models import LotStatus
from domain.rules import classify_urgency, days_until
from tracciabilita.config import section
from tracciabilita.data.models import Ingredient, Invoice, Lot, LotConsumption

# Lots that no longer matter for expiry alerts.
_SILENT_STATUSES = [LotStatus.EXHAUSTED.value, LotStatus.RECALLED.value]

TABLE_COLUMNS = [
    "lot_id", "ingredient_id", "ingredient", "category", "lot_code",
    "arrival_date", "expiry_date", "days_to_expiry", "initial_quantity",
    "remaining_quantity", "unit", "unit_price", "supplier", "supplier_tax_id",
    "document_type", "document_number", "document_date", "supplier_lot_code",
    "status", "consumptions",
]

EXPORT_HEADERS = {
    "ingredient": "Prodotto",
    "category": "Categoria",
    "lot_code": "Codice Lotto",
    "arrival_date": "Data Arrivo",
    "expiry_date": "Data Scadenza",
    "days_to_expiry": "Giorni Scadenza",
    "initial_quantity": "Qtà Iniziale",
    "remaining_quantity": "Qtà Attuale",
    "unit": "Unità",
    "unit_price": "Prezzo Unit.",
    "supplier": "Fornitore",
    "supplier_tax_id": "P.IVA Fornitore",
    "document_type": "Tipo Doc.",
    "document_number": "N. Documento",
    "document_date": "Data Documento",
    "supplier_lot_code": "Lotto Fornitore",
    "status": "Stato",
}


def _lot_dict(lot: Lot, ingredient: Ingredient, today: date | None = None) -> dict:
    return {
        "lot_id": lot.id,
        "ingredient_id": ingredient.id,
        "ingredient": ingredient.name,
        "category": ingredient.category,
        "lot_code": lot.code,
        "arrival_date": lot.arrival_date,
        "expiry_date": lot.expiry_date,
        "days_to_expiry": (
            days_until(lot.expiry_date, today) if lot.expiry_date and today else None
        ),
        "initial_quantity": lot.initial_quantity,
        "remaining_quantity": lot.remaining_quantity,
        "unit": lot.unit or ingredient.unit,
        "unit_price": lot.unit_price,
        "supplier": lot.supplier_name,
        "supplier_tax_id": lot.supplier_tax_id,
        "document_type": lot.document_type,
        "document_number": lot.document_number,
        "document_date": lot.document_date,
        "supplier_lot_code": lot.supplier_lot_code,
        "status": lot.status,
        "reversed": lot.reversed_at is not None,
    }


# ---------------------------------------------------------------------------
# Lot → orders
# ---------------------------------------------------------------------------


def trace_by_lot(session: Session, lot_code: str, ingredient_id: int | None = None) -> dict:
    """Ingredient, lot detail, originating document and consumptions of a lot.

    Lot codes are unique per ingredient; pass *ingredient_id* when the same
    code exists for several ingredients.
    """
    stmt = select(Lot).where(Lot.code == lot_code)
    if ingredient_id is not None:
        stmt = stmt.where(Lot.ingredient_id == ingredient_id)
    lots = list(session.scalars(stmt))
    if not lots:
        raise LotNotFoundError(lot_code)
    if len(lots) > 1:
        raise AmbiguousLotCodeError(lot_code, sorted(lot.ingredient_id for lot in lots))
    lot = lots[0]
    ingredient = lot.ingredient

    consumed = sum(c.quantity for c in lot.consumptions)
    detail = _lot_dict(lot, ingredient, date.today())
    detail["consumed_quantity"] = round(consumed, 3)
    detail["percent_consumed"] = (
        round(consumed / lot.initial_quantity * 100, 1) if lot.initial_quantity else 0.0
    )
    detail["reversal_reason"] = lot.reversal_reason
    detail["notes"] = lot.notes

    document = None
    if lot.invoice is not None:
        invoice = lot.invoice
        document = {
            "invoice_id": invoice.id,
            "business_key": invoice.business_key,
            "document_type": invoice.document_type,
            "number": invoice.number,
            "date": invoice.document_date,
            "supplier": invoice.supplier_name,
            "supplier_tax_id": invoice.supplier_tax_id,
            "line_number": lot.line_number,
            "status": invoice.status,
        }

    return {
        "ingredient": {
            "id": ingredient.id,
            "name": ingredient.name,
            "category": ingredient.category,
            "unit": ingredient.unit,
        },
        "lot": detail,
        "document": document,
        "consumptions": [
            {
                "order_ref": c.order_ref,
                "order_number": c.order_number,
                "customer": c.customer_name,
                "quantity": c.quantity,
                "consumed_at": c.consumed_at,
            }
            for c in lot.consumptions
        ],
    }


# ---------------------------------------------------------------------------
# Order → lots
# ---------------------------------------------------------------------------


def trace_by_order(session: Session, order_ref: str) -> pd.DataFrame:
    """Every lot consumption recorded for an order, with its supplier document."""
    rows = session.execute(
        select(
            Ingredient.name.label("ingredient"),
            Ingredient.category,
            Lot.code.label("lot_code"),
            Lot.expiry_date,
            Lot.supplier_name.label("supplier"),
            Lot.document_number,
            Lot.document_date,
            Lot.document_key,
            LotConsumption.quantity,
            Lot.unit,
            LotConsumption.consumed_at,
        )
        .join(Lot, LotConsumption.lot_id == Lot.id)
        .join(Ingredient, Lot.ingredient_id == Ingredient.id)
        .where(LotConsumption.order_ref == order_ref)
        .order_by(LotConsumption.consumed_at, LotConsumption.id)
    ).all()
    return pd.DataFrame(rows, columns=[
        "ingredient", "category", "lot_code", "expiry_date", "supplier",
        "document_number", "document_date", "document_key", "quantity", "unit",
        "consumed_at",
    ])


# ---------------------------------------------------------------------------
# Supplier / document → lots
# ---------------------------------------------------------------------------


def trace_by_supplier_or_document(
    session: Session,
    supplier: str | None = None,
    document_number: str | None = None,
    tax_id: str | None = None,
    include_reversed: bool = False,
) -> pd.DataFrame:
    """Lots matching any of: supplier name substring, document number substring, exact tax id.

    Lots reversed by a cancelled import are left out unless *include_reversed*.
    """
    conditions = []
    if supplier:
        conditions.append(func.lower(Lot.supplier_name).contains(supplier.lower()))
    if document_number:
        conditions.append(Lot.document_number.contains(document_number))
    if tax_id:
        conditions.append(Lot.supplier_tax_id == tax_id)
    if not conditions:
        raise InvalidRequestError("Indicare fornitore, numero documento o partita IVA")

    query = (
        select(Lot, Ingredient)
        .join(Ingredient, Lot.ingredient_id == Ingredient.id)
        .where(or_(*conditions))
    )
    if not include_reversed:
        query = query.where(Lot.reversed_at.is_(None))
    pairs = session.execute(query.order_by(Lot.arrival_date.desc(), Lot.id.desc())).all()
    rows = []
    for lot, ingredient in pairs:
        row = _lot_dict(lot, ingredient)
        row["consumptions"] = len(lot.consumptions)
        rows.append(row)
    return pd.DataFrame(rows, columns=TABLE_COLUMNS + ["reversed"])


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


def expiring_soon(
    session: Session,
    within_days: int | None = None,
    today: date | None = None,
    config: dict | None = None,
) -> pd.DataFrame:
    """Live lots expiring within the window (or already expired), soonest first.

    Exhausted, recalled and reversed lots are left out. Each row carries an
    ``urgency`` tag: expired, critical, urgent or attention.
    """
    cfg = section(config, "traceability")
    within_days = cfg.get("expiry_window_days", 30) if within_days is None else within_days
    today = today or date.today()
    limit = today + timedelta(days=within_days)

    pairs = session.execute(
        select(Lot, Ingredient)
        .join(Ingredient, Lot.ingredient_id == Ingredient.id)
        .where(Lot.expiry_date.is_not(None))
        .where(Lot.expiry_date <= limit)
        .where(Lot.status.not_in(_SILENT_STATUSES))
        .where(Lot.reversed_at.is_(None))
        .where(Lot.remaining_quantity > 0)
    ).all()

    rows = []
    for lot, ingredient in pairs:
        row = _lot_dict(lot, ingredient, today)
        row["urgency"] = classify_urgency(
            row["days_to_expiry"],
            critical_days=cfg.get("critical_days", 3),
            urgent_days=cfg.get("urgent_days", 7),
        ).value
        row["value"] = round(lot.remaining_quantity * (lot.unit_price or 0.0), 2)
        rows.append(row)

    df = pd.DataFrame(rows, columns=[
        "lot_id", "ingredient", "category", "lot_code", "expiry_date",
        "days_to_expiry", "urgency", "remaining_quantity", "unit", "value",
        "supplier", "document_number", "status",
    ])
    return df.sort_values(["days_to_expiry", "lot_id"], kind="stable").reset_index(drop=True)


def expiry_stats(expiring: pd.DataFrame) -> dict:
    """Counts per urgency tag and total value at risk."""
    counts = expiring["urgency"].value_counts() if not expiring.empty else {}
    return {
        "total": len(expiring),
        "expired": int(counts.get("expired", 0)),
        "critical": int(counts.get("critical", 0)),
        "urgent": int(counts.get("urgent", 0)),
        "attention": int(counts.get("attention", 0)),
        "value": round(float(expiring["value"].sum()), 2) if not expiring.empty else 0.0,
    }


# ---------------------------------------------------------------------------
# Table & export
# ---------------------------------------------------------------------------


def traceability_table(
    session: Session,
    *,
    arrival_from: date | None = None,
    arrival_to: date | None = None,
    supplier: str | None = None,
    category: str | None = None,
    ingredient: str | None = None,
    lot_code: str | None = None,
    only_expiring: bool = False,
    only_expired: bool = False,
    today: date | None = None,
    config: dict | None = None,
) -> tuple[pd.DataFrame, dict]:
    """One row per live lot, filtered, with summary stats.

    Returns ``(rows, stats)``; stats hold total, expiring, expired, value,
    categories and suppliers.
    """
    today = today or date.today()
    window = section(config, "traceability").get("expiry_window_days", 30)

    stmt = (
        select(Lot, Ingredient)
        .join(Ingredient, Lot.ingredient_id == Ingredient.id)
        .where(Lot.reversed_at.is_(None))
    )
    if arrival_from:
        stmt = stmt.where(Lot.arrival_date >= arrival_from)
    if arrival_to:
        stmt = stmt.where(Lot.arrival_date <= arrival_to)
    if supplier:
        stmt = stmt.where(func.lower(Lot.supplier_name).contains(supplier.lower()))
    if category:
        stmt = stmt.where(Ingredient.category == category)
    if ingredient:
        stmt = stmt.where(func.lower(Ingredient.name).contains(ingredient.lower()))
    if lot_code:
        stmt = stmt.where(func.lower(Lot.code).contains(lot_code.lower()))
    if only_expiring:
        stmt = stmt.where(Lot.expiry_date > today).where(
            Lot.expiry_date <= today + timedelta(days=window)
        )
    if only_expired:
        stmt = stmt.where(Lot.expiry_date <= today)
    stmt = stmt.order_by(Lot.expiry_date.is_(None), Lot.expiry_date, Lot.id)

    rows = []
    for lot, ing in session.execute(stmt).all():
        row = _lot_dict(lot, ing, today)
        row["consumptions"] = len(lot.consumptions)
        rows.append(row)
    df = pd.DataFrame(rows, columns=TABLE_COLUMNS)

    if df.empty:
        stats = {"total": 0, "expiring": 0, "expired": 0, "value": 0.0,
                 "categories": 0, "suppliers": 0}
    else:
        days = df["days_to_expiry"].dropna()
        stats = {
            "total": len(df),
            "expiring": int(((days > 0) & (days <= window)).sum()),
            "expired": int((days <= 0).sum()),
            "value": round(float((df["remaining_quantity"] * df["unit_price"].fillna(0)).sum()), 2),
            "categories": int(df["category"].nunique()),
            "suppliers": int(df["supplier"].nunique()),
        }
    return df, stats


def export_traceability(session: Session, **filters) -> pd.DataFrame:
    """Compliance export: one row per lot with Italian column headers."""
    df, _ = traceability_table(session, **filters)
    return df[list(EXPORT_HEADERS)].rename(columns=EXPORT_HEADERS)
