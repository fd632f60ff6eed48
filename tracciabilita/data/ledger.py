"""Lot & movement ledger.

Lots are traceable batches of an ingredient; stock movements are append-only
entries with a signed quantity. ``consume`` draws from a lot with a single
guarded UPDATE, so concurrent draws can never push the remaining quantity
below zero. ``reverse_document`` undoes what an invoice put into stock by
appending compensating movements rather than deleting history.

Functions take a session and do not commit unless stated; the caller owns
the transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from domain.errors import (
    InsufficientLotQuantityError,
    InvalidRequestError,
    LotNotFoundError,
    LotUnavailableError,
)
from domain.models import CONSUMABLE_LOT_STATUSES, IngredientRef, LotStatus, MovementKind
from domain.normalization import lot_code_prefix
from domain.rules import format_lot_code
from tracciabilita.data.models import (
    Lot,
    LotConsumption,
    StockMovement,
    utcnow,
)

logger = logging.getLogger(__name__)

QUANTITY_DECIMALS = 3

_CONSUMABLE = [s.value for s in CONSUMABLE_LOT_STATUSES]
# Stock excludes lots that can no longer be sold.
_OUT_OF_STOCK = [LotStatus.EXPIRED.value, LotStatus.RECALLED.value]


def _q(value: float) -> float:
    return round(float(value), QUANTITY_DECIMALS)


@dataclass
class ReversalReport:
    movements_reversed: int = 0
    lots_reversed: int = 0
    warnings: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Lot codes
# ---------------------------------------------------------------------------


def next_lot_code(session: Session, ingredient: IngredientRef, year: int, prefix_length: int = 10) -> str:
    """``PREFIX-YEAR-NNN`` with the next free progressive for this ingredient."""
    prefix = lot_code_prefix(ingredient.name, prefix_length)
    pattern = f"{prefix}-{year}-"
    codes = session.scalars(
        select(Lot.code)
        .where(Lot.ingredient_id == ingredient.id)
        .where(Lot.code.like(f"{pattern}%"))
    )
    highest = 0
    for code in codes:
        tail = code[len(pattern):]
        if tail.isdigit():
            highest = max(highest, int(tail))
    return format_lot_code(prefix, year, highest + 1)


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def create_lot(
    session: Session,
    ingredient: IngredientRef,
    quantity: float,
    unit: str | None,
    unit_price: float = 0.0,
    arrival_date: date | None = None,
    expiry_date: date | None = None,
    *,
    code: str | None = None,
    supplier_id: int | None = None,
    supplier_name: str | None = None,
    supplier_tax_id: str | None = None,
    invoice_id: int | None = None,
    document_type: str = "invoice",
    document_key: str | None = None,
    document_number: str | None = None,
    document_date: date | None = None,
    line_number: int | None = None,
    supplier_lot_code: str | None = None,
    prefix_length: int = 10,
) -> Lot:
    """Create an available lot holding *quantity* of *ingredient*."""
    quantity = _q(quantity)
    if quantity <= 0:
        raise InvalidRequestError("La quantità del lotto deve essere positiva")
    arrival_date = arrival_date or date.today()
    code = code or next_lot_code(session, ingredient, arrival_date.year, prefix_length)
    lot = Lot(
        code=code,
        ingredient_id=ingredient.id,
        initial_quantity=quantity,
        remaining_quantity=quantity,
        unit=unit or ingredient.unit,
        unit_price=unit_price or 0.0,
        arrival_date=arrival_date,
        expiry_date=expiry_date,
        supplier_id=supplier_id,
        supplier_name=supplier_name,
        supplier_tax_id=supplier_tax_id,
        invoice_id=invoice_id,
        document_type=document_type,
        document_key=document_key,
        document_number=document_number,
        document_date=document_date,
        line_number=line_number,
        supplier_lot_code=supplier_lot_code,
        status=LotStatus.AVAILABLE.value,
    )
    session.add(lot)
    session.flush()
    return lot


def record_movement(
    session: Session,
    lot: Lot | None,
    ingredient_id: int,
    quantity: float,
    unit: str | None,
    kind: MovementKind,
    *,
    document_type: str,
    document_ref: str | None,
    invoice_id: int | None = None,
    unit_price: float | None = None,
    note: str | None = None,
    actor: str = "admin",
) -> StockMovement:
    """Append a movement; *quantity* is signed (inbound positive)."""
    movement = StockMovement(
        kind=kind.value,
        ingredient_id=ingredient_id,
        lot_id=lot.id if lot is not None else None,
        quantity=_q(quantity),
        unit=unit,
        unit_price=unit_price,
        document_type=document_type,
        document_ref=document_ref,
        invoice_id=invoice_id,
        note=note,
        actor=actor,
    )
    session.add(movement)
    session.flush()
    return movement


# ---------------------------------------------------------------------------
# Consumption
# ---------------------------------------------------------------------------


def consume(
    session: Session,
    lot_id: int,
    quantity: float,
    order_ref: str,
    *,
    order_number: str | None = None,
    customer_name: str | None = None,
    actor: str = "admin",
) -> LotConsumption:
    """Draw *quantity* from a lot for an order.

    Fails with InsufficientLotQuantityError or LotUnavailableError, leaving
    the lot untouched, rather than clamping. Does not commit.
    """
    quantity = _q(quantity)
    if quantity <= 0:
        raise InvalidRequestError("La quantità da scaricare deve essere positiva")

    result = session.execute(
        update(Lot)
        .where(Lot.id == lot_id)
        .where(Lot.remaining_quantity >= quantity)
        .where(Lot.status.in_(_CONSUMABLE))
        .where(Lot.reversed_at.is_(None))
        .values(
            remaining_quantity=func.round(Lot.remaining_quantity - quantity, QUANTITY_DECIMALS),
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    lot = session.get(Lot, lot_id, populate_existing=True)
    if result.rowcount == 0:
        if lot is None:
            raise LotNotFoundError(lot_id)
        if lot.reversed_at is not None:
            raise LotUnavailableError(lot.code, "stornato")
        if lot.status not in _CONSUMABLE:
            raise LotUnavailableError(lot.code, lot.status)
        raise InsufficientLotQuantityError(lot.code, quantity, lot.remaining_quantity)

    lot.status = (
        LotStatus.EXHAUSTED.value if lot.remaining_quantity <= 0 else LotStatus.IN_USE.value
    )
    movement = record_movement(
        session, lot, lot.ingredient_id, -quantity, lot.unit, MovementKind.OUTBOUND,
        document_type="order", document_ref=order_ref, actor=actor,
    )
    consumption = LotConsumption(
        lot_id=lot.id,
        order_ref=order_ref,
        order_number=order_number,
        customer_name=customer_name,
        quantity=quantity,
        movement_id=movement.id,
    )
    session.add(consumption)
    session.flush()
    return consumption


def consume_fefo(
    session: Session,
    ingredient_id: int,
    quantity: float,
    order_ref: str,
    **order_info,
) -> list[LotConsumption]:
    """Draw across lots first-expired-first-out; a picking helper over ``consume``.

    Lots without expiry go last; ties fall back to arrival date. Nothing is
    drawn if the usable lots cannot cover the request.
    """
    quantity = _q(quantity)
    lots = list(session.scalars(
        select(Lot)
        .where(Lot.ingredient_id == ingredient_id)
        .where(Lot.status.in_(_CONSUMABLE))
        .where(Lot.reversed_at.is_(None))
        .where(Lot.remaining_quantity > 0)
        .order_by(
            Lot.expiry_date.is_(None), Lot.expiry_date, Lot.arrival_date, Lot.id,
        )
    ))
    available = _q(sum(lot.remaining_quantity for lot in lots))
    if available < quantity:
        raise InsufficientLotQuantityError(f"ingrediente {ingredient_id}", quantity, available)

    consumptions = []
    left = quantity
    for lot in lots:
        if left <= 0:
            break
        take = _q(min(left, lot.remaining_quantity))
        consumptions.append(consume(session, lot.id, take, order_ref, **order_info))
        left = _q(left - take)
    return consumptions


# ---------------------------------------------------------------------------
# Reversal
# ---------------------------------------------------------------------------


def reverse_document(
    session: Session,
    invoice_id: int,
    reason: str,
    actor: str = "admin",
) -> ReversalReport:
    """Undo the stock effect of every live inbound movement of an invoice.

    Each movement gets a compensating reversal entry for what is still in
    the lot, and the lot is flagged reversed with nothing left to draw.
    Consumption already recorded against a lot stays as history; that case
    is returned and logged as a warning. Does not commit.
    """
    report = ReversalReport()
    now = utcnow()
    movements = session.scalars(
        select(StockMovement)
        .where(StockMovement.invoice_id == invoice_id)
        .where(StockMovement.kind == MovementKind.INBOUND.value)
        .where(StockMovement.reversed_by_id.is_(None))
        .order_by(StockMovement.id)
    ).all()

    for movement in movements:
        lot = session.get(Lot, movement.lot_id) if movement.lot_id else None
        amount = movement.quantity
        if lot is not None and lot.reversed_at is None:
            consumed = _q(lot.initial_quantity - lot.remaining_quantity)
            amount = lot.remaining_quantity
            if consumed > 0:
                message = (
                    f"Lotto {lot.code}: {consumed} {lot.unit or ''} già utilizzati "
                    f"da altri documenti; stornata solo la quantità residua {amount}"
                ).replace("  ", " ")
                report.warnings.append(message)
                logger.warning(message)
            lot.remaining_quantity = 0.0
            lot.status = LotStatus.EXHAUSTED.value
            lot.reversed_at = now
            lot.reversal_reason = reason
            report.lots_reversed += 1

        reversal = record_movement(
            session, lot, movement.ingredient_id, -amount, movement.unit,
            MovementKind.REVERSAL,
            document_type=movement.document_type,
            document_ref=movement.document_ref,
            invoice_id=invoice_id,
            unit_price=movement.unit_price,
            note=reason,
            actor=actor,
        )
        reversal.reverses_id = movement.id
        movement.reversed_by_id = reversal.id
        report.movements_reversed += 1

    session.flush()
    return report


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


def set_lot_status(
    session: Session,
    lot_id: int,
    status: str | LotStatus,
    note: str | None = None,
    actor: str = "admin",
) -> Lot:
    """Apply a manual status (recall, quarantine, …) and commit."""
    try:
        new_status = LotStatus(status)
    except ValueError:
        raise InvalidRequestError(f"Stato lotto non valido: {status}") from None
    lot = session.get(Lot, lot_id)
    if lot is None:
        raise LotNotFoundError(lot_id)
    if new_status is LotStatus.EXHAUSTED and lot.remaining_quantity > 0:
        raise InvalidRequestError(
            f"Il lotto {lot.code} ha ancora {lot.remaining_quantity} disponibili"
        )
    previous = lot.status
    lot.status = new_status.value
    if note:
        stamp = utcnow().strftime("%Y-%m-%d %H:%M")
        entry = f"[{stamp}] {actor}: {note}"
        lot.notes = f"{lot.notes}\n{entry}" if lot.notes else entry
    session.commit()
    logger.info("Lotto %s: stato %s -> %s (%s)", lot.code, previous, new_status.value, actor)
    return lot


def mark_expired_lots(session: Session, today: date | None = None) -> int:
    """Flag available/in-use lots past their expiry as expired; commit."""
    today = today or date.today()
    result = session.execute(
        update(Lot)
        .where(Lot.expiry_date.is_not(None))
        .where(Lot.expiry_date < today)
        .where(Lot.status.in_(_CONSUMABLE))
        .where(Lot.reversed_at.is_(None))
        .values(status=LotStatus.EXPIRED.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    session.commit()
    if result.rowcount:
        logger.info("%d lotti segnati come scaduti al %s", result.rowcount, today)
    return result.rowcount


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------


def ingredient_stock(session: Session, ingredient_id: int) -> float:
    """Remaining quantity over live lots, excluding expired and recalled ones."""
    total = session.scalar(
        select(func.coalesce(func.sum(Lot.remaining_quantity), 0.0))
        .where(Lot.ingredient_id == ingredient_id)
        .where(Lot.reversed_at.is_(None))
        .where(Lot.status.not_in(_OUT_OF_STOCK))
    )
    return _q(total)


def movement_balance(session: Session, ingredient_id: int, until: datetime | None = None) -> float:
    """Net signed movement quantity for an ingredient."""
    stmt = select(func.coalesce(func.sum(StockMovement.quantity), 0.0)).where(
        StockMovement.ingredient_id == ingredient_id
    )
    if until is not None:
        stmt = stmt.where(StockMovement.created_at <= until)
    return _q(session.scalar(stmt))


def live_invoice_movements(session: Session, invoice_id: int) -> int:
    """Inbound movements of an invoice not yet compensated by a reversal."""
    return session.scalar(
        select(func.count(StockMovement.id))
        .where(StockMovement.invoice_id == invoice_id)
        .where(StockMovement.kind == MovementKind.INBOUND.value)
        .where(StockMovement.reversed_by_id.is_(None))
    )
