"""Reconciliation workflow: analyze → confirm → commit, or cancel.

``analyze_document`` is read-only: it hashes, parses, checks for duplicates
and proposes an ingredient for every line. Nothing is stored until
``commit_import`` (or ``ignore_import``) runs, which writes the invoice, its
lots, movements and mapping updates in one transaction. ``cancel_import``
compensates all of it, also in one transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from domain.errors import (
    AlreadyCancelledError,
    ImportConflictError,
    InvalidRequestError,
    InvoiceNotFoundError,
    InvoiceParseError,
    ResolutionError,
    TraceabilityError,
)
from domain.matching import best_ingredient_match
from domain.models import (
    AnalyzedLine,
    CancellationResult,
    CommitResult,
    DedupVerdict,
    IngestionOutcome,
    IngredientRef,
    InvoiceDraft,
    InvoiceLineData,
    InvoiceStatus,
    LineDecision,
    LineStatus,
    MatchProposal,
    MatchSource,
    MovementKind,
    OutcomeKind,
    SupplierMapping,
    UploadedDocument,
)
from domain.ports import IngredientDirectory, InvoiceParser, SupplierDirectory
from domain.rules import business_key_for, invoice_status_for, line_status_for
from tracciabilita.adapters.inbound.fatturapa_parser import FatturaPAParser
from tracciabilita.adapters.outbound.sqlalchemy_directories import (
    SqlAlchemyIngredientDirectory,
    SqlAlchemySupplierDirectory,
)
from tracciabilita.config import section
from tracciabilita.data import ledger
from tracciabilita.data.dedup import check_duplicate, compute_content_hash
from tracciabilita.data.mapping_store import SqlAlchemyMappingStore
from tracciabilita.data.models import (
    Invoice,
    InvoiceLine,
    InvoiceShipment,
    Lot,
    utcnow,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


def resolve_line(
    line: InvoiceLineData,
    supplier_tax_id: str | None,
    store: SqlAlchemyMappingStore,
    active_ingredients: list[IngredientRef],
    config: dict | None = None,
) -> AnalyzedLine:
    """Propose an ingredient for one line.

    Precedence: exact mapping (score 100, no scoring at all), then the best
    similar mapping of the same supplier above the similar-mapping
    threshold, then the best ingredient by name coverage above the
    suggestion threshold. Proposals pointing at inactive ingredients are
    skipped.
    """
    matching = section(config, "matching")
    shown = section(config, "mapping_store").get("similar_shown", 3)
    active_ids = {i.id for i in active_ingredients}

    if supplier_tax_id:
        existing = store.lookup(supplier_tax_id, line.description)
        if existing is not None and existing.ingredient_id in active_ids:
            return AnalyzedLine(
                data=line,
                status=LineStatus.MATCHED_EXISTING_MAPPING,
                proposal=_proposal_from_mapping(existing, 100, MatchSource.EXISTING_MAPPING),
            )
        similar = store.search_similar(supplier_tax_id, line.description)
    else:
        similar = []

    proposal = None
    threshold = matching.get("similar_mapping_threshold", 60)
    for candidate in similar:
        if candidate.score < threshold:
            break
        if candidate.mapping.ingredient_id in active_ids:
            proposal = _proposal_from_mapping(
                candidate.mapping, candidate.score, MatchSource.SIMILAR_MAPPING
            )
            break

    if proposal is None:
        match = best_ingredient_match(
            line.description,
            active_ingredients,
            threshold=matching.get("suggestion_threshold", 40),
        )
        if match is not None:
            ingredient, score = match
            proposal = MatchProposal(
                ingredient_id=ingredient.id,
                ingredient_name=ingredient.name,
                score=score,
                source=MatchSource.NAME_SIMILARITY,
            )

    return AnalyzedLine(
        data=line,
        status=LineStatus.MATCHED_SUGGESTED if proposal else LineStatus.UNMATCHED,
        proposal=proposal,
        similar_mappings=similar[:shown],
    )


def _proposal_from_mapping(mapping: SupplierMapping, score: int, source: MatchSource) -> MatchProposal:
    return MatchProposal(
        ingredient_id=mapping.ingredient_id,
        ingredient_name=mapping.ingredient_name or "",
        score=score,
        source=source,
        mapping_id=mapping.id,
        conversion_factor=mapping.conversion_factor,
    )


def analyze_document(
    session: Session,
    document: UploadedDocument,
    *,
    parser: InvoiceParser | None = None,
    ingredients: IngredientDirectory | None = None,
    suppliers: SupplierDirectory | None = None,
    config: dict | None = None,
) -> IngestionOutcome:
    """Hash, parse, dedup-check and resolve one document. Writes nothing."""
    parser = parser or FatturaPAParser()
    ingredients = ingredients or SqlAlchemyIngredientDirectory(session)
    suppliers = suppliers or SqlAlchemySupplierDirectory(session)

    content_hash = compute_content_hash(document.content)
    verdict, prior = check_duplicate(session, content_hash)
    if verdict is not DedupVerdict.NEW:
        return IngestionOutcome(document.filename, OutcomeKind.DUPLICATE, duplicate=prior)

    try:
        parsed = parser.parse(document.content)
        business_key = business_key_for(parsed)
    except InvoiceParseError as exc:
        logger.warning("Documento %s non analizzabile: %s", document.filename, exc)
        return IngestionOutcome(document.filename, OutcomeKind.PARSE_ERROR, error=str(exc))

    verdict, prior = check_duplicate(session, content_hash, business_key)
    if verdict is not DedupVerdict.NEW:
        return IngestionOutcome(document.filename, OutcomeKind.DUPLICATE, duplicate=prior)

    store = SqlAlchemyMappingStore(session, config)
    active = ingredients.list_active()
    tax_id = parsed.supplier.tax_id
    draft = InvoiceDraft(
        filename=document.filename,
        size=document.byte_size,
        content_hash=content_hash,
        business_key=business_key,
        invoice=parsed,
        lines=[resolve_line(line, tax_id, store, active, config) for line in parsed.lines],
        existing_supplier=suppliers.find_by_tax_id(tax_id) if tax_id else None,
        ingredients=active,
    )
    return IngestionOutcome(document.filename, OutcomeKind.ANALYZED, draft=draft)


def ingest_documents(
    session: Session,
    documents: list[UploadedDocument],
    *,
    parser: InvoiceParser | None = None,
    ingredients: IngredientDirectory | None = None,
    suppliers: SupplierDirectory | None = None,
    config: dict | None = None,
) -> list[IngestionOutcome]:
    """Analyze a batch; every document gets its own outcome.

    A parse error only affects its document. Storage errors propagate.
    """
    ingredients = ingredients or SqlAlchemyIngredientDirectory(session)
    outcomes = [
        analyze_document(
            session, document,
            parser=parser, ingredients=ingredients, suppliers=suppliers, config=config,
        )
        for document in documents
    ]
    logger.info(
        "Analizzati %d documenti: %d nuovi, %d duplicati, %d errori",
        len(outcomes),
        sum(o.kind is OutcomeKind.ANALYZED for o in outcomes),
        sum(o.kind is OutcomeKind.DUPLICATE for o in outcomes),
        sum(o.kind is OutcomeKind.PARSE_ERROR for o in outcomes),
    )
    return outcomes


# ---------------------------------------------------------------------------
# Commit
# ---------------------------------------------------------------------------


@dataclass
class _Counters:
    imported: int = 0
    ignored: int = 0
    errored: int = 0
    manual: int = 0
    movements: int = 0
    errors: dict[int, str] = field(default_factory=dict)


def _ensure_not_imported(session: Session, draft: InvoiceDraft) -> None:
    verdict, prior = check_duplicate(session, draft.content_hash, draft.business_key)
    if verdict is not DedupVerdict.NEW:
        raise ImportConflictError(draft.business_key, prior.invoice_id if prior else None)


def _new_invoice(draft: InvoiceDraft, actor: str) -> Invoice:
    parsed = draft.invoice
    invoice = Invoice(
        business_key=draft.business_key,
        content_hash=draft.content_hash,
        filename=draft.filename,
        file_size=draft.size,
        document_type=parsed.document_type,
        number=parsed.number,
        document_date=parsed.date,
        currency=parsed.currency,
        supplier_id=draft.existing_supplier.id if draft.existing_supplier else None,
        supplier_name=parsed.supplier.display_name,
        supplier_tax_id=parsed.supplier.tax_id,
        supplier_fiscal_code=parsed.supplier.fiscal_code,
        supplier_address=parsed.supplier.address.as_text(),
        taxable_amount=parsed.taxable_amount,
        tax_amount=parsed.tax_amount,
        total_amount=parsed.total_amount,
        status=InvoiceStatus.ANALYZED.value,
        lines_total=len(draft.lines),
        imported_by=actor,
    )
    invoice.shipments = [
        InvoiceShipment(number=s.number, shipment_date=s.date) for s in parsed.shipments
    ]
    return invoice


def _new_line(line: AnalyzedLine) -> InvoiceLine:
    data = line.data
    row = InvoiceLine(
        line_number=data.line_number,
        description=data.description,
        article_code=data.article_code,
        quantity=data.quantity,
        unit=data.unit,
        unit_price=data.unit_price,
        total_price=data.total_price,
        vat_rate=data.vat_rate,
        supplier_lot_code=data.supplier_lot_code,
        expiry_date=data.expiry_date,
        status=line.status.value,
    )
    if line.proposal is not None:
        row.match_score = line.proposal.score
        row.match_source = line.proposal.source.value
    return row


def _flush_or_conflict(session: Session, draft: InvoiceDraft) -> None:
    try:
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        raise ImportConflictError(draft.business_key) from exc


def _check_line(
    session: Session,
    line: AnalyzedLine,
    decision: LineDecision,
    directory: IngredientDirectory,
) -> IngredientRef:
    """Everything that can reject a line, checked before any write."""
    ingredient = directory.get(decision.ingredient_id)
    if ingredient is None:
        raise ResolutionError(
            line.data.line_number, decision.ingredient_id,
            f"Ingrediente {decision.ingredient_id} non trovato",
        )
    if not ingredient.active:
        raise ResolutionError(
            line.data.line_number, decision.ingredient_id,
            f"Ingrediente {ingredient.name} non più attivo",
        )
    if line.data.quantity <= 0:
        raise InvalidRequestError(f"Quantità non valida: {line.data.quantity}")
    if decision.lot_code:
        clash = session.scalar(
            select(Lot.id)
            .where(Lot.ingredient_id == ingredient.id)
            .where(Lot.code == decision.lot_code)
        )
        if clash is not None:
            raise InvalidRequestError(
                f"Codice lotto {decision.lot_code} già esistente per {ingredient.name}"
            )
    return ingredient


def _learn_mapping(
    store: SqlAlchemyMappingStore,
    supplier_tax_id: str,
    line: AnalyzedLine,
    decision: LineDecision,
    ingredient: IngredientRef,
    status: LineStatus,
    actor: str,
) -> SupplierMapping:
    """Reuse the confirmed similar mapping, or create/increment the line's own key."""
    mapping_id = decision.mapping_id
    proposal = line.proposal
    if (
        mapping_id is None
        and proposal is not None
        and proposal.source is MatchSource.SIMILAR_MAPPING
        and proposal.ingredient_id == ingredient.id
    ):
        mapping_id = proposal.mapping_id
    if mapping_id is not None and status is not LineStatus.MATCHED_EXISTING_MAPPING:
        existing = store.get(mapping_id)
        if (
            existing is not None
            and existing.supplier_tax_id == supplier_tax_id
            and existing.ingredient_id == ingredient.id
        ):
            return store.bump_usage(mapping_id)

    return store.upsert(
        supplier_tax_id,
        line.data.description,
        ingredient,
        article_code=line.data.article_code,
        supplier_unit=line.data.unit,
        similarity_score=proposal.score if proposal and proposal.ingredient_id == ingredient.id else None,
        confirmed_manually=status is LineStatus.MATCHED_MANUAL,
        actor=actor,
    )


def _mark_line_error(row: InvoiceLine, message: str) -> None:
    row.status = LineStatus.ERROR.value
    row.ingredient_id = None
    row.ingredient_name = None
    row.mapping_id = None
    row.lot_id = None
    row.movement_id = None
    row.error_message = message


def _commit_line(
    session: Session,
    invoice: Invoice,
    draft: InvoiceDraft,
    line: AnalyzedLine,
    row: InvoiceLine,
    decision: LineDecision,
    ingredient: IngredientRef,
    store: SqlAlchemyMappingStore,
    config: dict | None,
    actor: str,
) -> None:
    parsed = draft.invoice
    status = line_status_for(line.proposal, ingredient.id)

    factor = 1.0
    if parsed.supplier.tax_id:
        mapping = _learn_mapping(
            store, parsed.supplier.tax_id, line, decision, ingredient, status, actor
        )
        factor = mapping.conversion_factor or 1.0
        row.mapping_id = mapping.id

    quantity = line.data.quantity * factor
    unit = line.data.unit if factor == 1.0 else (ingredient.unit or line.data.unit)
    unit_price = line.data.unit_price / factor if factor else line.data.unit_price
    lot = ledger.create_lot(
        session,
        ingredient,
        quantity,
        unit,
        unit_price,
        arrival_date=parsed.arrival_date,
        expiry_date=decision.expiry_date or line.data.expiry_date,
        code=decision.lot_code,
        supplier_id=invoice.supplier_id,
        supplier_name=invoice.supplier_name,
        supplier_tax_id=invoice.supplier_tax_id,
        invoice_id=invoice.id,
        document_type="invoice",
        document_key=draft.business_key,
        document_number=parsed.number,
        document_date=parsed.date,
        line_number=line.data.line_number,
        supplier_lot_code=line.data.supplier_lot_code,
        prefix_length=section(config, "lots").get("code_prefix_length", 10),
    )
    movement = ledger.record_movement(
        session, lot, ingredient.id, lot.initial_quantity, lot.unit, MovementKind.INBOUND,
        document_type="invoice",
        document_ref=draft.business_key,
        invoice_id=invoice.id,
        unit_price=unit_price,
        actor=actor,
    )

    row.status = status.value
    row.ingredient_id = ingredient.id
    row.ingredient_name = ingredient.name
    row.lot_id = lot.id
    row.movement_id = movement.id
    row.error_message = None


def commit_import(
    session: Session,
    draft: InvoiceDraft,
    decisions: list[LineDecision],
    *,
    ingredients: IngredientDirectory | None = None,
    config: dict | None = None,
    actor: str = "admin",
) -> CommitResult:
    """Commit a confirmed draft in a single transaction.

    Re-checks both identities first and raises ImportConflictError if the
    invoice was imported meanwhile. Every line with a chosen ingredient gets
    a lot, an inbound movement and a mapping update; lines without one are
    ignored. A line that fails (ingredient gone or inactive, quantity that
    rounds to nothing, lot code taken) is rolled back to its savepoint and
    recorded as ``error``; the other lines go on. Any other exception rolls
    back the whole import and propagates.
    """
    directory = ingredients or SqlAlchemyIngredientDirectory(session)
    store = SqlAlchemyMappingStore(session, config)
    by_line = {d.line_number: d for d in decisions}

    _ensure_not_imported(session, draft)
    invoice = _new_invoice(draft, actor)
    session.add(invoice)
    _flush_or_conflict(session, draft)

    counters = _Counters()
    try:
        for line in draft.lines:
            row = _new_line(line)
            invoice.lines.append(row)
            decision = by_line.get(line.data.line_number)
            if decision is None or decision.ingredient_id is None:
                row.status = LineStatus.IGNORED.value
                counters.ignored += 1
                continue
            session.flush()
            try:
                ingredient = _check_line(session, line, decision, directory)
                # Savepoint per line: a failing line leaves no lot, movement or mapping.
                with session.begin_nested():
                    _commit_line(
                        session, invoice, draft, line, row, decision, ingredient, store, config, actor
                    )
            except (TraceabilityError, IntegrityError) as exc:
                message = str(exc.orig) if isinstance(exc, IntegrityError) else str(exc)
                _mark_line_error(row, message)
                counters.errored += 1
                counters.errors[line.data.line_number] = message
                logger.warning(
                    "Fattura %s riga %s: %s", draft.business_key, line.data.line_number, message
                )
                continue

            counters.imported += 1
            counters.movements += 1
            if row.status == LineStatus.MATCHED_MANUAL.value:
                counters.manual += 1

        status = invoice_status_for(counters.imported, counters.errored)
        invoice.status = status.value
        invoice.lines_imported = counters.imported
        invoice.lines_ignored = counters.ignored
        invoice.lines_errored = counters.errored
        invoice.lines_manual = counters.manual
        invoice.movements_created = counters.movements
        invoice.imported_at = utcnow()
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ImportConflictError(draft.business_key) from exc
    except Exception:
        session.rollback()
        logger.exception("Importazione della fattura %s annullata", draft.business_key)
        raise

    logger.info(
        "Fattura %s importata (%s): %d righe importate, %d ignorate, %d in errore",
        draft.business_key, status.value, counters.imported, counters.ignored, counters.errored,
    )
    return CommitResult(
        invoice_id=invoice.id,
        status=status,
        lines_imported=counters.imported,
        lines_ignored=counters.ignored,
        lines_errored=counters.errored,
        lines_manual=counters.manual,
        movements_created=counters.movements,
        errors=counters.errors,
    )


def ignore_import(
    session: Session,
    draft: InvoiceDraft,
    note: str | None = None,
    actor: str = "admin",
) -> CommitResult:
    """Record the invoice as seen, every line ignored, with no stock effect."""
    _ensure_not_imported(session, draft)
    invoice = _new_invoice(draft, actor)
    invoice.notes = note
    for line in draft.lines:
        row = _new_line(line)
        row.status = LineStatus.IGNORED.value
        invoice.lines.append(row)
    invoice.status = InvoiceStatus.COMMITTED.value
    invoice.lines_ignored = len(draft.lines)
    session.add(invoice)
    _flush_or_conflict(session, draft)
    session.commit()
    logger.info("Fattura %s registrata senza carichi", draft.business_key)
    return CommitResult(
        invoice_id=invoice.id,
        status=InvoiceStatus.COMMITTED,
        lines_imported=0,
        lines_ignored=len(draft.lines),
        lines_errored=0,
        lines_manual=0,
        movements_created=0,
    )


# ---------------------------------------------------------------------------
# Cancel
# ---------------------------------------------------------------------------


def cancel_import(
    session: Session,
    invoice_id: int,
    reason: str,
    actor: str = "admin",
) -> CancellationResult:
    """Cancel a committed import and compensate its stock effect.

    Rejects a blank reason and an invoice that is already cancelled.
    """
    if not reason or not reason.strip():
        raise InvalidRequestError("Il motivo dell'annullamento è obbligatorio")
    invoice = session.get(Invoice, invoice_id)
    if invoice is None:
        raise InvoiceNotFoundError(invoice_id)
    if invoice.status == InvoiceStatus.CANCELLED.value:
        raise AlreadyCancelledError(invoice_id)

    report = ledger.reverse_document(session, invoice.id, reason.strip(), actor=actor)
    invoice.status = InvoiceStatus.CANCELLED.value
    invoice.cancelled_at = utcnow()
    invoice.cancelled_by = actor
    invoice.cancellation_reason = reason.strip()
    session.commit()

    logger.info(
        "Fattura %s annullata da %s: %d movimenti stornati (%s)",
        invoice.business_key, actor, report.movements_reversed, reason.strip(),
    )
    return CancellationResult(
        invoice_id=invoice.id,
        status=InvoiceStatus.CANCELLED,
        movements_reversed=report.movements_reversed,
        lots_reversed=report.lots_reversed,
        warnings=report.warnings,
    )
