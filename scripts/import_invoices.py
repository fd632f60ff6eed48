#!/usr/bin/env python3
"""Analyze a directory of FatturaPA XML invoices and optionally commit them.

Usage:
    python scripts/import_invoices.py fatture/ [--commit] [--config path]

Without ``--commit`` only the analysis is printed. With ``--commit`` every
line takes its proposed ingredient; lines without a proposal are ignored.
"""
import argparse
import logging
import os

from sqlalchemy.orm import Session

from domain.errors import ImportConflictError, TraceabilityError
from domain.models import InvoiceDraft, LineDecision, OutcomeKind, UploadedDocument
from tracciabilita.adapters.outbound.cached_directory import CachedIngredientDirectory
from tracciabilita.adapters.outbound.redis_cache import get_cache
from tracciabilita.adapters.outbound.sqlalchemy_directories import SqlAlchemyIngredientDirectory
from tracciabilita.config import load_config
from tracciabilita.data.db import get_engine, init_db
from tracciabilita.data.reconciliation import commit_import, ingest_documents

logger = logging.getLogger("import_invoices")


def _read_documents(input_dir: str) -> list[UploadedDocument]:
    documents = []
    for name in sorted(os.listdir(input_dir)):
        if not name.lower().endswith(".xml"):
            continue
        with open(os.path.join(input_dir, name), "rb") as f:
            content = f.read()
        documents.append(UploadedDocument(filename=name, content=content, size=len(content)))
    return documents


def commit_draft(session, draft: InvoiceDraft, directory, config: dict, actor: str) -> str:
    """Commit *draft* with its proposals and return the report row.

    A conflict or a rejected import is reported and the batch goes on.
    """
    decisions = [
        LineDecision(
            line_number=line.data.line_number,
            ingredient_id=line.proposal.ingredient_id if line.proposal else None,
            mapping_id=line.proposal.mapping_id if line.proposal else None,
        )
        for line in draft.lines
    ]
    try:
        result = commit_import(session, draft, decisions, ingredients=directory, config=config, actor=actor)
    except ImportConflictError as exc:
        logger.warning("Fattura %s non importata: %s", draft.business_key, exc)
        return f"    [CONFLITTO] {exc}"
    except TraceabilityError as exc:
        logger.warning("Fattura %s non importata: %s", draft.business_key, exc)
        return f"    [ERRORE] {exc}"
    return (
        f"    -> {result.status.value}: {result.lines_imported} importate, "
        f"{result.lines_ignored} ignorate, {result.lines_errored} in errore"
    )


def main():
    parser = argparse.ArgumentParser(description="Importazione fatture elettroniche fornitori")
    parser.add_argument("input_dir", help="Cartella con i file XML")
    parser.add_argument("--commit", action="store_true", help="Conferma le proposte e importa")
    parser.add_argument("--config", default=None, help="File di configurazione YAML")
    parser.add_argument("--actor", default="batch", help="Utente registrato sulle importazioni")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config = load_config(args.config)
    engine = init_db(get_engine(config.get("database", {}).get("url")))

    with Session(engine) as session:
        directory = CachedIngredientDirectory(
            SqlAlchemyIngredientDirectory(session),
            get_cache(config),
            ttl=config.get("cache", {}).get("ttl", 300),
        )
        outcomes = ingest_documents(
            session, _read_documents(args.input_dir), ingredients=directory, config=config,
        )
        for outcome in outcomes:
            if outcome.kind is OutcomeKind.PARSE_ERROR:
                print(f"[ERRORE]    {outcome.filename}: {outcome.error}")
                continue
            if outcome.kind is OutcomeKind.DUPLICATE:
                dup = outcome.duplicate
                print(
                    f"[DUPLICATO] {outcome.filename}: {dup.verdict.value}, "
                    f"importazione #{dup.invoice_id} ({dup.status.value})"
                )
                continue

            draft = outcome.draft
            print(f"[ANALIZZATA] {outcome.filename}: {draft.business_key}, {len(draft.lines)} righe")
            for line in draft.lines:
                proposal = line.proposal
                target = f"{proposal.ingredient_name} ({proposal.score})" if proposal else "-"
                print(f"    {line.data.line_number:>3} {line.data.description[:50]:<50} {line.status.value:<26} {target}")

            if args.commit:
                print(commit_draft(session, draft, directory, config, args.actor))


if __name__ == "__main__":
    main()
