import logging

from sqlalchemy import func, select

from domain.models import OutcomeKind, UploadedDocument
from scripts.import_invoices import commit_draft
from tracciabilita.adapters.outbound.sqlalchemy_directories import SqlAlchemyIngredientDirectory
from tracciabilita.data.models import Invoice
from tracciabilita.data.reconciliation import ingest_documents


class TestCommitDraft:
    def test_conflict_in_batch_does_not_stop_the_rest(self, session, ingredients, supplier, make_invoice_xml, caplog):
        documents = [
            UploadedDocument("a.xml", make_invoice_xml()),
            UploadedDocument("b.xml", make_invoice_xml(note="copia")),
            UploadedDocument("c.xml", make_invoice_xml(number="FT-101")),
        ]
        outcomes = ingest_documents(session, documents)
        assert all(o.kind is OutcomeKind.ANALYZED for o in outcomes)

        directory = SqlAlchemyIngredientDirectory(session)
        with caplog.at_level(logging.WARNING, logger="import_invoices"):
            rows = [commit_draft(session, o.draft, directory, {}, "batch") for o in outcomes]

        assert rows[0].strip().startswith("-> committed")
        assert rows[1].strip().startswith("[CONFLITTO]")
        assert rows[2].strip().startswith("-> committed")
        assert session.scalar(select(func.count(Invoice.id))) == 2
        assert "IT12345678901_FT-100_2025" in caplog.text
