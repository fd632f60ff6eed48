import pytest
from sqlalchemy.exc import IntegrityError

from domain.models import DedupVerdict, InvoiceStatus
from tracciabilita.data.dedup import (
    check_duplicate,
    compute_content_hash,
    find_by_business_key,
    find_by_hash,
)
from tracciabilita.data.models import Invoice


def _invoice(session, key="IT1_FT-1_2025", content=b"abc", status="committed"):
    invoice = Invoice(
        business_key=key,
        content_hash=compute_content_hash(content),
        filename="ft1.xml",
        number="FT-1",
        supplier_name="Molino Rossi S.r.l.",
        status=status,
    )
    session.add(invoice)
    session.commit()
    return invoice


def test_hash_is_sha256_hex():
    digest = compute_content_hash(b"abc")
    assert digest == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_new_document(session):
    assert check_duplicate(session, compute_content_hash(b"x"), "IT1_FT-1_2025") == (DedupVerdict.NEW, None)


def test_duplicate_by_hash(session):
    prior = _invoice(session)
    verdict, ref = check_duplicate(session, compute_content_hash(b"abc"))
    assert verdict is DedupVerdict.DUPLICATE_BY_HASH
    assert ref.invoice_id == prior.id
    assert ref.status is InvoiceStatus.COMMITTED
    assert ref.supplier_name == "Molino Rossi S.r.l."


def test_duplicate_by_business_key(session):
    _invoice(session)
    verdict, ref = check_duplicate(session, compute_content_hash(b"other bytes"), "IT1_FT-1_2025")
    assert verdict is DedupVerdict.DUPLICATE_BY_BUSINESS_KEY
    assert ref.verdict is DedupVerdict.DUPLICATE_BY_BUSINESS_KEY


def test_hash_wins_over_business_key(session):
    _invoice(session)
    verdict, _ = check_duplicate(session, compute_content_hash(b"abc"), "IT1_FT-1_2025")
    assert verdict is DedupVerdict.DUPLICATE_BY_HASH


def test_cancelled_imports_are_ignored(session):
    _invoice(session, status="cancelled")
    assert find_by_hash(session, compute_content_hash(b"abc")) is None
    assert find_by_business_key(session, "IT1_FT-1_2025") is None
    verdict, _ = check_duplicate(session, compute_content_hash(b"abc"), "IT1_FT-1_2025")
    assert verdict is DedupVerdict.NEW


def test_reimport_after_cancellation_allowed_by_schema(session):
    _invoice(session, status="cancelled")
    _invoice(session)
    assert find_by_business_key(session, "IT1_FT-1_2025").status == "committed"


def test_live_business_key_is_unique(session):
    _invoice(session)
    with pytest.raises(IntegrityError):
        _invoice(session, content=b"different")


def test_live_hash_is_unique(session):
    _invoice(session)
    with pytest.raises(IntegrityError):
        _invoice(session, key="IT1_FT-2_2025")
