"""FatturaPA (Italian e-invoice) XML parser implementing InvoiceParser.

Namespace prefixes are stripped from every tag before reading, so the same
code handles ``p:FatturaElettronica``, ``ns3:FatturaElettronica`` and plain
tags. Missing numbers read as 0 and missing dates as today, so a partially
malformed document can still be analyzed; a missing header or body is fatal.
"""

from __future__ import annotations

from datetime import date, datetime

from lxml import etree

from domain.errors import InvoiceParseError
from domain.models import (
    Address,
    InvoiceLineData,
    ParsedInvoice,
    ShipmentRef,
    SupplierInfo,
)
from domain.normalization import normalize_tax_id
from domain.ports import InvoiceParser

ROOT_TAG = "FatturaElettronica"
HEADER_TAG = "FatturaElettronicaHeader"
BODY_TAG = "FatturaElettronicaBody"

DEFAULT_DOCUMENT_TYPE = "TD24"
DEFAULT_UNIT = "PZ"

# Untrusted input: no DTD entity expansion, no network fetches.
_XML_PARSER = etree.XMLParser(
    resolve_entities=False,
    no_network=True,
    remove_comments=True,
    remove_pis=True,
)


# ---------------------------------------------------------------------------
# Element helpers
# ---------------------------------------------------------------------------


def _strip_namespaces(root) -> None:
    for el in root.iter():
        if isinstance(el.tag, str):
            el.tag = etree.QName(el).localname


def _find_invoice_root(root):
    """Return the node that holds the header and body, whatever wraps it."""
    if root.tag == ROOT_TAG or root.find(HEADER_TAG) is not None:
        return root
    for el in root.iter(ROOT_TAG):
        return el
    for el in root.iter(HEADER_TAG, BODY_TAG):
        parent = el.getparent()
        return parent if parent is not None else root
    return root


def _text(node, path: str) -> str | None:
    if node is None:
        return None
    found = node.find(path)
    if found is None or found.text is None:
        return None
    value = found.text.strip()
    return value or None


def _float(node, path: str) -> float:
    raw = _text(node, path)
    if raw is None:
        return 0.0
    try:
        return float(raw.replace(",", "."))
    except ValueError:
        return 0.0


def _date(raw: str | None) -> date | None:
    if not raw:
        return None
    try:
        return datetime.strptime(raw[:10], "%Y-%m-%d").date()
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class FatturaPAParser(InvoiceParser):
    """Parse a FatturaPA XML document into a ParsedInvoice.

    *today* is the fallback for absent dates; it defaults to the current day.
    """

    def __init__(self, today: date | None = None):
        self._today = today

    def _fallback_date(self) -> date:
        return self._today or date.today()

    def parse(self, content: bytes) -> ParsedInvoice:
        if isinstance(content, str):
            content = content.encode("utf-8")
        if not content or not content.strip():
            raise InvoiceParseError("Documento vuoto")
        try:
            tree = etree.fromstring(content, parser=_XML_PARSER)
        except (etree.XMLSyntaxError, ValueError) as exc:
            raise InvoiceParseError(f"XML non valido: {exc}") from exc

        _strip_namespaces(tree)
        root = _find_invoice_root(tree)
        if root is None:
            raise InvoiceParseError("Struttura fattura non valida: radice mancante")
        if root.tag in (HEADER_TAG, BODY_TAG):
            raise InvoiceParseError(f"Struttura fattura non valida: il documento contiene solo {root.tag}")

        header = root.find(HEADER_TAG)
        if header is None:
            raise InvoiceParseError("Struttura fattura non valida: header mancante")
        # A batch file may carry several bodies; the first one is the invoice.
        body = root.find(BODY_TAG)
        if body is None:
            raise InvoiceParseError("Struttura fattura non valida: body mancante")

        general = body.find("DatiGenerali/DatiGeneraliDocumento")
        taxable = 0.0
        tax = 0.0
        for summary in body.findall("DatiBeniServizi/DatiRiepilogo"):
            taxable += _float(summary, "ImponibileImporto")
            tax += _float(summary, "Imposta")

        return ParsedInvoice(
            supplier=self._parse_supplier(header.find("CedentePrestatore")),
            document_type=_text(general, "TipoDocumento") or DEFAULT_DOCUMENT_TYPE,
            number=_text(general, "Numero"),
            date=_date(_text(general, "Data")) or self._fallback_date(),
            currency=_text(general, "Divisa") or "EUR",
            taxable_amount=round(taxable, 2),
            tax_amount=round(tax, 2),
            total_amount=_float(general, "ImportoTotaleDocumento"),
            shipments=self._parse_shipments(body),
            lines=[
                self._parse_line(node, index)
                for index, node in enumerate(
                    body.findall("DatiBeniServizi/DettaglioLinee"), start=1
                )
            ],
        )

    # ── Sections ─────────────────────────────────────────────────────────

    @staticmethod
    def _parse_supplier(node) -> SupplierInfo:
        if node is None:
            return SupplierInfo(tax_id=None)
        registry = node.find("DatiAnagrafici")
        seat = node.find("Sede")
        street = " ".join(
            p for p in (_text(seat, "Indirizzo"), _text(seat, "NumeroCivico")) if p
        )
        return SupplierInfo(
            tax_id=normalize_tax_id(
                _text(registry, "IdFiscaleIVA/IdPaese"),
                _text(registry, "IdFiscaleIVA/IdCodice"),
            ),
            fiscal_code=_text(registry, "CodiceFiscale"),
            company_name=_text(registry, "Anagrafica/Denominazione"),
            first_name=_text(registry, "Anagrafica/Nome"),
            last_name=_text(registry, "Anagrafica/Cognome"),
            address=Address(
                street=street or None,
                postal_code=_text(seat, "CAP"),
                city=_text(seat, "Comune"),
                province=_text(seat, "Provincia"),
            ),
        )

    @staticmethod
    def _parse_shipments(body) -> list[ShipmentRef]:
        shipments: list[ShipmentRef] = []
        seen: set[str] = set()
        for node in body.findall("DatiGenerali/DatiDDT"):
            number = _text(node, "NumeroDDT")
            if not number or number in seen:
                continue
            seen.add(number)
            shipments.append(ShipmentRef(number=number, date=_date(_text(node, "DataDDT"))))
        return shipments

    def _parse_line(self, node, index: int) -> InvoiceLineData:
        raw_number = _text(node, "NumeroLinea")
        try:
            line_number = int(raw_number) if raw_number else index
        except ValueError:
            line_number = index

        supplier_lot_code = None
        expiry_date = None
        for extra in node.findall("AltriDatiGestionali"):
            kind = (_text(extra, "TipoDato") or "").upper()
            if kind == "LOTTO":
                supplier_lot_code = _text(extra, "RiferimentoTesto")
            elif kind == "SCADENZA":
                expiry_date = _date(
                    _text(extra, "RiferimentoData") or _text(extra, "RiferimentoTesto")
                )

        return InvoiceLineData(
            line_number=line_number,
            description=_text(node, "Descrizione") or "",
            quantity=_float(node, "Quantita"),
            unit=(_text(node, "UnitaMisura") or DEFAULT_UNIT).upper(),
            unit_price=_float(node, "PrezzoUnitario"),
            total_price=_float(node, "PrezzoTotale"),
            vat_rate=_float(node, "AliquotaIVA"),
            article_code=_text(node, "CodiceArticolo/CodiceValore"),
            supplier_lot_code=supplier_lot_code,
            expiry_date=expiry_date,
        )
