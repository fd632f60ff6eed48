"""Shared fixtures: in-memory database, directory rows and a FatturaPA builder."""

import pytest
from sqlalchemy.orm import Session

from tracciabilita.data.db import get_engine
from tracciabilita.data.models import Base, Ingredient, Supplier


@pytest.fixture
def session():
    """Create an in-memory SQLite session with schema initialized."""
    engine = get_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as s:
        yield s
    Base.metadata.drop_all(engine)


@pytest.fixture
def ingredients(session):
    """Farina 00, Zucchero semolato, Uova fresche and an inactive Lievito."""
    rows = {
        "farina": Ingredient(name="Farina 00", category="Farine", unit="KG"),
        "zucchero": Ingredient(name="Zucchero semolato", category="Dolcificanti", unit="KG"),
        "uova": Ingredient(name="Uova fresche", category="Uova", unit="PZ"),
        "lievito": Ingredient(name="Lievito di birra", category="Lieviti", unit="KG", active=False),
    }
    session.add_all(rows.values())
    session.commit()
    return rows


@pytest.fixture
def supplier(session):
    row = Supplier(name="Molino Rossi S.r.l.", tax_id="IT12345678901")
    session.add(row)
    session.commit()
    return row


_LINE = """
      <DettaglioLinee>
        <NumeroLinea>{n}</NumeroLinea>
        <Descrizione>{description}</Descrizione>
        <Quantita>{quantity:.2f}</Quantita>
        <UnitaMisura>{unit}</UnitaMisura>
        <PrezzoUnitario>{price:.4f}</PrezzoUnitario>
        <PrezzoTotale>{total:.2f}</PrezzoTotale>
        <AliquotaIVA>4.00</AliquotaIVA>{extra}
      </DettaglioLinee>"""

_DDT = """
      <DatiDDT>
        <NumeroDDT>{number}</NumeroDDT>
        <DataDDT>{date}</DataDDT>
      </DatiDDT>"""


@pytest.fixture
def make_invoice_xml():
    """Factory returning FatturaPA bytes.

    *lines* is a list of ``(description, quantity, unit, unit_price)`` tuples,
    optionally followed by a dict of AltriDatiGestionali (``{"LOTTO": ..., "SCADENZA": ...}``).
    """

    def build(
        number="FT-100",
        doc_date="2025-03-10",
        lines=(("Farina tipo 00 25kg", 10, "KG", 1.20),),
        country="IT",
        code="12345678901",
        company="Molino Rossi S.r.l.",
        ddt=(("DDT-55", "2025-03-08"),),
        note="",
    ):
        rendered = []
        taxable = 0.0
        for n, line in enumerate(lines, start=1):
            description, quantity, unit, price = line[:4]
            extras = line[4] if len(line) > 4 else {}
            extra = "".join(
                f"""
        <AltriDatiGestionali>
          <TipoDato>{kind}</TipoDato>
          <{'RiferimentoData' if kind == 'SCADENZA' else 'RiferimentoTesto'}>{value}</{'RiferimentoData' if kind == 'SCADENZA' else 'RiferimentoTesto'}>
        </AltriDatiGestionali>"""
                for kind, value in extras.items()
            )
            total = quantity * price
            taxable += total
            rendered.append(_LINE.format(
                n=n, description=description, quantity=quantity, unit=unit,
                price=price, total=total, extra=extra,
            ))
        ddt_xml = "".join(_DDT.format(number=d[0], date=d[1]) for d in ddt)
        xml = f"""<?xml version="1.0" encoding="UTF-8"?>
<p:FatturaElettronica versione="FPR12" xmlns:p="http://ivaservizi.agenziaentrate.gov.it/docs/xsd/fatture/v1.2">
  <FatturaElettronicaHeader>
    <CedentePrestatore>
      <DatiAnagrafici>
        <IdFiscaleIVA>
          <IdPaese>{country}</IdPaese>
          <IdCodice>{code}</IdCodice>
        </IdFiscaleIVA>
        <Anagrafica>
          <Denominazione>{company}</Denominazione>
        </Anagrafica>
      </DatiAnagrafici>
      <Sede>
        <Indirizzo>Via dei Mulini</Indirizzo>
        <NumeroCivico>4</NumeroCivico>
        <CAP>09100</CAP>
        <Comune>Cagliari</Comune>
        <Provincia>CA</Provincia>
      </Sede>
    </CedentePrestatore>
  </FatturaElettronicaHeader>
  <FatturaElettronicaBody>
    <DatiGenerali>
      <DatiGeneraliDocumento>
        <TipoDocumento>TD01</TipoDocumento>
        <Divisa>EUR</Divisa>
        <Data>{doc_date}</Data>
        <Numero>{number}</Numero>
        <ImportoTotaleDocumento>{taxable * 1.04:.2f}</ImportoTotaleDocumento>
      </DatiGeneraliDocumento>{ddt_xml}
    </DatiGenerali>
    <DatiBeniServizi>{''.join(rendered)}
      <DatiRiepilogo>
        <AliquotaIVA>4.00</AliquotaIVA>
        <ImponibileImporto>{taxable:.2f}</ImponibileImporto>
        <Imposta>{taxable * 0.04:.2f}</Imposta>
      </DatiRiepilogo>
    </DatiBeniServizi>
  </FatturaElettronicaBody>
</p:FatturaElettronica>
<!-- {note} -->
"""
        return xml.encode("utf-8")

    return build
