#!/usr/bin/env python3
"""Seed the ingredient and supplier directories with demo records.

Usage:
    python scripts/load_demo_data.py [--database-url sqlite:///data/demo.db]
"""
import argparse

from sqlalchemy.orm import Session

from tracciabilita.data.db import get_engine, init_db
from tracciabilita.data.models import Ingredient, Supplier

DEMO_INGREDIENTS = [
    ("Farina 00", "Farine", "KG"),
    ("Farina di semola rimacinata", "Farine", "KG"),
    ("Uova fresche", "Uova", "PZ"),
    ("Ricotta di pecora", "Latticini", "KG"),
    ("Zucchero semolato", "Dolcificanti", "KG"),
    ("Mandorle pelate", "Frutta secca", "KG"),
    ("Olio extravergine di oliva", "Oli", "LT"),
]

DEMO_SUPPLIERS = [
    ("Molino Rossi S.r.l.", "IT12345678901", "Via dei Mulini 4, 09100 Cagliari (CA)"),
    ("Caseificio Sardo S.p.A.", "IT10987654321", "Loc. Su Planu, 09047 Selargius (CA)"),
]


def main():
    parser = argparse.ArgumentParser(description="Dati dimostrativi")
    parser.add_argument("--database-url", default=None)
    args = parser.parse_args()

    engine = init_db(get_engine(args.database_url))
    with Session(engine) as session:
        if session.query(Ingredient).count():
            print("Anagrafiche già presenti, nulla da fare")
            return
        session.add_all(
            Ingredient(name=name, category=category, unit=unit)
            for name, category, unit in DEMO_INGREDIENTS
        )
        session.add_all(
            Supplier(name=name, tax_id=tax_id, address=address)
            for name, tax_id, address in DEMO_SUPPLIERS
        )
        session.commit()
        print(f"Creati {len(DEMO_INGREDIENTS)} ingredienti e {len(DEMO_SUPPLIERS)} fornitori")


if __name__ == "__main__":
    main()
