#!/usr/bin/env python3
"""Flag expired lots and print (or export) the lots expiring soon.

Usage:
    python scripts/expiry_report.py [--days 30] [--csv scadenze.csv]
"""
import argparse
import logging

from sqlalchemy.orm import Session

from tracciabilita.analytics.traceability import expiring_soon, expiry_stats
from tracciabilita.config import load_config
from tracciabilita.data.db import get_engine, init_db
from tracciabilita.data.ledger import mark_expired_lots


def main():
    parser = argparse.ArgumentParser(description="Lotti in scadenza")
    parser.add_argument("--days", type=int, default=None, help="Finestra in giorni")
    parser.add_argument("--csv", default=None, help="Esporta in CSV")
    parser.add_argument("--config", default=None)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config = load_config(args.config)
    engine = init_db(get_engine(config.get("database", {}).get("url")))

    with Session(engine) as session:
        mark_expired_lots(session)
        df = expiring_soon(session, args.days, config=config)
        stats = expiry_stats(df)

    print(
        f"{stats['total']} lotti: {stats['expired']} scaduti, {stats['critical']} critici, "
        f"{stats['urgent']} urgenti, {stats['attention']} da controllare"
    )
    if args.csv:
        df.to_csv(args.csv, index=False)
    elif not df.empty:
        print(df[["lot_code", "ingredient", "expiry_date", "days_to_expiry", "urgency"]].to_string(index=False))


if __name__ == "__main__":
    main()
