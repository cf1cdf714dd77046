from __future__ import annotations

import argparse
import logging
from datetime import datetime, timezone

from app.payouts.calculator import PayoutCalculator, previous_month_period
from app.payouts.repository import PgPayoutStore
from app.sources.activity import PgActivitySource
from app.sources.rates import PgRateSource
from db import build_database
from settings import settings


def _parse_ts(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def main() -> None:
    parser = argparse.ArgumentParser(description="Compute doctor payouts for a period (default: previous calendar month).")
    parser.add_argument("--start", type=_parse_ts, default=None, help="ISO timestamp, inclusive")
    parser.add_argument("--end", type=_parse_ts, default=None, help="ISO timestamp, inclusive")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    if args.start is None or args.end is None:
        start, end = previous_month_period(datetime.now(timezone.utc))
    else:
        start, end = args.start, args.end

    db = build_database()
    try:
        calculator = PayoutCalculator(
            PgPayoutStore(db),
            PgActivitySource(db),
            PgRateSource(db),
            currency=settings.PAYOUT_SETTLEMENT_CURRENCY,
            default_rate=settings.PAYOUT_DEFAULT_RATE,
        )
        summary = calculator.run_for_period(start, end)
    finally:
        db.close()

    print("period:", summary.period_start.isoformat(), "->", summary.period_end.isoformat())
    print(
        "counts:",
        f"created={summary.created}",
        f"skipped_existing={len(summary.skipped_existing)}",
        f"failed={len(summary.failed)}",
        f"rate={summary.rate}",
    )
    for payee_id, err in summary.failed.items():
        print("failed:", payee_id, err)


if __name__ == "__main__":
    main()
