# app/payouts/export.py
from __future__ import annotations

import csv
import io
from typing import Iterable, Iterator, Optional

from app.payouts.model import Payout, PayoutStatus
from app.payouts.store import PayoutFilter, PayoutStore
from app.sources.payees import PayeeDirectory

EXPORT_HEADERS = [
    "payoutId",
    "payeeId",
    "payeeName",
    "periodStart",
    "periodEnd",
    "consultationsCount",
    "amountDue",
    "currency",
    "status",
    "providerReference",
    "notes",
]

_PAGE = 200


def flatten_text(value: Optional[str]) -> str:
    """
    Newlines become a literal backslash-n so each payout stays on one physical
    line; delimiters and quotes are left to the csv writer's quoting.
    """
    if not value:
        return ""
    return value.replace("\r\n", "\\n").replace("\r", "\\n").replace("\n", "\\n")


def iter_payouts(store: PayoutStore, status: Optional[PayoutStatus]) -> Iterator[Payout]:
    skip = 0
    flt = PayoutFilter(status=status)
    while True:
        page, total = store.list_payouts(flt, limit=_PAGE, skip=skip)
        yield from page
        skip += len(page)
        if not page or skip >= total:
            return


def export_rows(payouts: Iterable[Payout], payees: PayeeDirectory) -> Iterator[list[str]]:
    names: dict[str, str] = {}
    for p in payouts:
        if p.payee_id not in names:
            payee = payees.get_payee(p.payee_id)
            names[p.payee_id] = payee.name if payee else ""
        yield [
            str(p.id),
            p.payee_id,
            flatten_text(names[p.payee_id]),
            p.period_start.isoformat(),
            p.period_end.isoformat(),
            str(p.consultations_count),
            str(p.amount_due),
            p.currency,
            p.status.value,
            flatten_text(p.provider_reference),
            flatten_text(p.notes),
        ]


def csv_stream(rows: Iterable[list[str]]) -> Iterator[str]:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(EXPORT_HEADERS)
    yield buffer.getvalue()
    buffer.seek(0)
    buffer.truncate(0)

    for row in rows:
        writer.writerow(row)
        yield buffer.getvalue()
        buffer.seek(0)
        buffer.truncate(0)


def export_csv(store: PayoutStore, payees: PayeeDirectory, status: Optional[PayoutStatus] = None) -> Iterator[str]:
    return csv_stream(export_rows(iter_payouts(store, status), payees))
