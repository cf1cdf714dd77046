from __future__ import annotations

import csv
import io

from fastapi.testclient import TestClient

from app.payouts.export import EXPORT_HEADERS, flatten_text
from app.payouts.model import PayoutStatus


def _read_csv(text: str) -> list[list[str]]:
    reader = csv.reader(io.StringIO(text))
    return [row for row in reader if row]


def test_admin_exports_csv_returns_rows(client: TestClient, store, admin_headers):
    p = store.add(notes="line one\nline two", provider_reference="ref,with,commas")

    r = client.get("/v1/admin/payouts/export.csv", headers=admin_headers)
    assert r.status_code == 200, r.text
    assert r.headers["content-type"].startswith("text/csv")
    assert "attachment; filename=payouts-" in r.headers["content-disposition"]

    # one physical line per payout
    assert len(r.text.strip().split("\n")) == 2

    rows = _read_csv(r.text)
    assert rows[0] == EXPORT_HEADERS
    row = dict(zip(rows[0], rows[1]))
    assert row["payoutId"] == str(p.id)
    assert row["payeeName"] == "Dr Achieng"
    assert row["notes"] == "line one\\nline two"
    assert row["providerReference"] == "ref,with,commas"
    assert row["status"] == "READY"


def test_admin_exports_status_filter(client: TestClient, store, admin_headers):
    store.add()
    paid = store.add(status=PayoutStatus.PAID, payee_id="doc-2")

    r = client.get("/v1/admin/payouts/export.csv", params={"status": "PAID"}, headers=admin_headers)
    assert r.status_code == 200, r.text
    rows = _read_csv(r.text)
    assert len(rows) == 2
    assert rows[1][0] == str(paid.id)
    assert rows[1][2] == "Dr Otieno"


def test_admin_exports_unknown_payee_has_blank_name(client: TestClient, store, admin_headers):
    store.add(payee_id="doc-gone")
    rows = _read_csv(client.get("/v1/admin/payouts/export.csv", headers=admin_headers).text)
    assert rows[1][1] == "doc-gone"
    assert rows[1][2] == ""


def test_admin_exports_header_only_when_empty(client: TestClient, admin_headers):
    r = client.get("/v1/admin/payouts/export.csv", headers=admin_headers)
    assert r.status_code == 200, r.text
    assert _read_csv(r.text) == [EXPORT_HEADERS]


def test_admin_exports_requires_admin(client: TestClient, doctor_headers):
    r = client.get("/v1/admin/payouts/export.csv", headers=doctor_headers)
    assert r.status_code == 403, r.text


def test_flatten_text():
    assert flatten_text(None) == ""
    assert flatten_text("a\r\nb\rc\nd") == "a\\nb\\nc\\nd"
