from __future__ import annotations

import logging

from fastapi.testclient import TestClient

from main import create_app
from services.metrics import counter_value


def test_request_id_added_when_missing():
    app = create_app()
    client = TestClient(app)
    resp = client.get("/health")
    assert resp.status_code == 200, resp.text
    req_id = resp.headers.get("X-Request-ID")
    assert req_id


def test_request_log_includes_method_path_status(caplog):
    app = create_app()
    client = TestClient(app)
    caplog.set_level(logging.INFO, logger="remodoc.http")
    resp = client.get("/health", headers={"Authorization": "Bearer secret-token"})
    assert resp.status_code == 200, resp.text
    assert any(
        "http_request " in record.message
        and "method=GET" in record.message
        and "path=/health" in record.message
        and "status=200" in record.message
        and "duration_ms=" in record.message
        for record in caplog.records
    )
    assert "secret-token" not in caplog.text


def test_request_id_echoed_when_present():
    app = create_app()
    client = TestClient(app)
    resp = client.get("/health", headers={"X-Request-ID": "client-request-id"})
    assert resp.status_code == 200, resp.text
    assert resp.headers.get("X-Request-ID") == "client-request-id"


def test_correlation_id_used_as_fallback():
    app = create_app()
    client = TestClient(app)
    resp = client.get("/health", headers={"X-Correlation-ID": "corr-123"})
    assert resp.headers.get("X-Request-ID") == "corr-123"


def test_request_id_present_on_401(client):
    resp = client.get("/v1/admin/payouts")
    assert resp.status_code == 401, resp.text
    assert resp.headers.get("X-Request-ID")


def test_http_requests_are_counted(client):
    before = counter_value("http_requests_total", {"route": "/health", "status": "200"})
    client.get("/health")
    assert counter_value("http_requests_total", {"route": "/health", "status": "200"}) == before + 1
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "http_requests_total" in metrics.text
