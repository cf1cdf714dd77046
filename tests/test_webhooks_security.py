import json
import os
import sys
import time

from app.payouts.model import PayoutStatus, ReferenceSource
from settings import settings

SCRIPT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "scripts"))
if SCRIPT_DIR not in sys.path:
    sys.path.insert(0, SCRIPT_DIR)

from _webhook_signing import (  # noqa: E402
    canonical_json_bytes,
    generic_headers,
    mpesa_headers,
    stripe_headers,
)


def _stripe_body(obj_id: str, event_type: str = "transfer.paid") -> bytes:
    return canonical_json_bytes({"id": "evt_1", "type": event_type, "data": {"object": {"id": obj_id, "object": "transfer"}}})


def test_stripe_missing_signature_401(client, event_log):
    r = client.post("/v1/webhooks/stripe-payouts", content=_stripe_body("tr_1"), headers={"Content-Type": "application/json"})
    assert r.status_code == 401, r.text
    assert r.json()["detail"]["error"] == "MISSING_SIGNATURE"
    assert event_log.records[-1].outcome == "REJECTED"
    assert event_log.records[-1].signature_valid is False


def test_stripe_wrong_secret_401_and_payout_untouched(client, store):
    p = store.add(status=PayoutStatus.PROCESSING, provider_reference="tr_1")
    body = _stripe_body("tr_1")
    headers = stripe_headers("not-the-secret", body)
    r = client.post("/v1/webhooks/stripe-payouts", content=body, headers=headers)
    assert r.status_code == 401, r.text
    assert r.json()["detail"]["error"] == "INVALID_SIGNATURE"
    assert store.get(p.id).status == PayoutStatus.PROCESSING


def test_stripe_stale_timestamp_401(client):
    body = _stripe_body("tr_1")
    headers = stripe_headers(settings.STRIPE_WEBHOOK_SECRET, body, timestamp=int(time.time()) - 3600)
    r = client.post("/v1/webhooks/stripe-payouts", content=body, headers=headers)
    assert r.status_code == 401, r.text
    assert r.json()["detail"]["error"] == "SIGNATURE_TIMESTAMP_OUT_OF_TOLERANCE"


def test_stripe_valid_signature_marks_paid(client, store, event_log):
    p = store.add(status=PayoutStatus.PROCESSING, provider_reference="tr_ok", reference_source=ReferenceSource.DISPATCH)
    body = _stripe_body("tr_ok")
    r = client.post("/v1/webhooks/stripe-payouts", content=body, headers=stripe_headers(settings.STRIPE_WEBHOOK_SECRET, body))

    assert r.status_code == 200, r.text
    j = r.json()
    assert j["ok"] is True
    assert j["applied"] is True
    assert j["payoutId"] == str(p.id)
    assert j["statusAfter"] == "PAID"
    assert store.get(p.id).status == PayoutStatus.PAID

    rec = event_log.records[-1]
    assert rec.outcome == "APPLIED"
    assert rec.signature_valid is True
    assert rec.payout_status_before == "PROCESSING"
    assert rec.payout_status_after == "PAID"
    assert rec.match_method == "EXACT_REFERENCE"


def test_valid_signature_unknown_ref_200_ignored(client, store, event_log):
    p = store.add(status=PayoutStatus.PROCESSING, provider_reference="tr_known")
    body = _stripe_body("tr_unknown")
    r = client.post("/v1/webhooks/stripe-payouts", content=body, headers=stripe_headers(settings.STRIPE_WEBHOOK_SECRET, body))

    assert r.status_code == 200, r.text
    j = r.json()
    assert j["ok"] is True
    assert j.get("ignored") is True
    assert j.get("reason") == "NOT_FOUND"
    assert store.get(p.id).status == PayoutStatus.PROCESSING
    assert event_log.records[-1].outcome == "NOT_FOUND"
    assert event_log.records[-1].provider_ref == "tr_unknown"


def _paypal_body(event_type: str = "PAYMENT.PAYOUTS-ITEM.FAILED") -> bytes:
    return canonical_json_bytes(
        {
            "id": "WH-9",
            "event_type": event_type,
            "resource": {"payout_item_id": "ITEM-7", "payout_batch_id": "BATCH-7"},
        }
    )


def test_paypal_verified_item_failed(client, store, paypal_api):
    p = store.add(status=PayoutStatus.PROCESSING, provider_reference="BATCH-7", currency="USD")
    body = _paypal_body()
    headers = paypal_api.delivery_headers(settings.PAYPAL_WEBHOOK_ID, body)
    r = client.post("/v1/webhooks/paypal-payouts", content=body, headers=headers)
    assert r.status_code == 200, r.text
    assert store.get(p.id).status == PayoutStatus.FAILED

    sent = paypal_api.verify_requests[-1]
    assert sent["auth_algo"] == "SHA256withRSA"
    assert sent["cert_url"] == headers["PAYPAL-CERT-URL"]
    assert sent["transmission_sig"] == headers["PAYPAL-TRANSMISSION-SIG"]
    assert sent["webhook_id"] == settings.PAYPAL_WEBHOOK_ID
    assert sent["webhook_event"]["id"] == "WH-9"


def test_paypal_tampered_body_401(client, paypal_api):
    body = _paypal_body("PAYMENT.PAYOUTS-ITEM.SUCCEEDED")
    headers = paypal_api.delivery_headers(settings.PAYPAL_WEBHOOK_ID, body)
    tampered = body.replace(b"SUCCEEDED", b"FAILED")
    r = client.post("/v1/webhooks/paypal-payouts", content=tampered, headers=headers)
    assert r.status_code == 401, r.text
    assert r.json()["detail"]["error"] == "INVALID_SIGNATURE"


def test_paypal_missing_cert_headers_401(client, paypal_api):
    body = _paypal_body()
    headers = paypal_api.delivery_headers(settings.PAYPAL_WEBHOOK_ID, body)
    del headers["PAYPAL-CERT-URL"]
    r = client.post("/v1/webhooks/paypal-payouts", content=body, headers=headers)
    assert r.status_code == 401, r.text
    assert r.json()["detail"]["error"] == "MISSING_SIGNATURE"
    assert paypal_api.verify_requests == []


def test_paypal_verification_outage_is_rejected_for_retry(client, store, paypal_api, event_log):
    p = store.add(status=PayoutStatus.PROCESSING, provider_reference="BATCH-7", currency="USD")
    body = _paypal_body()
    headers = paypal_api.delivery_headers(settings.PAYPAL_WEBHOOK_ID, body)
    paypal_api.down = True
    r = client.post("/v1/webhooks/paypal-payouts", content=body, headers=headers)
    assert r.status_code == 401, r.text
    assert r.json()["detail"]["error"] == "SIGNATURE_VERIFICATION_UNAVAILABLE"
    assert event_log.records[-1].outcome == "REJECTED"
    assert store.get(p.id).status == PayoutStatus.PROCESSING


def test_paypal_without_webhook_id_is_not_configured(client, monkeypatch, paypal_verifier):
    monkeypatch.setattr(paypal_verifier, "_webhook_id", "", raising=False)
    body = _paypal_body()
    r = client.post("/v1/webhooks/paypal-payouts", content=body, headers={"Content-Type": "application/json"})
    assert r.status_code == 500, r.text
    assert r.json()["detail"]["error"] == "WEBHOOK_SECRET_NOT_CONFIGURED"


def test_stripe_malformed_header_401(client):
    body = _stripe_body("tr_1")
    r = client.post("/v1/webhooks/stripe-payouts", content=body, headers={"Stripe-Signature": "garbage"})
    assert r.status_code == 401, r.text
    assert r.json()["detail"]["error"] == "MALFORMED_SIGNATURE"


def test_mpesa_signed_callback_by_amount(client, store):
    p = store.add(status=PayoutStatus.PROCESSING, amount_due=1500)
    body = canonical_json_bytes(
        {
            "Result": {
                "ResultCode": 0,
                "ResultDesc": "ok",
                "ResultParameters": {"ResultParameter": [{"Key": "TransactionAmount", "Value": 1500}]},
            }
        }
    )
    r = client.post("/v1/webhooks/mpesa-b2c", content=body, headers=mpesa_headers(settings.MPESA_WEBHOOK_SECRET, body))
    assert r.status_code == 200, r.text
    assert r.json()["method"] == "AMOUNT_TOLERANCE"
    assert store.get(p.id).status == PayoutStatus.PAID


def test_mpesa_ambiguous_is_200_and_recorded(client, store, event_log):
    a = store.add(status=PayoutStatus.PROCESSING, amount_due=1500)
    b = store.add(status=PayoutStatus.PROCESSING, amount_due=1500, payee_id="doc-2")
    body = canonical_json_bytes(
        {"Result": {"ResultCode": 0, "ResultParameters": {"ResultParameter": {"Key": "TransactionAmount", "Value": 1500}}}}
    )
    r = client.post("/v1/webhooks/mpesa-b2c", content=body, headers=mpesa_headers(settings.MPESA_WEBHOOK_SECRET, body))
    assert r.status_code == 200, r.text
    assert r.json()["reason"] == "AMBIGUOUS"
    rec = event_log.records[-1]
    assert rec.outcome == "AMBIGUOUS"
    assert set(rec.candidates) == {str(a.id), str(b.id)}
    assert store.get(a.id).status == PayoutStatus.PROCESSING
    assert store.get(b.id).status == PayoutStatus.PROCESSING


def test_generic_webhook_by_payout_id(client, store):
    p = store.add(status=PayoutStatus.PROCESSING, provider_reference="bank_manual_x")
    body = canonical_json_bytes({"payoutId": str(p.id), "status": "SUCCESS", "providerReference": "BANK-REF-1"})
    r = client.post("/v1/webhooks/payouts", content=body, headers=generic_headers(settings.BANK_WEBHOOK_SECRET, body))
    assert r.status_code == 200, r.text
    after = store.get(p.id)
    assert after.status == PayoutStatus.PAID
    assert after.provider_reference == "BANK-REF-1"


def test_invalid_json_is_200_ignored(client, event_log):
    body = b"{not json"
    r = client.post("/v1/webhooks/payouts", content=body, headers=generic_headers(settings.BANK_WEBHOOK_SECRET, body))
    assert r.status_code == 200, r.text
    assert r.json()["reason"] == "INVALID_JSON"
    assert event_log.records[-1].outcome == "IGNORED"


def test_missing_fields_is_200_ignored(client):
    body = canonical_json_bytes({"status": "SUCCESS"})
    r = client.post("/v1/webhooks/payouts", content=body, headers=generic_headers(settings.BANK_WEBHOOK_SECRET, body))
    assert r.status_code == 200, r.text
    assert r.json()["reason"] == "MISSING_REFERENCE"


def test_secret_not_configured_500(client, monkeypatch, event_log):
    monkeypatch.setattr(settings, "MPESA_WEBHOOK_SECRET", "", raising=False)
    body = canonical_json_bytes({"Result": {"ResultCode": 0, "ConversationID": "AG_1"}})
    r = client.post("/v1/webhooks/mpesa-b2c", content=body, headers={"Content-Type": "application/json"})
    assert r.status_code == 500, r.text
    assert r.json()["detail"]["error"] == "WEBHOOK_SECRET_NOT_CONFIGURED"
    assert event_log.records[-1].reason == "WEBHOOK_SECRET_NOT_CONFIGURED"


def test_unsigned_allowed_outside_prod(client, monkeypatch, store, event_log):
    monkeypatch.setattr(settings, "BANK_WEBHOOK_SECRET", "", raising=False)
    monkeypatch.setattr(settings, "WEBHOOKS_ALLOW_UNSIGNED", True, raising=False)
    p = store.add(status=PayoutStatus.PROCESSING)
    r = client.post("/v1/webhooks/payouts", json={"payoutId": str(p.id), "status": "FAILED"})
    assert r.status_code == 200, r.text
    assert store.get(p.id).status == PayoutStatus.FAILED
    assert event_log.records[-1].signature_valid is None


def test_unsigned_never_allowed_in_prod(client, monkeypatch, store):
    monkeypatch.setattr(settings, "ENV", "prod", raising=False)
    monkeypatch.setattr(settings, "BANK_WEBHOOK_SECRET", "", raising=False)
    monkeypatch.setattr(settings, "WEBHOOKS_ALLOW_UNSIGNED", True, raising=False)
    p = store.add(status=PayoutStatus.PROCESSING)
    r = client.post("/v1/webhooks/payouts", json={"payoutId": str(p.id), "status": "SUCCESS"})
    assert r.status_code == 500, r.text
    assert store.get(p.id).status == PayoutStatus.PROCESSING


def test_stored_body_is_redacted(client, store, event_log):
    p = store.add(status=PayoutStatus.PROCESSING)
    payload = {"payoutId": str(p.id), "status": "SUCCESS", "meta": {"phone": "+254712345678", "api_token": "abc"}}
    body = canonical_json_bytes(payload)
    r = client.post("/v1/webhooks/payouts", content=body, headers=generic_headers(settings.BANK_WEBHOOK_SECRET, body))
    assert r.status_code == 200, r.text
    stored = json.dumps(event_log.records[-1].body)
    assert "+254712345678" not in stored
    assert "abc" not in stored
