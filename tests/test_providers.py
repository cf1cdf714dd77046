from __future__ import annotations

import json
import uuid
from decimal import Decimal

import httpx
import pytest
import stripe

from app.payouts.errors import DispatchError
from app.payouts.model import PayoutProvider
from app.providers.bank_transfer import BankTransferDispatcher
from app.providers.factory import build_dispatchers
from app.providers.http import HttpClient
from app.providers.mock import SimulatedDispatcher
from app.providers.mpesa_b2c import MpesaB2CDispatcher, normalize_msisdn
from app.providers.paypal_payouts import PayPalPayoutsDispatcher
from app.providers.stripe_connect import StripeConnectDispatcher, to_minor_units
from settings import Settings
from tests.fakes import payee

PAYOUT_ID = uuid.UUID("6f1c1b8e-8a43-4d53-9a4b-6a9c3a2d7f10")


def _http(handler) -> HttpClient:
    return HttpClient(timeout_s=1.0, transport=httpx.MockTransport(handler))


def _capture_transfer(monkeypatch, result=None, error=None):
    seen = {}

    def fake_create(**kwargs):
        seen.update(kwargs)
        if error is not None:
            raise error
        return result if result is not None else {"id": "tr_123", "object": "transfer"}

    monkeypatch.setattr(stripe.Transfer, "create", fake_create)
    return seen


def test_stripe_transfer_request_and_reference(monkeypatch):
    seen = _capture_transfer(monkeypatch)

    d = StripeConnectDispatcher(secret_key="sk_test")
    result = d.initiate(PAYOUT_ID, payee("doc-1", stripe_account_id="acct_1"), Decimal("12.345"), "USD")

    assert result.provider_reference == "tr_123"
    assert seen["api_key"] == "sk_test"
    assert seen["idempotency_key"] == f"payout-{PAYOUT_ID}"
    assert seen["amount"] == 1235
    assert seen["currency"] == "usd"
    assert seen["destination"] == "acct_1"
    assert seen["metadata"] == {"payout_id": str(PAYOUT_ID)}


def test_stripe_requires_connected_account(monkeypatch):
    seen = _capture_transfer(monkeypatch)
    d = StripeConnectDispatcher(secret_key="sk")
    with pytest.raises(DispatchError) as exc:
        d.initiate(PAYOUT_ID, payee("doc-1"), Decimal("10"), "USD")
    assert exc.value.reason == "PAYEE_DESTINATION_MISSING"
    assert seen == {}


def test_stripe_rejection_and_auth_failures_are_classified(monkeypatch):
    d = StripeConnectDispatcher(secret_key="sk")

    _capture_transfer(monkeypatch, error=stripe.InvalidRequestError("Insufficient funds", param="amount", http_status=400))
    with pytest.raises(DispatchError) as exc:
        d.initiate(PAYOUT_ID, payee("doc-1", stripe_account_id="acct_1"), Decimal("10"), "USD")
    assert exc.value.reason == "DISPATCH_REJECTED"
    assert exc.value.http_status == 400

    _capture_transfer(monkeypatch, error=stripe.AuthenticationError("Invalid API Key", http_status=401))
    with pytest.raises(DispatchError) as exc:
        d.initiate(PAYOUT_ID, payee("doc-1", stripe_account_id="acct_1"), Decimal("10"), "USD")
    assert exc.value.reason == "DISPATCH_AUTH_FAILED"


def test_stripe_connection_error_is_reported(monkeypatch):
    _capture_transfer(monkeypatch, error=stripe.APIConnectionError("Network error"))
    d = StripeConnectDispatcher(secret_key="sk")
    with pytest.raises(DispatchError) as exc:
        d.initiate(PAYOUT_ID, payee("doc-1", stripe_account_id="acct_1"), Decimal("10"), "USD")
    assert exc.value.reason == "DISPATCH_UNREACHABLE"


def test_http_timeout_is_reported():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    d = PayPalPayoutsDispatcher(client_id="cid", client_secret="cs", api_base="https://paypal.test", http=_http(handler))
    with pytest.raises(DispatchError) as exc:
        d.initiate(PAYOUT_ID, payee("doc-1", paypal_email="doc@example.com"), Decimal("10"), "USD")
    assert exc.value.reason == "DISPATCH_TIMEOUT"


def test_paypal_batch_uses_payout_id_for_idempotency():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "pp-token"})
        assert request.headers["Authorization"] == "Bearer pp-token"
        bodies.append(json.loads(request.content))
        return httpx.Response(201, json={"batch_header": {"payout_batch_id": "BATCH-1", "batch_status": "PENDING"}})

    d = PayPalPayoutsDispatcher(client_id="cid", client_secret="cs", api_base="https://paypal.test", http=_http(handler))
    result = d.initiate(PAYOUT_ID, payee("doc-1", paypal_email="doc@example.com"), Decimal("40"), "USD")

    assert result.provider_reference == "BATCH-1"
    batch = bodies[0]
    assert batch["sender_batch_header"]["sender_batch_id"] == f"payout_{PAYOUT_ID}"
    assert batch["items"][0]["amount"] == {"value": "40.00", "currency": "USD"}
    assert batch["items"][0]["sender_item_id"] == str(PAYOUT_ID)


def test_mpesa_b2c_request_and_conversation_id():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/v1/generate":
            return httpx.Response(200, json={"access_token": "mp-token"})
        bodies.append(json.loads(request.content))
        return httpx.Response(
            200,
            json={"ResponseCode": "0", "ConversationID": "AG_1", "OriginatorConversationID": "OC_1"},
        )

    d = MpesaB2CDispatcher(
        api_base="https://daraja.test",
        consumer_key="ck",
        consumer_secret="cs",
        initiator_name="api",
        security_credential="cred",
        shortcode="600000",
        result_url="https://example.test/v1/webhooks/mpesa-b2c",
        timeout_url="https://example.test/v1/webhooks/mpesa-b2c",
        http=_http(handler),
    )
    result = d.initiate(PAYOUT_ID, payee("doc-1", mpesa_phone="0712345678"), Decimal("1499.60"), "KES")

    assert result.provider_reference == "AG_1"
    assert bodies[0]["Amount"] == 1500
    assert bodies[0]["PartyB"] == "254712345678"
    assert bodies[0]["CommandID"] == "BusinessPayment"


def test_mpesa_b2c_not_accepted():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/v1/generate":
            return httpx.Response(200, json={"access_token": "t"})
        return httpx.Response(200, json={"ResponseCode": "1", "ResponseDescription": "Invalid initiator"})

    d = MpesaB2CDispatcher(
        api_base="https://daraja.test",
        consumer_key="ck",
        consumer_secret="cs",
        initiator_name="api",
        security_credential="cred",
        shortcode="600000",
        result_url="https://example.test/cb",
        timeout_url="https://example.test/cb",
        http=_http(handler),
    )
    with pytest.raises(DispatchError) as exc:
        d.initiate(PAYOUT_ID, payee("doc-1", mpesa_phone="254712345678"), Decimal("100"), "KES")
    assert exc.value.reason == "DISPATCH_REJECTED"


def test_manual_bank_transfer_reference():
    d = BankTransferDispatcher()
    assert d.is_manual
    result = d.initiate(PAYOUT_ID, payee("doc-1", bank_details={"account_number": "1"}), Decimal("10"), "KES")
    assert result.provider_reference == f"bank_manual_{PAYOUT_ID}"

    with pytest.raises(DispatchError):
        d.initiate(PAYOUT_ID, payee("doc-1"), Decimal("10"), "KES")


def test_helpers():
    assert to_minor_units(Decimal("0.005")) == 1
    assert normalize_msisdn("+254 712 345 678") == "254712345678"
    assert normalize_msisdn("0712345678") == "254712345678"


def test_factory_simulates_unconfigured_rails_outside_prod():
    out = build_dispatchers(Settings(ENV="dev", PROVIDER_SIMULATE=True, STRIPE_SECRET_KEY="", PAYPAL_CLIENT_ID="", MPESA_CONSUMER_KEY=""))
    assert isinstance(out[PayoutProvider.MPESA_B2C], SimulatedDispatcher)
    assert isinstance(out[PayoutProvider.STRIPE_CONNECT], SimulatedDispatcher)
    assert isinstance(out[PayoutProvider.BANK_TRANSFER], BankTransferDispatcher)


def test_factory_never_simulates_in_prod():
    out = build_dispatchers(
        Settings(ENV="prod", PROVIDER_SIMULATE=True, STRIPE_SECRET_KEY="sk_live", PAYPAL_CLIENT_ID="", MPESA_CONSUMER_KEY="")
    )
    assert isinstance(out[PayoutProvider.STRIPE_CONNECT], StripeConnectDispatcher)
    assert PayoutProvider.MPESA_B2C not in out
    assert PayoutProvider.PAYPAL_PAYOUTS not in out
