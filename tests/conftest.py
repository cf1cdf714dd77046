
# tests/conftest.py

from decimal import Decimal
from typing import Dict

import httpx
import pytest
from fastapi.testclient import TestClient

from app.payouts.controller import PayoutLifecycleController
from app.payouts.model import PayoutProvider
from app.providers.http import HttpClient
from app.reconcile.reconciler import SettlementReconciler, default_strategies
from app.webhooks.signatures import PayPalWebhookVerifier
from deps.services import (
    get_activity,
    get_dispatchers,
    get_event_log,
    get_payees,
    get_paypal_verifier,
    get_rates,
    get_store,
)
from main import create_app
from security import ROLE_ADMIN, ROLE_DOCTOR, create_access_token
from settings import settings
from tests.fakes import (
    Clock,
    FakeActivitySource,
    FakeDispatcher,
    FakePayeeDirectory,
    FakePayPalApi,
    FakeRateSource,
    FakeWebhookEventLog,
    InMemoryPayoutStore,
    payee,
)


ADMIN_ID = "admin-1"


def _auth_headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(autouse=True)
def _webhook_secrets(monkeypatch):
    monkeypatch.setattr(settings, "ENV", "dev", raising=False)
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_test", raising=False)
    monkeypatch.setattr(settings, "PAYPAL_WEBHOOK_ID", "WH-TEST", raising=False)
    monkeypatch.setattr(settings, "PAYPAL_CLIENT_ID", "paypal-client", raising=False)
    monkeypatch.setattr(settings, "PAYPAL_CLIENT_SECRET", "paypal-client-secret", raising=False)
    monkeypatch.setattr(settings, "MPESA_WEBHOOK_SECRET", "mpesa-test-secret", raising=False)
    monkeypatch.setattr(settings, "BANK_WEBHOOK_SECRET", "bank-test-secret", raising=False)
    monkeypatch.setattr(settings, "WEBHOOKS_ALLOW_UNSIGNED", False, raising=False)
    monkeypatch.setattr(settings, "PAYOUT_MATCH_TOLERANCE", Decimal("1"), raising=False)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def store(clock) -> InMemoryPayoutStore:
    return InMemoryPayoutStore(clock)


@pytest.fixture
def payees() -> FakePayeeDirectory:
    return FakePayeeDirectory(
        [
            payee(
                "doc-1",
                user_id="user-doc-1",
                name="Dr Achieng",
                stripe_account_id="acct_doc1",
                paypal_email="doc1@example.com",
                mpesa_phone="254712345678",
                bank_details={"account_number": "0011223344", "bank_code": "01"},
            ),
            payee("doc-2", user_id="user-doc-2", name="Dr Otieno", mpesa_phone="254798765432"),
        ]
    )


@pytest.fixture
def dispatchers() -> Dict[PayoutProvider, FakeDispatcher]:
    return {p: FakeDispatcher(p.value, ref_prefix=p.value.lower()) for p in PayoutProvider}


@pytest.fixture
def activity_source() -> FakeActivitySource:
    return FakeActivitySource()


@pytest.fixture
def rates() -> FakeRateSource:
    return FakeRateSource()


@pytest.fixture
def event_log() -> FakeWebhookEventLog:
    return FakeWebhookEventLog()


@pytest.fixture
def controller(store, payees, dispatchers, clock) -> PayoutLifecycleController:
    return PayoutLifecycleController(store, payees, dispatchers, settlement_currency="KES", clock=clock)


@pytest.fixture
def reconciler(store, clock) -> SettlementReconciler:
    return SettlementReconciler(store, default_strategies(Decimal("1")), clock=clock)


@pytest.fixture
def paypal_api() -> FakePayPalApi:
    return FakePayPalApi()


@pytest.fixture
def paypal_verifier(paypal_api) -> PayPalWebhookVerifier:
    return PayPalWebhookVerifier(
        client_id=settings.PAYPAL_CLIENT_ID,
        client_secret=settings.PAYPAL_CLIENT_SECRET,
        api_base="https://paypal.test",
        webhook_id=settings.PAYPAL_WEBHOOK_ID,
        http=HttpClient(timeout_s=1.0, transport=httpx.MockTransport(paypal_api.handle)),
    )


@pytest.fixture
def client(store, payees, dispatchers, activity_source, rates, event_log, paypal_verifier) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_payees] = lambda: payees
    app.dependency_overrides[get_dispatchers] = lambda: dispatchers
    app.dependency_overrides[get_activity] = lambda: activity_source
    app.dependency_overrides[get_rates] = lambda: rates
    app.dependency_overrides[get_event_log] = lambda: event_log
    app.dependency_overrides[get_paypal_verifier] = lambda: paypal_verifier
    # Needed so tests can assert 500s instead of pytest re-raising server exceptions
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    return _auth_headers(create_access_token(ADMIN_ID, role=ROLE_ADMIN))


@pytest.fixture
def doctor_headers() -> Dict[str, str]:
    return _auth_headers(create_access_token("user-doc-1", role=ROLE_DOCTOR))


@pytest.fixture
def other_doctor_headers() -> Dict[str, str]:
    return _auth_headers(create_access_token("user-doc-2", role=ROLE_DOCTOR))
