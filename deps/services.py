
# deps/services.py
from __future__ import annotations

from typing import Dict

from fastapi import Depends, HTTPException

from app.payouts.calculator import PayoutCalculator
from app.payouts.controller import PayoutLifecycleController
from app.payouts.model import PayoutProvider
from app.payouts.queries import Caller
from app.payouts.repository import PgPayoutStore
from app.payouts.store import PayoutStore
from app.providers.base import TransferDispatcher
from app.providers.factory import build_dispatchers
from app.providers.http import HttpClient
from app.reconcile.reconciler import SettlementReconciler, default_strategies
from app.sources.activity import ActivitySource, PgActivitySource
from app.sources.payees import PayeeDirectory, PgPayeeDirectory
from app.sources.rates import PgRateSource, RateSource
from app.webhooks.repository import PgWebhookEventLog, WebhookEventLog
from app.webhooks.signatures import PayPalWebhookVerifier
from db import Database, build_database
from deps.auth import CurrentUser, get_current_user
from settings import settings

# Process-wide singletons; tests replace the providers below via
# app.dependency_overrides instead of touching these.
_database: Database | None = None
_dispatchers: Dict[PayoutProvider, TransferDispatcher] | None = None
_provider_http: HttpClient | None = None


def get_database() -> Database:
    global _database
    if _database is None:
        _database = build_database()
    return _database


def close_database() -> None:
    global _database
    if _database is not None:
        _database.close()
        _database = None


def get_store(db: Database = Depends(get_database)) -> PayoutStore:
    return PgPayoutStore(db)


def get_payees(db: Database = Depends(get_database)) -> PayeeDirectory:
    return PgPayeeDirectory(db)


def get_activity(db: Database = Depends(get_database)) -> ActivitySource:
    return PgActivitySource(db)


def get_rates(db: Database = Depends(get_database)) -> RateSource:
    return PgRateSource(db)


def get_event_log(db: Database = Depends(get_database)) -> WebhookEventLog:
    return PgWebhookEventLog(db)


def get_provider_http() -> HttpClient:
    global _provider_http
    if _provider_http is None:
        _provider_http = HttpClient(timeout_s=settings.PROVIDER_DISPATCH_TIMEOUT_S)
    return _provider_http


def get_dispatchers() -> Dict[PayoutProvider, TransferDispatcher]:
    global _dispatchers
    if _dispatchers is None:
        _dispatchers = build_dispatchers(settings, http=get_provider_http())
    return _dispatchers


def get_controller(
    store: PayoutStore = Depends(get_store),
    payees: PayeeDirectory = Depends(get_payees),
    dispatchers: Dict[PayoutProvider, TransferDispatcher] = Depends(get_dispatchers),
) -> PayoutLifecycleController:
    return PayoutLifecycleController(
        store,
        payees,
        dispatchers,
        settlement_currency=settings.PAYOUT_SETTLEMENT_CURRENCY,
    )


def get_calculator(
    store: PayoutStore = Depends(get_store),
    activity: ActivitySource = Depends(get_activity),
    rates: RateSource = Depends(get_rates),
) -> PayoutCalculator:
    return PayoutCalculator(
        store,
        activity,
        rates,
        currency=settings.PAYOUT_SETTLEMENT_CURRENCY,
        default_rate=settings.PAYOUT_DEFAULT_RATE,
    )


def get_reconciler(store: PayoutStore = Depends(get_store)) -> SettlementReconciler:
    return SettlementReconciler(store, default_strategies(settings.PAYOUT_MATCH_TOLERANCE))


def get_caller(
    user: CurrentUser = Depends(get_current_user),
    payees: PayeeDirectory = Depends(get_payees),
) -> Caller:
    if user.is_admin:
        return Caller(user_id=user.user_id, is_admin=True)
    payee_id = payees.payee_id_for_user(user.user_id)
    if not payee_id:
        raise HTTPException(status_code=403, detail="DOCTOR_PROFILE_REQUIRED")
    return Caller(user_id=user.user_id, is_admin=False, payee_id=payee_id)


def get_paypal_verifier(http: HttpClient = Depends(get_provider_http)) -> PayPalWebhookVerifier:
    return PayPalWebhookVerifier(
        client_id=settings.PAYPAL_CLIENT_ID,
        client_secret=settings.PAYPAL_CLIENT_SECRET,
        api_base=settings.PAYPAL_API_BASE,
        webhook_id=settings.PAYPAL_WEBHOOK_ID,
        http=http,
    )
