

# app/providers/factory.py
from __future__ import annotations

import logging
from typing import Dict

from app.payouts.model import PayoutProvider
from app.providers.bank_transfer import BankTransferDispatcher
from app.providers.base import TransferDispatcher
from app.providers.http import HttpClient
from app.providers.mock import SimulatedDispatcher
from app.providers.mpesa_b2c import MpesaB2CDispatcher
from app.providers.paypal_payouts import PayPalPayoutsDispatcher
from app.providers.stripe_connect import StripeConnectDispatcher
from settings import Settings

logger = logging.getLogger("remodoc.payouts")


def _stripe_configured(s: Settings) -> bool:
    return bool(s.STRIPE_SECRET_KEY.strip())


def _paypal_configured(s: Settings) -> bool:
    return bool(s.PAYPAL_CLIENT_ID.strip() and s.PAYPAL_CLIENT_SECRET.strip())


def _mpesa_configured(s: Settings) -> bool:
    return all(
        v.strip()
        for v in (
            s.MPESA_CONSUMER_KEY,
            s.MPESA_CONSUMER_SECRET,
            s.MPESA_INITIATOR_NAME,
            s.MPESA_B2C_SECURITY_CREDENTIAL,
            s.MPESA_B2C_SHORTCODE,
            s.MPESA_B2C_RESULT_URL,
        )
    )


def build_dispatchers(s: Settings, *, http: HttpClient | None = None) -> Dict[PayoutProvider, TransferDispatcher]:
    """
    One dispatcher per rail. Unconfigured rails are simulated only when
    PROVIDER_SIMULATE is on and the deployment is not prod; otherwise they
    are left out and triggering them fails with PROVIDER_NOT_CONFIGURED.
    """
    client = http or HttpClient(timeout_s=s.PROVIDER_DISPATCH_TIMEOUT_S)
    simulate = s.PROVIDER_SIMULATE and not s.is_production
    out: Dict[PayoutProvider, TransferDispatcher] = {}

    if _stripe_configured(s):
        out[PayoutProvider.STRIPE_CONNECT] = StripeConnectDispatcher(
            secret_key=s.STRIPE_SECRET_KEY,
        )
    elif simulate:
        out[PayoutProvider.STRIPE_CONNECT] = SimulatedDispatcher(PayoutProvider.STRIPE_CONNECT.value)

    if _paypal_configured(s):
        out[PayoutProvider.PAYPAL_PAYOUTS] = PayPalPayoutsDispatcher(
            client_id=s.PAYPAL_CLIENT_ID,
            client_secret=s.PAYPAL_CLIENT_SECRET,
            api_base=s.PAYPAL_API_BASE,
            http=client,
        )
    elif simulate:
        out[PayoutProvider.PAYPAL_PAYOUTS] = SimulatedDispatcher(PayoutProvider.PAYPAL_PAYOUTS.value)

    if _mpesa_configured(s):
        out[PayoutProvider.MPESA_B2C] = MpesaB2CDispatcher(
            api_base=s.MPESA_API_BASE,
            consumer_key=s.MPESA_CONSUMER_KEY,
            consumer_secret=s.MPESA_CONSUMER_SECRET,
            initiator_name=s.MPESA_INITIATOR_NAME,
            security_credential=s.MPESA_B2C_SECURITY_CREDENTIAL,
            shortcode=s.MPESA_B2C_SHORTCODE,
            result_url=s.MPESA_B2C_RESULT_URL,
            timeout_url=s.MPESA_B2C_TIMEOUT_URL or s.MPESA_B2C_RESULT_URL,
            http=client,
        )
    elif simulate:
        out[PayoutProvider.MPESA_B2C] = SimulatedDispatcher(PayoutProvider.MPESA_B2C.value)

    # manual bank transfer is always available
    out[PayoutProvider.BANK_TRANSFER] = BankTransferDispatcher(
        api_url=s.BANK_API_URL,
        api_key=s.BANK_API_KEY,
        http=client,
    )

    for p in PayoutProvider:
        if p not in out:
            logger.warning("dispatcher_unavailable provider=%s env=%s", p.value, s.ENV)

    return out
