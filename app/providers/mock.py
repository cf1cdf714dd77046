# app/providers/mock.py
from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from app.providers.base import DispatchResult
from app.sources.payees import Payee

logger = logging.getLogger("remodoc.payouts")

_SIM_PREFIX = {
    "STRIPE_CONNECT": "stripe_payout_sim",
    "PAYPAL_PAYOUTS": "paypal_payout_sim",
    "MPESA_B2C": "mpesa_b2c_sim",
    "BANK_TRANSFER": "bank_transfer_sim",
}


class SimulatedDispatcher:
    """
    Dev/staging stand-in for a provider that has no credentials configured.
    Accepts every transfer and hands back a deterministic reference; the
    payout still waits in PROCESSING for a webhook or an admin override.
    """

    def __init__(self, provider: str):
        self.provider = provider

    def initiate(self, payout_id: UUID, payee: Payee, amount: Decimal, currency: str) -> DispatchResult:
        ref = f"{_SIM_PREFIX.get(self.provider, 'sim')}_{payout_id}"
        logger.warning(
            "dispatch_simulated provider=%s payout_id=%s amount=%s currency=%s ref=%s",
            self.provider,
            payout_id,
            amount,
            currency,
            ref,
        )
        return DispatchResult(provider_reference=ref, response={"simulated": True})
