# app/providers/stripe_connect.py
from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

import stripe

from app.payouts.errors import DispatchError
from app.payouts.model import PayoutProvider
from app.providers.base import DispatchResult
from app.sources.payees import Payee

logger = logging.getLogger("remodoc.http")


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripeConnectDispatcher:
    """Transfer from the platform balance to the payee's connected account."""

    provider = PayoutProvider.STRIPE_CONNECT.value

    def __init__(self, *, secret_key: str):
        self._secret_key = secret_key

    def initiate(self, payout_id: UUID, payee: Payee, amount: Decimal, currency: str) -> DispatchResult:
        if not payee.stripe_account_id:
            raise DispatchError(
                f"Payee {payee.id} has no Stripe connected account",
                reason="PAYEE_DESTINATION_MISSING",
            )
        amount_minor = to_minor_units(amount)
        if amount_minor <= 0:
            raise DispatchError("Invalid payout amount", reason="INVALID_AMOUNT")

        try:
            transfer = stripe.Transfer.create(
                amount=amount_minor,
                currency=currency.lower(),
                destination=payee.stripe_account_id,
                description=f"Doctor payout {payout_id}",
                metadata={"payout_id": str(payout_id)},
                api_key=self._secret_key,
                # same payout -> same transfer, even across admin retries
                idempotency_key=f"payout-{payout_id}",
            )
        except (stripe.AuthenticationError, stripe.PermissionError) as e:
            logger.warning("stripe_transfer_auth_failed payout_id=%s status=%s", payout_id, e.http_status)
            raise DispatchError(f"Stripe rejected credentials: {e.user_message or e}", reason="DISPATCH_AUTH_FAILED", http_status=e.http_status)
        except stripe.APIConnectionError as e:
            logger.warning("stripe_transfer_unreachable payout_id=%s error=%s", payout_id, type(e).__name__)
            raise DispatchError("Stripe API unreachable", reason="DISPATCH_UNREACHABLE")
        except stripe.StripeError as e:
            logger.warning("stripe_transfer_rejected payout_id=%s status=%s code=%s", payout_id, e.http_status, e.code)
            raise DispatchError(f"Stripe transfer failed: {e.user_message or e}", reason="DISPATCH_REJECTED", http_status=e.http_status)

        transfer_id = transfer.get("id")
        if not transfer_id:
            raise DispatchError("Stripe transfer response missing id", reason="DISPATCH_UNCONFIRMED")
        return DispatchResult(provider_reference=str(transfer_id), response={"id": transfer_id, "object": transfer.get("object")})
