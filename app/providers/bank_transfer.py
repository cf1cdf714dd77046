# app/providers/bank_transfer.py
from __future__ import annotations

from decimal import Decimal
from typing import Optional
from uuid import UUID

from app.payouts.errors import DispatchError
from app.payouts.model import PayoutProvider
from app.providers.base import DispatchResult
from app.providers.http import HttpClient
from app.sources.payees import Payee


class BankTransferDispatcher:
    """
    Bank payout rail. With a bank API configured the transfer is submitted
    there; without one the transfer is executed by finance staff and later
    confirmed through the generic payout webhook or an admin override.
    """

    provider = PayoutProvider.BANK_TRANSFER.value

    def __init__(self, *, api_url: str = "", api_key: str = "", http: Optional[HttpClient] = None):
        self._api_url = api_url.rstrip("/")
        self._api_key = api_key
        self._http = http

    @property
    def is_manual(self) -> bool:
        return not (self._api_url and self._api_key and self._http)

    def initiate(self, payout_id: UUID, payee: Payee, amount: Decimal, currency: str) -> DispatchResult:
        if not payee.bank_details:
            raise DispatchError(
                f"Payee {payee.id} has no bank details",
                reason="PAYEE_DESTINATION_MISSING",
            )

        if self.is_manual:
            return DispatchResult(
                provider_reference=f"bank_manual_{payout_id}",
                response={"manual": True},
            )

        resp = self._http.post(
            f"{self._api_url}/payouts",
            headers={"Authorization": f"Bearer {self._api_key}", "Idempotency-Key": f"payout-{payout_id}"},
            json_body={
                "reference": str(payout_id),
                "amount": str(amount),
                "currency": currency,
                "beneficiary": payee.bank_details,
            },
        )
        body = resp.json or {}
        ref = body.get("id") or body.get("reference")
        if not ref:
            raise DispatchError("Bank API response missing id/reference", reason="DISPATCH_UNCONFIRMED")
        return DispatchResult(provider_reference=str(ref), response={"id": ref, "status": body.get("status")})
