# app/providers/paypal_payouts.py
from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from app.payouts.errors import DispatchError
from app.payouts.model import PayoutProvider
from app.providers.base import DispatchResult
from app.providers.http import HttpClient
from app.sources.payees import Payee


def fetch_access_token(http: HttpClient, api_base: str, client_id: str, client_secret: str) -> str:
    resp = http.post(
        f"{api_base}/v1/oauth2/token",
        form={"grant_type": "client_credentials"},
        auth=(client_id, client_secret),
    )
    token = (resp.json or {}).get("access_token")
    if not token:
        raise DispatchError("PayPal token response missing access_token", reason="DISPATCH_AUTH_FAILED")
    return str(token)


class PayPalPayoutsDispatcher:
    provider = PayoutProvider.PAYPAL_PAYOUTS.value

    def __init__(self, *, client_id: str, client_secret: str, api_base: str, http: HttpClient):
        self._client_id = client_id
        self._client_secret = client_secret
        self._api_base = api_base.rstrip("/")
        self._http = http

    def initiate(self, payout_id: UUID, payee: Payee, amount: Decimal, currency: str) -> DispatchResult:
        if not payee.paypal_email:
            raise DispatchError(
                f"Payee {payee.id} has no PayPal payout email",
                reason="PAYEE_DESTINATION_MISSING",
            )

        token = fetch_access_token(self._http, self._api_base, self._client_id, self._client_secret)
        batch = {
            "sender_batch_header": {
                # PayPal rejects a reused sender_batch_id, so retries cannot double-pay
                "sender_batch_id": f"payout_{payout_id}",
                "email_subject": "RemoDoc doctor payout",
            },
            "items": [
                {
                    "recipient_type": "EMAIL",
                    "amount": {"value": f"{amount:.2f}", "currency": currency},
                    "receiver": payee.paypal_email,
                    "note": f"Payout {payout_id}",
                    "sender_item_id": str(payout_id),
                }
            ],
        }
        resp = self._http.post(
            f"{self._api_base}/v1/payments/payouts",
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            json_body=batch,
        )
        header = (resp.json or {}).get("batch_header") or {}
        batch_id = header.get("payout_batch_id")
        if not batch_id:
            raise DispatchError("PayPal payout response missing payout_batch_id", reason="DISPATCH_UNCONFIRMED")
        return DispatchResult(
            provider_reference=str(batch_id),
            response={"payout_batch_id": batch_id, "batch_status": header.get("batch_status")},
        )
