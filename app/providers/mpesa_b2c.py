# app/providers/mpesa_b2c.py
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from app.payouts.errors import DispatchError
from app.payouts.model import PayoutProvider
from app.providers.base import DispatchResult
from app.providers.http import HttpClient
from app.sources.payees import Payee


def normalize_msisdn(phone: str) -> str:
    digits = "".join(ch for ch in (phone or "") if ch.isdigit())
    if digits.startswith("0") and len(digits) == 10:
        return "254" + digits[1:]
    return digits


class MpesaB2CDispatcher:
    """Safaricom Daraja B2C BusinessPayment."""

    provider = PayoutProvider.MPESA_B2C.value

    def __init__(
        self,
        *,
        api_base: str,
        consumer_key: str,
        consumer_secret: str,
        initiator_name: str,
        security_credential: str,
        shortcode: str,
        result_url: str,
        timeout_url: str,
        http: HttpClient,
    ):
        self._api_base = api_base.rstrip("/")
        self._consumer_key = consumer_key
        self._consumer_secret = consumer_secret
        self._initiator_name = initiator_name
        self._security_credential = security_credential
        self._shortcode = shortcode
        self._result_url = result_url
        self._timeout_url = timeout_url
        self._http = http

    def _token(self) -> str:
        resp = self._http.get(
            f"{self._api_base}/oauth/v1/generate?grant_type=client_credentials",
            auth=(self._consumer_key, self._consumer_secret),
        )
        token = (resp.json or {}).get("access_token")
        if not token:
            raise DispatchError("M-Pesa token response missing access_token", reason="DISPATCH_AUTH_FAILED")
        return str(token)

    def initiate(self, payout_id: UUID, payee: Payee, amount: Decimal, currency: str) -> DispatchResult:
        if not payee.mpesa_phone:
            raise DispatchError(
                f"Payee {payee.id} has no M-Pesa phone number",
                reason="PAYEE_DESTINATION_MISSING",
            )
        whole_units = int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        if whole_units <= 0:
            raise DispatchError("Invalid payout amount", reason="INVALID_AMOUNT")

        token = self._token()
        resp = self._http.post(
            f"{self._api_base}/mpesa/b2c/v1/paymentrequest",
            headers={"Authorization": f"Bearer {token}"},
            json_body={
                "InitiatorName": self._initiator_name,
                "SecurityCredential": self._security_credential,
                "CommandID": "BusinessPayment",
                "Amount": whole_units,
                "PartyA": self._shortcode,
                "PartyB": normalize_msisdn(payee.mpesa_phone),
                "Remarks": f"Payout {payout_id}",
                "QueueTimeOutURL": self._timeout_url,
                "ResultURL": self._result_url,
                "Occasion": str(payout_id),
            },
        )
        body = resp.json or {}
        if str(body.get("ResponseCode", "")) != "0":
            raise DispatchError(
                f"M-Pesa B2C request not accepted: {body.get('ResponseDescription') or body.get('errorMessage')}",
                reason="DISPATCH_REJECTED",
            )
        conversation_id = body.get("ConversationID")
        if not conversation_id:
            raise DispatchError("M-Pesa B2C response missing ConversationID", reason="DISPATCH_UNCONFIRMED")
        return DispatchResult(
            provider_reference=str(conversation_id),
            response={
                "ConversationID": conversation_id,
                "OriginatorConversationID": body.get("OriginatorConversationID"),
            },
        )
