# app/webhooks/signatures.py
from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Mapping, Optional

import stripe

from app.payouts.errors import DispatchError
from app.providers.http import HttpClient
from app.providers.paypal_payouts import fetch_access_token

logger = logging.getLogger("remodoc.webhooks")


def hmac_sha256_hex(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    # starlette Headers are case-insensitive; plain dicts in tests are not
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value.strip() if value and value.strip() else None


def verify_hmac_signature(*, raw: bytes, signature_header: Optional[str], secret: Optional[str]) -> tuple[bool, Optional[str]]:
    """
    Plain hex HMAC-SHA256 over the raw body, optionally prefixed with `sha256=`.
    """
    if not secret or not secret.strip():
        return False, "WEBHOOK_SECRET_NOT_CONFIGURED"

    if not signature_header or not signature_header.strip():
        return False, "MISSING_SIGNATURE"

    sig = signature_header.strip()
    if sig.lower().startswith("sha256="):
        sig = sig.split("=", 1)[1].strip()

    expected = hmac_sha256_hex(secret, raw)
    if not hmac.compare_digest(expected, sig.lower()):
        return False, "INVALID_SIGNATURE"

    return True, None


def _stripe_failure_reason(message: str) -> str:
    text = message.lower()
    if "tolerance" in text:
        return "SIGNATURE_TIMESTAMP_OUT_OF_TOLERANCE"
    if "unable to extract" in text or "expected scheme" in text:
        return "MALFORMED_SIGNATURE"
    return "INVALID_SIGNATURE"


def verify_stripe_signature(
    *,
    raw: bytes,
    signature_header: Optional[str],
    secret: Optional[str],
    tolerance_s: int = 300,
) -> tuple[bool, Optional[str]]:
    """
    `Stripe-Signature` check done by the Stripe SDK. Only the signature is
    verified here; the body is parsed later so a signed but malformed event
    can still be recorded and acknowledged.
    """
    if not secret or not secret.strip():
        return False, "WEBHOOK_SECRET_NOT_CONFIGURED"
    if not signature_header or not signature_header.strip():
        return False, "MISSING_SIGNATURE"

    try:
        stripe.WebhookSignature.verify_header(
            raw.decode("utf-8", errors="replace"),
            signature_header,
            secret,
            tolerance=tolerance_s or None,
        )
    except stripe.SignatureVerificationError as exc:
        return False, _stripe_failure_reason(str(exc))
    return True, None


# verify-webhook-signature request field -> delivery header
PAYPAL_SIGNATURE_HEADERS = {
    "auth_algo": "PAYPAL-AUTH-ALGO",
    "cert_url": "PAYPAL-CERT-URL",
    "transmission_id": "PAYPAL-TRANSMISSION-ID",
    "transmission_sig": "PAYPAL-TRANSMISSION-SIG",
    "transmission_time": "PAYPAL-TRANSMISSION-TIME",
}


class PayPalWebhookVerifier:
    """
    PayPal signs deliveries with its own certificate (SHA256withRSA over
    `id|time|webhook_id|crc32(body)`). The check is delegated to PayPal's
    verify-webhook-signature endpoint using the platform's REST credentials.
    """

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        api_base: str,
        webhook_id: str,
        http: HttpClient,
    ):
        self._client_id = client_id
        self._client_secret = client_secret
        self._api_base = api_base.rstrip("/")
        self._webhook_id = webhook_id
        self._http = http

    @property
    def configured(self) -> bool:
        return bool(self._webhook_id.strip() and self._client_id.strip() and self._client_secret.strip())

    def verify(self, raw: bytes, headers: Mapping[str, str]) -> tuple[bool, Optional[str]]:
        if not self.configured:
            return False, "WEBHOOK_SECRET_NOT_CONFIGURED"

        fields: dict[str, str] = {}
        for field_name, header_name in PAYPAL_SIGNATURE_HEADERS.items():
            value = _header(headers, header_name)
            if not value:
                return False, "MISSING_SIGNATURE"
            fields[field_name] = value

        # PayPal verifies against the event document, not the raw bytes
        try:
            event = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return False, "MALFORMED_PAYLOAD"

        try:
            token = fetch_access_token(self._http, self._api_base, self._client_id, self._client_secret)
            resp = self._http.post(
                f"{self._api_base}/v1/notifications/verify-webhook-signature",
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                json_body={**fields, "webhook_id": self._webhook_id, "webhook_event": event},
            )
        except DispatchError as exc:
            logger.warning(
                "paypal_signature_check_unavailable reason=%s message=%s",
                exc.reason,
                exc.message,
            )
            return False, "SIGNATURE_VERIFICATION_UNAVAILABLE"

        status = str((resp.json or {}).get("verification_status") or "").upper()
        if status != "SUCCESS":
            return False, "INVALID_SIGNATURE"
        return True, None
