from __future__ import annotations

import re
from typing import Any, Mapping


_EMAIL_RE = re.compile(r"\b([A-Za-z0-9._%+-])([A-Za-z0-9._%+-]*)(@[A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")
# +254712345678, 254712345678 (M-Pesa MSISDNs arrive without the plus)
_MSISDN_RE = re.compile(r"\+?\d{9,15}\b")

REDACTED = "[REDACTED]"

# values under these keys are dropped entirely
_SECRET_KEY_MARKERS = (
    "token",
    "authorization",
    "secret",
    "signature",
    "password",
    "credential",
)

# payee bank identifiers: keep the tail so finance can still tell accounts apart
_ACCOUNT_KEY_MARKERS = ("account_number", "accountnumber", "iban")

_SECRET_TEXT_MARKERS = ("access_token", "refresh_token", "bearer")

SENSITIVE_HEADERS = frozenset(
    {
        "authorization",
        "cookie",
        "stripe-signature",
        "paypal-transmission-sig",
        "x-mpesa-signature",
        "x-signature",
    }
)


def _mask_email(match: re.Match) -> str:
    return f"{match.group(1)}***{match.group(3)}"


def mask_msisdn(value: str) -> str:
    if len(value) <= 8:
        return value
    return f"{value[:6]}****{value[-2:]}"


def mask_account(value: Any) -> str:
    digits = str(value or "").strip()
    if len(digits) <= 4:
        return "****"
    return "*" * (len(digits) - 4) + digits[-4:]


def redact_text(value: str) -> str:
    """Masks emails and phone numbers; any text carrying a bearer token is dropped whole."""
    lowered = value.lower()
    if any(marker in lowered for marker in _SECRET_TEXT_MARKERS):
        return REDACTED
    masked = _EMAIL_RE.sub(_mask_email, value)
    return _MSISDN_RE.sub(lambda m: mask_msisdn(m.group(0)), masked)


def _key_class(key: str) -> str | None:
    key_l = (key or "").lower()
    if any(marker in key_l for marker in _SECRET_KEY_MARKERS):
        return "secret"
    if any(marker in key_l for marker in _ACCOUNT_KEY_MARKERS):
        return "account"
    return None


def redact_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, Mapping):
        return redact_dict(value)
    if isinstance(value, (list, tuple)):
        return [redact_value(v) for v in value]
    return value


def redact_dict(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of `payload` safe to persist or log (webhook bodies, dispatch responses)."""
    out: dict[str, Any] = {}
    for k, v in payload.items():
        kind = _key_class(str(k))
        if kind == "secret":
            out[k] = REDACTED
        elif kind == "account":
            out[k] = mask_account(v)
        else:
            out[k] = redact_value(v)
    return out


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {k: ("***" if k.lower() in SENSITIVE_HEADERS else v) for k, v in headers.items()}
